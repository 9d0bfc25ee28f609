"""
Encoding of one header space slice: route records on every logical edge,
transfer functions between them, best route selection and forwarding.
"""

import logging

import z3

from netsmt.common import DEFAULT_BGP_MED
from netsmt.common import DEFAULT_LOCAL_PREF
from netsmt.common import EdgeType
from netsmt.common import LineAction
from netsmt.common import OspfType
from netsmt.common import Protocol
from netsmt.common import is_elided
from netsmt.common import prefix_range_bounds
from netsmt.community import CommunityType
from netsmt.community import community_dependencies
from netsmt.community import find_all_communities
from netsmt.errors import UnsupportedConstructError
from netsmt.logical_graph import LogicalEdge
from netsmt.logical_graph import LogicalGraph
from netsmt.logical_graph import LogicalRedistributionEdge
from netsmt.optimizations import compute_optimizations
from netsmt.optimizations import is_multipath
from netsmt.optimizations import originated_networks
from netsmt.policy import EXIT_ACCEPT
from netsmt.policy import EXIT_REJECT
from netsmt.policy import If
from netsmt.policy import MatchProtocol
from netsmt.policy import get_policy
from netsmt.policy import walk
from netsmt.symbolic import SymbolicEnum
from netsmt.symbolic import SymbolicOspfType
from netsmt.symbolic import SymbolicPacket
from netsmt.symbolic import SymbolicRecord
from netsmt.transfer import TransferFunction
from netsmt.transfer import mk_and
from netsmt.transfer import mk_or


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


MAX_PREFIX_LENGTH = 32


class EncoderSlice(object):
    """
    All constraints of a network for the packets of one header space.

    :param encoder: the Encoder owning the solver
    :param header_space: HeaderSpace the slice is restricted to
    :param graph: the topology Graph
    :param slice_name: prefix of every variable name of the slice
    """
    def __init__(self, encoder, header_space, graph, slice_name):
        self.log = logging.getLogger('%s.%s' % (
            self.__module__, self.__class__.__name__))
        self.encoder = encoder
        self.header_space = header_space
        self.graph = graph
        self.slice_name = slice_name
        self.symbolic_packet = SymbolicPacket(slice_name)
        self.all_variables.extend(self.symbolic_packet.variables())
        self.all_records = []
        self.optimizations = compute_optimizations(graph, header_space, encoder.failures)
        self.protocols = self.optimizations.protocols
        self.logical_graph = LogicalGraph(graph)
        self.all_communities = find_all_communities(graph.configurations)
        self.community_dependencies = community_dependencies(self.all_communities)
        # router -> record
        self.best_neighbor = {}
        # router -> proto -> record
        self.best_neighbor_per_protocol = {}
        # router -> proto -> logical edge -> var
        self.choice_variables = {}
        # router -> graph edge -> var
        self.control_forwarding = {}
        self.data_forwarding = {}
        self.forwards_across = {}
        # interface name pairs (router, iface) -> var
        self.inbound_acls = {}
        self.outbound_acls = {}
        self._init_redistribution_protocols()
        self._init_variables()
        self._init_acl_functions()
        self._init_forwarding_across()
        self._compute_encoding()

    # Shared with the encoder

    @property
    def all_variables(self):
        return self.encoder.all_variables

    def add(self, constraint):
        self.encoder.add(constraint)

    def generate_id(self):
        return self.encoder.generate_id()

    # Small helpers

    def first_bits_equal(self, x, prefix):
        """x falls into the network `prefix`"""
        if prefix.prefixlen == 0:
            return z3.BoolVal(True)
        first, last = prefix_range_bounds(prefix)
        return z3.And(x >= first, x <= last)

    def is_relevant_for(self, prefix_len, prefix, length_range):
        """The destination matches a prefix range for a route of length prefix_len"""
        bits_match = self.first_bits_equal(self.symbolic_packet.dst_ip, prefix)
        if length_range.start == length_range.end:
            return z3.And(prefix_len == length_range.start, bits_match)
        return z3.And(prefix_len >= length_range.start,
                      prefix_len <= length_range.end, bits_match)

    def relevant_origination(self, prefixes):
        return mk_or(*[self.first_bits_equal(self.symbolic_packet.dst_ip, p)
                       for p in prefixes])

    def safe_eq(self, x, value):
        if is_elided(x):
            return z3.BoolVal(True)
        return x == value

    def safe_eq_enum(self, x, value):
        if is_elided(x):
            return z3.BoolVal(True)
        return x.check_if_value(value)

    def interface_active(self, iface, proto):
        return z3.BoolVal(self.graph.is_interface_active(proto, iface))

    def added_cost(self, proto, ge):
        if proto == Protocol.OSPF:
            return ge.start.ospf_cost
        return 1

    def best_vars(self, router, proto):
        """Best record of a protocol, the overall best for single protocol routers"""
        if router in self.optimizations.has_single_protocol:
            return self.best_neighbor[router]
        return self.best_neighbor_per_protocol[router][proto]

    def correct_vars(self, le):
        """The record of an import edge, the peer's export record when merged"""
        if not le.record.is_used:
            return self.logical_graph.other_end[le].record
        return le.record

    def collect_all_import_logical_edges(self, router, proto):
        return self.logical_graph.import_edges(router, proto)

    # Variables

    def _init_redistribution_protocols(self):
        """A protocol takes routes of the protocols its export policies match"""
        lg = self.logical_graph
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            protos = self.protocols[router]
            lg.redistributed_protocols[router] = {}
            for proto in protos:
                redist = set([proto])
                policies = []
                common = self.graph.find_common_routing_policy(router, proto)
                if common is not None:
                    policies.append(common)
                if proto == Protocol.BGP:
                    for neighbor in conf.bgp_process.neighbors:
                        if neighbor.export_policy is not None:
                            policies.append(get_policy(conf, neighbor.export_policy))
                for pol in policies:
                    for node in walk(pol.statements, conf):
                        if isinstance(node, MatchProtocol) and node.protocol in protos:
                            redist.add(node.protocol)
                lg.redistributed_protocols[router][proto] = redist
                self.log.debug("Router %s redistributes %s into %s", router,
                               sorted(str(p) for p in redist), proto)

    def _init_variables(self):
        for router in self.graph.routers:
            self.logical_graph.logical_edges[router] = {}
            for proto in self.protocols[router]:
                self.logical_graph.logical_edges[router][proto] = []
        self._add_forwarding_variables()
        self._add_best_variables()
        self._add_symbolic_records()
        self._add_redistribution_edges()
        self._add_choice_variables()
        self._add_environment_variables()

    def _add_forwarding_variables(self):
        for router in self.graph.routers:
            self.control_forwarding[router] = {}
            self.data_forwarding[router] = {}
            for ge in self.graph.edge_map[router]:
                iface = ge.start.name
                cf = z3.Bool('%scontrol-forwarding_%s_%s' % (self.slice_name, router, iface))
                df = z3.Bool('%sdata-forwarding_%s_%s' % (self.slice_name, router, iface))
                self.all_variables.extend([cf, df])
                self.control_forwarding[router][ge] = cf
                self.data_forwarding[router][ge] = df

    def _add_best_variables(self):
        for router in self.graph.routers:
            protos = self.protocols[router]
            name = '%s%s_%s_%s_%s' % (self.slice_name, router, 'OVERALL', 'none', 'BEST')
            history = SymbolicEnum(self, protos, name + '_history')
            best = SymbolicRecord.create(self, name, router, Protocol.BEST, history=history)
            self.all_records.append(best)
            self.best_neighbor[router] = best

            self.best_neighbor_per_protocol[router] = {}
            if router in self.optimizations.has_single_protocol:
                continue
            for proto in protos:
                name = '%s%s_%s_%s_%s' % (self.slice_name, router, proto.name, 'none', 'BEST')
                history = SymbolicEnum(self, protos, name + '_history')
                best = SymbolicRecord.create(self, name, router, proto, history=history)
                self.all_records.append(best)
                self.best_neighbor_per_protocol[router][proto] = best

    def _add_symbolic_records(self):
        opts = self.optimizations
        lg = self.logical_graph
        # router -> proto -> graph edge -> logical edge
        import_inverse = {}
        export_inverse = {}
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            import_inverse[router] = {}
            export_inverse[router] = {}
            for proto in self.protocols[router]:
                single_export = None
                use_single_export = opts.can_merge_export[router][proto]
                import_inverse[router][proto] = {}
                export_inverse[router][proto] = {}
                for ge in self.graph.edge_map[router]:
                    if not self.graph.is_edge_used(conf, proto, ge):
                        continue
                    iface = ge.start.name
                    if use_single_export:
                        if single_export is None:
                            name = '%s%s_%s_%s_%s' % (self.slice_name, router, proto.name,
                                                      '', 'SINGLE-EXPORT')
                            single_export = SymbolicRecord.create(self, name, router, proto)
                            self.all_records.append(single_export)
                        export_vars = single_export
                    else:
                        name = '%s%s_%s_%s_%s' % (self.slice_name, router, proto.name,
                                                  iface, 'EXPORT')
                        export_vars = SymbolicRecord.create(self, name, router, proto)
                        self.all_records.append(export_vars)
                    export_edge = LogicalEdge(ge, EdgeType.EXPORT, export_vars)

                    name = '%s%s_%s_%s_%s' % (self.slice_name, router, proto.name,
                                              iface, 'IMPORT')
                    if ge in opts.can_merge_import_export[router][proto]:
                        import_vars = SymbolicRecord.unused(name, proto)
                    else:
                        import_vars = SymbolicRecord.create(self, name, router, proto)
                        self.all_records.append(import_vars)
                    import_edge = LogicalEdge(ge, EdgeType.IMPORT, import_vars)

                    import_inverse[router][proto][ge] = import_edge
                    export_inverse[router][proto][ge] = export_edge
                    lg.logical_edges[router][proto].append([import_edge, export_edge])

        # Pair every logical edge with the opposite direction at the peer
        for router in self.graph.routers:
            for proto in self.protocols[router]:
                for edge_list in lg.logical_edges[router][proto]:
                    for le in edge_list:
                        ge = le.edge
                        if ge.peer is None:
                            continue
                        if le.is_import:
                            inverse = export_inverse[ge.peer].get(proto, None)
                        else:
                            inverse = import_inverse[ge.peer].get(proto, None)
                        if inverse is None:
                            continue
                        other = inverse.get(self.graph.other_end[ge], None)
                        if other is not None:
                            lg.other_end[le] = other

    def _add_redistribution_edges(self):
        lg = self.logical_graph
        for router in self.graph.routers:
            lg.redistribution_edges[router] = {}
            for proto in self.protocols[router]:
                edges = []
                for from_proto in sorted(lg.redistributed_protocols[router][proto],
                                         key=lambda p: p.value):
                    if from_proto == proto:
                        continue
                    record = self.best_vars(router, from_proto)
                    edges.append(LogicalRedistributionEdge(from_proto, EdgeType.IMPORT, record))
                lg.redistribution_edges[router][proto] = edges

    def _add_choice_variables(self):
        for router in self.graph.routers:
            self.choice_variables[router] = {}
            for proto in self.protocols[router]:
                choices = {}
                for le in self.collect_all_import_logical_edges(router, proto):
                    var = z3.Bool('%s_choice' % le.record.name)
                    self.all_variables.append(var)
                    choices[le] = var
                self.choice_variables[router][proto] = choices

    def _add_environment_variables(self):
        """Routes offered by eBGP peers outside of the network are free"""
        lg = self.logical_graph
        for router in self.graph.routers:
            if Protocol.BGP not in self.protocols[router]:
                continue
            for le in lg.import_edges(router, Protocol.BGP):
                ge = le.edge
                neighbor = self.graph.bgp_neighbors.get(ge, None)
                if neighbor is None or ge.end is not None:
                    continue
                name = '%s%s_%s_%s_%s' % (self.slice_name, router, Protocol.BGP.name,
                                          'ENV-%s' % neighbor.address, 'EXPORT')
                record = SymbolicRecord.create(self, name, router, Protocol.BGP)
                self.all_records.append(record)
                lg.environment_vars[le] = record

    # ACLs

    def _compute_wildcard_match(self, prefixes, field):
        return mk_or(*[self.first_bits_equal(field, p) for p in prefixes])

    def _compute_valid_range(self, ranges, field):
        acc = []
        for rng in ranges:
            if rng.start == rng.end:
                acc.append(field == rng.start)
            else:
                acc.append(z3.And(field >= rng.start, field <= rng.end))
        return mk_or(*acc)

    def _compute_tcp_flags(self, flags_list):
        acc = []
        for flags in flags_list:
            acc.append(mk_and(*[self.symbolic_packet.tcp_flags[flag] == z3.BoolVal(value)
                                for flag, value in flags.used_flags()]))
        return mk_or(*acc)

    def _compute_ip_protocols(self, protocols):
        return mk_or(*[self.symbolic_packet.ip_protocol == p for p in protocols])

    def compute_acl(self, acl):
        """
        Boolean formula that holds iff the packet is permitted by the ACL.
        Lines are folded from the last to the first, so the first matching
        line decides.
        """
        if acl is None:
            return z3.BoolVal(True)
        pkt = self.symbolic_packet
        acc = z3.BoolVal(False)
        for line in reversed(acl.lines):
            for field in line.UNSUPPORTED:
                if getattr(line, field):
                    raise UnsupportedConstructError(
                        "ACL %s matches on unsupported field %s" % (acl.name, field))
            for field in ['not_dst_ips', 'not_src_ips', 'src_or_dst_ips',
                          'not_dst_ports', 'not_src_ports', 'src_or_dst_ports',
                          'not_icmp_types', 'not_icmp_codes', 'not_ip_protocols']:
                if getattr(line, field):
                    raise UnsupportedConstructError(
                        "ACL %s matches on unsupported field %s" % (acl.name, field))
            local = []
            if line.dst_ips:
                local.append(self._compute_wildcard_match(line.dst_ips, pkt.dst_ip))
            if line.src_ips:
                local.append(self._compute_wildcard_match(line.src_ips, pkt.src_ip))
            if line.dst_ports:
                local.append(self._compute_valid_range(line.dst_ports, pkt.dst_port))
            if line.src_ports:
                local.append(self._compute_valid_range(line.src_ports, pkt.src_port))
            if line.tcp_flags:
                local.append(self._compute_tcp_flags(line.tcp_flags))
            if line.icmp_codes:
                local.append(self._compute_valid_range(line.icmp_codes, pkt.icmp_code))
            if line.icmp_types:
                local.append(self._compute_valid_range(line.icmp_types, pkt.icmp_type))
            if line.ip_protocols:
                local.append(self._compute_ip_protocols(line.ip_protocols))
            if not local:
                continue
            matches = mk_and(*local)
            if line.negate:
                matches = z3.Not(matches)
            ret = z3.BoolVal(line.action == LineAction.ACCEPT)
            acc = z3.If(matches, ret, acc)
        return acc

    def _init_acl_functions(self):
        for router in self.graph.routers:
            for ge in self.graph.edge_map[router]:
                iface = ge.start
                key = (router, iface.name)
                if iface.outgoing_filter is not None:
                    name = '%s%s_%s_OUTBOUND_%s' % (self.slice_name, router, iface.name,
                                                    iface.outgoing_filter.name)
                    var = z3.Bool(name)
                    self.all_variables.append(var)
                    self.add(var == self.compute_acl(iface.outgoing_filter))
                    self.outbound_acls[key] = var
                if iface.incoming_filter is not None:
                    name = '%s%s_%s_INBOUND_%s' % (self.slice_name, router, iface.name,
                                                   iface.incoming_filter.name)
                    var = z3.Bool(name)
                    self.all_variables.append(var)
                    self.add(var == self.compute_acl(iface.incoming_filter))
                    self.inbound_acls[key] = var

    def _init_forwarding_across(self):
        """Forwarding over an edge also needs the peer's inbound ACL to permit"""
        for router in self.graph.routers:
            self.forwards_across[router] = {}
            for ge, df in self.data_forwarding[router].items():
                in_acl = z3.BoolVal(True)
                if ge.peer is not None:
                    in_acl = self.inbound_acls.get((ge.peer, ge.end.name), in_acl)
                self.forwards_across[router][ge] = mk_and(df, in_acl)

    # Route comparison

    def _equal_helper(self, best, vars, default):
        if is_elided(best):
            return z3.BoolVal(True)
        if is_elided(vars):
            return best == default
        return best == vars

    def equal_types(self, best, vars):
        if is_elided(best.ospf_type):
            return z3.BoolVal(True)
        if is_elided(vars.ospf_type):
            return best.ospf_type.is_default()
        return best.ospf_type.mk_equal(vars.ospf_type)

    def equal_areas(self, best, vars, le):
        best_area = best.ospf_area
        if is_elided(best_area):
            return z3.BoolVal(True)
        if le is not None:
            area = le.edge.start.ospf_area
            if area is None:
                return best_area.is_default()
            return best_area.check_if_value(area)
        if is_elided(vars.ospf_area):
            return z3.BoolVal(True)
        return best_area.mk_equal(vars.ospf_area)

    def equal_ids(self, best, vars, conf, proto, le):
        if is_elided(best.router_id) or is_multipath(conf, proto):
            return z3.BoolVal(True)
        if not is_elided(vars.router_id):
            return best.router_id == vars.router_id
        if le is not None:
            peer_id = self.logical_graph.find_router_id(le, proto)
            if peer_id is not None:
                return best.router_id == peer_id
        return z3.BoolVal(True)

    def equal_histories(self, best, vars):
        if is_elided(best.protocol_history) or is_elided(vars.protocol_history):
            return z3.BoolVal(True)
        return best.protocol_history.mk_equal(vars.protocol_history)

    def equal_bgp_internal(self, best, vars):
        if is_elided(best.bgp_internal) or is_elided(vars.bgp_internal):
            return z3.BoolVal(True)
        return best.bgp_internal == vars.bgp_internal

    def equal_communities(self, best, vars):
        acc = []
        for cvar, var in best.communities.items():
            other = vars.communities.get(cvar, None)
            if other is not None:
                acc.append(var == other)
        return mk_and(*acc)

    def equal(self, conf, proto, best, vars, le, compare_communities=False):
        """The two records describe the same route"""
        default_ad = proto.default_admin_distance()
        acc = [
            self._equal_helper(best.prefix_length, vars.prefix_length, 0),
            self._equal_helper(best.admin_dist, vars.admin_dist, default_ad),
            self._equal_helper(best.local_pref, vars.local_pref, 0),
            self._equal_helper(best.metric, vars.metric, 0),
            self._equal_helper(best.med, vars.med, proto.default_med()),
            self.equal_types(best, vars),
            self.equal_areas(best, vars, le),
            self.equal_ids(best, vars, conf, proto, le),
            self.equal_histories(best, vars),
            self.equal_bgp_internal(best, vars),
        ]
        if compare_communities:
            acc.append(self.equal_communities(best, vars))
        return mk_and(*acc)

    def _ge_better_helper(self, best, vars, default, less):
        if is_elided(best):
            return z3.BoolVal(False)
        value = default if is_elided(vars) else vars
        if less:
            return best < value
        return best > value

    def _ge_equal_helper(self, best, vars, default):
        if is_elided(best):
            return z3.BoolVal(True)
        value = default if is_elided(vars) else vars
        return best == value

    def _type_helpers(self, best, vars):
        if is_elided(best.ospf_type):
            return z3.BoolVal(False), z3.BoolVal(True)
        if is_elided(vars.ospf_type):
            value = SymbolicOspfType.constant(OspfType.O)
        else:
            value = vars.ospf_type.bitvec
        return z3.ULT(best.ospf_type.bitvec, value), best.ospf_type.bitvec == value

    def _internal_helpers(self, best, vars):
        """eBGP routes are preferred to iBGP ones"""
        if is_elided(best.bgp_internal) or is_elided(vars.bgp_internal):
            return z3.BoolVal(False), z3.BoolVal(True)
        better = z3.And(z3.Not(best.bgp_internal), vars.bgp_internal)
        return better, best.bgp_internal == vars.bgp_internal

    def _tie_break(self, best, vars, conf, proto, le):
        if is_elided(best.router_id) or is_multipath(conf, proto):
            return z3.BoolVal(True)
        if not is_elided(vars.router_id):
            return best.router_id <= vars.router_id
        if le is not None:
            peer_id = self.logical_graph.find_router_id(le, proto)
            if peer_id is not None:
                return best.router_id <= peer_id
        return z3.BoolVal(True)

    def greater_or_equal(self, conf, proto, best, vars, le):
        """
        The best record is at least as preferred as vars, the comparison
        is lexicographic and nested from the last criterion to the first.
        """
        default_ad = proto.default_admin_distance()
        steps = [
            (self._ge_better_helper(best.prefix_length, vars.prefix_length, 0, False),
             self._ge_equal_helper(best.prefix_length, vars.prefix_length, 0)),
            (self._ge_better_helper(best.admin_dist, vars.admin_dist, default_ad, True),
             self._ge_equal_helper(best.admin_dist, vars.admin_dist, default_ad)),
            (self._ge_better_helper(best.local_pref, vars.local_pref, 0, False),
             self._ge_equal_helper(best.local_pref, vars.local_pref, 0)),
            (self._ge_better_helper(best.metric, vars.metric, 0, True),
             self._ge_equal_helper(best.metric, vars.metric, 0)),
            (self._ge_better_helper(best.med, vars.med, proto.default_med(), True),
             self._ge_equal_helper(best.med, vars.med, proto.default_med())),
            self._type_helpers(best, vars),
            self._internal_helpers(best, vars),
        ]
        acc = self._tie_break(best, vars, conf, proto, le)
        for better, equal in reversed(steps):
            acc = mk_or(better, mk_and(equal, acc))
        return acc

    # Constraints

    def _add_bound_constraints(self):
        pkt = self.symbolic_packet
        self.add(z3.And(pkt.dst_ip >= 0, pkt.dst_ip < 2 ** 32))
        self.add(z3.And(pkt.src_ip >= 0, pkt.src_ip < 2 ** 32))
        self.add(z3.And(pkt.dst_port >= 0, pkt.dst_port < 2 ** 16))
        self.add(z3.And(pkt.src_port >= 0, pkt.src_port < 2 ** 16))
        self.add(z3.And(pkt.icmp_type >= 0, pkt.icmp_type < 2 ** 8))
        self.add(z3.And(pkt.ip_protocol >= 0, pkt.ip_protocol < 2 ** 8))
        self.add(z3.And(pkt.icmp_code >= 0, pkt.icmp_code < 2 ** 4))
        for record in self.all_records:
            if not is_elided(record.admin_dist):
                self.add(z3.And(record.admin_dist >= 0, record.admin_dist < 2 ** 8))
            if not is_elided(record.med):
                self.add(z3.And(record.med >= 0, record.med < 2 ** 32))
            if not is_elided(record.local_pref):
                self.add(z3.And(record.local_pref >= 0, record.local_pref < 2 ** 32))
            if not is_elided(record.metric):
                self.add(record.metric >= 0)
                if record.is_env:
                    self.add(record.metric < 2 ** 8)
                self.add(record.metric < 2 ** 16)
            if not is_elided(record.prefix_length):
                self.add(z3.And(record.prefix_length >= 0,
                                record.prefix_length <= MAX_PREFIX_LENGTH))

    def _add_community_constraints(self):
        for record in self.all_records:
            for cvar, var in record.communities.items():
                if cvar.type != CommunityType.REGEX:
                    continue
                deps = [record.communities[d] for d in self.community_dependencies[cvar]
                        if d in record.communities]
                self.add(var == mk_or(*deps))

    def _add_import_constraint(self, le, vars_other, conf, proto, ge, router):
        vars = le.record
        iface = ge.start
        if not vars.is_used:
            return
        not_failed = self.encoder.symbolic_failures.failed_variable(ge) == 0
        active = self.interface_active(iface, proto)

        if proto == Protocol.CONNECTED:
            prefix = iface.prefix
            if prefix is None:
                self.add(z3.Not(vars.permitted))
                return
            relevant = z3.And(active, self.first_bits_equal(
                self.symbolic_packet.dst_ip, prefix), not_failed)
            values = mk_and(vars.permitted,
                            self.safe_eq(vars.prefix_length, prefix.prefixlen),
                            self.safe_eq(vars.admin_dist, proto.default_admin_distance()),
                            self.safe_eq(vars.local_pref, 0),
                            self.safe_eq(vars.metric, 0))
            self.add(z3.If(relevant, values, z3.Not(vars.permitted)))
            return

        if proto == Protocol.STATIC:
            acc = z3.Not(vars.permitted)
            for sr in self.graph.static_routes[router].get(iface.name, []):
                prefix = sr.network
                admin_cost = sr.admin_cost
                if admin_cost is None:
                    admin_cost = proto.default_admin_distance()
                relevant = z3.And(active, self.first_bits_equal(
                    self.symbolic_packet.dst_ip, prefix), not_failed)
                values = mk_and(vars.permitted,
                                self.safe_eq(vars.prefix_length, prefix.prefixlen),
                                self.safe_eq(vars.admin_dist, admin_cost),
                                self.safe_eq(vars.local_pref, 0),
                                self.safe_eq(vars.metric, 0))
                acc = z3.If(relevant, values, acc)
            self.add(acc)
            return

        if vars_other is None:
            self.add(z3.Not(vars.permitted))
            return
        is_root = self.relevant_origination(originated_networks(conf, proto))
        usable = z3.And(z3.Not(is_root), active, vars_other.permitted, not_failed)
        pol = self.graph.find_import_routing_policy(router, proto, ge)
        statements = pol.statements if pol is not None else [EXIT_ACCEPT]
        f = TransferFunction(self, conf, vars_other, vars, proto, proto, statements,
                             0, ge, False)
        self.add(z3.If(usable, f.compute(), z3.Not(vars.permitted)))

    def _redistribution_guard(self, router, proto, best):
        """The exported route was learned from a protocol redistributed into proto"""
        history = best.protocol_history
        if is_elided(history):
            return z3.BoolVal(True)
        protos = [proto]
        protos.extend(re.from_protocol for re in
                      self.logical_graph.redistribution_edges[router][proto])
        return mk_or(*[history.check_if_value(p) for p in protos])

    def _add_export_constraint(self, le, vars_other, conf, proto, ge, router, originations):
        vars = le.record
        iface = ge.start
        if proto in (Protocol.CONNECTED, Protocol.STATIC):
            self.add(z3.Not(vars.permitted))
            return
        if not self.graph.is_interface_active(proto, iface):
            self.add(z3.Not(vars.permitted))
            return

        cost = self.added_cost(proto, ge)
        do_export = z3.BoolVal(True)
        if (proto == Protocol.BGP and self.graph.is_ibgp(ge) and
                not is_elided(vars_other.bgp_internal)):
            # Routes learned over iBGP are not sent to iBGP peers
            do_export = z3.Not(vars_other.bgp_internal)
            cost = 0
        not_failed = self.encoder.symbolic_failures.failed_variable(ge) == 0
        active = self.interface_active(iface, proto)
        usable = mk_and(active, do_export, vars_other.permitted, not_failed,
                        self._redistribution_guard(router, proto, vars_other))

        pol = self.graph.find_export_routing_policy(router, proto, ge)
        if proto == Protocol.OSPF:
            other = pol.statements if pol is not None else [EXIT_REJECT]
            statements = [If(MatchProtocol(Protocol.OSPF), [EXIT_ACCEPT], other)]
        else:
            statements = pol.statements if pol is not None else [EXIT_ACCEPT]

        f = TransferFunction(self, conf, vars_other, vars, proto, proto, statements,
                             cost, ge, True)
        acc = z3.If(usable, f.compute(), z3.Not(vars.permitted))

        for prefix in originations:
            relevant = z3.And(active, self.first_bits_equal(
                self.symbolic_packet.dst_ip, prefix))
            values = mk_and(
                vars.permitted,
                self.safe_eq(vars.local_pref, DEFAULT_LOCAL_PREF),
                self.safe_eq(vars.admin_dist, proto.default_admin_distance()),
                self.safe_eq(vars.metric, cost),
                self.safe_eq(vars.med, DEFAULT_BGP_MED),
                self.safe_eq(vars.prefix_length, prefix.prefixlen),
                self.safe_eq_enum(vars.ospf_type, OspfType.O),
                self.safe_eq_enum(vars.ospf_area, iface.ospf_area),
                self.safe_eq(vars.bgp_internal, z3.BoolVal(False)))
            acc = z3.If(relevant, values, acc)
        self.add(acc)

    def _add_transfer_functions(self):
        lg = self.logical_graph
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            for proto in self.protocols[router]:
                originations = originated_networks(conf, proto)
                merged_export = self.optimizations.can_merge_export[router][proto]
                used_export = False
                single_export = None
                for edge_list in lg.logical_edges[router][proto]:
                    for le in edge_list:
                        ge = le.edge
                        if le.is_import:
                            vars_other = lg.find_other_vars(le)
                            self._add_import_constraint(le, vars_other, conf, proto, ge, router)
                            continue
                        if merged_export:
                            single_export = le.record
                            # The shared record is defined by the first active edge
                            if used_export or not self.graph.is_interface_active(proto, ge.start):
                                continue
                        self._add_export_constraint(le, self.best_neighbor[router], conf,
                                                    proto, ge, router, originations)
                        used_export = True
                if single_export is not None and not used_export:
                    self.add(z3.Not(single_export.permitted))

    def _add_history_constraints(self):
        for router in self.graph.routers:
            protos = self.protocols[router]
            if router in self.optimizations.has_single_protocol:
                best = self.best_neighbor[router]
                self.add(z3.Implies(best.permitted,
                                    best.protocol_history.check_if_value(protos[0])))
                continue
            for proto in protos:
                best = self.best_neighbor_per_protocol[router][proto]
                self.add(z3.Implies(best.permitted,
                                    best.protocol_history.check_if_value(proto)))

    def _add_best_per_protocol_constraints(self):
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            for proto in self.protocols[router]:
                best = self.best_vars(router, proto)
                some_permitted = []
                acc = []
                for le in self.collect_all_import_logical_edges(router, proto):
                    vars = self.correct_vars(le)
                    some_permitted.append(vars.permitted)
                    self.add(z3.Implies(vars.permitted,
                                        self.greater_or_equal(conf, proto, best, vars, le)))
                    acc.append(z3.And(vars.permitted,
                                      self.equal(conf, proto, best, vars, le,
                                                 compare_communities=True)))
                if some_permitted:
                    permitted = mk_or(*some_permitted)
                    self.add(best.permitted == permitted)
                    self.add(z3.Implies(permitted, mk_or(*acc)))
                else:
                    self.add(z3.Not(best.permitted))

    def _add_choice_per_protocol_constraints(self):
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            for proto in self.protocols[router]:
                best = self.best_vars(router, proto)
                for le, choice in self.choice_variables[router][proto].items():
                    vars = self.correct_vars(le)
                    self.add(choice == z3.And(vars.permitted,
                                              self.equal(conf, proto, best, vars, le)))

    def _add_best_overall_constraints(self):
        for router in self.graph.routers:
            if router in self.optimizations.has_single_protocol:
                continue
            conf = self.graph.configurations[router]
            best = self.best_neighbor[router]
            protos = self.protocols[router]
            if not protos:
                self.add(z3.Not(best.permitted))
                continue
            some_permitted = []
            acc = []
            for proto in protos:
                best_vars = self.best_neighbor_per_protocol[router][proto]
                some_permitted.append(best_vars.permitted)
                self.add(z3.Implies(best_vars.permitted,
                                    self.greater_or_equal(conf, proto, best, best_vars, None)))
                acc.append(z3.And(best_vars.permitted,
                                  self.equal(conf, proto, best, best_vars, None,
                                             compare_communities=True)))
            permitted = mk_or(*some_permitted)
            self.add(best.permitted == permitted)
            self.add(z3.Implies(permitted, mk_or(*acc)))

    def _add_control_forwarding_constraints(self):
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            best = self.best_neighbor[router]
            cf_map = self.control_forwarding[router]
            is_best_by_edge = {}
            for proto in self.protocols[router]:
                for le in self.collect_all_import_logical_edges(router, proto):
                    ge = le.edge
                    vars = self.correct_vars(le)
                    choice = self.choice_variables[router][proto][le]
                    is_best = z3.And(choice, self.equal(conf, proto, best, vars, le))
                    is_best_by_edge.setdefault(ge, []).append(is_best)
                    self.add(z3.Implies(is_best, cf_map[ge]))
            for ge in self.graph.edge_map[router]:
                cf = cf_map[ge]
                is_best = is_best_by_edge.get(ge, [])
                if is_best:
                    self.add(z3.Implies(z3.Not(mk_or(*is_best)), z3.Not(cf)))
                else:
                    self.add(z3.Not(cf))

    def _add_data_forwarding_constraints(self):
        for router in self.graph.routers:
            for ge in self.graph.edge_map[router]:
                acl = self.outbound_acls.get((router, ge.start.name), z3.BoolVal(True))
                cf = self.control_forwarding[router][ge]
                df = self.data_forwarding[router][ge]
                self.add(df == mk_and(cf, acl))

    def _add_unused_default_value_constraints(self):
        """A route that is not permitted takes default values"""
        for record in self.all_records:
            not_permitted = z3.Not(record.permitted)
            for _, var in record.int_variables():
                self.add(z3.Implies(not_permitted, var == 0))
            for attr in ['ospf_area', 'ospf_type', 'protocol_history']:
                value = getattr(record, attr)
                if not is_elided(value):
                    self.add(z3.Implies(not_permitted, value.is_default()))
            if not is_elided(record.bgp_internal):
                self.add(z3.Implies(not_permitted, z3.Not(record.bgp_internal)))
            for var in record.communities.values():
                self.add(z3.Implies(not_permitted, z3.Not(var)))

    def _add_inactive_link_constraints(self):
        lg = self.logical_graph
        for router in self.graph.routers:
            for proto in self.protocols[router]:
                for le in lg.import_edges(router, proto):
                    record = le.record
                    if not record.is_used:
                        continue
                    if not self.graph.is_interface_active(proto, le.edge.start):
                        self.add(z3.Not(record.permitted))

    def _ip_bounds(self, prefixes, field):
        return [self.first_bits_equal(field, p) for p in prefixes]

    def _range_bounds(self, ranges, field):
        return [z3.And(field >= r.start, field <= r.end) for r in ranges]

    def _add_header_space_constraint(self):
        hs = self.header_space
        pkt = self.symbolic_packet
        for field in hs.UNSUPPORTED:
            if getattr(hs, field):
                raise UnsupportedConstructError(
                    "Header space field %s is not supported" % field)
        if hs.dst_ips:
            self.add(mk_or(*self._ip_bounds(hs.dst_ips, pkt.dst_ip)))
        if hs.not_dst_ips:
            self.add(z3.Not(mk_or(*self._ip_bounds(hs.not_dst_ips, pkt.dst_ip))))
        if hs.src_ips:
            self.add(mk_or(*self._ip_bounds(hs.src_ips, pkt.src_ip)))
        if hs.not_src_ips:
            self.add(z3.Not(mk_or(*self._ip_bounds(hs.not_src_ips, pkt.src_ip))))
        if hs.src_or_dst_ips:
            self.add(mk_or(*(self._ip_bounds(hs.src_or_dst_ips, pkt.dst_ip) +
                             self._ip_bounds(hs.src_or_dst_ips, pkt.src_ip))))
        if hs.dst_ports:
            self.add(mk_or(*self._range_bounds(hs.dst_ports, pkt.dst_port)))
        if hs.not_dst_ports:
            self.add(z3.Not(mk_or(*self._range_bounds(hs.not_dst_ports, pkt.dst_port))))
        if hs.src_ports:
            self.add(mk_or(*self._range_bounds(hs.src_ports, pkt.src_port)))
        if hs.not_src_ports:
            self.add(z3.Not(mk_or(*self._range_bounds(hs.not_src_ports, pkt.src_port))))
        if hs.src_or_dst_ports:
            self.add(mk_or(*(self._range_bounds(hs.src_or_dst_ports, pkt.dst_port) +
                             self._range_bounds(hs.src_or_dst_ports, pkt.src_port))))
        if hs.icmp_types:
            self.add(mk_or(*self._range_bounds(hs.icmp_types, pkt.icmp_type)))
        if hs.not_icmp_types:
            self.add(z3.Not(mk_or(*self._range_bounds(hs.not_icmp_types, pkt.icmp_type))))
        if hs.icmp_codes:
            self.add(mk_or(*self._range_bounds(hs.icmp_codes, pkt.icmp_code)))
        if hs.not_icmp_codes:
            self.add(z3.Not(mk_or(*self._range_bounds(hs.not_icmp_codes, pkt.icmp_code))))
        if hs.ip_protocols:
            self.add(mk_or(*[pkt.ip_protocol == p for p in hs.ip_protocols]))
        if hs.not_ip_protocols:
            self.add(z3.Not(mk_or(*[pkt.ip_protocol == p for p in hs.not_ip_protocols])))
        if hs.tcp_flags:
            self.add(self._compute_tcp_flags(hs.tcp_flags))

    def _compute_encoding(self):
        self._add_bound_constraints()
        self._add_community_constraints()
        self._add_transfer_functions()
        self._add_history_constraints()
        self._add_best_per_protocol_constraints()
        self._add_choice_per_protocol_constraints()
        self._add_best_overall_constraints()
        self._add_control_forwarding_constraints()
        self._add_data_forwarding_constraints()
        self._add_unused_default_value_constraints()
        self._add_inactive_link_constraints()
        self._add_header_space_constraint()
        self.log.debug("Slice %s: %d records, %d variables", self.slice_name,
                       len(self.all_records), len(self.all_variables))
