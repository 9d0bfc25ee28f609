"""
Properties checked on top of a finished encoding.

PropertyAdder instruments a slice with extra variables (reachability,
path length, load, loops), the compute_* functions build one encoding
per query, add the negation of the property and ask the solver for a
counterexample.
"""

import itertools
import logging
import re

import z3

from netsmt.config import HeaderSpace
from netsmt.encoder import Encoder
from netsmt.encoder import VerificationResult
from netsmt.encoder import Verdict
from netsmt.errors import StructuralMismatchError
from netsmt.graph import Graph
from netsmt.optimizations import originated_networks
from netsmt.transfer import mk_and
from netsmt.transfer import mk_or


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


LOG = logging.getLogger(__name__)


class PropertyAdder(object):
    """
    Adds the variables and constraints of a property to an encoder slice.
    Every instrument_* method returns the new variables keyed by router.
    """
    def __init__(self, enc_slice):
        self.log = logging.getLogger('%s.%s' % (
            self.__module__, self.__class__.__name__))
        self.enc = enc_slice
        self._reachability = {}

    @property
    def graph(self):
        return self.enc.graph

    def _instrument_reachability(self, target, is_target, target_reach):
        """
        reachable_r holds iff the packet forwarded by r ends up at the
        target. A reachable router must be supported by a next hop with a
        smaller id, so a forwarding cycle can not support itself, and a
        router forwarding to a reachable next hop is reachable.
        """
        if target in self._reachability:
            return self._reachability[target]
        enc = self.enc
        reachable = {}
        ids = {}
        for router in self.graph.routers:
            var = z3.Bool('%sreachable_%s_%s' % (enc.slice_name, target, router))
            id_var = z3.Int('%sreachable-id_%s_%s' % (enc.slice_name, target, router))
            enc.all_variables.extend([var, id_var])
            reachable[router] = var
            ids[router] = id_var
        for router in self.graph.routers:
            var = reachable[router]
            id_var = ids[router]
            enc.add(id_var >= 0)
            if is_target(router):
                enc.add(var == target_reach(router))
                continue
            support = []
            closure = []
            for ge in self.graph.edge_map[router]:
                if ge.peer is None:
                    continue
                fwd = enc.forwards_across[router][ge]
                peer_reach = reachable[ge.peer]
                support.append(z3.And(fwd, peer_reach, id_var > ids[ge.peer]))
                closure.append(z3.And(fwd, peer_reach))
            enc.add(z3.Implies(var, mk_or(*support)))
            enc.add(z3.Implies(mk_or(*closure), var))
        self.log.debug("Instrumented reachability to %s", target)
        self._reachability[target] = reachable
        return reachable

    def instrument_reachability(self, ge):
        """Reachability of every router to the destination edge `ge`"""
        target = '%s-%s' % (ge.router, ge.start.name)
        return self._instrument_reachability(
            target, lambda router: router == ge.router,
            lambda router: self.enc.data_forwarding[router][ge])

    def instrument_reachability_router(self, router):
        """Reachability of every router to `router` itself"""
        return self._instrument_reachability(
            router, lambda r: r == router, lambda r: z3.BoolVal(True))

    def instrument_path_length(self, ge):
        """
        Number of routers a packet crosses to leave through `ge`, -1 when
        it never does.
        """
        enc = self.enc
        lengths = {}
        for router in self.graph.routers:
            var = z3.Int('%spath-length_%s-%s_%s' % (enc.slice_name, ge.router,
                                                     ge.start.name, router))
            enc.all_variables.append(var)
            lengths[router] = var
        for router in self.graph.routers:
            x = lengths[router]
            enc.add(x >= -1)
            if router == ge.router:
                df = enc.data_forwarding[router][ge]
                enc.add(z3.Implies(df, x == 1))
                enc.add(z3.Implies(z3.Not(df), x == -1))
                continue
            acc_none = []
            acc_some = []
            for edge in self.graph.edge_map[router]:
                if edge.peer is None:
                    continue
                fwd = enc.forwards_across[router][edge]
                y = lengths[edge.peer]
                acc_none.append(z3.Or(y < 0, z3.Not(fwd)))
                acc_some.append(z3.And(y >= 0, fwd, x == y + 1))
            none = mk_and(*acc_none)
            enc.add(z3.Implies(none, x == -1))
            enc.add(z3.Implies(z3.Not(none), mk_or(*acc_some)))
        return lengths

    def instrument_load(self, ge):
        """
        Number of routers whose traffic to `ge` passes through each router,
        the router itself included. Routers that can not reach `ge` carry
        no load.
        """
        enc = self.enc
        reachable = self.instrument_reachability(ge)
        loads = {}
        for router in self.graph.routers:
            var = z3.Int('%sload_%s-%s_%s' % (enc.slice_name, ge.router,
                                              ge.start.name, router))
            enc.all_variables.append(var)
            loads[router] = var
        for router in self.graph.routers:
            incoming = []
            for edge in self.graph.edge_map[router]:
                if edge.peer is None:
                    continue
                other = self.graph.other_end[edge]
                fwd = enc.forwards_across[edge.peer][other]
                incoming.append(z3.If(fwd, loads[edge.peer], 0))
            total = z3.Sum([z3.IntVal(1)] + incoming)
            enc.add(loads[router] == z3.If(reachable[router], total, 0))
        return loads

    def instrument_loop(self, router):
        """
        on-loop_<router>_r holds when the traffic forwarded by r comes
        back to `router`. Returns the variable of `router` itself.
        """
        enc = self.enc
        on_loop = {}
        for r in self.graph.routers:
            var = z3.Bool('%son-loop_%s_%s' % (enc.slice_name, router, r))
            enc.all_variables.append(var)
            on_loop[r] = var
        for r in self.graph.routers:
            acc = []
            for ge in self.graph.edge_map[r]:
                if ge.peer is None:
                    continue
                df = enc.data_forwarding[r][ge]
                if ge.peer == router:
                    acc.append(df)
                else:
                    acc.append(z3.And(df, on_loop[ge.peer]))
            enc.add(on_loop[r] == mk_or(*acc))
        return on_loop[router]

    def all_equal(self, exprs):
        exprs = list(exprs)
        return mk_and(*[x == y for x, y in zip(exprs, exprs[1:])])


class PathRegexes(object):
    """
    Regular expressions selecting the destination edges (dst router and
    iface) and the source routers of a query. A `not_` pattern excludes
    what it matches, None excludes nothing.
    """
    def __init__(self, dst='.*', not_dst=None, iface='.*', not_iface=None,
                 src='.*', not_src=None):
        self.dst = dst or '.*'
        self.not_dst = not_dst
        self.iface = iface or '.*'
        self.not_iface = not_iface
        self.src = src or '.*'
        self.not_src = not_src

    @staticmethod
    def _matches(pattern, not_pattern, value):
        if re.fullmatch(pattern, value) is None:
            return False
        if not_pattern is not None and re.fullmatch(not_pattern, value) is not None:
            return False
        return True

    def matches_dst(self, router):
        return self._matches(self.dst, self.not_dst, router)

    def matches_iface(self, iface):
        return self._matches(self.iface, self.not_iface, iface)

    def matches_src(self, router):
        return self._matches(self.src, self.not_src, router)

    def __repr__(self):
        return 'PathRegexes(dst=%s, iface=%s, src=%s)' % (self.dst, self.iface, self.src)


def find_matching_nodes(graph, regexes):
    """Routers selected as sources"""
    return [router for router in graph.routers if regexes.matches_src(router)]


def find_matching_edges(graph, regexes):
    """Graph edges selected as destinations, only edges with a network"""
    acc = []
    for router in graph.routers:
        if not regexes.matches_dst(router):
            continue
        for ge in graph.edge_map[router]:
            if ge.start.prefix is None:
                continue
            if regexes.matches_iface(ge.start.name):
                acc.append(ge)
    return acc


def _edge_label(ge):
    return '%s,%s' % (ge.router, ge.start.name)


def _destination_header_space(header_space, ge):
    """Without destination addresses the query is about the edge's network"""
    if header_space.dst_ips:
        return header_space
    hs = header_space.copy()
    hs.dst_ips.append(ge.start.prefix)
    return hs


def _source_routers(graph, regexes):
    sources = find_matching_nodes(graph, regexes)
    if not sources:
        LOG.warning("No router matches the source pattern %s", regexes.src)
    return sources


def _check_destinations(network, header_space, regexes, failures, add_property):
    """
    Encode the network once per destination edge and add the negated
    property built by add_property(property_adder, ge, sources).

    :return: dict of 'router,iface' to VerificationResult
    """
    graph = Graph(network.configurations, network.links)
    destinations = find_matching_edges(graph, regexes)
    sources = _source_routers(graph, regexes)
    if not destinations:
        LOG.warning("No destination edge matches %s", regexes)
    results = {}
    for ge in destinations:
        label = _edge_label(ge)
        hs = _destination_header_space(header_space, ge)
        enc = Encoder(network, hs, failures=failures)
        pa = PropertyAdder(enc.main_slice)
        enc.add(add_property(pa, ge, sources))
        results[label] = enc.verify(label=label)
    return results


def compute_forwarding(network, header_space, failures=0):
    """
    Solve the encoding without any property. The model, when one exists,
    is a possible forwarding of the packets in the header space, so a
    VIOLATED verdict here means a forwarding was found.
    """
    enc = Encoder(network, header_space, failures=failures)
    if enc.main_slice.logical_graph.environment_vars:
        LOG.warning("Forwarding depends on routes learned from %d environment peers",
                    len(enc.main_slice.logical_graph.environment_vars))
    return enc.verify(label='forwarding')


def compute_reachability(network, header_space, regexes, failures=0):
    """Every source router reaches each destination edge"""
    def add_property(pa, ge, sources):
        reachable = pa.instrument_reachability(ge)
        return mk_or(*[z3.Not(reachable[r]) for r in sources])
    return _check_destinations(network, header_space, regexes, failures, add_property)


def compute_router_reachability(network, header_space, regexes, failures=0):
    """
    Every source router sends the packets of the header space through
    each destination router. Interface patterns are not used.

    :return: dict of router name to VerificationResult
    """
    graph = Graph(network.configurations, network.links)
    targets = [router for router in graph.routers if regexes.matches_dst(router)]
    sources = _source_routers(graph, regexes)
    if not targets:
        LOG.warning("No destination router matches %s", regexes.dst)
    results = {}
    for target in targets:
        enc = Encoder(network, header_space, failures=failures)
        pa = PropertyAdder(enc.main_slice)
        reachable = pa.instrument_reachability_router(target)
        enc.add(mk_or(*[z3.Not(reachable[r]) for r in sources]))
        results[target] = enc.verify(label=target)
    return results


def compute_bounded_length(network, header_space, regexes, bound, failures=0):
    """No source router reaches a destination edge over more than `bound` routers"""
    def add_property(pa, ge, sources):
        lengths = pa.instrument_path_length(ge)
        return mk_or(*[lengths[r] > bound for r in sources])
    return _check_destinations(network, header_space, regexes, failures, add_property)


def compute_equal_length(network, header_space, regexes, failures=0):
    """All source routers are the same number of hops away from a destination edge"""
    def add_property(pa, ge, sources):
        lengths = pa.instrument_path_length(ge)
        return z3.Not(pa.all_equal([lengths[r] for r in sources]))
    return _check_destinations(network, header_space, regexes, failures, add_property)


def compute_load_balance(network, header_space, regexes, threshold=0, failures=0):
    """
    The neighbors of the source routers carry loads that differ by at
    most `threshold`.
    """
    def add_property(pa, ge, sources):
        loads = pa.instrument_load(ge)
        peers = set()
        for router in sources:
            peers.update(pa.graph.neighbors[router])
        peer_loads = [loads[p] for p in sorted(peers)]
        acc = [z3.Or(x - y > threshold, y - x > threshold)
               for x, y in itertools.combinations(peer_loads, 2)]
        return mk_or(*acc)
    return _check_destinations(network, header_space, regexes, failures, add_property)


def compute_multipath_consistency(network, header_space, regexes, failures=0):
    """
    Traffic split over several paths is treated the same on all of them:
    when a router reaches the destination, every edge it uses also
    delivers the packet.
    """
    def add_property(pa, ge, sources):
        enc = pa.enc
        reachable = pa.instrument_reachability(ge)
        acc = []
        for router in pa.graph.routers:
            all_paths = []
            for edge in pa.graph.edge_map[router]:
                fwd = enc.forwards_across[router][edge]
                cf = enc.control_forwarding[router][edge]
                peer_reach = z3.BoolVal(True)
                if edge.peer is not None:
                    peer_reach = reachable[edge.peer]
                all_paths.append(z3.Implies(cf, z3.And(fwd, peer_reach)))
            acc.append(z3.Not(z3.Implies(reachable[router], mk_and(*all_paths))))
        return mk_or(*acc)
    return _check_destinations(network, header_space, regexes, failures, add_property)


def compute_black_hole(network, failures=0):
    """
    A router inside the network (without edges to the environment)
    receives traffic from a neighbor and forwards it nowhere.
    """
    enc = Encoder(network, HeaderSpace(), failures=failures)
    enc_slice = enc.main_slice
    graph = enc.graph
    acc = []
    for router in graph.routers:
        edges = graph.edge_map[router]
        if any(ge.end is None for ge in edges):
            continue
        is_fwd_to = []
        for ge in edges:
            other = graph.other_end[ge]
            is_fwd_to.append(enc_slice.data_forwarding[ge.peer][other])
        does_not_fwd = mk_and(*[z3.Not(df) for df in
                                enc_slice.data_forwarding[router].values()])
        acc.append(z3.And(mk_or(*is_fwd_to), does_not_fwd))
    enc.add(mk_or(*acc))
    return enc.verify(label='black-hole')


def compute_routing_loop(network, failures=0):
    """
    Forwarding loops through routers with static routes, the only routes
    that can bypass the loop prevention of the routing protocols.
    """
    graph = Graph(network.configurations, network.links)
    prefixes = []
    for router in graph.routers:
        for _, routes in sorted(graph.static_routes[router].items()):
            prefixes.extend(sr.network for sr in routes)
    routers = [r for r in graph.routers if graph.configurations[r].static_routes]
    enc = Encoder(network, HeaderSpace(dst_ips=prefixes), failures=failures)
    pa = PropertyAdder(enc.main_slice)
    enc.add(mk_or(*[pa.instrument_loop(router) for router in routers]))
    return enc.verify(label='routing-loop')


def _interface_edges(graph, router):
    return dict((ge.start.name, ge) for ge in graph.edge_map[router])


def _logical_edge_index(enc_slice, router):
    index = {}
    for proto in enc_slice.protocols[router]:
        for le in enc_slice.logical_graph.edges(router, proto):
            index[(proto, le.edge.start.name, le.edge_type)] = le
    return index


def _ignored_destinations(enc_slice, router):
    """Destinations the router originates itself are local differences"""
    conf = enc_slice.graph.configurations[router]
    acc = []
    for proto in enc_slice.protocols[router]:
        dest = enc_slice.relevant_origination(originated_networks(conf, proto))
        acc.append(z3.Not(dest))
    return mk_and(*acc)


def _local_consistency_constraints(enc1, enc2, r1, r2):
    """
    Returns (assumptions, required) for two single router encodings.
    Raises StructuralMismatchError when the routers can not be compared.
    """
    slice1 = enc1.main_slice
    slice2 = enc2.main_slice
    edges1 = _interface_edges(enc1.graph, r1)
    edges2 = _interface_edges(enc2.graph, r2)
    if set(edges1.keys()) != set(edges2.keys()):
        raise StructuralMismatchError(
            "Routers %s and %s have different interfaces" % (r1, r2))
    if set(slice1.protocols[r1]) != set(slice2.protocols[r2]):
        raise StructuralMismatchError(
            "Routers %s and %s run different protocols" % (r1, r2))
    conf1 = enc1.graph.configurations[r1]
    index2 = _logical_edge_index(slice2, r2)

    equal_envs = []
    equal_outputs = []
    for proto in slice1.protocols[r1]:
        for le1 in slice1.logical_graph.edges(r1, proto):
            iface = le1.edge.start.name
            le2 = index2.get((proto, iface, le1.edge_type), None)
            if le2 is None:
                raise StructuralMismatchError(
                    "Router %s has no %s %s edge on %s" % (r2, proto, le1.edge_type, iface))
            if le1.is_import:
                vars1 = slice1.logical_graph.environment_vars.get(le1, None)
                vars2 = slice2.logical_graph.environment_vars.get(le2, None)
                if vars1 is None and vars2 is None:
                    continue
                if vars1 is None or vars2 is None:
                    raise StructuralMismatchError(
                        "Only one of %s and %s has a %s peer on %s" % (r1, r2, proto, iface))
                if set(vars1.communities.keys()) != set(vars2.communities.keys()):
                    raise StructuralMismatchError(
                        "Routers %s and %s match on different communities" % (r1, r2))
                equal_envs.append(vars1.permitted == vars2.permitted)
                equal_envs.append(slice1.equal(conf1, proto, vars1, vars2, le1))
                equal_envs.append(slice1.equal_communities(vars1, vars2))
            else:
                out1 = le1.record
                out2 = le2.record
                equal_outputs.append(out1.permitted == out2.permitted)
                equal_outputs.append(slice1.equal(conf1, proto, out1, out2, le1))

    equal_acls = []
    same_forwarding = []
    for iface in sorted(edges1.keys()):
        acl1 = slice1.inbound_acls.get((r1, iface), z3.BoolVal(True))
        acl2 = slice2.inbound_acls.get((r2, iface), z3.BoolVal(True))
        equal_acls.append(acl1 == acl2)
        df1 = slice1.data_forwarding[r1][edges1[iface]]
        df2 = slice2.data_forwarding[r2][edges2[iface]]
        same_forwarding.append(df1 == df2)

    valid_dest = mk_and(_ignored_destinations(slice1, r1),
                        _ignored_destinations(slice2, r2))
    equal_packets = slice1.symbolic_packet.mk_equal(slice2.symbolic_packet)
    assumptions = mk_and(*(equal_envs + [equal_packets, valid_dest]))
    required = mk_and(*(equal_outputs + equal_acls + same_forwarding))
    return assumptions, required


def compute_local_consistency(network, regexes):
    """
    Compares consecutive pairs of the selected routers: given the same
    routes from their peers and the same packet, they must export the
    same routes, filter the same packets and forward the same way.

    :return: dict of 'r1<-->r2' to VerificationResult
    """
    graph = Graph(network.configurations, network.links)
    routers = find_matching_nodes(graph, regexes)
    results = {}
    hs = HeaderSpace()
    for r1, r2 in zip(routers, routers[1:]):
        label = '%s<-->%s' % (r1, r2)
        enc1 = Encoder(network, hs, routers=[r1])
        enc2 = Encoder(network, hs, routers=[r2], solver=enc1.solver, slice_id=1)
        try:
            assumptions, required = _local_consistency_constraints(enc1, enc2, r1, r2)
        except StructuralMismatchError as err:
            LOG.warning("Skipping %s: %s", label, err)
            results[label] = VerificationResult(Verdict.INCOMPARABLE, reason=str(err),
                                                label=label)
            continue
        enc2.add(assumptions)
        enc2.add(z3.Not(required))
        results[label] = enc2.verify(label=label)
    return results
