"""
The encoder owns the solver: it builds the topology graph, the link
failure variables and the main slice, then checks the formula and decodes
counterexamples.
"""

import ipaddress
import logging
import time
from enum import Enum

import z3

from netsmt.common import DEFAULT_CISCO_VLAN_OSPF_COST
from netsmt.common import DEFAULT_REFERENCE_BANDWIDTH
from netsmt.common import MAIN_SLICE_NAME
from netsmt.common import TCP_FLAGS
from netsmt.common import is_elided
from netsmt.common import long_to_ip
from netsmt.community import CommunityType
from netsmt.encoder_slice import EncoderSlice
from netsmt.errors import ConfigurationError
from netsmt.graph import Graph


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class Verdict(Enum):
    VERIFIED = 'verified'
    VIOLATED = 'violated'
    UNKNOWN = 'unknown'
    INCOMPARABLE = 'incomparable'

    def __str__(self):
        return self.value


class VerificationStats(object):
    """Size of the formula and time spent in the solver"""
    def __init__(self, num_nodes=0, num_edges=0, num_variables=0,
                 num_constraints=0, seconds=0.0):
        self.num_nodes = num_nodes
        self.num_edges = num_edges
        self.num_variables = num_variables
        self.num_constraints = num_constraints
        self.seconds = seconds

    def __str__(self):
        return ('nodes: %d, edges: %d, variables: %d, constraints: %d, '
                'time: %.3fs' % (self.num_nodes, self.num_edges, self.num_variables,
                                 self.num_constraints, self.seconds))


class VerificationResult(object):
    """
    Outcome of a query. When the property is violated the counterexample
    is decoded into:

    * model: every variable of the encoding and its value
    * packet_model: header fields of the offending packet
    * environment_model: routes advertised by peers outside of the network
    * forwarding_model: edges the packet is forwarded on
    * failure_model: failed links
    """
    def __init__(self, verdict, model=None, packet_model=None,
                 environment_model=None, forwarding_model=None,
                 failure_model=None, stats=None, reason=None, label=None):
        self.verdict = verdict
        self.model = model or {}
        self.packet_model = packet_model or {}
        self.environment_model = environment_model or {}
        self.forwarding_model = forwarding_model or []
        self.failure_model = failure_model or []
        self.stats = stats
        self.reason = reason
        self.label = label

    @property
    def verified(self):
        return self.verdict == Verdict.VERIFIED

    def describe(self):
        """Human readable rendering of the result"""
        lines = []
        if self.label:
            lines.append('%s: %s' % (self.label, self.verdict))
        else:
            lines.append('Result: %s' % self.verdict)
        if self.reason:
            lines.append('Reason: %s' % self.reason)
        if self.verdict == Verdict.VIOLATED:
            lines.append('Packet:')
            for field, value in sorted(self.packet_model.items()):
                lines.append('  %s: %s' % (field, value))
            if self.environment_model:
                lines.append('Environment messages:')
                for name, attrs in sorted(self.environment_model.items()):
                    lines.append('  %s' % name)
                    for attr, value in sorted(attrs.items()):
                        lines.append('    %s: %s' % (attr, value))
            if self.failure_model:
                lines.append('Failed links:')
                for name in self.failure_model:
                    lines.append('  %s' % name)
            lines.append('Forwarding:')
            for edge in self.forwarding_model:
                lines.append('  %s' % edge)
        if self.stats is not None:
            lines.append('Stats: %s' % self.stats)
        return '\n'.join(lines)

    def __repr__(self):
        return 'VerificationResult(%s)' % self.verdict


class SymbolicFailures(object):
    """
    One 0/1 integer per link telling whether the link failed. Links to
    the environment are keyed by (router, interface), internal links by
    the sorted pair of routers.
    """
    def __init__(self):
        self.failed_internal_links = {}
        self.failed_edge_links = {}

    def failed_variable(self, ge):
        if ge.peer is None:
            return self.failed_edge_links[(ge.router, ge.start.name)]
        key = tuple(sorted([ge.router, ge.peer]))
        return self.failed_internal_links[key]

    def all_variables(self):
        ret = [var for _, var in sorted(self.failed_internal_links.items())]
        ret.extend(var for _, var in sorted(self.failed_edge_links.items()))
        return ret


class Encoder(object):
    """
    Builds the formula of a network for a header space.

    :param network: the Network to encode
    :param header_space: HeaderSpace of the main slice
    :param routers: optional subset of routers to model
    :param failures: maximum number of links that may fail
    :param solver: share the solver of another encoder
    :param slice_id: distinguishes the variables of encoders sharing a solver
    :param debug: track every constraint to report unsat cores
    """
    def __init__(self, network, header_space, routers=None, failures=0,
                 solver=None, slice_id=0, debug=False):
        self.log = logging.getLogger('%s.%s' % (
            self.__module__, self.__class__.__name__))
        self.network = network
        self.header_space = header_space
        self.failures = failures
        self.slice_id = slice_id
        self.debug = debug
        self.all_variables = []
        self.num_constraints = 0
        self.tracked = {}
        self._next_id = 0
        if solver is None:
            if debug:
                solver = z3.Solver()
            else:
                solver = z3.Then('simplify', 'solve-eqs', 'smt').solver()
        self.solver = solver
        self.graph = Graph(network.configurations, network.links, routers=routers)
        self._init_ospf_costs()
        self.symbolic_failures = SymbolicFailures()
        self._init_failed_link_variables()
        self._add_failed_constraints(failures)
        self.slices = {}
        self.main_slice = EncoderSlice(self, header_space, self.graph,
                                       self._name_prefix() + MAIN_SLICE_NAME)
        self.slices[self.main_slice.slice_name] = self.main_slice
        self.log.info("Encoded %d routers: %d variables, %d constraints",
                      len(self.graph.routers), len(self.all_variables),
                      self.num_constraints)

    def _name_prefix(self):
        if self.slice_id == 0:
            return ''
        return '%d_' % self.slice_id

    def generate_id(self):
        """Fresh number for SSA variable names"""
        self._next_id += 1
        return self._next_id

    def add(self, constraint):
        self.num_constraints += 1
        if self.debug:
            name = '%sconstraint-%d' % (self._name_prefix(), self.num_constraints)
            self.tracked[name] = constraint
            self.solver.assert_and_track(constraint, z3.Bool(name))
        else:
            self.solver.add(constraint)

    def unsat_core(self):
        """Constraints responsible for the last unsat answer, needs debug"""
        if not self.debug:
            raise ValueError("Unsat cores are only tracked in debug mode")
        return [self.tracked.get(str(c), c) for c in self.solver.unsat_core()]

    def _init_ospf_costs(self):
        """Derive missing OSPF costs from the reference bandwidth"""
        for router in self.graph.routers:
            conf = self.graph.configurations[router]
            if conf.ospf_process is None:
                continue
            reference = conf.ospf_process.reference_bandwidth
            if reference is None:
                reference = DEFAULT_REFERENCE_BANDWIDTH
            for name in sorted(conf.interfaces.keys()):
                iface = conf.interfaces[name]
                if not iface.active or not iface.ospf_enabled:
                    continue
                if iface.ospf_cost is not None:
                    continue
                if name.startswith('Vlan'):
                    iface.ospf_cost = DEFAULT_CISCO_VLAN_OSPF_COST
                    continue
                if iface.bandwidth is None:
                    raise ConfigurationError(
                        "Interface %s of %s has no bandwidth to derive the OSPF cost" % (
                            name, router))
                iface.ospf_cost = max(int(reference / iface.bandwidth), 1)

    def _init_failed_link_variables(self):
        prefix = self._name_prefix()
        failures = self.symbolic_failures
        for router in self.graph.routers:
            for ge in self.graph.edge_map[router]:
                if ge.peer is None:
                    key = (router, ge.start.name)
                    if key in failures.failed_edge_links:
                        continue
                    var = z3.Int('%sFAILED-EDGE_%s_%s' % (prefix, router, ge.start.name))
                    failures.failed_edge_links[key] = var
                else:
                    key = tuple(sorted([router, ge.peer]))
                    if key in failures.failed_internal_links:
                        continue
                    var = z3.Int('%sFAILED-INTERNAL_%s_%s' % (prefix, key[0], key[1]))
                    failures.failed_internal_links[key] = var
                self.all_variables.append(var)
                self.add(z3.And(var >= 0, var <= 1))

    def _add_failed_constraints(self, k):
        variables = self.symbolic_failures.all_variables()
        if not variables:
            return
        if k == 0:
            for var in variables:
                self.add(var == 0)
        else:
            self.add(z3.Sum(variables) <= k)

    def _stats(self, seconds):
        num_edges = sum(len(self.graph.neighbors[r]) for r in self.graph.routers)
        return VerificationStats(len(self.graph.routers), num_edges,
                                 len(self.all_variables), self.num_constraints, seconds)

    def _eval(self, model, expr):
        return model.eval(expr, model_completion=True)

    def _build_model(self, model):
        ret = {}
        for var in self.all_variables:
            ret[str(var)] = str(self._eval(model, var))
        return ret

    def _build_packet_model(self, model, enc):
        pkt = enc.symbolic_packet
        ret = {}
        ret['dstIp'] = long_to_ip(self._eval(model, pkt.dst_ip).as_long())
        src_ip = self._eval(model, pkt.src_ip).as_long()
        if src_ip != 0:
            ret['srcIp'] = long_to_ip(src_ip)
        for field, var in [('dstPort', pkt.dst_port), ('srcPort', pkt.src_port),
                           ('icmpCode', pkt.icmp_code), ('icmpType', pkt.icmp_type),
                           ('ipProtocol', pkt.ip_protocol)]:
            value = self._eval(model, var).as_long()
            if value != 0:
                ret[field] = value
        for flag in TCP_FLAGS:
            if z3.is_true(self._eval(model, pkt.tcp_flags[flag])):
                ret['tcp%s' % flag.capitalize()] = True
        return ret

    def _build_environment_model(self, model, enc):
        ret = {}
        dst_ip = self._eval(model, enc.symbolic_packet.dst_ip).as_long()
        for le, record in enc.logical_graph.environment_vars.items():
            if not z3.is_true(self._eval(model, record.permitted)):
                continue
            attrs = {}
            length = self._eval(model, record.prefix_length).as_long()
            net = ipaddress.IPv4Network((dst_ip, length), strict=False)
            attrs['prefix'] = str(net)
            for attr, label in [('admin_dist', 'administrative distance'),
                                ('local_pref', 'local preference'),
                                ('metric', 'protocol metric'),
                                ('med', 'med')]:
                var = getattr(record, attr)
                if not is_elided(var):
                    attrs[label] = self._eval(model, var).as_long()
            comms = []
            for cvar, var in sorted(record.communities.items(), key=lambda x: x[0].value):
                if cvar.type == CommunityType.EXACT and z3.is_true(self._eval(model, var)):
                    comms.append(cvar.value)
            if comms:
                attrs['communities'] = ' '.join(comms)
            ret[record.name] = attrs
        return ret

    def _build_forwarding_model(self, model, enc):
        ret = []
        for router in self.graph.routers:
            for ge, var in enc.data_forwarding[router].items():
                if z3.is_true(self._eval(model, var)):
                    ret.append(str(ge))
        return sorted(ret)

    def _build_failure_model(self, model):
        ret = []
        for var in self.symbolic_failures.all_variables():
            if self._eval(model, var).as_long() == 1:
                ret.append(str(var))
        return ret

    def verify(self, label=None):
        """Check the formula, satisfiable means the property is violated"""
        start = time.time()
        result = self.solver.check()
        seconds = time.time() - start
        stats = self._stats(seconds)
        self.log.info("Solver answered %s in %.3fs", result, seconds)
        if result == z3.unsat:
            return VerificationResult(Verdict.VERIFIED, stats=stats, label=label)
        if result == z3.unknown:
            reason = self.solver.reason_unknown()
            self.log.warning("Solver returned unknown: %s", reason)
            return VerificationResult(Verdict.UNKNOWN, stats=stats, reason=reason,
                                      label=label)
        model = self.solver.model()
        enc = self.main_slice
        return VerificationResult(
            Verdict.VIOLATED,
            model=self._build_model(model),
            packet_model=self._build_packet_model(model, enc),
            environment_model=self._build_environment_model(model, enc),
            forwarding_model=self._build_forwarding_model(model, enc),
            failure_model=self._build_failure_model(model),
            stats=stats, label=label)
