"""
Static analysis of the configurations that decides which variables a
slice needs. Every function here is pure: it reads the topology graph and
the configurations and returns new values.
"""

import logging
from collections import namedtuple

from netsmt.common import BGP_COMMON_FILTER_LIST_NAME
from netsmt.common import BGP_NETWORK_FILTER_LIST_NAME
from netsmt.common import Protocol
from netsmt.common import ROUTING_PROTOCOLS
from netsmt.common import ip_to_long
from netsmt.errors import ConfigurationError
from netsmt.policy import CallExpr
from netsmt.policy import If
from netsmt.policy import SetLocalPreference
from netsmt.policy import SetMetric
from netsmt.policy import SetOspfMetricType
from netsmt.policy import StaticStatement
from netsmt.policy import Statements
from netsmt.policy import get_policy
from netsmt.policy import walk


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


ENABLE_IMPORT_EXPORT_MERGE_OPTIMIZATION = True
ENABLE_EXPORT_MERGE_OPTIMIZATION = True
ENABLE_SLICING_OPTIMIZATION = True


LOG = logging.getLogger(__name__)


Optimizations = namedtuple('Optimizations', [
    'keep_local_pref', 'keep_admin_dist', 'keep_med', 'keep_ospf_type',
    'protocols', 'need_router_id', 'routers_with_router_id',
    'need_bgp_internal', 'has_single_protocol', 'can_merge_export',
    'can_merge_import_export', 'relevant_aggregates',
    'suppressed_aggregates'])


def originated_networks(conf, proto):
    """Prefixes a router injects into a protocol by itself"""
    if proto == Protocol.OSPF:
        return [iface.prefix for _, iface in sorted(conf.interfaces.items())
                if iface.active and iface.ospf_enabled and iface.prefix is not None]
    if proto == Protocol.BGP:
        ret = []
        for name in sorted(conf.route_filter_lists.keys()):
            if BGP_NETWORK_FILTER_LIST_NAME in name:
                ret.extend(line.prefix for line in conf.route_filter_lists[name].lines)
        return ret
    if proto == Protocol.CONNECTED:
        return [iface.prefix for _, iface in sorted(conf.interfaces.items())
                if iface.prefix is not None]
    if proto == Protocol.STATIC:
        return [sr.network for sr in conf.static_routes]
    raise ConfigurationError("Unknown protocol %s" % proto)


def overlaps(p1, p2):
    return p1.overlaps(p2)


def overlaps_header_space(header_space, prefix):
    """An empty destination set stands for every address"""
    if not header_space.dst_ips:
        return True
    return any(overlaps(prefix, p) for p in header_space.dst_ips)


def has_relevant_originated_route(conf, proto, header_space):
    return any(overlaps_header_space(header_space, p)
               for p in originated_networks(conf, proto))


def is_multipath(conf, proto):
    if proto in (Protocol.CONNECTED, Protocol.STATIC):
        return True
    if proto == Protocol.OSPF:
        return conf.ospf_process is None or conf.ospf_process.multipath
    if proto == Protocol.BGP:
        return conf.bgp_process is None or conf.bgp_process.multipath
    raise ConfigurationError("Unknown protocol %s" % proto)


def router_id(conf, proto):
    """Router id as an integer, 0 when not configured"""
    process = None
    if proto == Protocol.BGP:
        process = conf.bgp_process
    elif proto == Protocol.OSPF:
        process = conf.ospf_process
    if process is None or process.router_id is None:
        return 0
    if isinstance(process.router_id, int):
        return process.router_id
    return ip_to_long(process.router_id)


def _any_statement(graph, stmt_type):
    """True if some policy of some router contains a statement type"""
    for router in graph.routers:
        conf = graph.configurations[router]
        for name in sorted(conf.routing_policies.keys()):
            for node in walk(conf.routing_policies[name].statements, conf):
                if isinstance(node, stmt_type):
                    return True
    return False


def compute_keep_local_pref(graph):
    if not ENABLE_SLICING_OPTIMIZATION:
        return True
    return _any_statement(graph, SetLocalPreference)


def compute_keep_admin_dist(graph):
    if not ENABLE_SLICING_OPTIMIZATION:
        return True
    if _any_statement(graph, SetMetric):
        return True
    # Static routes with a non default distance compete with other protocols
    default = Protocol.STATIC.default_admin_distance()
    for router in graph.routers:
        for sr in graph.configurations[router].static_routes:
            if sr.admin_cost is not None and sr.admin_cost != default:
                return True
    return False


def compute_keep_med(graph):
    return not ENABLE_SLICING_OPTIMIZATION


def compute_keep_ospf_type(graph):
    if not ENABLE_SLICING_OPTIMIZATION:
        return True
    if _any_statement(graph, SetOspfMetricType):
        return True
    area_ids = set()
    for router in graph.routers:
        area_ids.update(graph.area_ids[router])
    return len(area_ids) > 1


def compute_protocols(graph, header_space):
    """
    Protocols encoded per router. Connected and static routes are only
    kept when they originate something inside the header space.
    """
    protocols = {}
    for router in graph.routers:
        conf = graph.configurations[router]
        protos = []
        for proto in ROUTING_PROTOCOLS:
            if not graph.is_router_running(router, proto):
                continue
            if ENABLE_SLICING_OPTIMIZATION and proto in (Protocol.CONNECTED, Protocol.STATIC):
                if not has_relevant_originated_route(conf, proto, header_space):
                    continue
            protos.append(proto)
        protocols[router] = protos
    return protocols


def compute_router_id_needed(graph, protocols):
    """Router ids only break ties when a single path must be picked"""
    need = {}
    routers = set()
    for router in graph.routers:
        conf = graph.configurations[router]
        need[router] = {}
        for proto in protocols[router]:
            needed = not is_multipath(conf, proto)
            need[router][proto] = needed
            if needed:
                routers.add(router)
    return need, routers


def compute_need_bgp_internal(graph, protocols):
    routers = set()
    for router in graph.routers:
        if Protocol.BGP not in protocols[router]:
            continue
        if any(graph.is_ibgp(ge) for ge in graph.edge_map[router]):
            routers.add(router)
    return routers


def is_default_bgp_export(conf, neighbor):
    """
    True when the export policy of a neighbor is missing or only defers to
    the common export policy: if call(COMMON) then accept else reject.
    """
    if neighbor is None or neighbor.export_policy is None:
        return True
    statements = get_policy(conf, neighbor.export_policy).statements
    if len(statements) != 1 or not isinstance(statements[0], If):
        return False
    stmt = statements[0]
    if len(stmt.true_statements) != 1 or len(stmt.false_statements) != 1:
        return False
    s1 = stmt.true_statements[0]
    s2 = stmt.false_statements[0]
    if not isinstance(s1, StaticStatement) or not isinstance(s2, StaticStatement):
        return False
    if s1.kind != Statements.EXIT_ACCEPT or s2.kind != Statements.EXIT_REJECT:
        return False
    if not isinstance(stmt.guard, CallExpr):
        return False
    return BGP_COMMON_FILTER_LIST_NAME in stmt.guard.policy


def can_merge_export(graph, router, proto, failures):
    """All export edges of a protocol can share one record"""
    if not ENABLE_EXPORT_MERGE_OPTIMIZATION:
        return False
    if proto in (Protocol.CONNECTED, Protocol.STATIC):
        return True
    conf = graph.configurations[router]
    # Per link failure variables make every export edge different
    if failures > 0:
        return False
    edges = graph.edge_map[router]
    if proto == Protocol.OSPF:
        all_active = all(graph.is_interface_active(proto, ge.start) for ge in edges)
        single_area = len(graph.area_ids[router]) <= 1
        costs = set(ge.start.ospf_cost for ge in edges)
        return all_active and single_area and len(costs) <= 1
    if proto == Protocol.BGP:
        neighbors = [graph.bgp_neighbors[ge] for ge in edges if ge in graph.bgp_neighbors]
        all_default = all(is_default_bgp_export(conf, n) for n in conf.bgp_process.neighbors)
        all_ebgp = all(n.is_ebgp for n in neighbors)
        same_community = len(set(n.send_community for n in neighbors)) <= 1
        return all_default and all_ebgp and same_community
    raise ConfigurationError("Unknown protocol %s" % proto)


def has_export_variables(graph, protocols, ge, proto):
    """
    The neighbor runs the same protocol on the corresponding interface,
    so it has export variables towards this router.
    """
    if ge.peer is None:
        return False
    if proto not in protocols[ge.peer]:
        return False
    peer_conf = graph.configurations[ge.peer]
    other = graph.other_end[ge]
    return (graph.is_interface_used(peer_conf, proto, ge.end) and
            graph.is_edge_used(peer_conf, proto, other))


def is_identity_import(graph, ge, proto):
    """The import transfer function on an edge changes nothing"""
    if not graph.is_interface_active(proto, ge.start):
        return False
    if proto == Protocol.BGP:
        neighbor = graph.bgp_neighbors.get(ge, None)
        if neighbor is None or neighbor.import_policy is not None:
            return False
        other = graph.other_end[ge]
        peer_neighbor = graph.bgp_neighbors.get(other, None)
        if peer_neighbor is None:
            return False
        return neighbor.send_community == peer_neighbor.send_community
    return True


def compute_can_merge_import_export(graph, protocols, header_space):
    ret = {}
    for router in graph.routers:
        conf = graph.configurations[router]
        ret[router] = {}
        for proto in protocols[router]:
            edges = set()
            relevant_proto = proto not in (Protocol.CONNECTED, Protocol.STATIC)
            if ENABLE_IMPORT_EXPORT_MERGE_OPTIMIZATION and relevant_proto:
                is_not_root = not has_relevant_originated_route(conf, proto, header_space)
                if is_not_root:
                    for ge in graph.edge_map[router]:
                        if (has_export_variables(graph, protocols, ge, proto) and
                                is_identity_import(graph, ge, proto)):
                            edges.add(ge)
            ret[router][proto] = edges
    return ret


def compute_aggregates(graph, header_space):
    """
    Generated routes that can cover the destinations of the slice, and
    the subset of them that suppress more specific routes.
    """
    relevant = {}
    suppressed = {}
    for router in graph.routers:
        conf = graph.configurations[router]
        relevant[router] = [gr for gr in conf.generated_routes
                            if overlaps_header_space(header_space, gr.network)]
        suppressed[router] = set(gr.network for gr in relevant[router] if gr.summary_only)
    return relevant, suppressed


def compute_optimizations(graph, header_space, failures=0):
    """
    Decide which variables the slice for a header space needs.

    :param graph: the topology Graph
    :param header_space: HeaderSpace of the slice
    :param failures: number of links allowed to fail
    :return: Optimizations
    """
    protocols = compute_protocols(graph, header_space)
    need_router_id, routers_with_router_id = compute_router_id_needed(graph, protocols)
    merge_export = {}
    for router in graph.routers:
        merge_export[router] = {}
        for proto in protocols[router]:
            merge_export[router][proto] = can_merge_export(graph, router, proto, failures)
    relevant_aggregates, suppressed_aggregates = compute_aggregates(graph, header_space)
    opts = Optimizations(
        keep_local_pref=compute_keep_local_pref(graph),
        keep_admin_dist=compute_keep_admin_dist(graph),
        keep_med=compute_keep_med(graph),
        keep_ospf_type=compute_keep_ospf_type(graph),
        protocols=protocols,
        need_router_id=need_router_id,
        routers_with_router_id=routers_with_router_id,
        need_bgp_internal=compute_need_bgp_internal(graph, protocols),
        has_single_protocol=set(r for r in graph.routers if len(protocols[r]) == 1),
        can_merge_export=merge_export,
        can_merge_import_export=compute_can_merge_import_export(
            graph, protocols, header_space),
        relevant_aggregates=relevant_aggregates,
        suppressed_aggregates=suppressed_aggregates,
    )
    LOG.debug("Optimizations: local pref %s, admin distance %s, med %s, ospf type %s",
              opts.keep_local_pref, opts.keep_admin_dist, opts.keep_med,
              opts.keep_ospf_type)
    return opts
