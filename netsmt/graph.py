"""
Topology graph: routers, their interfaces and the peerings between them.
"""

import logging
from collections import namedtuple

import networkx as nx

from netsmt.common import BGP_COMMON_FILTER_LIST_NAME
from netsmt.common import EDGE_TYPE
from netsmt.common import ENVIRONMENT_EDGE
from netsmt.common import ENVIRONMENT_TYPE
from netsmt.common import GRAPH_EDGES
from netsmt.common import INTERNAL_EDGE
from netsmt.common import NODE_TYPE
from netsmt.common import Protocol
from netsmt.common import VERTEX_TYPE
from netsmt.common import draw
from netsmt.errors import ConfigurationError
from netsmt.policy import get_policy


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class GraphEdge(namedtuple('GraphEdge', ['start', 'end', 'router', 'peer'])):
    """
    One direction of a physical link. `start` and `end` are the interfaces
    at the router and the peer, `end` and `peer` are None when the other
    side is outside of the modeled network.
    """
    __slots__ = ()

    @property
    def is_environment(self):
        return self.peer is None

    def __str__(self):
        if self.peer is None:
            return '%s,%s --> _,_' % (self.router, self.start.name)
        return '%s,%s --> %s,%s' % (self.router, self.start.name,
                                    self.peer, self.end.name)


class Graph(object):
    """
    Directed adjacency model of the network built from the router
    configurations and the physical links between their interfaces.

    :param configurations: dict of router name to Configuration
    :param links: list of Link
    :param routers: optional subset of routers to model, links to routers
                    outside of the subset become environment edges
    """
    def __init__(self, configurations, links, routers=None):
        self.log = logging.getLogger('%s.%s' % (
            self.__module__, self.__class__.__name__))
        if routers is None:
            self.configurations = dict(configurations)
        else:
            self.configurations = dict(
                (name, conf) for name, conf in configurations.items()
                if name in routers)
        self.links = list(links)
        self.edge_map = {}
        self.other_end = {}
        self.neighbors = {}
        self.static_routes = {}
        self.bgp_neighbors = {}
        self.area_ids = {}
        self._init_graph()
        self._init_static_routes()
        self._init_bgp_neighbors()
        self._init_area_ids()

    @property
    def routers(self):
        return sorted(self.configurations.keys())

    def _get_interface(self, router, iface_name):
        conf = self.configurations[router]
        if iface_name not in conf.interfaces:
            raise ConfigurationError(
                "Link references missing interface '%s' on router '%s'" % (
                    iface_name, router))
        return conf.interfaces[iface_name]

    def _link_ends(self):
        """Map each (router, iface) to the set of (router, iface) it connects to"""
        ends = {}
        for link in self.links:
            one = (link.router1, link.iface1)
            two = (link.router2, link.iface2)
            for here, there in [(one, two), (two, one)]:
                if here[0] not in self.configurations:
                    continue
                # Fail early on dangling references inside the modeled network
                self._get_interface(*here)
                ends.setdefault(here, set()).add(there)
        return ends

    def _init_graph(self):
        ends = self._link_ends()
        for router in self.routers:
            conf = self.configurations[router]
            graph_edges = []
            neighbors = set()
            for name in sorted(conf.interfaces.keys()):
                iface = conf.interfaces[name]
                peers = ends.get((router, name), set())
                if not peers:
                    if iface.prefix is not None:
                        graph_edges.append(GraphEdge(iface, None, router, None))
                    continue
                if len(peers) > 1:
                    self.log.warning(
                        "Interface %s of %s connects to %d interfaces, "
                        "modeled as an environment edge",
                        name, router, len(peers))
                    graph_edges.append(GraphEdge(iface, None, router, None))
                    continue
                peer, peer_iface = list(peers)[0]
                if peer not in self.configurations:
                    graph_edges.append(GraphEdge(iface, None, router, None))
                    continue
                if peer == router:
                    continue
                other = self._get_interface(peer, peer_iface)
                ge1 = GraphEdge(iface, other, router, peer)
                ge2 = GraphEdge(other, iface, peer, router)
                self.other_end[ge1] = ge2
                graph_edges.append(ge1)
                neighbors.add(peer)
            self.edge_map[router] = graph_edges
            self.neighbors[router] = neighbors

    def _init_static_routes(self):
        for router in self.routers:
            conf = self.configurations[router]
            routes = {}
            self.static_routes[router] = routes
            for ge in self.edge_map[router]:
                here = ge.start
                there = ge.end
                for sr in conf.static_routes:
                    if sr.next_hop_interface == here.name:
                        routes.setdefault(here.name, []).append(sr)
                        continue
                    # Next hop ip is the directly connected peer interface
                    is_next_hop = (sr.next_hop_ip is not None and
                                   there is not None and
                                   there.address is not None and
                                   there.address.ip == sr.next_hop_ip)
                    if is_next_hop:
                        routes.setdefault(here.name, []).append(sr)

    def _init_bgp_neighbors(self):
        for router in self.routers:
            conf = self.configurations[router]
            if conf.bgp_process is None:
                continue
            for ge in self.edge_map[router]:
                prefix = ge.start.prefix
                if prefix is None:
                    continue
                for neighbor in conf.bgp_process.neighbors:
                    if neighbor.address in prefix:
                        self.bgp_neighbors[ge] = neighbor
            connected = set(n for ge, n in self.bgp_neighbors.items()
                            if ge.router == router)
            for neighbor in conf.bgp_process.neighbors:
                if neighbor not in connected:
                    self.log.warning(
                        "BGP session %s -> %s is not directly connected "
                        "and is not modeled", router, neighbor.address)

    def _init_area_ids(self):
        for router in self.routers:
            conf = self.configurations[router]
            areas = set()
            if conf.ospf_process is not None:
                for iface in conf.interfaces.values():
                    if iface.ospf_enabled and iface.ospf_area is not None:
                        areas.add(iface.ospf_area)
            self.area_ids[router] = areas

    def is_ibgp(self, ge):
        neighbor = self.bgp_neighbors.get(ge, None)
        return neighbor is not None and not neighbor.is_ebgp

    def is_router_running(self, router, proto):
        conf = self.configurations[router]
        if proto == Protocol.OSPF:
            return conf.ospf_process is not None
        if proto == Protocol.BGP:
            return conf.bgp_process is not None
        if proto == Protocol.STATIC:
            return len(conf.static_routes) > 0
        if proto == Protocol.CONNECTED:
            return True
        raise ConfigurationError("Unknown protocol %s" % proto)

    def is_interface_active(self, proto, iface):
        if proto == Protocol.OSPF:
            return iface.active and iface.ospf_enabled
        return iface.active

    def is_interface_used(self, conf, proto, iface):
        if proto == Protocol.STATIC:
            routes = self.static_routes[conf.hostname].get(iface.name, [])
            return iface.active and len(routes) > 0
        return True

    def is_edge_used(self, conf, proto, ge):
        """BGP edges carry routes only when a session is configured on them"""
        if proto == Protocol.BGP:
            return ge in self.bgp_neighbors
        return True

    def find_common_routing_policy(self, router, proto):
        conf = self.configurations[router]
        if proto == Protocol.OSPF:
            name = conf.ospf_process.export_policy
            if name is None:
                return None
            return get_policy(conf, name)
        if proto == Protocol.BGP:
            for name in sorted(conf.routing_policies.keys()):
                if BGP_COMMON_FILTER_LIST_NAME in name:
                    return conf.routing_policies[name]
            return None
        if proto in (Protocol.STATIC, Protocol.CONNECTED):
            return None
        raise ConfigurationError("No common routing policy for protocol %s" % proto)

    def find_import_routing_policy(self, router, proto, ge):
        conf = self.configurations[router]
        if proto in (Protocol.CONNECTED, Protocol.STATIC, Protocol.OSPF):
            return None
        if proto == Protocol.BGP:
            neighbor = self.bgp_neighbors.get(ge, None)
            if neighbor is None or neighbor.import_policy is None:
                return None
            return get_policy(conf, neighbor.import_policy)
        raise ConfigurationError("No import routing policy for protocol %s" % proto)

    def find_export_routing_policy(self, router, proto, ge):
        conf = self.configurations[router]
        if proto in (Protocol.CONNECTED, Protocol.STATIC):
            return None
        if proto == Protocol.OSPF:
            return self.find_common_routing_policy(router, proto)
        if proto == Protocol.BGP:
            neighbor = self.bgp_neighbors.get(ge, None)
            # no neighbor (e.g., loopback) or no export policy
            if neighbor is None or neighbor.export_policy is None:
                return None
            return get_policy(conf, neighbor.export_policy)
        raise ConfigurationError("No export routing policy for protocol %s" % proto)

    def to_networkx(self):
        """The topology as a networkx DiGraph, environments are extra nodes"""
        g = nx.DiGraph()
        for router in self.routers:
            g.add_node(router, **{VERTEX_TYPE: NODE_TYPE, 'label': router})
        for router in self.routers:
            for ge in self.edge_map[router]:
                if ge.is_environment:
                    peer = 'env_%s_%s' % (router, ge.start.name)
                    g.add_node(peer, **{VERTEX_TYPE: ENVIRONMENT_TYPE,
                                        'shape': 'box', 'label': str(ge.start.prefix)})
                    edge_type = ENVIRONMENT_EDGE
                else:
                    peer = ge.peer
                    edge_type = INTERNAL_EDGE
                if g.has_edge(router, peer):
                    g[router][peer][GRAPH_EDGES].append(ge)
                else:
                    g.add_edge(router, peer, **{EDGE_TYPE: edge_type,
                                                GRAPH_EDGES: [ge],
                                                'label': ge.start.name})
        return g

    def draw(self, out):
        draw(self.to_networkx(), out)

    def __str__(self):
        lines = []
        for router in self.routers:
            lines.append('Router: %s' % router)
            for ge in self.edge_map[router]:
                lines.append('  edge: %s' % ge)
            for iface, routes in sorted(self.static_routes[router].items()):
                for sr in routes:
                    lines.append('  static: %s --> %s' % (iface, sr.network))
        return '\n'.join(lines)
