"""
Logical edges: one record per (graph edge, direction, protocol)
"""

from collections import namedtuple

from netsmt.common import EdgeType
from netsmt.common import ip_to_long
from netsmt.optimizations import router_id


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class LogicalEdge(namedtuple('LogicalEdge', ['edge', 'edge_type', 'record'])):
    """A direction of a graph edge and the route record flowing over it"""
    __slots__ = ()

    @property
    def is_import(self):
        return self.edge_type == EdgeType.IMPORT

    def __str__(self):
        return '%s (%s) %s' % (self.edge, self.edge_type, self.record.name)


class LogicalRedistributionEdge(namedtuple('LogicalRedistributionEdge',
                                           ['from_protocol', 'edge_type', 'record'])):
    """
    A protocol taking routes from another protocol of the same router,
    the record is the best record of the source protocol.
    """
    __slots__ = ()

    def __str__(self):
        return 'redistribute %s (%s) %s' % (self.from_protocol, self.edge_type,
                                            self.record.name)


class LogicalGraph(object):
    """
    Logical edges of every router and protocol of a slice.

    logical_edges[router][proto] is a list with one entry per used graph
    edge, each entry is [import_edge, export_edge].
    """
    def __init__(self, graph):
        self.graph = graph
        self.logical_edges = {}
        self.other_end = {}
        self.environment_vars = {}
        self.redistributed_protocols = {}
        self.redistribution_edges = {}

    def edges(self, router, proto):
        """Iterate over all logical edges of a router and protocol"""
        for edge_list in self.logical_edges[router][proto]:
            for le in edge_list:
                yield le

    def import_edges(self, router, proto):
        return [le for le in self.edges(router, proto) if le.is_import]

    def export_edges(self, router, proto):
        return [le for le in self.edges(router, proto) if not le.is_import]

    def find_other_vars(self, le):
        """The record on the other side of a logical edge, None if nothing"""
        other = self.other_end.get(le, None)
        if other is not None:
            return other.record
        return self.environment_vars.get(le, None)

    def find_router_id(self, le, proto):
        """
        Router id of the peer across a logical edge. Outside of the network
        the address of the BGP neighbor stands for the router id.
        """
        other = self.other_end.get(le, None)
        if other is not None:
            peer_conf = self.graph.configurations[other.edge.router]
            return router_id(peer_conf, proto)
        neighbor = self.graph.bgp_neighbors.get(le.edge, None)
        if neighbor is not None and neighbor.address is not None:
            return ip_to_long(neighbor.address)
        return None

    def __str__(self):
        lines = []
        for router in sorted(self.logical_edges.keys()):
            for proto, edge_lists in self.logical_edges[router].items():
                lines.append('%s %s' % (router, proto))
                for edge_list in edge_lists:
                    for le in edge_list:
                        lines.append('  %s' % le)
                for re in self.redistribution_edges.get(router, {}).get(proto, []):
                    lines.append('  %s' % re)
        return '\n'.join(lines)
