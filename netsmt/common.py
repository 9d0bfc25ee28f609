"""
Common definitions for the control plane encoding
"""

import ipaddress
from enum import Enum

from networkx.drawing import nx_pydot


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


# Keys for annotations used in nx graphs
VERTEX_TYPE = 'vertex_type'
EDGE_TYPE = 'edge_type'
NODE_TYPE = '"node"'
ENVIRONMENT_TYPE = '"environment"'
INTERNAL_EDGE = '"internal"'
ENVIRONMENT_EDGE = '"environment"'
GRAPH_EDGES = 'graph_edges'

# Reserved names generated by the configuration front end
BGP_NETWORK_FILTER_LIST_NAME = 'BGP_NETWORK_NETWORKS_FILTER'
BGP_COMMON_FILTER_LIST_NAME = 'BGP_COMMON_EXPORT_POLICY'

MAIN_SLICE_NAME = 'SLICE-MAIN_'

DEFAULT_CISCO_VLAN_OSPF_COST = 1
DEFAULT_REFERENCE_BANDWIDTH = 100e6
DEFAULT_LOCAL_PREF = 100
DEFAULT_BGP_MED = 100
IBGP_ADMIN_DISTANCE = 200

# Sentinel for route attributes that are not modeled
ELIDED = 'ELIDED?Value'


def is_elided(value):
    """Returns True if the attribute is not modeled by a variable"""
    return value is ELIDED


class Protocol(Enum):
    """List all protocols"""
    CONNECTED = 'connected'
    STATIC = 'static'
    OSPF = 'ospf'
    BGP = 'bgp'
    # Pseudo protocol naming the overall best record of a router
    BEST = 'best'

    def __str__(self):
        return self.name

    def is_best(self):
        return self is Protocol.BEST

    def default_admin_distance(self, internal=False):
        if self is Protocol.BGP and internal:
            return IBGP_ADMIN_DISTANCE
        return DEFAULT_ADMIN_DISTANCE.get(self, 0)

    def default_med(self):
        return DEFAULT_BGP_MED if self is Protocol.BGP else 0

    def max_metric(self):
        """None when the protocol metric never overflows"""
        return MAX_METRIC.get(self, None)


DEFAULT_ADMIN_DISTANCE = {
    Protocol.CONNECTED: 0,
    Protocol.STATIC: 1,
    Protocol.OSPF: 110,
    Protocol.BGP: 20,
}

MAX_METRIC = {
    Protocol.OSPF: 65535,
    Protocol.BGP: 255,
}

TCP_FLAGS = ['ack', 'cwr', 'ece', 'fin', 'psh', 'rst', 'syn', 'urg']

# Order in which the protocols of a router are encoded
ROUTING_PROTOCOLS = [Protocol.OSPF, Protocol.BGP,
                     Protocol.CONNECTED, Protocol.STATIC]


class EdgeType(Enum):
    IMPORT = 'IMPORT'
    EXPORT = 'EXPORT'

    def __str__(self):
        return self.value


class OspfType(Enum):
    """OSPF route types, in order of preference"""
    O = 0
    OIA = 1
    E1 = 2
    E2 = 3

    def is_external(self):
        return self in (OspfType.E1, OspfType.E2)


class LineAction(Enum):
    ACCEPT = 'accept'
    REJECT = 'reject'


def ip_to_long(ip):
    """Convert an IPv4 address (string or object) to an integer"""
    return int(ipaddress.IPv4Address(ip))


def long_to_ip(value):
    return str(ipaddress.IPv4Address(value))


def as_network(prefix):
    """Normalize a prefix given as a string or network object"""
    if isinstance(prefix, ipaddress.IPv4Network):
        return prefix
    return ipaddress.IPv4Network(prefix, strict=False)


def prefix_range_bounds(prefix):
    """Returns (first, last) addresses of a prefix as integers"""
    net = as_network(prefix)
    return int(net.network_address), int(net.broadcast_address)


def draw(g, out):
    """
    Write the graph in a dot file.

    This function creates a shallow copy of the graph and removes
    all unnecessary attributes for drawing, otherwise dotx wont be able to
    visualize the graph.
    """
    def _allowed_attrs(attrs):
        new_attrs = {}
        if attrs.get('shape', None):
            new_attrs['shape'] = attrs['shape']
        if attrs.get('style', None):
            new_attrs['style'] = attrs['style']
        if attrs.get('label', None) is not None:
            new_attrs['label'] = '"%s"' % attrs['label']
        return new_attrs
    clean_g = g.copy()
    for n, attrs in clean_g.nodes(data=True):
        allowed = _allowed_attrs(attrs)
        attrs.clear()
        attrs.update(allowed)
    for src, dst, attrs in clean_g.edges(data=True):
        allowed = _allowed_attrs(attrs)
        attrs.clear()
        attrs.update(allowed)
    nx_pydot.write_dot(clean_g, out)
