"""
Vendor independent configuration model consumed by the encoder
"""

import ipaddress
from collections import namedtuple

from netsmt.common import LineAction
from netsmt.common import TCP_FLAGS
from netsmt.common import as_network


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


SubRange = namedtuple('SubRange', ['start', 'end'])

# A prefix and the range of prefix lengths it matches
PrefixRange = namedtuple('PrefixRange', ['prefix', 'length_range'])

RouteFilterLine = namedtuple('RouteFilterLine', ['action', 'prefix', 'length_range'])
RouteFilterList = namedtuple('RouteFilterList', ['name', 'lines'])

CommunityListLine = namedtuple('CommunityListLine', ['action', 'regex'])
CommunityList = namedtuple('CommunityList', ['name', 'lines'])

RoutingPolicy = namedtuple('RoutingPolicy', ['name', 'statements'])

Link = namedtuple('Link', ['router1', 'iface1', 'router2', 'iface2'])

StaticRoute = namedtuple('StaticRoute', ['network', 'next_hop_interface',
                                         'next_hop_ip', 'admin_cost'])

GeneratedRoute = namedtuple('GeneratedRoute', ['network', 'summary_only'])


def subrange(start, end=None):
    if end is None:
        end = start
    return SubRange(start, end)


def prefix_range(prefix, lower=None, upper=None):
    """Prefix range matching lengths [lower, upper], the exact length by default"""
    net = as_network(prefix)
    if lower is None:
        lower = net.prefixlen
    if upper is None:
        upper = lower
    return PrefixRange(net, SubRange(lower, upper))


def route_filter_line(action, prefix, lower=None, upper=None):
    rng = prefix_range(prefix, lower, upper)
    return RouteFilterLine(LineAction(action), rng.prefix, rng.length_range)


def static_route(network, next_hop_interface=None, next_hop_ip=None, admin_cost=1):
    if next_hop_ip is not None:
        next_hop_ip = ipaddress.IPv4Address(next_hop_ip)
    return StaticRoute(as_network(network), next_hop_interface, next_hop_ip, admin_cost)


class TcpFlags(object):
    """
    A set of TCP flags to match, only flags with use_<flag> set are checked.
    """
    def __init__(self, **kwargs):
        for flag in TCP_FLAGS:
            setattr(self, flag, kwargs.pop(flag, False))
            setattr(self, 'use_%s' % flag, kwargs.pop('use_%s' % flag, False))
        if kwargs:
            raise TypeError("Unknown TCP flags %s" % sorted(kwargs.keys()))

    def used_flags(self):
        return [(flag, getattr(self, flag)) for flag in TCP_FLAGS
                if getattr(self, 'use_%s' % flag)]


class HeaderSpace(object):
    """
    A set of packets described by address, port, ICMP and protocol ranges.
    Every `not_` field is a complement that is excluded from the space.
    """
    FIELDS = ['dst_ips', 'not_dst_ips', 'src_ips', 'not_src_ips',
              'src_or_dst_ips', 'dst_ports', 'not_dst_ports',
              'src_ports', 'not_src_ports', 'src_or_dst_ports',
              'icmp_types', 'not_icmp_types', 'icmp_codes',
              'not_icmp_codes', 'ip_protocols', 'not_ip_protocols',
              'tcp_flags']

    # Fields the encoder can not express
    UNSUPPORTED = ['dscps', 'not_dscps', 'ecns', 'not_ecns', 'states',
                   'fragment_offsets', 'not_fragment_offsets']

    def __init__(self, **kwargs):
        for field in self.FIELDS + self.UNSUPPORTED:
            setattr(self, field, list(kwargs.pop(field, [])))
        if kwargs:
            raise TypeError("Unknown header space fields %s" % sorted(kwargs.keys()))
        for field in self.FIELDS:
            if field.endswith('_ips'):
                setattr(self, field, [as_network(p) for p in getattr(self, field)])

    def copy(self):
        kwargs = {}
        for field in self.FIELDS + self.UNSUPPORTED:
            kwargs[field] = list(getattr(self, field))
        return HeaderSpace(**kwargs)

    def __repr__(self):
        used = ['%s=%s' % (f, getattr(self, f)) for f in self.FIELDS if getattr(self, f)]
        return 'HeaderSpace(%s)' % ', '.join(used)


class IpAccessListLine(HeaderSpace):
    """One line of an ACL: a header space and the action on a match"""
    def __init__(self, action, name=None, negate=False, **kwargs):
        super(IpAccessListLine, self).__init__(**kwargs)
        self.action = LineAction(action)
        self.name = name
        self.negate = negate


IpAccessList = namedtuple('IpAccessList', ['name', 'lines'])


class Interface(object):
    def __init__(self, name, address=None, active=True, ospf_enabled=False,
                 ospf_cost=None, ospf_area=None, bandwidth=None,
                 incoming_filter=None, outgoing_filter=None):
        self.name = name
        self.address = ipaddress.IPv4Interface(address) if address else None
        self.active = active
        self.ospf_enabled = ospf_enabled
        self.ospf_cost = ospf_cost
        self.ospf_area = ospf_area
        self.bandwidth = bandwidth
        self.incoming_filter = incoming_filter
        self.outgoing_filter = outgoing_filter

    @property
    def prefix(self):
        """The connected network of this interface"""
        if self.address is None:
            return None
        return self.address.network

    def __repr__(self):
        return 'Interface(%s, %s)' % (self.name, self.address)


class BgpNeighbor(object):
    def __init__(self, address, remote_as, local_as, local_ip=None,
                 import_policy=None, export_policy=None, send_community=False):
        self.address = ipaddress.IPv4Address(address)
        self.remote_as = remote_as
        self.local_as = local_as
        self.local_ip = ipaddress.IPv4Address(local_ip) if local_ip else None
        self.import_policy = import_policy
        self.export_policy = export_policy
        self.send_community = send_community

    @property
    def is_ebgp(self):
        return self.remote_as != self.local_as


class BgpProcess(object):
    def __init__(self, router_id=None, neighbors=None, multipath_ebgp=False,
                 multipath_ibgp=False):
        self.router_id = router_id
        self.neighbors = list(neighbors or [])
        self.multipath_ebgp = multipath_ebgp
        self.multipath_ibgp = multipath_ibgp

    @property
    def multipath(self):
        return self.multipath_ebgp and self.multipath_ibgp


class OspfProcess(object):
    def __init__(self, router_id=None, export_policy=None,
                 reference_bandwidth=None, multipath=True):
        self.router_id = router_id
        self.export_policy = export_policy
        self.reference_bandwidth = reference_bandwidth
        self.multipath = multipath


class Configuration(object):
    """The configuration of one router"""
    def __init__(self, hostname, interfaces=None, static_routes=None,
                 generated_routes=None, bgp_process=None, ospf_process=None,
                 route_filter_lists=None, community_lists=None,
                 ip_access_lists=None, routing_policies=None):
        self.hostname = hostname
        self.interfaces = {}
        for iface in interfaces or []:
            self.interfaces[iface.name] = iface
        self.static_routes = list(static_routes or [])
        self.generated_routes = list(generated_routes or [])
        self.bgp_process = bgp_process
        self.ospf_process = ospf_process
        self.route_filter_lists = {}
        for lst in route_filter_lists or []:
            self.route_filter_lists[lst.name] = lst
        self.community_lists = {}
        for lst in community_lists or []:
            self.community_lists[lst.name] = lst
        self.ip_access_lists = {}
        for acl in ip_access_lists or []:
            self.ip_access_lists[acl.name] = acl
        self.routing_policies = {}
        for pol in routing_policies or []:
            self.routing_policies[pol.name] = pol

    def get_interface(self, name):
        if name not in self.interfaces:
            raise KeyError("Router '%s' has no interface '%s'" % (self.hostname, name))
        return self.interfaces[name]

    def __repr__(self):
        return 'Configuration(%s)' % self.hostname


class Network(object):
    """A set of router configurations and the links between them"""
    def __init__(self, configurations, links=None):
        if isinstance(configurations, dict):
            self.configurations = dict(configurations)
        else:
            self.configurations = dict((c.hostname, c) for c in configurations)
        self.links = list(links or [])

    def __repr__(self):
        return 'Network(%s)' % sorted(self.configurations.keys())
