"""
Read a network (router configurations, links and routing policies) from
its JSON description.

A policy node is a dict with a "type" key naming the construct, e.g.:

    {"type": "If",
     "guard": {"type": "MatchCommunitySet",
               "community_set": {"type": "InlineCommunitySet",
                                 "communities": ["30:1"]}},
     "true_statements": [{"type": "SetLocalPreference",
                          "local_pref": {"type": "LiteralInt", "value": 200}},
                         {"type": "ExitAccept"}],
     "false_statements": [{"type": "ExitAccept"}]}
"""

import json
import logging

from netsmt.common import LineAction
from netsmt.common import OspfType
from netsmt.common import Protocol
from netsmt.config import BgpNeighbor
from netsmt.config import BgpProcess
from netsmt.config import CommunityList
from netsmt.config import CommunityListLine
from netsmt.config import Configuration
from netsmt.config import GeneratedRoute
from netsmt.config import HeaderSpace
from netsmt.config import Interface
from netsmt.config import IpAccessList
from netsmt.config import IpAccessListLine
from netsmt.config import Link
from netsmt.config import Network
from netsmt.config import OspfProcess
from netsmt.config import RouteFilterList
from netsmt.config import RoutingPolicy
from netsmt.config import TcpFlags
from netsmt.config import as_network
from netsmt.config import prefix_range
from netsmt.config import route_filter_line
from netsmt.config import static_route
from netsmt.config import subrange
from netsmt.errors import ConfigurationError
from netsmt.errors import UnsupportedConstructError
from netsmt import policy


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


LOG = logging.getLogger(__name__)


STATIC_STATEMENTS = dict((kind.value, policy.StaticStatement(kind))
                         for kind in policy.Statements)
STATIC_BOOLEAN_EXPRS = dict((kind.value, policy.StaticBooleanExpr(kind))
                            for kind in policy.BooleanExprs)


def _node_type(node):
    if not isinstance(node, dict) or 'type' not in node:
        raise UnsupportedConstructError("Policy node without a type: %s" % (node,))
    return node['type']


def _enum(enum_type, value, by_name=False):
    """Convert a JSON value to a member of enum_type, by value or by name"""
    try:
        if by_name:
            return enum_type[value]
        return enum_type(value)
    except (KeyError, ValueError):
        raise UnsupportedConstructError("Unknown %s: %s" % (enum_type.__name__, value))


def load_int_expr(node):
    if isinstance(node, int):
        return policy.LiteralInt(node)
    node_type = _node_type(node)
    if node_type == 'LiteralInt':
        return policy.LiteralInt(node['value'])
    if node_type == 'IncrementMetric':
        return policy.IncrementMetric(node['addend'])
    if node_type == 'DecrementMetric':
        return policy.DecrementMetric(node['subtrahend'])
    if node_type == 'IncrementLocalPreference':
        return policy.IncrementLocalPreference(node['addend'])
    if node_type == 'DecrementLocalPreference':
        return policy.DecrementLocalPreference(node['subtrahend'])
    raise UnsupportedConstructError("Unknown integer expression: %s" % node_type)


def load_as_list(node):
    node_type = _node_type(node)
    if node_type == 'LiteralAsList':
        return policy.LiteralAsList(list(node['as_list']))
    if node_type == 'MultipliedAs':
        return policy.MultipliedAs(node['as_num'], load_int_expr(node['number']))
    raise UnsupportedConstructError("Unknown AS path list: %s" % node_type)


def load_prefix_set(node):
    node_type = _node_type(node)
    if node_type == 'ExplicitPrefixSet':
        ranges = [prefix_range(r['prefix'], r.get('min_length'), r.get('max_length'))
                  for r in node['prefix_ranges']]
        return policy.ExplicitPrefixSet(ranges)
    if node_type == 'NamedPrefixSet':
        return policy.NamedPrefixSet(node['name'])
    raise UnsupportedConstructError("Unknown prefix set: %s" % node_type)


def load_community_set(node):
    node_type = _node_type(node)
    if node_type == 'InlineCommunitySet':
        return policy.InlineCommunitySet(list(node['communities']))
    if node_type == 'NamedCommunitySet':
        return policy.NamedCommunitySet(node['name'])
    raise UnsupportedConstructError("Unknown community set: %s" % node_type)


def load_boolean_expr(node):
    node_type = _node_type(node)
    if node_type in STATIC_BOOLEAN_EXPRS:
        return STATIC_BOOLEAN_EXPRS[node_type]
    if node_type == 'MatchIpv4':
        return policy.MatchIpv4()
    if node_type == 'MatchIpv6':
        return policy.MatchIpv6()
    if node_type == 'Conjunction':
        return policy.Conjunction([load_boolean_expr(e) for e in node['conjuncts']])
    if node_type == 'Disjunction':
        return policy.Disjunction([load_boolean_expr(e) for e in node['disjuncts']])
    if node_type == 'ConjunctionChain':
        return policy.ConjunctionChain([load_boolean_expr(e) for e in node['subroutines']])
    if node_type == 'DisjunctionChain':
        return policy.DisjunctionChain([load_boolean_expr(e) for e in node['subroutines']])
    if node_type == 'Not':
        return policy.Not(load_boolean_expr(node['expr']))
    if node_type == 'MatchProtocol':
        return policy.MatchProtocol(_enum(Protocol, node['protocol']))
    if node_type == 'MatchPrefixSet':
        return policy.MatchPrefixSet(load_prefix_set(node['prefix_set']))
    if node_type == 'MatchPrefix6Set':
        return policy.MatchPrefix6Set(node.get('prefix_set'))
    if node_type == 'MatchCommunitySet':
        return policy.MatchCommunitySet(load_community_set(node['community_set']))
    if node_type == 'CallExpr':
        return policy.CallExpr(node['policy'])
    if node_type == 'WithEnvironmentExpr':
        return policy.WithEnvironmentExpr(load_boolean_expr(node['expr']))
    raise UnsupportedConstructError("Unknown boolean expression: %s" % node_type)


def load_statements(nodes):
    return [load_statement(node) for node in nodes or []]


def load_statement(node):
    node_type = _node_type(node)
    if node_type in STATIC_STATEMENTS:
        return STATIC_STATEMENTS[node_type]
    if node_type == 'If':
        return policy.If(load_boolean_expr(node['guard']),
                         load_statements(node.get('true_statements')),
                         load_statements(node.get('false_statements')))
    if node_type == 'SetDefaultPolicy':
        return policy.SetDefaultPolicy(node['policy'])
    if node_type == 'SetMetric':
        return policy.SetMetric(load_int_expr(node['metric']))
    if node_type == 'SetLocalPreference':
        return policy.SetLocalPreference(load_int_expr(node['local_pref']))
    if node_type == 'SetOspfMetricType':
        return policy.SetOspfMetricType(_enum(OspfType, node['metric_type'], by_name=True))
    if node_type == 'AddCommunity':
        return policy.AddCommunity(load_community_set(node['community_set']))
    if node_type == 'DeleteCommunity':
        return policy.DeleteCommunity(load_community_set(node['community_set']))
    if node_type == 'RetainCommunity':
        return policy.RetainCommunity(load_community_set(node['community_set']))
    if node_type == 'PrependAsPath':
        return policy.PrependAsPath(load_as_list(node['as_list']))
    if node_type == 'SetOrigin':
        return policy.SetOrigin(node.get('origin'))
    raise UnsupportedConstructError("Unknown statement: %s" % node_type)


def _ranges(values):
    """Ranges are [start, end] pairs or single numbers"""
    ret = []
    for value in values or []:
        if isinstance(value, (list, tuple)):
            ret.append(subrange(*value))
        else:
            ret.append(subrange(value))
    return ret


def load_header_space(data, cls=HeaderSpace, **extra):
    """A header space, or an ACL line when cls is IpAccessListLine"""
    kwargs = dict(extra)
    for field, value in (data or {}).items():
        if field in ('action', 'name', 'negate'):
            continue
        if field.endswith('_ports') or field.startswith('icmp_') or \
                field.startswith('not_icmp_'):
            value = _ranges(value)
        elif field == 'tcp_flags':
            value = [TcpFlags(**flags) for flags in value]
        kwargs[field] = value
    return cls(**kwargs)


def load_acl(data):
    lines = []
    for line in data['lines']:
        lines.append(load_header_space(line, IpAccessListLine,
                                       action=_enum(LineAction, line['action']),
                                       name=line.get('name'),
                                       negate=line.get('negate', False)))
    return IpAccessList(data['name'], lines)


def load_interface(data, acls, hostname):
    def acl(name):
        if name is None:
            return None
        if name not in acls:
            raise ConfigurationError(
                "Router '%s' references undefined ACL '%s'" % (hostname, name))
        return acls[name]
    return Interface(data['name'],
                     address=data.get('address'),
                     active=data.get('active', True),
                     ospf_enabled=data.get('ospf_enabled', False),
                     ospf_cost=data.get('ospf_cost'),
                     ospf_area=data.get('ospf_area'),
                     bandwidth=data.get('bandwidth'),
                     incoming_filter=acl(data.get('incoming_filter')),
                     outgoing_filter=acl(data.get('outgoing_filter')))


def load_bgp_process(data):
    if data is None:
        return None
    neighbors = []
    for n in data.get('neighbors', []):
        neighbors.append(BgpNeighbor(n['address'], n['remote_as'], n['local_as'],
                                     local_ip=n.get('local_ip'),
                                     import_policy=n.get('import_policy'),
                                     export_policy=n.get('export_policy'),
                                     send_community=n.get('send_community', False)))
    return BgpProcess(router_id=data.get('router_id'), neighbors=neighbors,
                      multipath_ebgp=data.get('multipath_ebgp', False),
                      multipath_ibgp=data.get('multipath_ibgp', False))


def load_ospf_process(data):
    if data is None:
        return None
    return OspfProcess(router_id=data.get('router_id'),
                       export_policy=data.get('export_policy'),
                       reference_bandwidth=data.get('reference_bandwidth'),
                       multipath=data.get('multipath', True))


def load_configuration(data):
    hostname = data['hostname']
    acls = {}
    for acl in data.get('acls', []):
        acls[acl['name']] = load_acl(acl)
    interfaces = [load_interface(i, acls, hostname) for i in data.get('interfaces', [])]
    static_routes = [static_route(sr['network'],
                                  next_hop_interface=sr.get('next_hop_interface'),
                                  next_hop_ip=sr.get('next_hop_ip'),
                                  admin_cost=sr.get('admin_cost', 1))
                     for sr in data.get('static_routes', [])]
    generated_routes = [GeneratedRoute(as_network(gr['network']), gr.get('summary_only', False))
                        for gr in data.get('generated_routes', [])]
    route_filter_lists = []
    for lst in data.get('route_filter_lists', []):
        lines = [route_filter_line(_enum(LineAction, line['action']), line['prefix'],
                                   line.get('min_length'), line.get('max_length'))
                 for line in lst['lines']]
        route_filter_lists.append(RouteFilterList(lst['name'], lines))
    community_lists = []
    for lst in data.get('community_lists', []):
        lines = [CommunityListLine(_enum(LineAction, line['action']), line['regex'])
                 for line in lst['lines']]
        community_lists.append(CommunityList(lst['name'], lines))
    policies = [RoutingPolicy(pol['name'], load_statements(pol['statements']))
                for pol in data.get('policies', [])]
    LOG.debug("Loaded %s: %d interfaces, %d policies", hostname, len(interfaces),
              len(policies))
    return Configuration(hostname,
                         interfaces=interfaces,
                         static_routes=static_routes,
                         generated_routes=generated_routes,
                         bgp_process=load_bgp_process(data.get('bgp')),
                         ospf_process=load_ospf_process(data.get('ospf')),
                         route_filter_lists=route_filter_lists,
                         community_lists=community_lists,
                         ip_access_lists=acls.values(),
                         routing_policies=policies)


def load_network(data):
    """
    Build a Network from its dict representation.

    :param data: dict with "routers" (list of configurations) and "links"
                 (list of [router1, iface1, router2, iface2])
    :return: Network
    """
    configurations = [load_configuration(r) for r in data.get('routers', [])]
    links = [Link(*link) for link in data.get('links', [])]
    return Network(configurations, links)


def read_network(filename):
    with open(filename) as f:
        return load_network(json.load(f))
