"""
Small networks shared by the tests
"""

import os

from netsmt.common import LineAction
from netsmt.common import Protocol
from netsmt.config import BgpNeighbor
from netsmt.config import BgpProcess
from netsmt.config import CommunityList
from netsmt.config import CommunityListLine
from netsmt.config import Configuration
from netsmt.config import GeneratedRoute
from netsmt.config import Interface
from netsmt.config import IpAccessList
from netsmt.config import IpAccessListLine
from netsmt.config import Link
from netsmt.config import Network
from netsmt.config import OspfProcess
from netsmt.config import RoutingPolicy
from netsmt.config import as_network
from netsmt.config import prefix_range
from netsmt.config import static_route
from netsmt.config import subrange
from netsmt.loader import read_network
from netsmt.policy import EXIT_ACCEPT
from netsmt.policy import EXIT_REJECT
from netsmt.policy import AddCommunity
from netsmt.policy import Conjunction
from netsmt.policy import ExplicitPrefixSet
from netsmt.policy import If
from netsmt.policy import InlineCommunitySet
from netsmt.policy import LiteralInt
from netsmt.policy import MatchCommunitySet
from netsmt.policy import MatchPrefixSet
from netsmt.policy import MatchProtocol
from netsmt.policy import NamedCommunitySet
from netsmt.policy import SetLocalPreference


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


EXAMPLES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)),
                            '..', 'examples')


def reject_all_acl(name='DENY-ALL'):
    return IpAccessList(name, [IpAccessListLine('reject', dst_ips=['0.0.0.0/0'])])


def bgp_two_routers():
    """r1 learns routes from an external peer and sends them to r2"""
    return read_network(os.path.join(EXAMPLES_DIR, 'bgp-two-routers.json'))


def static_chain(with_r3_route=True):
    """
    r1 -- r2 -- r3, r1 owns 10.0.0.0/24 on its lan and the others point
    static routes towards it.
    """
    r1 = Configuration(
        'r1',
        interfaces=[Interface('lan', '10.0.0.1/24'),
                    Interface('to_r2', '192.168.12.1/30')],
        static_routes=[static_route('10.0.0.0/24', next_hop_interface='lan')])
    r2 = Configuration(
        'r2',
        interfaces=[Interface('to_r1', '192.168.12.2/30'),
                    Interface('to_r3', '192.168.23.1/30')],
        static_routes=[static_route('10.0.0.0/24', next_hop_ip='192.168.12.1')])
    r3_routes = []
    if with_r3_route:
        r3_routes.append(static_route('10.0.0.0/24', next_hop_interface='to_r2'))
    r3 = Configuration(
        'r3',
        interfaces=[Interface('to_r2', '192.168.23.2/30')],
        static_routes=r3_routes)
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r2', 'to_r3', 'r3', 'to_r2')]
    return Network([r1, r2, r3], links)


def static_diamond(r4_multipath=True, r3_filter=None):
    """
    r4 reaches r1's lan through r2 and r3. With r4_multipath both paths
    are used, r3_filter is an outgoing ACL of r3 towards r1.
    """
    dst = '10.0.0.0/24'
    r1 = Configuration(
        'r1',
        interfaces=[Interface('lan', '10.0.0.1/24'),
                    Interface('to_r2', '192.168.12.1/30'),
                    Interface('to_r3', '192.168.13.1/30')])
    r2 = Configuration(
        'r2',
        interfaces=[Interface('to_r1', '192.168.12.2/30'),
                    Interface('to_r4', '192.168.24.1/30')],
        static_routes=[static_route(dst, next_hop_interface='to_r1')])
    acls = [r3_filter] if r3_filter is not None else []
    r3 = Configuration(
        'r3',
        interfaces=[Interface('to_r1', '192.168.13.2/30', outgoing_filter=r3_filter),
                    Interface('to_r4', '192.168.34.1/30')],
        static_routes=[static_route(dst, next_hop_interface='to_r1')],
        ip_access_lists=acls)
    r4_routes = [static_route(dst, next_hop_interface='to_r2')]
    if r4_multipath:
        r4_routes.append(static_route(dst, next_hop_interface='to_r3'))
    r4 = Configuration(
        'r4',
        interfaces=[Interface('to_r2', '192.168.24.2/30'),
                    Interface('to_r3', '192.168.34.2/30')],
        static_routes=r4_routes)
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r1', 'to_r3', 'r3', 'to_r1'),
             Link('r2', 'to_r4', 'r4', 'to_r2'),
             Link('r3', 'to_r4', 'r4', 'to_r3')]
    return Network([r1, r2, r3, r4], links)


def static_pair(r2_lan=False):
    """r1 points 10.0.0.0/24 at r2, r2 owns it only when r2_lan is set"""
    r1 = Configuration(
        'r1',
        interfaces=[Interface('to_r2', '192.168.12.1/30')],
        static_routes=[static_route('10.0.0.0/24', next_hop_interface='to_r2')])
    r2_ifaces = [Interface('to_r1', '192.168.12.2/30')]
    if r2_lan:
        r2_ifaces.append(Interface('lan', '10.0.0.1/24'))
    r2 = Configuration('r2', interfaces=r2_ifaces)
    return Network([r1, r2], [Link('r1', 'to_r2', 'r2', 'to_r1')])


def static_loop(loop=True):
    """r1 and r2 point 10.9.9.0/24 at each other when loop is set"""
    r1 = Configuration(
        'r1',
        interfaces=[Interface('to_r2', '192.168.12.1/30')],
        static_routes=[static_route('10.9.9.0/24', next_hop_interface='to_r2')])
    if loop:
        r2 = Configuration(
            'r2',
            interfaces=[Interface('to_r1', '192.168.12.2/30')],
            static_routes=[static_route('10.9.9.0/24', next_hop_interface='to_r1')])
    else:
        r2 = Configuration(
            'r2',
            interfaces=[Interface('to_r1', '192.168.12.2/30'),
                        Interface('lan', '10.9.9.1/24')])
    return Network([r1, r2], [Link('r1', 'to_r2', 'r2', 'to_r1')])


def ospf_star(r3_cost=1):
    """
    r1 and r3 are OSPF neighbors of r2, which owns 10.2.0.0/24. All costs
    are 1 except the cost of r2 towards r3.
    """
    r1 = Configuration(
        'r1',
        interfaces=[Interface('to_r2', '192.168.12.1/30', ospf_enabled=True,
                              ospf_cost=1)],
        ospf_process=OspfProcess(router_id='1.1.1.1'))
    r2 = Configuration(
        'r2',
        interfaces=[Interface('lan', '10.2.0.1/24', ospf_enabled=True, ospf_cost=1),
                    Interface('to_r1', '192.168.12.2/30', ospf_enabled=True,
                              ospf_cost=1),
                    Interface('to_r3', '192.168.23.2/30', ospf_enabled=True,
                              ospf_cost=r3_cost)],
        ospf_process=OspfProcess(router_id='2.2.2.2'))
    r3 = Configuration(
        'r3',
        interfaces=[Interface('to_r2', '192.168.23.1/30', ospf_enabled=True,
                              ospf_cost=1)],
        ospf_process=OspfProcess(router_id='3.3.3.3'))
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r2', 'to_r3', 'r3', 'to_r2')]
    return Network([r1, r2, r3], links)


def ospf_pair():
    """r1 -- r2 over OSPF, r2 owns 10.2.0.0/24, costs derive from bandwidth"""
    r1 = Configuration(
        'r1',
        interfaces=[Interface('to_r2', '192.168.12.1/30', ospf_enabled=True,
                              bandwidth=10e6)],
        ospf_process=OspfProcess(router_id='1.1.1.1'))
    r2 = Configuration(
        'r2',
        interfaces=[Interface('lan', '10.2.0.1/24', ospf_enabled=True, ospf_cost=1),
                    Interface('to_r1', '192.168.12.2/30', ospf_enabled=True,
                              bandwidth=10e6)],
        ospf_process=OspfProcess(router_id='2.2.2.2'))
    return Network([r1, r2], [Link('r1', 'to_r2', 'r2', 'to_r1')])


def aggregate_network():
    """
    r1 has a static route to 10.1.1.0/24 and a summary only aggregate
    10.1.0.0/16, it exports static routes inside the aggregate to r2.
    """
    to_r2 = RoutingPolicy('TO-R2', [
        If(Conjunction([MatchProtocol(Protocol.STATIC),
                        MatchPrefixSet(ExplicitPrefixSet([prefix_range('10.1.0.0/16')]))]),
           [EXIT_ACCEPT], [EXIT_REJECT])])
    r1 = Configuration(
        'r1',
        interfaces=[Interface('lan', '172.16.0.1/24'),
                    Interface('to_r2', '192.168.12.1/30')],
        static_routes=[static_route('10.1.1.0/24', next_hop_interface='lan')],
        generated_routes=[GeneratedRoute(as_network('10.1.0.0/16'), True)],
        bgp_process=BgpProcess(router_id='1.1.1.1', neighbors=[
            BgpNeighbor('192.168.12.2', 2, 1, export_policy='TO-R2')]),
        routing_policies=[to_r2])
    r2 = Configuration(
        'r2',
        interfaces=[Interface('to_r1', '192.168.12.2/30')],
        bgp_process=BgpProcess(router_id='2.2.2.2', neighbors=[
            BgpNeighbor('192.168.12.1', 1, 2)]))
    return Network([r1, r2], [Link('r1', 'to_r2', 'r2', 'to_r1')])


def external_peer(statements=None, import_policy='IN', policies=None):
    """
    A single router with an eBGP peer outside of the network, the import
    policy of the session is `statements`.
    """
    if policies is None:
        policies = []
    if statements is not None:
        policies = [RoutingPolicy(import_policy, statements)] + list(policies)
    r1 = Configuration(
        'r1',
        interfaces=[Interface('ext', '10.0.0.1/30')],
        bgp_process=BgpProcess(router_id='1.1.1.1', neighbors=[
            BgpNeighbor('10.0.0.2', 100, 1, import_policy=import_policy,
                        send_community=True)]),
        routing_policies=policies)
    return Network([r1])


def similar_routers(r2_filter=None):
    """
    r1 and r2 are configured alike behind the core router c, r2_filter
    is an incoming ACL on r2's uplink.
    """
    r1 = Configuration(
        'r1',
        interfaces=[Interface('lan', '10.0.1.1/24'),
                    Interface('up', '10.1.1.1/30')],
        static_routes=[static_route('8.8.8.0/24', next_hop_interface='up')])
    acls = [r2_filter] if r2_filter is not None else []
    r2 = Configuration(
        'r2',
        interfaces=[Interface('lan', '10.0.2.1/24'),
                    Interface('up', '10.1.2.1/30', incoming_filter=r2_filter)],
        static_routes=[static_route('8.8.8.0/24', next_hop_interface='up')],
        ip_access_lists=acls)
    c = Configuration(
        'c',
        interfaces=[Interface('d1', '10.1.1.2/30'),
                    Interface('d2', '10.1.2.2/30')])
    links = [Link('r1', 'up', 'c', 'd1'),
             Link('r2', 'up', 'c', 'd2')]
    return Network([r1, r2, c], links)


def no_ssh_acl(name='NO-SSH'):
    return IpAccessList(name, [
        IpAccessListLine('reject', dst_ports=[subrange(22)], ip_protocols=[6]),
        IpAccessListLine('accept', dst_ips=['0.0.0.0/0'])])


def static_over_ospf(admin_cost=1):
    """
    ospf_star where r1 also has a static route to r2's lan. The static
    route wins unless admin_cost is above the OSPF distance.
    """
    net = ospf_star()
    net.configurations['r1'].static_routes.append(
        static_route('10.2.0.0/24', next_hop_interface='to_r2', admin_cost=admin_cost))
    return net


def ospf_triangle():
    """
    r1, r2 and r3 are OSPF neighbors of each other with cost 1, r2 owns
    10.2.0.0/24 so r1 learns it directly and through r3.
    """
    def iface(name, address):
        return Interface(name, address, ospf_enabled=True, ospf_cost=1)
    r1 = Configuration(
        'r1',
        interfaces=[iface('to_r2', '192.168.12.1/30'), iface('to_r3', '192.168.13.1/30')],
        ospf_process=OspfProcess(router_id='1.1.1.1'))
    r2 = Configuration(
        'r2',
        interfaces=[iface('lan', '10.2.0.1/24'), iface('to_r1', '192.168.12.2/30'),
                    iface('to_r3', '192.168.23.1/30')],
        ospf_process=OspfProcess(router_id='2.2.2.2'))
    r3 = Configuration(
        'r3',
        interfaces=[iface('to_r1', '192.168.13.2/30'), iface('to_r2', '192.168.23.2/30')],
        ospf_process=OspfProcess(router_id='3.3.3.3'))
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r1', 'to_r3', 'r3', 'to_r1'),
             Link('r2', 'to_r3', 'r3', 'to_r2')]
    return Network([r1, r2, r3], links)


def ospf_areas():
    """
    r1 -- r2 -- r3 over OSPF, r1 and the r1 side of r2 are in area 0, r3
    and the r3 side of r2 in area 1. r1 owns 10.1.0.0/24.
    """
    def iface(name, address, area):
        return Interface(name, address, ospf_enabled=True, ospf_cost=1, ospf_area=area)
    r1 = Configuration(
        'r1',
        interfaces=[iface('lan', '10.1.0.1/24', 0), iface('to_r2', '192.168.12.1/30', 0)],
        ospf_process=OspfProcess(router_id='1.1.1.1'))
    r2 = Configuration(
        'r2',
        interfaces=[iface('to_r1', '192.168.12.2/30', 0), iface('to_r3', '192.168.23.1/30', 1)],
        ospf_process=OspfProcess(router_id='2.2.2.2'))
    r3 = Configuration(
        'r3',
        interfaces=[iface('to_r2', '192.168.23.2/30', 1)],
        ospf_process=OspfProcess(router_id='3.3.3.3'))
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r2', 'to_r3', 'r3', 'to_r2')]
    return Network([r1, r2, r3], links)


def ospf_bgp_redistribution(redistribute=True):
    """
    r1 announces 10.1.0.0/24 over OSPF to r2, r2 has an eBGP session with
    r3. With redistribute, r2's export policy towards r3 accepts OSPF
    routes. r3 never announces anything back.
    """
    r1 = Configuration(
        'r1',
        interfaces=[Interface('lan', '10.1.0.1/24', ospf_enabled=True, ospf_cost=1),
                    Interface('to_r2', '192.168.12.1/30', ospf_enabled=True, ospf_cost=1)],
        ospf_process=OspfProcess(router_id='1.1.1.1'))
    policies = []
    export_policy = None
    if redistribute:
        export_policy = 'TO-R3'
        policies.append(RoutingPolicy('TO-R3', [
            If(MatchProtocol(Protocol.OSPF), [EXIT_ACCEPT], [EXIT_REJECT])]))
    r2 = Configuration(
        'r2',
        interfaces=[Interface('to_r1', '192.168.12.2/30', ospf_enabled=True, ospf_cost=1),
                    Interface('to_r3', '192.168.23.1/30')],
        ospf_process=OspfProcess(router_id='2.2.2.2'),
        bgp_process=BgpProcess(router_id='2.2.2.2', neighbors=[
            BgpNeighbor('192.168.23.2', 3, 2, export_policy=export_policy)]),
        routing_policies=policies)
    r3 = Configuration(
        'r3',
        interfaces=[Interface('to_r2', '192.168.23.2/30')],
        bgp_process=BgpProcess(router_id='3.3.3.3', neighbors=[
            BgpNeighbor('192.168.23.1', 2, 3, export_policy='NOTHING')]),
        routing_policies=[RoutingPolicy('NOTHING', [EXIT_REJECT])])
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r2', 'to_r3', 'r3', 'to_r2')]
    return Network([r1, r2, r3], links)


def ibgp_chain(local_pref=200):
    """
    r1 -- r2 -- r3 in AS 1 with iBGP sessions on both links. r1 learns
    routes from an eBGP peer and raises their local preference.
    """
    set_lp = RoutingPolicy('IN', [SetLocalPreference(LiteralInt(local_pref)), EXIT_ACCEPT])
    r1 = Configuration(
        'r1',
        interfaces=[Interface('ext', '10.0.0.1/30'),
                    Interface('to_r2', '192.168.12.1/30')],
        bgp_process=BgpProcess(router_id='1.1.1.1', neighbors=[
            BgpNeighbor('10.0.0.2', 100, 1, import_policy='IN'),
            BgpNeighbor('192.168.12.2', 1, 1)]),
        routing_policies=[set_lp])
    r2 = Configuration(
        'r2',
        interfaces=[Interface('to_r1', '192.168.12.2/30'),
                    Interface('to_r3', '192.168.23.1/30')],
        bgp_process=BgpProcess(router_id='2.2.2.2', neighbors=[
            BgpNeighbor('192.168.12.1', 1, 1),
            BgpNeighbor('192.168.23.2', 1, 1)]))
    r3 = Configuration(
        'r3',
        interfaces=[Interface('to_r2', '192.168.23.2/30')],
        bgp_process=BgpProcess(router_id='3.3.3.3', neighbors=[
            BgpNeighbor('192.168.23.1', 1, 1)]))
    links = [Link('r1', 'to_r2', 'r2', 'to_r1'),
             Link('r2', 'to_r3', 'r3', 'to_r2')]
    return Network([r1, r2, r3], links)


def community_peer():
    """
    A single router with an eBGP peer, routes tagged with a community
    matching ^65000: get local preference 300. The unused TAG policy
    names two literal communities.
    """
    import_policy = RoutingPolicy('IN', [
        If(MatchCommunitySet(NamedCommunitySet('CL')),
           [SetLocalPreference(LiteralInt(300)), EXIT_ACCEPT],
           [EXIT_ACCEPT])])
    tag = RoutingPolicy('TAG', [
        AddCommunity(InlineCommunitySet(['65000:1', '65001:2'])), EXIT_ACCEPT])
    r1 = Configuration(
        'r1',
        interfaces=[Interface('ext', '10.0.0.1/30')],
        bgp_process=BgpProcess(router_id='1.1.1.1', neighbors=[
            BgpNeighbor('10.0.0.2', 100, 1, import_policy='IN', send_community=True)]),
        community_lists=[CommunityList('CL', [CommunityListLine(LineAction.ACCEPT,
                                                                '^65000:')])],
        routing_policies=[import_policy, tag])
    return Network([r1])
