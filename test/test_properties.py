import unittest

from netsmt.config import HeaderSpace
from netsmt.encoder import Verdict
from netsmt.graph import Graph
from netsmt.properties import PathRegexes
from netsmt.properties import compute_bounded_length
from netsmt.properties import compute_equal_length
from netsmt.properties import compute_forwarding
from netsmt.properties import compute_load_balance
from netsmt.properties import compute_local_consistency
from netsmt.properties import compute_multipath_consistency
from netsmt.properties import compute_reachability
from netsmt.properties import compute_router_reachability
from netsmt.properties import compute_routing_loop
from netsmt.properties import find_matching_edges
from netsmt.properties import find_matching_nodes

from topologies import no_ssh_acl
from topologies import reject_all_acl
from topologies import similar_routers
from topologies import static_chain
from topologies import static_diamond
from topologies import static_loop


TO_R1_LAN = PathRegexes(dst='r1', iface='lan')


class TestPathRegexes(unittest.TestCase):
    def test_defaults_match_everything(self):
        regexes = PathRegexes()
        self.assertTrue(regexes.matches_dst('r1'))
        self.assertTrue(regexes.matches_iface('lan'))
        self.assertTrue(regexes.matches_src('r1'))

    def test_negative_patterns(self):
        regexes = PathRegexes(src='r.*', not_src='r2', iface='to_.*')
        self.assertTrue(regexes.matches_src('r1'))
        self.assertFalse(regexes.matches_src('r2'))
        self.assertFalse(regexes.matches_src('c'))
        self.assertTrue(regexes.matches_iface('to_r1'))
        self.assertFalse(regexes.matches_iface('lan'))

    def test_whole_name_must_match(self):
        regexes = PathRegexes(dst='r1')
        self.assertFalse(regexes.matches_dst('r10'))

    def test_matching_nodes_and_edges(self):
        net = static_chain()
        graph = Graph(net.configurations, net.links)
        self.assertEqual(find_matching_nodes(graph, PathRegexes(src='r[23]')), ['r2', 'r3'])
        edges = find_matching_edges(graph, TO_R1_LAN)
        self.assertEqual([str(ge) for ge in edges], ['r1,lan --> _,_'])
        edges = find_matching_edges(graph, PathRegexes(dst='r2'))
        self.assertEqual(sorted(ge.start.name for ge in edges), ['to_r1', 'to_r3'])


class TestReachability(unittest.TestCase):
    def test_every_router_reaches_lan(self):
        results = compute_reachability(static_chain(), HeaderSpace(), TO_R1_LAN)
        self.assertTrue(results['r1,lan'].verified)

    def test_router_without_route(self):
        regexes = PathRegexes(dst='r1', iface='lan', src='r3')
        results = compute_reachability(static_chain(with_r3_route=False),
                                       HeaderSpace(), regexes)
        self.assertEqual(results['r1,lan'].verdict, Verdict.VIOLATED)

    def test_unreachable_part_of_header_space(self):
        hs = HeaderSpace(dst_ips=['10.0.0.0/16'])
        results = compute_reachability(static_chain(), hs, TO_R1_LAN)
        result = results['r1,lan']
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertFalse(result.packet_model['dstIp'].startswith('10.0.0.'))

    def test_filtered_path(self):
        net = static_diamond(r4_multipath=False, r3_filter=reject_all_acl())
        regexes = PathRegexes(dst='r1', iface='lan', src='r[24]')
        results = compute_reachability(net, HeaderSpace(), regexes)
        self.assertTrue(results['r1,lan'].verified)
        regexes = PathRegexes(dst='r1', iface='lan', src='r3')
        results = compute_reachability(net, HeaderSpace(), regexes)
        self.assertEqual(results['r1,lan'].verdict, Verdict.VIOLATED)


class TestRouterReachability(unittest.TestCase):
    LAN = HeaderSpace(dst_ips=['10.0.0.0/24'])

    def test_path_crosses_router(self):
        regexes = PathRegexes(dst='r[12]', src='r3')
        results = compute_router_reachability(static_chain(), self.LAN, regexes)
        self.assertEqual(sorted(results.keys()), ['r1', 'r2'])
        self.assertTrue(results['r1'].verified)
        self.assertTrue(results['r2'].verified)

    def test_router_without_route(self):
        regexes = PathRegexes(dst='r2', src='r3')
        results = compute_router_reachability(static_chain(with_r3_route=False),
                                              self.LAN, regexes)
        self.assertEqual(results['r2'].verdict, Verdict.VIOLATED)

    def test_single_path(self):
        net = static_diamond(r4_multipath=False)
        regexes = PathRegexes(dst='r[23]', src='r4')
        results = compute_router_reachability(net, self.LAN, regexes)
        self.assertTrue(results['r2'].verified)
        self.assertEqual(results['r3'].verdict, Verdict.VIOLATED)


class TestPathLength(unittest.TestCase):
    def test_bounded_length(self):
        results = compute_bounded_length(static_chain(), HeaderSpace(), TO_R1_LAN, 3)
        self.assertTrue(results['r1,lan'].verified)
        results = compute_bounded_length(static_chain(), HeaderSpace(), TO_R1_LAN, 2)
        self.assertEqual(results['r1,lan'].verdict, Verdict.VIOLATED)

    def test_equal_length(self):
        regexes = PathRegexes(dst='r1', iface='lan', src='r[23]')
        results = compute_equal_length(static_chain(), HeaderSpace(), regexes)
        self.assertEqual(results['r1,lan'].verdict, Verdict.VIOLATED)
        regexes = PathRegexes(dst='r1', iface='lan', src='r[23]')
        results = compute_equal_length(static_diamond(), HeaderSpace(), regexes)
        self.assertTrue(results['r1,lan'].verified)


class TestLoadBalance(unittest.TestCase):
    def test_balanced(self):
        regexes = PathRegexes(dst='r1', iface='lan', src='r4')
        results = compute_load_balance(static_diamond(), HeaderSpace(), regexes)
        self.assertTrue(results['r1,lan'].verified)

    def test_unbalanced(self):
        regexes = PathRegexes(dst='r1', iface='lan', src='r4')
        net = static_diamond(r4_multipath=False)
        results = compute_load_balance(net, HeaderSpace(), regexes)
        self.assertEqual(results['r1,lan'].verdict, Verdict.VIOLATED)
        results = compute_load_balance(net, HeaderSpace(), regexes, threshold=1)
        self.assertTrue(results['r1,lan'].verified)


class TestMultipath(unittest.TestCase):
    def test_consistent(self):
        results = compute_multipath_consistency(static_diamond(), HeaderSpace(), TO_R1_LAN)
        self.assertTrue(results['r1,lan'].verified)

    def test_one_path_filtered(self):
        net = static_diamond(r3_filter=reject_all_acl())
        results = compute_multipath_consistency(net, HeaderSpace(), TO_R1_LAN)
        result = results['r1,lan']
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertIn('r4,to_r2 --> r2,to_r4', result.forwarding_model)


class TestForwarding(unittest.TestCase):
    def test_forwarding_model(self):
        result = compute_forwarding(static_chain(), HeaderSpace(dst_ips=['10.0.0.0/24']))
        # A model is a forwarding of the packet
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertIn('r3,to_r2 --> r2,to_r3', result.forwarding_model)
        self.assertIn('r2,to_r1 --> r1,to_r2', result.forwarding_model)
        self.assertIn('r1,lan --> _,_', result.forwarding_model)
        self.assertIn('Forwarding:', result.describe())


class TestRoutingLoop(unittest.TestCase):
    def test_loop(self):
        result = compute_routing_loop(static_loop())
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertTrue(result.packet_model['dstIp'].startswith('10.9.9.'))

    def test_no_loop(self):
        result = compute_routing_loop(static_loop(loop=False))
        self.assertTrue(result.verified)


class TestLocalConsistency(unittest.TestCase):
    def test_same_configuration(self):
        results = compute_local_consistency(similar_routers(), PathRegexes(src='r[12]'))
        self.assertEqual(sorted(results.keys()), ['r1<-->r2'])
        self.assertTrue(results['r1<-->r2'].verified)

    def test_different_filter(self):
        net = similar_routers(r2_filter=no_ssh_acl())
        results = compute_local_consistency(net, PathRegexes(src='r[12]'))
        result = results['r1<-->r2']
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertEqual(result.packet_model['dstPort'], 22)

    def test_different_interfaces(self):
        results = compute_local_consistency(similar_routers(), PathRegexes(src='c|r1'))
        result = results['c<-->r1']
        self.assertEqual(result.verdict, Verdict.INCOMPARABLE)
        self.assertIn('different interfaces', result.reason)


if __name__ == '__main__':
    unittest.main()
