import unittest

import z3

from netsmt.common import Protocol
from netsmt.community import exact_community
from netsmt.config import HeaderSpace
from netsmt.encoder import Encoder
from netsmt.encoder import Verdict
from netsmt.policy import EXIT_ACCEPT
from netsmt.properties import PathRegexes
from netsmt.properties import compute_black_hole
from netsmt.properties import compute_reachability
from netsmt.symbolic import SymbolicRecord
from netsmt.transfer import TransferFunction
from netsmt.transfer import mk_or

from topologies import aggregate_network
from topologies import bgp_two_routers
from topologies import ibgp_chain
from topologies import ospf_areas
from topologies import ospf_bgp_redistribution
from topologies import ospf_pair
from topologies import ospf_star
from topologies import ospf_triangle
from topologies import static_chain
from topologies import static_diamond
from topologies import static_over_ospf
from topologies import static_pair


class TestSimple(unittest.TestCase):
    def bgp(self, *constraints):
        """Encode the two router BGP network and check extra constraints"""
        enc = Encoder(bgp_two_routers(), HeaderSpace(dst_ips=['8.8.8.0/24']))
        s = enc.main_slice
        env = list(s.logical_graph.environment_vars.values())[0]
        enc.add(env.permitted)
        enc.add(env.metric == 0)
        for constraint in constraints:
            enc.add(constraint(s, env))
        return enc.verify()

    def test_static_round_trip(self):
        regexes = PathRegexes(dst='r1', iface='lan')
        results = compute_reachability(static_chain(), HeaderSpace(), regexes)
        self.assertEqual(sorted(results.keys()), ['r1,lan'])
        self.assertEqual(results['r1,lan'].verdict, Verdict.VERIFIED)

    def test_static_round_trip_missing_route(self):
        regexes = PathRegexes(dst='r1', iface='lan')
        results = compute_reachability(static_chain(with_r3_route=False),
                                       HeaderSpace(), regexes)
        result = results['r1,lan']
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertTrue(result.packet_model['dstIp'].startswith('10.0.0.'))

    def test_bgp_community_sets_local_pref(self):
        cvar = exact_community('30:1')

        def tagged_but_low(s, env):
            return z3.And(env.communities[cvar], s.best_neighbor['r2'].local_pref != 200)

        def untagged_but_high(s, env):
            return z3.And(z3.Not(env.communities[cvar]),
                          s.best_neighbor['r2'].local_pref != 100)

        def not_learned(s, env):
            return z3.Not(s.best_neighbor['r2'].permitted)

        self.assertEqual(self.bgp(tagged_but_low).verdict, Verdict.VERIFIED)
        self.assertEqual(self.bgp(untagged_but_high).verdict, Verdict.VERIFIED)
        self.assertEqual(self.bgp(not_learned).verdict, Verdict.VERIFIED)

    def test_bgp_community_reaches_r2(self):
        cvar = exact_community('30:1')

        def tagged(s, env):
            return z3.And(env.communities[cvar], s.best_neighbor['r2'].local_pref == 200)

        result = self.bgp(tagged)
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertEqual(len(result.environment_model), 1)
        env_route = list(result.environment_model.values())[0]
        self.assertEqual(env_route['communities'], '30:1')

    def aggregate_export(self, *constraints):
        enc = Encoder(aggregate_network(), HeaderSpace(dst_ips=['10.1.1.0/24']))
        s = enc.main_slice
        export = s.logical_graph.export_edges('r1', Protocol.BGP)[0].record
        for constraint in constraints:
            enc.add(constraint(export))
        return enc.verify()

    def test_aggregate_suppresses_specific_route(self):
        result = self.aggregate_export(lambda e: e.permitted,
                                       lambda e: e.prefix_length == 24)
        self.assertEqual(result.verdict, Verdict.VERIFIED)

    def test_aggregate_is_exported(self):
        result = self.aggregate_export(lambda e: e.permitted)
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        result = self.aggregate_export(lambda e: e.permitted,
                                       lambda e: e.prefix_length != 16)
        self.assertEqual(result.verdict, Verdict.VERIFIED)

    def ospf_transfer(self, metric):
        """Export a route with the given metric over an edge of cost 5"""
        net = ospf_pair()
        enc = Encoder(net, HeaderSpace(dst_ips=['10.2.0.0/24']))
        s = enc.main_slice
        conf = enc.graph.configurations['r2']
        ge = [e for e in enc.graph.edge_map['r2'] if e.start.name == 'to_r1'][0]
        other = SymbolicRecord.create(s, 'test-other', 'r2', Protocol.OSPF)
        current = SymbolicRecord.create(s, 'test-current', 'r2', Protocol.OSPF)
        f = TransferFunction(s, conf, other, current, Protocol.OSPF, Protocol.OSPF,
                             [EXIT_ACCEPT], 5, ge, True)
        enc.add(f.compute())
        enc.add(other.permitted)
        enc.add(other.metric == metric)
        enc.add(current.permitted)
        return enc, current

    def test_ospf_metric_overflow(self):
        enc, _ = self.ospf_transfer(65533)
        self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)

    def test_ospf_metric_at_limit(self):
        enc, current = self.ospf_transfer(65530)
        self.assertEqual(enc.verify().verdict, Verdict.VIOLATED)
        enc, current = self.ospf_transfer(65530)
        enc.add(current.metric != 65535)
        self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)

    def test_black_hole(self):
        result = compute_black_hole(static_pair())
        self.assertEqual(result.verdict, Verdict.VIOLATED)
        self.assertIn('r1,to_r2 --> r2,to_r1', result.forwarding_model)
        self.assertTrue(result.packet_model['dstIp'].startswith('10.0.0.'))

    def test_no_black_hole(self):
        result = compute_black_hole(static_pair(r2_lan=True))
        self.assertEqual(result.verdict, Verdict.VERIFIED)

    def test_import_export_merge(self):
        enc = Encoder(ospf_star(), HeaderSpace(dst_ips=['10.2.0.0/24']))
        s = enc.main_slice
        le1 = s.logical_graph.import_edges('r1', Protocol.OSPF)[0]
        le3 = s.logical_graph.import_edges('r3', Protocol.OSPF)[0]
        self.assertFalse(le1.record.is_used)
        self.assertFalse(le3.record.is_used)
        vars1 = s.correct_vars(le1)
        vars3 = s.correct_vars(le3)
        self.assertIs(vars1, s.logical_graph.other_end[le1].record)
        # Both neighbors read the single export record of r2
        self.assertIs(vars1, vars3)
        enc.add(vars1.metric != vars3.metric)
        self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)

    def test_no_export_merge_with_different_costs(self):
        enc = Encoder(ospf_star(r3_cost=2), HeaderSpace(dst_ips=['10.2.0.0/24']))
        s = enc.main_slice
        vars1 = s.correct_vars(s.logical_graph.import_edges('r1', Protocol.OSPF)[0])
        vars3 = s.correct_vars(s.logical_graph.import_edges('r3', Protocol.OSPF)[0])
        self.assertIsNot(vars1, vars3)
        enc.add(vars1.metric != vars3.metric)
        self.assertEqual(enc.verify().verdict, Verdict.VIOLATED)

    def test_no_merge_with_import_policy(self):
        enc = Encoder(bgp_two_routers(), HeaderSpace(dst_ips=['8.8.8.0/24']))
        s = enc.main_slice
        for le in s.logical_graph.import_edges('r2', Protocol.BGP):
            self.assertTrue(le.record.is_used)
            self.assertIs(s.correct_vars(le), le.record)

    def best_route_soundness(self, network, hs):
        enc = Encoder(network, hs, debug=True)
        s = enc.main_slice
        for router in enc.graph.routers:
            conf = enc.graph.configurations[router]
            for proto in s.protocols[router]:
                best = s.best_vars(router, proto)
                edges = s.logical_graph.import_edges(router, proto)
                if not edges:
                    continue
                some = mk_or(*[s.correct_vars(le).permitted for le in edges])
                enc.solver.push()
                enc.add(best.permitted != some)
                self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)
                enc.solver.pop()
                for le in edges:
                    vars = s.correct_vars(le)
                    enc.solver.push()
                    enc.add(vars.permitted)
                    enc.add(z3.Not(s.greater_or_equal(conf, proto, best, vars, le)))
                    self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)
                    enc.solver.pop()
            if router in s.optimizations.has_single_protocol:
                continue
            # The overall best is at least as good as the best of each protocol
            overall = s.best_neighbor[router]
            for proto in s.protocols[router]:
                best = s.best_vars(router, proto)
                enc.solver.push()
                enc.add(best.permitted)
                enc.add(z3.Not(s.greater_or_equal(conf, proto, overall, best, None)))
                self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)
                enc.solver.pop()

    def test_best_route_soundness_static(self):
        self.best_route_soundness(static_diamond(), HeaderSpace())

    def test_best_route_soundness_bgp(self):
        self.best_route_soundness(bgp_two_routers(),
                                  HeaderSpace(dst_ips=['8.8.8.0/24']))

    def test_best_route_soundness_ospf(self):
        self.best_route_soundness(ospf_star(r3_cost=2),
                                  HeaderSpace(dst_ips=['10.2.0.0/24']))

    def test_best_route_soundness_admin_distance(self):
        self.best_route_soundness(static_over_ospf(),
                                  HeaderSpace(dst_ips=['10.2.0.0/24']))
        self.best_route_soundness(static_over_ospf(admin_cost=250),
                                  HeaderSpace(dst_ips=['10.2.0.0/24']))

    def test_best_route_soundness_metric(self):
        self.best_route_soundness(ospf_triangle(), HeaderSpace(dst_ips=['10.2.0.0/24']))

    def test_best_route_soundness_ospf_type(self):
        self.best_route_soundness(ospf_areas(), HeaderSpace(dst_ips=['10.1.0.0/24']))

    def test_best_route_soundness_ibgp(self):
        self.best_route_soundness(ibgp_chain(), HeaderSpace(dst_ips=['8.8.8.0/24']))

    def test_best_route_soundness_redistribution(self):
        self.best_route_soundness(ospf_bgp_redistribution(),
                                  HeaderSpace(dst_ips=['10.1.0.0/24']))

    def test_ebgp_preferred_to_ibgp(self):
        enc = Encoder(ibgp_chain(), HeaderSpace(dst_ips=['8.8.8.0/24']), debug=True)
        s = enc.main_slice
        conf = enc.graph.configurations['r2']
        best = s.best_neighbor['r2']
        other = SymbolicRecord.create(s, 'test-other', 'r2', Protocol.BGP)
        # Same route except for the session it was learned on
        enc.add(best.permitted)
        enc.add(other.permitted)
        enc.add(best.bgp_internal)
        enc.add(z3.Not(other.bgp_internal))
        enc.add(other.prefix_length == best.prefix_length)
        enc.add(other.local_pref == best.local_pref)
        enc.add(other.metric == best.metric)
        self.assertEqual(enc.verify().verdict, Verdict.VIOLATED)
        enc.add(s.greater_or_equal(conf, Protocol.BGP, best, other, None))
        self.assertEqual(enc.verify().verdict, Verdict.VERIFIED)

    def test_encoding_is_deterministic(self):
        network = static_diamond()
        hs = HeaderSpace(dst_ips=['10.0.0.0/24'])
        enc1 = Encoder(network, hs)
        enc2 = Encoder(network, hs)
        self.assertEqual([str(v) for v in enc1.all_variables],
                         [str(v) for v in enc2.all_variables])
        self.assertEqual(enc1.num_constraints, enc2.num_constraints)
        self.assertEqual(enc1.verify().verdict, enc2.verify().verdict)

    def test_reachability_is_repeatable(self):
        regexes = PathRegexes(dst='r1', iface='lan')
        first = compute_reachability(static_diamond(), HeaderSpace(), regexes)
        second = compute_reachability(static_diamond(), HeaderSpace(), regexes)
        self.assertEqual(first['r1,lan'].verdict, second['r1,lan'].verdict)
        self.assertEqual(first['r1,lan'].verdict, Verdict.VERIFIED)


if __name__ == '__main__':
    unittest.main()
