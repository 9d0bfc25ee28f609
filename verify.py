#!/usr/bin/env python

import argparse
import logging
import sys

from netsmt.config import HeaderSpace
from netsmt.errors import NetSMTError
from netsmt.graph import Graph
from netsmt.loader import read_network
from netsmt.properties import PathRegexes
from netsmt.properties import compute_black_hole
from netsmt.properties import compute_bounded_length
from netsmt.properties import compute_equal_length
from netsmt.properties import compute_forwarding
from netsmt.properties import compute_load_balance
from netsmt.properties import compute_local_consistency
from netsmt.properties import compute_multipath_consistency
from netsmt.properties import compute_reachability
from netsmt.properties import compute_router_reachability
from netsmt.properties import compute_routing_loop


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


QUESTIONS = ['forwarding', 'reachability', 'router-reachability', 'blackhole',
             'bounded-length', 'equal-length', 'load-balance', 'multipath',
             'loop', 'local-consistency']


def run_question(args, network):
    hs = HeaderSpace(dst_ips=args.dst_ips or [])
    regexes = PathRegexes(dst=args.final_node, not_dst=args.not_final_node,
                          iface=args.final_iface, not_iface=args.not_final_iface,
                          src=args.ingress_node, not_src=args.not_ingress_node)
    question = args.question
    if question == 'forwarding':
        return [compute_forwarding(network, hs, failures=args.failures)]
    if question == 'blackhole':
        return [compute_black_hole(network, failures=args.failures)]
    if question == 'loop':
        return [compute_routing_loop(network, failures=args.failures)]
    if question == 'reachability':
        results = compute_reachability(network, hs, regexes, failures=args.failures)
    elif question == 'router-reachability':
        results = compute_router_reachability(network, hs, regexes,
                                              failures=args.failures)
    elif question == 'bounded-length':
        results = compute_bounded_length(network, hs, regexes, args.bound,
                                         failures=args.failures)
    elif question == 'equal-length':
        results = compute_equal_length(network, hs, regexes, failures=args.failures)
    elif question == 'load-balance':
        results = compute_load_balance(network, hs, regexes, threshold=args.threshold,
                                       failures=args.failures)
    elif question == 'multipath':
        results = compute_multipath_consistency(network, hs, regexes,
                                                failures=args.failures)
    elif question == 'local-consistency':
        results = compute_local_consistency(network, regexes)
    else:
        raise NameError('Unknown question %s' % question)
    return [results[label] for label in sorted(results.keys())]


def main():
    parser = argparse.ArgumentParser(description='Verify network control plane properties.')
    parser.add_argument("question", choices=QUESTIONS, help="Property to check")
    parser.add_argument("-n", required=True, dest="network", help="Network JSON file")
    parser.add_argument("--dst-ips", dest="dst_ips", nargs='*',
                        help="Destination prefixes of the packets")
    parser.add_argument("--ingress-node", dest="ingress_node", default='.*',
                        help="Regex of the source routers")
    parser.add_argument("--not-ingress-node", dest="not_ingress_node", default=None)
    parser.add_argument("--final-node", dest="final_node", default='.*',
                        help="Regex of the destination routers")
    parser.add_argument("--not-final-node", dest="not_final_node", default=None)
    parser.add_argument("--final-iface", dest="final_iface", default='.*',
                        help="Regex of the destination interfaces")
    parser.add_argument("--not-final-iface", dest="not_final_iface", default=None)
    parser.add_argument("-f", "--failures", dest="failures", default=0, type=int,
                        help="Number of links that may fail")
    parser.add_argument("-b", "--bound", dest="bound", default=5, type=int,
                        help="Path length bound")
    parser.add_argument("-t", "--threshold", dest="threshold", default=0, type=int,
                        help="Allowed load difference")
    parser.add_argument("--draw", dest="draw", default=None,
                        help="Write the topology graph to a dot file")
    parser.add_argument("-v", dest="verbose", action='store_true', help="Info logging")
    parser.add_argument("--debug", dest="debug", action='store_true', help="Debug logging")
    args = parser.parse_args()

    level = logging.WARNING
    if args.verbose:
        level = logging.INFO
    if args.debug:
        level = logging.DEBUG
    logging.basicConfig(level=level,
                        format='%(asctime)s %(name)s %(levelname)s %(message)s')

    try:
        network = read_network(args.network)
        if args.draw:
            Graph(network.configurations, network.links).draw(args.draw)
        results = run_question(args, network)
    except (NetSMTError, IOError, KeyError, ValueError) as err:
        print("Error: %s" % err, file=sys.stderr)
        sys.exit(1)

    for result in results:
        print(result.describe())
        print('')


if __name__ == '__main__':
    main()
