#!/usr/bin/env python
"""
Generate an n x n grid of OSPF routers as a network JSON file.
Every router has one host network and one interface per grid neighbor.
"""

import argparse
import json


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


def router_name(x, y):
    return 'R%d%d' % (x, y)


def gen_grid(n, mode):
    routers = {}
    for x in range(1, n + 1):
        for y in range(1, n + 1):
            name = router_name(x, y)
            routers[name] = {
                'hostname': name,
                'interfaces': [{'name': 'host', 'address': '10.%d.%d.1/24' % (x, y),
                                'ospf_enabled': mode == 'ospf', 'ospf_cost': 1}],
                'static_routes': [],
            }
            if mode == 'ospf':
                routers[name]['ospf'] = {'router_id': '192.168.%d.%d' % (x, y)}

    links = []
    subnet = 0
    for x in range(1, n + 1):
        for y in range(1, n + 1):
            # right and down neighbors
            for nx_, ny_ in [(x + 1, y), (x, y + 1)]:
                if nx_ > n or ny_ > n:
                    continue
                here = router_name(x, y)
                there = router_name(nx_, ny_)
                prefix = '172.16.%d' % (subnet // 64)
                last = (subnet % 64) * 4
                iface1 = 'to_%s' % there
                iface2 = 'to_%s' % here
                routers[here]['interfaces'].append(
                    {'name': iface1, 'address': '%s.%d/30' % (prefix, last + 1),
                     'ospf_enabled': mode == 'ospf', 'ospf_cost': 1})
                routers[there]['interfaces'].append(
                    {'name': iface2, 'address': '%s.%d/30' % (prefix, last + 2),
                     'ospf_enabled': mode == 'ospf', 'ospf_cost': 1})
                links.append([here, iface1, there, iface2])
                subnet += 1

    if mode == 'static':
        # Every router routes the host network of R11 towards the top left
        for x in range(1, n + 1):
            for y in range(1, n + 1):
                if (x, y) == (1, 1):
                    continue
                if x > 1:
                    iface = 'to_%s' % router_name(x - 1, y)
                else:
                    iface = 'to_%s' % router_name(x, y - 1)
                routers[router_name(x, y)]['static_routes'].append(
                    {'network': '10.1.1.0/24', 'next_hop_interface': iface})

    return {'routers': [routers[name] for name in sorted(routers)], 'links': links}


def main():
    parser = argparse.ArgumentParser(description='Generate a grid network.')
    parser.add_argument("n", type=int, help="Size of the grid")
    parser.add_argument("mode", choices=['ospf', 'static'])
    parser.add_argument("-o", dest="out", default=None, help="Output file")
    args = parser.parse_args()
    out = args.out or 'grid%d-%s.json' % (args.n, args.mode)
    print('Generating network for grid of size %d in mode %s' % (args.n, args.mode))
    with open(out, 'w') as f:
        json.dump(gen_grid(args.n, args.mode), f, indent=2, sort_keys=True)


if __name__ == '__main__':
    main()
