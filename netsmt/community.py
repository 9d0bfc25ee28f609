"""
BGP community variables shared by all route records of a slice
"""

import re
from collections import namedtuple
from enum import Enum

from netsmt.errors import ConfigurationError
from netsmt.errors import UnsupportedConstructError
from netsmt.policy import AddCommunity
from netsmt.policy import DeleteCommunity
from netsmt.policy import InlineCommunitySet
from netsmt.policy import MatchCommunitySet
from netsmt.policy import NamedCommunitySet
from netsmt.policy import RetainCommunity
from netsmt.policy import walk


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class CommunityType(Enum):
    EXACT = 0
    REGEX = 1
    # Values only the environment can attach, matched by a regex
    OTHER = 2


CommunityVar = namedtuple('CommunityVar', ['type', 'value', 'long'])


def exact_community(value):
    """CommunityVar for a literal 'high:low' community"""
    parts = value.split(':')
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise UnsupportedConstructError("Community is not a literal: %s" % value)
    high, low = int(parts[0]), int(parts[1])
    return CommunityVar(CommunityType.EXACT, '%d:%d' % (high, low), (high << 16) | low)


def get_community_list(configuration, name):
    community_list = configuration.community_lists.get(name, None)
    if community_list is None:
        raise ConfigurationError(
            "Router '%s' references undefined community list '%s'" % (
                configuration.hostname, name))
    return community_list


def communities_of_set(configuration, community_set):
    """The community variables a community set expression refers to"""
    if isinstance(community_set, InlineCommunitySet):
        return [exact_community(c) for c in community_set.communities]
    if isinstance(community_set, NamedCommunitySet):
        community_list = get_community_list(configuration, community_set.name)
        return [CommunityVar(CommunityType.REGEX, line.regex, None)
                for line in community_list.lines]
    raise UnsupportedConstructError("Unknown community set: %s" % (community_set,))


def sort_key(cvar):
    return (cvar.type.value, cvar.value)


def find_all_communities(configurations):
    """
    Scan every routing policy of every router for communities that are
    matched, added or removed. Each regex gets an OTHER companion.
    Returns a sorted list.
    """
    comms = set()
    for router in sorted(configurations.keys()):
        conf = configurations[router]
        for name in sorted(conf.routing_policies.keys()):
            policy = conf.routing_policies[name]
            for node in walk(policy.statements, conf):
                if isinstance(node, (AddCommunity, DeleteCommunity, RetainCommunity,
                                     MatchCommunitySet)):
                    comms.update(communities_of_set(conf, node.community_set))
    others = set()
    for cvar in comms:
        if cvar.type == CommunityType.REGEX:
            others.add(CommunityVar(CommunityType.OTHER, cvar.value, cvar.long))
    comms.update(others)
    return sorted(comms, key=sort_key)


def community_dependencies(communities):
    """
    For each regex community, the exact communities it matches and its
    OTHER bucket. A route carries the regex iff it carries one of these.
    """
    deps = {}
    for c1 in communities:
        if c1.type != CommunityType.REGEX:
            continue
        pattern = re.compile(c1.value)
        lst = []
        for c2 in communities:
            if c2.type == CommunityType.EXACT and pattern.search(c2.value):
                lst.append(c2)
            elif c2.type == CommunityType.OTHER and c2.value == c1.value:
                lst.append(c2)
        deps[c1] = lst
    return deps
