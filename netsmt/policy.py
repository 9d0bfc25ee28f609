"""
Routing policy language: statements, boolean expressions and integer
expressions. Every construct is an immutable namedtuple, the set of
constructs is closed; interpreters dispatch on the node type and raise
UnsupportedConstructError for anything they don't know.
"""

from collections import namedtuple
from enum import Enum

from netsmt.errors import ConfigurationError
from netsmt.errors import UnsupportedConstructError


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class Statements(Enum):
    """Kinds of statements without arguments"""
    EXIT_ACCEPT = 'ExitAccept'
    EXIT_REJECT = 'ExitReject'
    RETURN_TRUE = 'ReturnTrue'
    RETURN_FALSE = 'ReturnFalse'
    SET_DEFAULT_ACTION_ACCEPT = 'SetDefaultActionAccept'
    SET_DEFAULT_ACTION_REJECT = 'SetDefaultActionReject'
    SET_LOCAL_DEFAULT_ACTION_ACCEPT = 'SetLocalDefaultActionAccept'
    SET_LOCAL_DEFAULT_ACTION_REJECT = 'SetLocalDefaultActionReject'
    RETURN_LOCAL_DEFAULT_ACTION = 'ReturnLocalDefaultAction'
    FALL_THROUGH = 'FallThrough'
    RETURN = 'Return'


class BooleanExprs(Enum):
    """Kinds of boolean expressions without arguments"""
    TRUE = 'True'
    FALSE = 'False'
    CALL_EXPR_CONTEXT = 'CallExprContext'
    CALL_STATEMENT_CONTEXT = 'CallStatementContext'


# Boolean expressions
MatchIpv4 = namedtuple('MatchIpv4', [])
MatchIpv6 = namedtuple('MatchIpv6', [])
Conjunction = namedtuple('Conjunction', ['conjuncts'])
Disjunction = namedtuple('Disjunction', ['disjuncts'])
ConjunctionChain = namedtuple('ConjunctionChain', ['subroutines'])
DisjunctionChain = namedtuple('DisjunctionChain', ['subroutines'])
Not = namedtuple('Not', ['expr'])
MatchProtocol = namedtuple('MatchProtocol', ['protocol'])
MatchPrefixSet = namedtuple('MatchPrefixSet', ['prefix_set'])
MatchPrefix6Set = namedtuple('MatchPrefix6Set', ['prefix_set'])
MatchCommunitySet = namedtuple('MatchCommunitySet', ['community_set'])
CallExpr = namedtuple('CallExpr', ['policy'])
WithEnvironmentExpr = namedtuple('WithEnvironmentExpr', ['expr'])
StaticBooleanExpr = namedtuple('StaticBooleanExpr', ['kind'])

# Prefix sets
ExplicitPrefixSet = namedtuple('ExplicitPrefixSet', ['prefix_ranges'])
NamedPrefixSet = namedtuple('NamedPrefixSet', ['name'])

# Community sets, inline communities are 'high:low' strings
InlineCommunitySet = namedtuple('InlineCommunitySet', ['communities'])
NamedCommunitySet = namedtuple('NamedCommunitySet', ['name'])

# Statements
StaticStatement = namedtuple('StaticStatement', ['kind'])
If = namedtuple('If', ['guard', 'true_statements', 'false_statements'])
SetDefaultPolicy = namedtuple('SetDefaultPolicy', ['policy'])
SetMetric = namedtuple('SetMetric', ['metric'])
SetLocalPreference = namedtuple('SetLocalPreference', ['local_pref'])
SetOspfMetricType = namedtuple('SetOspfMetricType', ['metric_type'])
AddCommunity = namedtuple('AddCommunity', ['community_set'])
DeleteCommunity = namedtuple('DeleteCommunity', ['community_set'])
RetainCommunity = namedtuple('RetainCommunity', ['community_set'])
PrependAsPath = namedtuple('PrependAsPath', ['as_list'])
SetOrigin = namedtuple('SetOrigin', ['origin'])

# Integer expressions
LiteralInt = namedtuple('LiteralInt', ['value'])
IncrementMetric = namedtuple('IncrementMetric', ['addend'])
DecrementMetric = namedtuple('DecrementMetric', ['subtrahend'])
IncrementLocalPreference = namedtuple('IncrementLocalPreference', ['addend'])
DecrementLocalPreference = namedtuple('DecrementLocalPreference', ['subtrahend'])

# AS path lists
LiteralAsList = namedtuple('LiteralAsList', ['as_list'])
MultipliedAs = namedtuple('MultipliedAs', ['as_num', 'number'])


EXIT_ACCEPT = StaticStatement(Statements.EXIT_ACCEPT)
EXIT_REJECT = StaticStatement(Statements.EXIT_REJECT)
RETURN_TRUE = StaticStatement(Statements.RETURN_TRUE)
RETURN_FALSE = StaticStatement(Statements.RETURN_FALSE)
FALL_THROUGH = StaticStatement(Statements.FALL_THROUGH)
TRUE_EXPR = StaticBooleanExpr(BooleanExprs.TRUE)
FALSE_EXPR = StaticBooleanExpr(BooleanExprs.FALSE)


def _children(node):
    """Returns (sub expressions, sub statement lists) of a node"""
    if isinstance(node, If):
        return [node.guard], [node.true_statements, node.false_statements]
    if isinstance(node, Conjunction):
        return list(node.conjuncts), []
    if isinstance(node, Disjunction):
        return list(node.disjuncts), []
    if isinstance(node, (ConjunctionChain, DisjunctionChain)):
        return list(node.subroutines), []
    if isinstance(node, (Not, WithEnvironmentExpr)):
        return [node.expr], []
    return [], []


def walk(statements, configuration, visited=None):
    """
    Depth first iteration over every statement and expression reachable
    from a list of statements. Called policies are entered once.
    """
    if visited is None:
        visited = set()
    stack = list(reversed(statements or []))
    while stack:
        node = stack.pop()
        yield node
        called = None
        if isinstance(node, CallExpr):
            called = node.policy
        elif isinstance(node, SetDefaultPolicy):
            called = node.policy
        if called is not None and called not in visited:
            visited.add(called)
            policy = get_policy(configuration, called)
            for sub in walk(policy.statements, configuration, visited):
                yield sub
        exprs, lists = _children(node)
        for lst in reversed(lists):
            stack.extend(reversed(lst or []))
        stack.extend(reversed(exprs))


def get_policy(configuration, name):
    """Look up a named routing policy of a router"""
    policy = configuration.routing_policies.get(name, None)
    if policy is None:
        raise ConfigurationError(
            "Router '%s' references undefined routing policy '%s'" % (
                configuration.hostname, name))
    return policy


def prepend_length(as_list):
    """How many times an AS path gets longer by a prepend"""
    if isinstance(as_list, MultipliedAs):
        if not isinstance(as_list.number, LiteralInt):
            raise UnsupportedConstructError(
                "Prepend count must be a literal: %s" % (as_list.number,))
        return as_list.number.value
    if isinstance(as_list, LiteralAsList):
        return len(as_list.as_list)
    raise UnsupportedConstructError("Unknown AS path list: %s" % (as_list,))
