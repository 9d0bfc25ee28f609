"""
Symbolic interpretation of routing policies.

A policy is an imperative program over the attributes of a route. It is
turned into constraints in SSA form: every modification introduces a new
variable and every If statement ends with a join that picks the value of
each variable changed by either branch.
"""

import logging
from enum import Enum

import z3

from netsmt.common import DEFAULT_LOCAL_PREF
from netsmt.common import OspfType
from netsmt.common import Protocol
from netsmt.common import is_elided
from netsmt.community import CommunityType
from netsmt.community import communities_of_set
from netsmt.community import get_community_list
from netsmt.errors import ConfigurationError
from netsmt.errors import UnsupportedConstructError
from netsmt.policy import AddCommunity
from netsmt.policy import BooleanExprs
from netsmt.policy import CallExpr
from netsmt.policy import Conjunction
from netsmt.policy import ConjunctionChain
from netsmt.policy import DecrementLocalPreference
from netsmt.policy import DecrementMetric
from netsmt.policy import DeleteCommunity
from netsmt.policy import Disjunction
from netsmt.policy import DisjunctionChain
from netsmt.policy import ExplicitPrefixSet
from netsmt.policy import If
from netsmt.policy import IncrementLocalPreference
from netsmt.policy import IncrementMetric
from netsmt.policy import InlineCommunitySet
from netsmt.policy import LiteralInt
from netsmt.policy import MatchCommunitySet
from netsmt.policy import MatchIpv4
from netsmt.policy import MatchIpv6
from netsmt.policy import MatchPrefix6Set
from netsmt.policy import MatchPrefixSet
from netsmt.policy import MatchProtocol
from netsmt.policy import NamedCommunitySet
from netsmt.policy import NamedPrefixSet
from netsmt.policy import Not
from netsmt.policy import PrependAsPath
from netsmt.policy import RetainCommunity
from netsmt.policy import SetDefaultPolicy
from netsmt.policy import SetLocalPreference
from netsmt.policy import SetMetric
from netsmt.policy import SetOrigin
from netsmt.policy import SetOspfMetricType
from netsmt.policy import StaticBooleanExpr
from netsmt.policy import StaticStatement
from netsmt.policy import Statements
from netsmt.policy import WithEnvironmentExpr
from netsmt.policy import get_policy
from netsmt.policy import prepend_length
from netsmt.symbolic import SymbolicOspfType


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class CallContext(Enum):
    NONE = 0
    EXPR_CALL = 1
    STMT_CALL = 2


class ChainContext(Enum):
    NONE = 0
    CONJUNCTION = 1
    DISJUNCTION = 2


# Names used for fresh SSA variables of each attribute
SSA_NAMES = {
    'prefix_length': 'PREFIX-LEN',
    'admin_dist': 'ADMIN-DIST',
    'local_pref': 'LOCAL-PREF',
    'metric': 'METRIC',
    'med': 'MED',
    'ospf_type': 'OSPF-TYPE',
}


def mk_or(*values):
    """Or that drops literal False operands"""
    values = [v for v in values if not z3.is_false(v)]
    if not values:
        return z3.BoolVal(False)
    if len(values) == 1:
        return values[0]
    return z3.Or(values)


def mk_and(*values):
    """And that drops literal True operands"""
    values = [v for v in values if not z3.is_true(v)]
    if not values:
        return z3.BoolVal(True)
    if len(values) == 1:
        return values[0]
    return z3.And(values)


class TransferParam(object):
    """
    Immutable state threaded through the interpretation of a policy.
    `other` is the working version of the input record.
    """
    FIELDS = ['other', 'call_context', 'chain_context', 'default_accept',
              'default_accept_local', 'default_policy', 'initial_call',
              'returned']

    def __init__(self, other, call_context=CallContext.NONE,
                 chain_context=ChainContext.NONE, default_accept=False,
                 default_accept_local=False, default_policy=None,
                 initial_call=True, returned=None):
        self.other = other
        self.call_context = call_context
        self.chain_context = chain_context
        self.default_accept = default_accept
        self.default_accept_local = default_accept_local
        self.default_policy = default_policy
        self.initial_call = initial_call
        # Modifications are void once this holds, e.g. the caller returned
        self.returned = z3.BoolVal(False) if returned is None else returned

    def copy(self, **changes):
        values = dict((f, getattr(self, f)) for f in self.FIELDS)
        values.update(changes)
        return TransferParam(**values)

    def enter_scope(self, returned=None):
        if returned is None:
            returned = self.returned
        return self.copy(initial_call=False, returned=returned)

    def set_other(self, other):
        return self.copy(other=other)

    def set_call_context(self, call_context):
        return self.copy(call_context=call_context)

    def set_chain_context(self, chain_context):
        return self.copy(chain_context=chain_context)

    def set_default_accept(self, value):
        return self.copy(default_accept=value)

    def set_default_accept_local(self, value):
        return self.copy(default_accept_local=value)

    def set_default_policy(self, policy):
        return self.copy(default_policy=policy)


class TransferResult(object):
    """
    Immutable outcome of interpreting statements or an expression: the
    symbolic return value, whether a return happened and which
    attributes were modified.
    """
    def __init__(self, return_value=None, return_assigned=None, changed=frozenset()):
        self.return_value = z3.BoolVal(False) if return_value is None else return_value
        self.return_assigned = (z3.BoolVal(False) if return_assigned is None
                                else return_assigned)
        self.changed = frozenset(changed)

    @classmethod
    def from_expr(cls, value):
        return cls(return_value=value, return_assigned=z3.BoolVal(True))

    def set_return_value(self, value):
        return TransferResult(value, self.return_assigned, self.changed)

    def set_return_assigned(self, value):
        return TransferResult(self.return_value, value, self.changed)

    def add_changed_variable(self, name):
        return TransferResult(self.return_value, self.return_assigned,
                              self.changed | {name})

    def add_changed_variables(self, other):
        return TransferResult(self.return_value, self.return_assigned,
                              self.changed | other.changed)

    def is_changed(self, name):
        return name in self.changed


class TransferFunction(object):
    """
    Relates the record on one side of a logical edge to the record on
    the other side through a routing policy.

    :param enc: the EncoderSlice
    :param conf: Configuration of the router that owns the policy
    :param other: input record
    :param current: output record
    :param to_proto: protocol of the output record
    :param from_proto: protocol of the input record
    :param statements: the policy
    :param added_cost: metric added when crossing the edge
    :param ge: the GraphEdge
    :param is_export: True when filtering routes sent to a neighbor
    """
    def __init__(self, enc, conf, other, current, to_proto, from_proto,
                 statements, added_cost, ge, is_export):
        self.log = logging.getLogger('%s.%s' % (
            self.__module__, self.__class__.__name__))
        self.enc = enc
        self.conf = conf
        self.other = other
        self.current = current
        self.to_proto = to_proto
        self.from_proto = from_proto
        self.statements = statements
        self.added_cost = added_cost
        self.ge = ge
        self.iface = ge.start
        self.is_export = is_export

    # Fresh variables

    def _fresh_int(self, name, value):
        var = z3.Int('%sSSA_%s%d' % (self.enc.slice_name, name, self.enc.generate_id()))
        self.enc.all_variables.append(var)
        self.enc.add(var == value)
        return var

    def _fresh_bool(self, name, value):
        var = z3.Bool('%sSSA_%s%d' % (self.enc.slice_name, name, self.enc.generate_id()))
        self.enc.all_variables.append(var)
        self.enc.add(var == value)
        return var

    def _fresh_bitvec(self, name, size, value):
        var = z3.BitVec('%sSSA_%s%d' % (self.enc.slice_name, name, self.enc.generate_id()), size)
        self.enc.all_variables.append(var)
        self.enc.add(var == value)
        return var

    # Helpers

    def _default_value(self, attr):
        if attr == 'admin_dist':
            return self.from_proto.default_admin_distance(self._is_ibgp())
        if attr == 'med':
            return self.from_proto.default_med()
        return 0

    def _int_or_default(self, record, attr):
        value = getattr(record, attr)
        if is_elided(value):
            return z3.IntVal(self._default_value(attr))
        return value

    def _is_ibgp(self):
        return self.to_proto == Protocol.BGP and self.enc.graph.is_ibgp(self.ge)

    def _send_community(self):
        if self.to_proto != Protocol.BGP:
            return False
        neighbor = self.enc.graph.bgp_neighbors.get(self.ge, None)
        return neighbor is not None and neighbor.send_community

    def _is_returned(self, param, result):
        return mk_or(param.returned, result.return_assigned)

    def _return_value(self, result, value):
        """Only the first return along a path decides the outcome"""
        ret = z3.If(result.return_assigned, result.return_value, z3.BoolVal(value))
        ret = self._fresh_bool('RETURN', ret)
        return result.set_return_value(ret).set_return_assigned(z3.BoolVal(True))

    def _no_overflow(self, metric, proto):
        max_metric = proto.max_metric()
        if max_metric is None:
            return z3.BoolVal(True)
        return metric <= max_metric

    # Matching

    def _match_filter_list(self, filter_list, other):
        acc = z3.BoolVal(False)
        for line in reversed(filter_list.lines):
            matches = self.enc.is_relevant_for(other.prefix_length, line.prefix,
                                               line.length_range)
            action = z3.BoolVal(line.action.value == 'accept')
            acc = z3.If(matches, action, acc)
        return acc

    def _match_prefix_set(self, prefix_set, other):
        if isinstance(prefix_set, ExplicitPrefixSet):
            if not prefix_set.prefix_ranges:
                return z3.BoolVal(True)
            return mk_or(*[self.enc.is_relevant_for(other.prefix_length, r.prefix,
                                                    r.length_range)
                           for r in prefix_set.prefix_ranges])
        if isinstance(prefix_set, NamedPrefixSet):
            filter_list = self.conf.route_filter_lists.get(prefix_set.name, None)
            if filter_list is None:
                raise ConfigurationError(
                    "Router '%s' references undefined route filter list '%s'" % (
                        self.conf.hostname, prefix_set.name))
            return self._match_filter_list(filter_list, other)
        raise UnsupportedConstructError("Unknown prefix set: %s" % (prefix_set,))

    def _community_var(self, other, cvar):
        value = other.communities.get(cvar, None)
        if value is None:
            raise UnsupportedConstructError(
                "Community %s matched on a route without communities (%s)" % (
                    cvar.value, other.name))
        return value

    def _match_community_set(self, community_set, other):
        if isinstance(community_set, InlineCommunitySet):
            return mk_and(*[self._community_var(other, c)
                            for c in communities_of_set(self.conf, community_set)])
        if isinstance(community_set, NamedCommunitySet):
            community_list = get_community_list(self.conf, community_set.name)
            acc = z3.BoolVal(False)
            regexes = communities_of_set(self.conf, community_set)
            for line, cvar in reversed(list(zip(community_list.lines, regexes))):
                action = z3.BoolVal(line.action.value == 'accept')
                acc = z3.If(self._community_var(other, cvar), action, acc)
            return acc
        raise UnsupportedConstructError("Unknown community set: %s" % (community_set,))

    # Expressions

    def _compute_expr(self, expr, param, result):
        """
        Evaluate a boolean expression. Returns a TransferResult holding the
        value and the modified attributes, and the param with the working
        record after any side effects of called policies.
        """
        if isinstance(expr, MatchIpv4):
            return TransferResult.from_expr(z3.BoolVal(True)), param
        if isinstance(expr, (MatchIpv6, MatchPrefix6Set)):
            return TransferResult.from_expr(z3.BoolVal(False)), param

        if isinstance(expr, (Conjunction, Disjunction)):
            is_and = isinstance(expr, Conjunction)
            exprs = expr.conjuncts if is_and else expr.disjuncts
            return self._compute_sequence(exprs, param, result, is_and)

        if isinstance(expr, (ConjunctionChain, DisjunctionChain)):
            is_and = isinstance(expr, ConjunctionChain)
            subroutines = list(expr.subroutines)
            if param.default_policy is not None:
                subroutines.append(CallExpr(param.default_policy.policy))
            if not subroutines:
                return TransferResult.from_expr(z3.BoolVal(True)), param
            context = ChainContext.CONJUNCTION if is_and else ChainContext.DISJUNCTION
            sub_param = param.set_default_policy(None).set_chain_context(context)
            sub_param = sub_param.enter_scope()
            ret, sub_param = self._compute_sequence(subroutines, sub_param, result, is_and)
            return ret, param.set_other(sub_param.other)

        if isinstance(expr, Not):
            ret, param = self._compute_expr(expr.expr, param, result)
            return ret.set_return_value(z3.Not(ret.return_value)), param

        if isinstance(expr, MatchProtocol):
            history = param.other.protocol_history
            if is_elided(history):
                value = z3.BoolVal(expr.protocol == self.from_proto)
            else:
                value = history.check_if_value(expr.protocol)
            return TransferResult.from_expr(value), param

        if isinstance(expr, MatchPrefixSet):
            value = self._match_prefix_set(expr.prefix_set, param.other)
            return TransferResult.from_expr(value), param

        if isinstance(expr, MatchCommunitySet):
            value = self._match_community_set(expr.community_set, param.other)
            return TransferResult.from_expr(value), param

        if isinstance(expr, CallExpr):
            policy = get_policy(self.conf, expr.policy)
            sub_param = param.set_call_context(CallContext.EXPR_CALL)
            sub_param = sub_param.enter_scope(self._is_returned(param, result))
            ret, sub_param = self._compute_scope(policy.statements, sub_param)
            return ret, param.set_other(sub_param.other)

        if isinstance(expr, WithEnvironmentExpr):
            return self._compute_expr(expr.expr, param, result)

        if isinstance(expr, StaticBooleanExpr):
            if expr.kind == BooleanExprs.TRUE:
                value = z3.BoolVal(True)
            elif expr.kind == BooleanExprs.FALSE:
                value = z3.BoolVal(False)
            elif expr.kind == BooleanExprs.CALL_EXPR_CONTEXT:
                value = z3.BoolVal(param.call_context == CallContext.EXPR_CALL)
            elif expr.kind == BooleanExprs.CALL_STATEMENT_CONTEXT:
                value = z3.BoolVal(param.call_context == CallContext.STMT_CALL)
            else:
                raise UnsupportedConstructError("Unknown boolean expression: %s" % (expr,))
            return TransferResult.from_expr(value), param

        raise UnsupportedConstructError("Unknown boolean expression: %s" % (expr,))

    def _compute_sequence(self, exprs, param, result, is_and):
        """
        Conjunction or disjunction of expressions. Side effects of an
        operand only apply when the operands before it did not decide the
        outcome.
        """
        acc = z3.BoolVal(is_and)
        ret = TransferResult()
        for expr in exprs:
            decided = z3.Not(acc) if is_and else acc
            sub_param = param.copy(returned=mk_or(param.returned, decided))
            sub_ret, sub_param = self._compute_expr(expr, sub_param, result)
            param = param.set_other(sub_param.other)
            ret = ret.add_changed_variables(sub_ret)
            if is_and:
                acc = mk_and(acc, sub_ret.return_value)
            else:
                acc = mk_or(acc, sub_ret.return_value)
        ret = ret.set_return_value(acc).set_return_assigned(z3.BoolVal(True))
        return ret, param

    # Modifications

    def _apply_int_expr(self, value, int_expr):
        if isinstance(int_expr, LiteralInt):
            return z3.IntVal(int_expr.value)
        if isinstance(int_expr, IncrementMetric):
            return value + int_expr.addend
        if isinstance(int_expr, DecrementMetric):
            return value - int_expr.subtrahend
        if isinstance(int_expr, IncrementLocalPreference):
            return value + int_expr.addend
        if isinstance(int_expr, DecrementLocalPreference):
            return value - int_expr.subtrahend
        raise UnsupportedConstructError("Unknown integer expression: %s" % (int_expr,))

    def _modify_int(self, param, result, attr, new_value):
        """Rebind an integer attribute unless a return already happened"""
        old = self._int_or_default(param.other, attr)
        value = z3.If(self._is_returned(param, result), old, new_value)
        var = self._fresh_int(SSA_NAMES[attr], value)
        param = param.set_other(param.other.replace(**{attr: var}))
        return param, result.add_changed_variable(attr)

    def _modify_community(self, param, result, cvar, new_value):
        old = param.other.communities.get(cvar, None)
        if old is None:
            return param, result
        value = z3.If(self._is_returned(param, result), old, z3.BoolVal(new_value))
        var = self._fresh_bool(cvar.value, value)
        communities = dict(param.other.communities)
        communities[cvar] = var
        param = param.set_other(param.other.replace(communities=communities))
        return param, result.add_changed_variable(cvar)

    def _modify_ospf_type(self, param, result, metric_type):
        if metric_type not in (OspfType.E1, OspfType.E2):
            raise UnsupportedConstructError("Unknown OSPF metric type: %s" % (metric_type,))
        old_type = param.other.ospf_type
        if is_elided(old_type):
            old = SymbolicOspfType.constant(OspfType.O)
        else:
            old = old_type.bitvec
        value = z3.If(self._is_returned(param, result), old,
                      SymbolicOspfType.constant(metric_type))
        var = self._fresh_bitvec(SSA_NAMES['ospf_type'], 2, value)
        new_type = SymbolicOspfType(self.enc, 'ospfType', bitvec=var)
        param = param.set_other(param.other.replace(ospf_type=new_type))
        return param, result.add_changed_variable('ospf_type')

    # Joins

    def _join_records(self, guard, true_record, false_record):
        """phi function for every attribute that differs between branches"""
        attrs = {}
        for attr in ['prefix_length', 'admin_dist', 'local_pref', 'metric', 'med']:
            t = getattr(true_record, attr)
            f = getattr(false_record, attr)
            if is_elided(t) or is_elided(f) or t.eq(f):
                continue
            attrs[attr] = self._fresh_int(SSA_NAMES[attr], z3.If(guard, t, f))
        t_type = true_record.ospf_type
        f_type = false_record.ospf_type
        if not is_elided(t_type) or not is_elided(f_type):
            t_bv = (SymbolicOspfType.constant(OspfType.O) if is_elided(t_type)
                    else t_type.bitvec)
            f_bv = (SymbolicOspfType.constant(OspfType.O) if is_elided(f_type)
                    else f_type.bitvec)
            if not t_bv.eq(f_bv):
                var = self._fresh_bitvec(SSA_NAMES['ospf_type'], 2, z3.If(guard, t_bv, f_bv))
                attrs['ospf_type'] = SymbolicOspfType(self.enc, 'ospfType', bitvec=var)
        communities = dict(true_record.communities)
        changed_comms = False
        for cvar, t in true_record.communities.items():
            f = false_record.communities.get(cvar, t)
            if not t.eq(f):
                communities[cvar] = self._fresh_bool(cvar.value, z3.If(guard, t, f))
                changed_comms = True
        if changed_comms:
            attrs['communities'] = communities
        if not attrs:
            return true_record
        return true_record.replace(**attrs)

    def _join_results(self, guard, before, true_result, false_result):
        ret = true_result.return_value
        if not ret.eq(false_result.return_value):
            ret = self._fresh_bool(
                'RETURN', z3.If(guard, true_result.return_value, false_result.return_value))
        assigned = true_result.return_assigned
        if not assigned.eq(false_result.return_assigned):
            assigned = self._fresh_bool(
                'RETURN-ASSIGNED',
                z3.If(guard, true_result.return_assigned, false_result.return_assigned))
        changed = before.changed | true_result.changed | false_result.changed
        return TransferResult(ret, assigned, changed)

    # Statements

    def _compute_stmts(self, statements, param, result):
        """Interpret a list of statements, returns (result, param)"""
        for stmt in statements or []:
            if isinstance(stmt, StaticStatement):
                kind = stmt.kind
                if kind in (Statements.EXIT_ACCEPT, Statements.RETURN_TRUE):
                    result = self._return_value(result, True)
                elif kind in (Statements.EXIT_REJECT, Statements.RETURN_FALSE):
                    result = self._return_value(result, False)
                elif kind == Statements.SET_DEFAULT_ACTION_ACCEPT:
                    param = param.set_default_accept(True)
                elif kind == Statements.SET_DEFAULT_ACTION_REJECT:
                    param = param.set_default_accept(False)
                elif kind == Statements.SET_LOCAL_DEFAULT_ACTION_ACCEPT:
                    param = param.set_default_accept_local(True)
                elif kind == Statements.SET_LOCAL_DEFAULT_ACTION_REJECT:
                    param = param.set_default_accept_local(False)
                elif kind == Statements.RETURN_LOCAL_DEFAULT_ACTION:
                    result = self._return_value(result, param.default_accept_local)
                elif kind == Statements.FALL_THROUGH:
                    if param.chain_context == ChainContext.CONJUNCTION:
                        result = self._return_value(result, True)
                    elif param.chain_context == ChainContext.DISJUNCTION:
                        result = self._return_value(result, False)
                    else:
                        raise UnsupportedConstructError(
                            "FallThrough outside of a policy chain")
                elif kind == Statements.RETURN:
                    # Only used as the last statement of a policy
                    pass
                else:
                    raise UnsupportedConstructError("Unknown statement: %s" % (stmt,))

            elif isinstance(stmt, If):
                guard_result, param = self._compute_expr(stmt.guard, param, result)
                result = result.add_changed_variables(guard_result)
                guard = guard_result.return_value
                true_result, true_param = self._compute_stmts(
                    stmt.true_statements, param, result)
                false_result, false_param = self._compute_stmts(
                    stmt.false_statements, param, result)
                record = self._join_records(guard, true_param.other, false_param.other)
                result = self._join_results(guard, result, true_result, false_result)
                param = param.set_other(record)

            elif isinstance(stmt, SetDefaultPolicy):
                param = param.set_default_policy(stmt)

            elif isinstance(stmt, SetMetric):
                old = self._int_or_default(param.other, 'metric')
                new_value = self._apply_int_expr(old, stmt.metric)
                param, result = self._modify_int(param, result, 'metric', new_value)

            elif isinstance(stmt, SetLocalPreference):
                old = self._int_or_default(param.other, 'local_pref')
                new_value = self._apply_int_expr(old, stmt.local_pref)
                param, result = self._modify_int(param, result, 'local_pref', new_value)

            elif isinstance(stmt, SetOspfMetricType):
                param, result = self._modify_ospf_type(param, result, stmt.metric_type)

            elif isinstance(stmt, (AddCommunity, DeleteCommunity)):
                value = isinstance(stmt, AddCommunity)
                for cvar in communities_of_set(self.conf, stmt.community_set):
                    param, result = self._modify_community(param, result, cvar, value)

            elif isinstance(stmt, PrependAsPath):
                old = self._int_or_default(param.other, 'metric')
                new_value = old + prepend_length(stmt.as_list)
                param, result = self._modify_int(param, result, 'metric', new_value)

            elif isinstance(stmt, (RetainCommunity, SetOrigin)):
                # Neither changes a modeled attribute
                pass

            else:
                raise UnsupportedConstructError("Unknown statement: %s" % (stmt,))
        return result, param

    def _compute_scope(self, statements, param):
        """
        Interpret the body of a policy: a fresh return value, the default
        action at the end and, for the outermost policy, the relation to
        the output record.
        """
        result, end_param = self._compute_stmts(statements, param, TransferResult())
        result = self._return_value(result, end_param.default_accept)
        if param.initial_call:
            related = self._relate_variables(end_param.other, result)
            value = z3.If(result.return_value, related, z3.Not(self.current.permitted))
            result = result.set_return_value(value)
        return result, end_param

    # Output record

    def _safe_eq(self, var, value):
        if is_elided(var):
            return z3.BoolVal(True)
        return var == value

    def _safe_eq_enum(self, var, other):
        if is_elided(var):
            return z3.BoolVal(True)
        if is_elided(other):
            return var.is_default()
        return var.mk_equal(other)

    def _relate_variables(self, other, result):
        """Constraints between the final working record and the output record"""
        current = self.current
        is_ibgp = self._is_ibgp()

        other_met = self._int_or_default(other, 'metric')
        met_value = other_met + self.added_cost
        met = self._safe_eq(current.metric, met_value)

        if result.is_changed('local_pref') or is_ibgp:
            lp = self._safe_eq(current.local_pref, self._int_or_default(other, 'local_pref'))
        else:
            lp = self._safe_eq(current.local_pref, DEFAULT_LOCAL_PREF)

        per = current.permitted == other.permitted
        length = self._safe_eq(current.prefix_length,
                               self._int_or_default(other, 'prefix_length'))
        ad = self._safe_eq(current.admin_dist, self._int_or_default(other, 'admin_dist'))
        med = self._safe_eq(current.med, self._int_or_default(other, 'med'))
        rid = self._safe_eq(current.router_id, self._int_or_default(other, 'router_id'))

        iface_area = self.iface.ospf_area
        if is_elided(other.ospf_area) or iface_area is None or is_elided(current.ospf_area):
            area = z3.BoolVal(True)
        else:
            area = current.ospf_area.check_if_value(iface_area)

        if result.is_changed('ospf_type'):
            ospf_type = self._safe_eq_enum(current.ospf_type, other.ospf_type)
        else:
            area_possibly_changed = (not is_elided(other.ospf_type) and
                                     not is_elided(other.ospf_area) and
                                     iface_area is not None)
            copy_old = self._safe_eq_enum(current.ospf_type, other.ospf_type)
            if area_possibly_changed and not is_elided(current.ospf_type):
                # Crossing into another area turns intra area routes inter area
                update = z3.And(other.ospf_type.is_internal(),
                                z3.Not(other.ospf_area.check_if_value(iface_area)))
                ospf_type = z3.If(update, current.ospf_type.check_if_value(OspfType.OIA),
                                  copy_old)
            else:
                ospf_type = copy_old

        comms = []
        send_community = self._send_community()
        for cvar, var in current.communities.items():
            if send_community:
                if cvar.type != CommunityType.REGEX:
                    comms.append(var == other.communities.get(cvar, z3.BoolVal(False)))
            else:
                comms.append(z3.Not(var))

        if is_elided(current.protocol_history) or is_elided(other.protocol_history):
            history = z3.BoolVal(True)
        else:
            history = current.protocol_history.mk_equal(other.protocol_history)

        internal = self._safe_eq(current.bgp_internal, z3.BoolVal(is_ibgp))

        updates = mk_and(per, length, ad, med, lp, met, rid, ospf_type, area,
                         history, internal, *comms)
        no_overflow = self._no_overflow(met_value, self.to_proto)
        return z3.If(no_overflow, updates, z3.Not(current.permitted))

    def _intermediate_prefix_len(self, other):
        """
        On export, a suppressing aggregate that covers the destination
        replaces the prefix length of more specific routes.
        """
        if not self.is_export:
            return other
        router = self.conf.hostname
        aggregates = self.enc.optimizations.relevant_aggregates.get(router, [])
        if not aggregates:
            return other
        suppressed = self.enc.optimizations.suppressed_aggregates.get(router, set())
        prefix_len = other.prefix_length
        for gr in aggregates:
            net = gr.network
            relevant = z3.And(self.enc.first_bits_equal(self.enc.symbolic_packet.dst_ip, net),
                              other.prefix_length > net.prefixlen,
                              z3.BoolVal(net in suppressed))
            prefix_len = z3.If(relevant, z3.IntVal(net.prefixlen), prefix_len)
        var = self._fresh_int(SSA_NAMES['prefix_length'], prefix_len)
        return other.replace(prefix_length=var)

    def compute(self):
        """The constraint relating the input record to the output record"""
        other = self._intermediate_prefix_len(self.other)
        if not self.is_export and self.to_proto == Protocol.BGP and not self._is_ibgp():
            # Local preference is not carried across eBGP sessions
            other = other.replace(local_pref=z3.IntVal(DEFAULT_LOCAL_PREF))
        param = TransferParam(other)
        result, _ = self._compute_scope(self.statements, param)
        return result.return_value
