"""
Symbolic values used by the encoding: small enumerations, packets and
route records.
"""

import math

import z3

from netsmt.common import ELIDED
from netsmt.common import OspfType
from netsmt.common import Protocol
from netsmt.common import TCP_FLAGS
from netsmt.common import is_elided
from netsmt.community import CommunityType


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class SymbolicEnum(object):
    """
    A variable over a small finite domain, represented with the fewest
    bits that can hold every value. A domain of one value needs no
    variable at all.

    :param enc: the encoder slice owning the variable
    :param values: ordered list of the domain, the first is the default
    :param name: name of the bit vector variable
    """
    def __init__(self, enc, values, name, bitvec=None):
        self.enc = enc
        self.values = list(values)
        self.name = name
        size = len(self.values)
        if size <= 1:
            self.num_bits = 0
        else:
            self.num_bits = int(math.ceil(math.log(size, 2)))
        self.value_map = {}
        if self.num_bits > 0:
            for i, value in enumerate(self.values):
                self.value_map[value] = z3.BitVecVal(i, self.num_bits)
        if bitvec is not None or self.num_bits == 0:
            self.bitvec = bitvec
            return
        self.bitvec = z3.BitVec(name, self.num_bits)
        enc.all_variables.append(self.bitvec)
        if size & (size - 1) != 0:
            max_value = z3.BitVecVal(size - 1, self.num_bits)
            enc.add(z3.ULE(self.bitvec, max_value))

    def with_bitvec(self, bitvec):
        """Same domain bound to another bit vector"""
        return self.__class__(self.enc, self.values, self.name, bitvec=bitvec)

    def mk_equal(self, other):
        if self.bitvec is None or other.bitvec is None:
            return z3.BoolVal(True)
        return self.bitvec == other.bitvec

    def check_if_value(self, value):
        if self.bitvec is None:
            return z3.BoolVal(len(self.values) > 0 and self.values[0] == value)
        bv = self.value_map.get(value, None)
        if bv is None:
            return z3.BoolVal(False)
        return self.bitvec == bv

    def is_default(self):
        if self.bitvec is None:
            return z3.BoolVal(True)
        return self.bitvec == self.default_value()

    def default_value(self):
        return z3.BitVecVal(0, max(self.num_bits, 1))

    def value(self, i):
        return self.values[i]

    def __repr__(self):
        return 'SymbolicEnum(%s, %s)' % (self.name, self.values)


class SymbolicOspfType(SymbolicEnum):
    """OSPF route type, intra area (O) is the default"""
    VALUES = [OspfType.O, OspfType.OIA, OspfType.E1, OspfType.E2]

    def __init__(self, enc, name, bitvec=None, values=None):
        super(SymbolicOspfType, self).__init__(enc, values or self.VALUES,
                                               name, bitvec=bitvec)

    def with_bitvec(self, bitvec):
        return SymbolicOspfType(self.enc, self.name, bitvec=bitvec)

    def is_external(self):
        if self.bitvec is None:
            return z3.BoolVal(False)
        return z3.UGE(self.bitvec, z3.BitVecVal(2, 2))

    def is_internal(self):
        if self.bitvec is None:
            return z3.BoolVal(True)
        return z3.ULE(self.bitvec, z3.BitVecVal(1, 2))

    @staticmethod
    def constant(value):
        """The bit vector literal of an OSPF type"""
        return z3.BitVecVal(value.value, 2)


class SymbolicPacket(object):
    """The packet header every forwarding decision of a slice is about"""
    def __init__(self, slice_name):
        self.dst_ip = z3.Int('%sdst-ip' % slice_name)
        self.src_ip = z3.Int('%ssrc-ip' % slice_name)
        self.dst_port = z3.Int('%sdst-port' % slice_name)
        self.src_port = z3.Int('%ssrc-port' % slice_name)
        self.icmp_code = z3.Int('%sicmp-code' % slice_name)
        self.icmp_type = z3.Int('%sicmp-type' % slice_name)
        self.ip_protocol = z3.Int('%sip-protocol' % slice_name)
        self.tcp_flags = {}
        for flag in TCP_FLAGS:
            self.tcp_flags[flag] = z3.Bool('%stcp-%s' % (slice_name, flag))

    def variables(self):
        ret = [self.dst_ip, self.src_ip, self.dst_port, self.src_port,
               self.icmp_code, self.icmp_type, self.ip_protocol]
        for flag in TCP_FLAGS:
            ret.append(self.tcp_flags[flag])
        return ret

    def mk_equal(self, other):
        """Both packets are the same packet"""
        return z3.And([x == y for x, y in zip(self.variables(), other.variables())])


class SymbolicRecord(object):
    """
    A candidate route: one variable per route attribute. Attributes that
    can not affect the outcome are ELIDED. Records are immutable values,
    `replace` returns the next version of a record.
    """

    ATTRIBUTES = ['permitted', 'prefix_length', 'admin_dist', 'local_pref',
                  'metric', 'med', 'router_id', 'bgp_internal', 'ospf_area',
                  'ospf_type', 'protocol_history', 'communities']

    def __init__(self, name, proto, is_used=True, **attrs):
        self.name = name
        self.proto = proto
        self.is_used = is_used
        self.is_env = '_ENV-' in name
        self.is_best = '_BEST' in name
        self.is_best_overall = self.is_best and '_OVERALL' in name
        for attr in self.ATTRIBUTES:
            setattr(self, attr, attrs.pop(attr, ELIDED))
        if attrs:
            raise TypeError("Unknown record attributes %s" % sorted(attrs.keys()))
        if is_elided(self.communities):
            self.communities = {}

    @classmethod
    def create(cls, enc, name, router, proto, history=None):
        """
        Allocate the variables of a new record, the optimizations of the
        slice decide which attributes exist.
        """
        opts = enc.optimizations
        protocols = enc.protocols[router]
        has_ospf = Protocol.OSPF in protocols
        has_bgp = Protocol.BGP in protocols
        is_best = '_BEST' in name
        is_best_overall = is_best and '_OVERALL' in name
        model_ad = (is_best_overall and len(protocols) > 1) or opts.keep_admin_dist
        model_ibgp = router in opts.need_bgp_internal

        attrs = {}

        def mk_int(suffix):
            var = z3.Int('%s_%s' % (name, suffix))
            enc.all_variables.append(var)
            return var

        def mk_bool(suffix):
            var = z3.Bool('%s_%s' % (name, suffix))
            enc.all_variables.append(var)
            return var

        attrs['permitted'] = mk_bool('permitted')
        attrs['prefix_length'] = mk_int('prefixLength')
        if history is not None:
            attrs['protocol_history'] = history

        if proto == Protocol.BEST:
            attrs['metric'] = mk_int('metric')
            if opts.keep_local_pref:
                attrs['local_pref'] = mk_int('localPref')
            if model_ad:
                attrs['admin_dist'] = mk_int('adminDist')
            if opts.keep_med:
                attrs['med'] = mk_int('med')
            if model_ibgp:
                attrs['bgp_internal'] = mk_bool('bgpInternal')
            if has_ospf and opts.keep_ospf_type:
                attrs['ospf_type'] = SymbolicOspfType(enc, '%s_ospfType' % name)
        elif proto == Protocol.BGP:
            attrs['metric'] = mk_int('metric')
            if opts.keep_local_pref:
                attrs['local_pref'] = mk_int('localPref')
            if opts.keep_admin_dist:
                attrs['admin_dist'] = mk_int('adminDist')
            if opts.keep_med:
                attrs['med'] = mk_int('med')
            if model_ibgp:
                attrs['bgp_internal'] = mk_bool('bgpInternal')
        elif proto == Protocol.OSPF:
            attrs['metric'] = mk_int('metric')
            if opts.keep_local_pref:
                attrs['local_pref'] = mk_int('localPref')
            if opts.keep_admin_dist:
                attrs['admin_dist'] = mk_int('adminDist')
            if opts.keep_ospf_type:
                attrs['ospf_type'] = SymbolicOspfType(enc, '%s_ospfType' % name)
        elif opts.keep_admin_dist:
            # Connected and static routes only carry an administrative distance
            attrs['admin_dist'] = mk_int('adminDist')

        # OSPF area only on the best OSPF and best overall choices
        if is_best and has_ospf and proto in (Protocol.OSPF, Protocol.BEST):
            area_ids = sorted(enc.graph.area_ids[router])
            if len(area_ids) > 1:
                attrs['ospf_area'] = SymbolicEnum(enc, area_ids, '%s_ospfArea' % name)

        if proto == Protocol.BEST:
            need_id = router in opts.routers_with_router_id
        else:
            need_id = is_best and opts.need_router_id[router].get(proto, False)
        if need_id:
            attrs['router_id'] = mk_int('routerID')

        communities = {}
        if proto == Protocol.BGP or (has_bgp and proto == Protocol.BEST):
            for cvar in enc.all_communities:
                suffix = cvar.value
                if cvar.type == CommunityType.OTHER:
                    suffix = suffix + '_OTHER'
                communities[cvar] = mk_bool('community_%s' % suffix)
        attrs['communities'] = communities
        return cls(name, proto, **attrs)

    @classmethod
    def unused(cls, name, proto):
        """Placeholder for a record that is replaced by the other end's record"""
        return cls(name, proto, is_used=False)

    def replace(self, **attrs):
        """Returns a new version of the record with some attributes rebound"""
        values = {}
        for attr in self.ATTRIBUTES:
            values[attr] = getattr(self, attr)
        values['communities'] = dict(self.communities)
        values.update(attrs)
        return SymbolicRecord(self.name, self.proto, is_used=self.is_used, **values)

    def int_variables(self):
        """Present integer attributes as (attribute, variable) pairs"""
        ret = []
        for attr in ['admin_dist', 'med', 'local_pref', 'metric',
                     'prefix_length', 'router_id']:
            value = getattr(self, attr)
            if not is_elided(value):
                ret.append((attr, value))
        return ret

    def __repr__(self):
        return 'SymbolicRecord(%s)' % self.name
