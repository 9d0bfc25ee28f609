"""
Errors raised while building or solving an encoding
"""


__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"


class NetSMTError(Exception):
    """Base class for all encoder errors"""
    pass


class UnsupportedConstructError(NetSMTError):
    """A policy, expression or ACL construct that is not modeled"""
    pass


class ConfigurationError(NetSMTError):
    """The configurations reference something that does not exist"""
    pass


class StructuralMismatchError(NetSMTError):
    """Two encodings can not be compared to each other"""
    pass
