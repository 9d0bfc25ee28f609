"""
Symbolic verification of network control planes with z3
"""

__author__ = "Ahmed El-Hassany"
__email__ = "eahmed@ethz.ch"
