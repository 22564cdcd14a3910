"""
Trade lifecycle kernel.

A finite-state machine that moves a buyer/seller/logistics trade from
inquiry to settlement, records every attempt in a hash-chained audit log
and serves a bounded event feed to observers.
"""

__version__ = "0.1.0"
