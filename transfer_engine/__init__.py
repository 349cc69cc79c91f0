"""
Funds Transfer Engine

A banking backend core that moves money between accounts atomically,
keeps an append-only ledger of entries, and stays correct under
concurrent transfers on the same accounts.
"""

__version__ = "1.0.0"
