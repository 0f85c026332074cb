"""Inventory stock ledger service.

Product stock only changes through validated movements, each of which is
recorded atomically with an append-only ledger entry.
"""

__version__ = "0.1.0"
