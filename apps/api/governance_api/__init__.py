"""Governance ledger API: hash-chained audit ledger, report runs and signatures."""

__version__ = "0.1.0"
