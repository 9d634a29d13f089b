"""Unit billing ledger: dues and utility periods, penalties, credit pools and payment reversal."""

__version__ = "0.1.0"
