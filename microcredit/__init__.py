"""
Microcredit Loan Engine

Amortization schedules and payment settlement for microcredit portfolios,
with Decimal-precise money handling and atomic persistence of settlements.
"""

__version__ = "1.0.0"
