"""
Customer Ledger Reconciliation

Builds a chronological customer account statement with a running balance from
sales, payments, loans, cash-drawer settlements and linked-supplier purchases,
and keeps it reconciled with an independently aggregated current balance.
All monetary values use Decimal.
"""

__version__ = "1.0.0"
