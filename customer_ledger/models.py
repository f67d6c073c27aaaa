"""
Ledger Data Model

Accounts (customers and suppliers), the raw source records the statement is
reconciled from, and the derived LedgerEntry rows. Raw records are stored in
the generic record store; LedgerEntry rows are never persisted.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .money import ZERO
from .storage import StorageRecord


CUSTOMERS_TABLE = "customers"
SUPPLIERS_TABLE = "suppliers"
SALES_TABLE = "sales"
PAYMENTS_TABLE = "customer_payments"
SETTLEMENTS_TABLE = "cash_drawer_transactions"
PURCHASES_TABLE = "purchase_invoices"

# Only settlement rows of this kind count towards the amount paid at sale time
SETTLEMENT_KIND_SALE = "sale"


class SaleKind(Enum):
    """Kinds of sale invoice"""
    SALE = "Sale"
    RETURN = "Sale Return"


class PaymentKind(Enum):
    """Kinds of customer payment record"""
    PAYMENT = "payment"  # Reduces what the customer owes
    LOAN = "loan"        # Cash advanced to the customer, increases what they owe


class PurchaseKind(Enum):
    """Kinds of purchase invoice on a supplier ledger"""
    PURCHASE = "Purchase"
    PURCHASE_RETURN = "Purchase Return"


class EntryKind(Enum):
    """Classified statement row kinds"""
    OPENING_BALANCE = "opening_balance"
    SALE_INVOICE = "sale_invoice"
    SALE_RETURN = "sale_return"
    PAYMENT = "payment"
    LOAN = "loan"
    LINKED_PURCHASE = "linked_purchase"
    LINKED_PURCHASE_RETURN = "linked_purchase_return"


class SourceKind(Enum):
    """Source ledgers a statement is reconciled from"""
    CUSTOMER = "customer"
    SALES = "sales"
    PAYMENTS = "payments"
    SETTLEMENTS = "settlements"
    LINKED_PURCHASES = "linked_purchases"
    SALE_PAYMENTS = "sale_payments"


@dataclass
class Customer(StorageRecord):
    """
    Trading-partner account under reconciliation.
    A positive opening balance means the customer owes us.
    """
    name: str
    opening_balance: Decimal = ZERO
    linked_supplier_id: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True

    _decimal_fields = ("opening_balance",)


@dataclass
class Supplier(StorageRecord):
    """Supplier account; may be linked to a customer so their activity nets"""
    name: str
    opening_balance: Decimal = ZERO
    linked_customer_id: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True

    _decimal_fields = ("opening_balance",)


@dataclass
class SaleRecord(StorageRecord):
    """
    Sale invoice or sale return.

    total_amount is stored as a magnitude with an explicit kind. Legacy rows
    carry returns pre-negated; readers only ever use abs(total_amount).
    """
    customer_id: str
    invoice_number: str
    total_amount: Decimal
    kind: SaleKind = SaleKind.SALE
    safe_name: Optional[str] = None
    employee_name: Optional[str] = None

    _decimal_fields = ("total_amount",)
    _enum_fields = {"kind": SaleKind}

    @property
    def timestamp(self) -> datetime:
        return self.created_at


@dataclass
class PaymentRecord(StorageRecord):
    """
    Customer payment; kind is None on rows that predate tagging.
    A payment with a sale_id was made against that invoice and counts toward
    its paid amount instead of appearing as a standalone row.
    """
    customer_id: str
    amount: Decimal
    notes: Optional[str] = None
    kind: Optional[PaymentKind] = None
    safe_name: Optional[str] = None
    employee_name: Optional[str] = None
    sale_id: Optional[str] = None

    _decimal_fields = ("amount",)
    _enum_fields = {"kind": PaymentKind}

    @property
    def timestamp(self) -> datetime:
        return self.created_at


@dataclass
class SettlementRecord(StorageRecord):
    """Cash-drawer transaction recording what was collected against a sale"""
    sale_id: str
    amount: Decimal
    transaction_kind: str = SETTLEMENT_KIND_SALE
    safe_name: Optional[str] = None
    performed_by: Optional[str] = None

    _decimal_fields = ("amount",)


@dataclass
class PurchaseRecord(StorageRecord):
    """Purchase invoice or purchase return on a supplier ledger"""
    supplier_id: str
    invoice_number: str
    total_amount: Decimal
    kind: PurchaseKind = PurchaseKind.PURCHASE
    supplier_name: Optional[str] = None

    _decimal_fields = ("total_amount",)
    _enum_fields = {"kind": PurchaseKind}

    @property
    def timestamp(self) -> datetime:
        return self.created_at


@dataclass(frozen=True)
class LedgerEntry:
    """
    One classified, signed, time-ordered statement row.

    Only signed_amount feeds the running balance; gross_value and paid_value
    are display columns. Rows are immutable: the calculator and assembler
    return new instances with their fields filled in.
    """
    id: str
    timestamp: datetime
    kind: EntryKind
    description: str
    gross_value: Decimal
    paid_value: Decimal
    signed_amount: Decimal
    running_balance: Optional[Decimal] = None
    sequence_index: Optional[int] = None
    source_id: Optional[str] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None
    safe_name: Optional[str] = None
    employee_name: Optional[str] = None
    entry_date: Optional[str] = None
    entry_time: Optional[str] = None

    @property
    def increases_balance(self) -> bool:
        return self.signed_amount > ZERO

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary"""
        return {
            "id": self.id,
            "sequence_index": self.sequence_index,
            "timestamp": self.timestamp.isoformat(),
            "date": self.entry_date,
            "time": self.entry_time,
            "kind": self.kind.value,
            "description": self.description,
            "gross_value": str(self.gross_value),
            "paid_value": str(self.paid_value),
            "signed_amount": str(self.signed_amount),
            "running_balance": str(self.running_balance) if self.running_balance is not None else None,
            "source_id": self.source_id,
            "invoice_number": self.invoice_number,
            "notes": self.notes,
            "safe_name": self.safe_name,
            "employee_name": self.employee_name,
        }
