"""
Transaction Recording Module

Write side of the source ledgers the reconciliation engine reads from: sale
invoices and returns, customer payments and loans, cash-drawer settlements,
and supplier purchase invoices. Amounts are stored as unsigned magnitudes
with an explicit kind, and every write publishes a customer-scoped change
notification.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Any, List, Optional
import logging
import uuid

from .classification import NoteClassifier
from .customers import CustomerManager
from .errors import NotFoundError
from .events import EventDispatcher, EventPublisherMixin, LedgerEvent
from .models import (
    PaymentKind, PaymentRecord, PurchaseKind, PurchaseRecord, SaleKind, SaleRecord,
    SettlementRecord, SourceKind, PAYMENTS_TABLE, PURCHASES_TABLE, SALES_TABLE,
    SETTLEMENTS_TABLE, SETTLEMENT_KIND_SALE
)
from .money import to_decimal
from .storage import StorageInterface


def _magnitude(amount: Any, label: str) -> Decimal:
    value = to_decimal(amount)
    if value < 0:
        raise ValueError(f"{label} must not be negative")
    return value


class TransactionRecorder(EventPublisherMixin):
    """
    Records sales, payments, settlements and purchases
    """

    def __init__(
        self,
        storage: StorageInterface,
        customer_manager: CustomerManager,
        note_classifier: Optional[NoteClassifier] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.customer_manager = customer_manager
        self.note_classifier = note_classifier or NoteClassifier()
        self.logger = logging.getLogger("customer_ledger.records")
        if event_dispatcher:
            self.set_event_dispatcher(event_dispatcher)

    # Sales

    def record_sale(
        self,
        customer_id: str,
        invoice_number: str,
        total_amount: Decimal,
        kind: SaleKind = SaleKind.SALE,
        safe_name: Optional[str] = None,
        employee_name: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> SaleRecord:
        """
        Record a sale invoice or sale return

        Args:
            customer_id: Customer the invoice is issued to
            invoice_number: Human-readable invoice number
            total_amount: Invoice total as a non-negative magnitude
            kind: SALE or RETURN; the sign is derived from it when reconciling
            safe_name: Cash drawer the sale went through
            employee_name: Cashier
            created_at: Transaction time, defaults to now

        Returns:
            Stored SaleRecord

        Raises:
            NotFoundError: If the customer does not exist
            ValueError: If the amount is negative
        """
        self.customer_manager.require_customer(customer_id)
        now = created_at or datetime.now(timezone.utc)
        sale = SaleRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            invoice_number=invoice_number,
            total_amount=_magnitude(total_amount, "Sale total"),
            kind=kind,
            safe_name=safe_name,
            employee_name=employee_name
        )
        self.storage.save(SALES_TABLE, sale.id, sale.to_dict())
        self.publish_change(LedgerEvent.SALE_RECORDED, customer_id, SourceKind.SALES, sale.id,
                            {"kind": sale.kind.value, "total_amount": str(sale.total_amount)})
        return sale

    def get_sale(self, sale_id: str) -> SaleRecord:
        data = self.storage.load(SALES_TABLE, sale_id)
        if not data:
            raise NotFoundError("sale", sale_id)
        return SaleRecord.from_dict(data)

    def update_sale(self, sale_id: str, total_amount: Optional[Decimal] = None,
                    invoice_number: Optional[str] = None, kind: Optional[SaleKind] = None) -> SaleRecord:
        """Edit a sale in place; its transaction time is kept"""
        sale = self.get_sale(sale_id)
        if total_amount is not None:
            sale.total_amount = _magnitude(total_amount, "Sale total")
        if invoice_number is not None:
            sale.invoice_number = invoice_number
        if kind is not None:
            sale.kind = kind
        sale.updated_at = datetime.now(timezone.utc)
        self.storage.save(SALES_TABLE, sale.id, sale.to_dict())
        self.publish_change(LedgerEvent.SALE_UPDATED, sale.customer_id, SourceKind.SALES, sale.id,
                            {"kind": sale.kind.value, "total_amount": str(sale.total_amount)})
        return sale

    def delete_sale(self, sale_id: str) -> None:
        """Delete a sale together with its settlement records and the payments made against it"""
        sale = self.get_sale(sale_id)
        settlements = self.storage.find(SETTLEMENTS_TABLE, {"sale_id": sale_id})
        payments = self.storage.find(PAYMENTS_TABLE, {"sale_id": sale_id})
        with self.storage.atomic():
            for settlement in settlements:
                self.storage.delete(SETTLEMENTS_TABLE, settlement["id"])
            for payment in payments:
                self.storage.delete(PAYMENTS_TABLE, payment["id"])
            self.storage.delete(SALES_TABLE, sale_id)
        self.logger.info(f"Deleted sale {sale_id}, {len(settlements)} settlement record(s) "
                         f"and {len(payments)} payment(s)")
        self.publish_change(LedgerEvent.SALE_DELETED, sale.customer_id, SourceKind.SALES, sale_id,
                            {"settlements_removed": len(settlements), "payments_removed": len(payments)})

    def list_sales(self, customer_id: str) -> List[SaleRecord]:
        return [SaleRecord.from_dict(data) for data in self.storage.find(SALES_TABLE, {"customer_id": customer_id})]

    # Payments

    def record_payment(
        self,
        customer_id: str,
        amount: Decimal,
        notes: Optional[str] = None,
        kind: Optional[PaymentKind] = None,
        safe_name: Optional[str] = None,
        employee_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        sale_id: Optional[str] = None
    ) -> PaymentRecord:
        """
        Record a customer payment or a loan to the customer

        The kind is stored on the record. When the caller does not give one it
        is inferred once, here, from the loan marker at the start of the notes.
        A payment given a sale_id is made against that invoice and must belong
        to the same customer.
        """
        self.customer_manager.require_customer(customer_id)
        if sale_id is not None and self.get_sale(sale_id).customer_id != customer_id:
            raise ValueError(f"Sale {sale_id} does not belong to customer {customer_id}")
        if kind is None:
            kind = self.note_classifier.infer_kind(notes)

        now = created_at or datetime.now(timezone.utc)
        payment = PaymentRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            amount=_magnitude(amount, "Payment amount"),
            notes=notes,
            kind=kind,
            safe_name=safe_name,
            employee_name=employee_name,
            sale_id=sale_id
        )
        self.storage.save(PAYMENTS_TABLE, payment.id, payment.to_dict())
        self.publish_change(LedgerEvent.PAYMENT_RECORDED, customer_id, SourceKind.PAYMENTS, payment.id,
                            {"kind": kind.value, "amount": str(payment.amount), "sale_id": sale_id})
        return payment

    def delete_payment(self, payment_id: str) -> None:
        data = self.storage.load(PAYMENTS_TABLE, payment_id)
        if not data:
            raise NotFoundError("payment", payment_id)
        self.storage.delete(PAYMENTS_TABLE, payment_id)
        self.publish_change(LedgerEvent.PAYMENT_DELETED, data.get("customer_id"), SourceKind.PAYMENTS, payment_id)

    # Settlements

    def record_settlement(
        self,
        sale_id: str,
        amount: Decimal,
        transaction_kind: str = SETTLEMENT_KIND_SALE,
        safe_name: Optional[str] = None,
        performed_by: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> SettlementRecord:
        """Record cash collected against a sale"""
        sale = self.get_sale(sale_id)
        now = created_at or datetime.now(timezone.utc)
        settlement = SettlementRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            sale_id=sale_id,
            amount=_magnitude(amount, "Settlement amount"),
            transaction_kind=transaction_kind,
            safe_name=safe_name,
            performed_by=performed_by
        )
        self.storage.save(SETTLEMENTS_TABLE, settlement.id, settlement.to_dict())
        self.publish_change(LedgerEvent.SETTLEMENT_RECORDED, sale.customer_id, SourceKind.SETTLEMENTS,
                            settlement.id, {"sale_id": sale_id, "amount": str(settlement.amount)})
        return settlement

    def delete_settlement(self, settlement_id: str) -> None:
        data = self.storage.load(SETTLEMENTS_TABLE, settlement_id)
        if not data:
            raise NotFoundError("settlement", settlement_id)
        sale_data = self.storage.load(SALES_TABLE, data["sale_id"])
        self.storage.delete(SETTLEMENTS_TABLE, settlement_id)
        customer_id = sale_data.get("customer_id") if sale_data else None
        self.publish_change(LedgerEvent.SETTLEMENT_DELETED, customer_id, SourceKind.SETTLEMENTS, settlement_id,
                            {"sale_id": data["sale_id"]})

    # Supplier purchases

    def record_purchase(
        self,
        supplier_id: str,
        invoice_number: str,
        total_amount: Decimal,
        kind: PurchaseKind = PurchaseKind.PURCHASE,
        created_at: Optional[datetime] = None
    ) -> PurchaseRecord:
        """
        Record a purchase invoice or purchase return on a supplier ledger

        The change notification is addressed to the supplier's linked customer;
        purchases from an unlinked supplier do not touch any customer statement.
        """
        supplier = self.customer_manager.require_supplier(supplier_id)
        now = created_at or datetime.now(timezone.utc)
        purchase = PurchaseRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            supplier_id=supplier_id,
            invoice_number=invoice_number,
            total_amount=_magnitude(total_amount, "Purchase total"),
            kind=kind,
            supplier_name=supplier.name
        )
        self.storage.save(PURCHASES_TABLE, purchase.id, purchase.to_dict())
        self.publish_change(LedgerEvent.PURCHASE_RECORDED, supplier.linked_customer_id, SourceKind.LINKED_PURCHASES,
                            purchase.id, {"supplier_id": supplier_id, "kind": kind.value})
        return purchase

    def delete_purchase(self, purchase_id: str) -> None:
        data = self.storage.load(PURCHASES_TABLE, purchase_id)
        if not data:
            raise NotFoundError("purchase", purchase_id)
        supplier = self.customer_manager.get_supplier(data["supplier_id"])
        self.storage.delete(PURCHASES_TABLE, purchase_id)
        customer_id = supplier.linked_customer_id if supplier else None
        self.publish_change(LedgerEvent.PURCHASE_DELETED, customer_id, SourceKind.LINKED_PURCHASES, purchase_id,
                            {"supplier_id": data["supplier_id"]})

