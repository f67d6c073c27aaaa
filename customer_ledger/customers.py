"""
Customer Management Module

Manages customer and supplier accounts, their opening balances, and the
bidirectional link that makes a customer's balance net against the purchases
made from the same party as a supplier.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Optional
import logging
import uuid

from .errors import NotFoundError, PartyLinkError
from .events import EventDispatcher, EventPublisherMixin, LedgerEvent
from .models import Customer, Supplier, SourceKind, CUSTOMERS_TABLE, SUPPLIERS_TABLE
from .money import ZERO, to_decimal
from .storage import StorageInterface


class CustomerManager(EventPublisherMixin):
    """
    Manages customer and supplier accounts and party linking
    """

    def __init__(self, storage: StorageInterface, event_dispatcher: Optional[EventDispatcher] = None):
        self.storage = storage
        self.logger = logging.getLogger("customer_ledger.customers")
        if event_dispatcher:
            self.set_event_dispatcher(event_dispatcher)

    def create_customer(
        self,
        name: str,
        opening_balance: Decimal = ZERO,
        phone: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> Customer:
        """
        Create a new customer

        Args:
            name: Customer display name
            opening_balance: Balance carried in at account creation (positive = customer owes)
            phone: Optional phone number
            created_at: Account creation time, used as the opening balance row date

        Returns:
            Created Customer object
        """
        if not name or not name.strip():
            raise ValueError("Customer name is required")

        now = created_at or datetime.now(timezone.utc)
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            opening_balance=to_decimal(opening_balance),
            phone=phone
        )
        self._save_customer(customer)
        self.publish_change(LedgerEvent.CUSTOMER_CREATED, customer.id, SourceKind.CUSTOMER, customer.id,
                            {"opening_balance": str(customer.opening_balance)})
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        data = self.storage.load(CUSTOMERS_TABLE, customer_id)
        return Customer.from_dict(data) if data else None

    def require_customer(self, customer_id: str) -> Customer:
        """Get customer by ID or raise NotFoundError"""
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFoundError("customer", customer_id)
        return customer

    def update_opening_balance(self, customer_id: str, opening_balance: Decimal) -> Customer:
        """Change a customer's opening balance"""
        customer = self.require_customer(customer_id)
        old_balance = customer.opening_balance
        customer.opening_balance = to_decimal(opening_balance)
        customer.updated_at = datetime.now(timezone.utc)
        self._save_customer(customer)

        self.publish_change(LedgerEvent.CUSTOMER_UPDATED, customer.id, SourceKind.CUSTOMER, customer.id, {
            "old_opening_balance": str(old_balance),
            "new_opening_balance": str(customer.opening_balance)
        })
        return customer

    def create_supplier(
        self,
        name: str,
        opening_balance: Decimal = ZERO,
        phone: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> Supplier:
        """Create a new supplier"""
        if not name or not name.strip():
            raise ValueError("Supplier name is required")

        now = created_at or datetime.now(timezone.utc)
        supplier = Supplier(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            opening_balance=to_decimal(opening_balance),
            phone=phone
        )
        self._save_supplier(supplier)
        return supplier

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        """Get supplier by ID"""
        data = self.storage.load(SUPPLIERS_TABLE, supplier_id)
        return Supplier.from_dict(data) if data else None

    def require_supplier(self, supplier_id: str) -> Supplier:
        """Get supplier by ID or raise NotFoundError"""
        supplier = self.get_supplier(supplier_id)
        if not supplier:
            raise NotFoundError("supplier", supplier_id)
        return supplier

    def link_customer_to_supplier(self, customer_id: str, supplier_id: str) -> Customer:
        """
        Link a customer and a supplier in both directions

        Raises:
            NotFoundError: If either party does not exist
            PartyLinkError: If either party is already linked to someone else
        """
        customer = self.require_customer(customer_id)
        supplier = self.require_supplier(supplier_id)

        if customer.linked_supplier_id and customer.linked_supplier_id != supplier_id:
            raise PartyLinkError("Customer is already linked to another supplier", customer_id, supplier_id)
        if supplier.linked_customer_id and supplier.linked_customer_id != customer_id:
            raise PartyLinkError("Supplier is already linked to another customer", customer_id, supplier_id)

        now = datetime.now(timezone.utc)
        customer.linked_supplier_id = supplier_id
        customer.updated_at = now
        supplier.linked_customer_id = customer_id
        supplier.updated_at = now

        with self.storage.atomic():
            self._save_customer(customer)
            self._save_supplier(supplier)

        self.logger.info(f"Linked customer {customer_id} to supplier {supplier_id}")
        self.publish_change(LedgerEvent.PARTIES_LINKED, customer_id, SourceKind.CUSTOMER, customer_id,
                            {"supplier_id": supplier_id})
        return customer

    def unlink_parties(self, customer_id: str) -> Customer:
        """Remove the link between a customer and its supplier, if any"""
        customer = self.require_customer(customer_id)
        supplier_id = customer.linked_supplier_id
        if not supplier_id:
            return customer

        now = datetime.now(timezone.utc)
        customer.linked_supplier_id = None
        customer.updated_at = now

        with self.storage.atomic():
            self._save_customer(customer)
            supplier = self.get_supplier(supplier_id)
            if supplier and supplier.linked_customer_id == customer_id:
                supplier.linked_customer_id = None
                supplier.updated_at = now
                self._save_supplier(supplier)

        self.logger.info(f"Unlinked customer {customer_id} from supplier {supplier_id}")
        self.publish_change(LedgerEvent.PARTIES_UNLINKED, customer_id, SourceKind.CUSTOMER, customer_id,
                            {"supplier_id": supplier_id})
        return customer

    def get_linked_supplier(self, customer_id: str) -> Optional[Supplier]:
        """Get the supplier linked to a customer, if any"""
        customer = self.get_customer(customer_id)
        if not customer or not customer.linked_supplier_id:
            return None
        return self.get_supplier(customer.linked_supplier_id)

    def _save_customer(self, customer: Customer) -> None:
        self.storage.save(CUSTOMERS_TABLE, customer.id, customer.to_dict())

    def _save_supplier(self, supplier: Supplier) -> None:
        self.storage.save(SUPPLIERS_TABLE, supplier.id, supplier.to_dict())
