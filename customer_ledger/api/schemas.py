"""
Pydantic schemas for API requests
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from ..models import PaymentKind, PurchaseKind, SaleKind, SETTLEMENT_KIND_SALE


# Account schemas
class CreateCustomerRequest(BaseModel):
    name: str
    opening_balance: str = Field("0", description="Decimal amount as string, positive = customer owes")
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


class UpdateOpeningBalanceRequest(BaseModel):
    opening_balance: str = Field(..., description="Decimal amount as string")


class CreateSupplierRequest(BaseModel):
    name: str
    opening_balance: str = Field("0", description="Decimal amount as string")
    phone: Optional[str] = None


# Source record schemas
class RecordSaleRequest(BaseModel):
    invoice_number: str
    total_amount: str = Field(..., description="Non-negative decimal amount as string")
    kind: SaleKind = SaleKind.SALE
    safe_name: Optional[str] = None
    employee_name: Optional[str] = None
    created_at: Optional[datetime] = None


class RecordSettlementRequest(BaseModel):
    amount: str = Field(..., description="Amount collected at sale time")
    transaction_kind: str = SETTLEMENT_KIND_SALE
    safe_name: Optional[str] = None
    performed_by: Optional[str] = None
    created_at: Optional[datetime] = None


class RecordPaymentRequest(BaseModel):
    amount: str = Field(..., description="Non-negative decimal amount as string")
    notes: Optional[str] = None
    kind: Optional[PaymentKind] = Field(None, description="Inferred from the notes when omitted")
    safe_name: Optional[str] = None
    employee_name: Optional[str] = None
    created_at: Optional[datetime] = None
    sale_id: Optional[str] = Field(None, description="Invoice the payment is made against")


class RecordPurchaseRequest(BaseModel):
    invoice_number: str
    total_amount: str = Field(..., description="Non-negative decimal amount as string")
    kind: PurchaseKind = PurchaseKind.PURCHASE
    created_at: Optional[datetime] = None
