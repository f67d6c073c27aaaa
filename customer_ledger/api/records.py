"""
Source record endpoints: sales, settlements, payments and supplier purchases
"""

from fastapi import APIRouter, Depends, status

from .dependencies import LedgerSystem, get_ledger_system
from .schemas import RecordPaymentRequest, RecordPurchaseRequest, RecordSaleRequest, RecordSettlementRequest
from ..money import to_decimal


router = APIRouter()


@router.post("/customers/{customer_id}/sales", status_code=status.HTTP_201_CREATED)
async def record_sale(
    customer_id: str,
    request: RecordSaleRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a sale invoice or sale return"""
    sale = system.recorder.record_sale(
        customer_id=customer_id,
        invoice_number=request.invoice_number,
        total_amount=to_decimal(request.total_amount),
        kind=request.kind,
        safe_name=request.safe_name,
        employee_name=request.employee_name,
        created_at=request.created_at
    )
    return sale.to_dict()


@router.delete("/sales/{sale_id}")
async def delete_sale(
    sale_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a sale with its settlements and the payments made against it"""
    system.recorder.delete_sale(sale_id)
    return {"sale_id": sale_id, "message": "Sale deleted"}


@router.post("/sales/{sale_id}/settlements", status_code=status.HTTP_201_CREATED)
async def record_settlement(
    sale_id: str,
    request: RecordSettlementRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record cash collected against a sale"""
    settlement = system.recorder.record_settlement(
        sale_id=sale_id,
        amount=to_decimal(request.amount),
        transaction_kind=request.transaction_kind,
        safe_name=request.safe_name,
        performed_by=request.performed_by,
        created_at=request.created_at
    )
    return settlement.to_dict()


@router.post("/customers/{customer_id}/payments", status_code=status.HTTP_201_CREATED)
async def record_payment(
    customer_id: str,
    request: RecordPaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a payment or a loan"""
    payment = system.recorder.record_payment(
        customer_id=customer_id,
        amount=to_decimal(request.amount),
        notes=request.notes,
        kind=request.kind,
        safe_name=request.safe_name,
        employee_name=request.employee_name,
        created_at=request.created_at,
        sale_id=request.sale_id
    )
    return payment.to_dict()


@router.delete("/payments/{payment_id}")
async def delete_payment(
    payment_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a payment"""
    system.recorder.delete_payment(payment_id)
    return {"payment_id": payment_id, "message": "Payment deleted"}


@router.post("/suppliers/{supplier_id}/purchases", status_code=status.HTTP_201_CREATED)
async def record_purchase(
    supplier_id: str,
    request: RecordPurchaseRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a purchase invoice or purchase return on a supplier"""
    purchase = system.recorder.record_purchase(
        supplier_id=supplier_id,
        invoice_number=request.invoice_number,
        total_amount=to_decimal(request.total_amount),
        kind=request.kind,
        created_at=request.created_at
    )
    return purchase.to_dict()


@router.delete("/purchases/{purchase_id}")
async def delete_purchase(
    purchase_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delete a purchase"""
    system.recorder.delete_purchase(purchase_id)
    return {"purchase_id": purchase_id, "message": "Purchase deleted"}
