"""
Customer and supplier account endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import LedgerSystem, get_ledger_system
from .schemas import CreateCustomerRequest, CreateSupplierRequest, UpdateOpeningBalanceRequest
from ..money import to_decimal


customers_router = APIRouter()
suppliers_router = APIRouter()


@customers_router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    request: CreateCustomerRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new customer"""
    customer = system.customer_manager.create_customer(
        name=request.name,
        opening_balance=to_decimal(request.opening_balance),
        phone=request.phone,
        created_at=request.created_at
    )
    return {"customer_id": customer.id, "message": "Customer created successfully"}


@customers_router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get customer by ID"""
    customer = system.customer_manager.get_customer(customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer.to_dict()


@customers_router.put("/{customer_id}/opening-balance")
async def update_opening_balance(
    customer_id: str,
    request: UpdateOpeningBalanceRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Change a customer's opening balance"""
    customer = system.customer_manager.update_opening_balance(
        customer_id, to_decimal(request.opening_balance)
    )
    return {"customer_id": customer.id, "opening_balance": str(customer.opening_balance)}


@customers_router.post("/{customer_id}/link/{supplier_id}")
async def link_supplier(
    customer_id: str,
    supplier_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Link a customer to a supplier so their activity nets"""
    customer = system.customer_manager.link_customer_to_supplier(customer_id, supplier_id)
    return {"customer_id": customer.id, "linked_supplier_id": customer.linked_supplier_id}


@customers_router.delete("/{customer_id}/link")
async def unlink_supplier(
    customer_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Remove a customer's supplier link"""
    customer = system.customer_manager.unlink_parties(customer_id)
    return {"customer_id": customer.id, "linked_supplier_id": None}


@suppliers_router.post("", status_code=status.HTTP_201_CREATED)
async def create_supplier(
    request: CreateSupplierRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new supplier"""
    supplier = system.customer_manager.create_supplier(
        name=request.name,
        opening_balance=to_decimal(request.opening_balance),
        phone=request.phone
    )
    return {"supplier_id": supplier.id, "message": "Supplier created successfully"}
