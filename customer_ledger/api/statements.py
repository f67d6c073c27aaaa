"""
Statement and balance endpoints
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query

from .dependencies import LedgerSystem, get_ledger_system
from ..statement import StatementQuery


router = APIRouter()


@router.get("/{customer_id}/statement")
async def get_account_statement(
    customer_id: str,
    start: Optional[datetime] = Query(None, description="Only rows at or after this time"),
    end: Optional[datetime] = Query(None, description="Only rows at or before this time"),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, description="Page size, defaults to the configured page size"),
    newest_first: bool = False,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get a customer's account statement with running balances"""
    query = StatementQuery(
        start=start,
        end=end,
        offset=offset,
        limit=limit or system.config.default_page_size,
        newest_first=newest_first
    )
    statement = await system.engine.get_account_statement(customer_id, query)
    return statement.to_dict()


@router.get("/{customer_id}/balance")
async def get_current_balance(
    customer_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get a customer's current balance"""
    balance = await system.engine.get_current_balance(customer_id)
    return {"customer_id": customer_id, "balance": str(balance)}


@router.get("/{customer_id}/balance/breakdown")
async def get_balance_breakdown(
    customer_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get the per-source totals behind a customer's balance"""
    breakdown = await system.engine.get_balance_breakdown(customer_id)
    return breakdown.to_dict()
