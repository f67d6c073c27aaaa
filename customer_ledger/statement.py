"""
Account Statement Module

Chronological merge, running balance accumulation and statement assembly.

Ordering contract:
    1. The opening balance row, when present, is always first.
    2. Every other row is ordered by timestamp, ascending.
    3. Rows sharing a timestamp keep source order (sales, payments, linked
       purchases) and, within a source, the order the source returned them.

The running balance is seeded with the opening balance. The opening balance
row shows that seed and is not accumulated again.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from itertools import chain
from typing import Any, Dict, Iterable, List, Optional

from .errors import Diagnostic
from .models import EntryKind, LedgerEntry
from .money import ZERO, to_decimal


def merge_entries(opening: Optional[LedgerEntry], *sources: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    """Merge classified entries into one chronological sequence"""
    # sorted() is stable, so equal timestamps keep source order
    ordered = sorted(chain.from_iterable(sources), key=lambda entry: entry.timestamp)
    return ([opening] if opening is not None else []) + ordered


class RunningBalanceCalculator:
    """Single left-to-right prefix sum over the merged entries"""

    def __init__(self, opening_balance: Decimal = ZERO):
        self.opening_balance = to_decimal(opening_balance)

    def accumulate(self, entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
        balance = self.opening_balance
        result = []
        for index, entry in enumerate(entries, start=1):
            if entry.kind is not EntryKind.OPENING_BALANCE:
                balance += entry.signed_amount
            result.append(replace(entry, running_balance=balance, sequence_index=index))
        return result


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class StatementQuery:
    """Date window and page of a statement request"""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    offset: int = 0
    limit: Optional[int] = None
    newest_first: bool = False

    def __post_init__(self):
        self.start = _as_utc(self.start)
        self.end = _as_utc(self.end)
        if self.offset < 0:
            raise ValueError("offset must not be negative")
        if self.limit is not None and self.limit <= 0:
            raise ValueError("limit must be positive")
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end")

    def contains(self, timestamp: datetime) -> bool:
        if self.start is not None and timestamp < self.start:
            return False
        if self.end is not None and timestamp > self.end:
            return False
        return True


@dataclass
class AccountStatement:
    """
    Externally consumed statement.

    ``final_balance`` is always the account's full balance; the date window
    and page only restrict which rows are returned.
    """
    customer_id: str
    entries: List[LedgerEntry]
    final_balance: Decimal
    opening_balance: Decimal = ZERO
    balance_brought_forward: Decimal = ZERO
    total_entries: int = 0
    has_more: bool = False
    is_partial: bool = False
    failed_sources: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "entries": [entry.to_dict() for entry in self.entries],
            "final_balance": str(self.final_balance),
            "opening_balance": str(self.opening_balance),
            "balance_brought_forward": str(self.balance_brought_forward),
            "total_entries": self.total_entries,
            "has_more": self.has_more,
            "is_partial": self.is_partial,
            "failed_sources": list(self.failed_sources),
            "diagnostics": [diagnostic.to_dict() for diagnostic in self.diagnostics],
            "generated_at": self.generated_at.isoformat(),
        }


class StatementAssembler:
    """
    Builds the AccountStatement from accumulated entries.

    Adds the ISO date/time split, then applies the date window and page.
    No amounts are computed here.
    """

    def __init__(self, max_page_size: int = 1000):
        self.max_page_size = max_page_size

    @staticmethod
    def _with_display_fields(entry: LedgerEntry) -> LedgerEntry:
        return replace(
            entry,
            entry_date=entry.timestamp.date().isoformat(),
            entry_time=entry.timestamp.strftime("%H:%M:%S")
        )

    def assemble(
        self,
        customer_id: str,
        entries: List[LedgerEntry],
        opening_balance: Decimal = ZERO,
        query: Optional[StatementQuery] = None,
        diagnostics: Iterable[Diagnostic] = (),
        failed_sources: Iterable[str] = ()
    ) -> AccountStatement:
        """
        Assemble a statement

        Args:
            customer_id: Customer the statement belongs to
            entries: Merged entries with running balances filled in
            opening_balance: Running-balance seed
            query: Optional date window and page
            diagnostics: Non-fatal conditions met while reconciling
            failed_sources: Sources whose records are missing from the result

        Returns:
            AccountStatement
        """
        opening_balance = to_decimal(opening_balance)
        entries = [self._with_display_fields(entry) for entry in entries]
        final_balance = entries[-1].running_balance if entries else opening_balance
        failed_sources = list(failed_sources)
        query = query or StatementQuery()

        positions = [i for i, entry in enumerate(entries) if query.contains(entry.timestamp)]
        brought_forward = self._brought_forward(entries, positions, query)
        windowed = [entries[i] for i in positions]
        if query.newest_first:
            windowed.reverse()

        limit = min(query.limit, self.max_page_size) if query.limit is not None else None
        end = query.offset + limit if limit is not None else None
        page = windowed[query.offset:end]

        return AccountStatement(
            customer_id=customer_id,
            entries=page,
            final_balance=final_balance,
            opening_balance=opening_balance,
            balance_brought_forward=brought_forward,
            total_entries=len(windowed),
            has_more=query.offset + len(page) < len(windowed),
            is_partial=bool(failed_sources),
            failed_sources=failed_sources,
            diagnostics=list(diagnostics)
        )

    @staticmethod
    def _brought_forward(entries: List[LedgerEntry], positions: List[int], query: StatementQuery) -> Decimal:
        """Running balance immediately before the first row in the window"""
        if positions:
            first = positions[0]
            return entries[first - 1].running_balance if first > 0 else ZERO
        if query.start is None:
            return ZERO
        before = [entry for entry in entries if entry.timestamp < query.start]
        return before[-1].running_balance if before else ZERO
