"""
Typed Errors and Diagnostics

Only NotFoundError aborts a reconciliation call. Every other condition the
engine meets is recorded as a Diagnostic on the result and logged.

    LedgerError (base)
    |
    +-- NotFoundError
    +-- SourceFetchError
    +-- PartyLinkError
    +-- RequestSupersededError
    +-- RequestCancelledError
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for the customer ledger"""

    code: str = "LEDGER_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(LedgerError):
    """Customer, supplier or source record id does not resolve"""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")


class SourceFetchError(LedgerError):
    """A source adapter could not produce its records"""

    code = "SOURCE_FETCH_FAILED"

    def __init__(self, source: str, customer_id: str, cause: Optional[BaseException] = None):
        self.source = source
        self.customer_id = customer_id
        self.cause = cause
        reason = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        super().__init__(f"Failed to fetch {source} for customer {customer_id} ({reason})")


class PartyLinkError(LedgerError):
    """Customer and supplier cannot be linked"""

    code = "PARTY_LINK_CONFLICT"

    def __init__(self, message: str, customer_id: str, supplier_id: Optional[str] = None):
        self.customer_id = customer_id
        self.supplier_id = supplier_id
        super().__init__(message)


class RequestSupersededError(LedgerError):
    """A newer statement request was issued for the same customer"""

    code = "REQUEST_SUPERSEDED"

    def __init__(self, customer_id: str, token: int, latest_token: int):
        self.customer_id = customer_id
        self.token = token
        self.latest_token = latest_token
        super().__init__(
            f"Statement request {token} for customer {customer_id} superseded by {latest_token}"
        )


class RequestCancelledError(LedgerError):
    """The statement consumer was closed before the request completed"""

    code = "REQUEST_CANCELLED"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Statement feed for customer {customer_id} is closed")


class DiagnosticCode(Enum):
    """Non-fatal conditions surfaced alongside a result"""
    SOURCE_FETCH_FAILED = "source_fetch_failed"
    AMBIGUOUS_SETTLEMENT = "ambiguous_settlement"
    UNRECOGNIZED_NOTE_CLASSIFICATION = "unrecognized_note_classification"
    BALANCE_RECONCILIATION_MISMATCH = "balance_reconciliation_mismatch"


@dataclass(frozen=True)
class Diagnostic:
    """Warning attached to a statement or balance result"""
    code: DiagnosticCode
    message: str
    source: Optional[str] = None
    record_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "source": self.source,
            "record_id": self.record_id,
            "details": {k: str(v) if not isinstance(v, (list, int, bool)) else v
                        for k, v in self.details.items()}
        }

    @classmethod
    def from_fetch_error(cls, error: SourceFetchError) -> 'Diagnostic':
        return cls(
            code=DiagnosticCode.SOURCE_FETCH_FAILED,
            message=error.message,
            source=error.source,
            details={"customer_id": error.customer_id}
        )
