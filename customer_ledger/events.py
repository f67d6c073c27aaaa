"""
Change Notification Module

Customer-scoped invalidation messages published on every write to a source
ledger, and a publish/subscribe dispatcher. Each message names the affected
customer, the source ledger and the record id, so subscribers can invalidate
exactly what changed.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .models import SourceKind


class LedgerEvent(Enum):
    """Write events on the source ledgers"""

    # Account events
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    PARTIES_LINKED = "customer.linked"
    PARTIES_UNLINKED = "customer.unlinked"

    # Sale ledger events
    SALE_RECORDED = "sale.recorded"
    SALE_UPDATED = "sale.updated"
    SALE_DELETED = "sale.deleted"

    # Payment ledger events
    PAYMENT_RECORDED = "payment.recorded"
    PAYMENT_DELETED = "payment.deleted"

    # Settlement log events
    SETTLEMENT_RECORDED = "settlement.recorded"
    SETTLEMENT_DELETED = "settlement.deleted"

    # Linked supplier purchase events
    PURCHASE_RECORDED = "purchase.recorded"
    PURCHASE_DELETED = "purchase.deleted"


@dataclass
class ChangeNotification:
    """Invalidation message for one customer's statement"""
    event_type: LedgerEvent
    customer_id: str
    source: SourceKind
    record_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'customer_id': self.customer_id,
            'source': self.source.value,
            'record_id': self.record_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangeNotification':
        """Create from dictionary"""
        return cls(
            event_type=LedgerEvent(data['event_type']),
            customer_id=data['customer_id'],
            source=SourceKind(data['source']),
            record_id=data['record_id'],
            data=data.get('data', {}),
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[LedgerEvent, List[Callable]] = {}
        self._customer_handlers: Dict[str, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("customer_ledger.events")

    def subscribe(self, event_type: LedgerEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_customer(self, customer_id: str, handler: Callable) -> None:
        """Subscribe to every notification addressed to one customer"""
        with self._lock:
            self._customer_handlers.setdefault(customer_id, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to customer {customer_id}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: LedgerEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def unsubscribe_customer(self, customer_id: str, handler: Callable) -> None:
        """Unsubscribe a customer-scoped handler"""
        with self._lock:
            handlers = self._customer_handlers.get(customer_id, [])
            try:
                handlers.remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to customer {customer_id}")
            if not handlers:
                self._customer_handlers.pop(customer_id, None)

    def unsubscribe_all(self, handler: Callable) -> None:
        """Unsubscribe a catch-all handler"""
        with self._lock:
            try:
                self._global_handlers.remove(handler)
            except ValueError:
                self.logger.warning(f"Global handler {_handler_name(handler)} was not subscribed")

    def publish(self, notification: ChangeNotification) -> None:
        """Publish notification to all matching subscribers"""
        with self._lock:
            handlers = (
                list(self._handlers.get(notification.event_type, []))
                + list(self._customer_handlers.get(notification.customer_id, []))
                + list(self._global_handlers)
            )

        self.logger.debug(
            f"Publishing {notification.event_type.value} for customer {notification.customer_id} "
            f"({notification.source.value}:{notification.record_id})"
        )
        for handler in handlers:
            try:
                handler(notification)
            except Exception as e:
                # Log but don't break the write that triggered the notification
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {notification.event_type.value}: {e}"
                )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._customer_handlers.clear()
            self._global_handlers.clear()
            self.logger.info("All event handlers cleared")

    def get_handler_count(self, event_type: Optional[LedgerEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            total += sum(len(handlers) for handlers in self._customer_handlers.values())
            total += len(self._global_handlers)
            return total


# Global event dispatcher instance (singleton pattern)
_global_dispatcher: Optional[EventDispatcher] = None


def get_global_dispatcher() -> EventDispatcher:
    """Get the global event dispatcher instance"""
    global _global_dispatcher
    if _global_dispatcher is None:
        _global_dispatcher = EventDispatcher()
    return _global_dispatcher


def set_global_dispatcher(dispatcher: EventDispatcher) -> None:
    """Set a custom global event dispatcher"""
    global _global_dispatcher
    _global_dispatcher = dispatcher


class EventPublisherMixin:
    """Mixin to add notification publishing to write-side managers"""

    _event_dispatcher: Optional[EventDispatcher] = None

    def set_event_dispatcher(self, event_dispatcher: EventDispatcher) -> None:
        """Set the event dispatcher for this instance"""
        self._event_dispatcher = event_dispatcher

    def publish_change(self, event_type: LedgerEvent, customer_id: Optional[str],
                       source: SourceKind, record_id: str,
                       data: Optional[Dict[str, Any]] = None) -> None:
        """Publish a change notification; writes with no customer to address are not published"""
        if not customer_id:
            return
        dispatcher = self._event_dispatcher or get_global_dispatcher()
        dispatcher.publish(ChangeNotification(
            event_type=event_type,
            customer_id=customer_id,
            source=source,
            record_id=record_id,
            data=data or {}
        ))
