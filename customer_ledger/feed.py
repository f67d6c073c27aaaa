"""
Statement Feed Module

Keeps one consumer's view of a customer statement current. Every refresh is
tagged with a monotonically increasing request token; a result is published
only if its token is still the latest and the feed is open, so a slow older
request can never overwrite a newer one. Closing the feed cancels requests
in flight and stops listening for change notifications.
"""

from typing import Any, Callable, Dict, Optional, Set
import asyncio
import inspect
import logging

from .engine import ReconciliationEngine
from .errors import LedgerError, RequestCancelledError, RequestSupersededError
from .events import ChangeNotification, EventDispatcher
from .logging_config import log_action
from .statement import AccountStatement, StatementQuery


class StatementFeed:
    """Last-result-wins statement subscription for one customer"""

    def __init__(
        self,
        engine: ReconciliationEngine,
        customer_id: str,
        on_statement: Callable[[AccountStatement], Any],
        query: Optional[StatementQuery] = None
    ):
        self.engine = engine
        self.customer_id = customer_id
        self.on_statement = on_statement
        self.query = query
        self._latest_token = 0
        self._published_token = 0
        self._in_flight: Dict[int, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._closed = False
        self._dispatcher: Optional[EventDispatcher] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.logger = logging.getLogger("customer_ledger.feed")

    @property
    def latest_token(self) -> int:
        return self._latest_token

    @property
    def published_token(self) -> int:
        return self._published_token

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def refresh(self) -> AccountStatement:
        """
        Request a fresh statement and publish it if it is still the latest

        Raises:
            RequestCancelledError: If the feed is or gets closed
            RequestSupersededError: If a newer refresh was issued meanwhile
            NotFoundError: If the customer does not exist
        """
        if self._closed:
            raise RequestCancelledError(self.customer_id)

        self._latest_token += 1
        token = self._latest_token
        task = asyncio.ensure_future(self.engine.get_account_statement(self.customer_id, self.query))
        self._in_flight[token] = task
        try:
            statement = await task
        except asyncio.CancelledError:
            if self._closed:
                raise RequestCancelledError(self.customer_id)
            raise
        finally:
            self._in_flight.pop(token, None)

        if self._closed:
            raise RequestCancelledError(self.customer_id)
        if token != self._latest_token:
            raise RequestSupersededError(self.customer_id, token, self._latest_token)

        self._published_token = token
        result = self.on_statement(statement)
        if inspect.isawaitable(result):
            await result
        log_action(self.logger, "debug", "Published statement", customer_id=self.customer_id,
                   request_token=token, action="statement_published")
        return statement

    async def _refresh_in_background(self) -> None:
        try:
            await self.refresh()
        except (RequestSupersededError, RequestCancelledError) as e:
            log_action(self.logger, "debug", e.message, customer_id=self.customer_id, action=e.code)
        except LedgerError as e:
            log_action(self.logger, "warning", f"Background refresh failed: {e.message}",
                       customer_id=self.customer_id, action=e.code)

    def _schedule_refresh(self) -> None:
        if self._closed:
            return
        task = asyncio.ensure_future(self._refresh_in_background())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_notification(self, notification: ChangeNotification) -> None:
        if self._closed or self._loop is None:
            return
        log_action(self.logger, "debug", f"Change notification {notification.event_type.value}",
                   customer_id=self.customer_id, source=notification.source.value, action="invalidate")
        # Publishers may run on any thread
        self._loop.call_soon_threadsafe(self._schedule_refresh)

    def attach(self, dispatcher: EventDispatcher) -> None:
        """Refresh on every change notification for this customer; call from the event loop"""
        self._loop = asyncio.get_running_loop()
        self._dispatcher = dispatcher
        dispatcher.subscribe_customer(self.customer_id, self._on_notification)

    async def wait_for_pending(self) -> None:
        """Wait until notification-triggered refreshes have finished"""
        await asyncio.sleep(0)
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def close(self) -> None:
        """Tear down the feed; in-flight results are never published"""
        if self._closed:
            return
        self._closed = True
        if self._dispatcher is not None:
            self._dispatcher.unsubscribe_customer(self.customer_id, self._on_notification)
            self._dispatcher = None
        for task in list(self._in_flight.values()) + list(self._background):
            task.cancel()
        log_action(self.logger, "info", "Statement feed closed", customer_id=self.customer_id,
                   request_token=self._latest_token, action="feed_closed")
