"""Event bus for the debug assistant.

Observer lists keyed by event type.  Handlers may be plain callables or
coroutine functions; the bus awaits coroutines transparently.  A handler
that raises is logged and skipped so one failing subscriber never breaks
the publish pipeline.

``subscribe`` returns an *unsubscribe* callable, which is the shape UI
layers expect from the orchestrator's ``on_*`` hooks.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from typing import Any

from debug_assistant.domain.events import DomainEvent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------
Handler = Callable[[Any], Any]  # sync or async callable
Unsubscribe = Callable[[], None]


class AsyncEventBus:
    """Async pub-sub for domain events.

    Handlers run **in registration order**, global handlers first.  No
    locking: all publishing happens on one event loop.

    Usage::

        bus = AsyncEventBus()
        unsubscribe = bus.subscribe(MessageAdded, on_message)
        await bus.publish(MessageAdded(message=msg))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[type[DomainEvent], list[Handler]] = defaultdict(list)
        self._global_handlers: list[Handler] = []

    # -- subscription -------------------------------------------------------

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> Unsubscribe:
        """Register *handler* for *event_type*; returns an unsubscribe callable."""
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return _unsubscribe

    def subscribe_all(self, handler: Handler) -> Unsubscribe:
        """Register *handler* for every event type."""
        self._global_handlers.append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe_all(handler)

        return _unsubscribe

    def unsubscribe(self, event_type: type[DomainEvent], handler: Handler) -> bool:
        """Remove *handler* from *event_type*. Returns ``True`` if found."""
        handlers = self._handlers.get(event_type, [])
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    def unsubscribe_all(self, handler: Handler) -> bool:
        """Remove a global handler. Returns ``True`` if found."""
        try:
            self._global_handlers.remove(handler)
            return True
        except ValueError:
            return False

    # -- publishing ---------------------------------------------------------

    async def publish(self, event: DomainEvent) -> None:
        """Publish *event* to all matching handlers (global first)."""
        for handler in list(self._global_handlers):
            await self._dispatch(handler, event)
        for handler in list(self._handlers.get(type(event), [])):
            await self._dispatch(handler, event)

    async def publish_many(self, events: Sequence[DomainEvent]) -> None:
        for event in events:
            await self.publish(event)

    @staticmethod
    async def _dispatch(handler: Handler, event: DomainEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Error in handler %r for %s", handler, type(event).__name__
            )

    # -- introspection / lifecycle ------------------------------------------

    def handler_count(self, event_type: type[DomainEvent] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        total = sum(len(hs) for hs in self._handlers.values())
        return total + len(self._global_handlers)

    def clear(self) -> None:
        self._handlers.clear()
        self._global_handlers.clear()
