"""
Event dispatcher for model lifecycle and field-change events.

The callback applicator hands payloads to a dispatcher; delivery is
synchronous and in-process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


# =============================================================================
# Event Types
# =============================================================================


@dataclass
class EventPayload:
    """A dispatched model event."""

    model: str
    event_name: str
    record: Any
    old_value: Any = None
    new_value: Any = None
    changes: dict[str, tuple[Any, Any]] = field(default_factory=dict)
    field: str | None = None

    @property
    def record_id(self) -> Any:
        return getattr(self.record, "id", None)


EventHandler = Callable[[EventPayload], None]


@dataclass
class _Subscription:
    event_name: str
    handler: EventHandler
    model: str | None = None

    def matches(self, payload: EventPayload) -> bool:
        if self.event_name not in ("*", payload.event_name):
            return False
        return self.model is None or self.model == payload.model


# =============================================================================
# Dispatcher
# =============================================================================


@dataclass
class EventDispatcher:
    """
    Delivers event payloads to subscribed handlers.

    Provides:
    - Subscription by event name (``"*"`` for all events)
    - Optional filtering by model name
    - A history of dispatched payloads, for inspection in tests and tooling
    """

    keep_history: bool = False
    _subscriptions: list[_Subscription] = field(default_factory=list)
    _history: list[EventPayload] = field(default_factory=list)
    _enabled: bool = True

    def subscribe(self, event_name: str, handler: EventHandler, model: str | None = None) -> None:
        """Subscribe a handler to an event name, optionally for one model."""
        self._subscriptions.append(_Subscription(event_name, handler, model))
        logger.debug(
            "Subscribed %s to %s%s",
            getattr(handler, "__name__", handler),
            event_name,
            f" (model: {model})" if model else "",
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove every subscription of a handler."""
        self._subscriptions = [s for s in self._subscriptions if s.handler is not handler]

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def history(self) -> list[EventPayload]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def dispatch(self, payload: EventPayload) -> None:
        """
        Deliver a payload to every matching handler.

        A failing handler is logged and does not prevent delivery to the
        remaining handlers.
        """
        if not self._enabled:
            return
        if self.keep_history:
            self._history.append(payload)

        logger.debug("Dispatching %s for %s #%s", payload.event_name, payload.model, payload.record_id)
        for subscription in list(self._subscriptions):
            if not subscription.matches(payload):
                continue
            try:
                subscription.handler(payload)
            except Exception:
                logger.exception(
                    "Event handler %s failed for %s:%s",
                    getattr(subscription.handler, "__name__", subscription.handler),
                    payload.model,
                    payload.event_name,
                )
