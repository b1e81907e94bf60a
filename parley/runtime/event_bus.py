from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from .ids import new_id, now_ts_ms
from .protocol import Event, EventKind

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], None]

# Streaming deltas are too chatty for the debug log.
_UNLOGGED_KINDS = frozenset({EventKind.LLM_RESPONSE_DELTA.value, EventKind.LLM_THINKING_DELTA.value})


class EventBus:
    """
    Synchronous fan-out of runtime events.

    Handlers run inline, in subscription order, on the publishing task. A handler may narrow
    what it receives to a set of event kinds.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[EventHandler, frozenset[str] | None]] = []

    def subscribe(self, handler: EventHandler, *, kinds: Iterable[EventKind] | None = None) -> Callable[[], None]:
        """Register `handler`; the returned callable removes it again."""
        entry = (handler, frozenset(k.value for k in kinds) if kinds is not None else None)
        self._handlers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return _unsubscribe

    def publish(self, event: Event) -> None:
        if event.kind not in _UNLOGGED_KINDS:
            logger.debug("event %s", event.to_dict())
        for handler, kinds in tuple(self._handlers):
            if kinds is None or event.kind in kinds:
                handler(event)

    def emit(
        self,
        kind: EventKind,
        payload: dict[str, Any],
        *,
        session_id: str,
        request_id: str | None = None,
    ) -> Event:
        event = Event(
            kind=kind.value,
            payload=payload,
            session_id=session_id,
            event_id=new_id("evt"),
            timestamp=now_ts_ms(),
            request_id=request_id,
        )
        self.publish(event)
        return event
