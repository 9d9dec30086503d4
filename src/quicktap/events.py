"""Test run event system for observability.

Provides typed events emitted while the engine runs the test tree, for
progress displays, logging and metrics integration. The TAP stream stays
the primary report; events are a side channel.
"""

from __future__ import annotations

import enum
import inspect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)


class TestEventType(str, enum.Enum):
    """Typed event categories emitted during a run."""

    __test__ = False

    RUN_START = "run_start"
    RUN_COMPLETE = "run_complete"
    NODE_START = "node_start"
    NODE_PASS = "node_pass"
    NODE_FAIL = "node_fail"
    NODE_SKIP = "node_skip"
    NODE_TODO = "node_todo"
    NODE_TIMEOUT = "node_timeout"
    NODE_ABORTED = "node_aborted"


@dataclass
class TestEvent:
    """A single run lifecycle event.

    Attributes:
        type: The event category.
        node_name: Name of the relevant node (empty for run-level events).
        path: Names from the root's first child down to the node.
        timestamp: UNIX epoch when the event occurred.
        data: Arbitrary event-specific payload.
    """

    __test__ = False

    type: TestEventType
    node_name: str = ""
    path: tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)


# Listeners may be plain functions or coroutine functions.
EventCallback = Callable[[TestEvent], Union[Awaitable[None], None]]


class TestEventEmitter:
    """Fan run events out to the listeners registered per event type.

    Listeners are called in registration order. A listener that raises is
    logged and skipped; it never affects the run or the other listeners.
    """

    __test__ = False

    def __init__(self) -> None:
        self._listeners: dict[TestEventType, list[EventCallback]] = defaultdict(
            list
        )

    @property
    def listeners(self) -> dict[TestEventType, list[EventCallback]]:
        """Snapshot of the registered listeners by event type."""
        return {kind: list(callbacks) for kind, callbacks in self._listeners.items()}

    def on(self, event_type: TestEventType, callback: EventCallback) -> None:
        self._listeners[event_type].append(callback)

    def on_all(self, callback: EventCallback) -> None:
        """Register *callback* for every event type."""
        for event_type in TestEventType:
            self.on(event_type, callback)

    def off(self, event_type: TestEventType, callback: EventCallback) -> None:
        """Remove *callback* from *event_type*; unknown callbacks are ignored."""
        callbacks = self._listeners.get(event_type)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    async def emit(self, event: TestEvent) -> None:
        for callback in list(self._listeners.get(event.type, [])):
            try:
                outcome = callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(
                    "Listener %r failed on %s for '%s'",
                    callback,
                    event.type.value,
                    event.node_name,
                )
