"""Progress event bus for model lifecycle notifications.

The lifecycle manager publishes progress while it downloads and loads
models. Observers (the HTTP event feed, a UI bridge, tests) subscribe and
receive every event published after they registered.

Usage:
    from core.events import ProgressBus, ProgressEvent, ProgressEventKind

    bus = ProgressBus()

    def on_progress(event):
        print(event.kind, event.percent)

    unsubscribe = bus.subscribe(on_progress)
    await bus.publish(ProgressEvent(ProgressEventKind.LOADING, 50, "model.gguf"))
    unsubscribe()
"""

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class ProgressEventKind(str, Enum):
    """Phase of the lifecycle an event reports on."""

    DOWNLOAD = "download"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """A single broadcast-once lifecycle notification."""

    kind: ProgressEventKind
    percent: float
    model_id: str | None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "percent": self.percent,
            "model_id": self.model_id,
            "error": self.error,
        }


ProgressListener = Callable[[ProgressEvent], Awaitable[None] | None]


class ProgressBus:
    """Fan-out channel delivering progress events to registered listeners.

    Listeners run in registration order. Plain callables and coroutine
    functions are both accepted. A failing listener is logged and skipped;
    it never blocks delivery to the others or reaches the publisher.
    There is no buffering: listeners only see events published after they
    subscribed.
    """

    def __init__(self) -> None:
        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass  # already removed

        return unsubscribe

    async def publish(self, event: ProgressEvent) -> None:
        """Deliver an event to every listener. Failures are logged, not raised."""
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Progress listener failed for '%s' event (model=%s)",
                    event.kind.value,
                    event.model_id,
                )

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """Yield events as they are published until the consumer stops."""
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
