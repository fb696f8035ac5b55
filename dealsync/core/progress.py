"""
Progress reporting channel.

Long-running work (sync runs, file imports) publishes percentage + status
events here. The job queue adapter and any API poller subscribe
independently; a misbehaving listener never affects the publisher.
"""

import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    progress: int
    status: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ProgressListener = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class ProgressChannel:
    """Observer list with a bounded event history."""

    def __init__(self, history_size: int = 50):
        self._listeners: list[ProgressListener] = []
        self._history: deque[ProgressEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def publish(self, progress: Union[int, float], status: str) -> ProgressEvent:
        event = ProgressEvent(
            progress=max(0, min(100, int(round(progress)))),
            status=status,
        )
        self._history.append(event)

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Progress listener failed for '{status}': {e}")

        return event

    @property
    def latest(self) -> Optional[ProgressEvent]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> list[ProgressEvent]:
        return list(self._history)


async def publish(channel: Optional[ProgressChannel], progress: Any, status: str) -> None:
    """Publish to ``channel`` when one was supplied."""
    if channel is not None:
        await channel.publish(progress, status)
