"""
Progress reporting for a single pipeline run.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional

logger = logging.getLogger(__name__)


# Discrete milestones reported by the pipeline
PROGRESS_MILESTONES = {
    "probing": 10,
    "extracting": 25,
    "transcribing": 45,
    "analyzing": 70,
    "rendering": 85,
    "complete": 100,
}


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update: percentage and a human-readable status."""

    progress: int
    status: str

    def to_dict(self) -> dict:
        return asdict(self)


class ProgressStream:
    """
    One-way, ordered progress channel from the pipeline to its caller.

    Backed by a bounded queue. Publishing never blocks: when the consumer
    falls behind and the queue is full, new events are dropped.
    """

    def __init__(self, maxsize: int = 32):
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, stage: str, status: Optional[str] = None) -> None:
        """Publish the milestone for ``stage``."""
        event = ProgressEvent(progress=PROGRESS_MILESTONES[stage], status=status or stage)
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(f"Progress queue full, dropped event {event}")

    async def get(self) -> ProgressEvent:
        return await self._queue.get()

    def drain(self) -> list[ProgressEvent]:
        """Return every queued event without waiting."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events
