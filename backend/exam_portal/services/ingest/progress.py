"""
Progress events for long-running uploads

An upload reports progress in two equally weighted phases: validation maps to
0-50 and insertion to 50-100. Events are published to a channel; the
streaming channel feeds a text/event-stream response, the collecting channel
backs the buffered JSON response and tests.
"""
import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, AsyncIterator, Dict, List, Optional

from exam_portal.services.shared.exceptions import ChannelClosed

logger = logging.getLogger(__name__)

PHASE_WEIGHT = 50


class Phase(str, enum.Enum):
    VALIDATING = "validating"
    INSERTING = "inserting"
    COMPLETE = "complete"


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def phase_progress(phase: Phase, done: int, total: int) -> int:
    """Overall percentage for `done` of `total` units within a phase"""
    if phase is Phase.COMPLETE:
        return 100
    base = 0 if phase is Phase.VALIDATING else PHASE_WEIGHT
    if total <= 0:
        return base + PHASE_WEIGHT
    return base + round_half_up(done / total * PHASE_WEIGHT)


@dataclass(frozen=True)
class ProgressEvent:
    phase: Phase
    progress: int
    message: Optional[str] = None
    counters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"phase": self.phase.value, "progress": self.progress}
        if self.message is not None:
            data["message"] = self.message
        data.update(self.counters)
        return data

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


class ProgressChannel:
    """Ordered one-way sink for progress events"""

    async def publish(self, event: ProgressEvent) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class CollectingChannel(ProgressChannel):
    """Keeps every event in memory"""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    async def publish(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def final(self) -> Optional[ProgressEvent]:
        return self.events[-1] if self.events else None


_END = object()


class QueueChannel(ProgressChannel):
    """
    Channel drained by a streaming response.

    `publish` raises ChannelClosed once the consumer has gone away, which the
    producer treats as an abort signal.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._consumer_gone = False
        self._finished = False

    @property
    def consumer_gone(self) -> bool:
        return self._consumer_gone

    async def publish(self, event: ProgressEvent) -> None:
        if self._consumer_gone:
            raise ChannelClosed("Progress consumer disconnected")
        await self._queue.put(event)

    async def close(self) -> None:
        """Producer side: no more events will follow"""
        if not self._finished:
            self._finished = True
            await self._queue.put(_END)

    def disconnect(self) -> None:
        """Consumer side: stop accepting events"""
        self._consumer_gone = True

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE frames until the producer closes the channel"""
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    break
                yield item.to_sse()
        finally:
            if not self._finished:
                logger.info("Progress stream closed by client before completion")
            self.disconnect()


class ProgressTracker:
    """
    Emits the event sequence of one upload and enforces its ordering:
    validating events, then inserting events, then exactly one complete event,
    with non-decreasing progress.
    """

    def __init__(self, channel: ProgressChannel, interval: int = 50):
        self.channel = channel
        self.interval = max(1, interval)
        self._last_progress = 0
        self._phase_order = [Phase.VALIDATING, Phase.INSERTING, Phase.COMPLETE]
        self._phase_index = 0
        self.completed = False

    async def _emit(self, phase: Phase, progress: int, message: Optional[str] = None, **counters: Any) -> None:
        if self.completed:
            raise RuntimeError("Progress already completed")
        index = self._phase_order.index(phase)
        if index < self._phase_index:
            raise RuntimeError(f"Phase {phase.value} cannot follow {self._phase_order[self._phase_index].value}")
        self._phase_index = index
        progress = max(progress, self._last_progress)
        self._last_progress = progress
        if phase is Phase.COMPLETE:
            self.completed = True
        await self.channel.publish(ProgressEvent(phase, progress, message, counters))

    async def start_validation(self) -> None:
        await self._emit(Phase.VALIDATING, 0, "Starting validation...")

    def should_report_validation(self, done: int, total: int) -> bool:
        return done % self.interval == 0 or done == total

    async def validated(self, done: int, total: int) -> None:
        await self._emit(
            Phase.VALIDATING, phase_progress(Phase.VALIDATING, done, total),
            f"Validating records... {done}/{total}", validated=done, total=total,
        )

    async def start_insert(self) -> None:
        await self._emit(Phase.INSERTING, PHASE_WEIGHT, "Starting database insert...")

    async def inserted(self, chunks_done: int, total_chunks: int, processed: int, total_to_insert: int) -> None:
        await self._emit(
            Phase.INSERTING, phase_progress(Phase.INSERTING, chunks_done, total_chunks),
            f"Inserting records... {processed}/{total_to_insert}", inserted=processed, totalToInsert=total_to_insert,
        )

    async def complete(self, message: str, **summary: Any) -> None:
        await self._emit(Phase.COMPLETE, 100, message, **summary)
