"""Progress events and the ordered, best-effort channel that delivers them."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from .models import DeepResearchResponse, WireModel

logger = logging.getLogger(__name__)


class SectionProgress(WireModel):
    """How many of the section searches have finished."""

    completed: int
    total: int


class ProgressUpdate(WireModel):
    type: Literal["progress"] = "progress"
    step: int
    total_steps: int
    step_name: str
    message: str | None = None
    section_progress: SectionProgress | None = None


class SynthesisChunk(WireModel):
    type: Literal["synthesis_chunk"] = "synthesis_chunk"
    text: str


class Complete(WireModel):
    type: Literal["complete"] = "complete"
    data: str
    result: DeepResearchResponse | None = None


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    step: int
    step_name: str
    message: str


ProgressEvent = Annotated[
    Union[ProgressUpdate, SynthesisChunk, Complete, ErrorEvent],
    Field(discriminator="type"),
]

EVENT_TYPES = frozenset({"progress", "synthesis_chunk", "complete", "error"})

ProgressSink = Callable[[ProgressEvent], Awaitable[None]]

_event_adapter: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)


def to_wire(event: ProgressEvent) -> dict[str, Any]:
    """Serialize an event to its transport shape (camelCase, ``type`` tag)."""
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def to_json(event: ProgressEvent) -> str:
    return json.dumps(to_wire(event), ensure_ascii=False)


def parse_event(payload: str | dict[str, Any]) -> ProgressEvent | None:
    """Decode a transported event.

    Unknown ``type`` values are ignored and yield ``None`` so that older
    consumers keep working when new event kinds are introduced.
    """
    data = json.loads(payload) if isinstance(payload, str) else payload
    if data.get("type") not in EVENT_TYPES:
        return None
    return _event_adapter.validate_python(data)


def fan_out(*sinks: ProgressSink | None) -> ProgressSink | None:
    """Combine several sinks into one; each receives every event in order.

    A failing sink is logged and does not prevent delivery to the others.
    """
    active = [sink for sink in sinks if sink is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]

    async def _deliver(event: ProgressEvent) -> None:
        for sink in active:
            try:
                await sink(event)
            except Exception as e:
                logger.warning(f"Progress sink {sink!r} failed for {event.type} event: {e}")

    return _deliver


_STOP = object()


class ProgressChannel:
    """Single-writer, ordered, push-only wrapper around a progress sink.

    Writes are queued and delivered one at a time by a background task, so
    the sink always sees events in the order they were written. ``emit``
    waits for its own event to be delivered; ``emit_nowait`` returns
    immediately and is safe to call from synchronous callbacks. Sink
    failures and timeouts are logged and never reach the writer. Once
    closed, the channel drops further writes.
    """

    def __init__(self, sink: ProgressSink | None, delivery_timeout: float | None = 30.0):
        self._sink = sink
        self._delivery_timeout = delivery_timeout
        self._queue: asyncio.Queue | None = None
        self._drain_task: asyncio.Task | None = None
        self._closed = False
        self.delivered = 0
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return self._sink is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_started(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())
        return self._queue

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            event, done = item
            await self._deliver(event)
            if done is not None and not done.done():
                done.set_result(None)

    async def _deliver(self, event: ProgressEvent) -> None:
        try:
            if self._delivery_timeout is None:
                await self._sink(event)
            else:
                await asyncio.wait_for(self._sink(event), timeout=self._delivery_timeout)
            self.delivered += 1
        except Exception as e:
            self.failures += 1
            logger.warning(f"Failed to emit {event.type} event: {type(e).__name__}: {e}")

    def emit_nowait(self, event: ProgressEvent) -> None:
        """Queue an event without waiting for delivery (fire-and-forget)."""
        if not self.enabled:
            return
        self._ensure_started().put_nowait((event, None))

    async def emit(self, event: ProgressEvent) -> None:
        """Queue an event and wait until it, and everything before it, is delivered."""
        if not self.enabled:
            return
        done = asyncio.get_running_loop().create_future()
        self._ensure_started().put_nowait((event, done))
        await done

    async def aclose(self) -> None:
        """Deliver everything still queued and stop the background task."""
        self._closed = True
        if self._queue is None or self._drain_task is None:
            return
        self._queue.put_nowait(_STOP)
        await self._drain_task
        self._queue = None
        self._drain_task = None
