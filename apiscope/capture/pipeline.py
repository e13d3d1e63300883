"""Bounded event channel and the consumer that feeds the classifier.

Browser event handlers must never block, so ``CaptureChannel.publish`` uses
``put_nowait`` and drops the event (counting it) when the queue is full. A
single ``CapturePipeline`` task drains the channel in delivery order and
hands each event to the capture's ``TrafficClassifier``.
"""

import asyncio

import structlog

from ..models.capture import NetworkRequest, NetworkResponse
from .classifier import TrafficClassifier

logger = structlog.get_logger(__name__)

CaptureEvent = NetworkRequest | NetworkResponse

_CLOSED = object()


class CaptureChannel:
    """Per-capture bounded queue of request and response events.

    Attributes:
        dropped: Events discarded because the queue was full
        closed: True once close() has been requested
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def publish(self, event: CaptureEvent) -> bool:
        """Enqueue an event without blocking.

        Returns:
            False if the channel is closed or full and the event was dropped
        """
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("capture_event_dropped", dropped=self.dropped, url=event.url[:100])
            return False
        return True

    async def close(self) -> None:
        """Stop accepting events; the consumer ends after draining what is queued."""
        if self.closed:
            return
        self.closed = True
        # The sentinel must get through even when the queue is full
        await self._queue.put(_CLOSED)

    async def get(self) -> CaptureEvent | None:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        return None if item is _CLOSED else item

    def qsize(self) -> int:
        return self._queue.qsize()


class CapturePipeline:
    """Drains a CaptureChannel into a TrafficClassifier."""

    def __init__(self, classifier: TrafficClassifier, channel: CaptureChannel) -> None:
        self.classifier = classifier
        self.channel = channel
        self.processed = 0

    def dispatch(self, event: CaptureEvent) -> None:
        """Route one event to the classifier."""
        if isinstance(event, NetworkRequest):
            self.classifier.classify(event)
        else:
            self.classifier.handle_response(event)
        self.processed += 1

    async def run(self) -> None:
        """Consume events until the channel is closed.

        Classifier failures on a single event are logged and skipped.
        """
        while True:
            event = await self.channel.get()
            if event is None:
                break
            try:
                self.dispatch(event)
            except Exception as e:
                logger.error(
                    "capture_event_failed",
                    url=event.url[:100],
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.debug(
            "capture_pipeline_drained",
            processed=self.processed,
            dropped=self.channel.dropped,
            records=len(self.classifier.records),
        )
