"""Capture service: runs captures, stores results and answers session queries.

This is the surface both the HTTP API and tests talk to. It owns the set of
in-flight captures (for cancellation) and hands completed ones to the
``SessionStore``.
"""

import asyncio
import uuid
from typing import Protocol

import structlog

from ..capture.classifier import ProgressCallback
from ..core.config import Settings, get_settings
from ..errors.classifier import categorize_error, format_error_for_display
from ..models.capture import CaptureOutcome, CaptureRequest, CaptureResult
from ..models.errors import ErrorKind, ErrorPayload
from ..models.session import CleanupStats, SessionView, StoreStats
from ..store.session_store import SessionStore

logger = structlog.get_logger(__name__)


class CaptureRunner(Protocol):
    """Anything that can execute a capture (the Playwright runner, or a fake in tests)."""

    async def run(
        self,
        request: CaptureRequest,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CaptureOutcome: ...


class CaptureFailedError(Exception):
    """Raised when a capture fails; carries the classified error payload."""

    def __init__(self, session_id: str, payload: ErrorPayload, kind: ErrorKind):
        super().__init__(payload.message)
        self.session_id = session_id
        self.payload = payload
        self.kind = kind


class CaptureService:
    """Coordinates capture runs with the session store."""

    def __init__(
        self,
        store: SessionStore,
        runner: CaptureRunner,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.settings = settings or get_settings()
        self._active: dict[str, asyncio.Event] = {}

    @property
    def active_sessions(self) -> list[str]:
        """Ids of captures currently running."""
        return list(self._active)

    async def create_session(
        self,
        request: CaptureRequest,
        on_progress: ProgressCallback | None = None,
        session_id: str | None = None,
    ) -> CaptureResult:
        """Run a capture and store its records.

        Cancelled captures return their partial records but are not stored.
        Timed-out captures are stored with whatever was captured.

        Args:
            request: What to capture
            on_progress: Fire-and-forget progress hook
            session_id: Use this id instead of generating one

        Returns:
            CaptureResult for the new session

        Raises:
            CaptureFailedError: If the capture failed (navigation, browser launch, ...)
        """
        session_id = session_id or uuid.uuid4().hex
        cancel_event = asyncio.Event()
        self._active[session_id] = cancel_event

        log = logger.bind(session_id=session_id, url=request.url)
        log.info("capture_started")

        try:
            outcome = await self.runner.run(
                request, on_progress=on_progress, cancel_event=cancel_event
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = categorize_error(e)
            payload = format_error_for_display(e)
            log.error(
                "capture_failed",
                error=str(e),
                error_type=type(e).__name__,
                kind=kind.value,
                retryable=payload.retryable,
            )
            raise CaptureFailedError(session_id, payload, kind) from e
        finally:
            self._active.pop(session_id, None)

        result = CaptureResult(
            session_id=session_id,
            url=request.url,
            api_records=outcome.api_records,
            web_sockets=outcome.web_sockets,
            total_apis=len(outcome.api_records),
            total_web_sockets=len(outcome.web_sockets),
            partial=outcome.partial,
            cancelled=outcome.cancelled,
        )

        if outcome.cancelled:
            log.info("capture_cancelled", api_count=result.total_apis)
            return result

        self.store.put(session_id, request.url, outcome.api_records, outcome.web_sockets)
        log.info("capture_stored", api_count=result.total_apis, partial=result.partial)
        return result

    def cancel_session(self, session_id: str) -> bool:
        """Ask an in-flight capture to stop.

        Returns:
            False when no capture with this id is running
        """
        cancel_event = self._active.get(session_id)
        if cancel_event is None:
            return False
        cancel_event.set()
        logger.info("capture_cancel_requested", session_id=session_id)
        return True

    def get_session(self, session_id: str) -> SessionView | None:
        return self.store.get(session_id)

    def cleanup(self, force: bool = False, max_age_minutes: int | None = None) -> CleanupStats:
        return self.store.cleanup(force=force, max_age_minutes=max_age_minutes)

    def stats(self) -> StoreStats:
        return self.store.stats()

