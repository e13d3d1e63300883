"""In-memory session store with TTL expiry and LRU eviction.

Completed captures are kept as sessions. Two bounds hold at all times:

- no successful ``get`` returns a session older than the TTL;
- after any mutation the store holds at most ``max_sessions`` sessions.

A single ``threading.RLock`` serializes every read and mutation, so the store
can be shared between the event loop and worker threads. The background
sweep runs as an asyncio task between ``start()`` and ``stop()``.
"""

import asyncio
import math
import threading
import time
from collections.abc import Callable
from typing import Any

import structlog

from ..core.config import Settings, get_settings
from ..models.capture import ApiRecord, WebSocketConnection
from ..models.session import CleanupStats, Session, SessionMetadata, SessionView, StoreStats

logger = structlog.get_logger(__name__)

MS_PER_MINUTE = 60_000
MS_PER_HOUR = 3_600_000


def _now_ms() -> float:
    return time.time() * 1000


def _minutes(ms: float) -> int:
    """Milliseconds to whole minutes, rounding half up."""
    return math.floor(ms / MS_PER_MINUTE + 0.5)


class SessionStore:
    """Holds capture sessions under TTL and size bounds.

    Example:
        async with SessionStore.from_settings() as store:
            store.put(session_id, url, records)
            view = store.get(session_id)
    """

    def __init__(
        self,
        ttl_ms: int = 3_600_000,
        max_sessions: int = 100,
        cleanup_interval_ms: int = 900_000,
        warning_threshold: int = 50,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        """Initialize an empty store.

        Args:
            ttl_ms: Maximum session age, measured from creation
            max_sessions: Hard bound on the number of stored sessions
            cleanup_interval_ms: Period of the background sweep
            warning_threshold: Session count at which puts start logging warnings
            clock: Current time in epoch milliseconds
        """
        self.ttl_ms = ttl_ms
        self.max_sessions = max_sessions
        self.cleanup_interval_ms = cleanup_interval_ms
        self.warning_threshold = warning_threshold
        self._clock = clock

        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()
        self._task: asyncio.Task | None = None
        self._last_sweep_at = clock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "SessionStore":
        """Build a store from application settings."""
        settings = settings or get_settings()
        return cls(
            ttl_ms=settings.SESSION_TTL_MS,
            max_sessions=settings.MAX_SESSIONS,
            cleanup_interval_ms=settings.CLEANUP_INTERVAL_MS,
            warning_threshold=settings.SESSION_SIZE_WARNING_THRESHOLD,
            **kwargs,
        )

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __len__(self) -> int:
        return self.size

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    # ===== Reads and writes =====

    def put(
        self,
        session_id: str,
        url: str,
        api_records: list[ApiRecord],
        web_sockets: list[WebSocketConnection] | None = None,
    ) -> SessionView:
        """Store a completed capture, evicting least recently used sessions if needed.

        Args:
            session_id: Unique id (an existing session with this id is replaced)
            url: Captured page URL
            api_records: Records from the capture; copied into the store
            web_sockets: WebSocket connections from the capture; copied as well

        Returns:
            SessionView of the stored session
        """
        with self._lock:
            if len(self._sessions) >= self.warning_threshold:
                logger.warning(
                    "session_store_near_capacity",
                    size=len(self._sessions),
                    max_sessions=self.max_sessions,
                )

            now = self._clock()
            session = Session(
                id=session_id,
                url=url,
                api_records=[record.model_copy(deep=True) for record in api_records],
                web_sockets=[ws.model_copy(deep=True) for ws in web_sockets or []],
                created_at=now,
                last_accessed_at=now,
                access_count=0,
            )
            self._sessions[session_id] = session
            self._enforce_size_limit_locked()

            logger.info(
                "session_stored",
                session_id=session_id,
                api_count=len(api_records),
                web_socket_count=len(web_sockets or []),
                total_sessions=len(self._sessions),
            )
            return self._view(session, now)

    def get(self, session_id: str) -> SessionView | None:
        """Fetch a session and record the access.

        Returns:
            SessionView, or None when the id is unknown, expired or evicted
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None

            now = self._clock()
            if now - session.created_at > self.ttl_ms:
                del self._sessions[session_id]
                logger.info("session_expired_on_read", session_id=session_id)
                return None

            session.last_accessed_at = now
            session.access_count += 1
            return self._view(session, now)

    def _view(self, session: Session, now: float) -> SessionView:
        age_ms = now - session.created_at
        return SessionView(
            id=session.id,
            url=session.url,
            api_records=[record.model_copy(deep=True) for record in session.api_records],
            web_sockets=[ws.model_copy(deep=True) for ws in session.web_sockets],
            created_at=session.created_at,
            last_accessed_at=session.last_accessed_at,
            access_count=session.access_count,
            metadata=SessionMetadata(
                age_minutes=_minutes(age_ms),
                time_until_expiration_minutes=max(0, _minutes(self.ttl_ms - age_ms)),
                access_count=session.access_count,
            ),
        )

    # ===== Bounds =====

    def sweep_expired(self) -> CleanupStats:
        """Remove every session older than the TTL."""
        with self._lock:
            now = self._clock()
            self._last_sweep_at = now
            removed = 0
            oldest_age = 0.0

            for session_id, session in list(self._sessions.items()):
                age = now - session.created_at
                if age > self.ttl_ms:
                    del self._sessions[session_id]
                    removed += 1
                elif age > oldest_age:
                    oldest_age = age

            if removed:
                logger.info(
                    "sessions_expired",
                    removed=removed,
                    remaining=len(self._sessions),
                    oldest_session_age_minutes=_minutes(oldest_age),
                )

            return CleanupStats(
                removed=removed,
                remaining=len(self._sessions),
                oldest_session_age_minutes=_minutes(oldest_age),
                reason="ttl",
            )

    def enforce_size_limit(self) -> CleanupStats:
        """Evict least recently accessed sessions until within max_sessions."""
        with self._lock:
            return self._enforce_size_limit_locked()

    def _enforce_size_limit_locked(self) -> CleanupStats:
        excess = len(self._sessions) - self.max_sessions
        if excess <= 0:
            return CleanupStats(remaining=len(self._sessions), reason="within_limit")

        now = self._clock()
        by_last_access = sorted(self._sessions.values(), key=lambda s: s.last_accessed_at)
        for session in by_last_access[:excess]:
            del self._sessions[session.id]
            logger.info(
                "session_evicted",
                session_id=session.id,
                age_minutes=_minutes(now - session.created_at),
                access_count=session.access_count,
                url=session.url,
            )

        logger.warning(
            "session_limit_enforced",
            evicted=excess,
            remaining=len(self._sessions),
            max_sessions=self.max_sessions,
        )
        return CleanupStats(evicted=excess, remaining=len(self._sessions), reason="size_limit")

    def cleanup(self, force: bool = False, max_age_minutes: int | None = None) -> CleanupStats:
        """Manual cleanup.

        Args:
            force: Remove every session
            max_age_minutes: Also remove sessions older than this many minutes

        Returns:
            Combined statistics of the removal, TTL sweep and LRU passes
        """
        with self._lock:
            if force:
                count = len(self._sessions)
                self._sessions.clear()
                logger.info("sessions_force_cleared", removed=count)
                return CleanupStats(removed=count, remaining=0, reason="force_cleanup")

            removed = 0
            if max_age_minutes is not None:
                now = self._clock()
                limit_ms = max_age_minutes * MS_PER_MINUTE
                for session_id, session in list(self._sessions.items()):
                    if now - session.created_at > limit_ms:
                        del self._sessions[session_id]
                        removed += 1
                logger.info("sessions_age_cleanup", max_age_minutes=max_age_minutes, removed=removed)

            swept = self.sweep_expired()
            eviction = self._enforce_size_limit_locked()
            return CleanupStats(
                removed=removed + swept.removed,
                evicted=eviction.evicted,
                remaining=len(self._sessions),
                oldest_session_age_minutes=swept.oldest_session_age_minutes,
                reason="manual",
            )

    def stats(self) -> StoreStats:
        """Aggregate counts and ages, in minutes."""
        with self._lock:
            now = self._clock()
            next_sweep_ms = max(0.0, self._last_sweep_at + self.cleanup_interval_ms - now)
            base = {
                "max_sessions": self.max_sessions,
                "session_ttl_hours": self.ttl_ms / MS_PER_HOUR,
                "next_cleanup_in_minutes": _minutes(next_sweep_ms),
            }

            if not self._sessions:
                return StoreStats(
                    total_sessions=0,
                    utilization_percent=0,
                    oldest_session_age=0,
                    newest_session_age=0,
                    average_session_age=0,
                    total_access_count=0,
                    **base,
                )

            ages = [now - session.created_at for session in self._sessions.values()]
            return StoreStats(
                total_sessions=len(self._sessions),
                utilization_percent=math.floor(len(self._sessions) / self.max_sessions * 100 + 0.5),
                oldest_session_age=_minutes(max(ages)),
                newest_session_age=_minutes(min(ages)),
                average_session_age=_minutes(sum(ages) / len(ages)),
                total_access_count=sum(s.access_count for s in self._sessions.values()),
                **base,
            )

    # ===== Lifecycle =====

    def run_maintenance(self) -> tuple[CleanupStats, CleanupStats]:
        """One background pass: TTL sweep followed by LRU enforcement."""
        swept = self.sweep_expired()
        evicted = self.enforce_size_limit()
        if swept.removed or evicted.evicted:
            logger.info(
                "session_maintenance_complete",
                expired=swept.removed,
                evicted=evicted.evicted,
                remaining=evicted.remaining,
            )
        return swept, evicted

    async def _maintenance_loop(self) -> None:
        interval = self.cleanup_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.run_maintenance()
            except Exception as e:
                logger.error("session_maintenance_failed", error=str(e), error_type=type(e).__name__)

    async def start(self) -> None:
        """Run an initial sweep and schedule the periodic one."""
        if self._task is not None:
            return
        self.run_maintenance()
        self._task = asyncio.create_task(self._maintenance_loop())
        logger.info("session_store_started", interval_ms=self.cleanup_interval_ms)

    async def stop(self) -> None:
        """Cancel the periodic sweep. Stored sessions are kept."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("session_store_stopped", total_sessions=self.size)

    async def __aenter__(self) -> "SessionStore":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
