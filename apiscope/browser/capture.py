"""Playwright adapter that feeds browser network events into a capture.

``BrowserCapture`` subscribes to a page's ``request`` and ``response``
events and publishes them into a ``CaptureChannel``. Request handlers are
synchronous; response bodies are read in background tasks that ``drain()``
awaits before the capture ends. WebSockets opened by the page are recorded
directly, frame by frame, without going through the channel.

``PlaywrightCaptureRunner`` drives a whole capture: launch Chromium, navigate
with retries, let lazy content load, then collect the classified records.
"""

import asyncio
import base64
import contextlib
import itertools
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

import structlog
from playwright.async_api import Page, Request, Response, WebSocket, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..capture.classifier import ProgressCallback, TrafficClassifier
from ..capture.pipeline import CaptureChannel, CapturePipeline
from ..core.config import Settings, get_settings
from ..models.capture import (
    CaptureOutcome,
    CaptureRequest,
    NetworkRequest,
    NetworkResponse,
    WebSocketConnection,
    WebSocketFrame,
)
from ..utils.retry import RetryCancelledError, RetryPolicy, get_retry_info, retry_with_backoff

logger = structlog.get_logger(__name__)

TEXTUAL_CONTENT_MARKERS = ("application/json", "text")

CLICKABLE_SELECTOR = 'button, a[href="#"], .clickable'
MAX_CLICKS = 3

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


class BrowserCapture:
    """Converts Playwright request/response events into capture events.

    Request ids are assigned per capture ("req-1", "req-2", ...) and looked up
    again through ``response.request`` so that repeated URLs correlate exactly.
    """

    def __init__(
        self,
        channel: CaptureChannel,
        emit: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.channel = channel
        self.web_sockets: list[WebSocketConnection] = []
        self._emit = emit or (lambda event: None)
        self._counter = itertools.count(1)
        self._request_ids: dict[Request, str] = {}
        self._body_tasks: set[asyncio.Task] = set()

    def attach(self, page: Page) -> None:
        """Subscribe to the page's network events."""
        page.on("request", self.on_request)
        page.on("response", self.on_response)
        page.on("websocket", self.on_websocket)

    def detach(self, page: Page) -> None:
        """Unsubscribe from the page's network events."""
        page.remove_listener("request", self.on_request)
        page.remove_listener("response", self.on_response)
        page.remove_listener("websocket", self.on_websocket)

    def _request_id(self, request: Request) -> str:
        request_id = self._request_ids.get(request)
        if request_id is None:
            request_id = f"req-{next(self._counter)}"
            self._request_ids[request] = request_id
        return request_id

    def on_request(self, request: Request) -> None:
        """Publish a request event; never blocks."""
        try:
            body = request.post_data
        except Exception:
            # Binary bodies cannot be decoded as text
            body = None

        self.channel.publish(
            NetworkRequest(
                url=request.url,
                method=request.method,
                headers=dict(request.headers),
                resource_type=request.resource_type,
                body=body,
                request_id=self._request_id(request),
            )
        )

    def on_response(self, response: Response) -> None:
        """Schedule the body read and publish once it completes."""
        task = asyncio.ensure_future(self._publish_response(response))
        self._body_tasks.add(task)
        task.add_done_callback(self._body_tasks.discard)

    async def _publish_response(self, response: Response) -> None:
        headers = dict(response.headers)
        content_type = next(
            (value for key, value in headers.items() if key.lower() == "content-type"), ""
        ).lower()

        body_text: str | None = None
        if any(marker in content_type for marker in TEXTUAL_CONTENT_MARKERS):
            try:
                body_text = await response.text()
            except Exception as e:
                logger.debug("response_body_unavailable", url=response.url[:100], error=str(e))

        self.channel.publish(
            NetworkResponse(
                url=response.url,
                status=response.status,
                status_text=response.status_text,
                headers=headers,
                body_text=body_text,
                request_id=self._request_id(response.request),
            )
        )

    def on_websocket(self, ws: WebSocket) -> None:
        """Record a new WebSocket and follow its frames until it closes."""
        connection = WebSocketConnection(id=len(self.web_sockets) + 1, url=ws.url)
        self.web_sockets.append(connection)

        def on_frame(direction: str) -> Callable[[str | bytes], None]:
            def record(payload: str | bytes) -> None:
                if isinstance(payload, bytes):
                    payload = base64.b64encode(payload).decode("ascii")
                connection.frames.append(WebSocketFrame(direction=direction, data=payload))

            return record

        def on_close(_ws: WebSocket) -> None:
            connection.status = "closed"
            logger.debug("websocket_closed", url=connection.url, frames=len(connection.frames))

        ws.on("framesent", on_frame("sent"))
        ws.on("framereceived", on_frame("received"))
        ws.on("close", on_close)

        logger.info("websocket_detected", websocket_id=connection.id, url=connection.url)
        self._emit({"status": "websocket", "message": f"WebSocket detected: {connection.url}"})

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding body reads, abandoning them after ``timeout``."""
        if not self._body_tasks:
            return
        pending = list(self._body_tasks)
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("response_reads_abandoned", count=len(still_pending))


def parse_cookie_string(cookies: str, url: str) -> list[dict[str, str]]:
    """Turn "a=1; b=2" into Playwright cookie dicts scoped to the URL's host.

    Entries without a name are skipped.
    """
    hostname = urlsplit(url).hostname or ""
    parsed = []
    for part in cookies.split(";"):
        name, _, value = part.strip().partition("=")
        if not name:
            continue
        parsed.append({"name": name, "value": value, "domain": hostname, "path": "/"})
    return parsed


class PlaywrightCaptureRunner:
    """Runs a complete capture in a fresh headless Chromium.

    Attributes:
        settle_pauses: Seconds to pause after load, after scrolling down,
            after scrolling up and after clicking
    """

    settle_pauses: tuple[float, float, float, float] = (3.0, 2.0, 1.0, 2.0)

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def navigation_policy(
        self,
        cancel_event: asyncio.Event | None = None,
        emit: Callable[[dict[str, Any]], None] | None = None,
    ) -> RetryPolicy:
        """Retry policy for page navigation, reporting each retry through ``emit``."""

        def on_retry(attempt: int, max_retries: int, delay_ms: int, error: BaseException) -> None:
            logger.warning(
                "navigation_retry",
                attempt=attempt,
                max_retries=max_retries,
                delay_ms=delay_ms,
                error=str(error),
            )
            if emit is not None:
                emit(
                    {
                        "status": "parsing-retry",
                        "message": f"Retrying... (Attempt {attempt} of {max_retries})",
                        "reason": str(error),
                        **get_retry_info(attempt, max_retries, delay_ms),
                    }
                )

        return RetryPolicy(
            max_retries=self.settings.NAVIGATION_MAX_RETRIES,
            initial_delay_ms=self.settings.NAVIGATION_INITIAL_DELAY_MS,
            max_delay_ms=self.settings.NAVIGATION_MAX_DELAY_MS,
            backoff_multiplier=self.settings.NAVIGATION_BACKOFF_MULTIPLIER,
            on_retry=on_retry,
            cancel_event=cancel_event,
        )

    async def run(
        self,
        request: CaptureRequest,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CaptureOutcome:
        """Capture the API traffic of one page load.

        Args:
            request: URL plus headers, cookies and user agent to apply
            on_progress: Fire-and-forget progress hook
            cancel_event: Set it to stop the capture early with partial results

        Returns:
            CaptureOutcome; partial when the timeout expired or the capture was cancelled

        Raises:
            Exception: Launch or navigation failures once retries are exhausted
        """
        emit = _safe_emitter(on_progress)
        timeout = request.timeout_seconds or self.settings.CAPTURE_TIMEOUT_SECONDS

        classifier = TrafficClassifier(on_progress=emit)
        channel = CaptureChannel(maxsize=self.settings.CAPTURE_QUEUE_SIZE)
        consumer = asyncio.create_task(CapturePipeline(classifier, channel).run())
        capture = BrowserCapture(channel, emit=emit)
        timed_out = False

        emit({"status": "starting", "message": "Launching browser..."})
        try:
            async with async_playwright() as playwright:
                browser = await playwright.chromium.launch(
                    headless=self.settings.BROWSER_HEADLESS,
                    args=BROWSER_ARGS,
                )
                try:
                    context = await browser.new_context(
                        user_agent=request.user_agent or self.settings.DEFAULT_USER_AGENT,
                        extra_http_headers=request.custom_headers or None,
                    )
                    if request.cookies:
                        await context.add_cookies(parse_cookie_string(request.cookies, request.url))

                    page = await context.new_page()
                    capture.attach(page)
                    emit({"status": "browser-ready", "message": "Browser ready, capturing traffic..."})

                    try:
                        await asyncio.wait_for(
                            self.drive(page, request.url, cancel_event=cancel_event, emit=emit),
                            timeout=timeout,
                        )
                    except asyncio.TimeoutError:
                        timed_out = True
                        logger.warning("capture_timeout", url=request.url, timeout_seconds=timeout)

                    emit({"status": "finalizing", "message": "Collecting results..."})
                    await capture.drain()
                finally:
                    await browser.close()
        finally:
            await channel.close()
            await consumer

        cancelled = cancel_event is not None and cancel_event.is_set()
        outcome = CaptureOutcome(
            url=request.url,
            api_records=classifier.records,
            web_sockets=capture.web_sockets,
            partial=timed_out or cancelled,
            cancelled=cancelled,
            timed_out=timed_out,
            dropped_events=channel.dropped,
        )
        logger.info(
            "capture_complete",
            url=request.url,
            api_count=len(outcome.api_records),
            web_socket_count=len(outcome.web_sockets),
            pending=len(classifier.pending),
            partial=outcome.partial,
            dropped_events=outcome.dropped_events,
        )
        return outcome

    async def drive(
        self,
        page: Page,
        url: str,
        cancel_event: asyncio.Event | None = None,
        emit: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        """Navigate with retries, then scroll and click to trigger lazy requests.

        Returns early, without error, when the capture is cancelled. A cancel
        interrupts whatever browser call is in flight, including navigation.
        """
        emit = emit or (lambda event: None)
        if cancel_event is None:
            await self._interact(page, url, None, emit)
            return

        steps = asyncio.ensure_future(self._interact(page, url, cancel_event, emit))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({steps, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            steps.cancel()
            raise
        finally:
            cancelled.cancel()

        if not steps.done():
            steps.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await steps
            logger.info("capture_cancelled", url=url, stage="interaction")
            return
        await steps

    async def _interact(
        self,
        page: Page,
        url: str,
        cancel_event: asyncio.Event | None,
        emit: Callable[[dict[str, Any]], None],
    ) -> None:
        """The navigation and interaction steps of ``drive``."""

        async def _navigate() -> Any:
            return await page.goto(
                url,
                wait_until="networkidle",
                timeout=self.settings.NAVIGATION_TIMEOUT_MS,
            )

        emit({"status": "loading", "message": "Loading website..."})
        try:
            await retry_with_backoff(_navigate, self.navigation_policy(cancel_event, emit))
        except RetryCancelledError:
            logger.info("capture_cancelled", url=url, stage="navigation")
            return

        after_load, after_scroll_down, after_scroll_up, after_click = self.settle_pauses

        emit({"status": "scrolling", "message": "Scrolling to load lazy content..."})
        if await _pause(after_load, cancel_event):
            return
        await _evaluate(page, "window.scrollTo(0, document.body.scrollHeight)")
        if await _pause(after_scroll_down, cancel_event):
            return
        await _evaluate(page, "window.scrollTo(0, 0)")
        if await _pause(after_scroll_up, cancel_event):
            return

        emit({"status": "interacting", "message": "Simulating user interactions..."})
        await _evaluate(
            page,
            f"""() => {{
                const elements = document.querySelectorAll('{CLICKABLE_SELECTOR}');
                elements.forEach((el, idx) => {{
                    if (idx < {MAX_CLICKS}) {{ try {{ el.click(); }} catch (e) {{}} }}
                }});
            }}""",
        )
        await _pause(after_click, cancel_event)


async def _pause(seconds: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep, waking early on cancellation. Returns True if cancelled."""
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    logger.info("capture_cancelled", stage="settle")
    return True


async def _evaluate(page: Page, script: str) -> None:
    try:
        await page.evaluate(script)
    except PlaywrightTimeoutError as e:
        logger.debug("page_script_timeout", error=str(e))
    except Exception as e:
        logger.warning("page_script_failed", error=str(e), error_type=type(e).__name__)


def _safe_emitter(on_progress: ProgressCallback | None) -> Callable[[dict[str, Any]], None]:
    def emit(event: dict[str, Any]) -> None:
        if on_progress is None:
            return
        try:
            on_progress(event)
        except Exception as e:
            logger.warning("progress_callback_failed", error=str(e))

    return emit
