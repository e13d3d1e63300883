"""Browser automation for APIScope."""

from .capture import BrowserCapture, PlaywrightCaptureRunner, parse_cookie_string

__all__ = [
    "BrowserCapture",
    "PlaywrightCaptureRunner",
    "parse_cookie_string",
]
