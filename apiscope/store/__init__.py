"""Bounded storage for completed capture sessions."""

from .session_store import SessionStore

__all__ = ["SessionStore"]
