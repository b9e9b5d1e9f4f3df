"""Presence tracking over live Socket.IO connections."""

from .registry import Session, SessionRegistry, get_registry  # noqa: F401
