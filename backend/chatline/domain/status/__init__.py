"""Ephemeral status (story) posts scoped to the friend graph."""

from .models import ContentType, Status, StatusContent, StatusViewer  # noqa: F401
