"""Activity log blueprint package export."""

from __future__ import annotations

from .routes import activity_bp  # noqa: F401
