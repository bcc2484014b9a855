"""
procurement_tracker/blueprints/requests/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose requests_bp and files_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import files_bp, requests_bp  # noqa: F401
