"""
procurement_tracker/notifications.py

User-facing outcome messages.

Every store operation emits exactly one Notification. Inside a request the
notifier flashes it (categories: success / danger / warning / info); outside a
request it is only logged.
"""

from __future__ import annotations

import logging

from flask import flash, has_request_context

from .errors import Notification

logger = logging.getLogger(__name__)

_LEVELS = {
    "danger": logging.WARNING,
    "warning": logging.WARNING,
}


class FlashNotifier:
    def notify(self, notification: Notification) -> None:
        logger.log(
            _LEVELS.get(notification.category, logging.INFO),
            "%s: %s",
            notification.title,
            notification.message,
        )
        if has_request_context():
            flash(notification.message, notification.category)
