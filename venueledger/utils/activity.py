"""Audit trail of user actions, written to ``ActivityLog`` in batches."""

from __future__ import annotations

import atexit
import threading
from typing import List, Optional

from flask import current_app
from flask_login import current_user

from venueledger.models import ActivityLog, db


class _ActivityLogger:
    """Buffers audit entries and commits them together."""

    def __init__(self, app, flush_interval: float = 0.1, batch_size: int = 20) -> None:
        self.app = app
        self.flush_interval = flush_interval
        self.batch_size = batch_size
        self._queue: List[ActivityLog] = []
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        atexit.register(self.flush)

    def log(self, activity: str, user_id: Optional[int]) -> None:
        entry = ActivityLog(user_id=user_id, activity=activity[:255])
        with self._lock:
            self._queue.append(entry)
            # Tests read the trail right after the request returns.
            if self.app.testing or len(self._queue) >= self.batch_size:
                self._flush_unlocked()
            else:
                self._start_timer_unlocked()

    def _start_timer_unlocked(self) -> None:
        if self._timer:
            self._timer.cancel()
        self._timer = threading.Timer(self.flush_interval, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def _flush_unlocked(self) -> None:
        entries = list(self._queue)
        self._queue.clear()
        if self._timer:
            self._timer.cancel()
            self._timer = None
        with self.app.app_context():
            try:
                db.session.bulk_save_objects(entries)
                db.session.commit()
            except Exception:
                db.session.rollback()
                self.app.logger.exception(
                    "Failed to write %d activity log entries", len(entries)
                )

    def flush(self) -> None:
        with self._lock:
            if not self._queue:
                self._timer = None
                return
            self._flush_unlocked()


def _get_logger() -> _ActivityLogger:
    app = current_app._get_current_object()
    logger = app.extensions.get("activity_logger")
    if logger is None:
        logger = app.extensions["activity_logger"] = _ActivityLogger(app)
    return logger


def flush_activity_logs() -> None:
    """Force any pending audit entries to be written."""
    logger = current_app.extensions.get("activity_logger")
    if logger:
        logger.flush()


def log_activity(activity: str, user_id: Optional[int] = None) -> None:
    """Record an action in the audit trail.

    The current user is used when ``user_id`` is not given.
    """
    if user_id is None:
        if current_user and not current_user.is_anonymous:
            user_id = current_user.id

    _get_logger().log(activity, user_id)
