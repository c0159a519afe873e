# storefront/services/dispatch.py
"""Runs post-confirmation shipment work off the request path."""
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import structlog
from flask import current_app

from ..extensions import db

logger = structlog.get_logger(__name__)


class ShipmentDispatcher:
    """Each job gets its own app context, so its own database session.

    ``thread`` mode hands jobs to a small worker pool; ``inline`` mode runs
    them immediately in the caller's thread (tests, CLI).
    """

    def __init__(self, app, mode: str = "thread", max_workers: int = 4):
        if mode not in ("thread", "inline"):
            raise ValueError(f"Unknown shipment dispatch mode: {mode}")
        self.app = app
        self.mode = mode
        self.max_workers = max_workers
        self._executor = None
        self._lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="shipments")
            return self._executor

    def _run(self, fn, args, kwargs):
        with self.app.app_context():
            try:
                return fn(*args, **kwargs)
            except Exception:
                db.session.rollback()
                logger.exception("Background shipment job failed", job=fn.__name__, args=args)
                return None

    def submit(self, fn, *args, **kwargs) -> Future:
        if self.mode == "inline":
            future = Future()
            future.set_result(self._run(fn, args, kwargs))
            return future
        return self._pool().submit(self._run, fn, args, kwargs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor:
            executor.shutdown(wait=wait)


def get_dispatcher(app=None) -> ShipmentDispatcher:
    app = app or current_app._get_current_object()
    return app.extensions["shipment_dispatcher"]
