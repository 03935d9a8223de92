from __future__ import annotations

import logging
import os
import threading
import time

from flask import Flask

from app.db import close_db, get_db
from app.observability import bind_request_id, observe_expiry_sweep


LOGGER = logging.getLogger("app.scheduler")


def run_expiry_sweep(app: Flask, *, limit: int | None = None, clock=None) -> int:
    """Run the lazy expiry / auto-advance checks over BIDDING requests once."""
    from app.contexts.procurement.application.lifecycle_engine import RequestLifecycleEngine
    from app.procurement.transitions import utc_now

    batch = int(limit or app.config.get("EXPIRY_SWEEP_LIMIT", 200) or 200)
    with app.app_context():
        db = get_db()
        try:
            engine = RequestLifecycleEngine(
                db,
                clock=clock or app.extensions.get("servicebid_clock") or utc_now,
                default_cycle_days=int(app.config.get("DEFAULT_BIDDING_CYCLE_DAYS", 7)),
                default_currency=str(app.config.get("DEFAULT_OFFER_CURRENCY", "EUR")),
            )
            moved = engine.sweep(limit=batch)
        finally:
            close_db()
    observe_expiry_sweep(moved)
    LOGGER.info("expiry_sweep_completed", extra={"moved": moved, "limit": batch})
    return moved


class ExpirySweepScheduler:
    def __init__(self, app: Flask) -> None:
        self.app = app
        self.interval_seconds = _int_config(app, "EXPIRY_SWEEP_INTERVAL_SECONDS", 300, 10, 86_400)
        self.min_backoff_seconds = 30
        self.max_backoff_seconds = max(self.interval_seconds, 1800)
        self.limit = _int_config(app, "EXPIRY_SWEEP_LIMIT", 200, 1, 5000)

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failure_count = 0
        self._next_run_at: float | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="expiry-sweep", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> int:
        if self._next_run_at is not None and time.monotonic() < self._next_run_at:
            return 0
        with bind_request_id(f"sweep-{int(time.time())}"):
            try:
                moved = run_expiry_sweep(self.app, limit=self.limit)
            except Exception:  # noqa: BLE001 - thread must survive storage outages
                self._register_failure()
                LOGGER.exception(
                    "expiry_sweep_failed",
                    extra={"failures": self._failure_count},
                )
                return 0
        self._failure_count = 0
        self._next_run_at = None
        return moved

    def _register_failure(self) -> None:
        self._failure_count += 1
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.min_backoff_seconds * (2 ** (self._failure_count - 1)),
        )
        self._next_run_at = time.monotonic() + backoff_seconds


def start_expiry_scheduler(app: Flask) -> ExpirySweepScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = ExpirySweepScheduler(app)
    scheduler.start()
    app.extensions["expiry_scheduler"] = scheduler
    app.logger.info(
        "Expiry sweep started: interval=%ss limit=%s",
        scheduler.interval_seconds,
        scheduler.limit,
    )
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("EXPIRY_SWEEP_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
