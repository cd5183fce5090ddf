"""
SignalGrade — Celery Application

Scans are submitted on demand (no beat schedule) and routed to a dedicated
queue so long multi-timeframe batches never starve other workers.
"""

from __future__ import annotations

from typing import Optional

from celery import Celery

from signalgrade.config import Settings, get_settings

TASK_PACKAGE = "signalgrade.tasks"


def make_celery(settings: Optional[Settings] = None) -> Celery:
    """Build the scan worker app from settings.

    JSON-only payloads; a task is acknowledged after it finishes so a lost
    worker hands its scan to another one.
    """
    s = settings or get_settings()

    app = Celery("SignalGrade", broker=s.redis_url, backend=s.redis_url, include=[f"{TASK_PACKAGE}.scan_tasks"])
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        enable_utc=True,
        timezone="UTC",
        task_routes={f"{TASK_PACKAGE}.scan_tasks.*": {"queue": s.scan_queue}},
        task_soft_time_limit=s.scan_soft_time_limit,
        task_time_limit=s.scan_time_limit,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        result_expires=s.scan_result_ttl,
    )
    return app


celery_app = make_celery()
