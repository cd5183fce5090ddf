"""
SignalGrade — Scan Tasks

Celery tasks that run multi-timeframe scans off the request path and
deliver alerts for scans that clear every alert gate.

Payloads are JSON: a mapping of timeframe label to a list of candle
objects ({timestamp, open, high, low, close, volume}), oldest first.
Batch payloads map symbol to such a mapping.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Sequence

import structlog

from signalgrade.engines.synthesis_engine import MultiTimeframeSynthesizer, build_scan_notification
from signalgrade.errors import SignalGradeError
from signalgrade.models import Candle, ScanOutcome
from signalgrade.notifications import NotificationDispatcher
from signalgrade.tasks.celery_app import celery_app

log = structlog.get_logger(__name__)

CandlePayload = Mapping[str, Sequence[Mapping[str, Any]]]


def parse_candles(payload: CandlePayload) -> dict[str, list[Candle]]:
    """Validate raw candle rows per timeframe. Raises pydantic's ValidationError."""
    return {tf: [Candle.model_validate(row) for row in rows] for tf, rows in payload.items()}


def run_symbol_scan(
    symbol: str,
    payload: CandlePayload,
    notify: bool = True,
    synthesizer: Optional[MultiTimeframeSynthesizer] = None,
) -> dict:
    """Scan one symbol and deliver an alert if it qualifies.

    Raises:
        SignalGradeError / ValueError: invalid input or not enough history.
    """
    synth = synthesizer or MultiTimeframeSynthesizer()
    result = synth.scan(symbol, parse_candles(payload))
    notification = build_scan_notification(result, synth.settings)

    delivered: dict[str, bool] = {}
    if notify and notification.is_alert:
        dispatcher = NotificationDispatcher(synth.settings)
        delivered = asyncio.run(dispatcher.send_scan_notification(notification))
        log.info("scan_task.alert_sent", symbol=result.symbol, channels=delivered)

    return {
        "result": result.model_dump(mode="json"),
        "notification": notification.model_dump(mode="json"),
        "delivered": delivered,
    }


def run_batch_scan(
    payload: Mapping[str, CandlePayload],
    notify: bool = True,
    synthesizer: Optional[MultiTimeframeSynthesizer] = None,
) -> dict:
    """Scan many symbols. Per-symbol failures are reported, never raised."""
    synth = synthesizer or MultiTimeframeSynthesizer()

    requests: dict[str, dict[str, list[Candle]]] = {}
    outcomes: list[ScanOutcome] = []
    for symbol, frames in payload.items():
        try:
            requests[symbol] = parse_candles(frames)
        except ValueError as exc:
            log.warning("scan_task.bad_payload", symbol=symbol, error=str(exc))
            outcomes.append(ScanOutcome(symbol=symbol, error_type="validation", error=str(exc)))

    outcomes.extend(synth.scan_many(requests))

    alerts = []
    for outcome in outcomes:
        if not outcome.ok:
            continue
        notification = build_scan_notification(outcome.result, synth.settings)
        if notification.is_alert:
            alerts.append(notification)

    if notify and alerts:
        dispatcher = NotificationDispatcher(synth.settings)

        async def _deliver():
            for notification in alerts:
                await dispatcher.send_scan_notification(notification)

        asyncio.run(_deliver())

    failed = sum(1 for o in outcomes if not o.ok)
    log.info("scan_task.batch_complete", scanned=len(outcomes), failed=failed, alerts=len(alerts))
    return {
        "scanned": len(outcomes),
        "failed": failed,
        "alerts": [n.symbol for n in alerts],
        "outcomes": [o.model_dump(mode="json") for o in outcomes],
    }


# ──────────────────────────────────────────────
# Celery Tasks
# ──────────────────────────────────────────────


@celery_app.task(bind=True, max_retries=2, default_retry_delay=30)
def scan_symbol(self, symbol: str, payload: dict) -> dict:
    """Background scan of one symbol.

    Input errors are returned as a failed outcome; anything else is retried.
    """
    try:
        return run_symbol_scan(symbol, payload)
    except (SignalGradeError, ValueError) as exc:
        kind = exc.kind if isinstance(exc, SignalGradeError) else "validation"
        log.warning("scan_task.rejected", symbol=symbol, error_type=kind, error=str(exc))
        return ScanOutcome(symbol=symbol, error_type=kind, error=str(exc)).model_dump(mode="json")
    except Exception as exc:
        log.error("scan_task.failed", symbol=symbol, error=str(exc))
        raise self.retry(exc=exc)


@celery_app.task(bind=True, max_retries=2, default_retry_delay=30)
def scan_batch(self, payload: dict) -> dict:
    """Background scan of a symbol batch."""
    try:
        return run_batch_scan(payload)
    except Exception as exc:
        log.error("scan_task.failed", symbols=len(payload), error=str(exc))
        raise self.retry(exc=exc)
