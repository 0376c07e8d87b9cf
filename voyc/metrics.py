"""Per-cycle latency records and threshold alerting."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable

from voyc.config import ThresholdConfig
from voyc.events import CallbackList

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 100

ALERT_STT = "stt_latency"
ALERT_BASETEN = "baseten_post_process"
ALERT_TOTAL = "total_latency"


def _delta_ms(start: float | None, end: float | None) -> float | None:
    if start is None or end is None:
        return None
    return max(0.0, (end - start) * 1000)


@dataclass
class LatencyRecord:
    """
    Monotonic timestamps (seconds) taken at each boundary of one cycle.

    Boundaries not reached yet are ``None``. A cycle that skips refinement
    reuses ``stt_complete`` for ``post_process_complete``.
    """

    session_id: str
    capture_start: float | None = None
    capture_end: float | None = None
    stt_complete: float | None = None
    post_process_complete: float | None = None
    injection_complete: float | None = None
    provider: str = ""
    refiner: str | None = None
    baseten_ms: float | None = None

    def timestamps(self) -> list[float | None]:
        return [
            self.capture_start,
            self.capture_end,
            self.stt_complete,
            self.post_process_complete,
            self.injection_complete,
        ]

    @property
    def is_complete(self) -> bool:
        return None not in (
            self.capture_start, self.capture_end, self.stt_complete, self.injection_complete
        )

    @property
    def capture_ms(self) -> float | None:
        return _delta_ms(self.capture_start, self.capture_end)

    @property
    def stt_ms(self) -> float | None:
        return _delta_ms(self.capture_end, self.stt_complete)

    @property
    def post_process_ms(self) -> float | None:
        return _delta_ms(self.stt_complete, self.post_process_complete)

    @property
    def injection_ms(self) -> float | None:
        return _delta_ms(self.post_process_complete or self.stt_complete, self.injection_complete)

    @property
    def processing_ms(self) -> float | None:
        """Time from end of speech until the text was delivered."""
        return _delta_ms(self.capture_end, self.injection_complete)

    @property
    def total_ms(self) -> float | None:
        return _delta_ms(self.capture_start, self.injection_complete)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "provider": self.provider,
            "refiner": self.refiner,
            "capture_ms": self.capture_ms,
            "stt_ms": self.stt_ms,
            "post_process_ms": self.post_process_ms,
            "baseten_ms": self.baseten_ms,
            "injection_ms": self.injection_ms,
            "processing_ms": self.processing_ms,
            "total_ms": self.total_ms,
        }


@dataclass(frozen=True)
class LatencyAlert:
    name: str
    value_ms: float
    threshold_ms: float
    session_id: str

    def __str__(self) -> str:
        return f"{self.name} {self.value_ms:.0f}ms exceeds {self.threshold_ms:.0f}ms"


def check_thresholds(record: LatencyRecord, thresholds: ThresholdConfig) -> list[LatencyAlert]:
    """Return an alert for every delta of ``record`` above its threshold."""
    alerts = []

    if record.stt_ms is not None and record.stt_ms > thresholds.stt_latency_ms:
        alerts.append(
            LatencyAlert(ALERT_STT, record.stt_ms, thresholds.stt_latency_ms, record.session_id)
        )

    if record.baseten_ms is not None and record.baseten_ms > thresholds.baseten_post_process_ms:
        alerts.append(
            LatencyAlert(
                ALERT_BASETEN, record.baseten_ms, thresholds.baseten_post_process_ms, record.session_id
            )
        )

    processing = record.processing_ms
    if processing is not None and processing > thresholds.total_latency_ms:
        alerts.append(
            LatencyAlert(ALERT_TOTAL, processing, thresholds.total_latency_ms, record.session_id)
        )

    return alerts


class MetricsTracker:
    """Keeps recent latency records and raises alerts on slow cycles."""

    def __init__(
        self,
        thresholds: ThresholdConfig | None = None,
        alerts_enabled: bool = True,
        max_records: int = DEFAULT_MAX_RECORDS,
    ) -> None:
        self._thresholds = replace(thresholds) if thresholds else ThresholdConfig()
        self._alerts_enabled = alerts_enabled
        self._records: deque[LatencyRecord] = deque(maxlen=max_records)
        self._alert_callbacks: CallbackList[Callable[[LatencyAlert], None]] = CallbackList("alert")

    @property
    def thresholds(self) -> ThresholdConfig:
        return replace(self._thresholds)

    @property
    def alerts_enabled(self) -> bool:
        return self._alerts_enabled

    @property
    def records(self) -> list[LatencyRecord]:
        return list(self._records)

    @property
    def last_record(self) -> LatencyRecord | None:
        return self._records[-1] if self._records else None

    def update_thresholds(self, thresholds: ThresholdConfig) -> None:
        self._thresholds = replace(thresholds)

    def set_alerts_enabled(self, enabled: bool) -> None:
        self._alerts_enabled = enabled

    def on_alert(self, callback: Callable[[LatencyAlert], None]) -> Callable[[], None]:
        return self._alert_callbacks.add(callback)

    def complete(self, record: LatencyRecord) -> list[LatencyAlert]:
        """Store a finished record and fire alerts for exceeded thresholds."""
        self._records.append(record)
        logger.info(
            "Cycle %s: stt=%s post=%s processing=%s total=%s",
            record.session_id,
            _fmt(record.stt_ms),
            _fmt(record.post_process_ms),
            _fmt(record.processing_ms),
            _fmt(record.total_ms),
        )

        if not self._alerts_enabled:
            return []

        alerts = check_thresholds(record, self._thresholds)
        for alert in alerts:
            logger.warning("Latency alert: %s (session %s)", alert, alert.session_id)
            self._alert_callbacks.emit(alert)
        return alerts

    def summary(self) -> dict:
        records = list(self._records)
        return {
            "count": len(records),
            "avg_stt_ms": _average(r.stt_ms for r in records),
            "avg_post_process_ms": _average(r.post_process_ms for r in records),
            "avg_baseten_ms": _average(r.baseten_ms for r in records),
            "avg_processing_ms": _average(r.processing_ms for r in records),
            "avg_total_ms": _average(r.total_ms for r in records),
        }

    def clear(self) -> None:
        self._records.clear()

    def dispose(self) -> None:
        self._alert_callbacks.clear()
        self._records.clear()


def _average(values) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def _fmt(value: float | None) -> str:
    return "-" if value is None else f"{value:.0f}ms"
