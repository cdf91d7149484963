"""CloudWatch custom metrics emitter with background batching.

Publishes per-call metrics (count, latency, errors) for every external
dependency the agent talks to (Google Calendar, Anthropic) and for every
booking operation the dispatch loop executes.

Design
------
* Data points are collected in a thread-safe in-memory buffer.
* A daemon thread flushes the buffer to CloudWatch every
  ``FLUSH_INTERVAL_SECONDS``.
* When ``METRICS_ENABLED != "true"`` the data points are only logged at
  DEBUG level and dropped on flush.

Usage
-----
>>> from appointment_agent.services.metrics import metrics
>>> with metrics.timed("google_calendar", "GET /events"):
...     ...
>>> metrics.record_operation("cancel_appointment", outcome="no_active_booking")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "AppointmentAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ─────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful call to an external dependency."""
        now = datetime.now(UTC)
        self._append("Dependency/RequestCount", _dims(Service=service, Status="success"), 1, "Count", now)
        self._append(
            "Dependency/Latency", _dims(Service=service, Operation=operation),
            latency_ms, "Milliseconds", now,
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call to an external dependency."""
        now = datetime.now(UTC)
        self._append("Dependency/RequestCount", _dims(Service=service, Status="failure"), 1, "Count", now)
        self._append("Dependency/ErrorCount", _dims(Service=service, ErrorType=error_type), 1, "Count", now)
        if latency_ms > 0:
            self._append(
                "Dependency/Latency", _dims(Service=service, Operation=operation),
                latency_ms, "Milliseconds", now,
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_operation(self, operation: str, outcome: str, latency_ms: float = 0) -> None:
        """Record one execution of a booking operation requested by the agent."""
        now = datetime.now(UTC)
        self._append("Operation/Count", _dims(Operation=operation, Outcome=outcome), 1, "Count", now)
        if latency_ms > 0:
            self._append("Operation/Latency", _dims(Operation=operation), latency_ms, "Milliseconds", now)
        logger.debug("Metric: operation %s outcome=%s", operation, outcome)

    @contextmanager
    def timed(self, service: str, operation: str) -> Iterator[None]:
        """Time the wrapped block and record success, or failure on exception."""
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self.record_failure(service, operation, type(exc).__name__, latency_ms=elapsed)
            raise
        self.record_success(service, operation, latency_ms=(time.perf_counter() - t0) * 1000)

    # ── Flushing ──────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _append(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        unit: str,
        timestamp: datetime,
    ) -> None:
        with self._lock:
            self._buffer.append(
                {
                    "MetricName": name,
                    "Dimensions": dimensions,
                    "Timestamp": timestamp,
                    "Value": value,
                    "Unit": unit,
                }
            )

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
