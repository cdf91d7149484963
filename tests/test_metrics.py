"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from appointment_agent.services.metrics import NAMESPACE, MetricsClient


def _make_client(*, enabled: bool = False) -> MetricsClient:
    with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
        with patch.object(MetricsClient, "_start_flush_thread"):
            return MetricsClient()


class TestMetricsRecording:
    """Verify that the record_* helpers buffer the right data."""

    def test_record_success_appends_count_and_latency(self):
        client = _make_client()
        client.record_success("google_calendar", "GET /events", latency_ms=123.4)
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Dependency/RequestCount", "Dependency/Latency"}

    def test_record_failure_without_latency(self):
        client = _make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="timeout")
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"Dependency/RequestCount", "Dependency/ErrorCount"}

    def test_record_failure_with_latency(self):
        client = _make_client()
        client.record_failure("google_calendar", "PATCH /events/{id}", error_type="http_404", latency_ms=80.0)
        assert len(client._buffer) == 3

    def test_failure_dimensions_include_error_type(self):
        client = _make_client()
        client.record_failure("anthropic", "llm_invoke", error_type="BadRequestError")
        error_metric = next(m for m in client._buffer if m["MetricName"] == "Dependency/ErrorCount")
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map == {"Service": "anthropic", "ErrorType": "BadRequestError"}

    def test_record_operation_outcome(self):
        client = _make_client()
        client.record_operation("cancel_appointment", outcome="ok", latency_ms=42.0)
        count = next(m for m in client._buffer if m["MetricName"] == "Operation/Count")
        dim_map = {d["Name"]: d["Value"] for d in count["Dimensions"]}
        assert dim_map == {"Operation": "cancel_appointment", "Outcome": "ok"}
        assert any(m["MetricName"] == "Operation/Latency" for m in client._buffer)


class TestTimed:
    def test_success_is_recorded(self):
        client = _make_client()
        with client.timed("handover_webhook", "POST"):
            pass
        status = next(m for m in client._buffer if m["MetricName"] == "Dependency/RequestCount")
        assert {"Name": "Status", "Value": "success"} in status["Dimensions"]

    def test_failure_is_recorded_and_reraised(self):
        client = _make_client()
        with pytest.raises(ValueError):
            with client.timed("handover_webhook", "POST"):
                raise ValueError("bad")
        error = next(m for m in client._buffer if m["MetricName"] == "Dependency/ErrorCount")
        assert {"Name": "ErrorType", "Value": "ValueError"} in error["Dimensions"]


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_sends_nothing_and_clears(self):
        client = _make_client(enabled=False)
        client.record_success("google_calendar", "GET /events", latency_ms=100.0)
        assert client.flush() == 0
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        client = _make_client(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("google_calendar", "GET /events", latency_ms=100.0)
        sent = client.flush()

        assert sent == 2
        kwargs = mock_cw.put_metric_data.call_args[1]
        assert kwargs["Namespace"] == NAMESPACE
        assert len(kwargs["MetricData"]) == 2

    def test_flush_empty_buffer_returns_zero(self):
        assert _make_client(enabled=True).flush() == 0
