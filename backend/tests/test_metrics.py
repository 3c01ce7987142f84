"""Tests for metrics and trace helpers."""
from __future__ import annotations

from typing import Any, Dict

import pytest

from app.core.context import session_id_ctx_var
from app.observability import metrics
from app.observability import tracing


class _DummyTrace:
    def __init__(self, name: str, metadata: Dict[str, Any]):
        self.name = name
        self.metadata = metadata
        self.ended = False
        self.error_info: Dict[str, Any] | None = None

    def update(self, error_info: Dict[str, Any]) -> None:
        self.error_info = error_info

    def end(self) -> None:
        self.ended = True


class _DummyClient:
    def __init__(self):
        self.traces: list[_DummyTrace] = []

    def trace(self, name: str, metadata: Dict[str, Any] | None = None):
        trace = _DummyTrace(name, metadata or {})
        self.traces.append(trace)
        return trace


@pytest.fixture()
def dummy_client(monkeypatch) -> _DummyClient:
    client = _DummyClient()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: client)
    return client


def test_log_metric_closes_trace(dummy_client: _DummyClient) -> None:
    metrics.log_metric("schedule.exhausted", 3, metadata={"issues": 2})

    recorded = dummy_client.traces[0]
    assert recorded.name == "metric:schedule.exhausted"
    assert recorded.metadata["value"] == 3
    assert recorded.metadata["issues"] == 2
    assert recorded.ended is True


def test_trace_picks_up_bound_session_id(dummy_client: _DummyClient) -> None:
    token = session_id_ctx_var.set("session_abc")
    try:
        with tracing.trace("intent.classify"):
            pass
    finally:
        session_id_ctx_var.reset(token)

    assert dummy_client.traces[0].metadata["session_id"] == "session_abc"


def test_trace_records_error_and_reraises(dummy_client: _DummyClient) -> None:
    with pytest.raises(ValueError):
        with tracing.trace("orchestrator.handle"):
            raise ValueError("bad input")

    recorded = dummy_client.traces[0]
    assert recorded.error_info == {"message": "bad input"}
    assert recorded.ended is True


def test_log_metric_is_noop_without_client(monkeypatch) -> None:
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    metrics.log_metric("cleanup.deleted", 0)
