from contextlib import contextmanager
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from app import main
from app.core.context import get_request_id, get_session_id


@pytest.fixture()
def traced(monkeypatch) -> List[Dict[str, Any]]:
    """Record the context each health trace is opened in."""
    seen: List[Dict[str, Any]] = []

    @contextmanager
    def recording_trace(name, metadata=None, session_id=None, request_id=None):
        seen.append(
            {
                "name": name,
                "request_id": request_id,
                "context_request_id": get_request_id(),
                "context_session_id": get_session_id(),
            }
        )
        yield None

    monkeypatch.setattr(main, "trace", recording_trace)
    return seen


def test_health_reports_ok_with_generated_request_id(traced) -> None:
    response = TestClient(main.app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    request_id = response.headers["X-Request-Id"]
    assert traced == [
        {
            "name": "http.health_check",
            "request_id": request_id,
            "context_request_id": request_id,
            "context_session_id": None,
        }
    ]


def test_request_and_session_headers_are_bound_to_context(traced) -> None:
    response = TestClient(main.app).get(
        "/health",
        headers={"X-Request-Id": "req-week-plan", "X-Session-Id": "session_week"},
    )

    assert response.headers["X-Request-Id"] == "req-week-plan"
    assert traced[0]["context_request_id"] == "req-week-plan"
    assert traced[0]["context_session_id"] == "session_week"


def test_context_is_reset_after_the_request(traced) -> None:
    TestClient(main.app).get("/health", headers={"X-Session-Id": "session_week"})

    assert get_request_id() is None
    assert get_session_id() is None
