"""Regression tests for application route registration."""
from fastapi.routing import APIRoute

from app.main import app


def _routes(path: str, method: str) -> list[APIRoute]:
    return [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and route.path == path and method in route.methods
    ]


def test_chat_route_registered_once() -> None:
    assert len(_routes("/ai/chat", "POST")) == 1


def test_task_and_progress_routes_registered() -> None:
    for path, method in [
        ("/tasks", "GET"),
        ("/tasks", "POST"),
        ("/tasks/{task_id}", "PATCH"),
        ("/tasks/{task_id}", "DELETE"),
        ("/ai/chat/{session_id}/history", "GET"),
        ("/ai/chat/{session_id}", "DELETE"),
        ("/ai/thinking-progress", "GET"),
        ("/ai/thinking-progress", "POST"),
    ]:
        assert _routes(path, method), f"{method} {path} missing"
