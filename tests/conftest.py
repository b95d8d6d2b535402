"""Shared fixtures: a mocked dashboard backend and sample records."""

from typing import Callable

import httpx
import pytest

from flowdeck import ApiGateway, DashboardClient

BASE_URL = "http://dashboard.test"


@pytest.fixture
def make_client() -> Callable[..., DashboardClient]:
    """Build a client whose requests are answered by ``handler``."""

    def _make(handler) -> DashboardClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return DashboardClient(ApiGateway(BASE_URL, http_client=http_client))

    return _make


@pytest.fixture
def event_log_record() -> dict:
    return {
        "id": 1,
        "event_id": "evt-1",
        "event_type": "order.created",
        "direction": "outbound",
        "process_name": "order-worker",
        "source": "orders",
        "payload_summary": "order 42",
        "created_at": "2024-01-01T10:00:00Z",
    }


@pytest.fixture
def outbox_record() -> dict:
    return {
        "event_id": "evt-9",
        "event_type": "order.created",
        "source": "orders",
        "status": "failed",
        "attempts": 3,
        "last_error": "broker unavailable",
        "created_at": "2024-01-01T10:00:00Z",
        "published_at": None,
    }


@pytest.fixture
def step_log_record() -> dict:
    return {
        "id": 7,
        "step_name": "step_two",
        "step_type": "queue",
        "status": "failed",
        "result": None,
        "attempt": 2,
        "max_retries": 3,
        "input_data": {"order": 42},
        "output_data": None,
        "error_message": "timeout",
        "next_step": None,
        "started_at": "2024-01-01T10:00:00Z",
        "completed_at": "2024-01-01T10:00:05Z",
        "duration_ms": 5000,
        "queue_name": "orders",
        "waiting_for": None,
    }


@pytest.fixture
def instance_record() -> dict:
    return {
        "id": "abc-123",
        "workflow_name": "order_flow",
        "status": "failed",
        "current_step": "step_two",
        "input_params": {"order": 42},
        "error_message": "timeout",
        "started_at": "2024-01-01T10:00:00Z",
        "completed_at": None,
        "updated_at": "2024-01-01T10:00:05Z",
    }


@pytest.fixture
def workflow_record() -> dict:
    return {
        "name": "order_flow",
        "description": "Process incoming orders",
        "is_active": True,
        "stats": {"running": 2, "completed": 10, "failed": 1, "paused": 0},
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
    }
