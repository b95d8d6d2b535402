"""Dashboard client exposing one coroutine per backend operation."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .config import FlowdeckConfig, load_config
from .contracts import (
    WORKER_COMMANDS,
    EventLog,
    GlobalWorkflowStats,
    OutboxEvent,
    OutboxStats,
    ProcessStatus,
    QueueInfo,
    Snapshot,
    WorkerCommand,
    WorkflowDef,
    WorkflowInstance,
    WorkflowStepLog,
)
from .errors import ApiError
from .gateway import ApiGateway
from .state import CallResult, OperationState, _NoResult
from .stream import EventCallback, EventStream, EventStreamHandle, open_event_stream

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LIMIT = 50


def _segment(value: Any) -> str:
    """Encode an opaque identifier as a single path segment."""
    return quote(str(value), safe="")


def _unwrap(model: Type[Snapshot], data: Any, key: str, *, many: bool = False) -> Any:
    """Load the ``key`` field of a response envelope as ``model`` records.

    A body that does not match the expected shape is reported as
    :class:`ApiError`, like any other bad response.
    """
    try:
        payload = data[key]
        if many:
            return [model.model_validate(item) for item in payload]
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.warning(f"Unexpected {model.__name__} data in '{key}': {exc}")
        raise ApiError(
            f"Invalid {model.__name__} in response: {exc.error_count()} invalid field(s)",
            body=data,
        ) from exc
    except (KeyError, TypeError) as exc:
        raise ApiError(f"Response is missing '{key}'", body=data) from exc


class DashboardClient:
    """Typed access to the monitoring dashboard backend.

    Every endpoint coroutine performs exactly one request and lets
    :class:`~flowdeck.errors.ApiError` propagate. Wrap calls in
    :meth:`with_loading` to record failures in the shared :attr:`error` slot
    instead.
    """

    def __init__(
        self,
        gateway: ApiGateway,
        *,
        state: Optional[OperationState] = None,
        stream_path: str = "/api/events/live",
        stream_read_timeout: Optional[float] = None,
    ) -> None:
        self.gateway = gateway
        self.state = state or OperationState()
        self.stream_path = stream_path
        self.stream_read_timeout = stream_read_timeout

    @classmethod
    def from_config(
        cls,
        config: Optional[FlowdeckConfig] = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "DashboardClient":
        """Build a client from loaded configuration."""
        config = config or load_config()
        gateway = ApiGateway.from_config(config, http_client=http_client)
        return cls(
            gateway,
            stream_path=config.stream.path,
            stream_read_timeout=config.stream.read_timeout,
        )

    async def aclose(self) -> None:
        await self.gateway.aclose()

    async def __aenter__(self) -> "DashboardClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -- shared state ------------------------------------------------------

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    async def with_loading(
        self, fn: Callable[[], Awaitable[T]]
    ) -> Union[T, _NoResult]:
        return await self.state.with_loading(fn)

    async def track(self, fn: Callable[[], Awaitable[T]]) -> CallResult[T]:
        return await self.state.track(fn)

    # -- status ------------------------------------------------------------

    async def get_status(self) -> List[ProcessStatus]:
        data = await self.gateway.fetch("/api/status")
        return _unwrap(ProcessStatus, data, "processes", many=True)

    # -- outbox ------------------------------------------------------------

    async def get_outbox(
        self, status: Optional[str] = None, limit: int = DEFAULT_LIMIT
    ) -> List[OutboxEvent]:
        params: Dict[str, Any] = {}
        if status:
            params["status"] = status
        params["limit"] = str(limit)
        data = await self.gateway.fetch("/api/outbox", params=params)
        return _unwrap(OutboxEvent, data, "events", many=True)

    async def get_outbox_stats(self) -> OutboxStats:
        data = await self.gateway.fetch("/api/outbox/stats")
        return _unwrap(OutboxStats, data, "stats")

    async def retry_event(self, event_id: str) -> None:
        await self.gateway.fetch(
            f"/api/outbox/{_segment(event_id)}/retry", method="POST"
        )

    # -- events ------------------------------------------------------------

    async def get_events(
        self, limit: int = DEFAULT_LIMIT, after_id: Optional[int] = None
    ) -> List[EventLog]:
        """Fetch a page of the event log, optionally only entries after ``after_id``."""
        params: Dict[str, Any] = {"limit": str(limit)}
        if after_id is not None:
            params["after_id"] = str(after_id)
        data = await self.gateway.fetch("/api/events", params=params)
        return _unwrap(EventLog, data, "events", many=True)

    def event_stream(self) -> EventStream:
        """Return a not yet started async iterator over live events."""
        return EventStream(
            self.gateway.http_client,
            self.gateway.url(self.stream_path),
            read_timeout=self.stream_read_timeout,
        )

    def connect_event_stream(self, on_event: EventCallback) -> EventStreamHandle:
        """Open the live stream and feed each event to ``on_event``.

        Must be called from a running event loop. The caller owns the returned
        handle and closes it with :meth:`EventStreamHandle.close`. A lost
        connection sets :attr:`error` and is not retried.
        """
        return open_event_stream(
            self.gateway.http_client,
            self.gateway.url(self.stream_path),
            on_event,
            self.state,
            read_timeout=self.stream_read_timeout,
        )

    # -- queues ------------------------------------------------------------

    async def get_queues(self) -> List[QueueInfo]:
        data = await self.gateway.fetch("/api/queues")
        return _unwrap(QueueInfo, data, "queues", many=True)

    async def purge_queue(self, name: str) -> None:
        await self.gateway.fetch(f"/api/queues/{_segment(name)}/purge", method="POST")

    # -- workers -----------------------------------------------------------

    async def worker_command(self, name: str, command: WorkerCommand) -> None:
        """Send a lifecycle command (start, stop or restart) to a worker."""
        if command not in WORKER_COMMANDS:
            raise ValueError(
                f"Unsupported worker command: {command!r}. "
                f"Expected one of {', '.join(WORKER_COMMANDS)}"
            )
        logger.info(f"Sending {command} to worker {name}")
        await self.gateway.fetch(
            f"/api/workers/{_segment(name)}/{command}", method="POST"
        )

    async def start_worker(self, name: str) -> None:
        await self.worker_command(name, "start")

    async def stop_worker(self, name: str) -> None:
        await self.worker_command(name, "stop")

    async def restart_worker(self, name: str) -> None:
        await self.worker_command(name, "restart")

    # -- workflows ---------------------------------------------------------

    async def get_workflows(self) -> List[WorkflowDef]:
        data = await self.gateway.fetch("/api/workflows")
        return _unwrap(WorkflowDef, data, "workflows", many=True)

    async def get_workflow(self, name: str) -> WorkflowDef:
        """Fetch one workflow template including its step graph."""
        data = await self.gateway.fetch(f"/api/workflows/{_segment(name)}")
        return _unwrap(WorkflowDef, data, "workflow")

    async def get_workflow_instances(
        self, name: str, status: Optional[str] = None, limit: int = DEFAULT_LIMIT
    ) -> List[WorkflowInstance]:
        params: Dict[str, Any] = {"limit": str(limit)}
        if status:
            params["status"] = status
        data = await self.gateway.fetch(
            f"/api/workflows/{_segment(name)}/instances", params=params
        )
        return _unwrap(WorkflowInstance, data, "instances", many=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        data = await self.gateway.fetch(f"/api/instances/{_segment(instance_id)}")
        return _unwrap(WorkflowInstance, data, "instance")

    async def get_instance_steps(self, instance_id: str) -> List[WorkflowStepLog]:
        data = await self.gateway.fetch(
            f"/api/instances/{_segment(instance_id)}/steps"
        )
        return _unwrap(WorkflowStepLog, data, "steps", many=True)

    async def retry_instance(
        self, instance_id: str, from_step: Optional[str] = None
    ) -> None:
        """Retry a workflow instance, resuming from ``from_step`` when given."""
        logger.info(
            f"Retrying instance {instance_id}"
            + (f" from step {from_step}" if from_step else "")
        )
        await self.gateway.fetch(
            f"/api/instances/{_segment(instance_id)}/retry",
            method="POST",
            json={"from_step": from_step},
        )

    async def get_workflow_stats(self) -> GlobalWorkflowStats:
        data = await self.gateway.fetch("/api/workflows/stats")
        return _unwrap(GlobalWorkflowStats, data, "stats")
