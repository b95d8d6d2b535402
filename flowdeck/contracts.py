"""Snapshot records returned by the dashboard backend."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WorkerCommand = Literal["start", "stop", "restart"]
WORKER_COMMANDS: tuple[str, ...] = ("start", "stop", "restart")

RETRYABLE_INSTANCE_STATUSES = frozenset({"failed", "cancelled", "paused"})


class Snapshot(BaseModel):
    """Immutable value received from the backend.

    Unknown fields are kept so newer backends do not lose data on the way
    through the client.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)


class ProcessMetadata(Snapshot):
    memory_mb: Optional[float] = None
    pid: Optional[int] = None


class ProcessStatus(Snapshot):
    """Health snapshot of a monitored process."""

    process_name: str
    status: str
    last_heartbeat: str
    errors: int
    events_count: int
    metadata: Optional[ProcessMetadata] = None
    started_at: Optional[str] = None
    stopped_at: Optional[str] = None


class OutboxEvent(Snapshot):
    """One transactional-outbox record. ``published_at`` stays null until delivered."""

    event_id: str
    event_type: str
    source: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    created_at: str
    published_at: Optional[str] = None


class OutboxStats(Snapshot):
    pending: int
    published: int
    failed: int


class QueueInfo(Snapshot):
    """Point-in-time message queue snapshot."""

    name: str
    messages: int
    messages_ready: int
    messages_unacked: int
    consumers: int
    state: str


class EventLog(Snapshot):
    """Entry of the event audit trail, ordered by ``id``."""

    id: int
    event_id: str
    event_type: str
    direction: str
    process_name: str
    source: Optional[str] = None
    payload_summary: Optional[str] = None
    created_at: str


class RetryPolicy(Snapshot):
    max_retries: int
    base_delay_ms: float
    strategy: str


class WorkflowStepDef(Snapshot):
    """One step of a workflow template.

    ``on_ok`` and ``on_nok`` name the follow-up steps and together form the
    workflow's step graph.
    """

    name: str
    type: str
    on_ok: Optional[str] = None
    on_nok: Optional[str] = None
    description: Optional[str] = None
    retry_policy: RetryPolicy
    queue_name: Optional[str] = None
    timeout_ms: Optional[float] = None
    wait_for: Optional[List[str]] = None

    def next_steps(self) -> List[str]:
        """Return the names of the steps reachable from this one."""
        return [name for name in (self.on_ok, self.on_nok) if name]


class WorkflowStats(Snapshot):
    running: int
    completed: int
    failed: int
    paused: int


class WorkflowDef(Snapshot):
    """Workflow template. ``steps`` is only present on detail fetches."""

    name: str
    description: Optional[str] = None
    is_active: bool
    steps: Optional[List[WorkflowStepDef]] = None
    stats: WorkflowStats
    created_at: str
    updated_at: str

    def step(self, name: str) -> Optional[WorkflowStepDef]:
        """Look up a step definition by name."""
        for step in self.steps or []:
            if step.name == name:
                return step
        return None


class WorkflowStepLog(Snapshot):
    """Record of one attempt to execute one workflow step."""

    id: int
    step_name: str
    step_type: str
    status: str
    result: Optional[str] = None
    attempt: int
    max_retries: int
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    next_step: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None
    duration_ms: Optional[float] = None
    queue_name: Optional[str] = None
    waiting_for: Optional[List[str]] = None


class WorkflowInstance(Snapshot):
    """One runtime execution of a workflow template."""

    id: str
    workflow_name: str
    status: str
    current_step: Optional[str] = None
    input_params: Optional[Dict[str, Any]] = None
    context_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None
    updated_at: str
    steps: Optional[List[WorkflowStepLog]] = None

    @property
    def is_retryable(self) -> bool:
        return self.status in RETRYABLE_INSTANCE_STATUSES

    @property
    def is_running(self) -> bool:
        return self.status == "running"


class GlobalCounts(WorkflowStats):
    cancelled: int


class GlobalWorkflowStats(Snapshot):
    """Cross-workflow aggregate. The wire field ``global`` is exposed as ``totals``."""

    totals: GlobalCounts = Field(alias="global")
    last_24h: int
    avg_duration_ms: Optional[float] = None


__all__ = [
    "EventLog",
    "GlobalCounts",
    "GlobalWorkflowStats",
    "OutboxEvent",
    "OutboxStats",
    "ProcessMetadata",
    "ProcessStatus",
    "QueueInfo",
    "RetryPolicy",
    "Snapshot",
    "WORKER_COMMANDS",
    "WorkerCommand",
    "WorkflowDef",
    "WorkflowInstance",
    "WorkflowStats",
    "WorkflowStepDef",
    "WorkflowStepLog",
]
