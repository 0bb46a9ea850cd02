"""Runtime state of one workflow execution.

A ``WorkflowExecution`` is the persisted document the engine drives: one
``ExecutionStep`` per template node, the mutable ``variables`` / ``context``
maps the expression engine reads, derived progress counters and
append-only logs and errors.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from core.constants import (
    TERMINAL_STATUSES,
    ExecutionStatus,
    LogLevel,
    StepStatus,
    TriggerType,
)
from core.utils import generate_execution_id, isoformat, parse_datetime, utc_now


@dataclass
class LogEntry:
    level: str
    message: str
    node_id: Optional[str] = None
    data: Any = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "timestamp": isoformat(self.timestamp),
            "level": self.level,
            "message": self.message,
            "node_id": self.node_id,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        return cls(
            level=data["level"],
            message=data["message"],
            node_id=data.get("node_id"),
            data=data.get("data"),
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
        )


@dataclass
class ErrorEntry:
    """An error recorded against the execution."""

    message: str
    type: str = "Exception"
    node_id: Optional[str] = None
    resolved: bool = False
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_exception(cls, error: BaseException, node_id: Optional[str] = None) -> "ErrorEntry":
        return cls(message=str(error), type=type(error).__name__, node_id=node_id)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "timestamp": isoformat(self.timestamp),
            "error": {"message": self.message, "type": self.type},
            "resolved": self.resolved,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorEntry":
        error = data.get("error") or {}
        return cls(
            message=error.get("message", ""),
            type=error.get("type", "Exception"),
            node_id=data.get("node_id"),
            resolved=data.get("resolved", False),
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
        )


@dataclass
class Approval:
    user_id: Optional[str]
    status: str
    comment: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "status": self.status,
            "comment": self.comment,
            "timestamp": isoformat(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Approval":
        return cls(
            user_id=data.get("user_id"),
            status=data["status"],
            comment=data.get("comment"),
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
        )


@dataclass
class ExecutionStep:
    """Execution-level runtime record of one template node."""

    node_id: str
    node_type: str
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: int = 0
    input: Any = None
    output: Any = None
    error: Optional[dict] = None
    retry_count: int = 0
    logs: list[LogEntry] = field(default_factory=list)
    assigned_to: Optional[str] = None
    approvals: list[Approval] = field(default_factory=list)

    def add_log(self, level: str, message: str, data: Any = None) -> None:
        self.logs.append(LogEntry(level=level, message=message, node_id=self.node_id, data=data))

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "status": self.status.value,
            "started_at": isoformat(self.started_at),
            "ended_at": isoformat(self.ended_at),
            "duration_ms": self.duration_ms,
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "retry_count": self.retry_count,
            "logs": [entry.to_dict() for entry in self.logs],
            "assigned_to": self.assigned_to,
            "approvals": [a.to_dict() for a in self.approvals],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionStep":
        return cls(
            node_id=data["node_id"],
            node_type=data["node_type"],
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            started_at=parse_datetime(data.get("started_at")),
            ended_at=parse_datetime(data.get("ended_at")),
            duration_ms=data.get("duration_ms", 0),
            input=data.get("input"),
            output=data.get("output"),
            error=data.get("error"),
            retry_count=data.get("retry_count", 0),
            logs=[LogEntry.from_dict(e) for e in data.get("logs", [])],
            assigned_to=data.get("assigned_to"),
            approvals=[Approval.from_dict(a) for a in data.get("approvals", [])],
        )


@dataclass
class Progress:
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    percentage: int = 0

    def to_dict(self) -> dict:
        return {
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "percentage": self.percentage,
        }


@dataclass
class WorkflowExecution:
    """One concrete run of a workflow template."""

    id: str
    template_id: str
    template_version: str = "1.0.0"
    name: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    triggered_by: Optional[str] = None
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_data: Any = None
    variables: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)
    steps: list[ExecutionStep] = field(default_factory=list)
    current_step: Optional[str] = None
    progress: Progress = field(default_factory=Progress)
    errors: list[ErrorEntry] = field(default_factory=list)
    logs: list[LogEntry] = field(default_factory=list)
    results: Any = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: int = 0
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_template(
        cls,
        template,
        variables: Optional[dict] = None,
        triggered_by: Optional[str] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
        trigger_data: Any = None,
        context: Optional[dict] = None,
        execution_id: Optional[str] = None,
    ) -> "WorkflowExecution":
        """Create a pending execution with one pending step per template node."""
        execution = cls(
            id=execution_id or generate_execution_id(),
            template_id=template.id,
            template_version=template.version,
            name=template.name,
            triggered_by=triggered_by,
            trigger_type=trigger_type,
            trigger_data=trigger_data,
            variables=dict(variables or {}),
            context=dict(context or {}),
            steps=[ExecutionStep(node_id=n.id, node_type=n.type) for n in template.nodes],
        )
        execution.update_progress()
        return execution

    # ─── Status helpers ─────────────────────────────────────────

    def can_execute(self) -> bool:
        return self.status in (ExecutionStatus.PENDING, ExecutionStatus.PAUSED)

    def is_completed(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    # ─── Steps, progress, logs ──────────────────────────────────

    def get_step(self, node_id: str) -> Optional[ExecutionStep]:
        return next((s for s in self.steps if s.node_id == node_id), None)

    def update_progress(self) -> Progress:
        """Recompute progress counters from step statuses."""
        total = len(self.steps)
        completed = sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)
        failed = sum(1 for s in self.steps if s.status == StepStatus.FAILED)
        self.progress = Progress(
            total_steps=total,
            completed_steps=completed,
            failed_steps=failed,
            percentage=round(100 * completed / total) if total else 0,
        )
        return self.progress

    def update_step_status(
        self,
        node_id: str,
        status: StepStatus,
        output: Any = None,
        error: Optional[BaseException] = None,
    ) -> Optional[ExecutionStep]:
        """Move a step to a final status, stamping end time and duration."""
        step = self.get_step(node_id)
        if step is None:
            return None
        step.status = status
        step.ended_at = utc_now()
        step.duration_ms = (
            int((step.ended_at - step.started_at).total_seconds() * 1000)
            if step.started_at else 0
        )
        if output is not None:
            step.output = output
        if error is not None:
            step.error = {"message": str(error), "type": type(error).__name__}
        self.update_progress()
        return step

    def add_log(
        self,
        level: LogLevel | str,
        message: str,
        node_id: Optional[str] = None,
        data: Any = None,
    ) -> LogEntry:
        entry = LogEntry(
            level=level.value if isinstance(level, LogLevel) else level,
            message=message,
            node_id=node_id,
            data=data,
        )
        self.logs.append(entry)
        return entry

    def add_error(self, error: BaseException, node_id: Optional[str] = None) -> ErrorEntry:
        entry = ErrorEntry.from_exception(error, node_id=node_id)
        self.errors.append(entry)
        return entry

    # ─── Serialization ──────────────────────────────────────────

    def to_dict(self) -> dict:
        """Serialize to the persisted document shape."""
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "name": self.name,
            "status": self.status.value,
            "triggered_by": self.triggered_by,
            "trigger_type": self.trigger_type.value,
            "trigger_data": self.trigger_data,
            "variables": self.variables,
            "context": self.context,
            "steps": [s.to_dict() for s in self.steps],
            "current_step": self.current_step,
            "progress": self.progress.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "logs": [entry.to_dict() for entry in self.logs],
            "results": self.results,
            "started_at": isoformat(self.started_at),
            "ended_at": isoformat(self.ended_at),
            "duration_ms": self.duration_ms,
            "created_at": isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowExecution":
        """Restore an execution from its persisted document."""
        execution = cls(
            id=data["id"],
            template_id=data["template_id"],
            template_version=data.get("template_version", "1.0.0"),
            name=data.get("name", ""),
            status=ExecutionStatus(data.get("status", ExecutionStatus.PENDING.value)),
            triggered_by=data.get("triggered_by"),
            trigger_type=TriggerType(data.get("trigger_type", TriggerType.MANUAL.value)),
            trigger_data=data.get("trigger_data"),
            variables=data.get("variables") or {},
            context=data.get("context") or {},
            steps=[ExecutionStep.from_dict(s) for s in data.get("steps", [])],
            current_step=data.get("current_step"),
            errors=[ErrorEntry.from_dict(e) for e in data.get("errors", [])],
            logs=[LogEntry.from_dict(e) for e in data.get("logs", [])],
            results=data.get("results"),
            started_at=parse_datetime(data.get("started_at")),
            ended_at=parse_datetime(data.get("ended_at")),
            duration_ms=data.get("duration_ms", 0),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )
        execution.update_progress()
        return execution
