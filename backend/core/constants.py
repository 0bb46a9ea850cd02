"""Constants and enums for the workflow execution engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class StepStatus(str, Enum):
    """Status of a single execution step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING_APPROVAL = "waiting_approval"


class NodeType(str, Enum):
    """Node types a workflow template may contain."""

    START = "start"
    TASK = "task"
    CONDITION = "condition"
    PARALLEL = "parallel"
    MERGE = "merge"
    END = "end"
    API_CALL = "api_call"
    EMAIL = "email"
    DELAY = "delay"
    APPROVAL = "approval"


class TriggerType(str, Enum):
    """Workflow execution trigger type."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    API = "api"
    EVENT = "event"


class LogLevel(str, Enum):
    """Log level for execution logs."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ApprovalDecision(str, Enum):
    """Decision recorded on an approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VariableType(str, Enum):
    """Declared type of a template variable."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"


class OnErrorPolicy(str, Enum):
    """Template-declared error policy (not enforced by the executor)."""

    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"


class NotificationType(str, Enum):
    """Notification types emitted by the executor."""

    WORKFLOW_NOTIFICATION = "workflow_notification"
    WORKFLOW_APPROVAL = "workflow_approval"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
