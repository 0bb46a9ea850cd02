"""Workflow execution persistence model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import ExecutionStatus
from db.base import BaseModel


class WorkflowExecutionRecord(BaseModel):
    """Stored workflow execution.

    The execution document (steps, logs, errors, progress, variables,
    context) lives in ``document``; ``status`` and ``current_step`` are
    duplicated into columns for querying.

    Attributes:
        id: Execution id (``exec_...``)
        template_id: Template this run was created from
        status: Current execution status
        current_step: Node id last entered
        document: Full serialized WorkflowExecution
    """

    __tablename__ = "workflow_executions"

    template_id: Mapped[str] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        default=ExecutionStatus.PENDING.value, index=True
    )
    current_step: Mapped[Optional[str]] = mapped_column(nullable=True)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
