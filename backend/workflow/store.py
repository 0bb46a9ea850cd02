"""Template source and execution store.

Both are collaborator contracts of the engine. Two implementations each:
an in-memory one (tests, embedding) and a SQLAlchemy one that keeps the
serialized document in a JSON column.

Stores hand out fresh objects: mutating a returned execution has no
effect until ``save`` is awaited.
"""

import copy
from abc import ABC, abstractmethod
from datetime import date, datetime
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import ExecutionStatus
from core.exceptions import NotFoundError
from db.models import WorkflowExecutionRecord, WorkflowTemplateRecord
from workflow.execution import WorkflowExecution
from workflow.template import WorkflowTemplate

logger = structlog.get_logger(__name__)


def safe_serialize(obj, depth: int = 0):
    """Recursively ensure all values are JSON-serializable."""
    if depth > 20:
        return str(obj)
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): safe_serialize(v, depth + 1) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [safe_serialize(v, depth + 1) for v in obj]
    return str(obj)


# ─── Contracts ─────────────────────────────────────────────────

class TemplateSource(ABC):
    """Read access to workflow templates (plus save for the service layer)."""

    @abstractmethod
    async def get(self, template_id: str) -> Optional[WorkflowTemplate]:
        ...

    @abstractmethod
    async def save(self, template: WorkflowTemplate) -> WorkflowTemplate:
        ...

    async def get_or_raise(self, template_id: str) -> WorkflowTemplate:
        template = await self.get(template_id)
        if template is None:
            raise NotFoundError(f"Workflow template {template_id} not found")
        return template


class ExecutionStore(ABC):
    """Durable record of workflow executions."""

    @abstractmethod
    async def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        ...

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        ...

    @abstractmethod
    async def save(self, execution: WorkflowExecution) -> None:
        ...

    @abstractmethod
    async def list_all(self, status: Optional[ExecutionStatus] = None) -> list[WorkflowExecution]:
        ...

    async def get_or_raise(self, execution_id: str) -> WorkflowExecution:
        execution = await self.get(execution_id)
        if execution is None:
            raise NotFoundError(f"Workflow execution {execution_id} not found")
        return execution


# ─── In-memory ─────────────────────────────────────────────────

class InMemoryTemplateSource(TemplateSource):
    def __init__(self, templates: Optional[list[WorkflowTemplate]] = None):
        self._templates: dict[str, WorkflowTemplate] = {}
        for template in templates or []:
            self._templates[template.id] = template.model_copy(deep=True)

    async def get(self, template_id: str) -> Optional[WorkflowTemplate]:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def save(self, template: WorkflowTemplate) -> WorkflowTemplate:
        self._templates[template.id] = template.model_copy(deep=True)
        return template


class InMemoryExecutionStore(ExecutionStore):
    """Keeps serialized documents, so callers never share live objects."""

    def __init__(self):
        self._documents: dict[str, dict] = {}
        self.save_count = 0

    async def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        self._documents[execution.id] = safe_serialize(execution.to_dict())
        return execution

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        document = self._documents.get(execution_id)
        if document is None:
            return None
        return WorkflowExecution.from_dict(copy.deepcopy(document))

    async def save(self, execution: WorkflowExecution) -> None:
        if execution.id not in self._documents:
            raise NotFoundError(f"Workflow execution {execution.id} not found")
        self._documents[execution.id] = safe_serialize(execution.to_dict())
        self.save_count += 1

    async def list_all(self, status: Optional[ExecutionStatus] = None) -> list[WorkflowExecution]:
        return [
            WorkflowExecution.from_dict(copy.deepcopy(doc))
            for doc in self._documents.values()
            if status is None or doc["status"] == ExecutionStatus(status).value
        ]


# ─── SQLAlchemy ────────────────────────────────────────────────

class SqlTemplateSource(TemplateSource):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, template_id: str) -> Optional[WorkflowTemplate]:
        async with self._session_factory() as session:
            record = await session.get(WorkflowTemplateRecord, template_id)
            if record is None:
                return None
            return WorkflowTemplate.model_validate(record.definition)

    async def save(self, template: WorkflowTemplate) -> WorkflowTemplate:
        definition = template.model_dump(mode="json")
        async with self._session_factory() as session:
            record = await session.get(WorkflowTemplateRecord, template.id)
            if record is None:
                record = WorkflowTemplateRecord(id=template.id, name=template.name, definition=definition)
                session.add(record)
            record.name = template.name
            record.version = template.version
            record.created_by = template.created_by
            record.definition = definition
            await session.commit()
        return template


class SqlExecutionStore(ExecutionStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        async with self._session_factory() as session:
            session.add(
                WorkflowExecutionRecord(
                    id=execution.id,
                    template_id=execution.template_id,
                    status=execution.status.value,
                    current_step=execution.current_step,
                    document=safe_serialize(execution.to_dict()),
                )
            )
            await session.commit()
        logger.debug("Execution created", execution_id=execution.id)
        return execution

    async def get(self, execution_id: str) -> Optional[WorkflowExecution]:
        async with self._session_factory() as session:
            record = await session.get(WorkflowExecutionRecord, execution_id)
            if record is None:
                return None
            return WorkflowExecution.from_dict(copy.deepcopy(record.document))

    async def save(self, execution: WorkflowExecution) -> None:
        async with self._session_factory() as session:
            record = await session.get(WorkflowExecutionRecord, execution.id)
            if record is None:
                raise NotFoundError(f"Workflow execution {execution.id} not found")
            record.status = execution.status.value
            record.current_step = execution.current_step
            # Reassign so the JSON column is flagged dirty
            record.document = safe_serialize(execution.to_dict())
            await session.commit()

    async def list_all(self, status: Optional[ExecutionStatus] = None) -> list[WorkflowExecution]:
        query = select(WorkflowExecutionRecord).order_by(WorkflowExecutionRecord.created_at)
        if status is not None:
            query = query.where(WorkflowExecutionRecord.status == ExecutionStatus(status).value)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [WorkflowExecution.from_dict(copy.deepcopy(r.document)) for r in result.scalars()]
