"""Task store collaborator used by ``task`` nodes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import uuid4

from core.utils import utc_now


@dataclass
class TaskRecord:
    id: str
    title: str
    description: Optional[str] = None
    project: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    due_date: Optional[str] = None
    priority: str = "medium"
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)


class TaskStore(ABC):
    """create-task(title, description, project, assignee, due date) -> task id"""

    @abstractmethod
    async def create_task(
        self,
        title: str,
        description: Optional[str] = None,
        project: Optional[str] = None,
        assignee: Optional[str] = None,
        due_date: Optional[str] = None,
        priority: str = "medium",
        tags: Optional[list[str]] = None,
        assigned_by: Optional[str] = None,
    ) -> str:
        ...


class InMemoryTaskStore(TaskStore):
    """Task store that keeps created tasks in a dict."""

    def __init__(self):
        self.tasks: dict[str, TaskRecord] = {}

    async def create_task(
        self,
        title: str,
        description: Optional[str] = None,
        project: Optional[str] = None,
        assignee: Optional[str] = None,
        due_date: Optional[str] = None,
        priority: str = "medium",
        tags: Optional[list[str]] = None,
        assigned_by: Optional[str] = None,
    ) -> str:
        if not title:
            raise ValueError("Task title is required")
        task_id = str(uuid4())
        self.tasks[task_id] = TaskRecord(
            id=task_id,
            title=title,
            description=description,
            project=project,
            assigned_to=assignee,
            assigned_by=assigned_by,
            due_date=due_date,
            priority=priority,
            tags=list(tags or []),
        )
        return task_id
