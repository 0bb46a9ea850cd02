"""Task creation node.

Creates a task in the task store from substituted config values, then
fires the ``task_created`` event so event rules can react.
"""

from datetime import timedelta
from typing import Optional

import structlog
from pydantic import AliasChoices, Field

from core.exceptions import NodeExecutionError
from core.utils import utc_now
from nodes.base_node import BaseNode, NodeConfig, NodeContext, NodeResult
from nodes.registry import register_node

logger = structlog.get_logger(__name__)

TASK_CREATED_EVENT = "task_created"


class TaskConfig(NodeConfig):
    title: str = ""
    description: Optional[str] = None
    project: Optional[str] = None
    priority: str = "medium"
    assigned_to: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("assigned_to", "assignedTo", "assignee"),
    )
    due_date: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("due_date", "dueDate"),
    )
    tags: list[str] = Field(default_factory=list)


@register_node("task")
class TaskNode(BaseNode):
    """Create a task.

    Config:
        title: Task title, may contain {{tokens}} (required)
        description, project: Optional, may contain {{tokens}}
        priority: low | medium | high (default: medium)
        assigned_to: User id (default: the user who triggered the run)
        due_date: ISO date, may contain {{tokens}} (default: now + 7 days)
        tags: List of tags
    """

    display_name = "Create Task"
    description = "Create a task in the task store"
    config_model = TaskConfig

    async def execute(self, ctx: NodeContext, config: TaskConfig) -> NodeResult:
        task_store = ctx.services.task_store
        if task_store is None:
            raise NodeExecutionError(
                "No task store configured",
                node_id=ctx.node.id,
                node_type=self.node_type,
            )

        title = ctx.render(config.title)
        if not title:
            raise NodeExecutionError(
                "Failed to create task: title is required",
                node_id=ctx.node.id,
                node_type=self.node_type,
            )

        assignee = config.assigned_to or ctx.triggered_by
        due_date = ctx.render(config.due_date) if config.due_date else self._default_due_date(ctx)
        description = ctx.render(config.description)
        project = ctx.render(config.project)

        task_id = await task_store.create_task(
            title=title,
            description=description,
            project=project,
            assignee=assignee,
            due_date=due_date,
            priority=config.priority,
            tags=config.tags,
            assigned_by=ctx.triggered_by,
        )
        logger.info("Task created", task_id=task_id, execution_id=ctx.execution.id, node_id=ctx.node.id)

        await self._emit_task_created(ctx, {
            "task_id": task_id,
            "title": title,
            "project": project,
            "assigned_to": assignee,
            "priority": config.priority,
            "due_date": due_date,
            "tags": list(config.tags),
            "workflow_execution_id": ctx.execution.id,
        })

        return NodeResult(output={
            "task_id": task_id,
            "title": title,
            "assigned_to": assignee,
            "due_date": due_date,
            "message": "Task created successfully",
        })

    @staticmethod
    async def _emit_task_created(ctx: NodeContext, payload: dict) -> None:
        # The task already exists; a failing event rule must not re-run this node
        event_bus = ctx.services.event_bus
        if event_bus is None:
            return
        try:
            await event_bus.fire(TASK_CREATED_EVENT, payload)
        except Exception as e:
            logger.warning(
                "Task event dispatch failed",
                task_id=payload["task_id"],
                execution_id=ctx.execution.id,
                error=str(e),
            )

    @staticmethod
    def _default_due_date(ctx: NodeContext) -> str:
        settings = ctx.services.settings
        days = settings.DEFAULT_TASK_DUE_DAYS if settings else 7
        return (utc_now() + timedelta(days=days)).isoformat()
