"""Workflow Execution Engine — run controller.

Owns the lifecycle of executions: start, pause, resume, cancel, approval
responses and failure. The graph walking itself is delegated to
``GraphWalker``.

State machine:
    pending → running → completed | failed | cancelled
    running ↔ paused

Concurrency:
- ``InFlightRegistry`` caps how many executions walk at once
  (``MAX_CONCURRENT_WORKFLOWS``). A start beyond the cap returns
  ``{"status": "queued"}``; nothing dequeues it automatically.
- Every control operation works on the same live ``WorkflowExecution``
  object the walker mutates, guarded by the walker's per-execution lock.
  The object stays cached while a walk or a retry is active.
- Cancellation is cooperative: running handlers finish, later node
  entries are ignored.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog

from app.config import Settings, get_settings
from core.constants import ApprovalDecision, ExecutionStatus, LogLevel, StepStatus
from core.exceptions import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowEngineError,
)
from core.logging_config import bind_execution
from core.utils import duration_ms, isoformat, utc_now
from nodes.base_node import NodeServices
from nodes.registry import NodeRegistry, get_node_registry
from notifications.manager import send_safely
from workflow.execution import Approval, WorkflowExecution
from workflow.retry_strategies import RetryStrategy
from workflow.scheduler import InFlightRegistry, RetryScheduler
from workflow.store import ExecutionStore, TemplateSource
from workflow.template import WorkflowTemplate
from workflow.walker import GraphWalker

logger = structlog.get_logger(__name__)


class WorkflowEngine:
    """Main workflow execution controller.

    Args:
        templates: Source of workflow templates.
        store: Execution store; every transition is saved before the next.
        task_store, notifier, event_bus, http_client: Collaborators for
            node handlers. Any may be None; handlers that need a missing
            one fail.
        settings: Defaults to ``get_settings()``.
        retry_strategy: Defaults to ``Settings.RETRY_DELAYS``.
        registry: Node handler registry; defaults to the built-ins.
    """

    def __init__(
        self,
        templates: TemplateSource,
        store: ExecutionStore,
        task_store=None,
        notifier=None,
        event_bus=None,
        http_client=None,
        settings: Optional[Settings] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        registry: Optional[NodeRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.templates = templates
        self.store = store
        self.notifier = notifier
        self.in_flight = InFlightRegistry(self.settings.MAX_CONCURRENT_WORKFLOWS)
        self.scheduler = RetryScheduler()
        self.retry_strategy = retry_strategy or RetryStrategy.from_settings(self.settings)
        self.walker = GraphWalker(
            store=store,
            registry=registry or get_node_registry(),
            services=NodeServices(
                task_store=task_store,
                notifier=notifier,
                event_bus=event_bus,
                http_client=http_client,
                settings=self.settings,
            ),
            retry_strategy=self.retry_strategy,
            scheduler=self.scheduler,
            on_failure=self.fail_execution,
            reenter=self._retry_node,
        )
        self._live: dict[str, WorkflowExecution] = {}
        self._walks: dict[str, int] = {}

    # ─── Live objects ──────────────────────────────────────────

    async def _load(self, execution_id: str) -> WorkflowExecution:
        execution = self._live.get(execution_id)
        if execution is None:
            execution = await self.store.get_or_raise(execution_id)
            self._live[execution_id] = execution
        return execution

    def _evict_if_idle(self, execution_id: str) -> None:
        """Drop the cached execution once no walk or retry references it."""
        if self._walks.get(execution_id):
            return
        current = asyncio.current_task()
        if any(h.task is not current for h in self.scheduler.pending(execution_id)):
            return
        if self._live.pop(execution_id, None) is not None:
            self.walker.forget(execution_id)

    @asynccontextmanager
    async def _walking(self, execution_id: str):
        """Track an active walk; the last one out releases the in-flight slot."""
        self._walks[execution_id] = self._walks.get(execution_id, 0) + 1
        try:
            with bind_execution(execution_id):
                yield
        finally:
            self._walks[execution_id] -= 1
            if not self._walks[execution_id]:
                del self._walks[execution_id]
                await self.in_flight.release(execution_id)
            self._evict_if_idle(execution_id)

    async def _template_for(self, execution: WorkflowExecution) -> Optional[WorkflowTemplate]:
        return await self.templates.get(execution.template_id)

    # ─── Control operations ────────────────────────────────────

    async def start(self, execution_id: str) -> dict[str, Any]:
        """Start (or restart from the start node) a pending or paused execution.

        Raises:
            NotFoundError: unknown execution id
            InvalidStateError: execution is not pending or paused
        """
        try:
            execution = await self._load(execution_id)
            async with self.walker.lock_for(execution_id):
                if not execution.can_execute():
                    raise InvalidStateError(
                        f"Workflow execution {execution_id} cannot be executed "
                        f"(status: {execution.status.value})"
                    )

                if not await self.in_flight.try_acquire(execution_id):
                    execution.add_log(LogLevel.WARN, "Execution queued due to concurrent execution limit")
                    await self.store.save(execution)
                    logger.warning(
                        "Execution queued",
                        execution_id=execution_id,
                        in_flight=len(self.in_flight),
                        capacity=self.in_flight.capacity,
                    )
                    return {
                        "status": "queued",
                        "execution_id": execution_id,
                        "message": "Execution queued due to system load",
                    }

                execution.status = ExecutionStatus.RUNNING
                execution.started_at = utc_now()
                execution.ended_at = None
                execution.add_log(LogLevel.INFO, "Workflow execution started")
                await self.store.save(execution)

            logger.info("Workflow execution started", execution_id=execution_id)
            async with self._walking(execution_id):
                await self._walk(execution)
            return {"status": "started", "execution_id": execution_id}
        finally:
            self._evict_if_idle(execution_id)

    async def _walk(self, execution: WorkflowExecution) -> None:
        try:
            template = await self._template_for(execution)
            start_node = template.start_node() if template else None
            if start_node is None:
                raise WorkflowEngineError("No start node found in workflow template")
            await self.walker.process_node(execution, template, start_node.id)
        except Exception as e:
            logger.exception("Workflow walk failed", execution_id=execution.id)
            await self.fail_execution(execution, e)

    async def _retry_node(self, execution: WorkflowExecution, template: WorkflowTemplate, node_id: str) -> None:
        async with self._walking(execution.id):
            await self.walker.process_node(execution, template, node_id)

    async def pause(self, execution_id: str) -> dict[str, Any]:
        """Pause a running execution and drop its pending retries."""
        try:
            execution = await self._load(execution_id)
            async with self.walker.lock_for(execution_id):
                if execution.status != ExecutionStatus.RUNNING:
                    raise InvalidStateError(
                        f"Workflow execution {execution_id} is not running "
                        f"(status: {execution.status.value})"
                    )
                execution.status = ExecutionStatus.PAUSED
                execution.add_log(LogLevel.INFO, "Workflow execution paused")
                await self.store.save(execution)

            await self.in_flight.release(execution_id)
            self.scheduler.cancel_for(execution_id)
            logger.info("Workflow execution paused", execution_id=execution_id)
            return {"status": ExecutionStatus.PAUSED.value, "execution_id": execution_id}
        finally:
            self._evict_if_idle(execution_id)

    async def resume(self, execution_id: str) -> dict[str, Any]:
        """Resume a paused execution at its current step."""
        try:
            execution = await self._load(execution_id)
            async with self.walker.lock_for(execution_id):
                if execution.status != ExecutionStatus.PAUSED:
                    raise InvalidStateError(
                        f"Workflow execution {execution_id} is not paused "
                        f"(status: {execution.status.value})"
                    )
                execution.status = ExecutionStatus.RUNNING
                execution.add_log(LogLevel.INFO, "Workflow execution resumed")
                await self.store.save(execution)

            await self.in_flight.register(execution_id)
            logger.info("Workflow execution resumed", execution_id=execution_id, current_step=execution.current_step)
            async with self._walking(execution_id):
                if execution.current_step:
                    template = await self._template_for(execution)
                    if template is None:
                        await self.fail_execution(
                            execution,
                            NotFoundError(f"Workflow template {execution.template_id} not found"),
                        )
                    else:
                        await self.walker.process_node(execution, template, execution.current_step)
            return {"status": "resumed", "execution_id": execution_id}
        finally:
            self._evict_if_idle(execution_id)

    async def cancel(self, execution_id: str) -> dict[str, Any]:
        """Cancel any non-terminal execution."""
        try:
            execution = await self._load(execution_id)
            async with self.walker.lock_for(execution_id):
                if execution.is_completed():
                    raise InvalidStateError(
                        f"Workflow execution {execution_id} is already {execution.status.value}"
                    )
                execution.status = ExecutionStatus.CANCELLED
                execution.ended_at = utc_now()
                execution.duration_ms = duration_ms(execution.started_at, execution.ended_at)
                execution.add_log(LogLevel.INFO, "Workflow execution cancelled")
                await self.store.save(execution)

            await self.in_flight.release(execution_id)
            self.scheduler.cancel_for(execution_id)
            logger.info("Workflow execution cancelled", execution_id=execution_id)
            return {"status": ExecutionStatus.CANCELLED.value, "execution_id": execution_id}
        finally:
            self._evict_if_idle(execution_id)

    async def get_status(self, execution_id: str) -> dict[str, Any]:
        """Snapshot of an execution's status and progress."""
        execution = self._live.get(execution_id) or await self.store.get_or_raise(execution_id)
        return {
            "execution_id": execution.id,
            "status": execution.status.value,
            "progress": execution.progress.to_dict(),
            "current_step": execution.current_step,
            "started_at": isoformat(execution.started_at),
            "ended_at": isoformat(execution.ended_at),
            "duration_ms": execution.duration_ms,
            "errors": [e.to_dict() for e in execution.errors],
        }

    async def respond_to_approval(
        self,
        execution_id: str,
        node_id: str,
        approver: Optional[str],
        decision: ApprovalDecision | str,
        comment: Optional[str] = None,
    ) -> dict[str, Any]:
        """Record a decision on a waiting approval step and continue the run.

        The decision lands in ``context`` as ``approvalStatus``,
        ``approvalComment``, ``approvedBy`` and ``<node_id>_approval``, so
        outgoing connections can select on it, e.g.
        ``{{approvalStatus}} == approved``.
        """
        try:
            decision = ApprovalDecision(decision)
        except ValueError:
            raise ValidationError(f"Invalid approval decision: {decision}")
        if decision == ApprovalDecision.PENDING:
            raise ValidationError("Approval decision must be approved or rejected")

        try:
            execution = await self._load(execution_id)
            template = await self.templates.get_or_raise(execution.template_id)
            async with self.walker.lock_for(execution_id):
                step = execution.get_step(node_id)
                if step is None:
                    raise NotFoundError(f"Step {node_id} not found in execution {execution_id}")
                if step.status != StepStatus.WAITING_APPROVAL:
                    raise InvalidStateError(
                        f"Step {node_id} is not waiting for approval (status: {step.status.value})"
                    )
                if not execution.is_running:
                    raise InvalidStateError(
                        f"Workflow execution {execution_id} is not running "
                        f"(status: {execution.status.value})"
                    )

                step.approvals.append(Approval(user_id=approver, status=decision.value, comment=comment))
                execution.context.update({
                    "approvalStatus": decision.value,
                    "approvalComment": comment,
                    "approvedBy": approver,
                    f"{node_id}_approval": {
                        "status": decision.value,
                        "comment": comment,
                        "approved_by": approver,
                    },
                })
                output = {
                    **(step.output or {}),
                    "status": decision.value,
                    "approved_by": approver,
                    "comment": comment,
                }
                execution.update_step_status(node_id, StepStatus.COMPLETED, output=output)
                execution.add_log(
                    LogLevel.INFO,
                    f"Approval {decision.value} by {approver}",
                    node_id,
                    {"comment": comment},
                )
                await self.store.save(execution)

            logger.info(
                "Approval recorded",
                execution_id=execution_id,
                node_id=node_id,
                decision=decision.value,
            )
            async with self._walking(execution_id):
                await self.walker.process_next_nodes(execution, template, node_id, output)
            return {"status": decision.value, "execution_id": execution_id, "node_id": node_id}
        finally:
            self._evict_if_idle(execution_id)

    async def fail_execution(
        self,
        execution: WorkflowExecution,
        error: BaseException,
        node_id: Optional[str] = None,
    ) -> None:
        """Mark an execution failed, record the error and notify (best effort)."""
        async with self.walker.lock_for(execution.id):
            if execution.is_completed():
                logger.debug(
                    "Failure ignored for finished execution",
                    execution_id=execution.id,
                    status=execution.status.value,
                )
                return
            execution.add_error(error, node_id)
            execution.status = ExecutionStatus.FAILED
            execution.ended_at = utc_now()
            execution.duration_ms = duration_ms(execution.started_at, execution.ended_at)
            execution.add_log(LogLevel.ERROR, f"Workflow execution failed: {error}", node_id)
            await self.store.save(execution)

        self.scheduler.cancel_for(execution.id)
        await self.in_flight.release(execution.id)
        logger.error("Workflow execution failed", execution_id=execution.id, node_id=node_id, error=str(error))

        if self.notifier is not None:
            await send_safely(
                self.notifier.notify_workflow_failed,
                recipient=execution.triggered_by,
                workflow_name=execution.name,
                execution_id=execution.id,
                error=str(error),
            )

    # ─── Introspection & shutdown ──────────────────────────────

    def list_running(self) -> list[str]:
        """Ids of executions currently holding an in-flight slot."""
        return self.in_flight.snapshot()

    async def wait_idle(self) -> None:
        """Wait until no deferred retry is pending."""
        await self.scheduler.join()

    async def shutdown(self) -> int:
        """Cancel all pending retries. Returns how many were cancelled."""
        cancelled = self.scheduler.cancel_all()
        logger.info("Workflow engine shut down", cancelled_retries=cancelled)
        return cancelled


# ─── Singleton ─────────────────────────────────────────────────

_engine: Optional[WorkflowEngine] = None


def build_workflow_engine(settings: Settings, session_factory) -> WorkflowEngine:
    """Wire an engine on the SQL stores with the default collaborators."""
    from integrations.http_client import HttpClient
    from integrations.task_store import InMemoryTaskStore
    from notifications.manager import NotificationManager
    from triggers.event_rules import EventRuleBus
    from workflow.store import SqlExecutionStore, SqlTemplateSource

    return WorkflowEngine(
        templates=SqlTemplateSource(session_factory),
        store=SqlExecutionStore(session_factory),
        task_store=InMemoryTaskStore(),
        notifier=NotificationManager.from_settings(settings),
        event_bus=EventRuleBus(),
        http_client=HttpClient(timeout=settings.HTTP_TIMEOUT),
        settings=settings,
    )


def get_workflow_engine() -> WorkflowEngine:
    """Get or create the singleton WorkflowEngine on ``DATABASE_URL``."""
    global _engine
    if _engine is None:
        from db.database import create_db_engine, create_session_factory

        settings = get_settings()
        _engine = build_workflow_engine(
            settings,
            create_session_factory(create_db_engine(settings.DATABASE_URL)),
        )
    return _engine
