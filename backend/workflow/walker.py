"""Graph walker — drives one execution through its template graph.

Entering a node marks its step running, dispatches to the registered
handler, records the outcome and follows every outgoing connection whose
condition holds. Fired targets run concurrently. Handler failures go
through the retry path: re-entry is deferred through the RetryScheduler
until the backoff schedule is exhausted, then the execution is failed.

All state changes of one execution happen under that execution's
``asyncio.Lock`` and are persisted before the next transition. Handlers
themselves run outside the lock so a delay on one branch never blocks
another.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from core.constants import ExecutionStatus, LogLevel, NodeType, StepStatus
from core.exceptions import NodeExecutionError
from core.utils import utc_now
from nodes.base_node import NodeContext, NodeServices
from nodes.registry import NodeRegistry
from workflow.execution import WorkflowExecution
from workflow.expressions import evaluate
from workflow.retry_strategies import RetryStrategy
from workflow.scheduler import RetryScheduler
from workflow.store import ExecutionStore
from workflow.template import WorkflowTemplate

logger = structlog.get_logger(__name__)

FailureCallback = Callable[[WorkflowExecution, BaseException, Optional[str]], Awaitable[None]]
ReentryCallback = Callable[[WorkflowExecution, WorkflowTemplate, str], Awaitable[None]]


class GraphWalker:
    """Walks executions node by node.

    Args:
        store: Where every transition is persisted.
        registry: Node type -> handler lookup.
        services: Collaborators handed to handlers.
        retry_strategy: Backoff schedule for failing nodes.
        scheduler: Runs deferred retries.
        on_failure: Called once retries are exhausted (fails the execution).
        reenter: Entry point used by deferred retries; defaults to
            ``process_node``. The controller wraps it to track activity.
    """

    def __init__(
        self,
        store: ExecutionStore,
        registry: NodeRegistry,
        services: NodeServices,
        retry_strategy: RetryStrategy,
        scheduler: RetryScheduler,
        on_failure: Optional[FailureCallback] = None,
        reenter: Optional[ReentryCallback] = None,
    ):
        self._store = store
        self._registry = registry
        self._services = services
        self._retry = retry_strategy
        self._scheduler = scheduler
        self._on_failure = on_failure
        self._reenter = reenter or self.process_node
        self._locks: dict[str, asyncio.Lock] = {}

    # ─── Locks ─────────────────────────────────────────────────

    def lock_for(self, execution_id: str) -> asyncio.Lock:
        lock = self._locks.get(execution_id)
        if lock is None:
            lock = self._locks[execution_id] = asyncio.Lock()
        return lock

    def forget(self, execution_id: str) -> None:
        self._locks.pop(execution_id, None)

    # ─── Walking ───────────────────────────────────────────────

    async def process_node(
        self,
        execution: WorkflowExecution,
        template: WorkflowTemplate,
        node_id: str,
    ) -> None:
        """Enter ``node_id``, run its handler and continue downstream."""
        lock = self.lock_for(execution.id)

        async with lock:
            if not execution.is_running:
                logger.info(
                    "Node entry ignored",
                    execution_id=execution.id,
                    node_id=node_id,
                    status=execution.status.value,
                )
                return

            node = template.get_node(node_id)
            step = execution.get_step(node_id)
            if node is None or step is None:
                missing = NodeExecutionError(
                    f"Node {node_id} not found in template or execution",
                    node_id=node_id,
                )
            else:
                missing = None
                if step.status == StepStatus.RUNNING:
                    # Another branch is already inside this node
                    logger.debug("Node already running", execution_id=execution.id, node_id=node_id)
                    return
                step.status = StepStatus.RUNNING
                step.started_at = utc_now()
                step.ended_at = None
                step.input = dict(node.config)
                execution.current_step = node_id
                execution.update_progress()
                execution.add_log(LogLevel.INFO, f"Processing node: {node.type}", node_id)
                await self._store.save(execution)

        if missing is not None:
            await self._fail(execution, missing, node_id)
            return

        handler = self._registry.create_instance(node.type)
        ctx = NodeContext(execution=execution, node=node, step=step, services=self._services)
        try:
            if handler is None:
                raise NodeExecutionError(
                    f"Unknown node type: {node.type}",
                    node_id=node_id,
                    node_type=node.type,
                )
            result = await handler.run(ctx)
        except Exception as e:
            await self.handle_node_error(execution, template, node_id, e)
            return

        async with lock:
            if execution.status in (ExecutionStatus.CANCELLED, ExecutionStatus.FAILED):
                # Stopped while the handler ran
                logger.info(
                    "Node result ignored",
                    execution_id=execution.id,
                    node_id=node_id,
                    status=execution.status.value,
                )
                return

            if result.waiting:
                step.status = StepStatus.WAITING_APPROVAL
                step.output = result.output
                execution.update_progress()
                execution.add_log(LogLevel.INFO, f"Node waiting: {node.type}", node_id, result.output)
                await self._store.save(execution)
                return

            execution.update_step_status(node_id, StepStatus.COMPLETED, output=result.output)
            execution.add_log(LogLevel.INFO, f"Node completed: {node.type}", node_id, result.output)
            await self._store.save(execution)

        if node.type == NodeType.END.value:
            return
        await self.process_next_nodes(execution, template, node_id, result.output)

    async def process_next_nodes(
        self,
        execution: WorkflowExecution,
        template: WorkflowTemplate,
        node_id: str,
        node_result: Any = None,
    ) -> None:
        """Fire every outgoing connection whose condition holds, concurrently."""
        context = {**execution.context, "nodeResult": node_result}
        targets = []
        for conn in template.outgoing(node_id):
            if evaluate(conn.condition, execution.variables, context):
                targets.append(conn.target)
            else:
                logger.debug(
                    "Connection not taken",
                    execution_id=execution.id,
                    connection_id=conn.id,
                    condition=conn.condition,
                )

        if not targets:
            return
        await asyncio.gather(*(self.process_node(execution, template, t) for t in targets))

    # ─── Failures ──────────────────────────────────────────────

    async def handle_node_error(
        self,
        execution: WorkflowExecution,
        template: WorkflowTemplate,
        node_id: str,
        error: BaseException,
    ) -> None:
        """Schedule a retry, or fail the execution once retries run out."""
        async with self.lock_for(execution.id):
            step = execution.get_step(node_id)

            if not execution.is_running:
                # Paused or stopped while the handler ran; resume re-enters current_step
                execution.update_step_status(node_id, StepStatus.PENDING, error=error)
                execution.add_log(LogLevel.WARN, f"Node failed while {execution.status.value}: {error}", node_id)
                await self._store.save(execution)
                return

            if self._retry.should_retry(step.retry_count):
                step.retry_count += 1
                delay = self._retry.compute_delay(step.retry_count)
                execution.update_step_status(node_id, StepStatus.PENDING, error=error)
                step.add_log(LogLevel.WARN.value, f"Attempt failed: {error}")
                execution.add_log(
                    LogLevel.WARN,
                    f"Node failed, retrying in {delay:g}s (attempt {step.retry_count})",
                    node_id,
                )
                await self._store.save(execution)
                logger.warning(
                    "Node failed, retry scheduled",
                    execution_id=execution.id,
                    node_id=node_id,
                    attempt=step.retry_count,
                    delay=delay,
                    error=str(error),
                )
                self._scheduler.schedule(
                    execution.id,
                    node_id,
                    delay,
                    lambda: self._reenter(execution, template, node_id),
                )
                return

            execution.update_step_status(node_id, StepStatus.FAILED, error=error)
            execution.add_log(
                LogLevel.ERROR,
                f"Node failed after {step.retry_count} retries: {error}",
                node_id,
            )
            await self._store.save(execution)

        await self._fail(execution, error, node_id)

    async def _fail(self, execution: WorkflowExecution, error: BaseException, node_id: Optional[str]) -> None:
        logger.error(
            "Node failed permanently",
            execution_id=execution.id,
            node_id=node_id,
            error=str(error),
        )
        if self._on_failure is not None:
            await self._on_failure(execution, error, node_id)
