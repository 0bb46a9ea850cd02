"""Control-flow nodes: start, end, delay, condition, parallel, merge.

None of these call an external system except ``end``, which announces
completion through the notifier.
"""

import asyncio
from typing import Literal, Optional

from pydantic import AliasChoices, Field

from core.constants import ExecutionStatus, LogLevel
from core.utils import duration_ms, isoformat, utc_now
from nodes.base_node import BaseNode, NodeConfig, NodeContext, NodeResult
from nodes.registry import register_node
from notifications.manager import send_safely
from workflow.expressions import evaluate

_UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


@register_node("start")
class StartNode(BaseNode):
    display_name = "Start"
    description = "Entry point of the workflow"

    async def execute(self, ctx: NodeContext, config: NodeConfig) -> NodeResult:
        return NodeResult(output={
            "message": "Workflow started",
            "timestamp": isoformat(utc_now()),
            "variables": dict(ctx.variables),
            "context": dict(ctx.context),
        })


@register_node("end")
class EndNode(BaseNode):
    """Finalize the run: completed status, end time, duration, notification."""

    display_name = "End"
    description = "Marks the workflow execution completed"

    async def execute(self, ctx: NodeContext, config: NodeConfig) -> NodeResult:
        execution = ctx.execution
        execution.status = ExecutionStatus.COMPLETED
        execution.ended_at = utc_now()
        execution.duration_ms = duration_ms(execution.started_at, execution.ended_at)
        execution.results = {
            s.node_id: s.output for s in execution.steps if s.output is not None
        }
        execution.add_log(LogLevel.INFO, "Workflow execution completed", ctx.node.id)

        notifier = ctx.services.notifier
        if notifier is not None:
            await send_safely(
                notifier.notify_workflow_completed,
                recipient=ctx.triggered_by,
                workflow_name=execution.name,
                execution_id=execution.id,
                duration_ms=execution.duration_ms,
            )

        return NodeResult(output={
            "status": ExecutionStatus.COMPLETED.value,
            "duration_ms": execution.duration_ms,
            "message": "Workflow execution completed successfully",
        })


class DelayConfig(NodeConfig):
    duration: Optional[int] = Field(default=None, ge=0, description="Milliseconds")
    delay_amount: Optional[float] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("delay_amount", "delayAmount"),
    )
    delay_unit: Literal["seconds", "minutes", "hours", "days"] = Field(
        default="seconds",
        validation_alias=AliasChoices("delay_unit", "delayUnit"),
    )


@register_node("delay")
class DelayNode(BaseNode):
    """Suspend this branch only.

    Config:
        duration: Milliseconds, or
        delay_amount + delay_unit: seconds | minutes | hours | days
    """

    display_name = "Delay"
    description = "Wait before continuing"
    config_model = DelayConfig

    async def execute(self, ctx: NodeContext, config: DelayConfig) -> NodeResult:
        if config.duration is not None:
            delay_ms = config.duration
        elif config.delay_amount is not None:
            delay_ms = round(config.delay_amount * _UNIT_SECONDS[config.delay_unit] * 1000)
        else:
            settings = ctx.services.settings
            delay_ms = settings.DEFAULT_DELAY_MS if settings else 1000

        ctx.execution.add_log(LogLevel.INFO, f"Delaying execution for {delay_ms}ms", ctx.node.id)
        await asyncio.sleep(delay_ms / 1000)

        return NodeResult(output={
            "delay_duration": delay_ms,
            "message": f"Delayed execution for {delay_ms}ms",
        })


class ConditionConfig(NodeConfig):
    condition: Optional[str] = None


@register_node("condition")
class ConditionNode(BaseNode):
    display_name = "Condition"
    description = "Evaluate a simple comparison"
    config_model = ConditionConfig

    async def execute(self, ctx: NodeContext, config: ConditionConfig) -> NodeResult:
        condition = ctx.render(config.condition)
        result = evaluate(condition, ctx.variables, ctx.context)
        return NodeResult(output={
            "condition": condition,
            "result": result,
            "message": f"Condition evaluated to: {str(result).lower()}",
        })


@register_node("parallel")
class ParallelNode(BaseNode):
    """Marker node. Branches fan out from its outgoing connections."""

    display_name = "Parallel"
    description = "Split into concurrent branches"

    async def execute(self, ctx: NodeContext, config: NodeConfig) -> NodeResult:
        return NodeResult(output={"message": "Parallel split"})


@register_node("merge")
class MergeNode(BaseNode):
    """Marker node. Entered once per incoming branch; does not wait for siblings."""

    display_name = "Merge"
    description = "Join point of concurrent branches"

    async def execute(self, ctx: NodeContext, config: NodeConfig) -> NodeResult:
        return NodeResult(output={"message": "Branches merged"})
