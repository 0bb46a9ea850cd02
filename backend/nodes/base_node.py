"""
Base node interface for all workflow node handlers.

Every node type (task, email, delay, approval, etc.) must inherit from
BaseNode and implement the execute() method. A handler owns the pydantic
model that validates its node's ``config``.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as ConfigValidationError

from core.exceptions import NodeExecutionError
from workflow.execution import ExecutionStep, WorkflowExecution
from workflow.expressions import substitute, substitute_all
from workflow.template import WorkflowNode

logger = structlog.get_logger(__name__)


class NodeConfig(BaseModel):
    """Base config model. Unknown keys are kept so templates stay forward compatible."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


@dataclass
class NodeServices:
    """External collaborators handlers may call. Any of them may be absent."""
    task_store: Any = None
    notifier: Any = None
    event_bus: Any = None
    http_client: Any = None
    settings: Any = None


@dataclass
class NodeContext:
    """Everything a handler sees for one node entry."""
    execution: WorkflowExecution
    node: WorkflowNode
    step: ExecutionStep
    services: NodeServices = field(default_factory=NodeServices)

    @property
    def variables(self) -> Dict[str, Any]:
        return self.execution.variables

    @property
    def context(self) -> Dict[str, Any]:
        return self.execution.context

    @property
    def triggered_by(self) -> Optional[str]:
        return self.execution.triggered_by

    def render(self, value: Any) -> Any:
        """Substitute ``{{tokens}}`` in a string or nested structure."""
        if isinstance(value, str):
            return substitute(value, self.variables, self.context)
        return substitute_all(value, self.variables, self.context)


@dataclass
class NodeResult:
    """Standardized result from a node handler.

    ``waiting`` suspends the branch: the walker records the output but does
    not follow outgoing connections.
    """
    output: Any = None
    waiting: bool = False


class BaseNode(ABC):
    """
    Abstract base class for all node handlers.

    Subclasses must implement:
    - execute(ctx, config) -> NodeResult
    - node_type (set by @register_node)
    - display_name (class property)
    """

    node_type: str = "base"
    display_name: str = "Base Node"
    description: str = "Abstract base node"
    config_model: Type[NodeConfig] = NodeConfig

    @abstractmethod
    async def execute(self, ctx: NodeContext, config: NodeConfig) -> NodeResult:
        """
        Execute the node.

        Args:
            ctx: Execution, node, step and collaborators
            config: The node's config, validated against ``config_model``

        Returns:
            NodeResult with the step output

        Raises:
            NodeExecutionError: if the node cannot complete
        """
        pass

    def parse_config(self, node: WorkflowNode) -> NodeConfig:
        try:
            return self.config_model.model_validate(node.config or {})
        except ConfigValidationError as e:
            raise NodeExecutionError(
                f"Invalid {self.node_type} config: {e.errors()[0]['msg']}",
                node_id=node.id,
                node_type=self.node_type,
            ) from e

    async def run(self, ctx: NodeContext) -> NodeResult:
        """
        Run the node with timing and error normalization.

        This is the main entry point called by the graph walker. Any failure
        surfaces as NodeExecutionError.
        """
        start = time.monotonic()
        node_id = ctx.node.id
        try:
            config = self.parse_config(ctx.node)
            result = await self.execute(ctx, config)
        except NodeExecutionError as e:
            logger.error(
                "Node failed",
                node_type=self.node_type,
                node_id=node_id,
                error=e.message,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise
        except Exception as e:
            logger.error(
                "Node failed",
                node_type=self.node_type,
                node_id=node_id,
                error=str(e),
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise NodeExecutionError(
                f"{self.display_name} failed: {e}",
                node_id=node_id,
                node_type=self.node_type,
            ) from e

        logger.debug(
            "Node completed",
            node_type=self.node_type,
            node_id=node_id,
            waiting=result.waiting,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return result

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """Return JSON schema for the node configuration."""
        return cls.config_model.model_json_schema()
