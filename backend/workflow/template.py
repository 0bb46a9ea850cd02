"""Workflow template schema and integrity checks.

A template is the reusable, versioned definition of a workflow graph:
nodes, the connections between them and the variables a run accepts.
Templates are read-only to the executor; edits produce a new version.
"""

from collections import deque
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from core.constants import NodeType, OnErrorPolicy, VariableType
from core.utils import bump_version


class WorkflowNode(BaseModel):
    """A single node of the workflow graph."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(min_length=1, description="Node id, unique within the template")
    type: NodeType = Field(description="Node type")
    label: str = Field(default="", description="Human-readable label")
    config: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("config", "data"),
        description="Type-specific configuration",
    )


class Connection(BaseModel):
    """Directed edge between two nodes, optionally guarded by a condition."""

    id: str = Field(min_length=1, description="Connection id")
    source: str = Field(description="Source node id")
    target: str = Field(description="Target node id")
    condition: Optional[str] = Field(default=None, description="Guard expression")
    label: Optional[str] = None


class VariableDefinition(BaseModel):
    """Declared input variable of a template."""

    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: VariableType = VariableType.STRING
    default_value: Any = None
    required: bool = False
    description: str = ""


class RetryPolicySettings(BaseModel):
    enabled: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay: int = Field(default=60, ge=0, description="Seconds")


class ErrorHandlingSettings(BaseModel):
    """Template-declared error handling. Stored, not enforced."""

    model_config = ConfigDict(use_enum_values=True)

    on_error: OnErrorPolicy = OnErrorPolicy.STOP
    notify_on_error: bool = True


class TemplateSettings(BaseModel):
    max_execution_time: int = Field(default=3600, ge=0, description="Seconds")
    retry_policy: RetryPolicySettings = Field(default_factory=RetryPolicySettings)
    error_handling: ErrorHandlingSettings = Field(default_factory=ErrorHandlingSettings)
    parallel_execution: bool = False
    priority: str = "medium"


class TemplateValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class WorkflowTemplate(BaseModel):
    """Workflow template: nodes + connections + variables."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    version: str = "1.0.0"
    created_by: Optional[str] = None
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: List[Connection] = Field(
        default_factory=list,
        validation_alias=AliasChoices("connections", "edges"),
    )
    variables: List[VariableDefinition] = Field(default_factory=list)
    settings: TemplateSettings = Field(default_factory=TemplateSettings)
    tags: List[str] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Find a node by id."""
        return next((n for n in self.nodes if n.id == node_id), None)

    def start_node(self) -> Optional[WorkflowNode]:
        """Return the first start node, if any."""
        return next((n for n in self.nodes if n.type == NodeType.START.value), None)

    def outgoing(self, node_id: str) -> List[Connection]:
        """Connections leaving ``node_id`` in declaration order."""
        return [c for c in self.connections if c.source == node_id]

    def reachable_from(self, node_id: str) -> set[str]:
        """Ids of all nodes reachable from ``node_id`` (inclusive)."""
        seen = {node_id}
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for conn in self.outgoing(current):
                if conn.target not in seen:
                    seen.add(conn.target)
                    queue.append(conn.target)
        return seen

    def validate_workflow(self) -> TemplateValidationResult:
        """Run the template integrity checks.

        Checks: exactly one start node, at least one end node reachable
        from it, unique node ids, no dangling connections and no orphaned
        (non-start, unconnected) nodes.
        """
        errors: list[str] = []
        node_ids = [n.id for n in self.nodes]
        known = set(node_ids)

        if len(known) != len(node_ids):
            dupes = sorted({i for i in node_ids if node_ids.count(i) > 1})
            errors.append(f"Duplicate node ids: {', '.join(dupes)}")

        starts = [n for n in self.nodes if n.type == NodeType.START.value]
        ends = [n for n in self.nodes if n.type == NodeType.END.value]
        if not starts:
            errors.append("Workflow must have exactly one start node")
        elif len(starts) > 1:
            errors.append(f"Workflow has {len(starts)} start nodes, expected exactly one")
        if not ends:
            errors.append("Workflow must have at least one end node")

        for conn in self.connections:
            missing = [e for e in (conn.source, conn.target) if e not in known]
            if missing:
                errors.append(
                    f"Connection {conn.id} references unknown node(s): {', '.join(missing)}"
                )

        targets = {c.target for c in self.connections}
        orphaned = [
            n for n in self.nodes
            if n.type != NodeType.START.value and n.id not in targets
        ]
        if orphaned:
            errors.append(
                "Orphaned nodes found: " + ", ".join(n.label or n.id for n in orphaned)
            )

        if len(starts) == 1 and ends:
            reachable = self.reachable_from(starts[0].id)
            if not any(e.id in reachable for e in ends):
                errors.append("No end node is reachable from the start node")

        return TemplateValidationResult(is_valid=not errors, errors=errors)

    def duplicate(self, new_id: str, new_version: Optional[str] = None) -> "WorkflowTemplate":
        """Copy this template under a new id with a bumped version."""
        return self.model_copy(
            deep=True,
            update={"id": new_id, "version": new_version or bump_version(self.version)},
        )
