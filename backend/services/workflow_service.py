"""Workflow service — template management + execution creation/dispatch."""

from datetime import date, datetime
from typing import Any, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError as PydanticValidationError

from core.constants import ExecutionStatus, TriggerType, VariableType
from core.exceptions import TemplateValidationError, ValidationError
from workflow.execution import WorkflowExecution
from workflow.store import ExecutionStore, TemplateSource
from workflow.template import VariableDefinition, WorkflowTemplate

logger = structlog.get_logger(__name__)


def _is_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


_TYPE_CHECKS = {
    VariableType.STRING.value: lambda v: isinstance(v, str),
    VariableType.NUMBER.value: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    VariableType.BOOLEAN.value: lambda v: isinstance(v, bool),
    VariableType.DATE.value: _is_date,
    VariableType.ARRAY.value: lambda v: isinstance(v, list),
    VariableType.OBJECT.value: lambda v: isinstance(v, dict),
}


class WorkflowService:
    """Service for workflow template management and execution dispatch."""

    def __init__(self, templates: TemplateSource, store: ExecutionStore, engine=None):
        self.templates = templates
        self.store = store
        self.engine = engine

    # ─── Templates ─────────────────────────────────────────────

    async def save_template(self, template: WorkflowTemplate | dict) -> WorkflowTemplate:
        """Validate and store a template.

        Raises:
            TemplateValidationError: schema or graph integrity errors
        """
        if isinstance(template, dict):
            try:
                template = WorkflowTemplate.model_validate(template)
            except PydanticValidationError as e:
                raise TemplateValidationError(
                    [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
                ) from e

        result = template.validate_workflow()
        if not result.is_valid:
            logger.warning("Template rejected", template_id=template.id, errors=result.errors)
            raise TemplateValidationError(result.errors)

        await self.templates.save(template)
        logger.info("Template saved", template_id=template.id, version=template.version)
        return template

    async def get_template(self, template_id: str) -> WorkflowTemplate:
        return await self.templates.get_or_raise(template_id)

    async def duplicate_template(
        self,
        template_id: str,
        new_id: Optional[str] = None,
        new_version: Optional[str] = None,
    ) -> WorkflowTemplate:
        """Copy a template under a new id with a bumped version."""
        template = await self.templates.get_or_raise(template_id)
        copy = template.duplicate(new_id or str(uuid4()), new_version=new_version)
        await self.templates.save(copy)
        return copy

    # ─── Executions ────────────────────────────────────────────

    async def create_execution(
        self,
        template_id: str,
        variables: Optional[dict] = None,
        triggered_by: Optional[str] = None,
        trigger_type: TriggerType | str = TriggerType.MANUAL,
        trigger_data: Any = None,
        context: Optional[dict] = None,
    ) -> WorkflowExecution:
        """Create a pending execution of a template.

        Declared variables are type-checked; absent optional ones take
        their default value.

        Raises:
            NotFoundError: unknown template
            ValidationError: missing required variable or wrong type
        """
        template = await self.templates.get_or_raise(template_id)
        resolved = self.resolve_variables(template.variables, variables or {})

        execution = WorkflowExecution.from_template(
            template,
            variables=resolved,
            triggered_by=triggered_by,
            trigger_type=TriggerType(trigger_type),
            trigger_data=trigger_data,
            context=context,
        )
        await self.store.create(execution)
        logger.info(
            "Execution created",
            execution_id=execution.id,
            template_id=template.id,
            trigger_type=execution.trigger_type.value,
        )
        return execution

    @staticmethod
    def resolve_variables(definitions: list[VariableDefinition], supplied: dict) -> dict:
        """Apply defaults and type checks to supplied input variables."""
        resolved = dict(supplied)
        errors = []
        for definition in definitions:
            value = resolved.get(definition.name)
            if value is None:
                if definition.default_value is not None:
                    resolved[definition.name] = definition.default_value
                elif definition.required:
                    errors.append(f"Missing required variable: {definition.name}")
                continue
            check = _TYPE_CHECKS.get(definition.type)
            if check and not check(value):
                errors.append(
                    f"Variable {definition.name} must be of type {definition.type}, "
                    f"got {type(value).__name__}"
                )
        if errors:
            raise ValidationError("; ".join(errors))
        return resolved

    async def execute(
        self,
        template_id: str,
        variables: Optional[dict] = None,
        triggered_by: Optional[str] = None,
        trigger_type: TriggerType | str = TriggerType.MANUAL,
        trigger_data: Any = None,
    ) -> dict:
        """Create an execution and start it on the engine.

        Returns:
            The engine's start result (``started`` or ``queued``).
        """
        if self.engine is None:
            raise ValidationError("No workflow engine configured")
        execution = await self.create_execution(
            template_id,
            variables=variables,
            triggered_by=triggered_by,
            trigger_type=trigger_type,
            trigger_data=trigger_data,
        )
        return await self.engine.start(execution.id)

    async def list_executions(self, status: Optional[ExecutionStatus | str] = None) -> list[WorkflowExecution]:
        return await self.store.list_all(status=status)
