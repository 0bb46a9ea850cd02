"""Workflow template persistence model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class WorkflowTemplateRecord(BaseModel):
    """Stored workflow template.

    Attributes:
        id: Template id
        name: Template name
        version: Template version string
        created_by: User id of the author
        definition: Full template document (nodes, connections, variables, settings)
    """

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    version: Mapped[str] = mapped_column(nullable=False, default="1.0.0")
    created_by: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False)
