"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- In-memory template source / execution store
- Per-test SQLite database file for the SQL stores
- Recording collaborators (task store, notifier, event bus)
- Engine factory with a zero-delay retry schedule
- Template builders
"""

import asyncio
import os
from typing import Optional

import pytest
import pytest_asyncio

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from app.config import Settings  # noqa: E402
from db.database import close_db, create_db_engine, create_session_factory, init_db  # noqa: E402
from integrations.task_store import InMemoryTaskStore  # noqa: E402
from nodes.base_node import BaseNode, NodeResult  # noqa: E402
from nodes.registry import NodeRegistry  # noqa: E402
from notifications.channels import InAppChannel  # noqa: E402
from notifications.manager import NotificationManager  # noqa: E402
from services.workflow_service import WorkflowService  # noqa: E402
from triggers.event_rules import EventRuleBus  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402
from workflow.retry_strategies import RetryStrategy  # noqa: E402
from workflow.store import InMemoryExecutionStore, InMemoryTemplateSource  # noqa: E402
from workflow.template import WorkflowTemplate  # noqa: E402


# ---------------------------------------------------------------------------
# Template builders
# ---------------------------------------------------------------------------

def build_template(
    nodes: list[dict],
    edges: list[tuple],
    template_id: str = "tpl-1",
    name: str = "Test Workflow",
    variables: Optional[list[dict]] = None,
) -> WorkflowTemplate:
    """Build a template from node dicts and (source, target[, condition]) tuples."""
    connections = []
    for i, edge in enumerate(edges, start=1):
        source, target = edge[0], edge[1]
        condition = edge[2] if len(edge) > 2 else None
        connections.append({"id": f"c{i}", "source": source, "target": target, "condition": condition})
    return WorkflowTemplate.model_validate({
        "id": template_id,
        "name": name,
        "created_by": "user-1",
        "nodes": nodes,
        "connections": connections,
        "variables": variables or [],
    })


def build_linear_template(*middle: dict, template_id: str = "tpl-1") -> WorkflowTemplate:
    """start -> middle... -> end"""
    nodes = [{"id": "start", "type": "start"}, *middle, {"id": "end", "type": "end"}]
    ids = [n["id"] for n in nodes]
    return build_template(nodes, list(zip(ids, ids[1:])), template_id=template_id)


@pytest.fixture
def make_template():
    return build_template


@pytest.fixture
def linear_template():
    return build_linear_template


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class RecordingEventBus(EventRuleBus):
    """EventRuleBus that also records every fired event."""

    def __init__(self):
        super().__init__()
        self.fired: list[tuple[str, dict]] = []

    async def fire(self, event_name: str, payload: dict) -> int:
        self.fired.append((event_name, payload))
        return await super().fire(event_name, payload)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="testing",
        MAX_CONCURRENT_WORKFLOWS=10,
        RETRY_DELAYS="0,0,0,0,0",
        DEFAULT_DELAY_MS=0,
    )


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def inbox() -> InAppChannel:
    return InAppChannel()


@pytest.fixture
def notifier(inbox) -> NotificationManager:
    manager = NotificationManager()
    manager.register_channel(inbox)
    return manager


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def template_source() -> InMemoryTemplateSource:
    return InMemoryTemplateSource()


@pytest.fixture
def execution_store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def make_engine(template_source, execution_store, task_store, notifier, event_bus, settings):
    """Factory for engines sharing the fixture stores and collaborators."""

    def _make(**overrides) -> WorkflowEngine:
        kwargs = dict(
            templates=template_source,
            store=execution_store,
            task_store=task_store,
            notifier=notifier,
            event_bus=event_bus,
            settings=settings,
            retry_strategy=RetryStrategy.schedule([0, 0, 0, 0, 0]),
        )
        kwargs.update(overrides)
        return WorkflowEngine(**kwargs)

    return _make


@pytest.fixture
def engine(make_engine) -> WorkflowEngine:
    return make_engine()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database file per test."""
    db_engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}")
    await init_db(db_engine)

    yield create_session_factory(db_engine)

    await close_db(db_engine)


# ---------------------------------------------------------------------------
# Controllable node handlers
# ---------------------------------------------------------------------------

class Gate:
    """Handler that blocks until opened; records how often it ran."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.opened = asyncio.Event()
        self.calls = 0
        gate = self

        class GateNode(BaseNode):
            display_name = "Gate"

            async def execute(self, ctx, config):
                gate.calls += 1
                gate.entered.set()
                await gate.opened.wait()
                return NodeResult(output={"gate": ctx.node.id})

        self.node_class = GateNode


class Flaky:
    """Handler that fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        flaky = self

        class FlakyNode(BaseNode):
            display_name = "Flaky"

            async def execute(self, ctx, config):
                flaky.calls += 1
                if flaky.calls <= flaky.failures:
                    raise ConnectionError(f"attempt {flaky.calls} failed")
                return NodeResult(output={"attempts": flaky.calls})

        self.node_class = FlakyNode


@pytest.fixture
def gate() -> Gate:
    return Gate()


@pytest.fixture
def flaky():
    """Factory: flaky(n) fails n times before succeeding."""
    return Flaky


@pytest.fixture
def registry_with():
    """Built-in registry with some node types overridden."""

    def _build(**overrides) -> NodeRegistry:
        registry = NodeRegistry()
        for node_type, node_class in overrides.items():
            registry.register(node_type, node_class)
        return registry

    return _build


# ---------------------------------------------------------------------------
# Running executions
# ---------------------------------------------------------------------------

@pytest.fixture
def create_execution(template_source, execution_store):
    """Save a template and create a pending execution of it."""

    async def _create(template: WorkflowTemplate, variables: Optional[dict] = None, triggered_by: str = "user-1"):
        await template_source.save(template)
        service = WorkflowService(template_source, execution_store)
        return await service.create_execution(template.id, variables=variables, triggered_by=triggered_by)

    return _create


@pytest.fixture
def launch(create_execution, execution_store):
    """Create, start and drain an execution; returns (start result, stored execution)."""

    async def _launch(engine: WorkflowEngine, template: WorkflowTemplate, variables: Optional[dict] = None):
        execution = await create_execution(template, variables=variables)
        result = await engine.start(execution.id)
        await engine.wait_idle()
        return result, await execution_store.get(execution.id)

    return _launch
