"""Tests for graph walking: routing, fan-out and node entry rules."""

import asyncio

import pytest

from core.constants import ExecutionStatus, StepStatus
from nodes.registry import NodeRegistry


async def _until(predicate, timeout: float = 2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.unit
class TestRouting:
    @pytest.mark.asyncio
    async def test_follows_only_true_conditions(self, engine, launch, make_template, task_store):
        template = make_template(
            [
                {"id": "start", "type": "start"},
                {"id": "high", "type": "task", "config": {"title": "High value"}},
                {"id": "low", "type": "task", "config": {"title": "Low value"}},
                {"id": "end", "type": "end"},
            ],
            [
                ("start", "high", "{{amount}} > 100"),
                ("start", "low", "{{amount}} < 100"),
                ("high", "end"),
                ("low", "end"),
            ],
        )

        _, execution = await launch(engine, template, variables={"amount": 150})

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.get_step("low").status == StepStatus.PENDING
        assert [t.title for t in task_store.tasks.values()] == ["High value"]
        assert execution.progress.percentage == 75

    @pytest.mark.asyncio
    async def test_step_input_is_raw_node_config(self, engine, launch, linear_template):
        config = {"title": "Call {{client}}", "tags": ["crm"]}
        _, execution = await launch(engine, linear_template({"id": "t1", "type": "task", "config": config}), {"client": "ACME"})

        step = execution.get_step("t1")
        assert step.input == config
        assert step.output["title"] == "Call ACME"
        assert step.started_at is not None and step.ended_at is not None


@pytest.mark.unit
class TestFanOut:
    @pytest.mark.asyncio
    async def test_branches_run_concurrently(self, make_engine, registry_with, gate, make_template, create_execution, execution_store):
        engine = make_engine(registry=registry_with(task=gate.node_class))
        template = make_template(
            [
                {"id": "start", "type": "start"},
                {"id": "split", "type": "parallel"},
                {"id": "a", "type": "task"},
                {"id": "b", "type": "task"},
                {"id": "join", "type": "merge"},
                {"id": "end", "type": "end"},
            ],
            [
                ("start", "split"),
                ("split", "a"),
                ("split", "b"),
                ("a", "join"),
                ("b", "join"),
                ("join", "end"),
            ],
        )
        execution = await create_execution(template)

        running = asyncio.create_task(engine.start(execution.id))
        await _until(lambda: gate.calls == 2)

        live = engine._live[execution.id]
        assert live.get_step("a").status == StepStatus.RUNNING
        assert live.get_step("b").status == StepStatus.RUNNING

        gate.opened.set()
        await running

        stored = await execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert gate.calls == 2
        assert stored.get_step("a").status == StepStatus.COMPLETED
        assert stored.get_step("b").status == StepStatus.COMPLETED
        assert stored.progress.percentage == 100
        assert sum(1 for e in stored.logs if e.message == "Node completed: end") == 1

    @pytest.mark.asyncio
    async def test_duplicate_entry_into_running_node_is_ignored(self, make_engine, registry_with, gate, make_template, create_execution, execution_store):
        engine = make_engine(registry=registry_with(task=gate.node_class))
        template = make_template(
            [
                {"id": "start", "type": "start"},
                {"id": "g", "type": "task"},
                {"id": "end", "type": "end"},
            ],
            [("start", "g"), ("start", "g"), ("g", "end")],
        )
        execution = await create_execution(template)

        running = asyncio.create_task(engine.start(execution.id))
        await asyncio.wait_for(gate.entered.wait(), 2)
        for _ in range(5):
            await asyncio.sleep(0)
        assert gate.calls == 1

        gate.opened.set()
        await running

        stored = await execution_store.get(execution.id)
        assert gate.calls == 1
        assert stored.status == ExecutionStatus.COMPLETED


@pytest.mark.unit
class TestHandlerLookup:
    @pytest.mark.asyncio
    async def test_missing_handler_fails_after_retries(self, make_engine, launch, linear_template):
        engine = make_engine(registry=NodeRegistry(include_builtin=False))

        _, execution = await launch(engine, linear_template())

        step = execution.get_step("start")
        assert execution.status == ExecutionStatus.FAILED
        assert step.status == StepStatus.FAILED
        assert step.retry_count == 5
        assert execution.errors[0].message == "Unknown node type: start"


@pytest.fixture
def progress_audit(execution_store):
    """Check progress against step statuses on every save."""
    saves, mismatches = [], []
    original_save = execution_store.save

    async def audited_save(execution):
        completed = sum(1 for s in execution.steps if s.status == StepStatus.COMPLETED)
        expected = round(100 * completed / len(execution.steps))
        saves.append(execution.progress.percentage)
        if (execution.progress.completed_steps, execution.progress.percentage) != (completed, expected):
            mismatches.append((execution.current_step, execution.progress.to_dict(), completed))
        await original_save(execution)

    execution_store.save = audited_save
    return saves, mismatches


@pytest.mark.unit
class TestProgressTracking:
    @pytest.mark.asyncio
    async def test_progress_matches_steps_on_every_save_during_fan_out(self, engine, launch, make_template, progress_audit):
        template = make_template(
            [
                {"id": "start", "type": "start"},
                {"id": "split", "type": "parallel"},
                {"id": "a", "type": "task", "config": {"title": "A"}},
                {"id": "b", "type": "task", "config": {"title": "B"}},
                {"id": "join", "type": "merge"},
                {"id": "end", "type": "end"},
            ],
            [
                ("start", "split"),
                ("split", "a"),
                ("split", "b"),
                ("a", "join"),
                ("b", "join"),
                ("join", "end"),
            ],
        )

        _, execution = await launch(engine, template)

        saves, mismatches = progress_audit
        assert execution.status == ExecutionStatus.COMPLETED
        assert len(saves) > 6
        assert mismatches == []

    @pytest.mark.asyncio
    async def test_progress_matches_steps_on_every_save_during_retries(self, make_engine, registry_with, flaky, launch, linear_template, progress_audit):
        node = flaky(2)
        engine = make_engine(registry=registry_with(task=node.node_class))

        _, execution = await launch(engine, linear_template({"id": "t1", "type": "task"}))

        saves, mismatches = progress_audit
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.get_step("t1").retry_count == 2
        assert mismatches == []
        assert saves[-1] == 100

    @pytest.mark.asyncio
    async def test_reentering_completed_node_uncounts_it(self, engine, launch, linear_template, execution_store):
        _, execution = await launch(engine, linear_template())
        assert execution.progress.completed_steps == 2

        execution.status = ExecutionStatus.RUNNING
        entered = []

        async def capture(snapshot):
            entered.append(snapshot.progress.completed_steps)
            raise RuntimeError("stop after entry")

        execution_store.save = capture
        with pytest.raises(RuntimeError):
            await engine.walker.process_node(execution, linear_template(), "end")

        assert entered == [1]
