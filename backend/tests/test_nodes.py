"""Tests for node handlers and the node registry."""

import httpx
import pytest

from core.constants import ExecutionStatus, NodeType, StepStatus
from core.exceptions import NodeExecutionError
from integrations.http_client import HttpClient
from nodes.base_node import NodeContext, NodeServices
from nodes.registry import NodeRegistry
from notifications.channels import BaseChannel, NotificationChannel
from workflow.execution import WorkflowExecution
from workflow.template import WorkflowNode


class FailingChannel(BaseChannel):
    channel_type = NotificationChannel.WEBHOOK

    async def send(self, notification):
        raise RuntimeError("smtp down")


@pytest.fixture
def registry():
    return NodeRegistry()


@pytest.fixture
def services(task_store, notifier, event_bus, settings):
    return NodeServices(
        task_store=task_store,
        notifier=notifier,
        event_bus=event_bus,
        settings=settings,
    )


@pytest.fixture
def run_node(registry, services, linear_template):
    """Run one handler against a fresh running execution."""

    async def _run(node_type: str, config: dict = None, variables: dict = None, context: dict = None, **svc):
        node = WorkflowNode(id="n1", type=node_type, config=config or {})
        template = linear_template(node.model_dump())
        execution = WorkflowExecution.from_template(
            template,
            variables=variables,
            context=context,
            triggered_by="user-1",
        )
        execution.status = ExecutionStatus.RUNNING
        for key, value in svc.items():
            setattr(services, key, value)
        ctx = NodeContext(
            execution=execution,
            node=node,
            step=execution.get_step("n1"),
            services=services,
        )
        result = await registry.create_instance(node_type).run(ctx)
        return result, execution

    return _run


@pytest.mark.unit
class TestNodeRegistry:
    def test_all_node_types_registered(self, registry):
        assert set(registry.available_types) == {t.value for t in NodeType}

    def test_unknown_type(self, registry):
        assert registry.get("teleport") is None
        assert registry.create_instance("teleport") is None

    def test_list_all_exposes_config_schema(self, registry):
        entries = {e["node_type"]: e for e in registry.list_all()}
        assert "title" in entries["task"]["config_schema"]["properties"]


@pytest.mark.unit
class TestTaskNode:
    @pytest.mark.asyncio
    async def test_creates_task_with_substitution(self, run_node, task_store, event_bus):
        result, execution = await run_node(
            "task",
            {"title": "Follow up {{client}}", "dueDate": "{{dueDate}}", "tags": ["crm"]},
            variables={"client": "ACME", "dueDate": "2025-01-01"},
        )
        assert result.output["title"] == "Follow up ACME"
        assert result.output["due_date"] == "2025-01-01"
        assert result.output["assigned_to"] == "user-1"
        task = task_store.tasks[result.output["task_id"]]
        assert task.assigned_by == "user-1"
        assert task.tags == ["crm"]
        assert event_bus.fired[0][0] == "task_created"
        assert event_bus.fired[0][1]["task_id"] == result.output["task_id"]

    @pytest.mark.asyncio
    async def test_default_due_date_is_a_week_out(self, run_node, task_store):
        result, _ = await run_node("task", {"title": "T"})
        assert result.output["due_date"][:4].isdigit()
        assert len(task_store.tasks) == 1

    @pytest.mark.asyncio
    async def test_missing_title_fails(self, run_node):
        with pytest.raises(NodeExecutionError, match="title is required"):
            await run_node("task", {})

    @pytest.mark.asyncio
    async def test_task_store_error_is_wrapped(self, run_node):
        class BrokenStore:
            async def create_task(self, **kwargs):
                raise ConnectionError("db gone")

        with pytest.raises(NodeExecutionError, match="db gone") as exc_info:
            await run_node("task", {"title": "T"}, task_store=BrokenStore())
        assert exc_info.value.node_id == "n1"
        assert exc_info.value.node_type == "task"

    @pytest.mark.asyncio
    async def test_event_dispatch_error_keeps_created_task(self, run_node, task_store):
        class BrokenBus:
            async def fire(self, event_name, payload):
                raise RuntimeError("bus down")

        result, _ = await run_node("task", {"title": "T"}, event_bus=BrokenBus())

        assert result.output["task_id"] in task_store.tasks
        assert len(task_store.tasks) == 1


@pytest.mark.unit
class TestEmailNode:
    @pytest.mark.asyncio
    async def test_sends_notification(self, run_node, inbox):
        result, _ = await run_node(
            "email",
            {"recipient": "user-2", "subject": "Hi {{name}}", "body": "Order {{context.order}}"},
            variables={"name": "Ada"},
            context={"order": "42"},
        )
        assert result.output["delivered"] is True
        note = inbox.for_recipient("user-2")[0]
        assert note.type == "workflow_notification"
        assert note.title == "Hi Ada"
        assert note.message == "Order 42"

    @pytest.mark.asyncio
    async def test_defaults_recipient_to_trigger_user(self, run_node, inbox):
        await run_node("email", {"subject": "s", "body": "b"})
        assert len(inbox.for_recipient("user-1")) == 1

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self, run_node, notifier):
        notifier.register_channel(FailingChannel())
        result, _ = await run_node("email", {"subject": "s", "body": "b"})
        assert result.output["delivered"] is False


@pytest.mark.unit
class TestFlowNodes:
    @pytest.mark.asyncio
    async def test_start_echoes_inputs(self, run_node):
        result, _ = await run_node("start", variables={"a": 1}, context={"b": 2})
        assert result.output["variables"] == {"a": 1}
        assert result.output["context"] == {"b": 2}

    @pytest.mark.asyncio
    async def test_condition_records_result(self, run_node):
        result, _ = await run_node("condition", {"condition": "{{amount}} > 100"}, variables={"amount": 150})
        assert result.output == {
            "condition": "150 > 100",
            "result": True,
            "message": "Condition evaluated to: true",
        }

    @pytest.mark.asyncio
    async def test_delay_duration_ms(self, run_node):
        result, execution = await run_node("delay", {"duration": 5})
        assert result.output["delay_duration"] == 5
        assert "Delaying execution for 5ms" in [entry.message for entry in execution.logs]

    @pytest.mark.asyncio
    async def test_delay_amount_and_unit(self, run_node):
        result, _ = await run_node("delay", {"delayAmount": 0.0001, "delayUnit": "minutes"})
        assert result.output["delay_duration"] == 6

    @pytest.mark.asyncio
    async def test_delay_default_from_settings(self, run_node):
        result, _ = await run_node("delay")
        assert result.output["delay_duration"] == 0

    @pytest.mark.asyncio
    async def test_delay_rejects_unknown_unit(self, run_node):
        with pytest.raises(NodeExecutionError, match="Invalid delay config"):
            await run_node("delay", {"delay_amount": 1, "delay_unit": "weeks"})

    @pytest.mark.asyncio
    async def test_end_completes_execution(self, run_node, inbox):
        result, execution = await run_node("end")
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.ended_at is not None
        assert result.output["status"] == "completed"
        assert inbox.for_recipient("user-1")[0].type == "workflow_completed"

    @pytest.mark.asyncio
    async def test_parallel_and_merge_pass_through(self, run_node):
        for node_type in ("parallel", "merge"):
            result, _ = await run_node(node_type)
            assert result.waiting is False


@pytest.mark.unit
class TestApprovalNode:
    @pytest.mark.asyncio
    async def test_waits_and_notifies_approver(self, run_node, inbox):
        result, execution = await run_node("approval", {"approver": "boss", "message": "Sign {{doc}}"}, variables={"doc": "NDA"})
        step = execution.get_step("n1")
        assert result.waiting is True
        assert step.status == StepStatus.WAITING_APPROVAL
        assert step.assigned_to == "boss"
        note = inbox.for_recipient("boss")[0]
        assert note.type == "workflow_approval"
        assert note.message == "Sign NDA"
        assert note.data["node_id"] == "n1"


@pytest.mark.unit
class TestApiCallNode:
    @pytest.mark.asyncio
    async def test_calls_endpoint(self, run_node):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["content-type"]
            seen["auth"] = request.headers.get("x-api-key")
            seen["body"] = request.content
            return httpx.Response(201, json={"id": 9})

        client = HttpClient(transport=httpx.MockTransport(handler))
        result, _ = await run_node(
            "api_call",
            {
                "url": "https://api.example.com/orders/{{orderId}}",
                "method": "post",
                "headers": {"X-Api-Key": "{{key}}"},
                "body": {"note": "for {{orderId}}"},
            },
            variables={"orderId": "7", "key": "k-1"},
            http_client=client,
        )
        assert seen["url"] == "https://api.example.com/orders/7"
        assert seen["content_type"] == "application/json"
        assert seen["auth"] == "k-1"
        assert b'"for 7"' in seen["body"]
        assert result.output["status"] == 201
        assert result.output["status_text"] == "Created"
        assert result.output["method"] == "POST"
        assert result.output["data"] == {"id": 9}

    @pytest.mark.asyncio
    async def test_transport_error_fails_node(self, run_node):
        def handler(request):
            raise httpx.ConnectError("refused")

        client = HttpClient(transport=httpx.MockTransport(handler))
        with pytest.raises(NodeExecutionError, match="Failed to make API call"):
            await run_node("api_call", {"url": "https://down.example.com"}, http_client=client)

    @pytest.mark.asyncio
    async def test_requires_url(self, run_node):
        with pytest.raises(NodeExecutionError, match="Invalid api_call config"):
            await run_node("api_call", {}, http_client=HttpClient())
