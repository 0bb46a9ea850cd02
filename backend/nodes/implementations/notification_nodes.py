"""Nodes that talk to people: email notifications and approvals."""

from typing import Optional

from core.constants import NotificationType, StepStatus
from nodes.base_node import BaseNode, NodeConfig, NodeContext, NodeResult
from nodes.registry import register_node
from notifications.manager import send_safely

DEFAULT_APPROVAL_MESSAGE = "Your approval is required to continue this workflow."


class EmailConfig(NodeConfig):
    recipient: Optional[str] = None
    subject: str = ""
    body: str = ""
    priority: str = "medium"


@register_node("email")
class EmailNode(BaseNode):
    """Send a ``workflow_notification`` with substituted subject and body.

    Delivery failures are logged and reported as ``delivered: False``; they
    do not fail the node.
    """

    display_name = "Send Email"
    description = "Notify a user"
    config_model = EmailConfig

    async def execute(self, ctx: NodeContext, config: EmailConfig) -> NodeResult:
        recipient = config.recipient or ctx.triggered_by
        subject = ctx.render(config.subject)
        body = ctx.render(config.body)

        delivered = False
        notifier = ctx.services.notifier
        if notifier is not None:
            delivered = await send_safely(
                notifier.notify,
                recipient=recipient,
                type=NotificationType.WORKFLOW_NOTIFICATION.value,
                title=subject,
                message=body,
                priority=config.priority,
                data={
                    "workflow_execution_id": ctx.execution.id,
                    "workflow_name": ctx.execution.name,
                },
            )

        return NodeResult(output={
            "recipient": recipient,
            "subject": subject,
            "delivered": delivered,
            "message": "Email notification sent" if delivered else "Email notification not delivered",
        })


class ApprovalConfig(NodeConfig):
    approver: Optional[str] = None
    message: str = DEFAULT_APPROVAL_MESSAGE
    priority: str = "high"


@register_node("approval")
class ApprovalNode(BaseNode):
    """Park the branch until someone responds.

    The step goes to ``waiting_approval``; the run continues only through
    ``WorkflowEngine.respond_to_approval``.
    """

    display_name = "Approval"
    description = "Wait for a human decision"
    config_model = ApprovalConfig

    async def execute(self, ctx: NodeContext, config: ApprovalConfig) -> NodeResult:
        step = ctx.step
        step.status = StepStatus.WAITING_APPROVAL
        step.assigned_to = config.approver or ctx.triggered_by

        notifier = ctx.services.notifier
        if notifier is not None:
            await send_safely(
                notifier.notify_approval_required,
                recipient=step.assigned_to,
                workflow_name=ctx.execution.name,
                execution_id=ctx.execution.id,
                node_id=ctx.node.id,
                message=ctx.render(config.message),
                priority=config.priority,
            )

        return NodeResult(
            output={
                "status": StepStatus.WAITING_APPROVAL.value,
                "approver": step.assigned_to,
                "message": "Approval request sent",
            },
            waiting=True,
        )
