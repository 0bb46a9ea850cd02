"""API call node — outbound HTTP request through the HttpClient collaborator."""

from typing import Any, Dict, Optional

import httpx
from pydantic import Field

from core.exceptions import NodeExecutionError
from nodes.base_node import BaseNode, NodeConfig, NodeContext, NodeResult
from nodes.registry import register_node

DEFAULT_HEADERS = {"Content-Type": "application/json"}


class ApiCallConfig(NodeConfig):
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: Optional[float] = Field(default=None, gt=0)


@register_node("api_call")
class ApiCallNode(BaseNode):
    """Call an external API.

    Config:
        url: Target URL, may contain {{tokens}} (required)
        method: HTTP method (default: GET)
        headers: Extra headers, merged over Content-Type: application/json
        body: JSON body; strings inside it may contain {{tokens}}
        timeout: Seconds (default: HTTP_TIMEOUT)

    Non-2xx responses are returned, not raised; transport errors fail the node.
    """

    display_name = "API Call"
    description = "Make an HTTP request"
    config_model = ApiCallConfig

    async def execute(self, ctx: NodeContext, config: ApiCallConfig) -> NodeResult:
        client = ctx.services.http_client
        if client is None:
            raise NodeExecutionError(
                "No HTTP client configured",
                node_id=ctx.node.id,
                node_type=self.node_type,
            )

        url = ctx.render(config.url)
        method = config.method.upper()
        headers = {**DEFAULT_HEADERS, **ctx.render(config.headers)}
        body = ctx.render(config.body)

        try:
            response = await client.call(
                url,
                method=method,
                headers=headers,
                body=body,
                timeout=config.timeout,
            )
        except httpx.HTTPError as e:
            raise NodeExecutionError(
                f"Failed to make API call: {e}",
                node_id=ctx.node.id,
                node_type=self.node_type,
            ) from e

        return NodeResult(output={
            "url": url,
            "method": method,
            "status": response.status,
            "status_text": response.status_text,
            "data": response.data,
            "message": "API call completed successfully",
        })
