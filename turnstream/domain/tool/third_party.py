from typing import Dict, Any, Optional, Callable, Awaitable
import json
import httpx
import structlog

from turnstream.domain.tool.tool_models import ToolDescriptor

logger = structlog.get_logger(__name__)

ServiceCall = Callable[[Dict[str, Any]], Awaitable[Any]]


class ThirdPartyTool:
    """Wraps an external service call behind the uniform tool contract.

    Failures are left to propagate to the dispatch boundary, which turns
    them into ``"<provider> error: <message>"`` results.
    """

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        provider: str,
        call: ServiceCall,
        eager: bool = False,
        category: str = "third_party"
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.provider = provider
        self.eager = eager
        self.category = category
        self._call = call

    async def execute(self, tool_input: Dict[str, Any]) -> str:
        # The service may return structured data; the model always receives text
        result = await self._call(tool_input)
        return format_service_result(result)

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            eager=self.eager,
            provider=self.provider,
            category=self.category,
            execute=self.execute,
        )


class HttpJsonTool(ThirdPartyTool):
    """POSTs the tool input as JSON to a service endpoint"""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        provider: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs
    ):
        super().__init__(name, description, input_schema, provider, self._post, **kwargs)
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self._transport = transport

    async def _post(self, tool_input: Dict[str, Any]) -> Any:
        logger.debug("Calling third-party service", tool_name=self.name, url=self.url)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=tool_input, headers=self.headers)
            # 4xx/5xx raise here and become "<provider> error: ..." at dispatch
            response.raise_for_status()

        # JSON bodies are re-serialised compactly, anything else is returned as text
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            return response.json()
        return response.text


def format_service_result(result: Any) -> str:
    """Strings pass through; anything else is compact JSON"""
    if isinstance(result, str):
        return result
    return json.dumps(result, separators=(",", ":"), ensure_ascii=False, default=str)
