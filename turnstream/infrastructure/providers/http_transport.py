from typing import Dict, Any, List, Optional, AsyncIterator
import codecs
import json
import httpx
import structlog

from turnstream.domain.errors import TransportError
from turnstream.domain.models.stream_events import DirectCaller, ProgrammaticCaller
from turnstream.domain.models.turn_state import Message
from turnstream.domain.orchestration.core.provider_transport import ProviderTransport, ToolDispatcher, TurnRequest
from turnstream.domain.tool.tool_models import ToolCall, ToolCallResult

logger = structlog.get_logger(__name__)


class ToolCallCollector:
    """Reassembles streamed ``delta.tool_calls`` fragments from ``data:`` records"""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._calls: Dict[int, Dict[str, Any]] = {}

    def feed(self, chunk: bytes):
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            self._feed_line(line.strip())

    def _feed_line(self, line: str):
        if not line.startswith("data:"):
            return
        payload = line[len("data:"):].strip()
        if not payload or payload == "[DONE]":
            return
        try:
            record = json.loads(payload)
        except ValueError:
            return
        choices = record.get("choices") if isinstance(record, dict) else None
        if not choices or not isinstance(choices[0], dict):
            return
        delta = choices[0].get("delta") or {}
        for fragment in delta.get("tool_calls") or []:
            if not isinstance(fragment, dict):
                continue
            entry = self._calls.setdefault(fragment.get("index", 0), {"arguments": ""})
            if fragment.get("id"):
                entry["id"] = fragment["id"]
            if fragment.get("caller"):
                entry["caller"] = fragment["caller"]
            function = fragment.get("function") or {}
            if function.get("name"):
                entry["name"] = function["name"]
            entry["arguments"] += function.get("arguments") or ""

    def calls(self) -> List[ToolCall]:
        calls = []
        for index in sorted(self._calls):
            entry = self._calls[index]
            if not entry.get("name"):
                continue
            try:
                arguments = json.loads(entry["arguments"]) if entry["arguments"] else {}
            except ValueError:
                logger.warning("Unparseable tool call arguments", tool_name=entry["name"])
                arguments = {}
            caller = entry.get("caller") or {}
            fields = {
                "name": entry["name"],
                "input": arguments if isinstance(arguments, dict) else {},
                "caller": ProgrammaticCaller(tool_id=caller["tool_id"])
                if caller.get("tool_id") else DirectCaller(),
            }
            if entry.get("id"):
                fields["call_id"] = entry["id"]
            calls.append(ToolCall(**fields))
        return calls


def to_provider_message(message: Message) -> Dict[str, Any]:
    data: Dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.attachments:
        data["attachments"] = [attachment.model_dump(exclude_none=True) for attachment in message.attachments]
    return data


def tool_round_messages(calls: List[ToolCall], results: List[ToolCallResult]) -> List[Dict[str, Any]]:
    """Assistant tool-call message followed by one tool message per result"""
    messages: List[Dict[str, Any]] = [{
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": call.call_id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.input)},
            }
            for call in calls
        ],
    }]
    for result in results:
        content: Any = result.result
        if result.content_blocks:
            content = result.content_blocks
        messages.append({"role": "tool", "tool_call_id": result.call.call_id, "content": content})
    return messages


class HttpProviderTransport(ProviderTransport):
    """Streams a chat-completions style provider over HTTP and runs its tool loop"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_tool_rounds: int = 8,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.max_tool_rounds = max_tool_rounds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream(self, request: TurnRequest, dispatcher: ToolDispatcher) -> AsyncIterator[bytes]:
        messages = [to_provider_message(message) for message in request.messages if not message.is_error]
        for round_index in range(self.max_tool_rounds + 1):
            body: Dict[str, Any] = {"messages": messages, "stream": True}
            if request.tools:
                body["tools"] = request.tools
            if request.container_id:
                body["container_id"] = request.container_id

            collector = ToolCallCollector()
            async for chunk in self._post(body):
                collector.feed(chunk)
                yield chunk

            calls = collector.calls()
            if not calls:
                return
            logger.info("Provider requested tools", round=round_index, tools=[call.name for call in calls])
            results = await dispatcher(calls)
            messages = messages + tool_round_messages(calls, results)

        logger.warning("Tool round limit reached", max_tool_rounds=self.max_tool_rounds)

    async def _post(self, body: Dict[str, Any]) -> AsyncIterator[bytes]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                async with client.stream("POST", self.base_url, json=body, headers=self._headers()) as response:
                    if response.status_code >= 400:
                        detail = (await response.aread()).decode("utf-8", errors="replace")
                        raise TransportError(
                            f"Provider returned HTTP {response.status_code}: {detail[:200]}",
                            status_code=response.status_code,
                        )
                    async for chunk in response.aiter_bytes():
                        yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"Provider connection failed: {e}") from e
