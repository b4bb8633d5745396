from typing import Any, Awaitable, Callable, List, Optional
import asyncio
import inspect
import time
import structlog

from turnstream.domain.errors import ToolInputError, UnknownToolError
from turnstream.domain.models.stream_events import ToolEvent, ToolEventStatus
from turnstream.domain.tool.tool_models import ToolCall, ToolCallResult, ToolDescriptor, ToolOutput
from turnstream.domain.tool.tool_registry import ToolRegistry
from turnstream.domain.tool.tool_validator import ToolParameterValidator
from turnstream.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

EventSink = Callable[[ToolEvent], Awaitable[Any]]

DEFAULT_PROVIDER = "Tool execution"


class ToolExecutor:
    """Executes tool calls and reports start/end lifecycle events.

    Failures never propagate past ``dispatch``: they become a
    ``"<provider> error: <message>"`` result so the model can react.
    """

    def __init__(self, registry: ToolRegistry, event_sink: Optional[EventSink] = None, session_id: str = ""):
        self.registry = registry
        self.event_sink = event_sink
        self.session_id = session_id

    async def dispatch(self, call: ToolCall) -> ToolCallResult:
        """Run one tool call and emit its start and end events"""
        await self._emit(ToolEvent(
            name=call.name,
            status=ToolEventStatus.START,
            input=call.input,
            caller=call.caller,
            call_id=call.call_id,
        ))

        start_time = time.perf_counter()
        provider = DEFAULT_PROVIDER
        payload = None
        content_blocks = []
        success = True
        error = None
        try:
            tool = self.registry.get_tool(call.name)
            provider = tool.provider
            output = await self._invoke(tool, call)
            if isinstance(output, ToolOutput):
                result, payload, content_blocks = output.result, output.payload, output.content_blocks
            else:
                result = str(output)
        except (UnknownToolError, ToolInputError) as e:
            success, error = False, str(e)
            result = f"{provider} error: {e}"
        except Exception as e:
            logger.exception("Tool execution failed", tool_name=call.name)
            success, error = False, str(e)
            result = f"{provider} error: {e}"

        duration_ms = (time.perf_counter() - start_time) * 1000
        agent_logger.log_tool_execution(
            tool_name=call.name,
            session_id=self.session_id,
            input_data=call.input,
            output_data={"result": result[:500]},
            duration_ms=duration_ms,
            success=success,
            error=error
        )
        metrics.record_latency("tool_execution", duration_ms, tags={"tool": call.name})

        end_event = ToolEvent(
            name=call.name,
            status=ToolEventStatus.END,
            input=call.input,
            result=result,
            caller=call.caller,
            payload=payload,
            call_id=call.call_id,
        )
        await self._emit(end_event)
        return ToolCallResult(call=call, event=end_event, content_blocks=content_blocks, success=success)

    async def dispatch_many(self, calls: List[ToolCall]) -> List[ToolCallResult]:
        """Fan out independent calls; events interleave in completion order"""
        return list(await asyncio.gather(*(self.dispatch(call) for call in calls)))

    async def _invoke(self, tool: ToolDescriptor, call: ToolCall):
        validation = ToolParameterValidator.validate_tool_call(tool, call.input)
        if not validation.is_valid:
            raise ToolInputError("; ".join(validation.errors))
        output = tool.execute(call.input)
        if inspect.isawaitable(output):
            output = await output
        return output

    async def _emit(self, event: ToolEvent):
        if self.event_sink is not None:
            await self.event_sink(event)
