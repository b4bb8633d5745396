from typing import Dict, Any, List, Optional, Callable, Awaitable, Set, Union
import asyncio
import time
import structlog

from turnstream.domain.context.memory.memory_store import MemoryStore
from turnstream.domain.context.state.turn_persistence import InMemoryTurnPersistence, TurnPersistence
from turnstream.domain.errors import TransportError, TurnInProgressError
from turnstream.domain.models.stream_events import Delta, ToolEvent, ToolEventDelta
from turnstream.domain.models.turn_state import (
    AccumulatedState, Attachment, Message, MessageRole, Turn, TurnStatus
)
from turnstream.domain.orchestration.core.provider_transport import ProviderTransport, TurnRequest
from turnstream.domain.streaming.frame_reader import WireFormat, create_frame_reader
from turnstream.domain.streaming.streaming_handler import SNAPSHOT_EVENT, StreamingHandler
from turnstream.domain.streaming.suggestions import DEFAULT_MARKER
from turnstream.domain.streaming.turn_accumulator import TurnAccumulator, build_final_message
from turnstream.domain.tool.builtin.memory_tool import create_memory_tool
from turnstream.domain.tool.tool_executor import ToolExecutor
from turnstream.domain.tool.tool_registry import ToolRegistry
from turnstream.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

SnapshotObserver = Callable[[Turn, AccumulatedState], Awaitable[Any]]


class TurnChannel:
    """Ordered channel shared by provider chunks and tool lifecycle events"""

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._error: Optional[BaseException] = None

    async def put(self, item: Union[bytes, str, Delta]):
        await self._queue.put(item)

    async def put_tool_event(self, event: ToolEvent):
        # Already decoded, so it never passes through the frame reader
        await self._queue.put(ToolEventDelta(event=event))

    def close(self):
        self._queue.put_nowait(self._CLOSED)

    def fail(self, error: BaseException):
        self._error = error
        self.close()

    async def __aiter__(self):
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                if self._error is not None:
                    raise self._error
                return
            yield item


class TurnHandle:
    """Cancellation handle and result for one in-flight turn"""

    def __init__(self, turn: Turn, task: asyncio.Task):
        self.turn = turn
        self._task = task
        self._timeout_handle: Optional[asyncio.TimerHandle] = None

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Abort the transport read loop; the turn keeps its partial state"""
        if self._task.done():
            return False
        self.turn.cancelled = True
        return self._task.cancel()

    def cancel_after(self, seconds: float):
        self._timeout_handle = asyncio.get_running_loop().call_later(seconds, self.cancel)
        self._task.add_done_callback(lambda _: self._timeout_handle.cancel())

    async def result(self) -> Turn:
        """Wait for the turn to end (complete, error or cancelled)"""
        await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            raise self._task.exception()
        return self.turn


class TurnOrchestrator:
    """Runs turns: provider stream, tool dispatch, accumulation and persistence"""

    def __init__(
        self,
        transport: ProviderTransport,
        registry: Optional[ToolRegistry] = None,
        persistence: Optional[TurnPersistence] = None,
        memory_store: Optional[MemoryStore] = None,
        wire_format: Union[WireFormat, str] = WireFormat.RECORDS,
        suggestions_marker: str = DEFAULT_MARKER,
        enable_tool_search: bool = True,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.transport = transport
        self.registry = registry or ToolRegistry()
        self.persistence = persistence or InMemoryTurnPersistence()
        self.memory_store = memory_store
        self.wire_format = WireFormat(wire_format)
        self.suggestions_marker = suggestions_marker
        self.enable_tool_search = enable_tool_search
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.active_turns: Dict[str, TurnHandle] = {}
        # Conversations between the in-progress check and handle registration
        self._reserved: Set[str] = set()

    async def submit_turn(
        self,
        conversation_id: str,
        user_message: str,
        attachments: Optional[List[Attachment]] = None,
        user_id: Optional[str] = None,
        on_snapshot: Optional[SnapshotObserver] = None,
        selected_toolkits: Optional[List[str]] = None
    ) -> TurnHandle:
        """Start a turn; rejects a second submission while one is streaming"""
        active = self.active_turns.get(conversation_id)
        if conversation_id in self._reserved or (active is not None and not active.done):
            raise TurnInProgressError(conversation_id)

        # Hold the conversation across the persistence awaits below
        self._reserved.add(conversation_id)
        try:
            return await self._start_turn(
                conversation_id, user_message, attachments, user_id, on_snapshot, selected_toolkits
            )
        finally:
            self._reserved.discard(conversation_id)

    async def _start_turn(
        self,
        conversation_id: str,
        user_message: str,
        attachments: Optional[List[Attachment]],
        user_id: Optional[str],
        on_snapshot: Optional[SnapshotObserver],
        selected_toolkits: Optional[List[str]]
    ) -> TurnHandle:
        history = await self.persistence.get_history(conversation_id)
        container_id = await self.persistence.get_container_id(conversation_id)

        user = Message(role=MessageRole.USER, content=user_message, attachments=attachments or [])
        placeholder = Message(role=MessageRole.ASSISTANT)
        turn = Turn(conversation_id=conversation_id, messages=[*history, user, placeholder])

        registry = self._turn_registry(user_id, selected_toolkits)
        request = TurnRequest(
            conversation_id=conversation_id,
            turn_id=turn.id,
            messages=[*history, user],
            tools=registry.definitions(self.enable_tool_search),
            container_id=container_id,
        )

        turn.update_status(TurnStatus.STREAMING)
        task = asyncio.create_task(self._run_turn(turn, request, registry, on_snapshot))
        handle = TurnHandle(turn, task)
        if self.timeout_seconds:
            handle.cancel_after(self.timeout_seconds)
        self.active_turns[conversation_id] = handle
        task.add_done_callback(lambda _: self._release(conversation_id, handle))

        agent_logger.log_turn_event("submitted", conversation_id, turn.id, {
            "history_length": len(history),
            "tools": [tool["name"] for tool in request.tools],
            "container_id": container_id,
        })
        return handle

    def cancel_turn(self, conversation_id: str) -> bool:
        """Cancel the streaming turn of a conversation, if any"""
        handle = self.active_turns.get(conversation_id)
        if handle is None:
            return False
        return handle.cancel()

    def _release(self, conversation_id: str, handle: TurnHandle):
        if self.active_turns.get(conversation_id) is handle:
            del self.active_turns[conversation_id]

    def _turn_registry(self, user_id: Optional[str], selected_toolkits: Optional[List[str]]) -> ToolRegistry:
        tools = self.registry.get_available_tools(selected_toolkits)
        if self.memory_store is not None and all(tool.name != "memory" for tool in tools):
            tools.append(create_memory_tool(self.memory_store, user_id))
        return ToolRegistry(tools)

    async def _run_turn(
        self,
        turn: Turn,
        request: TurnRequest,
        registry: ToolRegistry,
        on_snapshot: Optional[SnapshotObserver]
    ):
        structlog.contextvars.bind_contextvars(conversation_id=turn.conversation_id, turn_id=turn.id)
        started = time.perf_counter()

        # One ordered channel carries provider chunks and local tool events
        channel = TurnChannel()
        executor = ToolExecutor(registry, event_sink=channel.put_tool_event, session_id=turn.conversation_id)
        handler = StreamingHandler(
            turn.id,
            create_frame_reader(self.wire_format),
            TurnAccumulator(clock=self._clock),
        )

        async def apply_snapshot(session_id: str, state: AccumulatedState):
            turn.update_accumulated(state)
            if on_snapshot is not None:
                await on_snapshot(turn, state)

        handler.register_event_handler(SNAPSHOT_EVENT, apply_snapshot)

        # Producer: drains the provider stream into the channel, failures included
        async def pump():
            try:
                async for chunk in self.transport.stream(request, executor.dispatch_many):
                    await channel.put(chunk)
            except TransportError as e:
                channel.fail(e)
            except Exception as e:
                logger.exception("Provider transport failed")
                channel.fail(TransportError(str(e) or type(e).__name__))
            else:
                channel.close()

        pump_task = asyncio.create_task(pump())
        try:
            async for item in channel:
                await handler.handle_item(item)
            # Stream closed cleanly: drop any unterminated token, then settle the turn
            state = await handler.finish()
            turn.update_accumulated(state)

            if state.provider_error:
                turn.fail(str(state.provider_error))
            else:
                final = build_final_message(state, turn.assistant_message.id, self.suggestions_marker)
                turn.replace_assistant_message(final)
                turn.update_status(TurnStatus.COMPLETE)

        except TransportError as e:
            turn.fail(str(e))

        except asyncio.CancelledError:
            # Partial state stays on the turn; nothing is persisted
            handler.cancel()
            metrics.increment_counter("turns.cancelled")
            agent_logger.log_turn_event("cancelled", turn.conversation_id, turn.id, turn.get_state_summary())
            raise

        finally:
            if not pump_task.done():
                pump_task.cancel()
            structlog.contextvars.unbind_contextvars("conversation_id", "turn_id")

        # Complete and errored turns are both persisted
        await self.persistence.save_turn(turn, turn.accumulated.container_id)
        metrics.record_latency("turn", (time.perf_counter() - started) * 1000, tags={"status": turn.status.value})
        agent_logger.log_turn_event(turn.status.value, turn.conversation_id, turn.id, turn.get_state_summary())
