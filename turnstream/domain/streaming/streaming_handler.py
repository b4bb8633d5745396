from typing import Dict, Any, List, Callable, Union
import structlog

from turnstream.domain.models.stream_events import Delta
from turnstream.domain.models.turn_state import AccumulatedState
from turnstream.domain.streaming.frame_reader import FrameReader
from turnstream.domain.streaming.turn_accumulator import TurnAccumulator

logger = structlog.get_logger(__name__)

SNAPSHOT_EVENT = "snapshot"

ChannelItem = Union[bytes, str, Delta]


class StreamingHandler:
    """Feeds one turn's channel items through the frame reader and accumulator"""

    def __init__(self, session_id: str, reader: FrameReader, accumulator: TurnAccumulator):
        self.session_id = session_id
        self.reader = reader
        self.accumulator = accumulator
        self.event_handlers: Dict[str, List[Callable]] = {}
        self.deltas_applied = 0

    @property
    def state(self) -> AccumulatedState:
        return self.accumulator.state

    async def handle_item(self, item: ChannelItem) -> AccumulatedState:
        """Apply one channel item; raw chunks are tokenized, deltas applied directly"""
        if isinstance(item, (bytes, str)):
            deltas = self.reader.feed(item)
        else:
            deltas = [item]
        for delta in deltas:
            await self.apply_delta(delta)
        return self.accumulator.state

    async def apply_delta(self, delta: Delta) -> AccumulatedState:
        state = self.accumulator.apply(delta)
        self.deltas_applied += 1
        await self.emit_custom_event(self.session_id, SNAPSHOT_EVENT, state)
        return state

    async def finish(self) -> AccumulatedState:
        """Stream ended normally: flush the reader"""
        for delta in self.reader.flush():
            await self.apply_delta(delta)
        logger.debug("Stream finished",
                     session_id=self.session_id,
                     deltas_applied=self.deltas_applied,
                     dropped_frames=self.reader.dropped_frames)
        return self.accumulator.state

    def cancel(self):
        """Discard any buffered partial token without flushing it"""
        self.reader.reset()

    def register_event_handler(self, event_type: str, handler: Callable):
        """Register a custom event handler"""

        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

    async def emit_custom_event(self, session_id: str, event_type: str, data: Any):
        """Emit a custom event to registered handlers"""

        if event_type in self.event_handlers:
            for handler in self.event_handlers[event_type]:
                try:
                    await handler(session_id, data)
                except Exception as e:
                    logger.error("Error in event handler",
                               event_type=event_type,
                               error=str(e))
