from typing import Callable, Iterable, Optional
import math
import time
import structlog

from turnstream.domain.models.stream_events import (
    Delta, ContentDelta, ReasoningDelta, ImageDelta, CitationDelta,
    ToolEventDelta, ContainerIdDelta, MetaDelta, ToolEvent, ToolEventStatus,
    citation_key
)
from turnstream.domain.models.turn_state import AccumulatedState, ImageRef, Message, MessageRole
from turnstream.domain.streaming.suggestions import DEFAULT_MARKER, parse_suggestions

logger = structlog.get_logger(__name__)

MAX_IMAGES = 1


def non_overlapping_suffix(existing: str, incoming: str) -> str:
    """Part of `incoming` not already covered by a suffix of `existing`"""
    for size in range(min(len(existing), len(incoming)), 0, -1):
        if existing.endswith(incoming[:size]):
            return incoming[size:]
    return incoming


class TurnAccumulator:
    """Merges deltas into one immutable snapshot per applied delta"""

    def __init__(self, started_at: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.started_at = started_at if started_at is not None else clock()
        self.state = AccumulatedState()

    def apply(self, delta: Delta) -> AccumulatedState:
        """Merge one delta and return the new snapshot"""
        state = self.state
        if isinstance(delta, ContentDelta):
            state = self._apply_content(state, delta)
        elif isinstance(delta, ReasoningDelta):
            remainder = non_overlapping_suffix(state.reasoning, delta.text)
            if remainder:
                state = state.model_copy(update={"reasoning": state.reasoning + remainder})
        elif isinstance(delta, ImageDelta):
            state = self._apply_image(state, delta)
        elif isinstance(delta, CitationDelta):
            key = citation_key(delta.citation)
            if all(citation_key(existing) != key for existing in state.citations):
                state = state.model_copy(update={"citations": state.citations + (delta.citation,)})
        elif isinstance(delta, ToolEventDelta):
            state = state.model_copy(update={"tool_events": merge_tool_event(state.tool_events, delta.event)})
        elif isinstance(delta, ContainerIdDelta):
            state = state.model_copy(update={"container_id": delta.container_id})
        elif isinstance(delta, MetaDelta):
            state = state.model_copy(update={"meta": {**state.meta, delta.key: delta.value}})
        else:
            logger.warning("Ignoring unknown delta", delta_type=type(delta).__name__)
        self.state = state
        return state

    def apply_all(self, deltas: Iterable[Delta]) -> AccumulatedState:
        for delta in deltas:
            self.apply(delta)
        return self.state

    def _apply_content(self, state: AccumulatedState, delta: ContentDelta) -> AccumulatedState:
        if not delta.text:
            return state
        update = {"content": state.content + delta.text}
        # Frozen on the first empty -> non-empty content transition
        if not state.content and state.reasoning and state.thinking_seconds is None:
            elapsed = self._clock() - self.started_at
            update["thinking_seconds"] = max(0, math.floor(elapsed))
        return state.model_copy(update=update)

    @staticmethod
    def _apply_image(state: AccumulatedState, delta: ImageDelta) -> AccumulatedState:
        if any(image.url == delta.url for image in state.images):
            return state
        images = (state.images + (ImageRef(url=delta.url, partial=delta.partial),))[:MAX_IMAGES]
        if images == state.images:
            return state
        return state.model_copy(update={"images": images})


def merge_tool_event(events: tuple, incoming: ToolEvent) -> tuple:
    """Replace the matching unmatched start with an end event, else append"""
    if incoming.status == ToolEventStatus.END:
        index = _find_open_start(events, incoming)
        if index is not None:
            return events[:index] + (incoming,) + events[index + 1:]
    return events + (incoming,)


def _find_open_start(events: tuple, incoming: ToolEvent) -> Optional[int]:
    candidates = [
        index for index, event in enumerate(events)
        if event.name == incoming.name and event.status == ToolEventStatus.START
    ]
    if not candidates:
        return None
    if incoming.call_id is not None:
        for index in candidates:
            if events[index].call_id == incoming.call_id:
                return index
    return candidates[0]


def build_final_message(
    state: AccumulatedState,
    message_id: Optional[str] = None,
    marker: str = DEFAULT_MARKER
) -> Message:
    """Final assistant message with suggestions split off the content"""
    content, suggestions = parse_suggestions(state.content, marker)
    fields = dict(
        role=MessageRole.ASSISTANT,
        content=content,
        reasoning=state.reasoning or None,
        thinking_duration_seconds=state.thinking_seconds,
        suggestions=suggestions,
        images=list(state.images),
        citations=list(state.citations),
        tool_events=list(state.tool_events),
    )
    if message_id is not None:
        fields["id"] = message_id
    return Message(**fields)
