from typing import Dict, Any, Optional, List, Union
from abc import ABC, abstractmethod
from enum import Enum
import codecs
import json
import re
import structlog
from pydantic import ValidationError

from turnstream.domain.models.stream_events import (
    Delta, ContentDelta, ReasoningDelta, ImageDelta, CitationDelta,
    ToolEventDelta, ContainerIdDelta, MetaDelta, ToolEvent,
    WebSearchCitation, citation_adapter
)
from turnstream.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


class WireFormat(str, Enum):
    """Provider stream token shape"""
    RECORDS = "records"
    INLINE_TAGS = "inline_tags"


class FrameReader(ABC):
    """Reassembles protocol tokens from arbitrarily split transport chunks.

    One instance per in-flight turn. The carry-over buffer is the only state
    kept between calls to ``feed``.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.dropped_frames = 0

    def feed(self, chunk: Union[bytes, str]) -> List[Delta]:
        """Consume one transport chunk and return every delta it completes"""
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text
        return self._drain()

    def flush(self) -> List[Delta]:
        """End of stream: discard any token that never closed"""
        residual = self._buffer + self._decoder.decode(b"", final=True)
        if residual:
            logger.debug("Discarding unterminated frame at end of stream",
                         reader=type(self).__name__,
                         residual_length=len(residual))
        self.reset()
        return []

    def reset(self):
        """Drop buffered state without emitting it (used on cancellation)"""
        self._decoder.reset()
        self._buffer = ""

    def _drop(self, reason: str, frame: str):
        self.dropped_frames += 1
        metrics.increment_counter("frames.dropped", tags={"reason": reason})
        logger.debug("Dropped malformed frame", reason=reason, frame=frame[:200])

    @abstractmethod
    def _drain(self) -> List[Delta]:
        """Emit deltas for every complete token in the buffer, keeping the rest"""


class InlineTagFrameReader(FrameReader):
    """Free text with embedded ``<kind:payload>`` tokens"""

    # image_partial must precede image so the alternation matches the longer name
    TAG_KINDS = (
        "thinking", "image_partial", "image", "citation", "response_id",
        "summary_text", "incomplete", "revised_prompt",
    )
    META_KINDS = ("response_id", "summary_text", "incomplete", "revised_prompt")

    TAG_PATTERN = re.compile(r"<(" + "|".join(TAG_KINDS) + r"):([^>]*)>")
    OPENERS = tuple(f"<{kind}:" for kind in TAG_KINDS)

    def _drain(self) -> List[Delta]:
        deltas: List[Delta] = []
        position = 0
        for match in self.TAG_PATTERN.finditer(self._buffer):
            if match.start() > position:
                deltas.append(ContentDelta(text=self._buffer[position:match.start()]))
            delta = self._decode_tag(match.group(1), match.group(2), match.group(0))
            if delta is not None:
                deltas.append(delta)
            position = match.end()

        # Text after the last closed tag is emitted up to a possible opener, which is held
        tail = self._buffer[position:]
        hold = self._hold_index(tail)
        if hold > 0:
            deltas.append(ContentDelta(text=tail[:hold]))
        self._buffer = tail[hold:]
        return deltas

    def _hold_index(self, tail: str) -> int:
        """Index of the first '<' that opens, or may still open, a tag"""
        index = tail.find("<")
        while index != -1:
            candidate = tail[index:]
            for opener in self.OPENERS:
                # Either a full opener, or a prefix of one cut by the chunk boundary
                if candidate.startswith(opener) or opener.startswith(candidate):
                    return index
            index = tail.find("<", index + 1)
        return len(tail)

    def _decode_tag(self, kind: str, payload: str, raw: str) -> Optional[Delta]:
        if not payload:
            self._drop("empty_tag", raw)
            return None
        if kind == "thinking":
            return ReasoningDelta(text=payload)
        if kind == "image":
            return ImageDelta(url=payload.strip())
        if kind == "image_partial":
            return ImageDelta(url=payload.strip(), partial=True)
        if kind == "citation":
            citation = self._decode_citation(payload)
            if citation is None:
                self._drop("bad_citation", raw)
                return None
            return CitationDelta(citation=citation)
        return MetaDelta(key=kind, value=payload)

    @staticmethod
    def _decode_citation(payload: str):
        try:
            data = json.loads(payload)
        except ValueError:
            return None
        return parse_citation(data)


class RecordFrameReader(FrameReader):
    """Newline-delimited ``data:`` records carrying JSON objects"""

    PREFIX = "data:"
    DONE = "[DONE]"

    def _drain(self) -> List[Delta]:
        lines = self._buffer.split("\n")
        # Last line may be partial; keep it for the next chunk
        self._buffer = lines.pop()
        deltas: List[Delta] = []
        for line in lines:
            deltas.extend(self._decode_line(line))
        return deltas

    def _decode_line(self, line: str) -> List[Delta]:
        line = line.strip()
        if not line.startswith(self.PREFIX):
            return []
        payload = line[len(self.PREFIX):].strip()
        # Keep-alive and end markers carry no deltas
        if not payload or payload == self.DONE:
            return []
        try:
            record = json.loads(payload)
        except ValueError:
            self._drop("bad_json", payload)
            return []
        if not isinstance(record, dict):
            self._drop("not_an_object", payload)
            return []
        return decode_record(record)


def parse_citation(data: Any):
    """Decode a citation object, or None if it is not one"""
    if not isinstance(data, dict):
        return None
    try:
        if "type" in data:
            return citation_adapter.validate_python(data)
        if isinstance(data.get("url"), str) and data["url"]:
            return WebSearchCitation(
                url=data["url"],
                title=data.get("title") or "",
                cited_text=data.get("content") or data.get("cited_text") or "",
            )
    except ValidationError:
        return None
    return None


def decode_record(record: Dict[str, Any]) -> List[Delta]:
    """Decode one structured record into zero or more deltas.

    Order within a record: container id, reasoning, content, images,
    tool event, citations. A top-level error short-circuits everything else.
    """
    error = record.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return [MetaDelta(key="error", value=message or "Provider stream error")]

    deltas: List[Delta] = []
    container_id = record.get("containerId")
    if isinstance(container_id, str) and container_id:
        deltas.append(ContainerIdDelta(container_id=container_id))

    choices = record.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return deltas
    choice = choices[0]
    delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}

    reasoning = delta.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        deltas.append(ReasoningDelta(text=reasoning))
    elif isinstance(delta.get("reasoning_details"), list):
        for detail in delta["reasoning_details"]:
            if not isinstance(detail, dict):
                continue
            if detail.get("type") == "reasoning.text":
                text = detail.get("text")
            elif detail.get("type") == "reasoning.summary":
                text = detail.get("summary")
            else:
                continue
            if isinstance(text, str) and text:
                deltas.append(ReasoningDelta(text=text))

    content = delta.get("content")
    if not isinstance(content, str) or not content:
        content = message.get("content")
    if isinstance(content, str) and content:
        deltas.append(ContentDelta(text=content))

    for image in delta.get("images") or []:
        if not isinstance(image, dict):
            continue
        image_url = image.get("image_url")
        url = image_url.get("url") if isinstance(image_url, dict) else image.get("url")
        if isinstance(url, str) and url:
            deltas.append(ImageDelta(url=url, partial=bool(image.get("partial", False))))

    tool_use = delta.get("tool_use")
    if isinstance(tool_use, dict):
        try:
            deltas.append(ToolEventDelta(event=ToolEvent.from_wire(tool_use)))
        except ValidationError as e:
            logger.debug("Dropped malformed tool_use field", error=str(e))

    for raw in delta.get("citations") or []:
        citation = parse_citation(raw)
        if citation is not None:
            deltas.append(CitationDelta(citation=citation))

    return deltas


def create_frame_reader(wire_format: Union[WireFormat, str]) -> FrameReader:
    """Select the reader strategy by configuration"""
    wire_format = WireFormat(wire_format)
    if wire_format == WireFormat.INLINE_TAGS:
        return InlineTagFrameReader()
    return RecordFrameReader()


def coalesce_deltas(deltas: List[Delta]) -> List[Delta]:
    """Merge adjacent content deltas; other deltas are kept as-is"""
    merged: List[Delta] = []
    for delta in deltas:
        if isinstance(delta, ContentDelta) and merged and isinstance(merged[-1], ContentDelta):
            merged[-1] = ContentDelta(text=merged[-1].text + delta.text)
        else:
            merged.append(delta)
    return merged
