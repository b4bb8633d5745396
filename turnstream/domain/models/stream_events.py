from typing import Dict, Any, Optional, List, Literal, Union, Annotated
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from enum import Enum


class WireModel(BaseModel):
    """Immutable model that reads both snake_case and camelCase wire keys"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Citations

class WebSearchCitation(WireModel):
    """Citation pointing at a web search result"""
    type: Literal["web_search_result_location"] = "web_search_result_location"
    url: str
    title: str = ""
    cited_text: str = ""


class SearchResultCitation(WireModel):
    """Citation into a search-result block (e.g. a memory file view)"""
    type: Literal["search_result_location"] = "search_result_location"
    source: str
    title: Optional[str] = None
    cited_text: str = ""
    search_result_index: int = 0
    start_block_index: int = 0
    end_block_index: int = 0


class CharLocationCitation(WireModel):
    """Character range in a plain text document"""
    type: Literal["char_location"] = "char_location"
    cited_text: str = ""
    document_index: int = 0
    document_title: Optional[str] = None
    start_char_index: int = 0
    end_char_index: int = 0


class PageLocationCitation(WireModel):
    """Page range in a PDF document"""
    type: Literal["page_location"] = "page_location"
    cited_text: str = ""
    document_index: int = 0
    document_title: Optional[str] = None
    start_page_number: int = 1
    end_page_number: int = 1


class ContentBlockLocationCitation(WireModel):
    """Block range in a custom content document"""
    type: Literal["content_block_location"] = "content_block_location"
    cited_text: str = ""
    document_index: int = 0
    document_title: Optional[str] = None
    start_block_index: int = 0
    end_block_index: int = 0


Citation = Annotated[
    Union[
        WebSearchCitation,
        SearchResultCitation,
        CharLocationCitation,
        PageLocationCitation,
        ContentBlockLocationCitation,
    ],
    Field(discriminator="type"),
]

citation_adapter = TypeAdapter(Citation)


def citation_key(citation: Citation) -> str:
    """Provenance-specific dedup key for a citation"""
    if isinstance(citation, WebSearchCitation):
        return citation.url
    if isinstance(citation, SearchResultCitation):
        return citation.source
    return f"{citation.type}:{citation.document_index}:{citation.cited_text[:50]}"


# Tool events

class ToolEventStatus(str, Enum):
    """Tool lifecycle status"""
    START = "start"
    END = "end"


class DirectCaller(WireModel):
    """Tool call issued by the model itself"""
    type: Literal["direct"] = "direct"


class ProgrammaticCaller(WireModel):
    """Tool call issued from a code-execution sandbox on the model's behalf"""
    type: Literal["code_execution_20250825"] = "code_execution_20250825"
    tool_id: str = Field(alias="tool_id")


ToolCaller = Annotated[Union[DirectCaller, ProgrammaticCaller], Field(discriminator="type")]


class BashExecution(WireModel):
    type: Literal["bash"] = "bash"
    command: str
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    return_code: Optional[int] = None


class TextEditorExecution(WireModel):
    type: Literal["text_editor"] = "text_editor"
    command: Literal["view", "create", "str_replace"]
    path: str
    content: Optional[str] = None
    is_file_update: Optional[bool] = None


class CodeExecutionPayload(WireModel):
    """Execution trace of a code-execution tool call"""
    kind: Literal["code_execution"] = "code_execution"
    execution: Annotated[Union[BashExecution, TextEditorExecution], Field(discriminator="type")]


class WebSearchResultItem(WireModel):
    url: str
    title: str = ""
    page_age: Optional[str] = None


class WebSearchPayload(WireModel):
    """Summary of a web search tool call"""
    kind: Literal["web_search"] = "web_search"
    query: str = ""
    results: List[WebSearchResultItem] = Field(default_factory=list)
    error_code: Optional[str] = None


class WebFetchPayload(WireModel):
    """Summary of a web fetch tool call"""
    kind: Literal["web_fetch"] = "web_fetch"
    url: str
    title: Optional[str] = None
    retrieved_at: Optional[str] = None


ToolPayload = Annotated[
    Union[CodeExecutionPayload, WebSearchPayload, WebFetchPayload],
    Field(discriminator="kind"),
]

# Wire key used by the structured-record stream for each payload variant
PAYLOAD_WIRE_KEYS = {
    "code_execution": "codeExecution",
    "web_search": "webSearch",
    "web_fetch": "webFetch",
}


class ToolEvent(WireModel):
    """One start/end lifecycle event of a tool call"""
    name: str
    status: ToolEventStatus
    input: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[str] = None
    caller: ToolCaller = Field(default_factory=DirectCaller)
    payload: Optional[ToolPayload] = None
    call_id: Optional[str] = Field(None, alias="id")

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ToolEvent":
        """Build an event from a `tool_use` record field"""
        fields = {key: value for key, value in data.items() if key not in PAYLOAD_WIRE_KEYS.values()}
        for kind, wire_key in PAYLOAD_WIRE_KEYS.items():
            raw = data.get(wire_key)
            if not isinstance(raw, dict):
                continue
            if kind == "code_execution":
                fields["payload"] = {"kind": kind, "execution": raw}
            else:
                fields["payload"] = {**raw, "kind": kind}
            break
        if fields.get("input") is None:
            fields.pop("input", None)
        if fields.get("caller") is None:
            fields.pop("caller", None)
        return cls.model_validate(fields)

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        payload = data.pop("payload", None)
        if payload is not None:
            kind = payload.pop("kind")
            data[PAYLOAD_WIRE_KEYS[kind]] = payload["execution"] if kind == "code_execution" else payload
        return data


# Deltas

class ContentDelta(WireModel):
    kind: Literal["content"] = "content"
    text: str


class ReasoningDelta(WireModel):
    kind: Literal["reasoning"] = "reasoning"
    text: str


class ImageDelta(WireModel):
    kind: Literal["image"] = "image"
    url: str
    partial: bool = False


class CitationDelta(WireModel):
    kind: Literal["citation"] = "citation"
    citation: Citation


class ToolEventDelta(WireModel):
    kind: Literal["tool_event"] = "tool_event"
    event: ToolEvent


class ContainerIdDelta(WireModel):
    kind: Literal["container_id"] = "container_id"
    container_id: str


class MetaDelta(WireModel):
    kind: Literal["meta"] = "meta"
    key: str
    value: Any = None


Delta = Annotated[
    Union[
        ContentDelta,
        ReasoningDelta,
        ImageDelta,
        CitationDelta,
        ToolEventDelta,
        ContainerIdDelta,
        MetaDelta,
    ],
    Field(discriminator="kind"),
]
