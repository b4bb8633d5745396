from typing import Dict, Any, List, Optional, Callable, Union, Awaitable
from pydantic import BaseModel, ConfigDict, Field
import uuid

from turnstream.domain.models.stream_events import DirectCaller, ToolCaller, ToolEvent, ToolPayload


class ToolOutput(BaseModel):
    """Tool result with an optional specialised payload for the end event"""
    result: str
    payload: Optional[ToolPayload] = None
    content_blocks: List[Dict[str, Any]] = Field(default_factory=list, description="Structured blocks returned to the provider, e.g. search results")


ToolFunction = Callable[[Dict[str, Any]], Union[str, ToolOutput, Awaitable[Union[str, ToolOutput]]]]


class ToolDescriptor(BaseModel):
    """A named, schema-described capability the model may invoke"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    eager: bool = Field(default=True, description="Advertise the full schema on every turn")
    provider: str = Field(default="Tool execution", description="Label used in failure strings")
    category: str = "general"
    execute: ToolFunction

    def get_definition(self, enable_tool_search: bool = True) -> Dict[str, Any]:
        """Provider-facing schema"""
        definition = {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
        if enable_tool_search and not self.eager:
            definition["defer_loading"] = True
        return definition


class ToolCall(BaseModel):
    """A tool-call request issued by the model or by its sandbox"""
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    caller: ToolCaller = Field(default_factory=DirectCaller)
    call_id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


class ToolCallResult(BaseModel):
    """Outcome of one dispatched call"""
    call: ToolCall
    event: ToolEvent
    content_blocks: List[Dict[str, Any]] = Field(default_factory=list)
    success: bool = True

    @property
    def result(self) -> str:
        return self.event.result or ""
