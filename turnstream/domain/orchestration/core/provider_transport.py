from typing import Dict, Any, List, Optional, AsyncIterator, Awaitable, Callable
from abc import ABC, abstractmethod
from pydantic import BaseModel, Field

from turnstream.domain.models.turn_state import Message
from turnstream.domain.tool.tool_models import ToolCall, ToolCallResult

ToolDispatcher = Callable[[List[ToolCall]], Awaitable[List[ToolCallResult]]]


class TurnRequest(BaseModel):
    """Everything a provider needs to stream one turn"""
    conversation_id: str
    turn_id: str
    messages: List[Message] = Field(description="History plus the new user message")
    tools: List[Dict[str, Any]] = Field(default_factory=list, description="Provider-facing tool definitions")
    container_id: Optional[str] = Field(None, description="Execution container reused from the previous turn")


class ProviderTransport(ABC):
    """Streams raw provider output for a turn.

    Tool calls requested by the provider are executed through ``dispatcher``,
    which also reports their lifecycle events onto the turn's channel.
    Connection drops and non-success statuses raise ``TransportError``.
    """

    @abstractmethod
    def stream(self, request: TurnRequest, dispatcher: ToolDispatcher) -> AsyncIterator[bytes]:
        """Yield transport chunks in arrival order"""
