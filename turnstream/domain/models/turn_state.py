from typing import Dict, Any, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum
import uuid

from .stream_events import Citation, ToolEvent, WireModel


class TurnStatus(str, Enum):
    """Turn lifecycle status"""
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


class MessageRole(str, Enum):
    """Message author role"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ImageRef(WireModel):
    """Reference to a generated image"""
    url: str
    partial: bool = False


class Attachment(BaseModel):
    """Opaque user attachment; encoding happens client-side"""
    type: str = Field(description="Attachment kind (image, file, url_document, ...)")
    url: Optional[str] = Field(None, description="Remote or data URL")
    name: Optional[str] = None
    media_type: Optional[str] = None


class AccumulatedState(BaseModel):
    """Immutable snapshot of everything merged into a turn so far"""
    model_config = ConfigDict(frozen=True)

    content: str = ""
    reasoning: str = ""
    images: Tuple[ImageRef, ...] = ()
    citations: Tuple[Citation, ...] = ()
    tool_events: Tuple[ToolEvent, ...] = ()
    container_id: Optional[str] = None
    thinking_seconds: Optional[int] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @property
    def response_id(self) -> Optional[str]:
        return self.meta.get("response_id")

    @property
    def provider_error(self) -> Optional[str]:
        return self.meta.get("error")

    def to_payload(self) -> Dict[str, Any]:
        """Serialise for application surfaces"""
        return {
            "content": self.content,
            "reasoning": self.reasoning,
            "images": [image.to_wire() for image in self.images],
            "citations": [citation.to_wire() for citation in self.citations],
            "tool_events": [event.to_wire() for event in self.tool_events],
            "container_id": self.container_id,
            "thinking_seconds": self.thinking_seconds,
            "meta": dict(self.meta),
        }


class Message(BaseModel):
    """A conversation message"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    reasoning: Optional[str] = None
    thinking_duration_seconds: Optional[int] = None
    suggestions: Optional[List[str]] = None
    images: List[ImageRef] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    tool_events: List[ToolEvent] = Field(default_factory=list)
    is_error: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Turn(BaseModel):
    """One user-submission-to-final-message cycle"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    messages: List[Message] = Field(default_factory=list, description="History plus the in-progress assistant message")
    status: TurnStatus = Field(default=TurnStatus.PENDING)
    accumulated: AccumulatedState = Field(default_factory=AccumulatedState)
    cancelled: bool = False
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_activity: datetime = Field(default_factory=datetime.utcnow)

    @property
    def assistant_message(self) -> Optional[Message]:
        if self.messages and self.messages[-1].role == MessageRole.ASSISTANT and not self.messages[-1].is_error:
            return self.messages[-1]
        return None

    @property
    def container_id(self) -> Optional[str]:
        return self.accumulated.container_id

    def update_status(self, status: TurnStatus):
        """Update turn status"""
        self.status = status
        self.last_activity = datetime.utcnow()

    def update_accumulated(self, state: AccumulatedState):
        """Mirror a new snapshot into the in-progress assistant message"""
        self.accumulated = state
        self.last_activity = datetime.utcnow()
        message = self.assistant_message
        if message is not None:
            message.content = state.content
            message.reasoning = state.reasoning or None
            message.thinking_duration_seconds = state.thinking_seconds

    def replace_assistant_message(self, message: Message):
        """Swap the in-progress assistant message for the final one"""
        if self.assistant_message is not None:
            self.messages[-1] = message
        else:
            self.messages.append(message)

    def fail(self, error: str):
        """Mark the turn failed and append one synthetic error message"""
        self.error = error
        self.messages.append(Message(role=MessageRole.ASSISTANT, content=error, is_error=True))
        self.update_status(TurnStatus.ERROR)

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "turn_id": self.id,
            "conversation_id": self.conversation_id,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "content_length": len(self.accumulated.content),
            "tool_events": len(self.accumulated.tool_events),
            "container_id": self.accumulated.container_id,
            "error": self.error,
            "last_activity": self.last_activity.isoformat()
        }
