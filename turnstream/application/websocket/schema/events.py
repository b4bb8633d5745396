from typing import Dict, Any, Optional, List, Literal
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from turnstream.domain.models.turn_state import Attachment


class EventType(str, Enum):
    """WebSocket event types"""
    TURN_SNAPSHOT = "turn_snapshot"
    TURN_COMPLETE = "turn_complete"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"
    CANCEL = "cancel"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class TurnSnapshotEvent(BaseEvent):
    """Accumulated state after one applied delta"""
    type: Literal[EventType.TURN_SNAPSHOT] = EventType.TURN_SNAPSHOT
    turn_id: str
    payload: Dict[str, Any]


class TurnCompleteEvent(BaseEvent):
    """Turn ended; carries the final status and messages"""
    type: Literal[EventType.TURN_COMPLETE] = EventType.TURN_COMPLETE
    turn_id: str
    status: str
    cancelled: bool = False
    message: Optional[Dict[str, Any]] = None


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected", "reconnecting"]


class UserMessage(BaseEvent):
    """User message event"""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str
    attachments: Optional[List[Attachment]] = None
    selected_toolkits: Optional[List[str]] = None


class CancelEvent(BaseEvent):
    """Cancel the in-flight turn"""
    type: Literal[EventType.CANCEL] = EventType.CANCEL
