from typing import Optional


class TurnstreamError(Exception):
    """Base class for runtime errors raised by turnstream"""


class TurnInProgressError(TurnstreamError):
    """Raised when a turn is submitted while another one is still streaming"""

    def __init__(self, conversation_id: str):
        super().__init__(f"A turn is already streaming for conversation {conversation_id}")
        self.conversation_id = conversation_id


class TransportError(TurnstreamError):
    """Connection drop or non-success status from the provider transport"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnknownToolError(TurnstreamError):
    """Raised by the registry when a tool name is not registered"""

    def __init__(self, tool_name: str, available: Optional[list] = None):
        available = available or []
        listing = ", ".join(available) if available else "none"
        super().__init__(f'Unknown tool "{tool_name}". Available tools are: {listing}')
        self.tool_name = tool_name


class ToolInputError(TurnstreamError):
    """Tool input failed schema validation"""
