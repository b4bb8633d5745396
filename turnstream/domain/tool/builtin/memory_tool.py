from typing import Dict, Any, Optional

from turnstream.domain.context.memory.memory_store import MemoryCommand, MemoryStore
from turnstream.domain.tool.tool_models import ToolDescriptor, ToolOutput

AUTH_REQUIRED_MESSAGE = "Memory tool requires authentication. Please log in to use persistent memory."

MEMORY_TOOL_SCHEMA = {
    "type": "object",
    "properties": {
        "command": {
            "type": "string",
            "enum": [command.value for command in MemoryCommand],
            "description": "The memory operation to perform.",
        },
        "path": {
            "type": "string",
            "description": 'Path to the file or directory (e.g. "/memories" or "/memories/notes.txt").',
        },
        "view_range": {
            "type": "array",
            "items": {"type": "integer"},
            "minItems": 2,
            "maxItems": 2,
            "description": "For view: [start_line, end_line] to view specific lines.",
        },
        "file_text": {"type": "string", "description": "For create: the content to write to the file."},
        "old_str": {"type": "string", "description": "For str_replace: the text to find and replace."},
        "new_str": {"type": "string", "description": "For str_replace: the replacement text."},
        "insert_line": {"type": "integer", "description": "For insert: the line number to insert at (1-indexed)."},
        "insert_text": {"type": "string", "description": "For insert: the text to insert."},
        "old_path": {"type": "string", "description": "For rename: the current path of the file or directory."},
        "new_path": {"type": "string", "description": "For rename: the new path for the file or directory."},
    },
    "required": ["command"],
    "additionalProperties": False,
}


def create_memory_tool(store: Optional[MemoryStore], user_id: Optional[str]) -> ToolDescriptor:
    """Memory tool bound to one user; unauthenticated callers get an explanatory result"""

    async def run_memory(tool_input: Dict[str, Any]) -> ToolOutput:
        if store is None or not user_id:
            return ToolOutput(result=AUTH_REQUIRED_MESSAGE)

        result = await store.execute(user_id, tool_input)
        if not result.success:
            # Prefixed so the model can tell a failed command from file content
            return ToolOutput(result=f"Error: {result.error or 'Unknown memory operation error'}")

        blocks = [result.search_result.model_dump()] if result.search_result else []
        return ToolOutput(result=result.content, content_blocks=blocks)

    return ToolDescriptor(
        name="memory",
        description=(
            "Persistent memory storage for saving and retrieving information across conversations. "
            "Use this tool to store notes, track progress, remember user preferences, and maintain "
            f"context across sessions. The memory is organized as files in a "
            f"{store.namespace if store else '/memories'} directory."
        ),
        input_schema=MEMORY_TOOL_SCHEMA,
        eager=True,
        provider="Memory tool",
        category="memory",
        execute=run_memory,
    )
