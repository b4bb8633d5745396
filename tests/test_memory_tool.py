"""Tests for the memory store exposed as a dispatchable tool."""

from turnstream.domain.models.stream_events import ToolEventStatus
from turnstream.domain.tool.builtin.memory_tool import AUTH_REQUIRED_MESSAGE, create_memory_tool
from turnstream.domain.tool.tool_executor import ToolExecutor
from turnstream.domain.tool.tool_models import ToolCall
from turnstream.domain.tool.tool_registry import ToolRegistry


def executor_for(tool, sink=None) -> ToolExecutor:
    return ToolExecutor(ToolRegistry([tool]), event_sink=sink)


class TestMemoryTool:
    async def test_create_then_view_through_dispatch(self, memory_store):
        executor = executor_for(create_memory_tool(memory_store, "user-1"))

        created = await executor.dispatch(ToolCall(
            name="memory",
            input={"command": "create", "path": "/memories/prefs.md", "file_text": "likes tea"},
        ))
        viewed = await executor.dispatch(ToolCall(
            name="memory",
            input={"command": "view", "path": "/memories/prefs.md"},
        ))

        assert created.result == "File created: /memories/prefs.md"
        assert viewed.result == "     1\tlikes tea"
        assert viewed.content_blocks == [{
            "type": "search_result",
            "source": "/memories/prefs.md",
            "title": "prefs.md",
            "content": [{"type": "text", "text": "likes tea"}],
            "citations": {"enabled": True},
        }]

    async def test_store_failure_is_prefixed_error_text(self, memory_store):
        executor = executor_for(create_memory_tool(memory_store, "user-1"))

        outcome = await executor.dispatch(ToolCall(
            name="memory",
            input={"command": "delete", "path": "/memories/nothing"},
        ))

        assert outcome.result == "Error: File or directory not found: /memories/nothing"
        assert outcome.event.status == ToolEventStatus.END

    async def test_unauthenticated_caller(self, memory_store):
        executor = executor_for(create_memory_tool(memory_store, None))

        outcome = await executor.dispatch(ToolCall(name="memory", input={"command": "view"}))

        assert outcome.result == AUTH_REQUIRED_MESSAGE
        assert await memory_store.list_files("") == []

    async def test_schema_rejects_unknown_fields(self, memory_store):
        executor = executor_for(create_memory_tool(memory_store, "user-1"))

        outcome = await executor.dispatch(ToolCall(name="memory", input={"command": "view", "mode": "x"}))

        assert outcome.success is False
        assert outcome.result.startswith("Memory tool error: Schema validation failed")

    async def test_view_range_must_be_a_pair(self, memory_store):
        executor = executor_for(create_memory_tool(memory_store, "user-1"))

        outcome = await executor.dispatch(ToolCall(
            name="memory",
            input={"command": "view", "path": "/memories/a", "view_range": [1]},
        ))

        assert outcome.result.startswith("Memory tool error: Schema validation failed")

    def test_descriptor_is_eager(self, memory_store):
        tool = create_memory_tool(memory_store, "user-1")

        assert tool.eager is True
        assert tool.provider == "Memory tool"
        assert "/memories" in tool.description
        assert tool.input_schema["properties"]["command"]["enum"] == [
            "view", "create", "str_replace", "insert", "delete", "rename",
        ]
