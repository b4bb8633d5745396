from typing import Dict, List, Any, Optional, Iterable
import structlog

from turnstream.domain.errors import UnknownToolError
from turnstream.domain.tool.tool_models import ToolDescriptor

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self, tools: Optional[Iterable[ToolDescriptor]] = None):
        self.tools: Dict[str, ToolDescriptor] = {}
        self.tool_categories: Dict[str, List[str]] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDescriptor):
        """Register a new tool, replacing any tool with the same name"""

        if tool.name in self.tools:
            logger.warning("Replacing registered tool", tool_name=tool.name)
            self.unregister_tool(tool.name)

        self.tools[tool.name] = tool

        if tool.category not in self.tool_categories:
            self.tool_categories[tool.category] = []
        self.tool_categories[tool.category].append(tool.name)
        logger.debug("Tool registered", tool_name=tool.name, eager=tool.eager, category=tool.category)

    def unregister_tool(self, name: str):
        tool = self.tools.pop(name, None)
        if tool is not None:
            self.tool_categories[tool.category].remove(name)

    def get_tool(self, name: str) -> ToolDescriptor:
        """Look up a tool by name"""

        tool = self.tools.get(name)
        if tool is None:
            raise UnknownToolError(name, sorted(self.tools))
        return tool

    def get_available_tools(self, selected_toolkits: Optional[List[str]] = None) -> List[ToolDescriptor]:
        """Get all available tools, optionally limited to names with a selected prefix"""

        tools = list(self.tools.values())
        if selected_toolkits is not None:
            tools = [
                tool for tool in tools
                if any(tool.name == prefix or tool.name.startswith(prefix) for prefix in selected_toolkits)
            ]
        return tools

    def get_tools_by_category(self, category: str) -> List[ToolDescriptor]:
        """Get tools by category"""

        names = self.tool_categories.get(category, [])
        return [self.tools[name] for name in names if name in self.tools]

    def search_tools(self, query: str, deferred_only: bool = True) -> List[ToolDescriptor]:
        """Search tools by name or description"""

        query_lower = query.lower()
        matching_tools = []

        for tool in self.tools.values():
            if deferred_only and tool.eager:
                continue
            if query_lower in tool.name.lower() or query_lower in tool.description.lower():
                matching_tools.append(tool)

        return matching_tools

    def definitions(
        self,
        enable_tool_search: bool = True,
        selected_toolkits: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Provider-facing schemas for every available tool"""

        return [
            tool.get_definition(enable_tool_search)
            for tool in self.get_available_tools(selected_toolkits)
        ]
