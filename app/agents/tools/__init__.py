from app.agents.tools.contracts import DEFAULT_TOOL_FEEDBACK, ChatTool, ToolEventSink, ToolFeedback
from app.agents.tools.registry import ToolRegistry, build_tool_registry, default_tools

__all__ = [
    "ChatTool",
    "ToolEventSink",
    "ToolFeedback",
    "DEFAULT_TOOL_FEEDBACK",
    "ToolRegistry",
    "build_tool_registry",
    "default_tools",
]
