"""Tools hosted by the reference tool server."""

from toolchat.server.tools.base import ServerTool, ToolExecutionError
from toolchat.server.tools.file_analyzer import FileAnalyzerTool
from toolchat.server.tools.file_tool import FileTool
from toolchat.server.tools.web_search import WebSearchTool


def default_tools() -> list[ServerTool]:
    """The tools a freshly started server exposes."""
    return [FileAnalyzerTool(), FileTool(), WebSearchTool()]


__all__ = [
    "FileAnalyzerTool",
    "FileTool",
    "ServerTool",
    "ToolExecutionError",
    "WebSearchTool",
    "default_tools",
]
