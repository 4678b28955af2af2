"""Tools module - tool contract, registry, function tools and bridge adapters."""

from .base import BaseTool, ToolDescriptor, ToolResult
from .registry import ToolRegistry
from .function import FunctionTool, schema_from_signature, tool
from .bridge import BridgeTool, ToolBridge, load_bridge_tools

__all__ = [
    # Base
    "BaseTool",
    "ToolDescriptor",
    "ToolResult",
    # Registry
    "ToolRegistry",
    # Function tools
    "FunctionTool",
    "schema_from_signature",
    "tool",
    # Bridge
    "BridgeTool",
    "ToolBridge",
    "load_bridge_tools",
]
