"""Adapter for tools defined by an external tool-protocol bridge.

The bridge itself (handshake, transport) lives outside this package. Anything
with async ``list_tools`` and ``call_tool`` methods can be adapted.
"""

from typing import Any, Protocol, runtime_checkable

from relay_agent.errors import BridgeError, ExecutionFailedError, ToolError

from .base import BaseTool, ToolDescriptor, ToolResult


@runtime_checkable
class ToolBridge(Protocol):
    """Discovery and invocation surface of a remote tool server."""

    async def list_tools(self) -> list[ToolDescriptor]:
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str | ToolResult:
        ...


class BridgeTool(BaseTool):
    """One remotely-defined tool exposed through the local tool contract.

    Several adapters share the same bridge instance.
    """

    def __init__(self, bridge: ToolBridge, descriptor: ToolDescriptor) -> None:
        self.bridge = bridge
        self._descriptor = descriptor

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def description(self) -> str:
        return self._descriptor.description

    def parameters_schema(self) -> dict[str, Any]:
        return self._descriptor.input_schema

    def descriptor(self) -> ToolDescriptor:
        return self._descriptor

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            result = await self.bridge.call_tool(self.name, kwargs)
        except ToolError:
            raise
        except (BridgeError, ConnectionError, OSError) as e:
            raise ExecutionFailedError(f"Bridge call to '{self.name}' failed: {e}") from e
        except Exception as e:
            raise ExecutionFailedError(f"Bridge protocol error in '{self.name}': {e}") from e

        if isinstance(result, ToolResult):
            return result
        return ToolResult(output=str(result), metadata={"bridge": True})


async def load_bridge_tools(bridge: ToolBridge) -> list[BridgeTool]:
    """Discover a bridge's tools and wrap each one.

    Raises:
        BridgeError: discovery failed
    """
    try:
        descriptors = await bridge.list_tools()
    except BridgeError:
        raise
    except Exception as e:
        raise BridgeError(f"Failed to list bridge tools: {e}") from e

    tools = []
    for item in descriptors:
        if isinstance(item, dict):
            item = ToolDescriptor.from_dict(item)
        tools.append(BridgeTool(bridge, item))
    return tools
