"""Tool registry tests."""

import threading

import pytest

from relay_agent.tools import BaseTool, ToolDescriptor, ToolRegistry, ToolResult, tool


class NamedTool(BaseTool):
    def __init__(self, name, description="A tool"):
        self._name = name
        self._description = description

    @property
    def name(self):
        return self._name

    @property
    def description(self):
        return self._description

    @property
    def parameters(self):
        return {
            "path": {"type": "string", "description": "File path", "required": True},
            "limit": {"type": "integer"},
        }

    def execute(self, **kwargs):
        return ToolResult(output=self._name)


class TestToolRegistry:
    """ToolRegistry tests."""

    def test_register_and_get(self):
        registry = ToolRegistry()
        read = NamedTool("read")

        assert registry.register(read) is read
        assert registry.get("read") is read
        assert registry.get("write") is None
        assert "read" in registry
        assert len(registry) == 1

    def test_registration_order(self):
        registry = ToolRegistry([NamedTool("b"), NamedTool("a"), NamedTool("c")])
        assert registry.names() == ["b", "a", "c"]
        assert [t.name for t in registry] == ["b", "a", "c"]

    def test_reregistration_replaces_in_place(self):
        registry = ToolRegistry([NamedTool("a"), NamedTool("b")])
        replacement = NamedTool("a", description="new")

        registry.register(replacement)

        assert registry.names() == ["a", "b"]
        assert registry.get("a") is replacement

    def test_empty_name_is_rejected(self):
        with pytest.raises(ValueError):
            ToolRegistry().register(NamedTool(""))

    def test_unregister(self):
        read = NamedTool("read")
        registry = ToolRegistry([read])

        assert registry.unregister("read") is read
        assert registry.unregister("read") is None
        assert len(registry) == 0

    def test_clear(self):
        registry = ToolRegistry([NamedTool("a"), NamedTool("b")])
        registry.clear()
        assert registry.list() == []

    def test_describe_all(self):
        registry = ToolRegistry([NamedTool("read", description="Read a file")])

        (descriptor,) = registry.describe_all()

        assert descriptor == ToolDescriptor(
            name="read",
            description="Read a file",
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path"},
                    "limit": {"type": "integer"},
                },
                "required": ["path"],
            },
        )

    def test_tools_are_shared_not_copied(self):
        @tool
        def ping() -> str:
            return "pong"

        first = ToolRegistry([ping])
        second = ToolRegistry([ping])
        assert first.get("ping") is second.get("ping")

    def test_concurrent_registration(self):
        registry = ToolRegistry()

        def register_many(prefix):
            for i in range(50):
                registry.register(NamedTool(f"{prefix}{i}"))

        threads = [threading.Thread(target=register_many, args=(p,)) for p in "abcd"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 200


class TestToolDescriptor:
    """ToolDescriptor tests."""

    def test_anthropic_format(self):
        descriptor = ToolDescriptor(name="read", description="Read a file")
        assert descriptor.to_anthropic_tool() == {
            "name": "read",
            "description": "Read a file",
            "input_schema": {"type": "object", "properties": {}},
        }

    def test_from_dict_accepts_camel_case_schema(self):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}}
        descriptor = ToolDescriptor.from_dict({"name": "search", "inputSchema": schema})

        assert descriptor.description == ""
        assert descriptor.input_schema == schema


class TestToolResult:
    """ToolResult tests."""

    def test_ok(self):
        result = ToolResult.ok("done", lines=3)
        assert result.success
        assert result.metadata == {"lines": 3}

    def test_failure(self):
        result = ToolResult.failure("not found", output="partial")
        assert not result.success
        assert result.output == "partial"
