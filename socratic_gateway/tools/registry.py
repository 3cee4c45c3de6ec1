"""Tool registry: named capabilities the model may call during a chat stream."""

import logging
from typing import Any, Protocol

from jsonschema import Draft202012Validator

from socratic_gateway.providers.base import ToolDefinition

logger = logging.getLogger("socratic.tools")


class ToolError(Exception):
    def __init__(self, tool: str, message: str):
        super().__init__(message)
        self.tool = tool
        self.message = message


class UnknownToolError(ToolError):
    def __init__(self, tool: str):
        super().__init__(tool, f"Unknown tool: {tool}")


class ToolInputError(ToolError):
    pass


class ToolSpec(Protocol):
    name: str
    description: str
    input_schema: dict[str, Any]

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]: ...


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._validators: dict[str, Draft202012Validator] = {}

    def register(self, tool: ToolSpec) -> None:
        Draft202012Validator.check_schema(tool.input_schema)
        self._tools[tool.name] = tool
        self._validators[tool.name] = Draft202012Validator(tool.input_schema)

    def get(self, name: str) -> ToolSpec:
        if name not in self._tools:
            raise UnknownToolError(name)
        return self._tools[name]

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                input_schema=tool.input_schema,
            )
            for tool in self._tools.values()
        ]

    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate *arguments* against the tool's schema, then run it.

        Schema violations raise ``ToolInputError`` with the first error's path
        and message; the tool itself is never invoked on invalid input.
        """
        tool = self.get(name)
        errors = sorted(
            self._validators[name].iter_errors(arguments),
            key=lambda err: list(err.absolute_path),
        )
        if errors:
            first = errors[0]
            location = "/".join(str(p) for p in first.absolute_path) or "<root>"
            logger.info(
                "tool_input_invalid",
                extra={"tool": name, "error": f"{location}: {first.message}"},
            )
            raise ToolInputError(name, f"Invalid input for {name} at {location}")
        return await tool.run(arguments)
