"""
Server-side tools the model may call during a run.

A tool pairs a JSON Schema (Draft-07) for its arguments with a handler.
Failures never escape `execute_tool`; they are reported back to the model
as an error result so the loop can continue.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError
from pydantic_core import to_jsonable_python

logger = logging.getLogger("agent-gateway")


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    handler: Callable[..., Any]
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def __post_init__(self) -> None:
        try:
            Draft7Validator.check_schema(self.parameters)
        except SchemaError as exc:
            raise ValueError(f"Invalid parameters schema for tool '{self.name}': {exc.message}") from exc

    def spec(self) -> Dict[str, Any]:
        """Provider-agnostic description handed to the adapters."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


ToolSet = Mapping[str, Tool]


def build_toolset(tools: Optional[List[Tool]]) -> Dict[str, Tool]:
    toolset: Dict[str, Tool] = {}
    for tool in tools or []:
        if tool.name in toolset:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        toolset[tool.name] = tool
    return toolset


def _validate_arguments(arguments: Any, schema: Dict[str, Any]) -> List[Dict[str, Any]]:
    validator = Draft7Validator(schema)
    errors: List[Dict[str, Any]] = []
    for err in validator.iter_errors(arguments):
        errors.append(
            {
                "path": list(err.path),
                "message": err.message,
            }
        )
    return errors


async def execute_tool(toolset: ToolSet, name: str, arguments: Dict[str, Any]) -> Tuple[Any, bool]:
    """
    Run one tool call.

    Returns (output, is_error). Unknown tools, schema violations and handler
    exceptions come back as error outputs for the model to see. Successful
    outputs are converted to JSON-compatible values (datetimes become ISO
    strings, unknown objects their `str()`).
    """
    tool = toolset.get(name)
    if tool is None:
        return {"error": f"Unknown tool: {name}"}, True

    errors = _validate_arguments(arguments, tool.parameters)
    if errors:
        return {"error": "Invalid tool arguments", "details": errors}, True

    try:
        result = tool.handler(**arguments)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        logger.warning("tool %s failed: %s", name, exc)
        return {"error": str(exc)}, True
    # Outputs are re-sent to the provider as JSON.
    return to_jsonable_python(result, fallback=str), False
