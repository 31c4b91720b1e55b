"""
ToolRegistry: name-keyed registry of LLM-callable tools.

Tools are built either from decorated Python functions (schemas generated
from type hints) or directly from a JSON schema, as remote catalog tools are.
"""

import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Awaitable, Callable, Optional, Union, get_args, get_origin

logger = logging.getLogger(__name__)


_JSON_TYPES: dict[type, str] = {str: "string", int: "integer", float: "number", bool: "boolean"}


class ExecutionHandoff:
    """
    Tool result meaning "another application has taken over".

    The loop stops immediately and nothing is rendered for the query.
    """

    def __init__(self, message: str = ""):
        self.message = message

    def __repr__(self) -> str:
        return f"ExecutionHandoff({self.message!r})"


ToolOutput = Union[str, ExecutionHandoff, None]


@dataclass
class Tool:
    """A single callable tool: name, description, JSON parameters, handler."""

    name: str
    description: str
    fn: Callable[..., Union[ToolOutput, Awaitable[ToolOutput]]]
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})

    async def invoke(self, arguments: dict) -> ToolOutput:
        """Call the handler with keyword arguments, awaiting it if needed."""
        result = self.fn(**arguments)
        if inspect.isawaitable(result):
            result = await result
        if result is None or isinstance(result, (str, ExecutionHandoff)):
            return result
        return str(result)

    def schema(self) -> dict:
        """OpenAI-format tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


_ARG_LINE = re.compile(r"^(\w+)(?:\s*\([^)]*\))?\s*:\s*(.+)$")


def _docstring_arg_descriptions(fn: Callable) -> dict[str, str]:
    """Map parameter names to descriptions from a Google-style ``Args:`` block."""
    lines = (inspect.getdoc(fn) or "").splitlines()
    try:
        start = next(i for i, line in enumerate(lines) if line.strip().lower() == "args:")
    except StopIteration:
        return {}

    found: dict[str, str] = {}
    for line in lines[start + 1:]:
        text = line.strip()
        # Blank line or the next section header closes the block
        if not text or (text.endswith(":") and " " not in text):
            break
        match = _ARG_LINE.match(text)
        if match:
            found[match.group(1)] = match.group(2).strip()
    return found


def _split_annotation(hint: Any) -> tuple[Any, Optional[str]]:
    """Return ``(type, description)`` for a plain or ``Annotated`` hint."""
    if get_origin(hint) is not Annotated:
        return hint, None
    base, *extras = get_args(hint)
    description = next((e for e in extras if isinstance(e, str)), None)
    return base, description


def parameters_from_signature(fn: Callable) -> dict:
    """
    Build a JSON Schema ``parameters`` object from a function signature.

    ``Annotated[type, "desc"]`` descriptions win over the docstring's
    ``Args:`` block. Unannotated parameters are not exposed; parameters
    without a default are required.
    """
    hints = getattr(fn, "__annotations__", {})
    doc_descriptions = _docstring_arg_descriptions(fn)

    properties: dict = {}
    required: list[str] = []
    for name, param in inspect.signature(fn).parameters.items():
        if name not in hints:
            continue
        base, description = _split_annotation(hints[name])
        description = description or doc_descriptions.get(name)

        schema: dict = {"type": _JSON_TYPES.get(base, "string")}
        if description:
            schema["description"] = description
        properties[name] = schema
        if param.default is inspect.Parameter.empty:
            required.append(name)

    parameters: dict = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    return parameters


class ToolRegistry:
    """Registry that maps tool names to ``Tool`` objects."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, description: str, name: Optional[str] = None) -> Callable:
        """Decorator that registers a function as an LLM-callable tool.

        Args:
            description: Human-readable description of what the tool does.
            name: Tool name exposed to the model (defaults to the function name).
        """
        def decorator(fn: Callable) -> Callable:
            self.add(
                Tool(
                    name=name or fn.__name__,
                    description=description,
                    fn=fn,
                    parameters=parameters_from_signature(fn),
                )
            )
            return fn

        return decorator

    def add(self, tool: Tool) -> None:
        """Add a tool, replacing any existing tool with the same name."""
        if tool.name in self._tools:
            logger.debug("Replacing tool %s", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict]:
        """Return OpenAI-format tool list for the LLM."""
        return [tool.schema() for tool in self._tools.values()]

    def describe(self) -> str:
        """One ``name: description`` line per tool, for the system prompt."""
        return "\n".join(f"{t.name}: {t.description}" for t in self._tools.values())

    def __contains__(self, name: Any) -> bool:
        return name in self._tools

    def __bool__(self) -> bool:
        return len(self._tools) > 0

    def __len__(self) -> int:
        return len(self._tools)
