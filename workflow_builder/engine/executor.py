from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .tools import ToolRegistry


@dataclass
class StepOutcome:
    """
    Normalized handler result.

    ``context`` is None when the handler did not provide one, in which
    case the path keeps the context it already had.
    """
    output: Any
    context: Optional[Dict[str, Any]] = None


def normalize_result(result: Any) -> StepOutcome:
    """
    A dict carrying an ``output`` or ``context`` key is treated as an
    envelope; any other value is the output itself. An envelope without
    ``output`` reports the whole result as its output.
    """
    if isinstance(result, dict) and ("output" in result or "context" in result):
        context = result.get("context")
        return StepOutcome(
            output=result["output"] if "output" in result else result,
            context=context if isinstance(context, dict) else None,
        )
    return StepOutcome(output=result)


class StepExecutor:
    """
    Dispatches a tool id to its registered handler.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, tool_id: str, context: Dict[str, Any]) -> StepOutcome:
        tool = self.registry.get(tool_id)
        result = tool.fn(context)
        if inspect.isawaitable(result):
            result = await result
        return normalize_result(result)
