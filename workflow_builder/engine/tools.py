from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Union
from dataclasses import dataclass

from .errors import UnknownToolError
from .models import ToolInfo

logger = logging.getLogger(__name__)


ToolFn = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]

CATEGORY_LABELS: Dict[str, str] = {
    "math": "Math",
    "data": "Data",
    "analysis": "Analysis",
    "utility": "Utility",
}


@dataclass
class Tool:
    id: str
    fn: ToolFn
    name: str
    description: str = ""
    category: str = "utility"

    def info(self) -> ToolInfo:
        return ToolInfo(
            id=self.id,
            name=self.name,
            description=self.description,
            category=self.category,
        )


class ToolRegistry:
    """
    Maps tool ids to handlers and their display metadata.

    Handlers receive the invocation context dict and may be plain
    callables or coroutine functions.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}
        self._categories: Dict[str, str] = dict(CATEGORY_LABELS)

    def register(
        self,
        tool_id: str,
        fn: ToolFn,
        name: str = "",
        description: str = "",
        category: str = "utility",
    ) -> None:
        if tool_id in self._tools:
            logger.debug("Replacing registered tool %s", tool_id)
        self._tools[tool_id] = Tool(
            id=tool_id,
            fn=fn,
            name=name or tool_id,
            description=description,
            category=category,
        )
        self._categories.setdefault(category, category.title())

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def get(self, tool_id: str) -> Tool:
        if tool_id not in self._tools:
            raise UnknownToolError(tool_id)
        return self._tools[tool_id]

    def describe(self, tool_id: str) -> ToolInfo:
        return self.get(tool_id).info()

    def list_tools(self) -> List[ToolInfo]:
        return [self._tools[key].info() for key in sorted(self._tools)]

    def categories(self) -> Dict[str, str]:
        return dict(self._categories)


# ---------- Built-in demonstration catalog ----------
#
# Canned outputs standing in for real computations, so a fresh
# workflow can be assembled and run end to end.


async def matrix_add_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"result": [[2, 4], [6, 8]], "message": "Matrices added successfully (Mock)"}


async def matrix_mul_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"result": [[19, 22], [43, 50]], "message": "Matrices multiplied successfully (Mock)"}


async def matrix_inv_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"result": [[-2, 1], [1.5, -0.5]], "message": "Matrix inversion calculated (Mock)"}


async def data_normalize_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"result": [0, 0.25, 0.5, 0.75, 1.0], "message": "Data normalized using MinMax (Mock)"}


async def poly_fit_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"coefficients": [1.2, 0.5, 0.01], "degree": 2, "r_squared": 0.98}


async def poly_evaluate_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"x": 5, "y": 25.5, "message": "Polynomial evaluated at x=5"}


async def error_metrics_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"mse": 0.04, "mae": 0.15, "message": "Error metrics calculated"}


def logger_tool(context: Dict[str, Any]) -> Dict[str, Any]:
    """
    Report which context keys reached this step.
    """
    keys = list(context.keys())
    logger.info("utils.log step %s saw keys %s", context.get("path_id"), keys)
    return {
        "logged": True,
        "timestamp": time.strftime("%H:%M:%S"),
        "keys": keys,
    }


BUILTIN_TOOLS = [
    ("matrix.add", matrix_add_tool, "Matrix Addition", "Add two matrices together.", "math"),
    ("matrix.mul", matrix_mul_tool, "Matrix Multiplication", "Multiply two matrices.", "math"),
    ("matrix.inv", matrix_inv_tool, "Matrix Inversion", "Calculate the inverse of a matrix.", "math"),
    ("data.normalize", data_normalize_tool, "Data Normalization", "Normalize a dataset to 0-1 range.", "data"),
    ("poly.fit", poly_fit_tool, "Polynomial Fit", "Fit a polynomial to data points.", "analysis"),
    ("poly.evaluate", poly_evaluate_tool, "Polynomial Evaluate", "Evaluate a polynomial at given x.", "analysis"),
    ("error.metrics", error_metrics_tool, "Error Metrics", "Calculate MSE and MAE errors.", "analysis"),
    ("utils.log", logger_tool, "Logger", "Log current state to console.", "utility"),
]


def register_builtin_tools(registry: ToolRegistry) -> List[str]:
    """
    Register the demonstration catalog and return the registered ids.
    """
    for tool_id, fn, name, description, category in BUILTIN_TOOLS:
        registry.register(
            tool_id,
            fn,
            name=name,
            description=description,
            category=category,
        )
    return [entry[0] for entry in BUILTIN_TOOLS]
