from __future__ import annotations

from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import LogEntry


class WorkflowError(Exception):
    """
    Base class for every error raised by the workflow engine.
    """


class UnknownToolError(WorkflowError, KeyError):
    def __init__(self, tool_id: str) -> None:
        self.tool_id = tool_id
        super().__init__(f"Tool '{tool_id}' is not registered")

    def __str__(self) -> str:
        return self.args[0]


class StepNotFoundError(WorkflowError, KeyError):
    def __str__(self) -> str:
        return self.args[0]


class EdgeNotFoundError(WorkflowError, KeyError):
    def __str__(self) -> str:
        return self.args[0]


class WorkflowNotFoundError(WorkflowError, KeyError):
    def __str__(self) -> str:
        return self.args[0]


class InvalidEdgeError(WorkflowError, ValueError):
    """
    Raised when a connection would be a self-loop, a duplicate,
    or reference a step that does not exist.
    """


class InvalidInputError(WorkflowError, ValueError):
    """
    Raised when the global input text is not a JSON object.
    """


class NoRootError(WorkflowError, ValueError):
    def __init__(self, message: str = "Workflow has no root step (every step has an incoming connection)") -> None:
        super().__init__(message)


class WorkflowBusyError(WorkflowError, RuntimeError):
    pass


class RunawayGraphError(WorkflowError, RuntimeError):
    """
    Raised when a run processes more tasks than the safety limit allows.

    The entries produced before the abort are kept on ``log``.
    """

    def __init__(self, limit: int, log: List["LogEntry"]) -> None:
        self.limit = limit
        self.log = log
        super().__init__(
            f"Execution aborted after {limit} tasks. "
            "The workflow may contain a cycle or runaway branching."
        )
