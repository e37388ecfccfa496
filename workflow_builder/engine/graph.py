from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from .errors import EdgeNotFoundError, InvalidEdgeError, StepNotFoundError
from .models import ConnectionModel, StepModel
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Step:
    """
    A node in the workflow graph.

    Display metadata is copied from the registry when the step is
    created and is not re-synced afterwards.
    """
    id: str
    tool_id: str
    name: str
    description: str = ""
    category: str = "utility"

    def to_model(self) -> StepModel:
        return StepModel(
            id=self.id,
            tool_id=self.tool_id,
            name=self.name,
            description=self.description,
            category=self.category,
        )


@dataclass
class Connection:
    """
    A directed dependency: ``target`` consumes the output of ``source``.
    """
    id: str
    source: str
    target: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.target)

    def to_model(self) -> ConnectionModel:
        return ConnectionModel(id=self.id, source=self.source, target=self.target)


def new_id() -> str:
    return str(uuid4())


def make_step(registry: ToolRegistry, tool_id: str, step_id: Optional[str] = None) -> Step:
    """
    Create a step from a registry snapshot. Raises UnknownToolError.
    """
    info = registry.describe(tool_id)
    return Step(
        id=step_id or new_id(),
        tool_id=tool_id,
        name=info.name,
        description=info.description,
        category=info.category,
    )


class Graph:
    """
    In-memory steps and connections, both kept in insertion order.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry
        self.steps: Dict[str, Step] = {}
        self.connections: Dict[str, Connection] = {}

    # ---------- Steps ----------

    def add_step(self, tool_id: str) -> Step:
        """
        Append a step for ``tool_id`` and chain it from the last step.
        """
        step = make_step(self.registry, tool_id)
        previous = self.last_step()
        self.steps[step.id] = step
        logger.debug("Added step %s (%s)", step.id, tool_id)

        if previous is not None and not self.has_edge(previous.id, step.id):
            self.add_edge(previous.id, step.id)
        return step

    def delete_step(self, step_id: str) -> None:
        if step_id not in self.steps:
            raise StepNotFoundError(f"Step '{step_id}' not found")
        del self.steps[step_id]
        self.connections = {
            cid: c
            for cid, c in self.connections.items()
            if c.source != step_id and c.target != step_id
        }
        logger.debug("Deleted step %s", step_id)

    def last_step(self) -> Optional[Step]:
        if not self.steps:
            return None
        return next(reversed(self.steps.values()))

    # ---------- Connections ----------

    def has_edge(self, source: str, target: str) -> bool:
        return any(c.key == (source, target) for c in self.connections.values())

    def add_edge(self, source: str, target: str) -> Connection:
        if source not in self.steps:
            raise InvalidEdgeError(f"Edge source '{source}' is not a valid step id")
        if target not in self.steps:
            raise InvalidEdgeError(f"Edge target '{target}' is not a valid step id")
        if source == target:
            raise InvalidEdgeError("A step cannot be connected to itself")
        if self.has_edge(source, target):
            raise InvalidEdgeError(f"Steps '{source}' and '{target}' are already connected")

        connection = Connection(id=new_id(), source=source, target=target)
        self.connections[connection.id] = connection
        return connection

    def delete_edge(self, edge_id: str) -> None:
        if edge_id not in self.connections:
            raise EdgeNotFoundError(f"Connection '{edge_id}' not found")
        del self.connections[edge_id]

    # ---------- Whole graph ----------

    def clear(self) -> None:
        self.steps = {}
        self.connections = {}

    def replace(self, steps: Iterable[Step], connections: Iterable[Connection]) -> None:
        self.steps = {s.id: s for s in steps}
        self.connections = {c.id: c for c in connections}

    def snapshot(self) -> "Graph":
        """
        Independent copy used by a run, so later edits do not leak in.
        """
        copy = Graph(self.registry)
        copy.steps = deepcopy(self.steps)
        copy.connections = deepcopy(self.connections)
        return copy

    # ---------- Adjacency ----------

    def incoming(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {sid: [] for sid in self.steps}
        for c in self.connections.values():
            result.setdefault(c.target, []).append(c.source)
        return result

    def outgoing(self) -> Dict[str, List[str]]:
        """
        Children per step, in connection declaration order.
        """
        result: Dict[str, List[str]] = {sid: [] for sid in self.steps}
        for c in self.connections.values():
            result.setdefault(c.source, []).append(c.target)
        return result

    def roots(self) -> List[str]:
        incoming = self.incoming()
        return [sid for sid in self.steps if not incoming.get(sid)]

    def __len__(self) -> int:
        return len(self.steps)
