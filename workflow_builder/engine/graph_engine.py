from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union
from uuid import uuid4

from .errors import (
    InvalidInputError,
    NoRootError,
    RunawayGraphError,
    WorkflowBusyError,
    WorkflowNotFoundError,
)
from .executor import StepExecutor
from .graph import Graph
from .models import LogEntry, WorkflowStateResponse
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_RUNAWAY_FACTOR = 4


# ---------- Helpers ----------


def parse_global_input(text: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Parse the user supplied global input. It must be a JSON object.
    """
    if isinstance(text, dict):
        return deepcopy(text)
    try:
        value = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid JSON input: {exc}") from exc
    if not isinstance(value, dict):
        raise InvalidInputError("Global input must be a JSON object")
    return value


def path_label(depth: int) -> str:
    """
    Bijective base-26 label for a depth: 1 -> A, 26 -> Z, 27 -> AA.
    """
    if depth < 1:
        raise ValueError("depth must be >= 1")
    letters = []
    n = depth
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def runaway_limit(node_count: int, edge_count: int, factor: int = DEFAULT_RUNAWAY_FACTOR) -> int:
    return node_count * max(2, edge_count + 1) * factor


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _Task:
    node_id: str
    depth: int
    label: str
    context: Dict[str, Any]
    prev_output: Any = None
    parent_id: Optional[str] = None


# ---------- Execution ----------


async def stream_workflow(
    graph: Graph,
    global_input: Union[str, Dict[str, Any]],
    executor: StepExecutor,
    runaway_factor: int = DEFAULT_RUNAWAY_FACTOR,
) -> AsyncIterator[LogEntry]:
    """
    Walk ``graph`` depth first from every root and yield one log entry per
    invoked step, in completion order.

    Steps run one at a time. A failing step ends its own path only; a
    run that processes more tasks than ``runaway_limit`` allows is aborted
    with RunawayGraphError, which carries the entries produced so far.
    """
    base_input = parse_global_input(global_input)

    roots = graph.roots()
    if not roots:
        raise NoRootError()

    outgoing = graph.outgoing()
    limit = runaway_limit(len(graph.steps), len(graph.connections), runaway_factor)

    # LIFO stack; pushed in reverse so the first root / child is popped first.
    stack: List[_Task] = [
        _Task(
            node_id=root_id,
            depth=1,
            label=path_label(1),
            context={"global_input": deepcopy(base_input)},
        )
        for root_id in reversed(roots)
    ]
    counters: Dict[int, int] = {}
    log: List[LogEntry] = []
    processed = 0

    logger.info("Starting run: %d steps, %d roots, task limit %d", len(graph.steps), len(roots), limit)

    while stack:
        task = stack.pop()
        processed += 1
        if processed > limit:
            logger.error("Run aborted after %d tasks; possible cycle or runaway branching", limit)
            raise RunawayGraphError(limit, list(log))

        step = graph.steps.get(task.node_id)
        if step is None or not executor.registry.has(step.tool_id):
            logger.warning("Skipping task for missing step or tool: %s", task.node_id)
            continue

        has_parent = task.parent_id is not None
        context = dict(task.context)
        context["__prev_output"] = task.prev_output
        context["__all_inputs"] = [task.prev_output] if has_parent else []
        context["__inputs_by_node"] = {task.parent_id: [task.prev_output]} if has_parent else {}
        context["step_index"] = task.depth
        context["path_id"] = task.label

        counters[task.depth] = counters.get(task.depth, 0) + 1
        step_label = f"{task.label}{counters[task.depth]}"
        request = {"context_keys": list(context.keys()), "tool": step.tool_id}

        try:
            outcome = await executor.execute(step.tool_id, context)
        except Exception as exc:  # a failing step prunes its path only
            logger.warning("Step %s (%s) failed: %s", step_label, step.tool_id, exc)
            entry = LogEntry(
                step_index=task.depth,
                path_id=task.label,
                step_label=step_label,
                node_id=step.id,
                tool_id=step.tool_id,
                step_name=step.name,
                request=request,
                response={"error": str(exc) or "Execution Failed"},
                status="error",
                timestamp=_now_ms(),
            )
            log.append(entry)
            yield entry
            continue

        entry = LogEntry(
            step_index=task.depth,
            path_id=task.label,
            step_label=step_label,
            node_id=step.id,
            tool_id=step.tool_id,
            step_name=step.name,
            request=request,
            response=deepcopy(outcome.output),
            status="success",
            timestamp=_now_ms(),
        )
        log.append(entry)
        yield entry

        next_context = outcome.context if outcome.context is not None else task.context
        child_depth = task.depth + 1
        for child_id in reversed(outgoing.get(step.id, [])):
            stack.append(
                _Task(
                    node_id=child_id,
                    depth=child_depth,
                    label=path_label(child_depth),
                    context=deepcopy(next_context),
                    prev_output=deepcopy(outcome.output),
                    parent_id=step.id,
                )
            )

    logger.info("Run finished: %d log entries", len(log))


async def run_workflow(
    graph: Graph,
    global_input: Union[str, Dict[str, Any]],
    executor: StepExecutor,
    runaway_factor: int = DEFAULT_RUNAWAY_FACTOR,
) -> List[LogEntry]:
    """
    Execute the whole graph and return the ordered log.
    """
    return [entry async for entry in stream_workflow(graph, global_input, executor, runaway_factor)]


# ---------- Workflow sessions ----------


class Workflow:
    """
    One editable workflow: its graph, input text, last log and run status.
    Only one run may be active at a time.
    """

    def __init__(
        self,
        workflow_id: str,
        name: str,
        executor: StepExecutor,
        global_input: str = "{}",
        runaway_factor: int = DEFAULT_RUNAWAY_FACTOR,
    ) -> None:
        self.id = workflow_id
        self.name = name
        self.executor = executor
        self.graph = Graph(executor.registry)
        self.global_input = global_input
        self.runaway_factor = runaway_factor
        self.log: List[LogEntry] = []
        self.status = "idle"

    def clear(self) -> None:
        self.graph.clear()
        self.log = []

    def start(self, global_input: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate the run and mark the workflow as running.

        Returns the parsed global input to hand to ``drain``. Raises before
        the status changes when the workflow is busy, the input is invalid
        or the graph has no root.
        """
        if self.status == "running":
            raise WorkflowBusyError(f"Workflow '{self.id}' is already running")

        self.log = []
        base_input = parse_global_input(self.global_input if global_input is None else global_input)
        if not self.graph.roots():
            raise NoRootError()

        self.status = "running"
        return base_input

    async def stream(
        self,
        global_input: Optional[str] = None,
        on_entry: Optional[Callable[[LogEntry], None]] = None,
    ) -> AsyncIterator[LogEntry]:
        base_input = self.start(global_input)
        async for entry in self.drain(base_input, on_entry):
            yield entry

    async def drain(
        self,
        base_input: Dict[str, Any],
        on_entry: Optional[Callable[[LogEntry], None]] = None,
    ) -> AsyncIterator[LogEntry]:
        """
        Run a workflow already claimed by ``start`` and return it to idle.
        """
        try:
            async for entry in stream_workflow(
                self.graph.snapshot(), base_input, self.executor, self.runaway_factor
            ):
                self.log.append(entry)
                if on_entry is not None:
                    on_entry(entry)
                yield entry
        finally:
            self.status = "idle"

    async def execute(
        self,
        global_input: Optional[str] = None,
        on_entry: Optional[Callable[[LogEntry], None]] = None,
    ) -> List[LogEntry]:
        return [entry async for entry in self.stream(global_input, on_entry)]

    def state(self) -> WorkflowStateResponse:
        return WorkflowStateResponse(
            workflow_id=self.id,
            name=self.name,
            status=self.status,  # type: ignore[arg-type]
            global_input=self.global_input,
            steps=[s.to_model() for s in self.graph.steps.values()],
            connections=[c.to_model() for c in self.graph.connections.values()],
            log=list(self.log),
        )


class GraphEngine:
    """
    In-memory store of workflows sharing one tool registry and executor.
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        runaway_factor: int = DEFAULT_RUNAWAY_FACTOR,
        default_input: str = "{}",
    ) -> None:
        self.tool_registry = tool_registry
        self.executor = StepExecutor(tool_registry)
        self.runaway_factor = runaway_factor
        self.default_input = default_input
        self.workflows: Dict[str, Workflow] = {}

    def create_workflow(self, name: str = "Example Workflow", global_input: Optional[str] = None) -> Workflow:
        workflow = Workflow(
            workflow_id=str(uuid4()),
            name=name,
            executor=self.executor,
            global_input=self.default_input if global_input is None else global_input,
            runaway_factor=self.runaway_factor,
        )
        self.workflows[workflow.id] = workflow
        logger.debug("Created workflow %s (%s)", workflow.id, name)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        if workflow_id not in self.workflows:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return self.workflows[workflow_id]

    def delete_workflow(self, workflow_id: str) -> None:
        self.get_workflow(workflow_id)
        del self.workflows[workflow_id]

    def list_workflows(self) -> List[Workflow]:
        return list(self.workflows.values())
