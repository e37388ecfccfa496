import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from .config import get_settings
from .engine.builder import apply_patch, apply_tool_action
from .engine.errors import (
    RunawayGraphError,
    UnknownToolError,
    WorkflowBusyError,
)
from .engine.graph_engine import GraphEngine, Workflow
from .engine.models import (
    AddEdgeRequest,
    AddStepRequest,
    ConnectionModel,
    GlobalInputRequest,
    GraphPatch,
    LogEntry,
    PatchResponse,
    RunRequest,
    RunResponse,
    StepModel,
    ToolActionRequest,
    ToolInfo,
    WorkflowCreateRequest,
    WorkflowCreateResponse,
    WorkflowStateResponse,
)
from .engine.tools import ToolRegistry, register_builtin_tools


settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

# --- Global in-memory singletons ---

tool_registry = ToolRegistry()
graph_engine = GraphEngine(
    tool_registry=tool_registry,
    runaway_factor=settings.runaway_factor,
    default_input=settings.default_input_json,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Register the built-in tool catalog on startup."""
    if settings.register_builtin_tools:
        registered = register_builtin_tools(tool_registry)
        logger.info("Registered %d built-in tools", len(registered))
    yield


app = FastAPI(title="Workflow Builder Engine", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_workflow(workflow_id: str) -> Workflow:
    try:
        return graph_engine.get_workflow(workflow_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


def _ensure_idle(workflow: Workflow) -> None:
    if workflow.status == "running":
        raise HTTPException(status_code=409, detail=f"Workflow '{workflow.id}' is running")


# --------- TOOL CATALOG ---------


@app.get("/tools", response_model=List[ToolInfo])
def list_tools() -> List[ToolInfo]:
    return tool_registry.list_tools()


@app.get("/tools/categories")
def list_categories() -> Dict[str, str]:
    return tool_registry.categories()


# --------- WORKFLOWS ---------


@app.post("/workflows", response_model=WorkflowCreateResponse)
def create_workflow(payload: WorkflowCreateRequest) -> WorkflowCreateResponse:
    """
    Create an empty workflow.
    """
    workflow = graph_engine.create_workflow(name=payload.name, global_input=payload.global_input)
    return WorkflowCreateResponse(workflow_id=workflow.id)


@app.get("/workflows", response_model=List[WorkflowStateResponse])
def list_workflows() -> List[WorkflowStateResponse]:
    return [w.state() for w in graph_engine.list_workflows()]


@app.get("/workflows/{workflow_id}", response_model=WorkflowStateResponse)
def get_workflow(workflow_id: str) -> WorkflowStateResponse:
    return _get_workflow(workflow_id).state()


@app.delete("/workflows/{workflow_id}", status_code=204)
def delete_workflow(workflow_id: str) -> None:
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    graph_engine.delete_workflow(workflow_id)


@app.put("/workflows/{workflow_id}/input", response_model=WorkflowStateResponse)
def set_global_input(workflow_id: str, payload: GlobalInputRequest) -> WorkflowStateResponse:
    """
    Store the input text as typed; it is only validated when a run starts.
    """
    workflow = _get_workflow(workflow_id)
    workflow.global_input = payload.global_input
    return workflow.state()


# --------- GRAPH EDITING ---------


@app.post("/workflows/{workflow_id}/steps", response_model=StepModel)
def add_step(workflow_id: str, payload: AddStepRequest) -> StepModel:
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    try:
        return workflow.graph.add_step(payload.tool_id).to_model()
    except UnknownToolError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.delete("/workflows/{workflow_id}/steps/{step_id}", status_code=204)
def delete_step(workflow_id: str, step_id: str) -> None:
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    try:
        workflow.graph.delete_step(step_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.post("/workflows/{workflow_id}/edges", response_model=ConnectionModel)
def add_edge(workflow_id: str, payload: AddEdgeRequest) -> ConnectionModel:
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    try:
        return workflow.graph.add_edge(payload.source, payload.target).to_model()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.delete("/workflows/{workflow_id}/edges/{edge_id}", status_code=204)
def delete_edge(workflow_id: str, edge_id: str) -> None:
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    try:
        workflow.graph.delete_edge(edge_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.delete("/workflows/{workflow_id}/graph", response_model=WorkflowStateResponse)
def clear_graph(workflow_id: str) -> WorkflowStateResponse:
    """
    Remove every step and connection and discard the last log.
    """
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    workflow.clear()
    return workflow.state()


@app.post("/workflows/{workflow_id}/patch", response_model=PatchResponse)
def patch_graph(workflow_id: str, payload: GraphPatch) -> PatchResponse:
    """
    Merge an assistant-proposed fragment into the graph.
    Invalid parts of the fragment are dropped rather than rejected.
    """
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    added = apply_patch(workflow.graph, tool_registry, payload)
    return PatchResponse(
        added=[s.to_model() for s in added],
        steps=[s.to_model() for s in workflow.graph.steps.values()],
        connections=[c.to_model() for c in workflow.graph.connections.values()],
    )


@app.post("/workflows/{workflow_id}/assistant-step", response_model=StepModel)
def assistant_step(workflow_id: str, payload: ToolActionRequest) -> StepModel:
    workflow = _get_workflow(workflow_id)
    _ensure_idle(workflow)
    try:
        step = apply_tool_action(workflow.graph, tool_registry, payload.tool_id, payload.reset)
    except UnknownToolError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return step.to_model()


# --------- EXECUTION ---------


@app.post("/workflows/{workflow_id}/run", response_model=RunResponse)
async def run_workflow(workflow_id: str, payload: RunRequest) -> RunResponse:
    """
    Run the workflow to completion and return the full log.

    A runaway abort is not an HTTP error: the partial log is returned
    with status 'aborted'.
    """
    workflow = _get_workflow(workflow_id)
    try:
        log = await workflow.execute(payload.global_input)
        return RunResponse(workflow_id=workflow.id, status="completed", log=log)
    except RunawayGraphError as exc:
        return RunResponse(workflow_id=workflow.id, status="aborted", log=exc.log, error=str(exc))
    except WorkflowBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/workflows/{workflow_id}/run/stream")
async def stream_run(workflow_id: str, payload: RunRequest) -> StreamingResponse:
    """
    Run the workflow and stream log entries as newline-delimited JSON.

    The workflow is claimed before the response starts, so busy, input
    and root errors still surface as HTTP errors.
    """
    workflow = _get_workflow(workflow_id)
    try:
        base_input = workflow.start(payload.global_input)
    except WorkflowBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    async def lines() -> AsyncIterator[str]:
        try:
            async for entry in workflow.drain(base_input):
                yield entry.model_dump_json() + "\n"
        except RunawayGraphError as exc:
            yield json.dumps({"status": "aborted", "error": str(exc)}) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@app.get("/workflows/{workflow_id}/log", response_model=List[LogEntry])
def get_log(workflow_id: str) -> List[LogEntry]:
    return _get_workflow(workflow_id).log


@app.get("/")
def root() -> Dict[str, Any]:
    """
    Convenience root endpoint.
    """
    return {
        "message": "Workflow Builder Engine is running",
        "docs": "/docs",
        "available_tools": [t.id for t in tool_registry.list_tools()],
        "workflow_ids": list(graph_engine.workflows.keys()),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "workflow_builder.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
