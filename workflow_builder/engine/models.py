from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field


# ---------- Tool Catalog Models ----------


class ToolInfo(BaseModel):
    """
    Display metadata for a registered tool.
    """
    id: str
    name: str
    description: str = ""
    category: str = "utility"


# ---------- Graph Models ----------


class StepModel(BaseModel):
    id: str
    tool_id: str
    name: str
    description: str
    category: str


class ConnectionModel(BaseModel):
    id: str
    source: str
    target: str


class NodeSpec(BaseModel):
    """
    A node proposed by a graph patch.

    ``id`` is only used to resolve edge references inside the patch;
    the materialized step may end up with a different id.
    """
    id: Optional[str] = Field(default=None, description="Patch-local node id")
    tool_id: str = Field(..., description="Registry id of the tool to invoke")


class EdgeSpec(BaseModel):
    source: str
    target: str


class GraphPatch(BaseModel):
    """
    Request body for POST /workflows/{id}/patch.
    """
    reset: bool = Field(default=False, description="Replace the whole graph instead of merging")
    nodes: List[NodeSpec] = Field(default_factory=list)
    edges: List[EdgeSpec] = Field(default_factory=list)


class ToolActionRequest(BaseModel):
    """
    Single-step shorthand issued by the assistant: append one step,
    optionally clearing the graph first.
    """
    tool_id: str
    reset: bool = False


class AddStepRequest(BaseModel):
    tool_id: str


class AddEdgeRequest(BaseModel):
    source: str
    target: str


# ---------- Workflow Models ----------


class WorkflowCreateRequest(BaseModel):
    """
    Request body for POST /workflows.
    """
    name: str = Field(default="Example Workflow", description="Human friendly name of the workflow")
    global_input: Optional[str] = Field(
        default=None,
        description="JSON object text passed to every run as global_input",
    )


class WorkflowCreateResponse(BaseModel):
    workflow_id: str


class GlobalInputRequest(BaseModel):
    global_input: str


class WorkflowStateResponse(BaseModel):
    """
    Response from GET /workflows/{id}.
    """
    workflow_id: str
    name: str
    status: Literal["idle", "running"]
    global_input: str
    steps: List[StepModel]
    connections: List[ConnectionModel]
    log: List["LogEntry"]


class PatchResponse(BaseModel):
    added: List[StepModel]
    steps: List[StepModel]
    connections: List[ConnectionModel]


# ---------- Execution Models ----------


class LogEntry(BaseModel):
    """
    A single step outcome in the execution log.
    """
    step_index: int = Field(..., description="Depth of the step along its path")
    path_id: str = Field(..., description="Depth label shared by every step at the same depth")
    step_label: str = Field(..., description="path_id followed by the per-depth counter, e.g. A1")
    node_id: str
    tool_id: str
    step_name: str
    request: Dict[str, Any]
    response: Any = None
    status: Literal["success", "error"]
    timestamp: int = Field(..., description="Completion time in epoch milliseconds")


class RunRequest(BaseModel):
    """
    Request body for POST /workflows/{id}/run. When ``global_input``
    is omitted, the workflow's stored input text is used.
    """
    global_input: Optional[str] = None


class RunResponse(BaseModel):
    workflow_id: str
    status: Literal["completed", "aborted"]
    log: List[LogEntry]
    error: Optional[str] = None


WorkflowStateResponse.model_rebuild()
