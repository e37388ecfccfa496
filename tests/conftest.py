"""Shared fixtures for workflow engine tests."""

import pytest

from workflow_builder.engine.executor import StepExecutor
from workflow_builder.engine.graph import Graph
from workflow_builder.engine.tools import ToolRegistry, register_builtin_tools


def echo_tool(context):
    """Return the tool's view of the path so tests can inspect it."""
    return {"path_id": context["path_id"], "step_index": context["step_index"]}


def failing_tool(context):
    raise RuntimeError("boom")


@pytest.fixture
def registry():
    """Registry with the built-in catalog plus test tools."""
    reg = ToolRegistry()
    register_builtin_tools(reg)
    reg.register("test.echo", echo_tool, name="Echo", category="utility")
    reg.register("test.fail", failing_tool, name="Fail", category="utility")
    return reg


@pytest.fixture
def executor(registry):
    return StepExecutor(registry)


@pytest.fixture
def graph(registry):
    return Graph(registry)
