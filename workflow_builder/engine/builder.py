"""
Merge externally proposed graph fragments into a live graph.

Fragments come from the assistant (or any other client) and are applied
leniently: unknown tools and dangling edges are dropped rather than
rejected, and an edge set that would make the graph cyclic is replaced by
a plain linear chain over the new steps.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Set, Tuple

from .errors import UnknownToolError
from .graph import Connection, Graph, Step, make_step, new_id
from .models import GraphPatch
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

EdgeKey = Tuple[str, str]


def closes_cycle(base_edges: Iterable[EdgeKey], candidate: Iterable[EdgeKey]) -> bool:
    """
    True when any candidate edge lies on a cycle of the merged edge set.

    Cycles made only of ``base_edges`` are ignored.
    """
    candidate = list(candidate)
    children: Dict[str, List[str]] = {}
    for source, target in list(base_edges) + candidate:
        children.setdefault(source, []).append(target)

    for source, target in candidate:
        # the edge closes a cycle iff its source is reachable from its target
        pending = [target]
        seen: Set[str] = set()
        while pending:
            nid = pending.pop()
            if nid == source:
                return True
            if nid in seen:
                continue
            seen.add(nid)
            pending.extend(children.get(nid, []))
    return False


def linear_chain(node_ids: List[str]) -> List[EdgeKey]:
    return list(zip(node_ids, node_ids[1:]))


def apply_patch(graph: Graph, registry: ToolRegistry, patch: GraphPatch) -> List[Step]:
    """
    Merge ``patch`` into ``graph`` and return the steps that were added.

    An empty list means the fragment had no valid node and the graph was
    left untouched.
    """
    existing_ids: Set[str] = set() if patch.reset else set(graph.steps)

    new_steps: List[Step] = []
    remap: Dict[str, str] = {}
    taken: Set[str] = set(existing_ids)

    for spec in patch.nodes:
        if not registry.has(spec.tool_id):
            logger.debug("Dropping patch node with unknown tool %s", spec.tool_id)
            continue

        step_id = spec.id if spec.id and spec.id not in taken else new_id()
        step = make_step(registry, spec.tool_id, step_id)
        taken.add(step.id)
        new_steps.append(step)
        if spec.id and spec.id not in remap:
            remap[spec.id] = step.id

    if not new_steps:
        logger.info("Discarding graph patch: no node references a known tool")
        return []

    new_ids = [s.id for s in new_steps]
    known: Set[str] = existing_ids | set(new_ids)

    candidate: List[EdgeKey] = []
    seen: Set[EdgeKey] = set()
    for edge in patch.edges:
        source = remap.get(edge.source, edge.source)
        target = remap.get(edge.target, edge.target)
        if source not in known or target not in known:
            logger.debug("Dropping patch edge %s -> %s: unknown endpoint", edge.source, edge.target)
            continue
        if source == target or (source, target) in seen:
            continue
        seen.add((source, target))
        candidate.append((source, target))

    if not patch.edges:
        candidate = linear_chain(new_ids)
    else:
        base_edges = [] if patch.reset else [c.key for c in graph.connections.values()]
        if closes_cycle(base_edges, candidate):
            logger.warning("Graph patch edges form a cycle; falling back to a linear chain")
            candidate = linear_chain(new_ids)

    if patch.reset:
        graph.replace(
            new_steps,
            [Connection(id=new_id(), source=s, target=t) for s, t in candidate],
        )
    else:
        for step in new_steps:
            graph.steps[step.id] = step
        for source, target in candidate:
            if not graph.has_edge(source, target):
                graph.add_edge(source, target)

    logger.debug("Applied graph patch: %d steps, %d edges", len(new_steps), len(candidate))
    return new_steps


def apply_tool_action(graph: Graph, registry: ToolRegistry, tool_id: str, reset: bool = False) -> Step:
    """
    Single-step shorthand: append one step of ``tool_id``, clearing the
    graph first when ``reset`` is set.
    """
    if not registry.has(tool_id):
        raise UnknownToolError(tool_id)
    if reset:
        graph.clear()
    return graph.add_step(tool_id)
