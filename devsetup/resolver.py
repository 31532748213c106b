from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Sequence, Tuple

from .errors import CycleError, UnknownComponentError
from .graph import ComponentGraph

logger = logging.getLogger(__name__)


_IN_PROGRESS = 1
_DONE = 2


def resolve(graph: ComponentGraph, requested: Sequence[str]) -> Tuple[str, ...]:
    """Return requested ids plus their transitive requirements, dependencies first.

    Iterative depth-first traversal: requested ids are visited in the order
    given and each component's requirements in declared order, so the result
    is a pure function of (graph, requested). Unmarked ids are unvisited.
    """

    for cid in requested:
        if cid not in graph:
            raise UnknownComponentError(cid)

    marks: Dict[str, int] = {}
    order: List[str] = []

    for root in requested:
        if marks.get(root) == _DONE:
            continue

        marks[root] = _IN_PROGRESS
        stack: List[Tuple[str, Iterator[str]]] = [(root, iter(graph[root].requires))]

        while stack:
            node, deps = stack[-1]
            for dep in deps:
                if dep not in graph:
                    raise UnknownComponentError(dep, referenced_by=node, line=graph[node].line)
                mark = marks.get(dep)
                if mark == _DONE:
                    continue
                if mark == _IN_PROGRESS:
                    path = [n for n, _ in stack]
                    cycle = path[path.index(dep):] + [dep]
                    logger.error("Cycle detected at component: %s", dep)
                    raise CycleError(dep, cycle)
                marks[dep] = _IN_PROGRESS
                stack.append((dep, iter(graph[dep].requires)))
                break
            else:
                stack.pop()
                marks[node] = _DONE
                order.append(node)

    logger.debug("Resolved %s -> %s", ",".join(requested), ",".join(order))
    return tuple(order)


def resolve_all(graph: ComponentGraph) -> Tuple[str, ...]:
    """Plan covering every component, in configuration order."""
    return resolve(graph, graph.ids)
