# graph.py
from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Set

from .api import StepLink, unique_links
from .errors import DuplicateProducerError, DuplicateStepError, GraphCycleError, UnknownTargetError
from .step import Step


@dataclass
class StepGraph:
    """
    Dependency graph between steps, derived purely from link matching.

    Edges point producer -> consumer: a consumer requires a link that the
    producer creates.
    """
    steps: List[Step]
    by_name: Dict[str, Step]
    index: Dict[str, int]                 # declaration order, used for tie-breaks
    adj: Dict[str, Set[str]]              # producer -> consumers
    deps: Dict[str, Set[str]]             # consumer -> producers
    producers: Dict[StepLink, str]
    # links required by some step but created by none -> requiring steps
    external: Dict[StepLink, List[str]] = field(default_factory=dict)

    def indegrees(self) -> Dict[str, int]:
        return {name: len(self.deps[name]) for name in self.by_name}

    def dependents(self, name: str) -> Set[str]:
        """Every step that transitively depends on `name`."""
        out: Set[str] = set()
        q = deque(self.adj[name])
        while q:
            n = q.popleft()
            if n in out:
                continue
            out.add(n)
            q.extend(self.adj[n])
        return out


def build_graph(steps: Iterable[Step]) -> StepGraph:
    """
    Build the producer -> consumer graph.

    Fails on duplicate step names, on a link created by two steps, and on a
    step that requires what it creates itself. A required link with no
    producer is not an error here; it is recorded in `external`.
    """
    steps = list(steps)
    names = [s.name() for s in steps]
    if len(set(names)) != len(names):
        raise DuplicateStepError({n for n in names if names.count(n) > 1})

    by_name = {s.name(): s for s in steps}
    index = {n: i for i, n in enumerate(names)}

    producers: Dict[StepLink, str] = {}
    for step in steps:
        for link in unique_links(step.creates()):
            if link in producers:
                raise DuplicateProducerError(str(link), [producers[link], step.name()])
            producers[link] = step.name()

    adj: Dict[str, Set[str]] = {n: set() for n in names}
    deps: Dict[str, Set[str]] = {n: set() for n in names}
    external: Dict[StepLink, List[str]] = {}

    for step in steps:
        for link in unique_links(step.requires()):
            producer = producers.get(link)
            if producer is None:
                external.setdefault(link, []).append(step.name())
                continue
            if producer == step.name():
                raise GraphCycleError([producer, producer])
            adj[producer].add(step.name())
            deps[step.name()].add(producer)

    return StepGraph(
        steps=steps,
        by_name=by_name,
        index=index,
        adj=adj,
        deps=deps,
        producers=producers,
        external=external,
    )


def _find_cycle(graph: StepGraph, stuck: Set[str]) -> List[str]:
    # Every stuck node still has a stuck producer, so walking producers
    # backwards from any of them must revisit a node.
    start = min(stuck, key=graph.index.__getitem__)
    path: List[str] = []
    seen: Dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        preds = [p for p in graph.deps[node] if p in stuck]
        node = min(preds, key=graph.index.__getitem__)
    cycle = path[seen[node]:]
    cycle.reverse()  # producer -> consumer
    # rotate so the earliest declared step leads, then close the loop
    first = cycle.index(min(cycle, key=graph.index.__getitem__))
    cycle = cycle[first:] + cycle[:first]
    return cycle + [cycle[0]]


def topo_order(graph: StepGraph) -> List[str]:
    """
    Kahn's algorithm; among ready steps the earliest declared runs first so
    the same configuration always schedules identically.
    """
    indeg = graph.indegrees()
    ready = [(graph.index[n], n) for n, d in indeg.items() if d == 0]
    heapq.heapify(ready)

    order: List[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for child in graph.adj[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(ready, (graph.index[child], child))

    if len(order) != len(indeg):
        stuck = {n for n, d in indeg.items() if d > 0}
        raise GraphCycleError(_find_cycle(graph, stuck))

    return order


def topo_levels(graph: StepGraph) -> List[List[str]]:
    """
    Convert the graph into topological "levels" (stages).
    Steps within a stage do not depend on each other.
    """
    indeg = graph.indegrees()
    level = sorted((n for n, d in indeg.items() if d == 0), key=graph.index.__getitem__)

    levels: List[List[str]] = []
    processed = 0
    while level:
        levels.append(level)
        processed += len(level)
        nxt: List[str] = []
        for node in level:
            for child in graph.adj[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)
        level = sorted(nxt, key=graph.index.__getitem__)

    if processed != len(indeg):
        stuck = {n for n, d in indeg.items() if d > 0}
        raise GraphCycleError(_find_cycle(graph, stuck))

    return levels


def resolve(steps: Iterable[Step]) -> List[Step]:
    """Return the steps in a valid, deterministic execution order."""
    graph = build_graph(steps)
    return [graph.by_name[n] for n in topo_order(graph)]


def select_targets(steps: Sequence[Step], targets: Sequence[str]) -> List[Step]:
    """
    Narrow `steps` to the named targets plus everything they transitively
    require. Declaration order is preserved.
    """
    if not targets:
        return list(steps)

    graph = build_graph(steps)
    for t in targets:
        if t not in graph.by_name:
            raise UnknownTargetError(t, list(graph.by_name))

    keep: Set[str] = set()
    q = deque(targets)
    while q:
        n = q.popleft()
        if n in keep:
            continue
        keep.add(n)
        q.extend(graph.deps[n])

    return [s for s in steps if s.name() in keep]
