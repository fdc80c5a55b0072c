# executor.py
from __future__ import annotations

import heapq
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .api import StepLink
from .errors import MissingPreconditionError, PipelineFailure, RunCancelled, StepFailure
from .graph import StepGraph, build_graph, topo_order
from .parameters import Parameters, check_parameters
from .step import Context, Step
from .ui.console import get_console

# how often the scheduler wakes up to look at cancellation
POLL_SECONDS = 0.5


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not attempted"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    error: Optional[BaseException] = None
    blocked_by: List[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def reason(self) -> str:
        if self.status is StepStatus.FAILED:
            return str(self.error) if self.error else "failed"
        if self.status is StepStatus.NOT_ATTEMPTED:
            if self.blocked_by:
                return "blocked by " + ", ".join(self.blocked_by)
            return "not scheduled"
        if self.status is StepStatus.SKIPPED:
            return "outputs already exist"
        return ""


@dataclass
class RunReport:
    order: List[str]
    results: Dict[str, StepResult]
    parameters: Parameters
    external: Dict[StepLink, List[str]]
    dry: bool = False

    @property
    def ok(self) -> bool:
        return all(r.status in (StepStatus.SKIPPED, StepStatus.SUCCEEDED) for r in self.results.values())

    @property
    def failures(self) -> List[StepFailure]:
        return [
            StepFailure(step=r.name, cause=r.error)
            for r in self.results.values()
            if r.status is StepStatus.FAILED
        ]

    @property
    def not_attempted(self) -> List[str]:
        return [r.name for r in self.results.values() if r.status is StepStatus.NOT_ATTEMPTED]

    def statuses(self) -> Dict[str, str]:
        return {name: r.status.value for name, r in self.results.items()}

    def raise_for_failures(self) -> None:
        if not self.ok:
            raise PipelineFailure(failures=self.failures, not_attempted=self.not_attempted)


def _default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def preflight(graph: StepGraph, check_link: Optional[Callable[[StepLink], bool]]) -> None:
    """
    Verify that every link no step creates already exists outside the run.
    Without a checker the links are assumed to exist.
    """
    console = get_console()
    missing: Dict[str, List[str]] = {}
    for link, consumers in graph.external.items():
        if check_link is None:
            console.print_debug(f"assuming {link} exists (required by {', '.join(consumers)})")
            continue
        if not check_link(link):
            missing[str(link)] = list(consumers)
    if missing:
        raise MissingPreconditionError(missing)


def _execute_step(step: Step, ctx: Context, dry: bool) -> StepStatus:
    ctx.check(step.name())
    if step.done():
        return StepStatus.SKIPPED
    step.run(ctx, dry)
    return StepStatus.SUCCEEDED


def run_steps(
    steps: Iterable[Step],
    *,
    dry: bool = False,
    max_workers: int | None = None,
    fail_fast: bool = False,
    ctx: Context | None = None,
    check_link: Optional[Callable[[StepLink], bool]] = None,
    grace_period: Optional[timedelta] = None,
) -> RunReport:
    """
    Resolve and execute the step graph.

    Configuration problems (cycles, duplicate producers, duplicate
    parameters, missing external artifacts) raise before any step runs.
    Step failures never raise: they are recorded in the returned report,
    dependents of a failed step are reported as not attempted and
    independent branches keep running unless `fail_fast` is set.
    """
    console = get_console()
    graph = build_graph(steps)
    order = topo_order(graph)
    check_parameters(graph.steps, dry)
    preflight(graph, check_link)

    if ctx is None:
        ctx = Context()
    if max_workers is None:
        max_workers = _default_workers()

    results: Dict[str, StepResult] = {}
    indeg = graph.indegrees()
    ready = [(graph.index[n], n) for n, d in indeg.items() if d == 0]
    heapq.heapify(ready)

    in_flight: Dict[Future, str] = {}
    started: Dict[str, float] = {}
    stop = False
    cancelled_at: Optional[float] = None
    grace = grace_period.total_seconds() if grace_period is not None else None

    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="graphci")
    abandoned = False
    try:
        while ready or in_flight:
            if ctx.cancelled and cancelled_at is None:
                cancelled_at = time.monotonic()
                stop = True
                console.print_info("Run cancelled, waiting for running steps to stop")

            # schedule all currently ready
            while ready and not stop:
                _, name = heapq.heappop(ready)
                step = graph.by_name[name]
                console.print_step_start(name, step.description())
                started[name] = time.monotonic()
                in_flight[pool.submit(_execute_step, step, ctx, dry)] = name

            if not in_flight:
                break

            if cancelled_at is not None and grace is not None and time.monotonic() - cancelled_at > grace:
                for fut, name in in_flight.items():
                    results[name] = StepResult(name, StepStatus.FAILED, error=RunCancelled(name))
                    console.print_step_failed(name, results[name].reason)
                abandoned = True
                break

            done, _ = wait(list(in_flight), timeout=POLL_SECONDS, return_when=FIRST_COMPLETED)
            # completions are handled in declaration order for stable output
            for fut in sorted(done, key=lambda f: graph.index[in_flight[f]]):
                name = in_flight.pop(fut)
                elapsed = time.monotonic() - started[name]
                try:
                    status = fut.result()
                    params, _gate = graph.by_name[name].provides(dry)
                    ctx.parameters.publish(name, params)
                except Exception as e:
                    results[name] = StepResult(name, StepStatus.FAILED, error=e, duration=elapsed)
                    console.print_step_failed(name, results[name].reason)
                    if fail_fast:
                        stop = True
                    continue

                results[name] = StepResult(name, status, duration=elapsed)
                if status is StepStatus.SKIPPED:
                    console.print_step_skipped(name, results[name].reason)
                else:
                    console.print_step_succeeded(name, elapsed)

                # parameters are published above, before any dependent is submitted
                for child in graph.adj[name]:
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        heapq.heappush(ready, (graph.index[child], child))
    finally:
        pool.shutdown(wait=not abandoned, cancel_futures=True)

    failed = [n for n in order if n in results and results[n].status is StepStatus.FAILED]
    for name in order:
        if name in results:
            continue
        blockers = [f for f in failed if name in graph.dependents(f)]
        results[name] = StepResult(name, StepStatus.NOT_ATTEMPTED, blocked_by=blockers)

    return RunReport(
        order=order,
        results={n: results[n] for n in order},
        parameters=ctx.parameters,
        external=dict(graph.external),
        dry=dry,
    )
