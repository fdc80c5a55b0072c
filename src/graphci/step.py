# step.py
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .api import StepLink
from .errors import RunCancelled
from .parameters import Parameters

# name -> deferred lookup; an accessor raises ParameterLookupError on failure
ParameterMap = Dict[str, Callable[[], str]]

# serializable contribution of a step to the identity of the run
InputDefinition = List[str]


class Context:
    """
    Per-run state handed to every Step.run call:
      - the published parameters of upstream steps (read-only for steps)
      - cancellation, which steps check between external calls
    """

    def __init__(self, parameters: Parameters | None = None, timeout: Optional[timedelta] = None):
        self.parameters = parameters if parameters is not None else Parameters()
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = None
        if timeout is not None:
            self.deadline = time.monotonic() + timeout.total_seconds()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self._cancelled.set()
        return self._cancelled.is_set()

    def check(self, step: str | None = None) -> None:
        """Raise RunCancelled if the run was cancelled or timed out."""
        if self.cancelled:
            raise RunCancelled(step)


class Step(ABC):
    """
    A unit of pipeline work.

    Steps are connected by the links they declare: a step that requires a
    link runs after the step that creates it. Steps never mutate their own
    configuration; per-run state lives inside a single run() call.
    """

    @abstractmethod
    def name(self) -> str: ...

    def description(self) -> str:
        return self.name()

    @abstractmethod
    def requires(self) -> List[StepLink]: ...

    @abstractmethod
    def creates(self) -> List[StepLink]: ...

    def provides(self, dry: bool = False) -> Tuple[ParameterMap, Optional[StepLink]]:
        """Parameters exposed to later steps and the link that gates them."""
        return {}, None

    def inputs(self, dry: bool = False) -> Optional[InputDefinition]:
        return None

    @abstractmethod
    def done(self) -> bool:
        """True when everything this step creates already exists."""

    @abstractmethod
    def run(self, ctx: Context, dry: bool) -> None: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name()}>"
