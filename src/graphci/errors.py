# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-step reporting
      - debugging without full tracebacks
    """
    kind: str
    message: str
    step: str | None = None
    details: Dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Configuration errors: fatal, raised before any step runs
# ----------------------------------------------------------------------

class ConfigurationError(CIError):
    pass


class JobSpecUnsetError(ConfigurationError):
    def __init__(self, variable: str = "JOB_SPEC"):
        super().__init__(
            kind="job_spec_unset",
            message=f"${variable} unset",
            details={"hint": f"Export the serialized job spec in ${variable} or pass --job-spec."},
        )


class MalformedJobSpecError(ConfigurationError):
    def __init__(self, reason: str, variable: str = "JOB_SPEC"):
        super().__init__(
            kind="job_spec_malformed",
            message=f"malformed ${variable}: {reason}",
        )


class DuplicateStepError(ConfigurationError):
    def __init__(self, names: Sequence[str]):
        super().__init__(
            kind="duplicate_step",
            message=f"Duplicate step names found: {sorted(names)}",
        )


class DuplicateProducerError(ConfigurationError):
    def __init__(self, link: str, producers: Sequence[str]):
        self.link = link
        self.producers = list(producers)
        super().__init__(
            kind="duplicate_producer",
            message=f"{link} is created by more than one step: {', '.join(producers)}",
            details={"link": link},
        )


class GraphCycleError(ConfigurationError):
    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(
            kind="graph_cycle",
            message="step graph has a cycle: " + " -> ".join(self.cycle),
        )


class DuplicateParameterError(ConfigurationError):
    def __init__(self, parameter: str, providers: Sequence[str]):
        self.parameter = parameter
        self.providers = list(providers)
        super().__init__(
            kind="duplicate_parameter",
            message=f"parameter {parameter} is provided by more than one step: {', '.join(providers)}",
            details={"parameter": parameter},
        )


class UnknownTargetError(ConfigurationError):
    def __init__(self, target: str, known: Sequence[str]):
        super().__init__(
            kind="unknown_target",
            message=f"no step named {target!r}",
            details={"known": ", ".join(sorted(known))},
        )


# ----------------------------------------------------------------------
# Pre-flight and execution errors
# ----------------------------------------------------------------------

class MissingPreconditionError(CIError):
    """A required artifact has no producer in the graph and does not exist."""

    def __init__(self, missing: Dict[str, List[str]]):
        self.missing = dict(missing)
        super().__init__(
            kind="missing_precondition",
            message="required artifacts never existed: " + ", ".join(sorted(self.missing)),
            details={link: "required by " + ", ".join(steps) for link, steps in sorted(self.missing.items())},
        )


class ParameterLookupError(CIError):
    def __init__(self, parameter: str, message: str):
        self.parameter = parameter
        super().__init__(kind="parameter_lookup", message=message, details={"parameter": parameter})


class ExternalCommandError(CIError):
    """An external collaborator (build service, registry, runtime) failed."""

    def __init__(self, message: str, *, step: str | None = None, **details: str):
        super().__init__(kind="external", message=message, step=step, details=dict(details))


@dataclass
class StepFailure(Exception):
    step: str
    cause: BaseException

    def __str__(self) -> str:
        return f"step '{self.step}' failed: {self.cause}"


@dataclass
class PipelineFailure(Exception):
    """All failures collected over one run, reported together."""
    failures: List[StepFailure]
    not_attempted: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [f"{len(self.failures)} step(s) failed:"]
        for f in self.failures:
            lines.append(f"  * {f}")
        if self.not_attempted:
            lines.append("not attempted: " + ", ".join(self.not_attempted))
        return "\n".join(lines)


class RunCancelled(CIError):
    def __init__(self, step: str | None = None):
        super().__init__(kind="cancelled", message="pipeline was cancelled", step=step)
