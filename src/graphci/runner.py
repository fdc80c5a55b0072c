# runner.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .api import ExternalImageLink, InternalImageLink, StepLink
from .cache import compute_run_key, namespace_for
from .clients import BuildClient, ContainerRunner, ImageRegistry, image_stream_tag_exists
from .errors import ConfigurationError
from .executor import RunReport, run_steps
from .graph import select_targets
from .jobspec import JobSpec
from .model import (
    ImageBuildStepConfiguration,
    InputImageTagStepConfiguration,
    ProjectDirectoryImageBuildStepConfiguration,
    ResourceRequirements,
    SourceStepConfiguration,
    StepConfiguration,
    TestStepConfiguration,
)
from .step import Context, Step
from .steps import ImageBuildStep, InputImageTagStep, ProjectDirectoryImageBuildStep, SourceStep, TestStep

DEFAULT_WORKFLOW = "graphci_workflow.py"

# resources entry applied to every step without its own entry
DEFAULT_RESOURCES_KEY = "*"


@dataclass
class Workflow:
    steps: List[StepConfiguration]
    resources: Dict[str, ResourceRequirements] = field(default_factory=dict)

    def resources_for(self, name: str) -> ResourceRequirements:
        if name in self.resources:
            return self.resources[name]
        return self.resources.get(DEFAULT_RESOURCES_KEY, ResourceRequirements())


@dataclass
class Clients:
    """The external collaborators steps are built with."""
    build: BuildClient
    registry: ImageRegistry
    runner: ContainerRunner


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

_STEP_TYPES = (
    InputImageTagStepConfiguration,
    SourceStepConfiguration,
    ProjectDirectoryImageBuildStepConfiguration,
    ImageBuildStepConfiguration,
    TestStepConfiguration,
)


def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> List[StepConfiguration]
      - STEPS = [StepConfiguration, ...]
    and may define:
      - RESOURCES = {"*": resources(...), "<step>": resources(...)}
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"graphci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    steps = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            steps = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from graphci import wf, source` then "
                    "`def workflow(): return wf(source(), ...)`"
                ) from e
            raise
    elif "STEPS" in globals_dict:
        steps = globals_dict["STEPS"]

    if not isinstance(steps, list) or not all(isinstance(s, _STEP_TYPES) for s in steps):
        raise TypeError(
            "Workflow must return/define a list of step configurations. "
            "Define workflow() -> list or STEPS = [...]."
        )

    res = globals_dict.get("RESOURCES") or {}
    if not isinstance(res, dict) or not all(isinstance(v, ResourceRequirements) for v in res.values()):
        raise TypeError("RESOURCES must map step names to resources(...)")

    return Workflow(steps=steps, resources=dict(res))


# ----------------------------------------------------------------------
# Step construction
# ----------------------------------------------------------------------

def _config_name(config: StepConfiguration) -> str:
    if isinstance(config, TestStepConfiguration):
        return config.as_
    return config.to


def build_steps(workflow: Workflow, job_spec: JobSpec, clients: Clients, *, dry: bool = False) -> List[Step]:
    """
    Instantiate a Step per configuration, in declaration order. Test steps
    are constructed after the rest so the parameters they consume can be
    traced to the link gating them; they keep their declared slot.
    """
    slots: List[Optional[Step]] = []
    tests: List[Tuple[int, TestStepConfiguration]] = []
    for config in workflow.steps:
        res = workflow.resources_for(_config_name(config))
        if isinstance(config, InputImageTagStepConfiguration):
            slots.append(InputImageTagStep(config, clients.registry, job_spec))
        elif isinstance(config, SourceStepConfiguration):
            slots.append(SourceStep(config, res, clients.build, clients.registry, job_spec))
        elif isinstance(config, ProjectDirectoryImageBuildStepConfiguration):
            slots.append(ProjectDirectoryImageBuildStep(config, res, clients.build, clients.registry, job_spec))
        elif isinstance(config, ImageBuildStepConfiguration):
            slots.append(ImageBuildStep(config, res, clients.build, clients.registry, job_spec))
        elif isinstance(config, TestStepConfiguration):
            tests.append((len(slots), config))
            slots.append(None)
        else:
            raise ConfigurationError(kind="unknown_step", message=f"unsupported step configuration: {config!r}")

    gates: Dict[str, StepLink] = {}
    for step in slots:
        if step is None:
            continue
        params, link = step.provides(dry)
        if link is None:
            continue
        for name in params:
            gates[name] = link

    for idx, config in tests:
        links: List[StepLink] = []
        for name in config.parameters:
            if name not in gates:
                raise ConfigurationError(
                    kind="unknown_parameter",
                    message=f"test {config.as_} consumes parameter {name}, which no step provides",
                    step=config.as_,
                )
            links.append(gates[name])
        slots[idx] = TestStep(config, workflow.resources_for(config.as_), clients.runner, job_spec, links)

    return [step for step in slots if step is not None]


def link_checker(registry: ImageRegistry, namespace: str) -> Callable[[StepLink], bool]:
    """Existence check for links that no step in the graph creates."""

    def check(link: StepLink) -> bool:
        if isinstance(link, InternalImageLink):
            return image_stream_tag_exists(registry, namespace, link.tag)
        if isinstance(link, ExternalImageLink):
            return registry.image_exists(link)
        return False

    return check


def derive_namespace(workflow: Workflow, job_spec: JobSpec, clients: Clients, *, dry: bool = False) -> str:
    """Namespace shared by every run that operates on identical inputs."""
    key, _manifest = compute_run_key(job_spec, build_steps(workflow, job_spec, clients, dry=dry), dry=dry)
    return namespace_for(key)


def run_workflow(
    workflow: Workflow,
    job_spec: JobSpec,
    clients: Clients,
    *,
    dry: bool = False,
    targets: Sequence[str] = (),
    max_workers: int | None = None,
    fail_fast: bool = False,
    ctx: Optional[Context] = None,
    verify_external: bool = True,
) -> RunReport:
    steps = build_steps(workflow, job_spec, clients, dry=dry)
    steps = select_targets(steps, list(targets))
    check = link_checker(clients.registry, job_spec.namespace) if verify_external else None
    return run_steps(
        steps,
        dry=dry,
        max_workers=max_workers,
        fail_fast=fail_fast,
        ctx=ctx,
        check_link=check,
        grace_period=job_spec.grace_period,
    )
