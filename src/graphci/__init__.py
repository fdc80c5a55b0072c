from .dsl import image_build, input_image, project_image, resources, source, test, wf, workflow
from .executor import RunReport, StepStatus, run_steps
from .graph import resolve
from .jobspec import JobSpec, load_job_spec, resolve_spec_from_env
from .runner import run_workflow
from .step import Context, Step

__all__ = [
    "image_build",
    "input_image",
    "project_image",
    "resources",
    "source",
    "test",
    "wf",
    "workflow",
    "RunReport",
    "StepStatus",
    "run_steps",
    "resolve",
    "JobSpec",
    "load_job_spec",
    "resolve_spec_from_env",
    "run_workflow",
    "Context",
    "Step",
]
