# steps/test.py
from __future__ import annotations

from typing import Dict, List, Optional

from ..api import InternalImageLink, StepLink, unique_links
from ..clients import ContainerRunner, ContainerSpec, job_labels
from ..errors import ExternalCommandError
from ..jobspec import JobSpec
from ..model import ResourceRequirements, TestStepConfiguration
from ..step import Context, InputDefinition, Step
from ..ui.console import get_console

# keep this much of the container output in failure messages
LOG_TAIL = 4000


class TestStep(Step):
    """
    Runs `commands` in a container started from a pipeline image.

    Upstream parameters listed in the configuration are exported into the
    container environment; `parameter_links` are the links gating them, so
    the step is ordered after whoever provides them.
    """

    # not a test case, despite the name
    __test__ = False

    def __init__(
        self,
        config: TestStepConfiguration,
        resources: ResourceRequirements,
        runner: ContainerRunner,
        job_spec: JobSpec,
        parameter_links: Optional[List[StepLink]] = None,
    ):
        self.config = config
        self.resources = resources
        self.runner = runner
        self.job_spec = job_spec
        self.parameter_links = list(parameter_links or [])

    def name(self) -> str:
        return self.config.as_

    def description(self) -> str:
        return f"Run test {self.config.as_} in {self.config.from_}"

    def inputs(self, dry: bool = False) -> Optional[InputDefinition]:
        return None

    def requires(self) -> List[StepLink]:
        return unique_links([InternalImageLink(self.config.from_), *self.parameter_links])

    def creates(self) -> List[StepLink]:
        return []

    def done(self) -> bool:
        return self.runner.succeeded(self.job_spec.namespace, self.config.as_)

    def _environment(self, ctx: Context) -> Dict[str, str]:
        env = dict(self.config.env)
        env.update(ctx.parameters.environment(self.config.parameters))
        return env

    def run(self, ctx: Context, dry: bool) -> None:
        # parameters are resolved in dry runs too; they yield placeholders
        spec = ContainerSpec(
            name=self.config.as_,
            namespace=self.job_spec.namespace,
            image=self.config.from_,
            commands=self.config.commands,
            env=self._environment(ctx),
            labels=job_labels(self.job_spec),
            resources=self.resources,
        )
        if dry:
            get_console().print_info(f"[dry run] run {spec.name} in {spec.image}: {spec.commands}")
            return

        ctx.check(self.name())
        result = self.runner.run(spec, ctx)
        if result.exit_code != 0:
            raise ExternalCommandError(
                f"test {spec.name} failed (exit={result.exit_code})",
                step=self.name(),
                logs=result.logs[-LOG_TAIL:],
            )
