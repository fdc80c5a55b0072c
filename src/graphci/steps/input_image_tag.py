# steps/input_image_tag.py
from __future__ import annotations

from typing import List, Optional

from ..api import PIPELINE_IMAGE_STREAM, ExternalImageLink, InternalImageLink, StepLink
from ..clients import ImageRegistry, image_stream_tag_exists
from ..errors import ExternalCommandError
from ..jobspec import JobSpec
from ..model import InputImageTagStepConfiguration
from ..step import Context, InputDefinition, Step
from ..ui.console import get_console


class InputImageTagStep(Step):
    """Tags an image that lives outside the pipeline into the pipeline stream."""

    def __init__(self, config: InputImageTagStepConfiguration, registry: ImageRegistry, job_spec: JobSpec):
        self.config = config
        self.registry = registry
        self.job_spec = job_spec

    @property
    def source(self) -> ExternalImageLink:
        return ExternalImageLink(self.config.namespace, self.config.name, self.config.tag)

    def name(self) -> str:
        return f"[input:{self.config.to}]"

    def description(self) -> str:
        return f"Find the input image {self.source} and tag it into the pipeline as {self.config.to}"

    def inputs(self, dry: bool = False) -> Optional[InputDefinition]:
        # the external image is part of what this run operates on
        return [str(self.source)]

    def requires(self) -> List[StepLink]:
        return [self.source]

    def creates(self) -> List[StepLink]:
        return [InternalImageLink(self.config.to)]

    def done(self) -> bool:
        return image_stream_tag_exists(self.registry, self.job_spec.namespace, self.config.to)

    def run(self, ctx: Context, dry: bool) -> None:
        if dry:
            get_console().print_info(
                f"[dry run] tag {self.source} as {PIPELINE_IMAGE_STREAM}:{self.config.to}"
            )
            return
        ctx.check(self.name())
        try:
            self.registry.tag_image(self.job_spec.namespace, PIPELINE_IMAGE_STREAM, self.config.to, self.source)
        except Exception as e:
            raise ExternalCommandError(f"could not tag {self.source} into the pipeline: {e}", step=self.name()) from e
