# steps/image_build.py
from __future__ import annotations

import posixpath
from typing import List, Optional, Tuple

from ..api import InternalImageLink, StepLink
from ..clients import BuildClient, ImageRegistry, ImageSource, build_from_source, handle_build, image_stream_tag_exists
from ..jobspec import JobSpec
from ..model import ImageBuildStepConfiguration, ImageSourcePath, ResourceRequirements
from ..step import Context, ParameterMap, Step
from .project_image import local_image_provides


class ImageBuildStep(Step):
    """
    Builds `to` from a Dockerfile that an earlier step left inside a pipeline
    image, for example a generated Dockerfile in a `bin` image. The source
    image is not involved.
    """

    def __init__(
        self,
        config: ImageBuildStepConfiguration,
        resources: ResourceRequirements,
        build_client: BuildClient,
        registry: ImageRegistry,
        job_spec: JobSpec,
    ):
        self.config = config
        self.resources = resources
        self.build_client = build_client
        self.registry = registry
        self.job_spec = job_spec

    def name(self) -> str:
        return self.config.to

    def description(self) -> str:
        return f"Build image {self.config.to} from {self.config.dockerfile_path} in {self.config.dockerfile_from}"

    def requires(self) -> List[StepLink]:
        links: List[StepLink] = [InternalImageLink(self.config.dockerfile_from)]
        if self.config.from_ and self.config.from_ != self.config.dockerfile_from:
            links.append(InternalImageLink(self.config.from_))
        return links

    def creates(self) -> List[StepLink]:
        return [InternalImageLink(self.config.to)]

    def provides(self, dry: bool = False) -> Tuple[ParameterMap, Optional[StepLink]]:
        return local_image_provides(self.registry, self.job_spec.namespace, self.config.to, dry)

    def done(self) -> bool:
        return image_stream_tag_exists(self.registry, self.job_spec.namespace, self.config.to)

    def run(self, ctx: Context, dry: bool) -> None:
        images = [
            ImageSource(
                image=self.config.dockerfile_from,
                paths=[ImageSourcePath(source_path=self.config.dockerfile_path, destination_dir=".")],
            )
        ]
        build = build_from_source(
            self.job_spec,
            self.config.from_,
            self.config.to,
            images,
            posixpath.basename(self.config.dockerfile_path),
            self.resources,
        )
        handle_build(self.build_client, build, ctx, dry)
