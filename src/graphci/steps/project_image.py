# steps/project_image.py
from __future__ import annotations

import json
from typing import Dict, List, Optional, Tuple

from ..api import (
    PIPELINE_IMAGE_STREAM,
    SOURCE_TAG,
    InternalImageLink,
    StepLink,
    local_image_parameter,
)
from ..clients import (
    BuildClient,
    ImageRegistry,
    ImageSource,
    build_from_source,
    handle_build,
    image_stream_tag_exists,
)
from ..errors import ExternalCommandError, ParameterLookupError
from ..jobspec import JobSpec, Refs
from ..model import ImageBuildInputs, ImageSourcePath, ProjectDirectoryImageBuildStepConfiguration, ResourceRequirements
from ..step import Context, InputDefinition, ParameterMap, Step

# provenance labels written on every image built from the repository
SOURCE_LABEL = "org.opencontainers.image.source"
REVISION_LABEL = "org.opencontainers.image.revision"
COMMIT_REF_LABEL = "io.openshift.build.commit.ref"

# stands in for every external lookup during a dry run
DRY_FAKE = "dry-fake"


def provenance_labels(refs: Refs) -> Dict[str, str]:
    """
    Commit metadata for the built image. Images built from pull requests get
    empty values so that untrusted content never ends up in labels that
    promotion trusts.
    """
    if not refs.pulls:
        return {
            SOURCE_LABEL: f"https://github.com/{refs.org}/{refs.repo}",
            REVISION_LABEL: refs.base_sha,
            COMMIT_REF_LABEL: refs.base_ref,
        }
    return {SOURCE_LABEL: "", REVISION_LABEL: "", COMMIT_REF_LABEL: ""}


def build_inputs_from_step(inputs: Dict[str, ImageBuildInputs]) -> List[ImageSource]:
    return [ImageSource(image=name, paths=list(value.paths)) for name, value in inputs.items()]


def resolve_pull_spec(registry: ImageRegistry, namespace: str, tag: str) -> str:
    """Fully-qualified pull spec of a pipeline tag, public registry first."""
    try:
        stream = registry.get_stream(namespace, PIPELINE_IMAGE_STREAM)
    except Exception as e:
        raise ParameterLookupError(
            local_image_parameter(tag), f"could not retrieve output imagestream: {e}"
        ) from e
    if stream.public_docker_image_repository:
        repository = stream.public_docker_image_repository
    elif stream.docker_image_repository:
        repository = stream.docker_image_repository
    else:
        raise ParameterLookupError(
            local_image_parameter(tag), f"image stream {tag} has no accessible image registry value"
        )
    return f"{repository}:{tag}"


def dry_pull_spec(namespace: str, tag: str) -> str:
    return f"{DRY_FAKE}.registry.invalid/{namespace or DRY_FAKE}/{PIPELINE_IMAGE_STREAM}:{tag}"


def local_image_provides(
    registry: ImageRegistry, namespace: str, tag: str, dry: bool
) -> Tuple[ParameterMap, Optional[StepLink]]:
    """Expose LOCAL_IMAGE_<TAG>, resolved only when somebody reads it."""
    if not tag:
        return {}, None

    def pull_spec() -> str:
        if dry:
            return dry_pull_spec(namespace, tag)
        return resolve_pull_spec(registry, namespace, tag)

    return {local_image_parameter(tag): pull_spec}, InternalImageLink(tag)


def source_working_dir(registry: ImageRegistry, namespace: str) -> str:
    """WorkingDir of the source image, where the repository is checked out."""
    source = f"{PIPELINE_IMAGE_STREAM}:{SOURCE_TAG}"
    try:
        ist = registry.get_tag(namespace, PIPELINE_IMAGE_STREAM, SOURCE_TAG)
    except Exception as e:
        raise ExternalCommandError(f"could not fetch source ImageStreamTag: {e}") from e
    if ist is None:
        raise ExternalCommandError(f"could not fetch source ImageStreamTag: {source} does not exist")
    if not ist.docker_image_metadata:
        raise ExternalCommandError(f"could not fetch Docker image metadata for ImageStreamTag {source}")
    try:
        metadata = json.loads(ist.docker_image_metadata)
        return (metadata.get("Config") or {}).get("WorkingDir", "")
    except (ValueError, AttributeError) as e:
        raise ExternalCommandError(f"malformed Docker image metadata on ImageStreamTag: {e}") from e


class ProjectDirectoryImageBuildStep(Step):
    def __init__(
        self,
        config: ProjectDirectoryImageBuildStepConfiguration,
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
        return f"Build image {self.config.to} from the repository"

    def inputs(self, dry: bool = False) -> Optional[InputDefinition]:
        return None

    def requires(self) -> List[StepLink]:
        links: List[StepLink] = [InternalImageLink(SOURCE_TAG)]
        if self.config.from_:
            links.append(InternalImageLink(self.config.from_))
        for name in self.config.inputs:
            links.append(InternalImageLink(name))
        return links

    def creates(self) -> List[StepLink]:
        return [InternalImageLink(self.config.to)]

    def provides(self, dry: bool = False) -> Tuple[ParameterMap, Optional[StepLink]]:
        return local_image_provides(self.registry, self.job_spec.namespace, self.config.to, dry)

    def done(self) -> bool:
        return image_stream_tag_exists(self.registry, self.job_spec.namespace, self.config.to)

    def run(self, ctx: Context, dry: bool) -> None:
        if dry:
            working_dir = DRY_FAKE
        else:
            ctx.check(self.name())
            working_dir = source_working_dir(self.registry, self.job_spec.namespace)

        images = build_inputs_from_step(self.config.inputs)
        if SOURCE_TAG not in self.config.inputs:
            images.append(
                ImageSource(
                    image=SOURCE_TAG,
                    paths=[ImageSourcePath(
                        source_path=f"{working_dir}/{self.config.context_dir}/.",
                        destination_dir=".",
                    )],
                )
            )

        build = build_from_source(
            self.job_spec,
            self.config.from_,
            self.config.to,
            images,
            self.config.dockerfile_path,
            self.resources,
        )
        build.labels.update(provenance_labels(self.job_spec.refs))
        handle_build(self.build_client, build, ctx, dry)
