# clients.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from .api import PIPELINE_IMAGE_STREAM, ExternalImageLink
from .errors import CIError, ExternalCommandError
from .jobspec import JobSpec
from .model import ImageSourcePath, ResourceRequirements
from .step import Context
from .ui.console import get_console

# ---------------------------------------------------------------------
# Build service
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class ImageSource:
    """Copy paths out of a pipeline image into the build context."""
    image: str  # pipeline tag, e.g. "src"
    paths: List[ImageSourcePath] = field(default_factory=list)


@dataclass
class Build:
    name: str
    namespace: str
    to: str                           # pipeline tag written on success
    from_image: str = ""              # pipeline tag replacing the Dockerfile's FROM
    dockerfile_path: str = ""
    dockerfile: str = ""              # inline Dockerfile, used instead of dockerfile_path
    context_dir: str = ""
    images: List[ImageSource] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)        # labels on the built image
    build_labels: Dict[str, str] = field(default_factory=dict)  # labels on the build itself
    resources: ResourceRequirements = field(default_factory=ResourceRequirements)
    owner: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BuildResult:
    succeeded: bool
    reason: str = ""
    message: str = ""


class BuildAlreadyExistsError(CIError):
    def __init__(self, name: str):
        super().__init__(kind="build_exists", message=f"build {name} already exists")


class BuildClient(Protocol):
    def create_build(self, build: Build) -> None:
        """Submit a build; raises BuildAlreadyExistsError if one with that name exists."""

    def wait_for_build(self, namespace: str, name: str, ctx: Context) -> BuildResult:
        """Block until the build reaches a terminal state."""


# ---------------------------------------------------------------------
# Image registry / image streams
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class ImageStreamTag:
    name: str                       # "<stream>:<tag>"
    image: str                      # image id or digest
    docker_image_metadata: str = ""  # raw JSON, {"Config": {"WorkingDir": ...}}


@dataclass(frozen=True)
class ImageStream:
    name: str
    namespace: str
    docker_image_repository: str = ""
    public_docker_image_repository: str = ""


class ImageRegistry(Protocol):
    def get_tag(self, namespace: str, stream: str, tag: str) -> Optional[ImageStreamTag]:
        """Return the tag, or None when it does not exist."""

    def get_stream(self, namespace: str, stream: str) -> ImageStream: ...

    def image_exists(self, link: ExternalImageLink) -> bool:
        """True if an image outside the pipeline can be pulled."""

    def tag_image(self, namespace: str, stream: str, tag: str, source: ExternalImageLink) -> None:
        """Point namespace/stream:tag at an existing external image."""


# ---------------------------------------------------------------------
# Container runtime (test steps)
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    namespace: str
    image: str  # pipeline tag
    commands: str
    env: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    resources: ResourceRequirements = field(default_factory=ResourceRequirements)


@dataclass(frozen=True)
class ContainerResult:
    exit_code: int
    logs: str = ""


class ContainerRunner(Protocol):
    def run(self, spec: ContainerSpec, ctx: Context) -> ContainerResult: ...

    def succeeded(self, namespace: str, name: str) -> bool:
        """True if a container with this name already ran to a zero exit."""


# ---------------------------------------------------------------------
# Shared helpers for step implementations
# ---------------------------------------------------------------------


def image_stream_tag_exists(registry: ImageRegistry, namespace: str, tag: str) -> bool:
    return registry.get_tag(namespace, PIPELINE_IMAGE_STREAM, tag) is not None


def job_labels(spec: JobSpec) -> Dict[str, str]:
    labels = {
        "graphci.io/job": spec.job,
        "graphci.io/build-id": spec.build_id,
        "graphci.io/run-id": spec.run_id,
    }
    return {k: v for k, v in labels.items() if v}


def owner_dict(spec: JobSpec) -> Optional[Dict[str, str]]:
    if spec.owner is None:
        return None
    return spec.owner.model_dump()


def build_from_source(
    spec: JobSpec,
    from_tag: str,
    to_tag: str,
    images: List[ImageSource],
    dockerfile_path: str,
    resources: ResourceRequirements,
    *,
    context_dir: str = "",
    dockerfile: str = "",
) -> Build:
    return Build(
        name=to_tag,
        namespace=spec.namespace,
        to=to_tag,
        from_image=from_tag,
        dockerfile_path=dockerfile_path or ("" if dockerfile else "Dockerfile"),
        dockerfile=dockerfile,
        context_dir=context_dir,
        images=list(images),
        build_labels=job_labels(spec),
        resources=resources,
        owner=owner_dict(spec),
    )


def handle_build(client: BuildClient, build: Build, ctx: Context, dry: bool) -> None:
    """
    Submit a build and wait for it. In a dry run the build is only printed.
    A build that already exists (e.g. from an earlier attempt) is awaited
    instead of resubmitted.
    """
    console = get_console()
    if dry:
        console.print_build(build.to_dict())
        return

    ctx.check(build.name)
    try:
        client.create_build(build)
    except BuildAlreadyExistsError:
        console.print_debug(f"build {build.name} already exists, waiting for it")

    result = client.wait_for_build(build.namespace, build.name, ctx)
    if not result.succeeded:
        raise ExternalCommandError(
            f"the build {build.name} failed: {result.reason or 'unknown reason'}",
            step=build.name,
            output=result.message,
        )
