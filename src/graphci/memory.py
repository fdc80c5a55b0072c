# memory.py
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Set, Tuple

from .api import PIPELINE_IMAGE_STREAM, ExternalImageLink
from .clients import (
    Build,
    BuildAlreadyExistsError,
    BuildResult,
    ContainerResult,
    ContainerSpec,
    ImageStream,
    ImageStreamTag,
)
from .errors import ExternalCommandError
from .step import Context


class InMemoryImageRegistry:
    """
    Image streams kept in a dict, for offline dry runs and tests.
    Mutating calls are recorded in `calls`.
    """

    def __init__(self, repository: str = "", public_repository: str = ""):
        self.repository = repository
        self.public_repository = public_repository
        self.tags: Dict[Tuple[str, str, str], ImageStreamTag] = {}
        self.external: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []
        self.lookups: List[str] = []
        self._lock = threading.Lock()

    def add_tag(self, namespace: str, tag: str, working_dir: str = "", stream: str = PIPELINE_IMAGE_STREAM) -> None:
        metadata = '{"Config": {"WorkingDir": "%s"}}' % working_dir
        with self._lock:
            self.tags[(namespace, stream, tag)] = ImageStreamTag(
                name=f"{stream}:{tag}", image=f"sha256:{tag}", docker_image_metadata=metadata
            )

    def get_tag(self, namespace: str, stream: str, tag: str) -> Optional[ImageStreamTag]:
        with self._lock:
            return self.tags.get((namespace, stream, tag))

    def get_stream(self, namespace: str, stream: str) -> ImageStream:
        with self._lock:
            self.lookups.append(f"{namespace}/{stream}")
        return ImageStream(
            name=stream,
            namespace=namespace,
            docker_image_repository=self.repository,
            public_docker_image_repository=self.public_repository,
        )

    def image_exists(self, link: ExternalImageLink) -> bool:
        return str(link) in self.external

    def tag_image(self, namespace: str, stream: str, tag: str, source: ExternalImageLink) -> None:
        with self._lock:
            self.calls.append(("tag", f"{namespace}/{stream}:{tag}"))
        if str(source) not in self.external:
            raise ExternalCommandError(f"image {source} does not exist")
        self.add_tag(namespace, tag, stream=stream)


class InMemoryBuildClient:
    """Builds succeed (or fail, when listed in `failing`) and tag their output."""

    def __init__(self, registry: InMemoryImageRegistry, failing: Optional[Set[str]] = None):
        self.registry = registry
        self.failing = set(failing or ())
        self.builds: Dict[str, Build] = {}
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def create_build(self, build: Build) -> None:
        key = f"{build.namespace}/{build.name}"
        with self._lock:
            self.calls.append(("create_build", key))
            if key in self.builds:
                raise BuildAlreadyExistsError(build.name)
            self.builds[key] = build

    def wait_for_build(self, namespace: str, name: str, ctx: Context) -> BuildResult:
        with self._lock:
            build = self.builds[f"{namespace}/{name}"]
        if name in self.failing:
            return BuildResult(succeeded=False, reason="DockerBuildFailed", message=f"{name} failed")
        self.registry.add_tag(namespace, build.to, working_dir="/go/src/app")
        return BuildResult(succeeded=True)


class InMemoryContainerRunner:
    def __init__(self, exit_codes: Optional[Dict[str, int]] = None):
        self.exit_codes = dict(exit_codes or {})
        self.completed: Set[Tuple[str, str]] = set()
        self.runs: List[ContainerSpec] = []
        self._lock = threading.Lock()

    def succeeded(self, namespace: str, name: str) -> bool:
        with self._lock:
            return (namespace, name) in self.completed

    def run(self, spec: ContainerSpec, ctx: Context) -> ContainerResult:
        code = self.exit_codes.get(spec.name, 0)
        with self._lock:
            self.runs.append(spec)
            if code == 0:
                self.completed.add((spec.namespace, spec.name))
        return ContainerResult(exit_code=code, logs=f"ran {spec.commands}")
