# docker.py
from __future__ import annotations

import json
import re
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

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
from .errors import CIError, ExternalCommandError
from .step import Context
from .ui.console import get_console

DOCKER_HINT = "Install Docker and ensure the daemon is running."

# keep this much of docker's output in error messages
OUTPUT_TAIL = 4000

_FROM_RE = re.compile(r"^\s*FROM\s+\S+", re.IGNORECASE)


# ---------------------------------------------------------------------
# Docker CLI plumbing
# ---------------------------------------------------------------------

def _docker(args: List[str], *, check: bool = True) -> subprocess.CompletedProcess:
    """Run one docker CLI command and capture its output."""
    get_console().print_debug("docker " + " ".join(args))
    try:
        proc = subprocess.run(["docker", *args], text=True, capture_output=True)
    except FileNotFoundError as e:
        raise CIError(
            kind="docker_unavailable",
            message="Docker is not available",
            details={"hint": DOCKER_HINT},
        ) from e
    if check and proc.returncode != 0:
        raise ExternalCommandError(
            f"docker {args[0]} failed (exit={proc.returncode})",
            stderr=(proc.stderr or "")[-OUTPUT_TAIL:],
        )
    return proc


def check_docker_available() -> None:
    """Check if Docker is available, raise helpful error if not."""
    proc = _docker(["version", "--format", "{{.Server.Version}}"], check=False)
    if proc.returncode != 0:
        raise CIError(
            kind="docker_unavailable",
            message="Docker is not available",
            details={"hint": DOCKER_HINT},
        )


def replace_from(dockerfile: str, image: str) -> str:
    """Point the last FROM of a Dockerfile at `image`."""
    lines = dockerfile.splitlines()
    for idx in range(len(lines) - 1, -1, -1):
        if _FROM_RE.match(lines[idx]):
            lines[idx] = f"FROM {image}"
            break
    return "\n".join(lines) + "\n"


class DockerNaming:
    """
    Maps pipeline tags to local docker image references:
        [<registry>/]<namespace>/<stream>:<tag>
    """

    def __init__(self, registry: str = ""):
        self.registry = registry.rstrip("/")

    def repository(self, namespace: str, stream: str = PIPELINE_IMAGE_STREAM) -> str:
        base = f"{namespace}/{stream}" if namespace else stream
        return f"{self.registry}/{base}" if self.registry else base

    def ref(self, namespace: str, tag: str, stream: str = PIPELINE_IMAGE_STREAM) -> str:
        return f"{self.repository(namespace, stream)}:{tag}"


# ---------------------------------------------------------------------
# Image registry
# ---------------------------------------------------------------------

class DockerImageRegistry:
    """Image streams backed by the local docker image store."""

    def __init__(self, naming: DockerNaming):
        self.naming = naming

    def get_tag(self, namespace: str, stream: str, tag: str) -> Optional[ImageStreamTag]:
        ref = self.naming.ref(namespace, tag, stream)
        proc = _docker(["image", "inspect", ref], check=False)
        if proc.returncode != 0:
            if "no such image" in (proc.stderr or "").lower():
                return None
            raise ExternalCommandError(f"could not inspect {ref}", stderr=(proc.stderr or "")[-OUTPUT_TAIL:])
        try:
            info = json.loads(proc.stdout)[0]
        except (ValueError, IndexError) as e:
            raise ExternalCommandError(f"malformed docker inspect output for {ref}: {e}") from e
        return ImageStreamTag(
            name=f"{stream}:{tag}",
            image=info.get("Id", ""),
            docker_image_metadata=json.dumps({"Config": info.get("Config") or {}}),
        )

    def get_stream(self, namespace: str, stream: str) -> ImageStream:
        repository = self.naming.repository(namespace, stream)
        return ImageStream(
            name=stream,
            namespace=namespace,
            docker_image_repository=repository,
            # only a pushed-to registry is reachable from other hosts
            public_docker_image_repository=repository if self.naming.registry else "",
        )

    def image_exists(self, link: ExternalImageLink) -> bool:
        ref = str(link)
        if _docker(["image", "inspect", ref], check=False).returncode == 0:
            return True
        # read-only lookup against the remote registry
        return _docker(["manifest", "inspect", ref], check=False).returncode == 0

    def tag_image(self, namespace: str, stream: str, tag: str, source: ExternalImageLink) -> None:
        src = str(source)
        if _docker(["image", "inspect", src], check=False).returncode != 0:
            _docker(["pull", src])
        _docker(["tag", src, self.naming.ref(namespace, tag, stream)])


# ---------------------------------------------------------------------
# Build service
# ---------------------------------------------------------------------

class DockerBuildClient:
    """
    Runs builds synchronously with `docker build`.

    Image sources are materialized into a temporary build context by copying
    their paths out of a stopped container.
    """

    def __init__(self, naming: DockerNaming):
        self.naming = naming
        self._results: Dict[str, BuildResult] = {}
        self._lock = threading.Lock()

    def _key(self, namespace: str, name: str) -> str:
        return f"{namespace}/{name}"

    def _copy_from_image(self, image_ref: str, source_path: str, dest: Path) -> None:
        cid = _docker(["create", image_ref]).stdout.strip()
        try:
            dest.mkdir(parents=True, exist_ok=True)
            _docker(["cp", f"{cid}:{source_path}", str(dest)])
        finally:
            _docker(["rm", "-f", cid], check=False)

    def _dockerfile_text(self, build: Build, context: Path) -> str:
        if build.dockerfile:
            return build.dockerfile
        path = context / build.context_dir / build.dockerfile_path
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ExternalCommandError(f"could not read {build.dockerfile_path} from the build context: {e}") from e

    def _build(self, build: Build) -> BuildResult:
        with tempfile.TemporaryDirectory(prefix="graphci-build-") as tmp:
            context = Path(tmp)
            for source in build.images:
                ref = self.naming.ref(build.namespace, source.image)
                for p in source.paths:
                    self._copy_from_image(ref, p.source_path, context / p.destination_dir)

            dockerfile = self._dockerfile_text(build, context)
            if build.from_image:
                dockerfile = replace_from(dockerfile, self.naming.ref(build.namespace, build.from_image))
            dockerfile_path = context / ".graphci.Dockerfile"
            dockerfile_path.write_text(dockerfile, encoding="utf-8")

            cmd = ["build", "-f", str(dockerfile_path), "-t", self.naming.ref(build.namespace, build.to)]
            for k, v in sorted({**build.build_labels, **build.labels}.items()):
                cmd.extend(["--label", f"{k}={v}"])
            memory = build.resources.limits.get("memory")
            if memory:
                cmd.extend(["--memory", memory])
            cmd.append(str(context / build.context_dir))

            proc = _docker(cmd, check=False)
            if proc.returncode != 0:
                return BuildResult(
                    succeeded=False,
                    reason=f"docker build exited {proc.returncode}",
                    message=(proc.stderr or "")[-OUTPUT_TAIL:],
                )
            return BuildResult(succeeded=True)

    def create_build(self, build: Build) -> None:
        key = self._key(build.namespace, build.name)
        with self._lock:
            if key in self._results:
                raise BuildAlreadyExistsError(build.name)
        result = self._build(build)
        with self._lock:
            self._results[key] = result

    def wait_for_build(self, namespace: str, name: str, ctx: Context) -> BuildResult:
        # builds run synchronously, so the result is already there
        with self._lock:
            result = self._results.get(self._key(namespace, name))
        if result is None:
            raise ExternalCommandError(f"no build named {name} in {namespace}")
        return result


# ---------------------------------------------------------------------
# Container runtime
# ---------------------------------------------------------------------

class DockerContainerRunner:
    """Runs test containers named <namespace>-<name> so reruns can find them."""

    def __init__(self, naming: DockerNaming):
        self.naming = naming

    def container_name(self, namespace: str, name: str) -> str:
        raw = f"{namespace}-{name}" if namespace else name
        return re.sub(r"[^a-zA-Z0-9_.-]", "-", raw)

    def succeeded(self, namespace: str, name: str) -> bool:
        proc = _docker(
            ["inspect", "-f", "{{.State.Status}} {{.State.ExitCode}}", self.container_name(namespace, name)],
            check=False,
        )
        return proc.returncode == 0 and proc.stdout.strip() == "exited 0"

    def run(self, spec: ContainerSpec, ctx: Context) -> ContainerResult:
        name = self.container_name(spec.namespace, spec.name)
        # a failed container from an earlier attempt would block the name
        _docker(["rm", "-f", name], check=False)

        cmd = ["run", "--name", name]
        for k, v in sorted(spec.env.items()):
            cmd.extend(["-e", f"{k}={v}"])
        for k, v in sorted(spec.labels.items()):
            cmd.extend(["--label", f"{k}={v}"])
        memory = spec.resources.limits.get("memory")
        if memory:
            cmd.extend(["--memory", memory])
        cpu = spec.resources.limits.get("cpu")
        if cpu:
            cmd.extend(["--cpus", cpu])
        cmd.append(self.naming.ref(spec.namespace, spec.image))
        cmd.extend(["sh", "-c", spec.commands])

        proc = _docker(cmd, check=False)
        return ContainerResult(exit_code=proc.returncode, logs=(proc.stdout or "") + (proc.stderr or ""))
