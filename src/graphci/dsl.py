# src/graphci/dsl.py
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple, Union

from .api import ROOT_TAG, SOURCE_TAG
from .model import (
    ImageBuildInputs,
    ImageBuildStepConfiguration,
    ImageSourcePath,
    InputImageTagStepConfiguration,
    ProjectDirectoryImageBuildStepConfiguration,
    ResourceRequirements,
    SourceStepConfiguration,
    StepConfiguration,
    TestStepConfiguration,
)

# ("/go/bin/app", ".") or "/go/bin/app:."
PathSpec = Union[Tuple[str, str], str]


def _path(spec: PathSpec) -> ImageSourcePath:
    if isinstance(spec, str):
        src, sep, dest = spec.rpartition(":")
        if not sep:
            return ImageSourcePath(source_path=spec, destination_dir=".")
        return ImageSourcePath(source_path=src, destination_dir=dest or ".")
    src, dest = spec
    return ImageSourcePath(source_path=src, destination_dir=dest)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def input_image(image: str, *, to: str = ROOT_TAG) -> InputImageTagStepConfiguration:
    """
    Import an external image, written "<namespace>/<name>:<tag>", e.g.

        input_image("docker.io/library/golang:1.22")
    """
    repo, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        repo, tag = image, "latest"
    namespace, _, name = repo.rpartition("/")
    if not name:
        raise ValueError(f"input_image({image!r}) needs a name")
    return InputImageTagStepConfiguration(namespace=namespace, name=name, tag=tag, to=to)


def source(*, from_: str = ROOT_TAG, to: str = SOURCE_TAG, clone_url_base: str = "https://github.com") -> SourceStepConfiguration:
    return SourceStepConfiguration(from_=from_, to=to, clone_url_base=clone_url_base)


def project_image(
    to: str,
    *,
    from_: str = "",
    dockerfile_path: str = "",
    context_dir: str = "",
    inputs: Optional[Dict[str, Sequence[PathSpec]]] = None,
) -> ProjectDirectoryImageBuildStepConfiguration:
    if not to:
        raise ValueError("project_image() needs an output tag")
    return ProjectDirectoryImageBuildStepConfiguration(
        to=to,
        from_=from_,
        dockerfile_path=dockerfile_path,
        context_dir=context_dir,
        inputs={name: ImageBuildInputs(paths=[_path(p) for p in paths]) for name, paths in (inputs or {}).items()},
    )


def image_build(
    to: str,
    dockerfile_from: str,
    *,
    dockerfile_path: str = "Dockerfile",
    from_: str = "",
) -> ImageBuildStepConfiguration:
    return ImageBuildStepConfiguration(
        to=to,
        dockerfile_from=dockerfile_from,
        dockerfile_path=dockerfile_path,
        from_=from_,
    )


def test(
    as_: str,
    commands: str,
    *,
    from_: str = SOURCE_TAG,
    env: Optional[Dict[str, str]] = None,
    parameters: Optional[List[str]] = None,
) -> TestStepConfiguration:
    return TestStepConfiguration(
        as_=as_,
        from_=from_,
        commands=commands,
        # force values to str for stable hashing + env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        parameters=list(parameters or []),
    )


test.__test__ = False  # not a pytest test


def resources(*, requests: Optional[Dict[str, str]] = None, limits: Optional[Dict[str, str]] = None) -> ResourceRequirements:
    return ResourceRequirements(requests=dict(requests or {}), limits=dict(limits or {}))


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*steps: StepConfiguration) -> List[StepConfiguration]:
    """
    Workflow definition helper. Users can write:

        from graphci import wf, input_image, source, project_image, test

        def workflow():
            return wf(
                input_image("docker.io/library/golang:1.22"),
                source(),
                project_image("bin", dockerfile_path="images/Dockerfile"),
                test("unit", "make test"),
            )

    Or use STEPS directly:
        STEPS = wf(...)
    """
    return list(steps)


workflow = wf  # alias (avoid naming your function workflow if you use it)
