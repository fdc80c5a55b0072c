# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Union

from .api import ROOT_TAG, SOURCE_TAG


@dataclass(frozen=True)
class ResourceRequirements:
    """Requests/limits for a build or test container, e.g. {"cpu": "2", "memory": "4Gi"}."""
    requests: Dict[str, str] = field(default_factory=dict)
    limits: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageSourcePath:
    source_path: str
    destination_dir: str


@dataclass(frozen=True)
class ImageBuildInputs:
    """Content copied out of another pipeline image into a build context."""
    paths: List[ImageSourcePath] = field(default_factory=list)


# ---------------------------------------------------------------------
# Step configurations (one per step variant)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class InputImageTagStepConfiguration:
    """Import an image from outside the pipeline as a pipeline tag."""
    namespace: str
    name: str
    tag: str
    to: str = ROOT_TAG


@dataclass(frozen=True)
class SourceStepConfiguration:
    """Clone the job refs on top of `from_` to produce the source image."""
    from_: str = ROOT_TAG
    to: str = SOURCE_TAG
    clone_url_base: str = "https://github.com"


@dataclass(frozen=True)
class ProjectDirectoryImageBuildStepConfiguration:
    """Build an image from a directory of the source image."""
    to: str
    from_: str = ""
    dockerfile_path: str = ""
    context_dir: str = ""
    inputs: Dict[str, ImageBuildInputs] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageBuildStepConfiguration:
    """Build an image from a Dockerfile held in a prior pipeline image."""
    to: str
    dockerfile_from: str
    dockerfile_path: str = "Dockerfile"
    from_: str = ""


@dataclass(frozen=True)
class TestStepConfiguration:
    """Run shell commands in a container started from a pipeline image."""
    as_: str
    from_: str
    commands: str
    env: Dict[str, str] = field(default_factory=dict)
    # upstream parameters exported into the container environment
    parameters: List[str] = field(default_factory=list)


StepConfiguration = Union[
    InputImageTagStepConfiguration,
    SourceStepConfiguration,
    ProjectDirectoryImageBuildStepConfiguration,
    ImageBuildStepConfiguration,
    TestStepConfiguration,
]
