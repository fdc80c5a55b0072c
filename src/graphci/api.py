# api.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Union

# Every pipeline image lives as a tag on this one image stream in the
# target namespace.
PIPELINE_IMAGE_STREAM = "pipeline"

# Canonical pipeline tags
ROOT_TAG = "root"
SOURCE_TAG = "src"


@dataclass(frozen=True)
class InternalImageLink:
    """A tag on the pipeline image stream of this run."""
    tag: str

    def __str__(self) -> str:
        return f"{PIPELINE_IMAGE_STREAM}:{self.tag}"


@dataclass(frozen=True)
class ExternalImageLink:
    """An image stream tag that lives outside the pipeline stream."""
    namespace: str
    name: str
    tag: str

    def __str__(self) -> str:
        if not self.namespace:
            return f"{self.name}:{self.tag}"
        return f"{self.namespace}/{self.name}:{self.tag}"


StepLink = Union[InternalImageLink, ExternalImageLink]


def unique_links(links: Iterable[StepLink]) -> List[StepLink]:
    """De-dupe while preserving declaration order."""
    seen = set()
    out: List[StepLink] = []
    for link in links:
        if link not in seen:
            seen.add(link)
            out.append(link)
    return out


def local_image_parameter(tag: str) -> str:
    """Name of the parameter that resolves to the pull spec of a pipeline tag."""
    return "LOCAL_IMAGE_" + tag.replace("-", "_").upper()
