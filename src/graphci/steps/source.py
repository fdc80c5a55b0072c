# steps/source.py
from __future__ import annotations

import shlex
from typing import List, Optional

from ..api import InternalImageLink, StepLink
from ..clients import BuildClient, ImageRegistry, build_from_source, handle_build, image_stream_tag_exists
from ..jobspec import JobSpec, Refs
from ..model import ResourceRequirements, SourceStepConfiguration
from ..step import Context, InputDefinition, Step


def clone_path(refs: Refs) -> str:
    """Where the repository is checked out inside the source image."""
    if refs.path_alias:
        return f"/go/src/{refs.path_alias}"
    return f"/go/src/github.com/{refs.org}/{refs.repo}"


def clone_commands(refs: Refs, url_base: str = "https://github.com") -> List[str]:
    """
    Shell commands that check out the base ref and merge every pull on top,
    in the order the pulls are listed.
    """
    url = f"{url_base.rstrip('/')}/{refs.org}/{refs.repo}.git"
    cmds = [
        f"git init {shlex.quote(clone_path(refs))}",
        f"cd {shlex.quote(clone_path(refs))}",
        "git config user.name ci-robot && git config user.email ci-robot@graphci.invalid",
        f"git fetch {shlex.quote(url)} {shlex.quote(refs.base_ref)}",
        f"git checkout {shlex.quote(refs.base_sha or 'FETCH_HEAD')}",
    ]
    for pull in refs.pulls:
        cmds.append(f"git fetch {shlex.quote(url)} pull/{pull.number}/head")
        cmds.append(f"git merge --no-ff {shlex.quote(pull.sha or 'FETCH_HEAD')}")
    return cmds


def source_dockerfile(refs: Refs, url_base: str = "https://github.com") -> str:
    # FROM is replaced by the build's from image
    return "\n".join([
        "FROM scratch",
        "RUN " + " && ".join(clone_commands(refs, url_base)),
        f"WORKDIR {clone_path(refs)}",
        "",
    ])


class SourceStep(Step):
    """Builds the canonical source image by cloning the job refs onto the root image."""

    def __init__(
        self,
        config: SourceStepConfiguration,
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
        return f"Clone the correct source code into an image and tag it as {self.config.to}"

    def inputs(self, dry: bool = False) -> Optional[InputDefinition]:
        return [self.job_spec.inputs()]

    def requires(self) -> List[StepLink]:
        return [InternalImageLink(self.config.from_)]

    def creates(self) -> List[StepLink]:
        return [InternalImageLink(self.config.to)]

    def done(self) -> bool:
        return image_stream_tag_exists(self.registry, self.job_spec.namespace, self.config.to)

    def run(self, ctx: Context, dry: bool) -> None:
        build = build_from_source(
            self.job_spec,
            self.config.from_,
            self.config.to,
            [],
            "",
            self.resources,
            dockerfile=source_dockerfile(self.job_spec.refs, self.config.clone_url_base),
        )
        handle_build(self.build_client, build, ctx, dry)
