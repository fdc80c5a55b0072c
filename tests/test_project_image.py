from __future__ import annotations

import pytest

from graphci.api import InternalImageLink
from graphci.clients import ImageStream
from graphci.errors import ExternalCommandError, ParameterLookupError
from graphci.memory import InMemoryBuildClient, InMemoryImageRegistry
from graphci.model import ImageBuildInputs, ImageSourcePath, ProjectDirectoryImageBuildStepConfiguration, ResourceRequirements
from graphci.step import Context
from graphci.steps.project_image import (
    COMMIT_REF_LABEL,
    REVISION_LABEL,
    SOURCE_LABEL,
    ProjectDirectoryImageBuildStep,
    provenance_labels,
    source_working_dir,
)

from _helpers import NAMESPACE


def make_step(job_spec, registry, build_client=None, **config):
    config.setdefault("to", "bin")
    return ProjectDirectoryImageBuildStep(
        ProjectDirectoryImageBuildStepConfiguration(**config),
        ResourceRequirements(),
        build_client or InMemoryBuildClient(registry),
        registry,
        job_spec,
    )


def test_labels_for_a_postsubmit(job_spec):
    assert provenance_labels(job_spec.refs) == {
        SOURCE_LABEL: "https://github.com/acme/widget",
        REVISION_LABEL: "abc123",
        COMMIT_REF_LABEL: "main",
    }


def test_labels_are_blank_when_pulls_are_merged(pr_job_spec):
    assert provenance_labels(pr_job_spec.refs) == {SOURCE_LABEL: "", REVISION_LABEL: "", COMMIT_REF_LABEL: ""}


def test_links(job_spec, registry):
    step = make_step(job_spec, registry, from_="root", inputs={"tools": ImageBuildInputs()})
    assert step.name() == "bin"
    assert step.requires() == [InternalImageLink("src"), InternalImageLink("root"), InternalImageLink("tools")]
    assert step.creates() == [InternalImageLink("bin")]
    assert step.inputs() is None


def test_from_is_optional(job_spec, registry):
    assert make_step(job_spec, registry).requires() == [InternalImageLink("src")]


def test_pull_spec_is_resolved_when_read(job_spec, registry):
    params, gate = make_step(job_spec, registry).provides()
    assert gate == InternalImageLink("bin")
    assert list(params) == ["LOCAL_IMAGE_BIN"]
    assert registry.lookups == []

    assert params["LOCAL_IMAGE_BIN"]() == "registry.internal:5000/ci-op-test/pipeline:bin"
    assert registry.lookups == [f"{NAMESPACE}/pipeline"]


def test_parameter_name_is_normalized(job_spec, registry):
    params, _gate = make_step(job_spec, registry, to="my-tool").provides()
    assert list(params) == ["LOCAL_IMAGE_MY_TOOL"]


def test_public_repository_is_preferred(job_spec):
    registry = InMemoryImageRegistry(repository="internal/pipeline", public_repository="quay.example/ci/pipeline")
    params, _gate = make_step(job_spec, registry).provides()
    assert params["LOCAL_IMAGE_BIN"]() == "quay.example/ci/pipeline:bin"


def test_lookup_fails_without_any_repository(job_spec):
    params, _gate = make_step(job_spec, InMemoryImageRegistry()).provides()
    with pytest.raises(ParameterLookupError, match="no accessible image registry value"):
        params["LOCAL_IMAGE_BIN"]()


def test_lookup_wraps_registry_errors(job_spec, registry):
    class Broken(InMemoryImageRegistry):
        def get_stream(self, namespace, stream) -> ImageStream:
            raise RuntimeError("connection refused")

    params, _gate = make_step(job_spec, Broken()).provides()
    with pytest.raises(ParameterLookupError, match="could not retrieve output imagestream"):
        params["LOCAL_IMAGE_BIN"]()


def test_dry_run_placeholder_needs_no_registry(job_spec):
    registry = InMemoryImageRegistry()
    params, _gate = make_step(job_spec, registry).provides(dry=True)
    assert params["LOCAL_IMAGE_BIN"]() == "dry-fake.registry.invalid/ci-op-test/pipeline:bin"
    assert registry.lookups == []


def test_run_builds_from_the_source_checkout(job_spec, registry):
    registry.add_tag(NAMESPACE, "src", working_dir="/go/src/github.com/acme/widget")
    builds = InMemoryBuildClient(registry)
    step = make_step(job_spec, registry, builds, from_="root", context_dir="cmd/bin", dockerfile_path="Dockerfile.ci")

    assert not step.done()
    step.run(Context(), dry=False)
    assert step.done()

    build = builds.builds[f"{NAMESPACE}/bin"]
    assert build.from_image == "root"
    assert build.dockerfile_path == "Dockerfile.ci"
    assert build.labels[REVISION_LABEL] == "abc123"
    assert build.build_labels["graphci.io/build-id"] == "42"
    [image] = build.images
    assert image.image == "src"
    assert image.paths == [ImageSourcePath("/go/src/github.com/acme/widget/cmd/bin/.", ".")]


def test_explicit_source_input_replaces_the_default(job_spec, registry):
    registry.add_tag(NAMESPACE, "src", working_dir="/w")
    builds = InMemoryBuildClient(registry)
    inputs = {"src": ImageBuildInputs(paths=[ImageSourcePath("/w/only", "sub")])}
    make_step(job_spec, registry, builds, inputs=inputs).run(Context(), dry=False)

    assert [i.paths for i in builds.builds[f"{NAMESPACE}/bin"].images] == [[ImageSourcePath("/w/only", "sub")]]


def test_failed_build_is_reported(job_spec, registry):
    registry.add_tag(NAMESPACE, "src", working_dir="/w")
    step = make_step(job_spec, registry, InMemoryBuildClient(registry, failing={"bin"}))
    with pytest.raises(ExternalCommandError, match="the build bin failed"):
        step.run(Context(), dry=False)


def test_dry_run_prints_instead_of_building(job_spec, registry, quiet_console):
    builds = InMemoryBuildClient(registry)
    make_step(job_spec, registry, builds).run(Context(), dry=True)

    assert builds.calls == []
    printed = quiet_console._stream.getvalue()
    assert '"to": "bin"' in printed
    assert "dry-fake//." in printed


def test_working_dir_errors(registry):
    with pytest.raises(ExternalCommandError, match="does not exist"):
        source_working_dir(registry, NAMESPACE)

    registry.add_tag(NAMESPACE, "src", working_dir="/w")
    assert source_working_dir(registry, NAMESPACE) == "/w"

    key = (NAMESPACE, "pipeline", "src")
    registry.tags[key] = registry.tags[key].__class__(name="pipeline:src", image="x", docker_image_metadata="")
    with pytest.raises(ExternalCommandError, match="could not fetch Docker image metadata"):
        source_working_dir(registry, NAMESPACE)

    registry.tags[key] = registry.tags[key].__class__(name="pipeline:src", image="x", docker_image_metadata="{oops")
    with pytest.raises(ExternalCommandError, match="malformed Docker image metadata"):
        source_working_dir(registry, NAMESPACE)
