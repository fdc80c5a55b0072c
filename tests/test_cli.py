from __future__ import annotations

import json
import subprocess
from pathlib import Path

import click
import pytest
from click.testing import CliRunner

from graphci import cli as cli_module
from graphci.cli import cli, parse_owner

EXAMPLE = str(Path(__file__).resolve().parent.parent / "graphci_workflow.py")


@pytest.fixture
def runner(monkeypatch):
    for var in ("JOB_SPEC", "GRAPHCI_NAMESPACE", "GRAPHCI_REGISTRY"):
        monkeypatch.delenv(var, raising=False)
    # leave the test process's signal handlers alone
    monkeypatch.setattr(cli_module, "_install_cancel_handlers", lambda ctx: None)
    return CliRunner()


def test_graph_prints_stages(runner):
    result = runner.invoke(cli, ["graph", "--workflow", EXAMPLE])

    assert result.exit_code == 0, result.output
    assert "=== Stage 1: [input:root] ===" in result.output
    assert "=== Stage 3: bin, unit ===" in result.output
    assert "docker.io/library/golang:1.22 (required by [input:root])" in result.output
    assert "LOCAL_IMAGE_RELEASE (from release)" in result.output


def test_graph_with_target(runner):
    result = runner.invoke(cli, ["graph", "--workflow", EXAMPLE, "--target", "unit"])
    assert result.exit_code == 0, result.output
    assert "release" not in result.output


def test_run_needs_a_job_spec(runner):
    result = runner.invoke(cli, ["run", "--workflow", EXAMPLE, "--backend", "memory"])
    assert result.exit_code == 1
    assert "$JOB_SPEC unset" in result.output


def test_run_rejects_a_malformed_job_spec(runner):
    result = runner.invoke(cli, ["run", "--workflow", EXAMPLE, "--backend", "memory"], env={"JOB_SPEC": "{nope"})
    assert result.exit_code == 1
    assert "malformed $JOB_SPEC" in result.output


def test_dry_run(runner, raw_spec):
    result = runner.invoke(
        cli,
        ["run", "--workflow", EXAMPLE, "--backend", "memory", "--dry-run", "--no-verify-external"],
        env={"JOB_SPEC": raw_spec},
    )
    assert result.exit_code == 0, result.output
    assert "RUN STARTED (dry run)" in result.output
    assert "Refs: main:abc123" in result.output
    assert "Namespace: ci-op-" in result.output
    assert "smoke: SUCCEEDED" in result.output


def test_explicit_namespace(runner, raw_spec):
    result = runner.invoke(
        cli,
        ["run", "--workflow", EXAMPLE, "--backend", "memory", "--dry-run", "--no-verify-external",
         "--namespace", "ci-op-mine", "--job-spec", raw_spec],
    )
    assert result.exit_code == 0, result.output
    assert "Namespace: ci-op-mine" in result.output


def test_missing_input_image(runner, raw_spec):
    result = runner.invoke(cli, ["run", "--workflow", EXAMPLE, "--backend", "memory", "--job-spec", raw_spec])
    assert result.exit_code == 1
    assert "Missing input artifacts" in result.output
    assert "docker.io/library/golang:1.22" in result.output


def test_failed_run_exits_nonzero(runner, raw_spec):
    # the input image cannot be tagged in an empty registry
    result = runner.invoke(
        cli,
        ["run", "--workflow", EXAMPLE, "--backend", "memory", "--no-verify-external", "--job-spec", raw_spec],
    )
    assert result.exit_code == 1
    assert "[input:root]: FAILED" in result.output
    assert "smoke: NOT ATTEMPTED" in result.output


def test_unknown_target(runner, raw_spec):
    result = runner.invoke(
        cli,
        ["run", "--workflow", EXAMPLE, "--backend", "memory", "--dry-run", "--job-spec", raw_spec, "--target", "nope"],
    )
    assert result.exit_code == 1
    assert "no step named 'nope'" in result.output


def test_missing_workflow_file(runner):
    result = runner.invoke(cli, ["run", "--workflow", "does_not_exist.py"])
    assert result.exit_code == 1
    assert "Workflow file not found" in result.output


def test_parse_owner():
    owner = parse_owner("ci.openshift.io/v1/ProwJob/job-1/uid-1")
    assert (owner.api_version, owner.kind, owner.name, owner.uid) == ("ci.openshift.io/v1", "ProwJob", "job-1", "uid-1")
    assert parse_owner("v1/Namespace/ns/u").api_version == "v1"
    with pytest.raises(click.BadParameter):
        parse_owner("v1/Namespace")


def test_spec_command(runner, monkeypatch):
    monkeypatch.setattr(cli_module, "local_job_spec", lambda remote: {"type": "postsubmit", "refs": {"org": "acme"}})
    result = runner.invoke(cli, ["spec"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {"refs": {"org": "acme"}, "type": "postsubmit"}


def test_spec_command_outside_a_checkout(runner, monkeypatch):
    def fail(remote):
        raise subprocess.CalledProcessError(128, ["git", "remote", "get-url", remote])

    monkeypatch.setattr(cli_module, "local_job_spec", fail)
    result = runner.invoke(cli, ["spec"])
    assert result.exit_code == 1
    assert "Could not read git metadata" in result.output


def test_dry_run_without_docker_points_at_memory_backend(runner, raw_spec, monkeypatch):
    from graphci import docker

    def no_docker(*args, **kwargs):
        raise FileNotFoundError("docker")

    monkeypatch.setattr(docker.subprocess, "run", no_docker)
    result = runner.invoke(cli, ["run", "--workflow", EXAMPLE, "--dry-run", "--job-spec", raw_spec])

    assert result.exit_code == 1
    assert "Docker is not available" in result.output
    assert "--backend memory" in result.output
    assert "RUN STARTED" not in result.output
