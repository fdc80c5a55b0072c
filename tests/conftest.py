from __future__ import annotations

import io
import json

import pytest

from graphci.jobspec import load_job_spec
from graphci.memory import InMemoryBuildClient, InMemoryContainerRunner, InMemoryImageRegistry
from graphci.runner import Clients
from graphci.ui.console import Console, set_console

from _helpers import NAMESPACE


@pytest.fixture(autouse=True)
def quiet_console():
    out, err = io.StringIO(), io.StringIO()
    console = Console(stream=out, err_stream=err)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def raw_spec() -> str:
    return json.dumps({
        "type": "postsubmit",
        "job": "branch-ci-acme-widget-main-images",
        "buildid": "42",
        "prowjobid": "0b1c2d",
        "refs": {"org": "acme", "repo": "widget", "base_ref": "main", "base_sha": "abc123"},
    })


@pytest.fixture
def job_spec(raw_spec):
    return load_job_spec(raw_spec, namespace=NAMESPACE)


@pytest.fixture
def pr_job_spec():
    raw = json.dumps({
        "type": "presubmit",
        "job": "pull-ci-acme-widget-main-unit",
        "refs": {
            "org": "acme",
            "repo": "widget",
            "base_ref": "main",
            "base_sha": "abc123",
            "pulls": [{"number": 7, "author": "octo", "sha": "def456"}],
        },
    })
    return load_job_spec(raw, namespace=NAMESPACE)


@pytest.fixture
def registry():
    return InMemoryImageRegistry(repository="registry.internal:5000/ci-op-test/pipeline")


@pytest.fixture
def clients(registry):
    return Clients(
        build=InMemoryBuildClient(registry),
        registry=registry,
        runner=InMemoryContainerRunner(),
    )
