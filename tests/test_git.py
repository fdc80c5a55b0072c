from __future__ import annotations

import pytest

from graphci.git_facts import git


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/acme/widget.git",
        "https://github.com/acme/widget",
        "git@github.com:acme/widget.git",
        "ssh://git@github.com/acme/widget/",
    ],
)
def test_parse_remote(url):
    assert git.parse_remote(url) == ("acme", "widget")


def test_parse_remote_rejects_bare_names():
    with pytest.raises(ValueError):
        git.parse_remote("widget")


def test_local_job_spec(monkeypatch):
    answers = {
        ("remote", "get-url", "origin"): "git@github.com:acme/widget.git",
        ("rev-parse", "--abbrev-ref", "HEAD"): "main",
        ("rev-parse", "HEAD"): "abc123",
    }
    monkeypatch.setattr(git, "_git", lambda args, cwd=None: answers[tuple(args)])

    assert git.local_job_spec() == {
        "type": "postsubmit",
        "job": "local-widget",
        "refs": {"org": "acme", "repo": "widget", "base_ref": "main", "base_sha": "abc123"},
    }
