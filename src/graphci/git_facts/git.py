# git.py
# Facts about the local checkout, read through the git CLI. Only `graphci
# spec` needs them, to describe the checkout as a job spec.

from __future__ import annotations

import re
import subprocess
from typing import Dict, Optional, Tuple


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Run `git <args>` and return its stripped stdout.

    A non-zero exit raises CalledProcessError; the CLI reports it.
    """
    return subprocess.check_output(["git", *args], cwd=cwd, text=True).strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """
    Return the full SHA hash of the current HEAD commit.

    Used as the base SHA of a locally synthesized job spec, which makes it
    part of the provenance labels of every image built from it.
    """
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Return the checked out branch name.

    A detached HEAD has no branch; `git rev-parse --abbrev-ref HEAD` then
    prints the literal "HEAD", which we pass through unchanged.
    """
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    """Return the fetch URL configured for `remote`."""
    return _git(["remote", "get-url", remote], cwd=cwd)


# Matches both https://github.com/org/repo(.git) and git@github.com:org/repo(.git)
_REMOTE_RE = re.compile(r"[:/](?P<org>[^/:]+)/(?P<repo>[^/]+?)(?:\.git)?/?$")


def parse_remote(url: str) -> Tuple[str, str]:
    """
    Split a remote URL into (org, repo).

    Raises:
        ValueError: if the URL does not end in <org>/<repo>
    """
    m = _REMOTE_RE.search(url.strip())
    if not m:
        raise ValueError(f"cannot determine org/repo from remote URL {url!r}")
    return m.group("org"), m.group("repo")


def local_job_spec(remote: str = "origin", cwd: Optional[str] = None) -> Dict:
    """
    Describe the local checkout as a postsubmit job spec: the current branch
    at HEAD, with no pulls on top.
    """
    org, repo = parse_remote(remote_url(remote, cwd=cwd))
    return {
        "type": "postsubmit",
        "job": f"local-{repo}",
        "refs": {
            "org": org,
            "repo": repo,
            "base_ref": current_branch(cwd=cwd),
            "base_sha": head_sha(cwd=cwd),
        },
    }
