# cache.py
from __future__ import annotations

import hashlib
import json
from typing import Dict, Iterable, Tuple

from .jobspec import JobSpec
from .step import Step

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Run-level identity:
#   run_key = hash(
#       job refs (JobSpec.inputs),
#       every step's own inputs() contribution, keyed by step name,
#   )
#
# Two runs with the same key operate on identical input, so they can share
# a namespace: the second run finds every output already there and skips it.
# ---------------------------------------------------------------------

NAMESPACE_PREFIX = "ci-op-"


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_run_key(job_spec: JobSpec, steps: Iterable[Step], *, dry: bool = False) -> Tuple[str, Dict]:
    """
    Returns (run_key, manifest) where the manifest lists what went into the key.
    """
    step_inputs: Dict[str, list] = {}
    for step in steps:
        value = step.inputs(dry)
        if value:
            step_inputs[step.name()] = list(value)

    payload = {
        "v": 1,  # bump this if you change hashing format
        "job": job_spec.inputs(),
        "steps": step_inputs,
    }
    key = _sha256_str(_json_dumps_stable(payload))
    return key, {"key": key, "payload": payload}


def namespace_for(run_key: str) -> str:
    return NAMESPACE_PREFIX + run_key[:8]
