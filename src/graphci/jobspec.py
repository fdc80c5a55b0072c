"""Job identity: what a pipeline run is building and testing.

The identity is parsed once from the serialized form in ``$JOB_SPEC`` and is
immutable afterwards. The only late addition is the owner reference, which is
attached by building a new spec with :meth:`JobSpec.with_owner` before any
step is constructed.
"""

from __future__ import annotations

import json
from datetime import timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, model_validator

from .errors import JobSpecUnsetError, MalformedJobSpecError

JOB_SPEC_ENV = "JOB_SPEC"


class JobType(str, Enum):
    PRESUBMIT = "presubmit"
    POSTSUBMIT = "postsubmit"
    PERIODIC = "periodic"
    BATCH = "batch"


class _Serialized(BaseModel):
    """
    Base of the models read from $JOB_SPEC. A JSON null reads as the zero
    value of the field, the same as an absent key.
    """
    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _null_is_unset(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class Pull(_Serialized):
    number: int = 0
    author: str = ""
    sha: str = ""


class Refs(_Serialized):
    org: str = ""
    repo: str = ""
    base_ref: str = ""
    base_sha: str = ""
    # tuple: the identity is never changed in place
    pulls: Tuple[Pull, ...] = Field(default_factory=tuple)
    path_alias: str = ""

    def __str__(self) -> str:
        rs = [f"{self.base_ref}:{self.base_sha}"]
        for pull in self.pulls:
            rs.append(f"{pull.number}:{pull.sha}")
        return ",".join(rs)


class OwnerReference(BaseModel):
    """Object that newly created artifacts are garbage collected with."""
    model_config = ConfigDict(frozen=True)

    api_version: str
    kind: str
    name: str
    uid: str


class JobSpec(_Serialized):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: Optional[JobType] = None
    job: str = ""
    build_id: str = Field(default="", alias="buildid")
    run_id: str = Field(default="", alias="prowjobid")
    refs: Refs = Field(default_factory=Refs)

    # these target the job at a location; not part of the serialized form
    namespace: str = Field(default="", exclude=True)
    base_namespace: str = Field(default="", exclude=True)
    grace_period: Optional[timedelta] = Field(default=None, exclude=True)
    owner: Optional[OwnerReference] = Field(default=None, exclude=True)

    _raw_spec: str = PrivateAttr(default="")

    @property
    def raw_spec(self) -> str:
        """The serialized form exactly as it was supplied."""
        return self._raw_spec

    def with_owner(self, owner: OwnerReference) -> "JobSpec":
        # model_copy carries the private raw spec along
        return self.model_copy(update={"owner": owner})

    def inputs(self) -> str:
        """
        Stable serialization of the refs, used as the identity of the source
        this run operates on. Everything else about the job is ignored.
        """
        payload = {"refs": self.refs.model_dump(exclude_defaults=True)}
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def load_job_spec(
    raw: str | None,
    *,
    namespace: str = "",
    base_namespace: str = "",
    grace_period: Optional[timedelta] = None,
    variable: str = JOB_SPEC_ENV,
) -> JobSpec:
    """
    Parse a serialized job spec.

    Raises:
        JobSpecUnsetError: no value was supplied at all
        MalformedJobSpecError: the value is not a valid job spec
    """
    if raw is None:
        raise JobSpecUnsetError(variable)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedJobSpecError(str(e), variable) from e
    if not isinstance(data, dict):
        raise MalformedJobSpecError(f"expected a JSON object, got {type(data).__name__}", variable)

    data.update(namespace=namespace, base_namespace=base_namespace, grace_period=grace_period)
    try:
        spec = JobSpec.model_validate(data)
    except ValidationError as e:
        raise MalformedJobSpecError(str(e), variable) from e

    spec._raw_spec = raw
    return spec


def resolve_spec_from_env(environ: Mapping[str, str], **kwargs) -> JobSpec:
    """Read the job spec from the given environment mapping (usually os.environ)."""
    variable = kwargs.pop("variable", JOB_SPEC_ENV)
    return load_job_spec(environ.get(variable), variable=variable, **kwargs)
