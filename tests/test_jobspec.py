from __future__ import annotations

import json
from datetime import timedelta

import pytest

from graphci.errors import JobSpecUnsetError, MalformedJobSpecError
from graphci.jobspec import JobSpec, JobType, OwnerReference, Pull, Refs, load_job_spec, resolve_spec_from_env


def test_parses_all_fields(raw_spec):
    spec = load_job_spec(raw_spec, namespace="ns", base_namespace="stable", grace_period=timedelta(seconds=30))

    assert spec.type is JobType.POSTSUBMIT
    assert spec.job == "branch-ci-acme-widget-main-images"
    assert spec.build_id == "42"
    assert spec.run_id == "0b1c2d"
    assert spec.refs.org == "acme"
    assert spec.refs.base_sha == "abc123"
    assert spec.namespace == "ns"
    assert spec.base_namespace == "stable"
    assert spec.grace_period == timedelta(seconds=30)
    assert spec.owner is None


def test_absent_fields_default_empty():
    spec = load_job_spec("{}")
    assert spec.type is None
    assert spec.job == ""
    assert spec.refs == Refs()
    assert spec.refs.pulls == ()


def test_unknown_fields_are_ignored():
    spec = load_job_spec(json.dumps({"job": "j", "decoration_config": {"x": 1}}))
    assert spec.job == "j"


def test_unset_is_distinguished_from_malformed():
    with pytest.raises(JobSpecUnsetError):
        resolve_spec_from_env({})

    with pytest.raises(MalformedJobSpecError) as exc:
        resolve_spec_from_env({"JOB_SPEC": "{not json"})
    assert "malformed $JOB_SPEC" in str(exc.value)


@pytest.mark.parametrize("raw", ["[]", '"text"', '{"type": "nightly"}', '{"refs": {"pulls": [{"number": "x"}]}}'])
def test_malformed_content(raw):
    with pytest.raises(MalformedJobSpecError):
        load_job_spec(raw)


def test_raw_spec_is_kept_verbatim():
    raw = '{ "job" : "j",   "refs": {"org": "acme"} }'
    spec = load_job_spec(raw)
    assert spec.raw_spec == raw
    assert spec.with_owner(OwnerReference(api_version="v1", kind="Namespace", name="n", uid="u")).raw_spec == raw


def test_spec_is_immutable(job_spec):
    with pytest.raises(Exception):
        job_spec.job = "other"


def test_with_owner_builds_a_new_spec(job_spec):
    owner = OwnerReference(api_version="ci.openshift.io/v1", kind="ProwJob", name="p", uid="1234")
    owned = job_spec.with_owner(owner)

    assert owned.owner == owner
    assert job_spec.owner is None
    assert owned.refs == job_spec.refs
    assert owned.namespace == job_spec.namespace


def test_inputs_only_depend_on_refs():
    a = load_job_spec(json.dumps({"job": "a", "buildid": "1", "refs": {"org": "acme", "repo": "widget"}}))
    b = load_job_spec(json.dumps({"job": "b", "buildid": "2", "refs": {"repo": "widget", "org": "acme"}}))
    assert a.inputs() == b.inputs()


def test_inputs_differ_with_pulls_and_their_order():
    pulls = (Pull(number=1, sha="a"), Pull(number=2, sha="b"))
    base = dict(org="acme", repo="widget", base_ref="main", base_sha="abc")
    one = JobSpec(refs=Refs(**base, pulls=pulls))
    other = JobSpec(refs=Refs(**base, pulls=pulls[::-1]))
    none = JobSpec(refs=Refs(**base))

    assert len({one.inputs(), other.inputs(), none.inputs()}) == 3
    assert one.inputs() == JobSpec(refs=Refs(**base, pulls=list(pulls))).inputs()


def test_pulls_cannot_be_changed_after_parsing(pr_job_spec):
    before = pr_job_spec.inputs()
    with pytest.raises(AttributeError):
        pr_job_spec.refs.pulls.append(Pull(number=9, sha="other"))
    assert isinstance(pr_job_spec.refs.pulls, tuple)
    assert pr_job_spec.inputs() == before


@pytest.mark.parametrize(
    "raw",
    [
        '{"refs": null}',
        '{"refs": {"org": "acme", "pulls": null}}',
        '{"job": null, "buildid": null, "refs": {"base_ref": null, "pulls": [{"number": 3, "author": null}]}}',
    ],
)
def test_null_reads_as_empty(raw):
    spec = load_job_spec(raw)
    assert spec.job == ""
    assert spec.build_id == ""
    assert spec.refs.base_ref == ""
    assert all(pull.author == "" for pull in spec.refs.pulls)


def test_refs_string():
    refs = Refs(base_ref="main", base_sha="abc", pulls=[Pull(number=3, sha="x"), Pull(number=9, sha="y")])
    assert str(refs) == "main:abc,3:x,9:y"
