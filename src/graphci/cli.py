# cli.py
from __future__ import annotations

import json
import signal
import subprocess
import sys
from datetime import timedelta
from pathlib import Path

import click

from graphci.errors import CIError, ConfigurationError, MissingPreconditionError, PipelineFailure
from graphci.executor import RunReport
from graphci.git_facts.git import local_job_spec
from graphci.graph import build_graph, select_targets, topo_levels
from graphci.jobspec import JOB_SPEC_ENV, JobSpec, OwnerReference, load_job_spec
from graphci.parameters import check_parameters
from graphci.runner import DEFAULT_WORKFLOW, Clients, build_steps, derive_namespace, load_workflow, run_workflow
from graphci.step import Context
from graphci.ui.console import Console, get_console, set_console


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """Workflow candidates in `root`: the default file plus any *_workflow.py."""
    found = set(root.glob("*_workflow.py"))
    default = root / DEFAULT_WORKFLOW
    if default.exists():
        found.add(default)
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow to run: the --workflow argument (".py" may be
    omitted) or the single workflow file in the current directory.

    Exits with status 1 when there is none, or more than one to pick from.
    """
    console = get_console()

    if workflow_arg:
        candidates = [Path(workflow_arg), Path(workflow_arg + ".py")]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        console.print_error(
            "Workflow file not found",
            f"No workflow at {workflow_arg}",
            suggestion="Pass an existing file:\n  graphci run --workflow pipelines/images_workflow.py",
        )
        sys.exit(1)

    candidates = find_workflow_files()
    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        console.print_error(
            "No workflow file found",
            f"Expected {DEFAULT_WORKFLOW} or a *_workflow.py file in the current directory.",
            suggestion="Create one, or point at it:\n  graphci run --workflow pipelines/images_workflow.py",
        )
    else:
        console.print_error(
            "Multiple workflow files found",
            "Pick one with --workflow:",
            details=[str(p) for p in candidates],
        )
    sys.exit(1)


def make_clients(backend: str, registry: str) -> Clients:
    if backend == "memory":
        from graphci.memory import InMemoryBuildClient, InMemoryContainerRunner, InMemoryImageRegistry

        reg = InMemoryImageRegistry(repository=registry or "registry.invalid/pipeline")
        return Clients(build=InMemoryBuildClient(reg), registry=reg, runner=InMemoryContainerRunner())

    from graphci.docker import DockerBuildClient, DockerContainerRunner, DockerImageRegistry, DockerNaming

    naming = DockerNaming(registry)
    return Clients(
        build=DockerBuildClient(naming),
        registry=DockerImageRegistry(naming),
        runner=DockerContainerRunner(naming),
    )


def parse_owner(value: str) -> OwnerReference:
    """Parse "<apiVersion>/<Kind>/<name>/<uid>" (apiVersion may contain a slash)."""
    parts = value.split("/")
    if len(parts) < 4:
        raise click.BadParameter("expected <apiVersion>/<Kind>/<name>/<uid>", param_hint="--owner")
    return OwnerReference(api_version="/".join(parts[:-3]), kind=parts[-3], name=parts[-2], uid=parts[-1])


def _install_cancel_handlers(run_ctx: Context) -> None:
    console = get_console()

    def _handler(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling run...")
        run_ctx.cancel()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """graphci: dependency-graph CI executor for image builds and tests."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--job-spec", envvar=JOB_SPEC_ENV, default=None, help=f"Serialized job spec (defaults to ${JOB_SPEC_ENV})")
@click.option("--namespace", envvar="GRAPHCI_NAMESPACE", default=None, help="Target namespace (derived from the run inputs if unset)")
@click.option("--base-namespace", default="", help="Namespace holding shared base images")
@click.option("--grace-period", default=None, type=float, help="Seconds running steps get to stop after cancellation")
@click.option("--owner", default=None, help="Owner of created artifacts: <apiVersion>/<Kind>/<name>/<uid>")
@click.option("--registry", envvar="GRAPHCI_REGISTRY", default="", help="Registry host prefixed to pipeline images")
@click.option("--backend", type=click.Choice(["docker", "memory"]), default="docker", show_default=True)
@click.option("--dry-run", is_flag=True, default=False,
              help="Resolve and walk the graph without side effects. Image state is still read; "
                   "use --backend memory to dry-run without docker.")
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop scheduling new steps after first failure")
@click.option("--target", "targets", multiple=True, help="Only run this step and what it requires (repeatable)")
@click.option("--verify-external/--no-verify-external", default=True, show_default=True,
              help="Check that artifacts no step creates exist before running")
@click.pass_context
def run(ctx, workflow, job_spec, namespace, base_namespace, grace_period, owner, registry, backend,
        dry_run, workers, fail_fast, targets, verify_external):
    """Run a graphci workflow."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    grace = timedelta(seconds=grace_period) if grace_period is not None else None

    try:
        wf = load_workflow(workflow_path)
        spec = load_job_spec(job_spec, base_namespace=base_namespace, grace_period=grace)
        clients = make_clients(backend, registry)
        if backend == "docker":
            # dry runs read image state through docker too
            from graphci.docker import check_docker_available
            check_docker_available()

        if not namespace:
            namespace = derive_namespace(wf, spec, clients, dry=dry_run)
            console.print_debug(f"derived namespace {namespace}")
        # the identity is immutable: re-parse it targeted at the namespace
        spec = load_job_spec(job_spec, namespace=namespace, base_namespace=base_namespace, grace_period=grace)
        if owner:
            spec = spec.with_owner(parse_owner(owner))

        run_ctx = Context()
        _install_cancel_handlers(run_ctx)

        console.print_run_started(
            job=spec.job,
            refs=str(spec.refs),
            namespace=spec.namespace,
            step_count=len(wf.steps),
            dry=dry_run,
        )

        report: RunReport = run_workflow(
            wf,
            spec,
            clients,
            dry=dry_run,
            targets=targets,
            max_workers=workers,
            fail_fast=fail_fast,
            ctx=run_ctx,
            verify_external=verify_external,
        )
        console.print_results(report)
        report.raise_for_failures()

    except PipelineFailure as e:
        console.print_error("Run failed", str(e))
        sys.exit(1)
    except MissingPreconditionError as e:
        console.print_error(
            "Missing input artifacts",
            e.message,
            details=[f"{k}: {v}" for k, v in e.details.items()],
            suggestion="Add a step that creates them or make sure they exist before running.",
        )
        sys.exit(1)
    except ConfigurationError as e:
        console.print_error("Invalid configuration", e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(1)
    except CIError as e:
        suggestion = None
        if e.kind == "docker_unavailable":
            suggestion = (
                "Start the docker daemon, or dry-run offline with the in-memory backend:\n"
                "  graphci run --dry-run --backend memory"
            )
        console.print_error(
            "Run aborted",
            e.message,
            details=[f"{k}={v}" for k, v in e.details.items()],
            suggestion=suggestion,
        )
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--job-spec", envvar=JOB_SPEC_ENV, default=None, help=f"Serialized job spec (defaults to ${JOB_SPEC_ENV})")
@click.option("--target", "targets", multiple=True, help="Only show this step and what it requires (repeatable)")
@click.pass_context
def graph(ctx, workflow, job_spec, targets):
    """Print the resolved execution stages without running anything."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        # the shape of the graph does not depend on the refs
        spec = load_job_spec(job_spec) if job_spec is not None else JobSpec()
        steps = build_steps(wf, spec, make_clients("memory", ""))
        steps = select_targets(steps, list(targets))
        g = build_graph(steps)
        levels = topo_levels(g)
        owners = check_parameters(steps)

        console.print_plan(levels, {str(link): names for link, names in g.external.items()})
        if owners:
            console.print_header("Parameters")
            for name, step in sorted(owners.items()):
                console.print_info(f"  {name} (from {step})")
    except CIError as e:
        console.print_error("Invalid configuration", e.message, details=[f"{k}={v}" for k, v in e.details.items()])
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--remote", default="origin", show_default=True, help="Git remote naming the repository")
def spec(remote):
    """Print a job spec describing the local checkout (export it as $JOB_SPEC)."""
    console = get_console()
    try:
        click.echo(json.dumps(local_job_spec(remote), sort_keys=True))
    except subprocess.CalledProcessError:
        console.print_error(
            "Could not read git metadata",
            f"Could not get the URL of remote {remote!r} or the current commit.",
            suggestion="Run inside a git checkout with a configured remote:\n  graphci spec --remote origin",
        )
        sys.exit(1)
    except FileNotFoundError:
        console.print_error(
            "Git command not found",
            "Could not find git command.",
            suggestion="Install Git or write the job spec by hand.",
        )
        sys.exit(1)
    except ValueError as e:
        console.print_error("Unsupported remote", str(e))
        sys.exit(1)


if __name__ == "__main__":
    cli()
