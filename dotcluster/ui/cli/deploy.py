"""
CLI commands for deploying and undeploying clusters.

Thin wrappers over ``dotcluster.core.use_cases.deploy``.
"""

from __future__ import annotations

import json
import sys

import click

from dotcluster.core.services.sparsity import EVERYTHING
from dotcluster.core.use_cases.deploy import DeployResult
from dotcluster.ui.cli.context import echo_receipt, resolve_store


@click.command()
@click.argument("cluster")
@click.argument("rules", nargs=-1)
@click.option("--all", "deploy_all", is_flag=True, help="Deploy every tracked file.")
@click.option(
    "--default",
    "use_default",
    is_flag=True,
    help="Deploy the cluster's own rules only, dropping rules added earlier.",
)
@click.option("--dry-run", is_flag=True, help="Plan but don't change anything.")
@click.option("--no-fetch", is_flag=True, help="Don't clone missing dependencies.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def deploy(
    ctx: click.Context,
    cluster: str,
    rules: tuple[str, ...],
    deploy_all: bool,
    use_default: bool,
    dry_run: bool,
    no_fetch: bool,
    as_json: bool,
) -> None:
    """Deploy CLUSTER and its dependencies.

    Optional RULES are added to the cluster's own include rules. Each
    deploy replaces the rules added by the one before.

    Examples:

        dotcluster deploy bash

        dotcluster deploy vim '.vim/colors/'

        dotcluster deploy bash --all --dry-run
    """
    from dotcluster.core.use_cases.deploy import run_deploy

    _exclusive({"RULES": bool(rules), "--all": deploy_all, "--default": use_default})

    settings, store_root = resolve_store(ctx)
    result = run_deploy(
        store_root,
        [cluster],
        backend=ctx.obj.get("backend"),
        settings=settings,
        extra_rules=list(rules),
        deploy_all=deploy_all,
        dry_run=dry_run,
        fetch=not no_fetch,
    )
    _report(ctx, result, as_json)


@click.command()
@click.argument("cluster")
@click.argument("rules", nargs=-1)
@click.option("--all", "undeploy_all", is_flag=True, help="Remove every deployed file of CLUSTER.")
@click.option(
    "--default", "use_default", is_flag=True, help="Remove the files the cluster's own rules match."
)
@click.option("--dry-run", is_flag=True, help="Plan but don't change anything.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def undeploy(
    ctx: click.Context,
    cluster: str,
    rules: tuple[str, ...],
    undeploy_all: bool,
    use_default: bool,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Undeploy CLUSTER and dependencies nothing else needs.

    With RULES, --all or --default only the matching files of CLUSTER
    are removed, and its dependencies stay as they are.

    Examples:

        dotcluster undeploy bash

        dotcluster undeploy vim '.vim/colors/'

        dotcluster undeploy vim --all
    """
    from dotcluster.core.use_cases.deploy import run_undeploy

    _exclusive({"RULES": bool(rules), "--all": undeploy_all, "--default": use_default})

    settings, store_root = resolve_store(ctx)
    result = run_undeploy(
        store_root,
        [cluster],
        backend=ctx.obj.get("backend"),
        settings=settings,
        dry_run=dry_run,
        rules=[EVERYTHING] if undeploy_all else list(rules),
        use_default=use_default,
    )
    _report(ctx, result, as_json)


def _exclusive(given: dict[str, bool]) -> None:
    chosen = [name for name, on in given.items() if on]
    if len(chosen) > 1:
        raise click.UsageError(f"{' and '.join(chosen)} cannot be combined.")


def _report(ctx: click.Context, result: DeployResult, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    plan = result.plan
    if plan is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if result.fetch and result.fetch.cloned:
        click.secho(f"📥 Cloned: {', '.join(result.fetch.cloned)}", fg="cyan")

    mode_label = "[dry-run] " if result.dry_run else ""
    click.secho(
        f"\n⚡ {mode_label}{plan.operation} {', '.join(result.targets)}",
        fg="cyan",
        bold=True,
    )

    for name, reason in plan.rejected.items():
        click.secho(f"   ✗ {name} ", fg="red", nl=False)
        click.echo(f"({reason})")

    if result.report is None:
        for entry in plan.entries:
            delta = entry.delta
            click.echo(
                f"   • {entry.cluster}  +{len(delta.paths_to_checkout)} "
                f"-{len(delta.paths_to_remove)}  → {entry.work_tree_alias}"
            )
    else:
        for name, receipt in result.report.results.items():
            echo_receipt(name, receipt, verbose=ctx.obj.get("verbose", False))

    for name, reason in plan.kept.items():
        click.secho(f"   ⊘ {name} ", fg="yellow", nl=False)
        click.echo(f"(kept: {reason})")

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")

    click.echo()
    if result.report is not None:
        report = result.report
        status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(
            report.status, "white"
        )
        click.secho(
            f"   Result: {report.succeeded}/{report.total} succeeded",
            fg=status_color,
            bold=True,
        )
        click.echo()

    if not result.ok:
        sys.exit(1)
