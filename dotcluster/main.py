"""
dotcluster: CLI entrypoint.

Usage:
    dotcluster --help
    dotcluster validate
    dotcluster resolve bash
    dotcluster init bash -w ~
    dotcluster deploy bash
    dotcluster undeploy vim .vim/colors/
    dotcluster git bash status
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from dotcluster import __version__
from dotcluster.core.observability.logging_config import resolve_level, setup_logging
from dotcluster.ui.cli.context import resolve_store


@click.group()
@click.version_option(version=__version__, prog_name="dotcluster")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to config.yml (default: auto-detect).",
)
@click.option(
    "--store",
    "store_path",
    type=click.Path(file_okay=False),
    default=None,
    help="Store directory (overrides store_dir in config.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    store_path: str | None,
) -> None:
    """dotcluster: deploy dotfile clusters from bare-alias repositories."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["store_path"] = Path(store_path) if store_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(level=resolve_level(debug=debug, verbose=verbose, quiet=quiet))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def validate(ctx: click.Context, as_json: bool) -> None:
    """Validate every cluster in the store and their dependencies."""
    from dotcluster.core.use_cases.validate import validate_store

    settings, store_root = resolve_store(ctx)
    result = validate_store(store_root, backend=ctx.obj.get("backend"), settings=settings)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    snapshot = result.snapshot
    resolution = result.resolution
    assert snapshot is not None and resolution is not None

    if not ctx.obj.get("quiet"):
        click.secho(f"\n🗂  {store_root}", fg="cyan", bold=True)
        click.echo(f"   Clusters: {len(snapshot.records)} ({len(snapshot.valid)} valid)")
        click.echo()

    for name in snapshot.names:
        record = snapshot.records[name]
        if record.valid:
            click.secho(f"   ✓ {name}", fg="green")
        else:
            click.secho(f"   ✗ {name} ", fg="red", nl=False)
            click.echo(f"[{record.state}] {record.reason}")

    problems = (
        [str(err) for err in resolution.cycles.values()]
        + [f"missing dependency {d.name!r} of {d.parent!r}" for d in resolution.missing]
        + [f"invalid dependency {d.name!r} of {d.parent!r}" for d in resolution.invalid]
    )
    if problems:
        click.echo()
        click.secho("⚠️  Dependency problems:", fg="yellow")
        for problem in dict.fromkeys(problems):
            click.echo(f"   • {problem}")

    click.echo()
    if result.valid:
        click.secho("✅ Store is valid", fg="green", bold=True)
    else:
        click.secho("❌ Store has errors", fg="red", bold=True)
        sys.exit(1)


@cli.command()
@click.argument("clusters", nargs=-1, required=True)
@click.option("--no-fetch", is_flag=True, help="Don't clone missing dependencies.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def resolve(
    ctx: click.Context, clusters: tuple[str, ...], no_fetch: bool, as_json: bool
) -> None:
    """Show the dependency order of CLUSTERS."""
    from dotcluster.core.use_cases.resolve import resolve as resolve_clusters

    settings, store_root = resolve_store(ctx)
    result = resolve_clusters(
        store_root,
        list(clusters),
        backend=ctx.obj.get("backend"),
        settings=settings,
        fetch=not no_fetch,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.fetch and result.fetch.cloned:
        click.secho(f"📥 Cloned: {', '.join(result.fetch.cloned)}", fg="cyan")

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    for position, name in enumerate(result.order, start=1):
        click.echo(f"   {position}. {name}")


@cli.command()
@click.option("--deployed", "deployed_only", is_flag=True, help="Only deployed clusters.")
@click.option("--undeployed", "undeployed_only", is_flag=True, help="Only undeployed clusters.")
@click.option("--rules", "rules_of", default=None, metavar="NAME", help="Show deployed rules of a cluster.")
@click.option("--files", "files_of", default=None, metavar="NAME", help="List tracked files of a cluster.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(
    ctx: click.Context,
    deployed_only: bool,
    undeployed_only: bool,
    rules_of: str | None,
    files_of: str | None,
    as_json: bool,
) -> None:
    """Show clusters in the store and whether they are deployed."""
    from dotcluster.core.use_cases.status import get_status

    settings, store_root = resolve_store(ctx)
    result = get_status(
        store_root,
        backend=ctx.obj.get("backend"),
        settings=settings,
        deployed_only=deployed_only,
        undeployed_only=undeployed_only,
        rules_of=rules_of,
        files_of=files_of,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if result.rules is not None:
        click.secho(f"\n📐 Rules: {rules_of}", fg="cyan", bold=True)
        if not result.rules:
            click.echo("   (not deployed)")
        for alias, record in result.rules.items():
            click.echo(f"   → {alias}")
            for rule in record["include"]:
                click.echo(f"     + {rule}")
            for rule in record["exclude"]:
                click.echo(f"     - {rule}")
            click.echo(f"     {len(record['paths'])} path(s) deployed")
        click.echo()
        return

    if result.files is not None:
        for path in result.files:
            click.echo(path)
        return

    if not result.clusters:
        click.echo("No clusters.")
        return

    for cluster in result.clusters:
        if cluster.state != "valid":
            click.secho(f"   ✗ {cluster.name} ", fg="red", nl=False)
            click.echo(f"[{cluster.state}]")
            continue
        marker = "●" if cluster.deployed else "○"
        color = "green" if cluster.deployed else "white"
        click.secho(f"   {marker} {cluster.name}", fg=color, nl=False)
        click.echo(f"  → {cluster.work_tree_alias}")
        if ctx.obj.get("verbose"):
            if cluster.description:
                click.echo(f"     {cluster.description}")
            if cluster.dependencies:
                click.echo(f"     depends on: {', '.join(cluster.dependencies)}")


# ── Register sub-commands ───────────────────────────────────────

from dotcluster.ui.cli.deploy import deploy, undeploy  # noqa: E402
from dotcluster.ui.cli.store import clone, git, init, remove  # noqa: E402

cli.add_command(deploy)
cli.add_command(undeploy)
cli.add_command(init)
cli.add_command(clone)
cli.add_command(remove)
cli.add_command(git)


if __name__ == "__main__":
    cli()
