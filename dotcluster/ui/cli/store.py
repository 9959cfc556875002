"""
CLI commands for adding clusters to the store, running git on them and removing them.

Thin wrappers over ``dotcluster.core.use_cases.manage``.
"""

from __future__ import annotations

import json
import sys

import click

from dotcluster.ui.cli.context import resolve_store


@click.command()
@click.argument("name")
@click.argument("url")
@click.option("--branch", "-b", default=None, help="Branch to clone.")
@click.option("--no-fetch", is_flag=True, help="Don't clone missing dependencies.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def clone(
    ctx: click.Context,
    name: str,
    url: str,
    branch: str | None,
    no_fetch: bool,
    as_json: bool,
) -> None:
    """Clone URL into the store as cluster NAME."""
    from dotcluster.core.use_cases.manage import clone_cluster

    settings, store_root = resolve_store(ctx)
    result = clone_cluster(
        store_root,
        name,
        url,
        backend=ctx.obj.get("backend"),
        settings=settings,
        branch=branch,
        fetch=not no_fetch,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho(f"✅ Cloned {name}", fg="green", bold=True)
    if result.fetch:
        for dep in result.fetch.cloned:
            click.secho(f"   ✓ {dep}", fg="green")
        for dep, error in result.fetch.failed.items():
            click.secho(f"   ✗ {dep} ", fg="red", nl=False)
            click.echo(f"({error})")

    if not result.ok:
        sys.exit(1)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Remove even if other deployed clusters depend on it.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def remove(ctx: click.Context, names: tuple[str, ...], force: bool, as_json: bool) -> None:
    """Undeploy NAMES and delete them from the store."""
    from dotcluster.core.use_cases.manage import remove_cluster

    settings, store_root = resolve_store(ctx)
    result = remove_cluster(
        store_root,
        list(names),
        backend=ctx.obj.get("backend"),
        settings=settings,
        force=force,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error and not result.removed:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    for name in result.removed:
        click.secho(f"   ✓ {name} removed", fg="green")
    for name, reason in result.refused.items():
        click.secho(f"   ✗ {name} ", fg="red", nl=False)
        click.echo(f"({reason})")
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")

    if not result.ok:
        sys.exit(1)


@click.command()
@click.argument("name")
@click.option("--description", "-d", default=None, help="Short description of the cluster.")
@click.option("--url", "-u", default=None, help="Remote the cluster can be cloned from.")
@click.option("--branch", "-b", default=None, help="Initial branch (also the remote's branch).")
@click.option(
    "--work-tree-alias",
    "-w",
    default=None,
    help="Directory the cluster deploys into (default: from config.yml).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def init(
    ctx: click.Context,
    name: str,
    description: str | None,
    url: str | None,
    branch: str | None,
    work_tree_alias: str | None,
    as_json: bool,
) -> None:
    """Create a new, empty cluster NAME in the store."""
    from dotcluster.core.use_cases.manage import init_cluster

    settings, store_root = resolve_store(ctx)
    result = init_cluster(
        store_root,
        name,
        backend=ctx.obj.get("backend"),
        settings=settings,
        description=description,
        url=url,
        branch=branch,
        work_tree_alias=work_tree_alias,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.record is not None
    click.secho(f"✅ Created {name}", fg="green", bold=True)
    click.echo(f"   → {result.record.work_tree_alias}")


@click.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False}
)
@click.argument("name")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def git(ctx: click.Context, name: str, args: tuple[str, ...]) -> None:
    """Run git ARGS on cluster NAME, inside its work tree alias.

    Examples:

        dotcluster git bash status

        dotcluster git bash add .bashrc

        dotcluster git bash commit -m 'Add prompt'
    """
    from dotcluster.core.use_cases.manage import run_git

    settings, store_root = resolve_store(ctx)
    result = run_git(
        store_root,
        name,
        list(args),
        backend=ctx.obj.get("backend"),
        settings=settings,
    )

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)
    sys.exit(result.exit_code)
