"""
Shared helpers for CLI commands: settings, store path, receipt output.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from dotcluster.core.models.receipt import Receipt
from dotcluster.core.models.settings import Settings


def resolve_store(ctx: click.Context) -> tuple[Settings, Path]:
    """Load settings and resolve the store directory, or exit with an error."""
    from dotcluster.core.config.loader import ConfigError, load_settings, resolve_store_dir

    try:
        settings = load_settings(ctx.obj.get("config_path"))
        store_root = resolve_store_dir(settings, ctx.obj.get("store_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    return settings, store_root


def echo_receipt(name: str, receipt: Receipt, verbose: bool = False) -> None:
    """One line per cluster result, in ✓ / ✗ / ⊘ form."""
    if receipt.ok:
        click.secho(f"   ✓ {name}", fg="green", nl=False)
        click.echo(f"  {receipt.output}" if receipt.output else "")
        if verbose:
            for path in receipt.metadata.get("added", [])[:20]:
                click.echo(f"     │ + {path}")
            for path in receipt.metadata.get("removed", [])[:20]:
                click.echo(f"     │ - {path}")
    elif receipt.failed:
        click.secho(f"   ✗ {name}", fg="red")
        if receipt.error:
            for line in receipt.error.split("\n")[:5]:
                click.echo(f"     │ {line}")
    else:
        click.secho(f"   ⊘ {name} ", fg="yellow", nl=False)
        click.echo(f"({receipt.output})")
