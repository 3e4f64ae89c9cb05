"""CLI commands for SrcVault."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from srcvault.errors import SrcVaultError
from srcvault.models.config import VaultConfig
from srcvault.vault import SrcVault

console = Console()


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    logging.getLogger("srcvault").setLevel(logging.DEBUG if debug else logging.INFO)


def get_vault(config_path: str | None, debug: bool) -> SrcVault:
    config = VaultConfig.load(Path(config_path) if config_path else None)
    if debug:
        config = config.model_copy(update={"debug": True})
    return SrcVault(config)


@click.group()
@click.option("--config", "-c", "config_path", default=None, type=click.Path(dir_okay=False),
              help="YAML configuration file")
@click.option("--debug", is_flag=True, help="Verbose diagnostic logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, debug: bool) -> None:
    """SrcVault - Fetch and cache build inputs."""
    ctx.ensure_object(dict)
    vault = get_vault(config_path, debug)
    setup_logging(vault.config.debug)
    ctx.obj["vault"] = vault
    ctx.call_on_close(vault.close)


@main.command()
@click.argument("input_type")
@click.argument("value")
@click.option("--name", "-n", default="src", help="Input name")
@click.option("--project", "-p", default="", help="Project the input belongs to")
@click.option("--jobset", "-j", default="", help="Jobset the input belongs to")
@click.pass_context
def fetch(
    ctx: click.Context,
    input_type: str,
    value: str,
    name: str,
    project: str,
    jobset: str,
) -> None:
    """Resolve an input and print the published result as JSON."""
    vault: SrcVault = ctx.obj["vault"]

    try:
        with console.status(f"Fetching {input_type} input {name}..."):
            result = vault.fetch_input(input_type, name, value, project, jobset)
    except SrcVaultError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    click.echo(json.dumps(result, indent=2, sort_keys=True))


@main.command()
@click.argument("value")
@click.argument("rev1")
@click.argument("rev2")
@click.option("--type", "-t", "input_type", default="git", help="Input type")
@click.pass_context
def commits(ctx: click.Context, value: str, rev1: str, rev2: str, input_type: str) -> None:
    """List commits and their authors between two revisions."""
    vault: SrcVault = ctx.obj["vault"]

    try:
        results = vault.get_commits(input_type, value, rev1, rev2)
    except SrcVaultError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    if not results:
        console.print("[dim]No commits found[/dim]")
        return

    table = Table(title=f"Commits {rev1[:12]}..{rev2[:12]}")
    table.add_column("Revision", style="cyan")
    table.add_column("Author")
    table.add_column("Email", style="dim")
    table.add_column("Date", style="green")

    for commit in results:
        date = commit.timestamp.strftime("%Y-%m-%d %H:%M") if commit.timestamp else ""
        table.add_row(commit.revision[:12], commit.author, commit.email, date)

    console.print(table)


@main.command()
@click.pass_context
def types(ctx: click.Context) -> None:
    """List supported input types."""
    vault: SrcVault = ctx.obj["vault"]

    table = Table(title="Input Types")
    table.add_column("Type", style="cyan")
    table.add_column("Description")

    for input_type, description in vault.supported_input_types().items():
        table.add_row(input_type, description)

    console.print(table)


@main.command()
@click.pass_context
def cache(ctx: click.Context) -> None:
    """Show durable cache statistics."""
    vault: SrcVault = ctx.obj["vault"]

    stats = vault.cache_stats()

    table = Table(title="Cached Git Inputs")
    table.add_column("URI", style="cyan")
    table.add_column("Revisions", justify="right", style="green")

    for uri, count in sorted(stats["by_uri"].items()):
        table.add_row(uri, str(count))

    table.add_row("[bold]Total[/bold]", f"[bold]{stats['git_inputs']}[/bold]")
    console.print(table)
    console.print(f"\n[dim]Path inputs: {stats['path_inputs']}[/dim]")
    console.print(f"[dim]Database: {stats['db_path']}[/dim]")


if __name__ == "__main__":
    main()
