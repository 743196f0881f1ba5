"""Signal Desk CLI: pick the few signals each user should see today."""

import logging
import subprocess

import click
from rich.console import Console
from rich.logging import RichHandler

from signal_desk.cli.agent_cmd import filter_cmd, select
from signal_desk.cli.knowledge_cmd import knowledge_cli, poll_cli, universe_cli
from signal_desk.config import KEYCHAIN_SERVICE, load_config

console = Console()


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, verbose):
    """Signal Desk: daily signal selection with a tool-using LLM agent."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )
    ctx.obj = {"config": load_config()}


@cli.command("set-key")
@click.argument("provider", type=click.Choice(["gemini", "claude", "serpapi"]))
@click.option("--key", prompt=True, hide_input=True, help="API key")
def set_key(provider, key):
    """Store an API key in macOS Keychain.

    Examples:

        signal-desk set-key gemini

        signal-desk set-key serpapi
    """
    account = provider
    subprocess.run(
        ["security", "delete-generic-password", "-a", account, "-s", KEYCHAIN_SERVICE],
        capture_output=True,
    )
    result = subprocess.run(
        ["security", "add-generic-password", "-a", account, "-s", KEYCHAIN_SERVICE, "-w", key],
        capture_output=True, text=True,
    )
    if result.returncode == 0:
        console.print(f"[green]✓[/green] {provider} API key stored in Keychain")
    else:
        console.print(f"[red]Failed to store key:[/red] {result.stderr}")


cli.add_command(select)
cli.add_command(filter_cmd)
cli.add_command(knowledge_cli)
cli.add_command(universe_cli)
cli.add_command(poll_cli)


if __name__ == "__main__":
    cli()
