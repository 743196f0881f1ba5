"""CLI commands for signal selection.

Commands:
  select   Run the selection agent for one user over a candidate file
  filter   Show which candidates pass the user's content universe
"""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from signal_desk.agent.models import AgentScoringConfig
from signal_desk.cli.common import (
    build_embedder,
    build_llm,
    build_serpapi,
    context_config,
    load_candidates,
    open_store,
)

console = Console()


@click.command("select")
@click.argument("user_id")
@click.argument("candidates_file", type=click.Path(exists=True))
@click.option("--provider", type=click.Choice(["gemini", "claude"]), default=None)
@click.option("--model", default=None, help="Override model name")
@click.option("--rounds", "max_tool_rounds", type=int, default=None, help="Max tool rounds")
@click.option("--target", "target_selections", type=int, default=None, help="Selections to make")
@click.option("--pool", "candidate_pool_size", type=int, default=None, help="Max candidates shown to the agent")
@click.option("--json", "json_mode", is_flag=True, help="Print the full result as JSON")
@click.option("--record", is_flag=True, help="Store the picks as delivered and learn their entities")
@click.pass_context
def select(
    ctx: click.Context,
    user_id: str,
    candidates_file: str,
    provider: Optional[str],
    model: Optional[str],
    max_tool_rounds: Optional[int],
    target_selections: Optional[int],
    candidate_pool_size: Optional[int],
    json_mode: bool,
    record: bool,
):
    """Pick today's signals for USER_ID from CANDIDATES_FILE.

    \b
    Examples:
        signal-desk select u_123 candidates.json
        signal-desk select u_123 candidates.json --rounds 5 --target 3
        signal-desk select u_123 candidates.json --record
    """
    from signal_desk.pipeline import record_briefing, score_user

    config = context_config(ctx)
    scoring = AgentScoringConfig.from_dict(config.get("agent")).with_overrides(
        model=model,
        max_tool_rounds=max_tool_rounds,
        target_selections=target_selections,
        candidate_pool_size=candidate_pool_size,
    )
    candidates = load_candidates(candidates_file)
    store = open_store(config)
    embedder = build_embedder(config)
    briefing_id = None
    try:
        llm = build_llm(config, provider)
        outcome = score_user(
            store,
            llm,
            user_id,
            candidates,
            scoring,
            embedder=embedder,
            serpapi=build_serpapi(config),
        )
        if record and outcome.result is not None:
            briefing_id = record_briefing(store, llm, outcome, embedder=embedder)
    finally:
        store.close()

    if outcome.result is None:
        console.print("[yellow]No briefing today: the agent produced no valid selections.[/yellow]")
        ctx.exit(1)

    if json_mode:
        click.echo(json.dumps(outcome.result.to_dict(), indent=2, ensure_ascii=False))
        return

    console.print(
        f"[bold]{len(outcome.picks)} selections[/bold] from {outcome.admitted}/{outcome.offered} "
        f"admitted candidates ({outcome.result.model_used}, "
        f"{outcome.result.prompt_tokens}+{outcome.result.completion_tokens} tokens)"
    )
    table = Table(show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Signal")
    table.add_column("Reason")
    table.add_column("Conf", justify="right")
    table.add_column("Attribution")
    for selection, signal in outcome.picks:
        table.add_row(
            str(selection.signal_index),
            signal.title,
            selection.reason_label or selection.reason,
            f"{selection.confidence:.2f}",
            selection.attribution,
        )
    console.print(table)

    tools = [entry.tool for entry in outcome.result.tool_call_log]
    if tools:
        console.print(f"  Tools used: {', '.join(tools)}")
    if briefing_id:
        console.print(f"  [dim]Recorded briefing {briefing_id}[/dim]")


@click.command("filter")
@click.argument("user_id")
@click.argument("candidates_file", type=click.Path(exists=True))
@click.pass_context
def filter_cmd(ctx: click.Context, user_id: str, candidates_file: str):
    """Classify candidates against USER_ID's content universe."""
    from signal_desk.graph.universe import ContentUniverse, classify

    config = context_config(ctx)
    store = open_store(config)
    try:
        profile = store.get_profile(user_id)
    finally:
        store.close()
    if profile is None:
        raise click.ClickException(f"No profile for {user_id}")

    universe = ContentUniverse.from_dict(profile.get("content_universe"))
    if universe is None:
        console.print("[yellow]No content universe yet, every candidate passes.[/yellow]")

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Signal")
    table.add_column("Verdict")
    colors = {"core": "green", "no-universe": "green", "excluded": "red", "no-match": "yellow"}
    for i, signal in enumerate(load_candidates(candidates_file)):
        verdict = classify(signal.title, signal.summary, universe)
        table.add_row(str(i), signal.title, f"[{colors[verdict]}]{verdict}[/{colors[verdict]}]")
    console.print(table)
