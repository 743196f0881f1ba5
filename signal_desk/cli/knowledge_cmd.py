"""CLI commands for per-user knowledge, content universe and poll schedule.

Commands:
  knowledge lookup   Look up what a user already knows
  knowledge seed     Seed entities from the profile (+ industry scan), then prune
  knowledge prune    Run the pruning pass on its own
  knowledge stats    Entity counts by source and type
  universe generate  Generate or refresh a user's content universe
  universe show      Print the stored content universe
  poll due           List news queries due for polling
"""

from __future__ import annotations

import json
import time
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from signal_desk.cli.common import build_embedder, build_llm, context_config, open_store
from signal_desk.config import news_config

console = Console()


# ══════════════════════════════════════════════════════════════
# knowledge
# ══════════════════════════════════════════════════════════════

@click.group("knowledge")
def knowledge_cli():
    """Inspect and maintain what each user already knows."""
    pass


@knowledge_cli.command("lookup")
@click.argument("user_id")
@click.argument("query", required=False)
@click.option("--no-embed", is_flag=True, help="Skip the embedding fallback")
@click.pass_context
def lookup(ctx: click.Context, user_id: str, query: Optional[str], no_embed: bool):
    """Look up QUERY in USER_ID's knowledge (omit QUERY for a snapshot)."""
    from signal_desk.graph.knowledge import KnowledgeModel

    config = context_config(ctx)
    store = open_store(config)
    try:
        model = KnowledgeModel(store, None if no_embed else build_embedder(config))
        result = model.lookup(user_id, query)
    finally:
        store.close()

    entities = result.get("entities") or result.get("matches") or []
    if not entities:
        console.print("[yellow]Nothing known.[/yellow]")
        return

    table = Table()
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Source")
    table.add_column("Conf", justify="right")
    if any("similarity" in e for e in entities):
        table.add_column("Sim", justify="right")
    for e in entities:
        row = [e["name"], e["entityType"], e["source"], f"{e['confidence']:.2f}"]
        if "similarity" in e:
            row.append(f"{e['similarity']:.3f}")
        table.add_row(*row)
    console.print(table)
    if "totalKnownEntities" in result:
        console.print(f"  {result['totalKnownEntities']} known entities in total")


@knowledge_cli.command("seed")
@click.argument("user_id")
@click.option("--no-scan", is_flag=True, help="Skip the LLM industry scan")
@click.option("--provider", type=click.Choice(["gemini", "claude"]), default=None)
@click.pass_context
def seed(ctx: click.Context, user_id: str, no_scan: bool, provider: Optional[str]):
    """Seed USER_ID's knowledge from their profile, then prune."""
    from signal_desk.graph.knowledge import KnowledgeModel
    from signal_desk.graph.seed import KnowledgeSeeder

    config = context_config(ctx)
    llm = build_llm(config, provider)
    store = open_store(config)
    try:
        seeder = KnowledgeSeeder(KnowledgeModel(store, build_embedder(config)), llm)
        result = seeder.seed(user_id, industry_scan=not no_scan)
    finally:
        store.close()

    console.print(f"  Candidates: {result.candidates}")
    console.print(f"  Inserted:   {result.inserted}")
    if result.prune:
        console.print(
            f"  Pruned:     {result.prune.pruned} "
            f"(kept {result.prune.kept}, exempt {result.prune.exempt})"
        )


@knowledge_cli.command("prune")
@click.argument("user_id")
@click.option("--provider", type=click.Choice(["gemini", "claude"]), default=None)
@click.pass_context
def prune(ctx: click.Context, user_id: str, provider: Optional[str]):
    """Drop generic or off-domain entities from USER_ID's knowledge."""
    from signal_desk.graph.prune import KnowledgePruner

    config = context_config(ctx)
    llm = build_llm(config, provider)
    store = open_store(config)
    try:
        result = KnowledgePruner(store, llm).prune(user_id)
    finally:
        store.close()
    console.print(f"  Pruned {result.pruned}, kept {result.kept}, exempt {result.exempt}")


@knowledge_cli.command("stats")
@click.argument("user_id")
@click.pass_context
def stats(ctx: click.Context, user_id: str):
    """Show knowledge statistics for USER_ID."""
    config = context_config(ctx)
    store = open_store(config)
    try:
        s = store.knowledge_stats(user_id)
    finally:
        store.close()

    console.print(f"[bold]Knowledge for {user_id}[/bold]")
    console.print(f"  Entities:   {s['total']}")
    console.print(f"  Embedded:   {s['embedded']}")
    console.print(f"  Edges:      {s['edges']}")
    console.print(f"  Suppressed: {s['pruned']}")
    for label, key in (("By source", "by_source"), ("By type", "by_type")):
        if s[key]:
            console.print(f"\n[bold]{label}:[/bold]")
            for name, count in sorted(s[key].items(), key=lambda kv: -kv[1]):
                console.print(f"  {name}: {count}")


# ══════════════════════════════════════════════════════════════
# universe
# ══════════════════════════════════════════════════════════════

@click.group("universe")
def universe_cli():
    """Manage per-user content universes."""
    pass


@universe_cli.command("generate")
@click.argument("user_id")
@click.option("--force", is_flag=True, help="Regenerate even if inputs are unchanged")
@click.option("--from-feedback", is_flag=True,
              help="Only regenerate if enough negative feedback piled up")
@click.option("--provider", type=click.Choice(["gemini", "claude"]), default=None)
@click.pass_context
def generate(ctx: click.Context, user_id: str, force: bool, from_feedback: bool, provider: Optional[str]):
    """Generate USER_ID's content universe."""
    from signal_desk.graph.universe import UniverseGenerator

    config = context_config(ctx)
    llm = build_llm(config, provider)
    store = open_store(config)
    try:
        generator = UniverseGenerator(store, llm)
        if from_feedback:
            if not generator.regenerate_from_feedback(user_id):
                console.print("Not enough new feedback, universe unchanged.")
                return
            universe = generator.generate(user_id)
        else:
            universe = generator.generate(user_id, force=force)
    finally:
        store.close()

    if universe is None:
        raise click.ClickException(f"Could not generate a universe for {user_id}")
    console.print(
        f"[green]✓[/green] Universe v{universe.version}: "
        f"{len(universe.core_topics)} core topics, {len(universe.exclusions)} exclusions"
    )


@universe_cli.command("show")
@click.argument("user_id")
@click.pass_context
def show(ctx: click.Context, user_id: str):
    """Print USER_ID's stored content universe as JSON."""
    config = context_config(ctx)
    store = open_store(config)
    try:
        profile = store.get_profile(user_id)
    finally:
        store.close()
    if not profile or not profile.get("content_universe"):
        console.print("[yellow]No content universe stored.[/yellow]")
        return
    click.echo(json.dumps(profile["content_universe"], indent=2, ensure_ascii=False))


# ══════════════════════════════════════════════════════════════
# poll
# ══════════════════════════════════════════════════════════════

@click.group("poll")
def poll_cli():
    """News query polling schedule."""
    pass


@poll_cli.command("due")
@click.option("--limit", type=int, default=None, help="Max queries (default: max_queries_per_cycle)")
@click.pass_context
def due(ctx: click.Context, limit: Optional[int]):
    """List queries whose next poll time has passed."""
    from signal_desk.graph.poll_state import PollScheduler

    config = context_config(ctx)
    store = open_store(config)
    try:
        states = PollScheduler(store, news_config(config)).due(limit=limit)
    finally:
        store.close()

    if not states:
        console.print("No queries due.")
        return
    now = int(time.time())
    table = Table()
    table.add_column("Query")
    table.add_column("Overdue", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Last error")
    for s in states:
        table.add_row(
            s["query_id"],
            f"{(now - s['next_poll_at']) // 60}m",
            str(s["consecutive_errors"]),
            s.get("last_error_message") or "",
        )
    console.print(table)
