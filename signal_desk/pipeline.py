"""Selection pipeline: universe filter -> selection agent -> resolved picks,
then an optional delivery step that records the briefing.

Users are independent, so score_users fans them out over a thread
pool. Each worker opens its own GraphStore (SQLite connections are
per-thread); the only thing workers share is what the caller hands in,
such as the SerpAPI rate limiter.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from signal_desk.agent.loop import SelectionAgent
from signal_desk.agent.models import AgentScoringConfig, CandidateSignal, SelectionResult, SignalSelection
from signal_desk.agent.tools import ToolExecutor
from signal_desk.graph.knowledge import KnowledgeModel
from signal_desk.graph.store import GraphStore
from signal_desk.graph.trends import SerpApiClient
from signal_desk.graph.universe import ContentUniverse, filter_candidates

logger = logging.getLogger(__name__)


@dataclass
class UserSelection:
    user_id: str
    result: Optional[SelectionResult]
    picks: list[tuple[SignalSelection, CandidateSignal]] = field(default_factory=list)
    admitted: int = 0
    offered: int = 0


def resolve_selections(
    result: SelectionResult,
    pool: list[CandidateSignal],
) -> list[tuple[SignalSelection, CandidateSignal]]:
    """Pair selections with their signals, dropping out-of-range indices."""
    picks = []
    for selection in result.selections:
        if 0 <= selection.signal_index < len(pool):
            picks.append((selection, pool[selection.signal_index]))
        else:
            logger.warning(
                "Dropping selection with invalid index %d for %s (pool of %d)",
                selection.signal_index, result.user_id, len(pool),
            )
    return picks


def score_user(
    store: GraphStore,
    llm,
    user_id: str,
    candidates: list[CandidateSignal],
    config: AgentScoringConfig | None = None,
    embedder=None,
    serpapi: SerpApiClient | None = None,
) -> UserSelection:
    config = config or AgentScoringConfig()
    profile = store.get_profile(user_id) or {}
    universe = ContentUniverse.from_dict(profile.get("content_universe"))
    admitted = filter_candidates(candidates, universe)

    executor = ToolExecutor(store, llm, knowledge=KnowledgeModel(store, embedder), serpapi=serpapi)
    agent = SelectionAgent(store, llm, executor=executor)
    result = agent.run(user_id, admitted, config)

    # The agent indexes into the truncated pool it was shown
    pool = admitted[:config.candidate_pool_size]
    picks = resolve_selections(result, pool) if result else []
    return UserSelection(
        user_id=user_id,
        result=result,
        picks=picks,
        admitted=len(admitted),
        offered=len(candidates),
    )


def score_users(
    db_path: Path,
    llm_factory: Callable[[], object],
    jobs: dict[str, list[CandidateSignal]],
    config: AgentScoringConfig | None = None,
    embedder=None,
    serpapi: SerpApiClient | None = None,
    max_workers: int = 4,
) -> dict[str, UserSelection]:
    """Score several users concurrently. A failing user yields result=None."""
    def work(user_id: str, candidates: list[CandidateSignal]) -> UserSelection:
        store = GraphStore(db_path)
        try:
            return score_user(store, llm_factory(), user_id, candidates, config, embedder, serpapi)
        finally:
            store.close()

    results: dict[str, UserSelection] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(work, uid, cands): uid for uid, cands in jobs.items()}
        for future in as_completed(futures):
            user_id = futures[future]
            try:
                results[user_id] = future.result()
            except Exception as exc:
                logger.error("Scoring failed for %s: %s", user_id, exc)
                results[user_id] = UserSelection(user_id=user_id, result=None)
    return results


def briefing_items(picks: list[tuple[SignalSelection, CandidateSignal]]) -> list[dict]:
    return [
        {
            "topic": signal.title,
            "content": signal.summary,
            "reason": selection.reason,
            "reasonLabel": selection.reason_label,
            "sourceUrl": signal.source_url,
        }
        for selection, signal in picks
    ]


def record_briefing(
    store: GraphStore,
    llm,
    selection: UserSelection,
    embedder=None,
    generated_at: int | None = None,
) -> str | None:
    """Store the delivered picks as a briefing and absorb their entities.

    Returns the briefing id, or None when there was nothing to deliver.
    """
    if not selection.picks:
        return None
    items = briefing_items(selection.picks)
    briefing_id = store.add_briefing(selection.user_id, items, generated_at=generated_at)
    KnowledgeModel(store, embedder).absorb_briefing(selection.user_id, items, llm)
    logger.info("Recorded briefing %s for %s with %d items", briefing_id, selection.user_id, len(items))
    return briefing_id
