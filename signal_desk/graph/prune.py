"""Knowledge pruning: drop entities that are too generic or off-domain.

Entities from the user's own profile or rapid-fire answers are never
evaluated. Everything else goes to the LLM in fixed-size batches.
Pruned entities are deleted with their edges and recorded as a sticky
suppression so reseeding skips them. A batch that fails to evaluate
keeps every entity in it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from signal_desk.graph.store import GraphStore
from signal_desk.llm.loader import load_prompt
from signal_desk.llm.parsing import parse_json_payload

logger = logging.getLogger(__name__)

EXEMPT_SOURCES = ("profile-derived", "rapid-fire")
BATCH_SIZE = 50


@dataclass
class PruneResult:
    pruned: int = 0
    kept: int = 0
    exempt: int = 0


def build_user_context(user: dict, profile: dict) -> str:
    parts = []
    if user.get("title"):
        parts.append(f"Role: {user['title']}")
    if user.get("company"):
        parts.append(f"Company: {user['company']}")
    if profile.get("topics"):
        parts.append(f"Topics: {', '.join(profile['topics'])}")
    if profile.get("expert_areas"):
        parts.append(f"Expert areas: {', '.join(profile['expert_areas'])}")
    return "\n".join(parts)


def verdict_key(verdict: dict) -> tuple[str, str | None]:
    entity_type = verdict.get("type") or verdict.get("entityType")
    return (
        verdict["name"].lower(),
        entity_type.lower() if isinstance(entity_type, str) and entity_type else None,
    )


def match_verdict(verdicts: dict, entity: dict) -> dict | None:
    """A typed verdict only applies to its own type; an untyped one applies to the name."""
    name = entity["name"].lower()
    typed = verdicts.get((name, entity["entity_type"].lower()))
    return typed if typed is not None else verdicts.get((name, None))


class KnowledgePruner:
    """Batch LLM evaluation of a user's prunable entities."""

    def __init__(self, store: GraphStore, llm, batch_size: int = BATCH_SIZE):
        self.store = store
        self.llm = llm
        self.batch_size = batch_size

    def prune(self, user_id: str) -> PruneResult:
        user = self.store.get_user(user_id)
        profile = self.store.get_profile(user_id)
        if not user or not profile:
            return PruneResult()

        entities = self.store.get_entities(user_id)
        exempt = [e for e in entities if e["source"] in EXEMPT_SOURCES]
        prunable = [e for e in entities if e["source"] not in EXEMPT_SOURCES]
        result = PruneResult(exempt=len(exempt))
        if not prunable:
            return result

        user_context = build_user_context(user, profile)

        for i in range(0, len(prunable), self.batch_size):
            batch = prunable[i:i + self.batch_size]
            verdicts = self.evaluate_batch(user_context, batch)

            for entity in batch:
                verdict = match_verdict(verdicts, entity)
                if verdict is not None and verdict.get("keep") is False:
                    self._delete_and_suppress(user_id, entity, str(verdict.get("reason", "")))
                    result.pruned += 1
                else:
                    result.kept += 1

        logger.info(
            "Pruned knowledge for %s: pruned=%d kept=%d exempt=%d",
            user_id, result.pruned, result.kept, result.exempt,
        )
        return result

    def evaluate_batch(self, user_context: str, batch: list[dict]) -> dict[tuple, dict]:
        """Ask the LLM for keep/prune verdicts, keyed by (lowercase name, type or None).

        Returns {} (keep everything) on any failure.
        """
        prompt = load_prompt("knowledge_prune")
        entity_list = "\n".join(
            f'- "{e["name"]}" (type: {e["entity_type"]}, confidence: {e["confidence"]})'
            for e in batch
        )
        user_message = f"USER CONTEXT:\n{user_context}\n\nENTITIES TO EVALUATE:\n{entity_list}"

        try:
            raw = self.llm.run(
                prompt.body, user_message,
                temperature=prompt.temperature, max_tokens=prompt.max_tokens,
            )
        except Exception as exc:
            logger.error("Prune batch of %d failed, keeping all: %s", len(batch), exc)
            return {}

        parsed = parse_json_payload(raw)
        if not isinstance(parsed, list):
            logger.warning("Prune batch of %d returned no verdict list, keeping all", len(batch))
            return {}

        verdicts = {}
        for verdict in parsed:
            if isinstance(verdict, dict) and isinstance(verdict.get("name"), str):
                verdicts[verdict_key(verdict)] = verdict
        return verdicts

    def _delete_and_suppress(self, user_id: str, entity: dict, reason: str):
        self.store.prune_entity(user_id, entity["id"], entity["name"], entity["entity_type"], reason)
        logger.debug("Pruned %s (%s): %s", entity["name"], entity["entity_type"], reason)
