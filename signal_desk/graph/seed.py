"""Knowledge seeding from the user's profile, rapid-fire answers and an
LLM industry scan, followed by a pruning pass."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from signal_desk.graph.knowledge import EntitySeed, KnowledgeModel
from signal_desk.graph.prune import KnowledgePruner, PruneResult
from signal_desk.llm.loader import load_prompt
from signal_desk.llm.parsing import parse_json_payload

logger = logging.getLogger(__name__)

RAPID_FIRE_CONFIDENCE = {"know-tons": 1.0, "need-more": 0.3}


@dataclass
class SeedResult:
    candidates: int = 0
    inserted: int = 0
    prune: PruneResult | None = None


class KnowledgeSeeder:
    def __init__(self, knowledge: KnowledgeModel, llm, pruner: KnowledgePruner | None = None):
        self.knowledge = knowledge
        self.store = knowledge.store
        self.llm = llm
        self.pruner = pruner or KnowledgePruner(self.store, llm)

    def seed(self, user_id: str, industry_scan: bool = True) -> SeedResult:
        user = self.store.get_user(user_id)
        profile = self.store.get_profile(user_id)
        if not user or not profile:
            logger.warning("Cannot seed knowledge for %s: user or profile missing", user_id)
            return SeedResult()

        seeds = self.profile_seeds(user_id, user, profile)
        if industry_scan:
            seeds.extend(self.industry_scan(user, profile))

        # First occurrence wins
        seen = set()
        unique = []
        for s in seeds:
            key = s.name.lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(s)

        inserted = self.knowledge.add_entities(user_id, unique)
        logger.info("Seeded %d/%d entities for %s", inserted, len(unique), user_id)

        prune = self.pruner.prune(user_id)
        return SeedResult(candidates=len(unique), inserted=inserted, prune=prune)

    def profile_seeds(self, user_id: str, user: dict, profile: dict) -> list[EntitySeed]:
        seeds = []
        if user.get("company"):
            seeds.append(EntitySeed(user["company"], "company", "profile-derived", 1.0))
        for peer in self.store.get_peer_orgs(user_id):
            if peer["confirmed"]:
                seeds.append(EntitySeed(peer["name"], "company", "profile-derived", 1.0))
        for contact in self.store.get_impress_contacts(user_id):
            if contact.get("name"):
                seeds.append(EntitySeed(contact["name"], "person", "profile-derived", 1.0))
        for topic in profile.get("topics", []):
            seeds.append(EntitySeed(topic, "concept", "profile-derived", 1.0))
        for area in profile.get("expert_areas", []):
            seeds.append(EntitySeed(area, "concept", "profile-derived", 1.0))

        for item in profile.get("rapid_fire") or []:
            if not isinstance(item, dict):
                continue
            confidence = RAPID_FIRE_CONFIDENCE.get(item.get("response"))
            if confidence is not None and item.get("topic"):
                seeds.append(EntitySeed(str(item["topic"]), "concept", "rapid-fire", confidence))
        return seeds

    def industry_scan(self, user: dict, profile: dict) -> list[EntitySeed]:
        """Concepts a professional in this role is expected to know already."""
        prompt = load_prompt("industry_scan")
        user_message = (
            f"Role: {user.get('title') or 'Professional'} at {user.get('company') or 'their company'}. "
            f"Topics they work on: {', '.join(profile.get('topics', []))}"
        )
        try:
            raw = self.llm.run(
                prompt.body, user_message,
                temperature=prompt.temperature, max_tokens=prompt.max_tokens,
            )
        except Exception as exc:
            logger.warning("Industry scan failed: %s", exc)
            return []

        parsed = parse_json_payload(raw)
        if not isinstance(parsed, list):
            logger.warning("Industry scan returned no list")
            return []
        return [
            EntitySeed(item.strip(), "concept", "industry-scan", 0.8)
            for item in parsed
            if isinstance(item, str) and item.strip()
        ]
