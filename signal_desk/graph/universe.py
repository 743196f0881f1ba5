"""Content universe: a per-user admission filter for candidate signals.

A universe lists core topics (what is in scope) and exclusions (what
feeds tend to confuse with the user's niche). Candidates are admitted
when they hit a core topic, even if they also hit an exclusion. With no
universe yet, everything is admitted.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from signal_desk.graph.store import GraphStore
from signal_desk.llm.loader import load_prompt
from signal_desk.llm.parsing import parse_json_payload
from signal_desk.safe_parse import to_string_array

logger = logging.getLogger(__name__)

FEEDBACK_REGEN_THRESHOLD = 3


@dataclass
class ContentUniverse:
    definition: str
    core_topics: list[str]
    exclusions: list[str]
    seismic_threshold: str = ""
    version: int = 1
    generated_from: list[str] = field(default_factory=list)
    generated_at: int = 0

    @classmethod
    def from_dict(cls, data: dict | None) -> Optional["ContentUniverse"]:
        if not data:
            return None
        return cls(
            definition=str(data.get("definition", "")),
            core_topics=to_string_array(data.get("core_topics", data.get("coreTopics"))),
            exclusions=to_string_array(data.get("exclusions")),
            seismic_threshold=str(data.get("seismic_threshold", data.get("seismicThreshold", "")) or ""),
            version=int(data.get("version", 1)),
            generated_from=to_string_array(data.get("generated_from", data.get("generatedFrom"))),
            generated_at=int(data.get("generated_at", 0) or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)


# ══════════════════════════════════════════════════════════════
# Matching
# ══════════════════════════════════════════════════════════════

def _topic_matches(topic: str, text: str) -> bool:
    topic = topic.lower().strip()
    if not topic:
        return False
    if topic in text:
        return True
    words = topic.split()
    if len(words) < 2:
        return False
    significant = [w for w in words if len(w) > 3]
    return bool(significant) and all(w in text for w in significant)


def classify(title: str, summary: str, universe: ContentUniverse | None) -> str:
    """Return one of: no-universe, core, excluded, no-match."""
    if universe is None:
        return "no-universe"
    text = f"{title} {summary}".lower()
    if any(_topic_matches(t, text) for t in universe.core_topics):
        return "core"
    if any(e.lower().strip() and e.lower().strip() in text for e in universe.exclusions):
        return "excluded"
    return "no-match"


def matches(title: str, summary: str, universe: ContentUniverse | None) -> bool:
    """Whether a candidate belongs in the user's content universe."""
    return classify(title, summary, universe) in ("no-universe", "core")


def filter_candidates(candidates: Iterable, universe: ContentUniverse | None) -> list:
    """Keep candidates (anything with .title and .summary) that match."""
    kept = []
    outcomes: Counter = Counter()
    for c in candidates:
        outcome = classify(c.title, c.summary, universe)
        outcomes[outcome] += 1
        if outcome in ("no-universe", "core"):
            kept.append(c)
    dropped = outcomes["excluded"] + outcomes["no-match"]
    if dropped:
        logger.info(
            "Universe filter kept %d, dropped %d (excluded=%d no-match=%d)",
            len(kept), dropped, outcomes["excluded"], outcomes["no-match"],
        )
    return kept


# ══════════════════════════════════════════════════════════════
# Generation
# ══════════════════════════════════════════════════════════════

def _dedupe(items: Iterable[str]) -> list[str]:
    seen = set()
    out = []
    for item in items:
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(item.strip())
    return out


def _listing(values: list[str], sep: str = ", ", empty: str = "not specified") -> str:
    return sep.join(values) if values else empty


class UniverseGenerator:
    """Builds and versions a user's content universe with the LLM."""

    def __init__(self, store: GraphStore, llm):
        self.store = store
        self.llm = llm

    def collect_inputs(self, user_id: str) -> dict | None:
        user = self.store.get_user(user_id)
        profile = self.store.get_profile(user_id)
        if not user or not profile:
            return None

        contacts = self.store.get_impress_contacts(user_id)
        focus_areas = []
        for c in contacts:
            deep_dive = c.get("deep_dive") or {}
            focus_areas.extend(to_string_array(deep_dive.get("focusAreas")))
            focus_areas.extend(to_string_array(deep_dive.get("interests")))

        existing = ContentUniverse.from_dict(profile.get("content_universe"))
        return {
            "title": user.get("title"),
            "company": user.get("company"),
            "topics": profile["topics"],
            "initiatives": profile["initiatives"],
            "concerns": profile["concerns"],
            "expert_areas": profile["expert_areas"],
            "weak_areas": profile["weak_areas"],
            "knowledge_gaps": profile["knowledge_gaps"],
            "transcript": profile.get("transcript"),
            "impress_companies": _dedupe(c["company"] for c in contacts if c.get("company")),
            "impress_focus_areas": _dedupe(focus_areas),
            "peer_orgs": [p["name"] for p in self.store.get_peer_orgs(user_id) if p["confirmed"]],
            "not_relevant": [
                str(r.get("topic")) for r in profile.get("rapid_fire") or []
                if isinstance(r, dict) and r.get("response") == "not-relevant" and r.get("topic")
            ],
            "existing_exclusions": existing.exclusions if existing else [],
        }

    @staticmethod
    def inputs_hash(inputs: dict, feedback_exclusions: list[str]) -> str:
        key = json.dumps(
            {
                "topics": sorted(inputs["topics"]),
                "initiatives": sorted(inputs["initiatives"]),
                "concerns": sorted(inputs["concerns"]),
                "expert_areas": sorted(inputs["expert_areas"]),
                "weak_areas": sorted(inputs["weak_areas"]),
                "knowledge_gaps": sorted(inputs["knowledge_gaps"]),
                "title": inputs["title"],
                "company": inputs["company"],
                "not_relevant": sorted(inputs["not_relevant"]),
                "feedback_exclusions": sorted(feedback_exclusions),
            },
            sort_keys=True,
        )
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]

    def build_prompt(self, inputs: dict, feedback_exclusions: list[str]) -> str:
        sparse = len(inputs["topics"]) < 3 and len(inputs["initiatives"]) < 2
        rejections = _dedupe([*inputs["existing_exclusions"], *feedback_exclusions, *inputs["not_relevant"]])

        extra = []
        if inputs["impress_companies"]:
            extra.append(f"- Tracks these companies: {', '.join(inputs['impress_companies'])}")
        if inputs["impress_focus_areas"]:
            extra.append(f"- Impress contact focus areas: {', '.join(inputs['impress_focus_areas'])}")
        if inputs["peer_orgs"]:
            extra.append(f"- Peer organizations: {', '.join(inputs['peer_orgs'])}")
        if inputs["transcript"]:
            extra.append(f'- Conversation excerpt: "{inputs["transcript"][:1000]}"')

        prompt = load_prompt("content_universe")
        return prompt.render(
            title=inputs["title"] or "Professional",
            company=inputs["company"] or "their company",
            topics=_listing(inputs["topics"]),
            initiatives=_listing(inputs["initiatives"], "; ", "none specified"),
            concerns=_listing(inputs["concerns"], "; ", "none specified"),
            expert_areas=_listing(inputs["expert_areas"]),
            weak_areas=_listing(inputs["weak_areas"]),
            knowledge_gaps=_listing(inputs["knowledge_gaps"]),
            extra_context="\n".join(extra),
            rejections=(
                "TOPICS THE USER HAS EXPLICITLY REJECTED:\n" + "\n".join(f"- {r}" for r in rejections)
                if rejections else ""
            ),
            core_guidance=(
                "The profile is sparse, so allow slightly broader descriptors."
                if sparse else "Be as specific as the profile allows."
            ),
            exclusion_guidance=(
                "Keep it to 5-8 items." if sparse else "Be aggressive: 5-15 items."
            ),
            threshold_guidance=(
                "Allow major events in the broader industry." if sparse
                else "Only landscape-changing events."
            ),
        )

    def generate(
        self,
        user_id: str,
        feedback_exclusions: list[str] | None = None,
        force: bool = False,
    ) -> ContentUniverse | None:
        """Generate (or refresh) and persist the user's content universe."""
        feedback_exclusions = list(feedback_exclusions or [])
        inputs = self.collect_inputs(user_id)
        if inputs is None:
            logger.warning("User/profile not found for %s, cannot generate universe", user_id)
            return None

        profile = self.store.get_profile(user_id)
        existing = ContentUniverse.from_dict(profile.get("content_universe"))
        current_hash = self.inputs_hash(inputs, feedback_exclusions)

        if existing and not force and f"hash:{current_hash}" in existing.generated_from:
            logger.info("Universe inputs unchanged for %s (v%d)", user_id, existing.version)
            existing.generated_at = int(time.time())
            self.store.save_content_universe(user_id, existing.to_dict())
            return existing

        prompt = load_prompt("content_universe")
        try:
            raw = self.llm.run(
                self.build_prompt(inputs, feedback_exclusions),
                "Generate the content universe for this professional.",
                temperature=prompt.temperature,
                max_tokens=prompt.max_tokens,
            )
        except Exception as exc:
            logger.error("Universe generation failed for %s: %s", user_id, exc)
            return None

        parsed = parse_json_payload(raw)
        if (
            not isinstance(parsed, dict)
            or not parsed.get("definition")
            or not isinstance(parsed.get("coreTopics"), list)
            or not isinstance(parsed.get("exclusions"), list)
        ):
            logger.error("Universe response for %s missing required fields", user_id)
            return None

        generated_from = [f"hash:{current_hash}"]
        for key, label in (
            ("topics", "topics"), ("initiatives", "initiatives"),
            ("concerns", "concerns"), ("expert_areas", "expert_areas"),
        ):
            if inputs[key]:
                generated_from.append(label)
        if inputs["not_relevant"]:
            generated_from.append("rapid_fire")
        if feedback_exclusions:
            generated_from.append("feedback")

        universe = ContentUniverse(
            definition=str(parsed["definition"]),
            core_topics=to_string_array(parsed["coreTopics"]),
            exclusions=_dedupe([
                *to_string_array(parsed["exclusions"]),
                *inputs["existing_exclusions"],
                *feedback_exclusions,
            ]),
            seismic_threshold=str(parsed.get("seismicThreshold", "") or ""),
            version=existing.version + 1 if existing else 1,
            generated_from=generated_from,
            generated_at=int(time.time()),
        )
        self.store.save_content_universe(user_id, universe.to_dict())
        logger.info(
            "Content universe v%d for %s: %d core topics, %d exclusions",
            universe.version, user_id, len(universe.core_topics), len(universe.exclusions),
        )
        return universe

    def regenerate_from_feedback(self, user_id: str) -> bool:
        """Regenerate when enough tune-less / not-novel topics piled up since the last run."""
        profile = self.store.get_profile(user_id)
        if not profile:
            return False
        existing = ContentUniverse.from_dict(profile.get("content_universe"))
        if not existing or not existing.generated_at:
            return False

        feedback = self.store.get_recent_feedback(user_id, limit=30, since=existing.generated_at)
        topics = _dedupe(
            f["topic"] for f in feedback
            if f["type"] in ("tune-less", "not-novel") and f.get("topic")
        )
        if len(topics) < FEEDBACK_REGEN_THRESHOLD:
            return False

        logger.info("Feedback threshold met for %s, regenerating universe", user_id)
        return self.generate(user_id, feedback_exclusions=topics) is not None
