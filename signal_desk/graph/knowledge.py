"""Knowledge model: what a user already knows.

Lookup is substring-first. Only when a query has no substring hits
does it fall back to embedding similarity over entities that carry an
embedding. Writes skip anything the user has had pruned. Delivered
briefings feed back in: their entities become known so the same story
reads as old news next time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np

from signal_desk.graph.store import GraphStore
from signal_desk.llm.embeddings import cosine_similarity
from signal_desk.llm.loader import load_prompt
from signal_desk.llm.parsing import parse_json_payload

logger = logging.getLogger(__name__)

SNAPSHOT_LIMIT = 30
SIMILARITY_THRESHOLD = 0.6
SIMILARITY_LIMIT = 10

ENTITY_TYPES = frozenset({"company", "person", "concept", "term", "product", "event", "fact"})
BRIEFING_SOURCE = "briefing-delivered"
BRIEFING_CONFIDENCE = 0.9


class Embedder(Protocol):
    def embed(self, texts: list[str]) -> list[Optional[np.ndarray]]: ...


@dataclass
class EntitySeed:
    name: str
    entity_type: str
    source: str
    confidence: float
    description: str = ""


def _public(entity: dict) -> dict:
    return {
        "name": entity["name"],
        "entityType": entity["entity_type"],
        "description": entity.get("description", ""),
        "confidence": entity["confidence"],
        "source": entity["source"],
    }


class KnowledgeModel:
    """Read and write paths over a user's known entities."""

    def __init__(self, store: GraphStore, embedder: Embedder | None = None):
        self.store = store
        self.embedder = embedder

    def embed_texts(self, texts: list[str]) -> list[Optional[np.ndarray]]:
        """Embed texts, degrading to None for every text on any failure."""
        if not texts or self.embedder is None:
            return [None] * len(texts)
        try:
            vectors = list(self.embedder.embed(texts))
        except Exception as exc:
            logger.warning("Embedding %d texts failed: %s", len(texts), exc)
            return [None] * len(texts)
        vectors = vectors[:len(texts)]
        while len(vectors) < len(texts):
            vectors.append(None)
        return vectors

    # ══════════════════════════════════════════════════════════════
    # Lookup
    # ══════════════════════════════════════════════════════════════

    def lookup(self, user_id: str, query: str | None = None) -> dict:
        """Known entities matching a query, or a general snapshot without one."""
        entities = self.store.get_entities(user_id)

        if not query:
            return {
                "totalKnownEntities": len(entities),
                "entities": [_public(e) for e in entities[:SNAPSHOT_LIMIT]],
            }

        query_lower = query.lower()
        matches = [
            _public(e) for e in entities
            if query_lower in e["name"].lower()
            or query_lower in (e.get("description") or "").lower()
        ]
        if matches:
            return {"query": query, "matches": matches, "matchCount": len(matches)}

        similar = self.similar_entities(user_id, query)
        return {"query": query, "matches": similar, "matchCount": len(similar)}

    def similar_entities(self, user_id: str, query: str) -> list[dict]:
        """Entities whose embedding has cosine similarity > 0.6 to the query, top 10."""
        query_vec = self.embed_texts([query])[0]
        if query_vec is None:
            return []

        scored = []
        for entity in self.store.get_entities(user_id, with_embeddings=True):
            vec = entity.get("embedding")
            if vec is None or len(vec) == 0:
                continue
            similarity = cosine_similarity(query_vec, vec)
            if similarity > SIMILARITY_THRESHOLD:
                scored.append({**_public(entity), "similarity": round(similarity, 4)})

        scored.sort(key=lambda e: e["similarity"], reverse=True)
        return scored[:SIMILARITY_LIMIT]

    # ══════════════════════════════════════════════════════════════
    # Writes
    # ══════════════════════════════════════════════════════════════

    def is_suppressed(self, user_id: str, name: str, entity_type: str) -> bool:
        return self.store.is_suppressed(user_id, name, entity_type)

    def add_entity(
        self, seed: EntitySeed, user_id: str, embedding: np.ndarray | None = None,
    ) -> str | None:
        """Insert one entity unless it is suppressed or already known."""
        if self.is_suppressed(user_id, seed.name, seed.entity_type):
            logger.debug("Skipping suppressed entity %s (%s)", seed.name, seed.entity_type)
            return None
        return self.store.insert_entity(
            user_id, seed.name, seed.entity_type, seed.source,
            confidence=seed.confidence, description=seed.description, embedding=embedding,
        )

    def add_entities(self, user_id: str, seeds: list[EntitySeed], batch_size: int = 50) -> int:
        """Embed and insert seeds in batches. Returns the number inserted."""
        inserted = 0
        for i in range(0, len(seeds), batch_size):
            batch = seeds[i:i + batch_size]
            vectors = self.embed_texts([s.name for s in batch])
            for seed, vector in zip(batch, vectors):
                if self.add_entity(seed, user_id, embedding=vector):
                    inserted += 1
        return inserted

    # ══════════════════════════════════════════════════════════════
    # Delivered briefings
    # ══════════════════════════════════════════════════════════════

    def absorb_briefing(self, user_id: str, items: list[dict], llm) -> int:
        """Record the entities of delivered briefing items as known.

        Suppressed entities are skipped; ones already known are only
        reinforced. Returns the number of new entities.
        """
        entities = self.extract_briefing_entities(items, llm)
        if not entities:
            return 0

        vectors = self.embed_texts([name for name, _ in entities])
        inserted = 0
        for (name, entity_type), vector in zip(entities, vectors):
            if self.is_suppressed(user_id, name, entity_type):
                continue
            existing = self.store.find_entity(user_id, name, entity_type)
            if existing:
                self.store.reinforce_entity(existing["id"])
                continue
            seed = EntitySeed(name, entity_type, BRIEFING_SOURCE, BRIEFING_CONFIDENCE)
            if self.add_entity(seed, user_id, embedding=vector):
                inserted += 1

        logger.info("Absorbed %d new entities from %d briefing items for %s",
                    inserted, len(items), user_id)
        return inserted

    def extract_briefing_entities(self, items: list[dict], llm) -> list[tuple[str, str]]:
        """(name, type) pairs from briefing items, first spelling of a name wins."""
        if not items:
            return []
        prompt = load_prompt("briefing_entities")
        summaries = "\n\n---\n\n".join(
            f"Topic: {item.get('topic', '')}\n{item.get('content', '')}" for item in items
        )
        try:
            raw = llm.run(prompt.body, summaries,
                          temperature=prompt.temperature, max_tokens=prompt.max_tokens)
        except Exception as exc:
            logger.warning("Briefing entity extraction failed: %s", exc)
            return []

        parsed = parse_json_payload(raw)
        if not isinstance(parsed, list):
            logger.warning("Briefing entity extraction returned no list")
            return []

        seen = set()
        entities = []
        for entry in parsed:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip()
            entity_type = str(entry.get("entityType") or entry.get("type") or "").lower()
            if not name or entity_type not in ENTITY_TYPES or name.lower() in seen:
                continue
            seen.add(name.lower())
            entities.append((name, entity_type))
        return entities
