"""
Tests for the knowledge model.

These tests verify:
- Snapshot lookup without a query never calls the embedder
- Substring lookup over names and descriptions
- Embedding fallback above the 0.6 cosine threshold, top 10
- Duplicate and suppressed inserts are no-ops
- Entities from delivered briefings become known, skipping suppressed ones
"""

import numpy as np

from conftest import FakeEmbedder, ScriptedLLM
from signal_desk.graph.knowledge import EntitySeed, KnowledgeModel


def unit(angle_deg):
    """2-d unit vector; cosine between two is cos(angle difference)."""
    rad = np.deg2rad(angle_deg)
    return np.array([np.cos(rad), np.sin(rad)], dtype=np.float32)


# =============================================================================
# Lookup
# =============================================================================

class TestLookup:

    def test_snapshot_capped_at_thirty(self, store, user_id):
        embedder = FakeEmbedder()
        for i in range(45):
            store.insert_entity(user_id, f"Entity {i}", "concept", "industry-scan")
        result = KnowledgeModel(store, embedder).lookup(user_id)

        assert result["totalKnownEntities"] == 45
        assert len(result["entities"]) == 30
        assert embedder.calls == []

    def test_substring_match_on_name(self, store, user_id):
        store.insert_entity(user_id, "Retrieval-Augmented Generation", "term", "industry-scan")
        store.insert_entity(user_id, "Pinecone", "company", "profile-derived")
        result = KnowledgeModel(store).lookup(user_id, "retrieval")

        assert result["matchCount"] == 1
        assert result["matches"][0]["name"] == "Retrieval-Augmented Generation"
        assert result["matches"][0]["entityType"] == "term"

    def test_substring_match_on_description(self, store, user_id):
        store.insert_entity(user_id, "RAG", "term", "industry-scan",
                            description="retrieval augmented generation")
        result = KnowledgeModel(store).lookup(user_id, "augmented")
        assert [m["name"] for m in result["matches"]] == ["RAG"]

    def test_substring_hit_skips_embedding(self, store, user_id):
        embedder = FakeEmbedder({"Pinecone": unit(0)})
        store.insert_entity(user_id, "Pinecone", "company", "profile-derived")
        KnowledgeModel(store, embedder).lookup(user_id, "pine")
        assert embedder.calls == []

    def test_embedding_fallback_threshold(self, store, user_id):
        # cos(25deg) ~= 0.906, cos(72.5deg) ~= 0.30
        store.insert_entity(user_id, "Weaviate", "company", "industry-scan", embedding=unit(25))
        store.insert_entity(user_id, "Tennis", "concept", "industry-scan", embedding=unit(72.5))
        store.insert_entity(user_id, "No vector", "concept", "industry-scan")
        embedder = FakeEmbedder({"semantic search engines": unit(0)})

        result = KnowledgeModel(store, embedder).lookup(user_id, "semantic search engines")

        names = [m["name"] for m in result["matches"]]
        assert names == ["Weaviate"]
        assert result["matches"][0]["similarity"] > 0.9

    def test_embedding_fallback_top_ten_sorted(self, store, user_id):
        for i in range(12):
            store.insert_entity(user_id, f"Near {i}", "concept", "industry-scan", embedding=unit(i * 3))
        embedder = FakeEmbedder({"query": unit(0)})

        matches = KnowledgeModel(store, embedder).lookup(user_id, "query")["matches"]

        assert len(matches) == 10
        assert matches[0]["name"] == "Near 0"
        sims = [m["similarity"] for m in matches]
        assert sims == sorted(sims, reverse=True)

    def test_no_embedder_no_fallback(self, store, user_id):
        store.insert_entity(user_id, "Weaviate", "company", "industry-scan", embedding=unit(0))
        result = KnowledgeModel(store).lookup(user_id, "vector search")
        assert result["matchCount"] == 0

    def test_embedder_failure_degrades(self, store, user_id):
        class Broken:
            def embed(self, texts):
                raise ConnectionError("ollama down")

        store.insert_entity(user_id, "Weaviate", "company", "industry-scan", embedding=unit(0))
        result = KnowledgeModel(store, Broken()).lookup(user_id, "vector search")
        assert result["matches"] == []


# =============================================================================
# Writes
# =============================================================================

class TestWrites:

    def test_duplicate_insert_is_noop(self, store, user_id):
        model = KnowledgeModel(store)
        seed = EntitySeed("Pinecone", "company", "industry-scan", 0.8)
        assert model.add_entity(seed, user_id) is not None
        assert model.add_entity(seed, user_id) is None
        assert len(store.get_entities(user_id)) == 1

    def test_same_name_different_type_allowed(self, store, user_id):
        model = KnowledgeModel(store)
        model.add_entity(EntitySeed("Mercury", "company", "industry-scan", 0.8), user_id)
        model.add_entity(EntitySeed("Mercury", "concept", "industry-scan", 0.8), user_id)
        assert len(store.get_entities(user_id)) == 2

    def test_suppressed_entity_skipped(self, store, user_id):
        store.record_pruned(user_id, "Email", "concept", "too generic")
        model = KnowledgeModel(store)
        assert model.add_entity(EntitySeed("Email", "concept", "industry-scan", 0.8), user_id) is None
        assert store.get_entities(user_id) == []

    def test_add_entities_stores_embeddings(self, store, user_id):
        embedder = FakeEmbedder({"Pinecone": unit(10)})
        model = KnowledgeModel(store, embedder)
        inserted = model.add_entities(user_id, [
            EntitySeed("Pinecone", "company", "industry-scan", 0.8),
            EntitySeed("Milvus", "company", "industry-scan", 0.8),
        ])

        assert inserted == 2
        by_name = {e["name"]: e for e in store.get_entities(user_id, with_embeddings=True)}
        assert np.allclose(by_name["Pinecone"]["embedding"], unit(10))
        assert by_name["Milvus"]["embedding"] is None

    def test_delete_entity_removes_edges(self, store, user_id):
        a = store.insert_entity(user_id, "Pinecone", "company", "industry-scan")
        b = store.insert_entity(user_id, "Vector databases", "concept", "profile-derived")
        store.add_edge(user_id, a, b, "uses")

        store.delete_entity(a)

        assert store.get_edges(user_id) == []
        assert [e["name"] for e in store.get_entities(user_id)] == ["Vector databases"]


# =============================================================================
# Delivered briefings
# =============================================================================

BRIEFING_ITEMS = [
    {"topic": "Pinecone raises $100M", "content": "Series C led by a16z for the vector database."},
    {"topic": "EU AI Act enforcement", "content": "Regulators publish the first compliance deadlines."},
]


class TestBriefingAbsorption:

    def test_entities_recorded_as_delivered(self, store, user_id):
        llm = ScriptedLLM([[
            {"name": "Pinecone", "entityType": "company"},
            {"name": "a16z", "entityType": "company"},
            {"name": "EU AI Act", "entityType": "event"},
        ]])
        model = KnowledgeModel(store, FakeEmbedder({"Pinecone": unit(10)}))

        assert model.absorb_briefing(user_id, BRIEFING_ITEMS, llm) == 3

        by_name = {e["name"]: e for e in store.get_entities(user_id, with_embeddings=True)}
        assert set(by_name) == {"Pinecone", "a16z", "EU AI Act"}
        assert {e["source"] for e in by_name.values()} == {"briefing-delivered"}
        assert {e["confidence"] for e in by_name.values()} == {0.9}
        assert np.allclose(by_name["Pinecone"]["embedding"], unit(10))
        assert by_name["a16z"]["embedding"] is None
        assert "Topic: Pinecone raises $100M" in llm.run_calls[0]["user"]

    def test_suppressed_entity_not_reintroduced(self, store, user_id):
        store.record_pruned(user_id, "a16z", "company", "off-domain")
        llm = ScriptedLLM([[
            {"name": "Pinecone", "entityType": "company"},
            {"name": "a16z", "entityType": "company"},
        ]])

        assert KnowledgeModel(store).absorb_briefing(user_id, BRIEFING_ITEMS, llm) == 1
        assert [e["name"] for e in store.get_entities(user_id)] == ["Pinecone"]

    def test_known_entity_reinforced_not_duplicated(self, store, user_id):
        entity_id = store.insert_entity(user_id, "Pinecone", "company", "industry-scan", confidence=0.8)
        store.conn.execute("UPDATE knowledge_entities SET last_reinforced = 0 WHERE id = ?", (entity_id,))
        store.conn.commit()
        llm = ScriptedLLM([[{"name": "Pinecone", "entityType": "company"}]])

        assert KnowledgeModel(store).absorb_briefing(user_id, BRIEFING_ITEMS, llm) == 0

        entity = store.find_entity(user_id, "Pinecone", "company")
        assert entity["source"] == "industry-scan"
        assert entity["confidence"] == 0.8
        assert entity["last_reinforced"] > 0
        assert len(store.get_entities(user_id)) == 1

    def test_invalid_and_repeated_entries_dropped(self, store, user_id):
        llm = ScriptedLLM([[
            {"name": "Pinecone", "entityType": "company"},
            {"name": "pinecone", "entityType": "product"},
            {"name": "Growth", "entityType": "buzzword"},
            {"name": "", "entityType": "concept"},
            "Milvus",
        ]])

        assert KnowledgeModel(store).absorb_briefing(user_id, BRIEFING_ITEMS, llm) == 1
        assert [(e["name"], e["entity_type"]) for e in store.get_entities(user_id)] == [("Pinecone", "company")]

    def test_extraction_failure_absorbs_nothing(self, store, user_id):
        llm = ScriptedLLM([RuntimeError("model down")])
        assert KnowledgeModel(store).absorb_briefing(user_id, BRIEFING_ITEMS, llm) == 0
        assert store.get_entities(user_id) == []

    def test_no_items_skips_model(self, store, user_id):
        llm = ScriptedLLM()
        assert KnowledgeModel(store).absorb_briefing(user_id, [], llm) == 0
        assert llm.run_calls == []
