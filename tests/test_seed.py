"""
Tests for knowledge seeding.

These tests verify:
- Profile, peer, contact and rapid-fire seeds with their confidences
- Industry-scan concepts merged without duplicating profile seeds
- Seeding finishes with a prune pass that spares profile-derived entities
"""

from conftest import ScriptedLLM
from signal_desk.graph.knowledge import KnowledgeModel
from signal_desk.graph.seed import KnowledgeSeeder


def by_name(store, user_id):
    return {e["name"]: e for e in store.get_entities(user_id)}


class TestKnowledgeSeeder:

    def test_profile_seeds(self, store, user_id):
        store.add_peer_org(user_id, "Contoso")
        store.add_peer_org(user_id, "Unconfirmed Co", confirmed=False)
        store.add_impress_contact(user_id, "Ada Park", title="CTO", company="Contoso")
        seeder = KnowledgeSeeder(KnowledgeModel(store), ScriptedLLM(default="[]"))

        result = seeder.seed(user_id, industry_scan=False)

        entities = by_name(store, user_id)
        assert entities["Northwind"]["source"] == "profile-derived"
        assert entities["Contoso"]["entity_type"] == "company"
        assert entities["Ada Park"]["entity_type"] == "person"
        assert entities["vector databases"]["source"] == "profile-derived"
        assert entities["distributed systems"]["confidence"] == 1.0
        assert "Unconfirmed Co" not in entities
        assert result.inserted == len(entities)

    def test_rapid_fire_confidence(self, store, user_id):
        store.upsert_profile(user_id, rapid_fire=[
            {"topic": "Kubernetes", "response": "know-tons"},
            {"topic": "Mamba", "response": "need-more"},
            {"topic": "crypto", "response": "not-relevant"},
        ])
        KnowledgeSeeder(KnowledgeModel(store), ScriptedLLM(default="[]")).seed(user_id, industry_scan=False)

        entities = by_name(store, user_id)
        assert entities["Kubernetes"]["confidence"] == 1.0
        assert entities["Kubernetes"]["source"] == "rapid-fire"
        assert entities["Mamba"]["confidence"] == 0.3
        assert "crypto" not in entities

    def test_industry_scan_merged_and_deduped(self, store, user_id):
        llm = ScriptedLLM([
            ["Vector Databases", "HNSW", "Quantization", ""],
            [{"name": "HNSW", "keep": True}, {"name": "Quantization", "keep": True}],
        ])
        result = KnowledgeSeeder(KnowledgeModel(store), llm).seed(user_id)

        entities = by_name(store, user_id)
        assert entities["HNSW"]["source"] == "industry-scan"
        assert entities["HNSW"]["confidence"] == 0.8
        # Profile topic came first, so the scan's casing variant is dropped
        assert "Vector Databases" not in entities
        assert result.prune.kept == 2

    def test_prune_runs_after_seed(self, store, user_id):
        llm = ScriptedLLM([
            ["Email", "HNSW"],
            [{"name": "Email", "keep": False, "reason": "too generic"}],
        ])
        result = KnowledgeSeeder(KnowledgeModel(store), llm).seed(user_id)

        entities = by_name(store, user_id)
        assert "Email" not in entities
        assert "HNSW" in entities
        assert "Northwind" in entities
        assert result.prune.pruned == 1
        assert store.is_suppressed(user_id, "Email", "concept")

    def test_scan_failure_still_seeds_profile(self, store, user_id):
        llm = ScriptedLLM([RuntimeError("quota"), "[]"])
        result = KnowledgeSeeder(KnowledgeModel(store), llm).seed(user_id)

        assert result.inserted > 0
        assert "Northwind" in by_name(store, user_id)

    def test_missing_user(self, store):
        result = KnowledgeSeeder(KnowledgeModel(store), ScriptedLLM()).seed("nobody")
        assert result.inserted == 0
        assert result.prune is None
