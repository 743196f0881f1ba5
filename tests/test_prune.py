"""
Tests for knowledge pruning.

These tests verify:
- profile-derived and rapid-fire entities never reach the model
- Entities are evaluated in batches of 50
- A failed batch keeps every entity in it
- Pruned entities are deleted and stay suppressed on reseed
- Deletion and suppression commit together
- Typed verdicts only apply to entities of that type
"""

import sqlite3

import pytest

from conftest import ScriptedLLM
from signal_desk.graph.knowledge import EntitySeed, KnowledgeModel
from signal_desk.graph.prune import KnowledgePruner


def verdicts(*pairs):
    return [{"name": name, "keep": keep, "reason": "test"} for name, keep in pairs]


class TestExemptions:

    def test_exempt_sources_never_sent(self, store, user_id):
        store.insert_entity(user_id, "Northwind", "company", "profile-derived", 1.0)
        store.insert_entity(user_id, "Kubernetes", "concept", "rapid-fire", 1.0)
        store.insert_entity(user_id, "Email", "concept", "industry-scan", 0.8)
        llm = ScriptedLLM([verdicts(("Email", False))])

        result = KnowledgePruner(store, llm).prune(user_id)

        assert result.exempt == 2
        assert result.pruned == 1
        sent = llm.run_calls[0]["user"]
        assert '"Email"' in sent
        assert "Northwind" not in sent.split("ENTITIES TO EVALUATE:")[1]
        assert "Kubernetes" not in sent
        assert {e["name"] for e in store.get_entities(user_id)} == {"Northwind", "Kubernetes"}

    def test_only_exempt_entities_skips_llm(self, store, user_id):
        store.insert_entity(user_id, "Northwind", "company", "profile-derived", 1.0)
        llm = ScriptedLLM()

        result = KnowledgePruner(store, llm).prune(user_id)

        assert result.exempt == 1
        assert llm.run_calls == []


class TestBatching:

    def test_batches_of_fifty(self, store, user_id):
        for i in range(120):
            store.insert_entity(user_id, f"Concept {i}", "concept", "industry-scan")
        llm = ScriptedLLM(default="[]")

        KnowledgePruner(store, llm).prune(user_id)

        assert len(llm.run_calls) == 3
        sizes = [c["user"].count("(type: concept") for c in llm.run_calls]
        assert sizes == [50, 50, 20]

    def test_failed_batch_keeps_everything(self, store, user_id):
        for i in range(60):
            store.insert_entity(user_id, f"Concept {i}", "concept", "industry-scan")
        second_batch = [(f"Concept {i}", False) for i in range(50, 60)]
        llm = ScriptedLLM([RuntimeError("timeout"), verdicts(*second_batch)])

        result = KnowledgePruner(store, llm).prune(user_id)

        assert result.kept == 50
        assert result.pruned == 10
        assert len(store.get_entities(user_id)) == 50

    def test_unparseable_batch_keeps_everything(self, store, user_id):
        store.insert_entity(user_id, "Email", "concept", "industry-scan")
        llm = ScriptedLLM(["I would prune email, honestly."])

        result = KnowledgePruner(store, llm).prune(user_id)

        assert result.pruned == 0
        assert len(store.get_entities(user_id)) == 1

    def test_missing_verdict_keeps_entity(self, store, user_id):
        store.insert_entity(user_id, "Email", "concept", "industry-scan")
        store.insert_entity(user_id, "RLHF", "term", "industry-scan")
        llm = ScriptedLLM([verdicts(("email", False))])

        result = KnowledgePruner(store, llm).prune(user_id)

        assert result.pruned == 1
        assert [e["name"] for e in store.get_entities(user_id)] == ["RLHF"]


class TestSuppression:

    def test_pruned_entity_stays_suppressed(self, store, user_id):
        store.insert_entity(user_id, "Email", "concept", "industry-scan")
        KnowledgePruner(store, ScriptedLLM([verdicts(("Email", False))])).prune(user_id)

        pruned = store.get_pruned(user_id)
        assert [(p["name"], p["entity_type"]) for p in pruned] == [("Email", "concept")]

        model = KnowledgeModel(store)
        reinserted = model.add_entities(user_id, [EntitySeed("Email", "concept", "industry-scan", 0.8)])
        assert reinserted == 0
        assert store.get_entities(user_id) == []

    def test_suppression_is_per_type(self, store, user_id):
        store.record_pruned(user_id, "Mercury", "concept", "generic")
        model = KnowledgeModel(store)
        assert model.add_entity(EntitySeed("Mercury", "company", "industry-scan", 0.8), user_id)

    def test_record_pruned_idempotent(self, store, user_id):
        assert store.record_pruned(user_id, "Email", "concept", "generic") is True
        assert store.record_pruned(user_id, "Email", "concept", "generic again") is False

    def test_failed_suppression_rolls_back_delete(self, store, user_id):
        entity_id = store.insert_entity(user_id, "Email", "concept", "industry-scan")
        store.conn.execute(
            """CREATE TRIGGER block_suppression BEFORE INSERT ON pruned_entities
               BEGIN SELECT RAISE(ABORT, 'suppression unavailable'); END"""
        )

        with pytest.raises(sqlite3.DatabaseError):
            store.prune_entity(user_id, entity_id, "Email", "concept", "generic")

        assert [e["name"] for e in store.get_entities(user_id)] == ["Email"]
        assert store.get_pruned(user_id) == []

    def test_prune_entity_removes_edges(self, store, user_id):
        a = store.insert_entity(user_id, "Email", "concept", "industry-scan")
        b = store.insert_entity(user_id, "SMTP", "term", "industry-scan")
        store.add_edge(user_id, a, b, "uses")

        store.prune_entity(user_id, a, "Email", "concept", "generic")

        assert store.get_edges(user_id) == []
        assert store.is_suppressed(user_id, "Email", "concept")


# =============================================================================
# Verdict matching
# =============================================================================

class TestVerdictMatching:

    def test_typed_verdict_spares_same_name_other_type(self, store, user_id):
        store.insert_entity(user_id, "Apple", "company", "industry-scan")
        store.insert_entity(user_id, "Apple", "product", "industry-scan")
        llm = ScriptedLLM([[{"name": "Apple", "type": "company", "keep": False, "reason": "generic"}]])

        result = KnowledgePruner(store, llm).prune(user_id)

        assert result.pruned == 1
        assert [(e["name"], e["entity_type"]) for e in store.get_entities(user_id)] == [("Apple", "product")]
        assert not store.is_suppressed(user_id, "Apple", "product")

    def test_untyped_verdict_applies_by_name(self, store, user_id):
        store.insert_entity(user_id, "Apple", "company", "industry-scan")
        store.insert_entity(user_id, "Apple", "product", "industry-scan")
        KnowledgePruner(store, ScriptedLLM([verdicts(("apple", False))])).prune(user_id)

        assert store.get_entities(user_id) == []

    def test_typed_verdicts_split_decisions(self, store, user_id):
        store.insert_entity(user_id, "Mercury", "company", "industry-scan")
        store.insert_entity(user_id, "Mercury", "concept", "industry-scan")
        llm = ScriptedLLM([[
            {"name": "Mercury", "type": "Company", "keep": True, "reason": "peer bank"},
            {"name": "Mercury", "type": "concept", "keep": False, "reason": "off-domain"},
        ]])

        KnowledgePruner(store, llm).prune(user_id)

        assert [e["entity_type"] for e in store.get_entities(user_id)] == ["company"]
