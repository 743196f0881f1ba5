"""
Tests for the selection pipeline.

These tests verify:
- The content universe filters candidates before the agent sees them
- Out-of-range selections are dropped, not fatal
- Several users are scored concurrently and independently
- Delivered picks are stored as a briefing the tools can read back
"""

from conftest import USER_ID, ScriptedLLM, submit
from signal_desk.agent.models import AgentScoringConfig, CandidateSignal, SelectionResult, SignalSelection
from signal_desk.graph.universe import ContentUniverse
from signal_desk.agent.tools import ToolExecutor
from signal_desk.pipeline import record_briefing, resolve_selections, score_user, score_users


class TestResolveSelections:

    def test_invalid_indices_dropped(self, pool):
        result = SelectionResult(
            user_id=USER_ID,
            selections=[SignalSelection(signal_index=i) for i in (1, -1, 4, 0)],
            tool_call_log=[],
            model_used="m",
        )
        picks = resolve_selections(result, pool)

        assert [(s.signal_index, c.title) for s, c in picks] == [
            (1, pool[1].title),
            (0, pool[0].title),
        ]


class TestScoreUser:

    def test_universe_filters_before_agent(self, store, user_id, pool):
        universe = ContentUniverse(
            definition="AI infra", core_topics=["vector databases", "GPU"], exclusions=["quantum"],
        )
        store.save_content_universe(user_id, universe.to_dict())
        llm = ScriptedLLM([submit(0, 1)])

        outcome = score_user(store, llm, user_id, pool)

        assert outcome.offered == 4
        assert outcome.admitted == 2
        listing = llm.chat_calls[0][1]["content"]
        assert "Quantum computing" not in listing
        assert "EU AI Act" not in listing
        assert [c.title for _, c in outcome.picks] == ["Pinecone raises $100M", "Forwarded: GPU pricing memo"]

    def test_no_universe_passes_all(self, store, user_id, pool):
        outcome = score_user(store, ScriptedLLM([submit(2)]), user_id, pool)
        assert outcome.admitted == len(pool)
        assert outcome.picks[0][1].title == "Quantum computing milestone"

    def test_out_of_range_pick_dropped(self, store, user_id, pool):
        outcome = score_user(store, ScriptedLLM([submit(0, 17)]), user_id, pool)
        assert len(outcome.result.selections) == 2
        assert len(outcome.picks) == 1

    def test_failed_run(self, store, user_id, pool):
        config = AgentScoringConfig(max_tool_rounds=1)
        outcome = score_user(store, ScriptedLLM(default="hmm"), user_id, pool, config)
        assert outcome.result is None
        assert outcome.picks == []


class TestScoreUsers:

    def test_concurrent_users(self, store, user_id, pool, tmp_path):
        store.upsert_user("u_second", name="Second User", title="Analyst", company="Acme")
        store.upsert_profile("u_second", topics=["fintech"])
        store.close()

        jobs = {
            user_id: pool,
            "u_second": [CandidateSignal(title="Fintech lender collapses")],
            "u_missing": pool,
        }
        results = score_users(
            tmp_path / "signal_desk.db",
            lambda: ScriptedLLM([submit(0)]),
            jobs,
            max_workers=3,
        )

        assert set(results) == set(jobs)
        assert results[user_id].picks[0][1].title == pool[0].title
        assert results["u_second"].picks[0][1].title == "Fintech lender collapses"
        assert results["u_missing"].result is None


class TestRecordBriefing:

    def test_picks_stored_and_entities_learned(self, store, user_id, pool):
        llm = ScriptedLLM([
            submit(0, 1),
            [{"name": "Pinecone", "entityType": "company"}, {"name": "EU AI Act", "entityType": "event"}],
        ])
        outcome = score_user(store, llm, user_id, pool)

        briefing_id = record_briefing(store, llm, outcome)

        briefings = store.get_recent_briefings(user_id)
        assert [b["id"] for b in briefings] == [briefing_id]
        assert [item["topic"] for item in briefings[0]["items"]] == [pool[0].title, pool[1].title]
        assert briefings[0]["items"][0]["reason"] == "your-space"
        known = {e["name"]: e["source"] for e in store.get_entities(user_id)}
        assert known == {"Pinecone": "briefing-delivered", "EU AI Act": "briefing-delivered"}

    def test_recorded_briefing_visible_to_freshness_tool(self, store, user_id, pool):
        llm = ScriptedLLM([submit(2), []])
        outcome = score_user(store, llm, user_id, pool)
        record_briefing(store, llm, outcome)

        result = ToolExecutor(store, llm).execute("assess_freshness", {}, user_id, pool)

        assert result["topicsCovered"] == ["Quantum computing milestone"]

    def test_nothing_delivered(self, store, user_id, pool):
        config = AgentScoringConfig(max_tool_rounds=1)
        llm = ScriptedLLM(default="hmm")
        outcome = score_user(store, llm, user_id, pool, config)

        assert record_briefing(store, llm, outcome) is None
        assert store.get_recent_briefings(user_id) == []
        assert llm.run_calls == []
