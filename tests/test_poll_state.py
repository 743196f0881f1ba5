"""
Tests for per-query poll scheduling.

These tests verify:
- Backoff is errors² minutes, capped at one day
- Success resets the error streak and schedules one interval out
- One failing query never delays another
"""

import pytest

from signal_desk.config import NewsIngestionConfig
from signal_desk.graph.poll_state import MAX_BACKOFF_MINUTES, PollScheduler, backoff_minutes

NOW = 1_760_000_000


@pytest.mark.parametrize("errors,minutes", [
    (0, 0), (1, 1), (2, 4), (3, 9), (10, 100), (37, 1369), (38, 1440), (500, 1440),
])
def test_backoff_minutes(errors, minutes):
    assert backoff_minutes(errors) == minutes


def test_cap_is_one_day():
    assert MAX_BACKOFF_MINUTES == 1440


class TestPollScheduler:

    @pytest.fixture
    def scheduler(self, store):
        return PollScheduler(store, NewsIngestionConfig(poll_interval_minutes=120, max_queries_per_cycle=2))

    def test_new_query_due_immediately(self, scheduler):
        scheduler.ensure("q1", NOW)
        assert [s["query_id"] for s in scheduler.due(NOW)] == ["q1"]

    def test_success_schedules_interval(self, scheduler, store):
        next_poll = scheduler.record_success("q1", result_count=12, now=NOW)

        assert next_poll == NOW + 120 * 60
        state = store.get_poll_state("q1")
        assert state["consecutive_errors"] == 0
        assert state["result_count"] == 12
        assert scheduler.due(NOW + 60) == []

    def test_failures_back_off_quadratically(self, scheduler, store):
        assert scheduler.record_failure("q1", "timeout", now=NOW) == NOW + 60
        assert scheduler.record_failure("q1", "timeout", now=NOW) == NOW + 4 * 60
        assert scheduler.record_failure("q1", "timeout", now=NOW) == NOW + 9 * 60
        state = store.get_poll_state("q1")
        assert state["consecutive_errors"] == 3
        assert state["last_error_message"] == "timeout"

    def test_success_resets_streak(self, scheduler, store):
        scheduler.record_failure("q1", "timeout", now=NOW)
        scheduler.record_failure("q1", "timeout", now=NOW)
        scheduler.record_success("q1", result_count=3, now=NOW)

        state = store.get_poll_state("q1")
        assert state["consecutive_errors"] == 0
        assert state["last_error_message"] is None

    def test_failures_isolated_per_query(self, scheduler):
        scheduler.ensure("healthy", NOW)
        for _ in range(5):
            scheduler.record_failure("broken", "500", now=NOW)

        due = [s["query_id"] for s in scheduler.due(NOW)]
        assert due == ["healthy"]

    def test_due_respects_cycle_limit(self, scheduler):
        for i in range(4):
            scheduler.ensure(f"q{i}", NOW - 10 + i)
        due = [s["query_id"] for s in scheduler.due(NOW)]
        assert due == ["q0", "q1"]
