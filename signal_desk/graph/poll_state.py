"""Per-query ingestion scheduling.

Each news query carries its own next_poll_at. Success pushes it one
poll interval out; failure backs off by errors² minutes, capped at a
day. There is no global limiter: one failing query never delays the
others.
"""

from __future__ import annotations

import logging
import time

from signal_desk.config import NewsIngestionConfig
from signal_desk.graph.store import GraphStore

logger = logging.getLogger(__name__)

MAX_BACKOFF_MINUTES = 24 * 60


def backoff_minutes(consecutive_errors: int) -> int:
    return min(consecutive_errors ** 2, MAX_BACKOFF_MINUTES)


class PollScheduler:
    def __init__(self, store: GraphStore, config: NewsIngestionConfig | None = None):
        self.store = store
        self.config = config or NewsIngestionConfig()

    def ensure(self, query_id: str, now: int | None = None):
        """Register a query as due immediately if it has no state yet."""
        self.store.ensure_poll_state(query_id, now if now is not None else int(time.time()))

    def due(self, now: int | None = None, limit: int | None = None) -> list[dict]:
        now = now if now is not None else int(time.time())
        return self.store.get_due_poll_states(now, limit or self.config.max_queries_per_cycle)

    def record_success(self, query_id: str, result_count: int, now: int | None = None) -> int:
        """Returns the next poll time."""
        now = now if now is not None else int(time.time())
        self.ensure(query_id, now)
        next_poll = now + self.config.poll_interval_minutes * 60
        self.store.update_poll_state(
            query_id,
            last_polled_at=now,
            next_poll_at=next_poll,
            consecutive_errors=0,
            result_count=result_count,
            last_error_message=None,
        )
        return next_poll

    def record_failure(self, query_id: str, message: str, now: int | None = None) -> int:
        """Returns the next poll time."""
        now = now if now is not None else int(time.time())
        self.ensure(query_id, now)
        state = self.store.get_poll_state(query_id) or {}
        errors = int(state.get("consecutive_errors", 0)) + 1
        next_poll = now + backoff_minutes(errors) * 60
        self.store.update_poll_state(
            query_id,
            last_polled_at=now,
            next_poll_at=next_poll,
            consecutive_errors=errors,
            last_error_message=message[:500],
        )
        logger.warning(
            "Poll failed for %s (%d consecutive): %s; next in %d min",
            query_id, errors, message, backoff_minutes(errors),
        )
        return next_poll
