"""GraphStore: typed access to the Signal Desk SQLite database.

One store per thread. Concurrent per-user runs each open their own.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any

import msgpack
import numpy as np

from signal_desk.graph.schema import DB_PATH, init_db
from signal_desk.safe_parse import to_string_array

logger = logging.getLogger(__name__)

PROFILE_LIST_FIELDS = (
    "topics", "initiatives", "concerns", "expert_areas", "weak_areas", "knowledge_gaps",
)


def _pack(data: Any) -> bytes:
    return msgpack.packb(data, use_bin_type=True)


def _unpack(blob: bytes | None, default: Any = None) -> Any:
    if blob is None:
        return default
    return msgpack.unpackb(blob, raw=False)


def _vector_to_blob(vector: np.ndarray | None) -> bytes | None:
    if vector is None or len(vector) == 0:
        return None
    return np.asarray(vector, dtype=np.float32).tobytes()


def _blob_to_vector(blob: bytes | None) -> np.ndarray | None:
    if not blob:
        return None
    return np.frombuffer(blob, dtype=np.float32)


class GraphStore:
    """Manages the Signal Desk SQLite database."""

    def __init__(self, db_path: Path | None = None):
        self._db_path = db_path or DB_PATH
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = init_db(self._db_path)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    # ══════════════════════════════════════════════════════════════
    # Users and profiles
    # ══════════════════════════════════════════════════════════════

    def upsert_user(
        self,
        user_id: str,
        email: str | None = None,
        name: str | None = None,
        title: str | None = None,
        company: str | None = None,
    ):
        self.conn.execute(
            """INSERT INTO users (id, email, name, title, company, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 email = COALESCE(excluded.email, users.email),
                 name = COALESCE(excluded.name, users.name),
                 title = COALESCE(excluded.title, users.title),
                 company = COALESCE(excluded.company, users.company)
            """,
            (user_id, email, name, title, company, int(time.time())),
        )
        self.conn.commit()

    def get_user(self, user_id: str) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def upsert_profile(self, user_id: str, **fields: Any):
        """Create or update a profile. List fields are stored as JSON."""
        values: dict[str, Any] = {}
        for key, value in fields.items():
            if key in PROFILE_LIST_FIELDS:
                values[key] = json.dumps(to_string_array(value))
            elif key == "rapid_fire":
                values[key] = _pack(list(value or []))
            elif key in ("transcript", "delivery_timezone"):
                values[key] = value
            else:
                raise ValueError(f"Unknown profile field: {key}")
        values["updated_at"] = int(time.time())

        columns = ", ".join(["user_id", *values])
        placeholders = ", ".join("?" for _ in range(len(values) + 1))
        updates = ", ".join(f"{k} = excluded.{k}" for k in values)
        self.conn.execute(
            f"""INSERT INTO user_profiles ({columns}) VALUES ({placeholders})
                ON CONFLICT(user_id) DO UPDATE SET {updates}""",
            (user_id, *values.values()),
        )
        self.conn.commit()

    def get_profile(self, user_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        if not row:
            return None
        profile = dict(row)
        for key in PROFILE_LIST_FIELDS:
            profile[key] = to_string_array(profile.get(key))
        profile["rapid_fire"] = _unpack(profile.get("rapid_fire"), [])
        profile["content_universe"] = _unpack(profile.get("content_universe"))
        return profile

    def save_content_universe(self, user_id: str, universe: dict):
        self.conn.execute(
            "UPDATE user_profiles SET content_universe = ?, updated_at = ? WHERE user_id = ?",
            (_pack(universe), int(time.time()), user_id),
        )
        self.conn.commit()

    # ══════════════════════════════════════════════════════════════
    # Knowledge entities
    # ══════════════════════════════════════════════════════════════

    def insert_entity(
        self,
        user_id: str,
        name: str,
        entity_type: str,
        source: str,
        confidence: float = 0.5,
        description: str = "",
        embedding: np.ndarray | None = None,
    ) -> str | None:
        """Insert an entity. Returns its id, or None if (user, name, type) exists."""
        now = int(time.time())
        entity_id = uuid.uuid4().hex
        cur = self.conn.execute(
            """INSERT OR IGNORE INTO knowledge_entities
               (id, user_id, entity_type, name, description, source, confidence,
                embedding, known_since, last_reinforced)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entity_id, user_id, entity_type, name, description or "", source,
                float(confidence), _vector_to_blob(embedding), now, now,
            ),
        )
        self.conn.commit()
        return entity_id if cur.rowcount == 1 else None

    def get_entities(self, user_id: str, with_embeddings: bool = False) -> list[dict]:
        """All entities for a user, oldest first."""
        rows = self.conn.execute(
            """SELECT * FROM knowledge_entities WHERE user_id = ?
               ORDER BY known_since ASC, rowid ASC""",
            (user_id,),
        ).fetchall()
        return [self._row_to_entity(r, with_embeddings) for r in rows]

    def find_entity(self, user_id: str, name: str, entity_type: str) -> dict | None:
        row = self.conn.execute(
            """SELECT * FROM knowledge_entities
               WHERE user_id = ? AND name = ? AND entity_type = ?""",
            (user_id, name, entity_type),
        ).fetchone()
        return self._row_to_entity(row) if row else None

    def reinforce_entity(self, entity_id: str, confidence: float | None = None):
        self.conn.execute(
            """UPDATE knowledge_entities
               SET last_reinforced = ?, confidence = COALESCE(?, confidence)
               WHERE id = ?""",
            (int(time.time()), confidence, entity_id),
        )
        self.conn.commit()

    def delete_entity(self, entity_id: str):
        """Delete an entity and every edge that references it."""
        with self.conn:
            self._delete_entity_rows(entity_id)

    def prune_entity(self, user_id: str, entity_id: str, name: str, entity_type: str, reason: str):
        """Delete an entity with its edges and record its suppression in one transaction."""
        with self.conn:
            self._delete_entity_rows(entity_id)
            self._insert_pruned(user_id, name, entity_type, reason)

    def _delete_entity_rows(self, entity_id: str):
        self.conn.execute(
            "DELETE FROM knowledge_edges WHERE source_entity_id = ? OR target_entity_id = ?",
            (entity_id, entity_id),
        )
        self.conn.execute("DELETE FROM knowledge_entities WHERE id = ?", (entity_id,))

    def add_edge(
        self,
        user_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relationship: str,
        strength: float = 0.5,
    ) -> str:
        edge_id = uuid.uuid4().hex
        self.conn.execute(
            """INSERT INTO knowledge_edges
               (id, user_id, source_entity_id, target_entity_id, relationship, strength, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (edge_id, user_id, source_entity_id, target_entity_id, relationship,
             float(strength), int(time.time())),
        )
        self.conn.commit()
        return edge_id

    def get_edges(self, user_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM knowledge_edges WHERE user_id = ?", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def record_pruned(self, user_id: str, name: str, entity_type: str, reason: str) -> bool:
        """Record a sticky suppression. Returns False if already suppressed."""
        with self.conn:
            return self._insert_pruned(user_id, name, entity_type, reason)

    def _insert_pruned(self, user_id: str, name: str, entity_type: str, reason: str) -> bool:
        cur = self.conn.execute(
            """INSERT INTO pruned_entities (user_id, name, entity_type, reason, pruned_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(user_id, name, entity_type) DO NOTHING""",
            (user_id, name, entity_type, reason, int(time.time())),
        )
        return cur.rowcount == 1

    def is_suppressed(self, user_id: str, name: str, entity_type: str) -> bool:
        row = self.conn.execute(
            """SELECT 1 FROM pruned_entities
               WHERE user_id = ? AND name = ? AND entity_type = ? LIMIT 1""",
            (user_id, name, entity_type),
        ).fetchone()
        return row is not None

    def get_pruned(self, user_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM pruned_entities WHERE user_id = ? ORDER BY pruned_at DESC",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def _row_to_entity(row: sqlite3.Row, with_embedding: bool = False) -> dict:
        entity = dict(row)
        blob = entity.pop("embedding", None)
        if with_embedding:
            entity["embedding"] = _blob_to_vector(blob)
        return entity

    # ══════════════════════════════════════════════════════════════
    # Feedback, peers, contacts
    # ══════════════════════════════════════════════════════════════

    def add_feedback(
        self,
        user_id: str,
        feedback_type: str,
        topic: str | None = None,
        comment: str | None = None,
        created_at: int | None = None,
    ):
        self.conn.execute(
            """INSERT INTO feedback_signals (user_id, type, topic, comment, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (user_id, feedback_type, topic, comment, created_at or int(time.time())),
        )
        self.conn.commit()

    def get_recent_feedback(
        self, user_id: str, limit: int = 30, since: int | None = None,
    ) -> list[dict]:
        """Most recent feedback first."""
        rows = self.conn.execute(
            """SELECT * FROM feedback_signals
               WHERE user_id = ? AND created_at >= ?
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (user_id, since or 0, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def add_peer_org(self, user_id: str, name: str, domain: str | None = None, confirmed: bool = True):
        self.conn.execute(
            "INSERT INTO peer_organizations (user_id, name, domain, confirmed) VALUES (?, ?, ?, ?)",
            (user_id, name, domain, int(confirmed)),
        )
        self.conn.commit()

    def get_peer_orgs(self, user_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM peer_organizations WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [{**dict(r), "confirmed": bool(r["confirmed"])} for r in rows]

    def add_impress_contact(
        self,
        user_id: str,
        name: str | None,
        title: str | None = None,
        company: str | None = None,
        linkedin_url: str | None = None,
        research_status: str = "pending",
        deep_dive: dict | None = None,
    ):
        self.conn.execute(
            """INSERT INTO impress_contacts
               (user_id, name, title, company, linkedin_url, research_status, deep_dive)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (user_id, name, title, company, linkedin_url, research_status,
             _pack(deep_dive) if deep_dive is not None else None),
        )
        self.conn.commit()

    def get_impress_contacts(self, user_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM impress_contacts WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        contacts = []
        for r in rows:
            contact = dict(r)
            contact["deep_dive"] = _unpack(contact.get("deep_dive"))
            contacts.append(contact)
        return contacts

    # ══════════════════════════════════════════════════════════════
    # Meetings
    # ══════════════════════════════════════════════════════════════

    def add_meeting(
        self,
        meeting_id: str,
        user_id: str,
        title: str,
        start_time: int,
        end_time: int | None = None,
        description: str | None = None,
        location: str | None = None,
        is_virtual: bool = False,
    ):
        self.conn.execute(
            """INSERT INTO meetings
               (id, user_id, title, start_time, end_time, description, location, is_virtual)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 title = excluded.title,
                 start_time = excluded.start_time,
                 end_time = excluded.end_time,
                 description = excluded.description,
                 location = excluded.location,
                 is_virtual = excluded.is_virtual
            """,
            (meeting_id, user_id, title, int(start_time),
             int(end_time) if end_time is not None else None,
             description, location, int(is_virtual)),
        )
        self.conn.commit()

    def add_attendee(
        self,
        meeting_id: str,
        name: str | None,
        email: str | None = None,
        title: str | None = None,
        company: str | None = None,
        linkedin_url: str | None = None,
        enrichment: dict | None = None,
    ):
        self.conn.execute(
            """INSERT INTO meeting_attendees
               (meeting_id, name, email, title, company, linkedin_url, enriched, enrichment)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (meeting_id, name, email, title, company, linkedin_url,
             int(enrichment is not None),
             _pack(enrichment) if enrichment is not None else None),
        )
        self.conn.commit()

    def set_meeting_intelligence(
        self,
        meeting_id: str,
        relevant_topics: list[str],
        talking_points: list[str] | None = None,
        attendee_summaries: list | dict | None = None,
    ):
        self.conn.execute(
            """INSERT OR REPLACE INTO meeting_intelligence
               (meeting_id, relevant_topics, talking_points, attendee_summaries)
               VALUES (?, ?, ?, ?)""",
            (meeting_id, json.dumps(relevant_topics), json.dumps(talking_points or []),
             _pack(attendee_summaries) if attendee_summaries is not None else None),
        )
        self.conn.commit()

    def get_meetings_between(self, user_id: str, start: int, end: int) -> list[dict]:
        rows = self.conn.execute(
            """SELECT * FROM meetings
               WHERE user_id = ? AND start_time >= ? AND start_time <= ?
               ORDER BY start_time ASC""",
            (user_id, int(start), int(end)),
        ).fetchall()
        return [self._row_to_meeting(r) for r in rows]

    def get_meeting_titles_since(self, user_id: str, since: int) -> list[str]:
        rows = self.conn.execute(
            "SELECT title FROM meetings WHERE user_id = ? AND start_time >= ?",
            (user_id, int(since)),
        ).fetchall()
        return [r["title"] for r in rows]

    def get_meeting(self, user_id: str, meeting_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM meetings WHERE id = ? AND user_id = ?", (meeting_id, user_id)
        ).fetchone()
        return self._row_to_meeting(row) if row else None

    def get_next_meeting(self, user_id: str, now: int) -> dict | None:
        row = self.conn.execute(
            """SELECT * FROM meetings WHERE user_id = ? AND start_time >= ?
               ORDER BY start_time ASC LIMIT 1""",
            (user_id, int(now)),
        ).fetchone()
        return self._row_to_meeting(row) if row else None

    def get_attendees(self, meeting_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM meeting_attendees WHERE meeting_id = ? ORDER BY id", (meeting_id,)
        ).fetchall()
        attendees = []
        for r in rows:
            attendee = dict(r)
            attendee["enriched"] = bool(attendee["enriched"])
            attendee["enrichment"] = _unpack(attendee.get("enrichment"))
            attendees.append(attendee)
        return attendees

    def get_meeting_intelligence(self, meeting_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM meeting_intelligence WHERE meeting_id = ?", (meeting_id,)
        ).fetchone()
        if not row:
            return None
        return {
            "relevant_topics": to_string_array(row["relevant_topics"]),
            "talking_points": to_string_array(row["talking_points"]),
            "attendee_summaries": _unpack(row["attendee_summaries"]),
        }

    @staticmethod
    def _row_to_meeting(row: sqlite3.Row) -> dict:
        meeting = dict(row)
        meeting["is_virtual"] = bool(meeting["is_virtual"])
        return meeting

    # ══════════════════════════════════════════════════════════════
    # Briefings
    # ══════════════════════════════════════════════════════════════

    def add_briefing(
        self,
        user_id: str,
        items: list[dict],
        generated_at: int | None = None,
        briefing_id: str | None = None,
    ) -> str:
        briefing_id = briefing_id or uuid.uuid4().hex
        self.conn.execute(
            "INSERT INTO briefings (id, user_id, generated_at, items) VALUES (?, ?, ?, ?)",
            (briefing_id, user_id, generated_at or int(time.time()), _pack(items)),
        )
        self.conn.commit()
        return briefing_id

    def get_recent_briefings(self, user_id: str, limit: int = 30) -> list[dict]:
        """Most recent briefings first."""
        rows = self.conn.execute(
            """SELECT * FROM briefings WHERE user_id = ?
               ORDER BY generated_at DESC LIMIT ?""",
            (user_id, limit),
        ).fetchall()
        return [{**dict(r), "items": _unpack(r["items"], [])} for r in rows]

    # ══════════════════════════════════════════════════════════════
    # News poll state
    # ══════════════════════════════════════════════════════════════

    def ensure_poll_state(self, query_id: str, next_poll_at: int):
        self.conn.execute(
            """INSERT OR IGNORE INTO news_poll_state (query_id, next_poll_at)
               VALUES (?, ?)""",
            (query_id, int(next_poll_at)),
        )
        self.conn.commit()

    def get_poll_state(self, query_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM news_poll_state WHERE query_id = ?", (query_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_due_poll_states(self, now: int, limit: int) -> list[dict]:
        rows = self.conn.execute(
            """SELECT * FROM news_poll_state WHERE next_poll_at <= ?
               ORDER BY next_poll_at ASC LIMIT ?""",
            (int(now), limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def update_poll_state(
        self,
        query_id: str,
        last_polled_at: int,
        next_poll_at: int,
        consecutive_errors: int,
        result_count: int | None = None,
        last_error_message: str | None = None,
    ):
        self.conn.execute(
            """UPDATE news_poll_state SET
                 last_polled_at = ?,
                 next_poll_at = ?,
                 consecutive_errors = ?,
                 result_count = COALESCE(?, result_count),
                 last_error_message = ?
               WHERE query_id = ?""",
            (int(last_polled_at), int(next_poll_at), consecutive_errors,
             result_count, last_error_message, query_id),
        )
        self.conn.commit()

    # ══════════════════════════════════════════════════════════════
    # Stats
    # ══════════════════════════════════════════════════════════════

    def knowledge_stats(self, user_id: str) -> dict:
        by_source = {
            r["source"]: r["n"]
            for r in self.conn.execute(
                """SELECT source, COUNT(*) AS n FROM knowledge_entities
                   WHERE user_id = ? GROUP BY source""",
                (user_id,),
            )
        }
        by_type = {
            r["entity_type"]: r["n"]
            for r in self.conn.execute(
                """SELECT entity_type, COUNT(*) AS n FROM knowledge_entities
                   WHERE user_id = ? GROUP BY entity_type""",
                (user_id,),
            )
        }
        embedded = self.conn.execute(
            """SELECT COUNT(*) FROM knowledge_entities
               WHERE user_id = ? AND embedding IS NOT NULL""",
            (user_id,),
        ).fetchone()[0]
        pruned = self.conn.execute(
            "SELECT COUNT(*) FROM pruned_entities WHERE user_id = ?", (user_id,)
        ).fetchone()[0]
        edges = self.conn.execute(
            "SELECT COUNT(*) FROM knowledge_edges WHERE user_id = ?", (user_id,)
        ).fetchone()[0]
        return {
            "total": sum(by_source.values()),
            "by_source": by_source,
            "by_type": by_type,
            "embedded": embedded,
            "edges": edges,
            "pruned": pruned,
        }
