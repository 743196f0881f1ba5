"""SQLite schema for Signal Desk.

All per-user state lives in a single SQLite file at
~/.signal_desk/signal_desk.db (override with SIGNAL_DESK_DB).
Tables:
  users, user_profiles  : who the user is and what they told us
  knowledge_entities    : what the user already knows (novelty checks)
  knowledge_edges       : relationships between known entities
  pruned_entities       : sticky suppression of pruned name+type pairs
  feedback_signals      : tune-more / tune-less / not-novel / deep-dive
  peer_organizations, impress_contacts: who the user tracks
  meetings, meeting_attendees, meeting_intelligence: calendar context
  briefings             : delivered briefing items
  news_poll_state       : per-query ingestion schedule with backoff
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from signal_desk.config import CONFIG_DIR

logger = logging.getLogger(__name__)

DB_PATH = CONFIG_DIR / "signal_desk.db"

ENTITY_TYPES = ("company", "person", "concept", "term", "product", "event", "fact")

ENTITY_SOURCES = (
    "profile-derived",
    "industry-scan",
    "briefing-delivered",
    "deep-dive",
    "feedback-implicit",
    "impress-deep-dive",
    "calendar-deep-dive",
    "rapid-fire",
)

EDGE_RELATIONSHIPS = (
    "works-at",
    "competes-with",
    "uses",
    "researches",
    "part-of",
    "related-to",
    "cares-about",
)

FEEDBACK_TYPES = ("tune-more", "tune-less", "not-novel", "deep-dive")

SCHEMA_SQL = """
-- ══════════════════════════════════════════════════════════════════
-- Users and profiles
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    email       TEXT,
    name        TEXT,
    title       TEXT,
    company     TEXT,
    created_at  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS user_profiles (
    user_id             TEXT PRIMARY KEY REFERENCES users(id),
    topics              TEXT DEFAULT '[]',   -- JSON arrays of strings
    initiatives         TEXT DEFAULT '[]',
    concerns            TEXT DEFAULT '[]',
    expert_areas        TEXT DEFAULT '[]',
    weak_areas          TEXT DEFAULT '[]',
    knowledge_gaps      TEXT DEFAULT '[]',
    rapid_fire          BLOB,                -- msgpack'd [{topic, context, response}]
    transcript          TEXT,
    delivery_timezone   TEXT,
    content_universe    BLOB,                -- msgpack'd ContentUniverse, NULL until generated
    updated_at          INTEGER NOT NULL
);

-- ══════════════════════════════════════════════════════════════════
-- Knowledge model
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS knowledge_entities (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    entity_type     TEXT NOT NULL,       -- company, person, concept, term, product, event, fact
    name            TEXT NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    source          TEXT NOT NULL,       -- profile-derived, industry-scan, rapid-fire, ...
    confidence      REAL NOT NULL DEFAULT 0.5,
    embedding       BLOB,                -- f32 vector, NULL when embedding failed
    known_since     INTEGER NOT NULL,
    last_reinforced INTEGER NOT NULL,
    UNIQUE (user_id, name, entity_type)
);

CREATE INDEX IF NOT EXISTS idx_knowledge_user ON knowledge_entities(user_id);
CREATE INDEX IF NOT EXISTS idx_knowledge_source ON knowledge_entities(user_id, source);

CREATE TABLE IF NOT EXISTS knowledge_edges (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT NOT NULL,
    source_entity_id    TEXT NOT NULL REFERENCES knowledge_entities(id),
    target_entity_id    TEXT NOT NULL REFERENCES knowledge_entities(id),
    relationship        TEXT NOT NULL,   -- works-at, competes-with, uses, ...
    strength            REAL NOT NULL DEFAULT 0.5,
    created_at          INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_edges_source ON knowledge_edges(source_entity_id);
CREATE INDEX IF NOT EXISTS idx_edges_target ON knowledge_edges(target_entity_id);

CREATE TABLE IF NOT EXISTS pruned_entities (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    name        TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    reason      TEXT,
    pruned_at   INTEGER NOT NULL,
    UNIQUE (user_id, name, entity_type)
);

-- ══════════════════════════════════════════════════════════════════
-- Feedback, peers, contacts
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS feedback_signals (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    type        TEXT NOT NULL,           -- tune-more, tune-less, not-novel, deep-dive
    topic       TEXT,
    comment     TEXT,
    created_at  INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_feedback_user_time ON feedback_signals(user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS peer_organizations (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    name        TEXT NOT NULL,
    domain      TEXT,
    confirmed   INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS impress_contacts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    name            TEXT,
    title           TEXT,
    company         TEXT,
    linkedin_url    TEXT,
    research_status TEXT NOT NULL DEFAULT 'pending',
    deep_dive       BLOB                 -- msgpack'd {interests, focusAreas, talkingPoints}
);

-- ══════════════════════════════════════════════════════════════════
-- Calendar
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS meetings (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    title       TEXT NOT NULL,
    start_time  INTEGER NOT NULL,        -- unix epoch
    end_time    INTEGER,
    description TEXT,
    location    TEXT,
    is_virtual  INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_meetings_user_time ON meetings(user_id, start_time);

CREATE TABLE IF NOT EXISTS meeting_attendees (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    meeting_id      TEXT NOT NULL REFERENCES meetings(id),
    name            TEXT,
    email           TEXT,
    title           TEXT,
    company         TEXT,
    linkedin_url    TEXT,
    enriched        INTEGER NOT NULL DEFAULT 0,
    enrichment      BLOB                 -- msgpack'd {headline, skills, topicsTheyCareAbout, ...}
);

CREATE INDEX IF NOT EXISTS idx_attendees_meeting ON meeting_attendees(meeting_id);

CREATE TABLE IF NOT EXISTS meeting_intelligence (
    meeting_id          TEXT PRIMARY KEY REFERENCES meetings(id),
    relevant_topics     TEXT DEFAULT '[]',
    talking_points      TEXT DEFAULT '[]',
    attendee_summaries  BLOB
);

-- ══════════════════════════════════════════════════════════════════
-- Briefings
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS briefings (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    generated_at    INTEGER NOT NULL,
    items           BLOB NOT NULL        -- msgpack'd [{topic, content, reason, reasonLabel}]
);

CREATE INDEX IF NOT EXISTS idx_briefings_user_time ON briefings(user_id, generated_at DESC);

-- ══════════════════════════════════════════════════════════════════
-- Ingestion scheduling
-- ══════════════════════════════════════════════════════════════════

CREATE TABLE IF NOT EXISTS news_poll_state (
    query_id            TEXT PRIMARY KEY,
    last_polled_at      INTEGER,
    result_count        INTEGER NOT NULL DEFAULT 0,
    consecutive_errors  INTEGER NOT NULL DEFAULT 0,
    last_error_message  TEXT,
    next_poll_at        INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_news_poll_next ON news_poll_state(next_poll_at);
"""


def init_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Open the database, creating tables if needed."""
    path = db_path or DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.commit()

    logger.debug("Database initialized at %s", path)
    return conn
