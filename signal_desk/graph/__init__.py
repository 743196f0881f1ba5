"""Per-user state: knowledge model, content universe, calendar and ingestion schedule."""

from signal_desk.graph.knowledge import EntitySeed, KnowledgeModel
from signal_desk.graph.poll_state import PollScheduler, backoff_minutes
from signal_desk.graph.prune import KnowledgePruner, PruneResult
from signal_desk.graph.schema import init_db
from signal_desk.graph.seed import KnowledgeSeeder
from signal_desk.graph.store import GraphStore
from signal_desk.graph.universe import ContentUniverse, UniverseGenerator, matches

__all__ = [
    "ContentUniverse",
    "EntitySeed",
    "GraphStore",
    "KnowledgeModel",
    "KnowledgePruner",
    "KnowledgeSeeder",
    "PollScheduler",
    "PruneResult",
    "UniverseGenerator",
    "backoff_minutes",
    "init_db",
    "matches",
]
