"""Data types for one selection run.

Everything here is created fresh per run and discarded once the
selections are handed to the composer.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from signal_desk.safe_parse import to_float, to_int


class ToolName(str, Enum):
    CHECK_KNOWLEDGE_GRAPH = "check_knowledge_graph"
    CHECK_FEEDBACK_HISTORY = "check_feedback_history"
    COMPARE_WITH_PEERS = "compare_with_peers"
    GET_SIGNAL_PROVENANCE = "get_signal_provenance"
    ASSESS_FRESHNESS = "assess_freshness"
    WEB_SEARCH = "web_search"
    QUERY_GOOGLE_TRENDS = "query_google_trends"
    CHECK_TODAY_MEETINGS = "check_today_meetings"
    RESEARCH_MEETING_ATTENDEES = "research_meeting_attendees"
    SEARCH_BRIEFING_HISTORY = "search_briefing_history"
    CROSS_REFERENCE_SIGNALS = "cross_reference_signals"
    CHECK_EXPERTISE_GAPS = "check_expertise_gaps"
    SUBMIT_SELECTIONS = "submit_selections"

    @classmethod
    def lookup(cls, name: str) -> Optional["ToolName"]:
        try:
            return cls(name)
        except ValueError:
            return None


SELECTION_REASONS = {
    "people-are-talking": "People are talking",
    "meeting-prep": "Meeting prep",
    "new-entrant": "New entrant",
    "fundraise-or-deal": "Fundraise or deal",
    "regulatory-or-policy": "Regulatory or policy",
    "term-emerging": "Term emerging",
    "network-activity": "Network activity",
    "your-space": "Your space",
    "competitive-move": "Competitive move",
    "event-upcoming": "Event upcoming",
    "other": "Other",
}


@dataclass(frozen=True)
class CandidateSignal:
    """One candidate piece of information, identified by its pool index."""
    title: str
    summary: str = ""
    source_url: Optional[str] = None
    source_label: Optional[str] = None
    layer: str = ""
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "CandidateSignal":
        return cls(
            title=str(data.get("title", "")),
            summary=str(data.get("summary", "") or ""),
            source_url=data.get("source_url") or data.get("sourceUrl"),
            source_label=data.get("source_label") or data.get("sourceLabel"),
            layer=str(data.get("layer", "") or ""),
            metadata=dict(data.get("metadata") or {}),
        )


class SignalSelection(BaseModel):
    """Validated selection emitted by submit_selections."""
    model_config = ConfigDict(populate_by_name=True)

    signal_index: int = Field(default=-1, validation_alias=AliasChoices("signal_index", "signalIndex"))
    reason: str = "other"
    reason_label: str = Field(default="", validation_alias=AliasChoices("reason_label", "reasonLabel"))
    confidence: float = 0.5
    novelty_assessment: str = Field(
        default="", validation_alias=AliasChoices("novelty_assessment", "noveltyAssessment"),
    )
    attribution: str = ""
    tools_used: list[str] = Field(default_factory=list, validation_alias=AliasChoices("tools_used", "toolsUsed"))

    @field_validator("signal_index", mode="before")
    @classmethod
    def coerce_index(cls, v):
        return to_int(v, -1)

    @field_validator("reason", mode="before")
    @classmethod
    def validate_reason(cls, v):
        v = str(v or "").lower().strip()
        return v if v in SELECTION_REASONS else "other"

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        return max(0.0, min(1.0, to_float(v, 0.5)))

    @field_validator("reason_label", "novelty_assessment", "attribution", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("tools_used", mode="before")
    @classmethod
    def coerce_tools(cls, v):
        if not isinstance(v, list):
            return []
        return [str(t) for t in v]


@dataclass(frozen=True)
class ToolCallLogEntry:
    tool: str
    args: dict
    result_summary: str


@dataclass(frozen=True)
class AgentScoringConfig:
    model: Optional[str] = None
    temperature: float = 0.4
    max_tool_rounds: int = 10
    target_selections: int = 5
    candidate_pool_size: int = 30
    max_tokens: int = 4096

    @classmethod
    def from_dict(cls, data: dict | None) -> "AgentScoringConfig":
        names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in names})

    def with_overrides(self, **overrides: Any) -> "AgentScoringConfig":
        return dataclasses.replace(
            self, **{k: v for k, v in overrides.items() if v is not None},
        )


@dataclass
class SelectionResult:
    user_id: str
    selections: list[SignalSelection]
    tool_call_log: list[ToolCallLogEntry]
    model_used: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning: str = ""
    scored_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "selections": [s.model_dump() for s in self.selections],
            "tool_call_log": [dataclasses.asdict(e) for e in self.tool_call_log],
            "model_used": self.model_used,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "reasoning": self.reasoning,
            "scored_at": self.scored_at.isoformat(),
        }
