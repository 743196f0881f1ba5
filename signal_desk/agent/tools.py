"""Tool executor for the selection agent.

Every tool the agent may call is a method registered in a handler map
keyed by ToolName. Tools only read from the store; none of them may
raise into the loop. Unknown names and handler failures both come back
as {"error": ...} payloads that the model can read and adapt to.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from signal_desk.agent.models import CandidateSignal, ToolName
from signal_desk.graph import meetings as meeting_rules
from signal_desk.graph.knowledge import KnowledgeModel
from signal_desk.graph.store import GraphStore
from signal_desk.graph.trends import SerpApiClient
from signal_desk.llm.loader import load_prompt
from signal_desk.llm.parsing import parse_json_payload
from signal_desk.safe_parse import to_int, to_string_array

logger = logging.getLogger(__name__)

FEEDBACK_LIMIT = 30
FRESHNESS_BRIEFINGS = 3
HISTORY_BRIEFINGS = 30
HISTORY_DEFAULT_LIMIT = 10
HISTORY_MAX_LIMIT = 20

MEETING_PREP_INSTRUCTION = (
    "Only prep for meetings with HIGH or MEDIUM prep worthiness. Focus research on "
    "HIGH-priority attendees (impress list, senior people). Do NOT research junior staff "
    "or people from recurring standups. Meeting-prep signals should use AT MOST 3 of the "
    "briefing slots; leave room for other important signals."
)

Handler = Callable[[str, list[CandidateSignal], dict], Any]


def _iso(ts: int | None) -> str | None:
    return datetime.fromtimestamp(ts).isoformat() if ts else None


def _signal_text(signal: CandidateSignal) -> str:
    return f"{signal.title} {signal.summary}".lower()


def _requested_indices(args: dict, pool: list[CandidateSignal]) -> list[int]:
    """signal_indices from args (ints only), or every pool index when absent."""
    raw = args.get("signal_indices")
    if not isinstance(raw, list):
        return list(range(len(pool)))
    indices = []
    for value in raw:
        idx = to_int(value, None)
        if idx is not None:
            indices.append(idx)
    return indices


def _valid(idx: int, pool: list[CandidateSignal]) -> bool:
    return 0 <= idx < len(pool)


class ToolExecutor:
    """Runs agent tool calls against one user's data."""

    def __init__(
        self,
        store: GraphStore,
        llm,
        knowledge: KnowledgeModel | None = None,
        serpapi: SerpApiClient | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.llm = llm
        self.knowledge = knowledge or KnowledgeModel(store)
        self.serpapi = serpapi or SerpApiClient(api_key=None)
        self.clock = clock

        self.handlers: dict[ToolName, Handler] = {
            ToolName.CHECK_KNOWLEDGE_GRAPH: self._check_knowledge_graph,
            ToolName.CHECK_FEEDBACK_HISTORY: self._check_feedback_history,
            ToolName.COMPARE_WITH_PEERS: self._compare_with_peers,
            ToolName.GET_SIGNAL_PROVENANCE: self._get_signal_provenance,
            ToolName.ASSESS_FRESHNESS: self._assess_freshness,
            ToolName.WEB_SEARCH: self._web_search,
            ToolName.QUERY_GOOGLE_TRENDS: self._query_google_trends,
            ToolName.CHECK_TODAY_MEETINGS: self._check_today_meetings,
            ToolName.RESEARCH_MEETING_ATTENDEES: self._research_meeting_attendees,
            ToolName.SEARCH_BRIEFING_HISTORY: self._search_briefing_history,
            ToolName.CROSS_REFERENCE_SIGNALS: self._cross_reference_signals,
            ToolName.CHECK_EXPERTISE_GAPS: self._check_expertise_gaps,
        }

    def execute(
        self,
        tool_name: str,
        args: Any,
        user_id: str,
        pool: list[CandidateSignal],
    ) -> Any:
        """Run one tool. Always returns a JSON-serializable value."""
        name = ToolName.lookup(tool_name)
        if name is ToolName.SUBMIT_SELECTIONS:
            return {"error": "submit_selections finalizes the run and is not executed as a tool"}
        handler = self.handlers.get(name) if name else None
        if handler is None:
            return {"error": f"Unknown tool: {tool_name}"}

        if not isinstance(args, dict):
            args = {}
        logger.debug("Tool %s for %s args=%s", tool_name, user_id, args)
        try:
            return handler(user_id, pool, args)
        except Exception as exc:
            logger.warning("Tool %s failed for %s: %s", tool_name, user_id, exc)
            return {"error": str(exc) or exc.__class__.__name__, "tool": tool_name}

    # ══════════════════════════════════════════════════════════════
    # Knowledge, feedback, peers
    # ══════════════════════════════════════════════════════════════

    def _check_knowledge_graph(self, user_id, pool, args):
        query = args.get("query")
        return self.knowledge.lookup(user_id, str(query) if query else None)

    def _check_feedback_history(self, user_id, pool, args):
        feedback = self.store.get_recent_feedback(user_id, limit=FEEDBACK_LIMIT)

        def of_type(kind, with_comment=False):
            rows = [f for f in feedback if f["type"] == kind]
            if with_comment:
                return [{"topic": f["topic"], "comment": f["comment"]} for f in rows]
            return [{"topic": f["topic"]} for f in rows]

        return {
            "totalFeedbackSignals": len(feedback),
            "tuneMore": of_type("tune-more", with_comment=True),
            "tuneLess": of_type("tune-less", with_comment=True),
            "notNovel": of_type("not-novel"),
            "deepDives": of_type("deep-dive"),
        }

    def _compare_with_peers(self, user_id, pool, args):
        peers = self.store.get_peer_orgs(user_id)
        contacts = self.store.get_impress_contacts(user_id)

        peer_names = [p["name"].lower() for p in peers]
        contact_names = [c["name"].lower() for c in contacts if c.get("name")]
        contact_interests: dict[str, list[str]] = {}
        for c in contacts:
            deep_dive = c.get("deep_dive")
            if c.get("name") and deep_dive:
                terms = to_string_array(deep_dive.get("interests")) + to_string_array(deep_dive.get("focusAreas"))
                contact_interests[c["name"].lower()] = [t.lower() for t in terms]

        signal_matches = []
        for idx in _requested_indices(args, pool):
            if not _valid(idx, pool):
                signal_matches.append({"signalIndex": idx, "error": "invalid index"})
                continue
            text = _signal_text(pool[idx])
            matched_peers = [p for p in peer_names if p in text]
            matched_contacts = [c for c in contact_names if c in text]
            matched_interests = []
            for contact, interests in contact_interests.items():
                hits = [i for i in interests if i and i in text]
                if hits:
                    matched_interests.append({"contact": contact, "matchedTopics": hits})
            signal_matches.append({
                "signalIndex": idx,
                "matchedPeerOrgs": matched_peers,
                "matchedImpressContacts": matched_contacts,
                "matchedImpressInterests": matched_interests,
                "hasPeerRelevance": bool(matched_peers or matched_contacts or matched_interests),
            })

        tracked_contacts = []
        for c in contacts:
            entry = {
                "name": c.get("name"),
                "title": c.get("title"),
                "company": c.get("company"),
                "deepDiveAvailable": c.get("research_status") == "completed" and bool(c.get("deep_dive")),
            }
            if c.get("deep_dive"):
                deep_dive = c["deep_dive"]
                entry["interests"] = to_string_array(deep_dive.get("interests"))
                entry["focusAreas"] = to_string_array(deep_dive.get("focusAreas"))
                entry["talkingPoints"] = to_string_array(deep_dive.get("talkingPoints"))
            tracked_contacts.append(entry)

        return {
            "trackedPeerOrgs": [p["name"] for p in peers],
            "trackedContacts": tracked_contacts,
            "signalMatches": signal_matches,
        }

    def _get_signal_provenance(self, user_id, pool, args):
        results = []
        for idx in _requested_indices(args, pool):
            if not _valid(idx, pool):
                results.append({"signalIndex": idx, "error": "invalid index"})
                continue
            signal = pool[idx]
            if signal.layer == "email-forward":
                results.append({
                    "signalIndex": idx,
                    "provenanceType": "user-curated",
                    "provenanceScore": 1.0,
                    "userAnnotation": signal.metadata.get("userAnnotation"),
                    "note": "User explicitly forwarded this content: maximum provenance weight.",
                })
            else:
                results.append({
                    "signalIndex": idx,
                    "provenanceType": "standard",
                    "provenanceScore": None,
                    "note": "No provenance data recorded for this layer.",
                })
        return {"signalProvenance": results}

    # ══════════════════════════════════════════════════════════════
    # Briefing history
    # ══════════════════════════════════════════════════════════════

    def _assess_freshness(self, user_id, pool, args):
        recent = self.store.get_recent_briefings(user_id, limit=FRESHNESS_BRIEFINGS)
        if not recent:
            return {"lastBriefing": None, "message": "No previous briefings, everything is novel."}
        last = recent[0]
        return {
            "lastBriefingAt": _iso(last["generated_at"]),
            "topicsCovered": [item.get("topic") for item in last["items"]],
            "briefingCount": len(recent),
            "recentTopics": [item.get("topic") for b in recent for item in b["items"]],
        }

    def _search_briefing_history(self, user_id, pool, args):
        limit = max(1, min(to_int(args.get("limit"), HISTORY_DEFAULT_LIMIT), HISTORY_MAX_LIMIT))
        briefings = self.store.get_recent_briefings(user_id, limit=HISTORY_BRIEFINGS)
        if not briefings:
            return {"results": [], "message": "No briefing history found."}

        def entry(briefing, item):
            return {
                "topic": item.get("topic"),
                "reason": item.get("reason"),
                "content": item.get("content"),
                "briefingDate": _iso(briefing["generated_at"]),
            }

        query = args.get("query")
        if not query:
            recent_items = [entry(b, item) for b in briefings[:5] for item in b["items"]]
            return {"totalBriefings": len(briefings), "recentItems": recent_items[:limit]}

        query_lower = str(query).lower()
        matching = []
        for b in briefings:
            for item in b["items"]:
                text = f"{item.get('topic', '')} {item.get('content', '')}".lower()
                if query_lower in text:
                    matching.append(entry(b, item))
            if len(matching) >= limit:
                break

        return {
            "query": query,
            "totalBriefings": len(briefings),
            "matchingItems": matching[:limit],
            "matchCount": len(matching),
        }

    # ══════════════════════════════════════════════════════════════
    # External lookups
    # ══════════════════════════════════════════════════════════════

    def _web_search(self, user_id, pool, args):
        query = args.get("query")
        if not query:
            return {"error": "query is required"}
        query = str(query)

        if self.serpapi.configured:
            return self.serpapi.web_search(query)

        prompt = load_prompt("web_search")
        summary = self.llm.run(
            prompt.body, query, temperature=prompt.temperature, max_tokens=prompt.max_tokens,
        )
        return {"query": query, "summary": summary, "source": "llm"}

    def _query_google_trends(self, user_id, pool, args):
        keywords = to_string_array(args.get("keywords"))
        return self.serpapi.trends(
            keywords,
            timeframe=str(args.get("timeframe") or "past_month"),
            geo=str(args.get("geo") or ""),
        )

    # ══════════════════════════════════════════════════════════════
    # Meetings
    # ══════════════════════════════════════════════════════════════

    def _check_today_meetings(self, user_id, pool, args):
        now = self.clock()
        profile = self.store.get_profile(user_id) or {}
        timezone = profile.get("delivery_timezone") or "unknown"
        start, end = meeting_rules.today_window(now)

        todays = self.store.get_meetings_between(user_id, int(start.timestamp()), int(end.timestamp()))
        if not todays:
            return {
                "hasMeetings": False,
                "timezone": timezone,
                "meetings": [],
                "message": "No meetings found for today. Meeting-prep signals are not prioritized.",
            }

        impress = meeting_rules.ImpressIndex.from_contacts(self.store.get_impress_contacts(user_id))
        since = int((now - meeting_rules.RECURRING_LOOKBACK).timestamp())
        frequency = meeting_rules.title_frequency(self.store.get_meeting_titles_since(user_id, since))
        user = self.store.get_user(user_id) or {}
        user_company = user.get("company") or ""

        details = []
        for mtg in todays:
            recurring = meeting_rules.is_recurring(mtg["title"], frequency)
            attendees = []
            for a in self.store.get_attendees(mtg["id"]):
                cls = meeting_rules.classify_attendee(a, user_company, impress)
                attendees.append({
                    "name": a.get("name"),
                    "email": a.get("email"),
                    "title": a.get("title"),
                    "company": a.get("company"),
                    "linkedinUrl": a.get("linkedin_url"),
                    "enriched": a.get("enriched"),
                    "enrichmentData": a.get("enrichment"),
                    "classification": cls.to_dict(),
                })

            high = [a for a in attendees if a["classification"]["prepPriority"] == "high"]
            intel = self.store.get_meeting_intelligence(mtg["id"])
            details.append({
                "meetingId": mtg["id"],
                "title": mtg["title"],
                "startTime": _iso(mtg["start_time"]),
                "endTime": _iso(mtg["end_time"]),
                "description": mtg.get("description"),
                "location": mtg.get("location"),
                "isVirtual": mtg["is_virtual"],
                "isRecurring": recurring,
                "meetingPrepWorthiness": meeting_rules.prep_worthiness(bool(high), recurring),
                "attendees": attendees,
                "highPriorityAttendees": [
                    {
                        "name": a["name"],
                        "title": a["title"],
                        "company": a["company"],
                        "reason": (
                            "on impress list" if a["classification"]["isOnImpressList"]
                            else "senior internal" if a["classification"]["isInternal"]
                            else "senior external"
                        ),
                    }
                    for a in high
                ],
                "intelligence": {
                    "relevantTopics": intel["relevant_topics"],
                    "suggestedTalkingPoints": intel["talking_points"],
                    "attendeeSummaries": intel["attendee_summaries"],
                } if intel else None,
            })

        prep_worthy = [m for m in details if m["meetingPrepWorthiness"] in ("high", "medium")]
        key_attendees = [
            a for m in prep_worthy for a in m["attendees"]
            if a["classification"]["prepPriority"] in ("high", "medium")
        ]

        return {
            "hasMeetings": True,
            "timezone": timezone,
            "meetingCount": len(details),
            "prepWorthyMeetingCount": len(prep_worthy),
            "meetings": details,
            "matchingHints": {
                "companies": list(dict.fromkeys(a["company"] for a in key_attendees if a["company"])),
                "people": list(dict.fromkeys(a["name"] for a in key_attendees if a["name"])),
                "topics": list(dict.fromkeys(
                    t for m in prep_worthy if m["intelligence"]
                    for t in m["intelligence"]["relevantTopics"]
                )),
                "instruction": MEETING_PREP_INSTRUCTION,
            },
        }

    def _research_meeting_attendees(self, user_id, pool, args):
        meeting_id = args.get("meeting_id")
        if meeting_id:
            meeting = self.store.get_meeting(user_id, str(meeting_id))
        else:
            meeting = self.store.get_next_meeting(user_id, int(self.clock().timestamp()))
        if not meeting:
            return {"error": "No matching meeting found.", "meetingId": meeting_id}

        attendees = self.store.get_attendees(meeting["id"])
        if not attendees:
            return {
                "meetingId": meeting["id"],
                "title": meeting["title"],
                "message": "No attendees found for this meeting.",
            }

        impress = meeting_rules.ImpressIndex.from_contacts(self.store.get_impress_contacts(user_id))
        user = self.store.get_user(user_id) or {}
        user_company = user.get("company") or ""
        worthy = [a for a in attendees if meeting_rules.is_research_worthy(a, user_company, impress)]
        skipped = len(attendees) - len(worthy)

        if not worthy:
            return {
                "meetingId": meeting["id"],
                "title": meeting["title"],
                "totalAttendees": len(attendees),
                "message": (
                    "No high-priority attendees found for this meeting (no impress-list "
                    "contacts or senior people). Skipping deep research."
                ),
            }

        user_message = "\n".join([
            f'Meeting: "{meeting["title"]}"',
            f"Time: {_iso(meeting['start_time'])}",
            f"Description: {meeting.get('description') or 'No description'}",
            f"Your role: {user.get('title') or 'Professional'} at {user.get('company') or 'your company'}",
            "",
            f"Key attendees ({len(worthy)} of {len(attendees)} total, "
            f"{skipped} junior/low-priority attendees filtered out):",
            *[self._describe_attendee(a, impress) for a in worthy],
        ])

        prompt = load_prompt("attendee_research")
        raw = self.llm.run(
            prompt.body, user_message,
            temperature=prompt.temperature, max_tokens=prompt.max_tokens,
        )
        research = parse_json_payload(raw)
        if not isinstance(research, dict):
            research = {"rawAnalysis": raw}

        return {
            "meetingId": meeting["id"],
            "title": meeting["title"],
            "startTime": _iso(meeting["start_time"]),
            "totalAttendees": len(attendees),
            "researchedAttendees": len(worthy),
            "skippedAttendees": skipped,
            "research": research,
        }

    @staticmethod
    def _describe_attendee(attendee: dict, impress: meeting_rules.ImpressIndex) -> str:
        parts = [attendee.get("name") or "Unknown"]
        if attendee.get("title"):
            parts.append(f"({attendee['title']})")
        if attendee.get("company"):
            parts.append(f"at {attendee['company']}")
        if attendee.get("linkedin_url"):
            parts.append(f"LinkedIn: {attendee['linkedin_url']}")
        enrichment = attendee.get("enrichment") or {}
        if attendee.get("enriched") and enrichment:
            if enrichment.get("headline"):
                parts.append(f"Headline: {enrichment['headline']}")
            skills = to_string_array(enrichment.get("skills"))
            if skills:
                parts.append(f"Skills: {', '.join(skills)}")
            interests = to_string_array(enrichment.get("topicsTheyCareAbout"))
            if interests:
                parts.append(f"Interested in: {', '.join(interests)}")
        if impress.contains(attendee):
            parts.append("[ON IMPRESS LIST: prioritize]")
        return " ".join(parts)

    # ══════════════════════════════════════════════════════════════
    # Cross-signal analysis
    # ══════════════════════════════════════════════════════════════

    def _cross_reference_signals(self, user_id, pool, args):
        indices = [i for i in _requested_indices(args, pool) if _valid(i, pool)]
        if len(indices) < 2:
            return {"error": "Need at least 2 signal indices to cross-reference."}

        user_message = "\n\n".join(f"[{i}] {pool[i].title}: {pool[i].summary}" for i in indices)
        prompt = load_prompt("cross_reference")
        raw = self.llm.run(
            prompt.body, user_message,
            temperature=prompt.temperature, max_tokens=prompt.max_tokens,
        )
        analysis = parse_json_payload(raw)
        if isinstance(analysis, dict):
            return analysis
        return {"analysis": raw}

    def _check_expertise_gaps(self, user_id, pool, args):
        profile = self.store.get_profile(user_id)
        if not profile:
            return {"error": "No profile found."}

        weak_areas = profile["weak_areas"]
        knowledge_gaps = profile["knowledge_gaps"]
        expert_areas = profile["expert_areas"]
        gap_terms = [t.lower() for t in weak_areas + knowledge_gaps if t]
        expert_terms = [t.lower() for t in expert_areas if t]

        analysis = []
        for idx in _requested_indices(args, pool):
            if not _valid(idx, pool):
                continue
            text = _signal_text(pool[idx])
            gaps = [g for g in gap_terms if g in text]
            expertise = [e for e in expert_terms if e in text]
            if gaps and not expertise:
                value = "high"
            elif gaps:
                value = "medium"
            else:
                value = "low"
            analysis.append({
                "signalIndex": idx,
                "fillsKnowledgeGap": bool(gaps),
                "matchedGaps": gaps,
                "coversExpertArea": bool(expertise),
                "matchedExpertise": expertise,
                "educationalValue": value,
            })

        return {
            "userWeakAreas": weak_areas,
            "userKnowledgeGaps": knowledge_gaps,
            "userExpertAreas": expert_areas,
            "signalAnalysis": analysis,
            "highValueCount": sum(1 for a in analysis if a["educationalValue"] == "high"),
        }
