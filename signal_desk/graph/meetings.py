"""Meeting-prep rules: attendee priority and meeting prep-worthiness."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

SENIOR_TITLE_RE = re.compile(
    r"\b(c[eost]o|cfo|cio|cmo|cro|cto|chief|president|founder|partner|managing director"
    r"|vp |vice president|svp|evp|head of|director|general manager|gm)\b",
    re.IGNORECASE,
)
JUNIOR_TITLE_RE = re.compile(
    r"\b(intern|associate|analyst|coordinator|assistant|junior|jr\.?)\b",
    re.IGNORECASE,
)

# Meetings within this much of today's bounds count as today
WINDOW_SKEW = timedelta(hours=14)
RECURRING_LOOKBACK = timedelta(days=30)
RECURRING_THRESHOLD = 2


@dataclass
class ImpressIndex:
    names: set[str]
    linkedin_urls: set[str]

    @classmethod
    def from_contacts(cls, contacts: Iterable[dict]) -> "ImpressIndex":
        contacts = list(contacts)
        return cls(
            names={c["name"].lower() for c in contacts if c.get("name")},
            linkedin_urls={c["linkedin_url"] for c in contacts if c.get("linkedin_url")},
        )

    def contains(self, attendee: dict) -> bool:
        if (attendee.get("name") or "").lower() in self.names:
            return True
        url = attendee.get("linkedin_url")
        return bool(url) and url in self.linkedin_urls


@dataclass
class AttendeeClassification:
    is_on_impress_list: bool
    is_senior: bool
    is_external: bool
    is_internal: bool
    prep_priority: str

    def to_dict(self) -> dict:
        return {
            "isOnImpressList": self.is_on_impress_list,
            "isSenior": self.is_senior,
            "isExternal": self.is_external,
            "isInternal": self.is_internal,
            "prepPriority": self.prep_priority,
        }


def is_senior(title: str | None) -> bool:
    return bool(title) and SENIOR_TITLE_RE.search(title.lower()) is not None


def is_junior(title: str | None) -> bool:
    return bool(title) and JUNIOR_TITLE_RE.search(title.lower()) is not None


def classify_attendee(attendee: dict, user_company: str, impress: ImpressIndex) -> AttendeeClassification:
    company = (attendee.get("company") or "").lower()
    user_company = (user_company or "").lower()
    on_list = impress.contains(attendee)
    senior = is_senior(attendee.get("title"))
    external = bool(company) and company != user_company
    internal = bool(company) and company == user_company

    if on_list:
        priority = "high"
    elif senior and internal:
        priority = "high"
    elif senior and external:
        priority = "medium"
    elif external:
        priority = "medium"
    else:
        priority = "low"

    return AttendeeClassification(on_list, senior, external, internal, priority)


def is_research_worthy(attendee: dict, user_company: str, impress: ImpressIndex) -> bool:
    """Impress-list, senior, or external and not junior."""
    if impress.contains(attendee) or is_senior(attendee.get("title")):
        return True
    company = (attendee.get("company") or "").lower()
    external = bool(company) and company != (user_company or "").lower()
    return external and not is_junior(attendee.get("title"))


def prep_worthiness(has_high_priority: bool, recurring: bool) -> str:
    if has_high_priority and not recurring:
        return "high"
    if has_high_priority:
        return "medium"
    if not recurring:
        return "low"
    return "skip"


def today_window(now: datetime) -> tuple[datetime, datetime]:
    """Today's local bounds widened by 14h each way to absorb timezone skew."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start - WINDOW_SKEW, end + WINDOW_SKEW


def title_frequency(titles: Iterable[str]) -> Counter:
    return Counter(t.lower() for t in titles)


def is_recurring(title: str, frequency: Counter) -> bool:
    return frequency.get(title.lower(), 0) > RECURRING_THRESHOLD
