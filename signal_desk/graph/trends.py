"""SerpAPI access for web search and Google Trends, plus trend math.

All requests share one RateLimiter passed in by the caller. Missing
keys and failed requests come back as error payloads, never exceptions.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from fractions import Fraction
from typing import Optional

import requests

from signal_desk.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"
RATE_LIMIT_KEY = "serpapi"

MAX_KEYWORDS = 5
CHANGE_THRESHOLD_PCT = 15

TIMEFRAMES = {
    "past_day": "now 1-d",
    "past_week": "now 7-d",
    "past_month": "today 1-m",
    "past_year": "today 12-m",
}


# ══════════════════════════════════════════════════════════════
# Trend math
# ══════════════════════════════════════════════════════════════

def _exact(value) -> Fraction:
    """Exact rational for a reported value; floats go through their shortest repr."""
    if isinstance(value, (Fraction, int)):
        return Fraction(value)
    return Fraction(str(value))


def _mean(values: list) -> Fraction:
    return sum((_exact(v) for v in values), Fraction(0)) / len(values) if values else Fraction(0)


def classify_change(older_avg, recent_avg) -> str:
    """rising / falling / stable around a ±15% band, or new when the prior half is empty."""
    older, recent = _exact(older_avg), _exact(recent_avg)
    if older == 0:
        return "new" if recent > 0 else "stable"
    delta = (recent - older) * 100
    if delta > CHANGE_THRESHOLD_PCT * older:
        return "rising"
    if delta < -CHANGE_THRESHOLD_PCT * older:
        return "falling"
    return "stable"


def summarize_trend(values: list[float]) -> dict:
    """Compare the mean of the second half of a series against the first half."""
    if not values:
        return {
            "direction": "stable", "changePct": 0.0, "averageInterest": 0,
            "recentAvg": 0, "olderAvg": 0, "peak": 0,
        }

    midpoint = len(values) // 2
    older_avg = _mean(values[:midpoint])
    recent_avg = _mean(values[midpoint:])
    direction = classify_change(older_avg, recent_avg)

    if older_avg == 0:
        change_pct = None if direction == "new" else 0.0
    else:
        change_pct = round(float((recent_avg - older_avg) * 100 / older_avg), 1)

    return {
        "direction": direction,
        "changePct": change_pct,
        "averageInterest": round(_mean(values)),
        "recentAvg": round(recent_avg),
        "olderAvg": round(older_avg),
        "peak": max(values),
    }


# ══════════════════════════════════════════════════════════════
# SerpAPI client
# ══════════════════════════════════════════════════════════════

class SerpApiClient:
    def __init__(
        self,
        api_key: Optional[str],
        rate_limiter: RateLimiter | None = None,
        timeout: float = 10,
    ):
        self.api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get(self, params: dict) -> requests.Response:
        self.rate_limiter.wait(RATE_LIMIT_KEY)
        return requests.get(
            SERPAPI_URL,
            params={**params, "api_key": self.api_key},
            timeout=self.timeout,
        )

    def web_search(self, query: str, num: int = 3) -> dict:
        """Top organic results: {query, results: [{title, snippet, url}]}."""
        try:
            resp = self._get({"q": query, "num": num})
        except requests.RequestException as exc:
            return {"query": query, "error": "Web search failed", "detail": str(exc)}
        if not resp.ok:
            return {"query": query, "error": "SerpAPI request failed",
                    "detail": f"{resp.status_code} {resp.reason}"}

        results = [
            {"title": r.get("title", ""), "snippet": r.get("snippet", ""), "url": r.get("link", "")}
            for r in resp.json().get("organic_results", [])[:num]
        ]
        return {"query": query, "results": results, "source": "serpapi"}

    def trends(self, keywords: list[str], timeframe: str = "past_month", geo: str = "") -> dict:
        """Interest over time for up to 5 keywords, with direction and related queries."""
        capped = [str(k).strip() for k in keywords if str(k).strip()][:MAX_KEYWORDS]
        if not capped:
            return {"error": "keywords array is required and must not be empty"}
        if not self.api_key:
            return {
                "error": "Google Trends unavailable: SERPAPI_API_KEY not configured",
                "keywords": capped,
            }

        timeframe = timeframe if timeframe in TIMEFRAMES else "past_month"
        date = TIMEFRAMES[timeframe]
        params = {"engine": "google_trends", "q": ",".join(capped),
                  "data_type": "TIMESERIES", "date": date}
        if geo:
            params["geo"] = geo

        try:
            resp = self._get(params)
            if not resp.ok:
                return {"error": "SerpAPI request failed",
                        "detail": f"{resp.status_code} {resp.reason}", "keywords": capped}
            timeline = (resp.json().get("interest_over_time") or {}).get("timeline_data") or []
        except (requests.RequestException, ValueError) as exc:
            return {"error": "Google Trends query failed", "detail": str(exc), "keywords": capped}

        trends = []
        for i, keyword in enumerate(capped):
            series = []
            for point in timeline:
                values = point.get("values") or []
                series.append(float(values[i].get("extracted_value", 0) or 0) if i < len(values) else 0.0)
            trends.append({"keyword": keyword, **summarize_trend(series)})

        return {
            "keywords": capped,
            "timeframe": timeframe,
            "geo": geo or "worldwide",
            "trends": trends,
            "relatedQueries": self._related_queries(capped, date, geo),
            "dataPoints": len(timeline),
        }

    def _related_queries(self, keywords: list[str], date: str, geo: str) -> dict:
        """Best effort: one request per keyword, issued concurrently."""
        def fetch(keyword: str) -> tuple[str, dict | None]:
            params = {"engine": "google_trends", "q": keyword,
                      "data_type": "RELATED_QUERIES", "date": date}
            if geo:
                params["geo"] = geo
            try:
                resp = self._get(params)
                if not resp.ok:
                    return keyword, None
                related = resp.json().get("related_queries") or {}
            except (requests.RequestException, ValueError) as exc:
                logger.debug("Related queries for %r failed: %s", keyword, exc)
                return keyword, None
            return keyword, {
                "top": [q.get("query", "") for q in (related.get("top") or [])[:5]],
                "rising": [q.get("query", "") for q in (related.get("rising") or [])[:5]],
            }

        with ThreadPoolExecutor(max_workers=len(keywords)) as pool:
            results = list(pool.map(fetch, keywords))
        return {kw: data for kw, data in results if data is not None}
