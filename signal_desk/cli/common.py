"""Shared wiring for CLI commands: config -> store / LLM / external clients."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click

from signal_desk.agent.models import CandidateSignal
from signal_desk.config import get_serpapi_key, load_config
from signal_desk.graph.store import GraphStore
from signal_desk.graph.trends import SerpApiClient
from signal_desk.llm.client import LLMClient
from signal_desk.llm.embeddings import EmbeddingClient
from signal_desk.ratelimit import RateLimiter


def open_store(config: dict) -> GraphStore:
    return GraphStore(Path(config["db_path"]).expanduser())


def build_llm(config: dict, provider: Optional[str] = None, model: Optional[str] = None) -> LLMClient:
    try:
        return LLMClient(
            provider=provider or config["llm_provider"],
            model=model or config.get("llm_model"),
            timeout=config.get("llm_timeout_seconds", 120),
        )
    except ValueError as exc:
        raise click.ClickException(str(exc))


def build_embedder(config: dict) -> EmbeddingClient:
    return EmbeddingClient(config["embedding_url"], model=config["embedding_model"])


def build_serpapi(config: dict) -> SerpApiClient:
    limiter = RateLimiter(config.get("serpapi_min_interval_seconds", 1.0))
    return SerpApiClient(get_serpapi_key(), rate_limiter=limiter)


def load_candidates(path: str) -> list[CandidateSignal]:
    """Read a JSON array of candidate objects (or {"candidates": [...]})."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"Could not read candidates from {path}: {exc}")
    if isinstance(data, dict):
        data = data.get("candidates", [])
    if not isinstance(data, list):
        raise click.ClickException("Candidates file must contain a JSON array")
    return [CandidateSignal.from_dict(item) for item in data if isinstance(item, dict)]


def context_config(ctx: click.Context) -> dict:
    obj = ctx.find_root().obj or {}
    return obj.get("config") or load_config()
