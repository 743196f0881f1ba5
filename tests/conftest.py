"""
Shared fixtures for Signal Desk tests.

The LLM is replaced by ScriptedLLM, which replays canned replies and
records every call. Embeddings come from FakeEmbedder, a fixed
text -> vector table.
"""

import json

import numpy as np
import pytest

from signal_desk.agent.models import CandidateSignal
from signal_desk.graph.store import GraphStore
from signal_desk.llm.client import ChatResponse


USER_ID = "u_maya"


class ScriptedLLM:
    """Duck-typed LLMClient that replays scripted replies.

    Each reply is a string, a dict (sent as JSON), or an Exception
    instance (raised). When the script runs out, `default` is replayed.
    """

    def __init__(self, replies=None, default="", prompt_tokens=10, completion_tokens=5):
        self.replies = list(replies or [])
        self.default = default
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.model = "scripted-model"
        self.chat_calls = []
        self.run_calls = []

    def _next(self):
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply

    def chat(self, messages, model=None, temperature=0.4, max_tokens=4096):
        self.chat_calls.append([dict(m) for m in messages])
        content = self._next()
        return ChatResponse(
            content=content,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            model=self.model,
            provider="scripted",
        )

    def run(self, system, user, temperature=0.4, max_tokens=4096):
        self.run_calls.append({"system": system, "user": user})
        return self._next()


class FakeEmbedder:
    """Maps known texts to fixed vectors; anything else gets None."""

    def __init__(self, vectors=None):
        self.vectors = {k: np.asarray(v, dtype=np.float32) for k, v in (vectors or {}).items()}
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        return [self.vectors.get(t) for t in texts]


def tool_call(tool, **args):
    return {"tool": tool, "args": args}


def submit(*indices, reason="your-space"):
    return tool_call("submit_selections", selections=[
        {
            "signalIndex": i,
            "reason": reason,
            "reasonLabel": "Your space",
            "confidence": 0.8,
            "noveltyAssessment": "Not seen before",
            "attribution": "Matches your focus",
        }
        for i in indices
    ])


@pytest.fixture
def store(tmp_path):
    s = GraphStore(tmp_path / "signal_desk.db")
    yield s
    s.close()


@pytest.fixture
def user_id(store):
    """A user with a filled-in profile."""
    store.upsert_user(USER_ID, email="maya@northwind.io", name="Maya Chen",
                      title="VP Engineering", company="Northwind")
    store.upsert_profile(
        USER_ID,
        topics=["vector databases", "LLM inference"],
        initiatives=["migrate search to embeddings"],
        concerns=["GPU costs"],
        expert_areas=["distributed systems"],
        weak_areas=["quantum computing"],
        knowledge_gaps=["EU AI Act"],
        rapid_fire=[
            {"topic": "Kubernetes", "context": "infra", "response": "know-tons"},
            {"topic": "crypto", "context": "markets", "response": "not-relevant"},
        ],
        delivery_timezone="America/New_York",
    )
    return USER_ID


@pytest.fixture
def pool():
    return [
        CandidateSignal(title="Pinecone raises $100M", summary="Vector databases keep drawing capital",
                        source_label="TechCrunch", layer="news"),
        CandidateSignal(title="EU AI Act enforcement begins", summary="New obligations for model providers",
                        layer="news"),
        CandidateSignal(title="Quantum computing milestone", summary="Distributed systems meet qubits",
                        layer="news"),
        CandidateSignal(title="Forwarded: GPU pricing memo", summary="Spot prices falling",
                        layer="email-forward", metadata={"userAnnotation": "worth a look"}),
    ]
