from signal_desk.llm.client import ChatResponse, LLMClient, LLMError
from signal_desk.llm.embeddings import EmbeddingClient, cosine_similarity
from signal_desk.llm.loader import PromptDefinition, load_prompt

__all__ = [
    "ChatResponse",
    "EmbeddingClient",
    "LLMClient",
    "LLMError",
    "PromptDefinition",
    "cosine_similarity",
    "load_prompt",
]
