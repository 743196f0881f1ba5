"""LLM client abstraction for running chats against Gemini or Claude."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from signal_desk.config import get_api_key

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "gemini": "gemini-3-flash-preview",
    "claude": "claude-haiku-4-5-20251001",
}


class LLMError(RuntimeError):
    """Transport or provider failure talking to the reasoning model."""


@dataclass
class ChatResponse:
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str = ""
    provider: str = ""


class LLMClient:
    """Unified interface for calling Gemini or Claude APIs.

    Provider clients are built with a request timeout and no automatic
    retries; any failure surfaces as LLMError.
    """

    def __init__(
        self,
        provider: str = "gemini",
        model: Optional[str] = None,
        timeout: float = 120,
    ):
        self.provider = provider.lower()
        self.timeout = timeout

        if self.provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {provider}. Use 'gemini' or 'claude'.")
        self.model = model or DEFAULT_MODELS[self.provider]

        if self.provider == "gemini":
            self._init_gemini()
        else:
            self._init_claude()

    def _init_gemini(self):
        from google import genai
        from google.genai import types

        api_key = get_api_key("GEMINI_API_KEY", "gemini")
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not found. Either:\n"
                "  • Run: signal-desk set-key gemini\n"
                "  • Or:  export GEMINI_API_KEY='your-key'"
            )
        self._gemini_client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
        )

    def _init_claude(self):
        import anthropic

        api_key = get_api_key("ANTHROPIC_API_KEY", "claude")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not found. Either:\n"
                "  • Run: signal-desk set-key claude\n"
                "  • Or:  export ANTHROPIC_API_KEY='sk-ant-...'"
            )
        self._claude_client = anthropic.Anthropic(
            api_key=api_key, timeout=self.timeout, max_retries=0,
        )

    # ══════════════════════════════════════════════════════════════
    # Chat
    # ══════════════════════════════════════════════════════════════

    def chat(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = 0.4,
        max_tokens: int = 4096,
    ) -> ChatResponse:
        """Send a full conversation and return the complete response.

        Messages are {"role": "system"|"user"|"assistant", "content": str}.
        Raises LLMError on any provider failure.
        """
        model = model or self.model
        system_prompt = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns = [m for m in messages if m["role"] != "system"]

        try:
            if self.provider == "gemini":
                return self._chat_gemini(system_prompt, turns, model, temperature, max_tokens)
            return self._chat_claude(system_prompt, turns, model, temperature, max_tokens)
        except LLMError:
            raise
        except Exception as exc:
            logger.error("%s chat failed (model=%s): %s", self.provider, model, exc)
            raise LLMError(f"{self.provider} request failed: {exc}") from exc

    def _chat_gemini(self, system_prompt, turns, model, temperature, max_tokens) -> ChatResponse:
        from google.genai import types

        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part.from_text(text=m["content"])],
            )
            for m in turns
        ]
        config = types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )
        response = self._gemini_client.models.generate_content(
            model=model, contents=contents, config=config,
        )

        # Extract text from response parts (skip thinking parts)
        text_parts = []
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if part.text and not getattr(part, "thought", False):
                    text_parts.append(part.text)

        usage = response.usage_metadata
        return ChatResponse(
            content="".join(text_parts),
            prompt_tokens=(usage.prompt_token_count or 0) if usage else 0,
            completion_tokens=(usage.candidates_token_count or 0) if usage else 0,
            model=model,
            provider="gemini",
        )

    def _chat_claude(self, system_prompt, turns, model, temperature, max_tokens) -> ChatResponse:
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": m["role"], "content": m["content"]} for m in turns],
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        response = self._claude_client.messages.create(**kwargs)

        text = "".join(b.text for b in response.content if getattr(b, "type", "") == "text")
        return ChatResponse(
            content=text,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            model=model,
            provider="claude",
        )

    # ══════════════════════════════════════════════════════════════
    # Single-shot helpers
    # ══════════════════════════════════════════════════════════════

    def run(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.4,
        max_tokens: int = 4096,
    ) -> str:
        """Send system + user message to the LLM and return the text response."""
        response = self.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.content
