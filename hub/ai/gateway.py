"""
NIA Excellence Hub
LLM Gateway.

Provider-agnostic entry point for the AI coach:
    - Anthropic Claude when ANTHROPIC_API_KEY is configured
    - Local stub otherwise (dev/testing, deterministic output)
    - Streaming: ``stream()`` yields text chunks as they arrive

Usage:
    from hub.ai.gateway import LLMGateway
    gw = LLMGateway.from_app(current_app)
    for chunk in gw.stream(system_prompt, messages):
        ...
"""

import json
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    name = "abstract"

    @abstractmethod
    def stream(self, system: str, messages: list, model: str, max_tokens: int):
        """
        Yield response text chunks.

        Args:
            system: System prompt.
            messages: List of {"role": "user"|"assistant", "content": "..."} dicts.
            model: Model identifier string.
            max_tokens: Completion budget.
        """
        ...

    def chat(self, system: str, messages: list, model: str, max_tokens: int) -> str:
        return "".join(self.stream(system, messages, model, max_tokens))


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    name = "anthropic"

    def __init__(self, api_key):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def stream(self, system, messages, model, max_tokens):
        client = self._get_client()
        with client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=messages,
        ) as response:
            for text in response.text_stream:
                yield text


# ── Local Stub Provider ──────────────────────────────────────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    name = "local"

    def stream(self, system, messages, model="local-stub", max_tokens=0):
        user_msg = ""
        for m in reversed(messages):
            if m.get("role") == "user":
                user_msg = m.get("content") or ""
                break
        content = self._generate_stub_response(user_msg)
        for line in content.splitlines(keepends=True):
            yield line

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        lower = user_msg.lower()
        if lower.startswith("generate a survey for:"):
            return json.dumps([
                {"question_text": "How likely are you to recommend this process to a colleague?",
                 "question_type": "nps", "options": {}, "is_required": True,
                 "help_text": "", "section_label": ""},
                {"question_text": "What one change would help most?",
                 "question_type": "open_text", "options": {"variant": "long"}, "is_required": False,
                 "help_text": "", "section_label": ""},
            ])
        if "score" in lower or "assess" in lower or "analy" in lower:
            scores = {"approach": 50, "deployment": 40, "learning": 30, "integration": 35}
            return (
                "```adli-scores\n" + json.dumps(scores) + "\n```\n"
                "Approach is documented; Learning needs a review cadence and measures.\n"
            )
        return "Here is some guidance on strengthening this process.\n"


# ── Gateway ──────────────────────────────────────────────────────────────────

class LLMGateway:
    """
    Routes coach requests to the configured provider.

    Falls back to the local stub when no Anthropic key is configured.
    """

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    def __init__(self, api_key=None, model=None, max_tokens=4096):
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        if api_key:
            self.provider = AnthropicProvider(api_key)
        else:
            self.provider = LocalStubProvider()

    @classmethod
    def from_app(cls, app):
        return cls(
            api_key=app.config.get("ANTHROPIC_API_KEY"),
            model=app.config.get("AI_MODEL"),
            max_tokens=app.config.get("AI_MAX_TOKENS", 4096),
        )

    def stream(self, system: str, messages: list):
        logger.info("LLM stream provider=%s model=%s messages=%d",
                    self.provider.name, self.model, len(messages))
        yield from self.provider.stream(system, messages, self.model, self.max_tokens)

    def chat(self, system: str, messages: list) -> str:
        return "".join(self.stream(system, messages))
