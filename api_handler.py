# api_handler.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3.5-haiku"


class CompletionError(RuntimeError):
    """Raised when the completion service fails or returns no text."""


class CompletionRateLimitError(CompletionError):
    """Raised when the completion service reports a rate limit condition."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or "The completion service rate limit has been exceeded. Please try again shortly."
        )


@dataclass
class CompletionResult:
    text: str
    finish_reason: Optional[str] = None


class CompletionClient:
    """
    Chat Completions wrapper for OpenAI-compatible providers (OpenRouter by default).

    Every request is a single user-role message plus a ``max_tokens`` cap.
    Compatible with OpenAI Python SDK >= 1.0.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model_name: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        default_max_tokens: int = 4000,
        referer: Optional[str] = None,
        app_title: Optional[str] = None,
    ) -> None:
        self.model_name = (model_name or "").strip() or DEFAULT_MODEL
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise CompletionError("An API key is required to reach the completion service.")
        self.default_max_tokens = int(default_max_tokens or 4000)

        headers: Dict[str, str] = {}
        if referer:
            headers["HTTP-Referer"] = referer
        if app_title:
            headers["X-Title"] = app_title
        self._client = openai.OpenAI(
            api_key=self.api_key,
            base_url=base_url or DEFAULT_BASE_URL,
            default_headers=headers or None,
        )

    # ---------------- public API ----------------
    def complete(self, prompt: str, *, max_tokens: Optional[int] = None) -> CompletionResult:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_tokens if max_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive.")

        try:
            resp = self._client.chat.completions.create(
                model=self.model_name,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
            )
        except openai.RateLimitError as exc:
            raise CompletionRateLimitError() from exc
        except openai.OpenAIError as exc:
            LOGGER.error("Completion request to %s failed: %s", self.model_name, exc)
            raise CompletionError(f"Completion request failed: {exc}") from exc

        text = self._extract_text_from_chat(resp)
        if not text.strip():
            snippet = self._shorten_debug(str(resp))
            raise CompletionError(f"Chat completion returned no text. Raw response (truncated): {snippet}")
        return CompletionResult(text=text, finish_reason=self._extract_finish_reason(resp))

    def signature(self) -> tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    # ---------------- extractors ----------------
    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or "")

    def _extract_finish_reason(self, resp: Any) -> Optional[str]:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return None
        reason = getattr(choices[0], "finish_reason", None)
        return str(reason) if reason else None

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s
