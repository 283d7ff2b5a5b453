"""Telegram Bot API transport.

Parses inbound updates into :class:`InboundMessage` objects and delivers
outbound text and documents.  Long text is split with
:func:`~storybot.services.chunking.chunk_text` and sent part by part in order.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from .services.chunking import chunk_text, label_parts

LOGGER = logging.getLogger(__name__)

API_ROOT = "https://api.telegram.org"
# Telegram rejects messages above 4096 characters.
HARD_MESSAGE_LIMIT = 4096
# Room kept for the "📄 Part i/N" prefix added to multi-part replies.
PART_LABEL_RESERVE = 32


class TransportError(RuntimeError):
    """Raised when the chat transport cannot deliver or fetch data."""


@dataclass
class InboundDocument:
    file_id: str
    file_name: str = ""
    mime_type: str = ""
    file_size: int = 0


@dataclass
class InboundMessage:
    sender_id: str
    chat_id: str
    text: str = ""
    document: Optional[InboundDocument] = None

    @classmethod
    def from_update(cls, update: Mapping[str, Any]) -> Optional["InboundMessage"]:
        """Build a message from a Telegram ``Update``; ``None`` for other update kinds."""

        message = update.get("message") or update.get("edited_message")
        if not isinstance(message, Mapping):
            return None
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        sender_id = sender.get("id")
        if sender_id is None:
            return None

        document = None
        raw_document = message.get("document")
        if isinstance(raw_document, Mapping) and raw_document.get("file_id"):
            document = InboundDocument(
                file_id=str(raw_document["file_id"]),
                file_name=str(raw_document.get("file_name") or ""),
                mime_type=str(raw_document.get("mime_type") or ""),
                file_size=int(raw_document.get("file_size") or 0),
            )

        return cls(
            sender_id=str(sender_id),
            chat_id=str(chat.get("id", sender_id)),
            text=str(message.get("text") or ""),
            document=document,
        )


class TelegramTransport:
    def __init__(
        self,
        token: str,
        *,
        message_limit: int = 4000,
        chunk_delay: float = 0.5,
        timeout: float = 60.0,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise TransportError("TELEGRAM_TOKEN is not configured.")
        self.token = token
        self.message_limit = max(1, min(message_limit, HARD_MESSAGE_LIMIT - PART_LABEL_RESERVE))
        self.chunk_delay = chunk_delay
        self.timeout = timeout
        self._http = http or requests.Session()
        self._sleep = sleep

    # ---------------- outbound ----------------
    def send_message(self, chat_id: str, text: str) -> None:
        self._call("sendMessage", data={"chat_id": chat_id, "text": text})

    def send_long_message(self, chat_id: str, text: str) -> int:
        """Send ``text`` as one or more labelled parts; returns the number of parts."""

        pieces: List[str] = []
        for chunk in chunk_text(text, self.message_limit):
            if getattr(chunk, "oversized", False):
                pieces.extend(_hard_split(chunk, self.message_limit))
            else:
                pieces.append(chunk)

        parts = label_parts(pieces)
        for index, part in enumerate(parts):
            self.send_message(chat_id, part)
            if index < len(parts) - 1 and self.chunk_delay > 0:
                self._sleep(self.chunk_delay)
        return len(parts)

    def send_document(self, chat_id: str, filename: str, content: bytes, caption: str = "") -> None:
        data: Dict[str, Any] = {"chat_id": chat_id}
        if caption:
            data["caption"] = caption
        self._call("sendDocument", data=data, files={"document": (filename, content, "text/plain")})

    # ---------------- inbound ----------------
    def download_file(self, file_id: str) -> str:
        info = self._call("getFile", data={"file_id": file_id})
        file_path = info.get("file_path") if isinstance(info, Mapping) else None
        if not file_path:
            raise TransportError("Telegram did not return a file path.")

        url = f"{API_ROOT}/file/bot{self.token}/{file_path}"
        try:
            response = self._http.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(f"File download failed: {exc}") from exc
        return response.content.decode("utf-8", errors="replace")

    def get_updates(self, offset: Optional[int] = None, *, poll_timeout: int = 30) -> List[Dict[str, Any]]:
        data: Dict[str, Any] = {"timeout": poll_timeout}
        if offset is not None:
            data["offset"] = offset
        result = self._call("getUpdates", data=data, timeout=poll_timeout + self.timeout)
        return list(result or [])

    # ---------------- internals ----------------
    def _call(self, method: str, *, data: Dict[str, Any], files: Any = None, timeout: Optional[float] = None) -> Any:
        url = f"{API_ROOT}/bot{self.token}/{method}"
        try:
            response = self._http.post(url, data=data, files=files, timeout=timeout or self.timeout)
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.error("Telegram %s failed: %s", method, exc)
            raise TransportError(f"Telegram {method} failed: {exc}") from exc

        if not payload.get("ok"):
            description = payload.get("description") or f"HTTP {response.status_code}"
            LOGGER.error("Telegram %s rejected: %s", method, description)
            raise TransportError(f"Telegram {method} rejected: {description}")
        return payload.get("result")


def _hard_split(text: str, limit: int) -> List[str]:
    limit = max(1, min(limit, HARD_MESSAGE_LIMIT))
    return [text[start:start + limit] for start in range(0, len(text), limit)]


__all__ = ["InboundDocument", "InboundMessage", "TelegramTransport", "TransportError"]
