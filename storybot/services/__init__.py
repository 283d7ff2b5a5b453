"""Service layer: chunking, usage accounting, prompt assembly and the chapter workflow."""

from __future__ import annotations

from .chunking import Chunk, chunk_text, label_parts  # noqa: F401
from .usage import UsageCheck, UsageLedger, UsageLimits, estimate_cost, estimate_tokens  # noqa: F401

__all__ = [
    "Chunk",
    "UsageCheck",
    "UsageLedger",
    "UsageLimits",
    "chunk_text",
    "estimate_cost",
    "estimate_tokens",
    "label_parts",
]
