"""Daily usage caps and approximate cost accounting.

Token counts and costs here are estimates derived from character length,
not billing-accurate figures from the completion provider.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

CHARS_PER_TOKEN = 3
DEFAULT_INPUT_RATE = 0.80
DEFAULT_OUTPUT_RATE = 4.00


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    *,
    input_rate: float = DEFAULT_INPUT_RATE,
    output_rate: float = DEFAULT_OUTPUT_RATE,
) -> float:
    """Return the estimated USD cost; rates are per million tokens."""

    return (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate


@dataclass(frozen=True)
class UsageLimits:
    daily_message_limit: int = 50
    daily_spending_limit: float = 2.00


@dataclass
class UsageCheck:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class UsageLedger:
    day: date = field(default_factory=date.today)
    messages_used: int = 0
    spend_estimate: float = 0.0
    total_chapters: int = 0
    total_words: int = 0
    total_spent: float = 0.0
    stories_completed: int = 0

    def reset_if_new_day(self, today: Optional[date] = None) -> bool:
        """Zero the per-day counters when ``today`` differs from the stored day."""

        today = today or date.today()
        if self.day == today:
            return False
        self.day = today
        self.messages_used = 0
        self.spend_estimate = 0.0
        return True

    def check_allowed(self, limits: UsageLimits, *, today: Optional[date] = None) -> UsageCheck:
        self.reset_if_new_day(today)

        if self.messages_used >= limits.daily_message_limit:
            return UsageCheck(
                False,
                f"Daily message limit reached ({limits.daily_message_limit}). Resets at midnight.",
            )
        if self.spend_estimate >= limits.daily_spending_limit:
            return UsageCheck(
                False,
                f"Daily spending limit reached (${limits.daily_spending_limit:.2f}). Resets at midnight.",
            )
        return UsageCheck(True)

    def record(self, cost: float, message_count: int = 1, *, today: Optional[date] = None) -> None:
        self.reset_if_new_day(today)
        self.messages_used += message_count
        self.spend_estimate += cost
        self.total_spent += cost

    def remaining(self, limits: UsageLimits) -> Dict[str, Any]:
        return {
            "messages": max(0, limits.daily_message_limit - self.messages_used),
            "spending": max(0.0, limits.daily_spending_limit - self.spend_estimate),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "messages_used": self.messages_used,
            "spend_estimate": self.spend_estimate,
            "total_chapters": self.total_chapters,
            "total_words": self.total_words,
            "total_spent": self.total_spent,
            "stories_completed": self.stories_completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLedger":
        raw_day = data.get("day")
        return cls(
            day=date.fromisoformat(raw_day) if raw_day else date.today(),
            messages_used=int(data.get("messages_used", 0)),
            spend_estimate=float(data.get("spend_estimate", 0.0)),
            total_chapters=int(data.get("total_chapters", 0)),
            total_words=int(data.get("total_words", 0)),
            total_spent=float(data.get("total_spent", 0.0)),
            stories_completed=int(data.get("stories_completed", 0)),
        )


__all__ = [
    "UsageCheck",
    "UsageLedger",
    "UsageLimits",
    "estimate_cost",
    "estimate_tokens",
]
