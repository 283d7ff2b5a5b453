"""In-memory state for the single authorized operator.

A :class:`Session` aggregates everything the bot remembers between chat
turns.  It is loaded from and saved to the database by :mod:`storybot.store`
and handed explicitly to the controller and workflow.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .services.usage import UsageLedger

SETUP_WRITING_RULES = "expecting_writing_rules"
SETUP_CHARACTER_SHEET = "expecting_character_sheet"
SETUP_STORY_OUTLINE = "expecting_story_outline"
SETUP_STATES = (SETUP_WRITING_RULES, SETUP_CHARACTER_SHEET, SETUP_STORY_OUTLINE)

_WORD_PATTERN = re.compile(r"\S+")


def count_words(text: str) -> int:
    return len(_WORD_PATTERN.findall(text or ""))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoryBible:
    character_sheet: str
    story_outline: str
    title: Optional[str] = None
    start_date: date = field(default_factory=date.today)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_sheet": self.character_sheet,
            "story_outline": self.story_outline,
            "title": self.title,
            "start_date": self.start_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryBible":
        raw_date = data.get("start_date")
        return cls(
            character_sheet=data.get("character_sheet") or "",
            story_outline=data.get("story_outline") or "",
            title=data.get("title"),
            start_date=date.fromisoformat(raw_date) if raw_date else date.today(),
        )


@dataclass
class Chapter:
    number: int
    version: int
    content: str
    approved: bool = False
    truncated: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    cost: float = 0.0

    @property
    def key(self) -> Tuple[int, int]:
        return (self.number, self.version)

    @property
    def word_count(self) -> int:
        return count_words(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "version": self.version,
            "content": self.content,
            "approved": self.approved,
            "truncated": self.truncated,
            "timestamp": self.timestamp.isoformat(),
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chapter":
        raw_ts = data.get("timestamp")
        return cls(
            number=int(data["number"]),
            version=int(data["version"]),
            content=data.get("content") or "",
            approved=bool(data.get("approved", False)),
            truncated=bool(data.get("truncated", False)),
            timestamp=datetime.fromisoformat(raw_ts) if raw_ts else utcnow(),
            cost=float(data.get("cost", 0.0)),
        )


@dataclass
class ContinuationState:
    chapter_number: int
    pending_version: int
    accumulated_content: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapter_number": self.chapter_number,
            "pending_version": self.pending_version,
            "accumulated_content": self.accumulated_content,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContinuationState":
        return cls(
            chapter_number=int(data["chapter_number"]),
            pending_version=int(data["pending_version"]),
            accumulated_content=data.get("accumulated_content") or "",
        )


@dataclass
class Story:
    bible: Optional[StoryBible] = None
    chapters: List[Chapter] = field(default_factory=list)
    continuation: Optional[ContinuationState] = None
    active_draft: Optional[Tuple[int, int]] = None

    def find(self, number: int, version: int) -> Optional[Chapter]:
        for chapter in self.chapters:
            if chapter.number == number and chapter.version == version and not chapter.approved:
                return chapter
        return None

    def drafts(self, number: Optional[int] = None) -> List[Chapter]:
        return [
            chapter
            for chapter in self.chapters
            if not chapter.approved and (number is None or chapter.number == number)
        ]

    def approved_chapters(self) -> List[Chapter]:
        """Approved chapters ordered by ascending chapter number."""

        return sorted(
            (chapter for chapter in self.chapters if chapter.approved),
            key=lambda chapter: chapter.number,
        )

    def current_draft(self) -> Optional[Chapter]:
        if self.active_draft is None:
            return None
        return self.find(*self.active_draft)

    @property
    def approved_word_count(self) -> int:
        return sum(chapter.word_count for chapter in self.approved_chapters())

    @property
    def title(self) -> Optional[str]:
        return self.bible.title if self.bible else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bible": self.bible.to_dict() if self.bible else None,
            "chapters": [chapter.to_dict() for chapter in self.chapters],
            "continuation": self.continuation.to_dict() if self.continuation else None,
            "active_draft": list(self.active_draft) if self.active_draft else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Story":
        if not data:
            return cls()
        bible = data.get("bible")
        continuation = data.get("continuation")
        active = data.get("active_draft")
        return cls(
            bible=StoryBible.from_dict(bible) if bible else None,
            chapters=[Chapter.from_dict(item) for item in data.get("chapters") or []],
            continuation=ContinuationState.from_dict(continuation) if continuation else None,
            active_draft=(int(active[0]), int(active[1])) if active else None,
        )


@dataclass
class Session:
    operator_id: str
    writing_profile: Optional[str] = None
    story: Story = field(default_factory=Story)
    previous_story: Optional[Story] = None
    setup_state: Optional[str] = None
    pending_character_sheet: Optional[str] = None
    usage: UsageLedger = field(default_factory=UsageLedger)

    @property
    def has_profile(self) -> bool:
        return bool(self.writing_profile)

    @property
    def has_bible(self) -> bool:
        return self.story.bible is not None

    def start_new_story(self) -> Story:
        """Archive the current story and replace it with an empty one."""

        archived = self.story
        if archived.bible is not None:
            self.previous_story = archived
        self.story = Story()
        self.setup_state = None
        self.pending_character_sheet = None
        return archived

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operator_id": self.operator_id,
            "writing_profile": self.writing_profile,
            "story": self.story.to_dict(),
            "previous_story": self.previous_story.to_dict() if self.previous_story else None,
            "setup_state": self.setup_state,
            "pending_character_sheet": self.pending_character_sheet,
            "usage": self.usage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        setup_state = data.get("setup_state")
        previous = data.get("previous_story")
        return cls(
            operator_id=str(data.get("operator_id") or ""),
            writing_profile=data.get("writing_profile"),
            story=Story.from_dict(data.get("story")),
            previous_story=Story.from_dict(previous) if previous else None,
            setup_state=setup_state if setup_state in SETUP_STATES else None,
            pending_character_sheet=data.get("pending_character_sheet"),
            usage=UsageLedger.from_dict(data.get("usage") or {}),
        )
