"""Deterministic assembly of completion-request text.

The order of the sections matters: the writing rules always come first so
they read as the highest-priority context, and continuation framing always
sits directly before the task instruction.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from system_prompts import get_prompt_text

from ..session import Chapter, ContinuationState, StoryBible

TASK_WRITE = "write_chapter"
TASK_REVISE = "revise_chapter"
TASK_CONTINUE = "continue_chapter"

_CHAPTER_DELIMITER = re.compile(r"^[ \t]*###[ \t]*Chapter[ \t]*(\d+)\b", re.IGNORECASE | re.MULTILINE)


@dataclass
class PromptTask:
    """The trailing instruction of a prompt and the values it is formatted with."""

    name: str
    chapter_number: int
    target_words: int = 0
    feedback: str = ""
    content: str = ""

    def render(self) -> str:
        template = get_prompt_text(self.name)
        if not template:
            raise ValueError(f"No prompt instructions configured for '{self.name}'.")
        return template.format(
            chapter_number=self.chapter_number,
            target_words=self.target_words,
            feedback=self.feedback,
            content=self.content,
        ).strip()


def extract_outline_section(outline: str, chapter_number: int) -> Optional[str]:
    """Return the ``###Chapter N`` section of ``outline`` or ``None`` if absent.

    The section runs from its delimiter up to the next chapter delimiter or
    the end of the outline.
    """

    delimiters = list(_CHAPTER_DELIMITER.finditer(outline or ""))
    for index, match in enumerate(delimiters):
        if int(match.group(1)) != chapter_number:
            continue
        end = delimiters[index + 1].start() if index + 1 < len(delimiters) else len(outline)
        return outline[match.start():end].strip()
    return None


def count_outline_chapters(outline: str) -> int:
    """Number of distinct chapters the outline plans via ``###Chapter N``."""

    return len({int(match.group(1)) for match in _CHAPTER_DELIMITER.finditer(outline or "")})


def build_prompt(
    profile: str,
    bible: StoryBible,
    task: PromptTask,
    *,
    chapter_number: Optional[int] = None,
    recent_chapters: Iterable[Chapter] = (),
    continuation: Optional[ContinuationState] = None,
) -> str:
    """Concatenate rules, story material, context and the task instruction."""

    sections: List[str] = []

    if profile:
        sections.append(get_prompt_text("context", "writing_rules").format(writing_rules=profile.strip()))

    if bible.character_sheet:
        sections.append(
            get_prompt_text("context", "characters").format(character_sheet=bible.character_sheet.strip())
        )

    if chapter_number is not None and bible.story_outline:
        section = extract_outline_section(bible.story_outline, chapter_number)
        if section is not None:
            sections.append(
                get_prompt_text("context", "outline_section").format(
                    chapter_number=chapter_number, outline=section
                )
            )
        else:
            sections.append(
                get_prompt_text("context", "outline_full").format(outline=bible.story_outline.strip())
            )

    ordered = sorted(recent_chapters, key=lambda chapter: chapter.number)
    if ordered:
        lines = [get_prompt_text("context", "recent_chapters")]
        for chapter in ordered:
            lines.append(
                get_prompt_text("context", "recent_chapter").format(
                    chapter_number=chapter.number, content=chapter.content.strip()
                )
            )
        sections.append("\n\n".join(lines))

    if continuation is not None:
        sections.append(
            get_prompt_text("context", "continuation").format(
                chapter_number=continuation.chapter_number,
                content=continuation.accumulated_content,
            )
        )

    sections.append(task.render())
    return "\n\n".join(sections)


__all__ = [
    "PromptTask",
    "TASK_CONTINUE",
    "TASK_REVISE",
    "TASK_WRITE",
    "build_prompt",
    "count_outline_chapters",
    "extract_outline_section",
]
