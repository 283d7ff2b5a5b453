"""Chapter drafting state machine: write, continue, revise and approve.

Each transition validates its preconditions, calls the completion service,
and only then mutates the story, so a failed call never leaves a partial
version behind.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, List, Optional

from ..session import Chapter, ContinuationState, Session, Story, utcnow
from .prompt_assembly import TASK_CONTINUE, TASK_REVISE, TASK_WRITE, PromptTask, build_prompt
from .usage import estimate_cost, estimate_tokens

LOGGER = logging.getLogger(__name__)

SERVICE_UNAVAILABLE_MESSAGE = "AI service temporarily unavailable. Please try again in a moment."


class WorkflowError(RuntimeError):
    """Base class for errors reported back to the operator."""


class PreconditionError(WorkflowError):
    """Raised when a command cannot run in the current state."""


class NoActiveContinuationError(PreconditionError):
    """Raised when ``/continue`` is used without a truncated draft."""


class CompletionServiceError(WorkflowError):
    """Raised when the completion service call fails; safe to retry."""


@dataclass(frozen=True)
class WorkflowSettings:
    max_output_tokens: int = 4000
    truncation_ratio: float = 0.94
    recent_chapter_count: int = 3
    target_words: int = 3000
    input_rate: float = 0.80
    output_rate: float = 4.00

    @property
    def truncation_threshold(self) -> int:
        return int(self.max_output_tokens * self.truncation_ratio)


@dataclass
class ChapterResult:
    chapter: Chapter
    new_text: str
    cost: float
    input_tokens: int
    output_tokens: int

    @property
    def truncated(self) -> bool:
        return self.chapter.truncated


@dataclass
class _Completion:
    text: str
    cost: float
    input_tokens: int
    output_tokens: int
    truncated: bool


class ChapterWorkflow:
    """Drive chapter versions for the active story of ``session``.

    ``client`` is anything with ``complete(prompt, max_tokens=...)`` returning
    an object with ``text`` and ``finish_reason`` attributes.
    """

    def __init__(
        self,
        session: Session,
        client: Any,
        settings: Optional[WorkflowSettings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.client = client
        self.settings = settings or WorkflowSettings()
        self._clock = clock

    @property
    def story(self) -> Story:
        return self.session.story

    # ---------------- transitions ----------------
    def write_chapter(self, number: int) -> ChapterResult:
        if number < 1:
            raise PreconditionError("Please specify chapter number: /write_chapter 1")
        self.require_setup()

        recent = self._recent_approved(before=number)
        prompt = build_prompt(
            self.session.writing_profile or "",
            self.story.bible,
            PromptTask(TASK_WRITE, number, target_words=self.settings.target_words),
            chapter_number=number,
            recent_chapters=recent,
        )
        completion = self._complete(prompt, f"write chapter {number}")

        story = self.story
        story.continuation = None
        story.chapters = [c for c in story.chapters if c.approved or c.number != number]
        chapter = self._add_version(number, 1, completion.text, completion)
        return self._result(chapter, completion)

    def continue_chapter(self) -> ChapterResult:
        continuation = self.story.continuation
        if continuation is None:
            raise NoActiveContinuationError(
                "Nothing to continue. /continue only works right after a chapter was cut off."
            )
        self.require_setup()

        number = continuation.chapter_number
        prompt = build_prompt(
            self.session.writing_profile or "",
            self.story.bible,
            PromptTask(TASK_CONTINUE, number),
            chapter_number=number,
            continuation=continuation,
        )
        completion = self._complete(prompt, f"continue chapter {number}")

        previous = self.story.find(number, continuation.pending_version)
        prior_cost = previous.cost if previous else 0.0
        content = continuation.accumulated_content + completion.text
        chapter = self._add_version(
            number,
            self._next_version(number),
            content,
            completion,
            cost=prior_cost + completion.cost,
        )
        return self._result(chapter, completion)

    def revise(self, feedback: str) -> ChapterResult:
        feedback = (feedback or "").strip()
        if not feedback:
            raise PreconditionError("Please provide feedback: /feedback [your detailed feedback]")
        draft = self.story.current_draft()
        if draft is None:
            raise PreconditionError("No chapter to revise. Use /write_chapter [number] first.")
        self.require_setup()

        prompt = build_prompt(
            self.session.writing_profile or "",
            self.story.bible,
            PromptTask(
                TASK_REVISE,
                draft.number,
                target_words=self.settings.target_words,
                feedback=feedback,
                content=draft.content,
            ),
            chapter_number=draft.number,
        )
        completion = self._complete(prompt, f"revise chapter {draft.number}")

        self.story.continuation = None
        chapter = self._add_version(
            draft.number, self._next_version(draft.number), completion.text, completion
        )
        return self._result(chapter, completion)

    def approve(self) -> Chapter:
        story = self.story
        draft = story.current_draft()
        if draft is None:
            raise PreconditionError("No chapter to approve. Use /write_chapter [number] first.")

        approved = replace(draft, approved=True, timestamp=self._clock())
        story.chapters = [c for c in story.chapters if c.number != draft.number]
        story.chapters.append(approved)
        story.continuation = None

        remaining = story.drafts()
        story.active_draft = remaining[-1].key if remaining else None

        usage = self.session.usage
        usage.total_chapters += 1
        usage.total_words += approved.word_count
        LOGGER.info("Chapter %d approved (v%d, %d words)", approved.number, approved.version, approved.word_count)
        return approved

    # ---------------- helpers ----------------
    def require_setup(self) -> None:
        if not self.session.has_profile:
            raise PreconditionError("No writing rules set! Use /setup_rules first.")
        if not self.session.has_bible:
            raise PreconditionError("No story bible set! Use /setup_story first.")

    def _recent_approved(self, *, before: int) -> List[Chapter]:
        count = self.settings.recent_chapter_count
        if count <= 0:
            return []
        earlier = [c for c in self.story.approved_chapters() if c.number < before]
        return earlier[-count:]

    def _next_version(self, number: int) -> int:
        versions = [c.version for c in self.story.drafts(number)]
        return max(versions, default=0) + 1

    def _complete(self, prompt: str, purpose: str) -> _Completion:
        input_tokens = estimate_tokens(prompt)
        try:
            result = self.client.complete(prompt, max_tokens=self.settings.max_output_tokens)
        except Exception as exc:  # any client failure is transient for the operator
            LOGGER.warning("Completion failed while trying to %s: %s", purpose, exc)
            raise CompletionServiceError(SERVICE_UNAVAILABLE_MESSAGE) from exc

        text = getattr(result, "text", "") or ""
        output_tokens = estimate_tokens(text)
        cost = estimate_cost(
            input_tokens,
            output_tokens,
            input_rate=self.settings.input_rate,
            output_rate=self.settings.output_rate,
        )
        truncated = (
            getattr(result, "finish_reason", None) == "length"
            or output_tokens > self.settings.truncation_threshold
        )
        self.session.usage.record(cost)
        LOGGER.info(
            "Completion for %s: ~%d in / ~%d out tokens, $%.4f%s",
            purpose,
            input_tokens,
            output_tokens,
            cost,
            " (truncated)" if truncated else "",
        )
        return _Completion(text, cost, input_tokens, output_tokens, truncated)

    def _add_version(
        self,
        number: int,
        version: int,
        content: str,
        completion: _Completion,
        *,
        cost: Optional[float] = None,
    ) -> Chapter:
        story = self.story
        chapter = Chapter(
            number=number,
            version=version,
            content=content,
            truncated=completion.truncated,
            timestamp=self._clock(),
            cost=completion.cost if cost is None else cost,
        )
        story.chapters.append(chapter)
        story.active_draft = chapter.key
        if completion.truncated:
            story.continuation = ContinuationState(number, version, content)
        else:
            story.continuation = None
        return chapter

    @staticmethod
    def _result(chapter: Chapter, completion: _Completion) -> ChapterResult:
        return ChapterResult(
            chapter=chapter,
            new_text=completion.text,
            cost=completion.cost,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )


__all__ = [
    "ChapterResult",
    "ChapterWorkflow",
    "CompletionServiceError",
    "NoActiveContinuationError",
    "PreconditionError",
    "SERVICE_UNAVAILABLE_MESSAGE",
    "WorkflowError",
    "WorkflowSettings",
]
