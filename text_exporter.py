"""Helpers for exporting approved chapters to a plain text manuscript."""
from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_TITLE = "My Novel"


class TextExportError(RuntimeError):
    """Raised when exporting data to a text file fails."""


def _clean(value: Optional[str]) -> str:
    """Return ``value`` stripped of leading/trailing whitespace."""

    if not value:
        return ""
    return str(value).strip()


def _word_count(text: str) -> int:
    return len(text.split())


def export_filename(title: Optional[str], *, today: Optional[date] = None) -> str:
    """Return ``<sanitized title>_<YYYY-MM-DD>.txt``."""

    safe_title = re.sub(r"[^a-zA-Z0-9]", "_", _clean(title) or DEFAULT_TITLE)
    return f"{safe_title}_{(today or date.today()).isoformat()}.txt"


def build_story_text(
    title: Optional[str],
    chapters: Iterable[object],
    *,
    start_date: Optional[date] = None,
    total_spent: float = 0.0,
    exported_on: Optional[date] = None,
) -> str:
    """Return the manuscript text for ``chapters`` in ascending chapter order."""

    ordered = sorted(chapters, key=lambda chapter: getattr(chapter, "number", 0))
    if not ordered:
        raise TextExportError("No approved chapters to export.")

    story_title = _clean(title) or DEFAULT_TITLE
    lines: list[str] = [f"# {story_title}", ""]

    if start_date:
        lines.extend(
            [
                f"*Started: {start_date.isoformat()}*",
                f"*Exported: {(exported_on or date.today()).isoformat()}*",
                "",
                "---",
                "",
            ]
        )

    total_words = 0
    for chapter in ordered:
        content = _clean(getattr(chapter, "content", ""))
        total_words += _word_count(content)
        lines.extend(
            [
                f"## Chapter {getattr(chapter, 'number', '?')}",
                "",
                content or "(No chapter text available.)",
                "",
                "---",
                "",
            ]
        )

    lines.extend(
        [
            "",
            "*Generated with AI assistance*",
            f"*{len(ordered)} chapters, {total_words:,} words*",
            f"*Total cost: ${total_spent:.4f}*",
        ]
    )
    return "\n".join(lines).rstrip() + "\n"


def export_story_to_txt(
    title: Optional[str],
    chapters: Iterable[object],
    *,
    output_path: Path,
    start_date: Optional[date] = None,
    total_spent: float = 0.0,
) -> Path:
    """Write the manuscript for ``chapters`` to a UTF-8 encoded text file."""

    text_blob = build_story_text(title, chapters, start_date=start_date, total_spent=total_spent)
    resolved_path = Path(output_path)

    try:
        resolved_path.write_text(text_blob, encoding="utf-8")
    except OSError as exc:  # pragma: no cover - IO failure
        raise TextExportError(f"Unable to export TXT file: {exc}") from exc

    return resolved_path


__all__ = ["TextExportError", "build_story_text", "export_filename", "export_story_to_txt"]
