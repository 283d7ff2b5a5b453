"""Central configuration for the prompt text sent to the completion service."""

from __future__ import annotations

SYSTEM_PROMPTS = {
    "context": {
        "writing_rules": (
            "WRITING RULES (MANDATORY, NON-NEGOTIABLE, ALWAYS FOLLOW THESE):\n"
            "{writing_rules}"
        ),
        "characters": "CHARACTER SHEET:\n{character_sheet}",
        "outline_section": "STORY OUTLINE FOR CHAPTER {chapter_number}:\n{outline}",
        "outline_full": "STORY OUTLINE:\n{outline}",
        "recent_chapters": "RECENT CHAPTERS FOR CONTEXT:",
        "recent_chapter": "Chapter {chapter_number}:\n{content}",
        "continuation": (
            "PARTIAL CHAPTER {chapter_number} WRITTEN SO FAR:\n"
            "{content}\n\n"
            "The text above was cut off. Continue it from the exact point where it stops. "
            "Do not repeat any of it, do not summarise it, and do not restart the chapter."
        ),
    },
    "write_chapter": {
        "instructions": (
            "Write Chapter {chapter_number} of this story. Make it approximately {target_words} words.\n\n"
            "Write engaging, immersive fiction that continues the story naturally. Focus on character "
            "development, dialogue, and moving the plot forward according to the story outline and "
            "writing rules provided above."
        ),
    },
    "revise_chapter": {
        "instructions": (
            "Revise this chapter based on the user's feedback: \"{feedback}\"\n\n"
            "CURRENT CHAPTER TO REVISE:\n{content}\n\n"
            "Rewrite the entire chapter incorporating the feedback while following all writing rules "
            "and story guidelines. Keep it approximately {target_words} words."
        ),
    },
    "continue_chapter": {
        "instructions": (
            "Continue Chapter {chapter_number} seamlessly from where the partial text ends. "
            "Output only the new prose that comes next."
        ),
    },
}


def get_prompt_text(name: str, key: str = "instructions") -> str:
    """Return the configured text for ``name``/``key`` or an empty string."""

    entry = SYSTEM_PROMPTS.get(name)
    if not isinstance(entry, dict):
        return ""
    value = entry.get(key)
    return value if isinstance(value, str) else ""
