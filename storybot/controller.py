"""Command dispatch for the single authorized operator.

:class:`SessionController` authorizes each inbound message, gates it against
the daily usage caps, routes setup input into the pending slot and delegates
chapter commands to :class:`~storybot.services.chapter_workflow.ChapterWorkflow`.
Every reply goes through the transport; long replies are chunked there.
"""
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from text_exporter import TextExportError, build_story_text, export_filename

from .services.chapter_workflow import (
    ChapterResult,
    ChapterWorkflow,
    PreconditionError,
    WorkflowError,
    WorkflowSettings,
)
from .services.prompt_assembly import count_outline_chapters
from .services.usage import UsageLimits
from .session import (
    SETUP_CHARACTER_SHEET,
    SETUP_STORY_OUTLINE,
    SETUP_WRITING_RULES,
    Session,
    Story,
    StoryBible,
)
from .store import load_session, save_session
from .transport import InboundDocument, InboundMessage, TransportError

LOGGER = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "🚫 This bot is private. Access denied."
UNGATED_PREFIXES = ("/setup", "/start", "/help")

_COMMAND_PATTERN = re.compile(r"(/\S+)\s*(.*)", re.DOTALL)


class UploadValidationError(ValueError):
    """Raised when an uploaded document is not an acceptable text file."""


@dataclass(frozen=True)
class ControllerSettings:
    authorized_user_id: str = ""
    limits: UsageLimits = field(default_factory=UsageLimits)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    max_upload_bytes: int = 1024 * 1024

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ControllerSettings":
        return cls(
            authorized_user_id=str(config.get("AUTHORIZED_USER_ID") or "").strip(),
            limits=UsageLimits(
                daily_message_limit=int(config.get("DAILY_MESSAGE_LIMIT", 50)),
                daily_spending_limit=float(config.get("DAILY_SPENDING_LIMIT", 2.00)),
            ),
            workflow=WorkflowSettings(
                max_output_tokens=int(config.get("MAX_OUTPUT_TOKENS", 4000)),
                truncation_ratio=float(config.get("TRUNCATION_RATIO", 0.94)),
                recent_chapter_count=int(config.get("RECENT_CHAPTER_COUNT", 3)),
                target_words=int(config.get("TARGET_CHAPTER_WORDS", 3000)),
                input_rate=float(config.get("INPUT_COST_PER_MILLION", 0.80)),
                output_rate=float(config.get("OUTPUT_COST_PER_MILLION", 4.00)),
            ),
            max_upload_bytes=int(config.get("MAX_UPLOAD_BYTES", 1024 * 1024)),
        )


def parse_command(text: str) -> Tuple[Optional[str], str]:
    """Split ``/command@bot args`` into (``/command``, ``args``); non-commands give ``None``."""

    stripped = (text or "").strip()
    match = _COMMAND_PATTERN.match(stripped)
    if match is None:
        return None, stripped
    command = match.group(1).split("@", 1)[0].lower()
    return command, match.group(2).strip()


def validate_upload(document: InboundDocument, max_bytes: int) -> None:
    name = (document.file_name or "").lower()
    if not name.endswith(".txt") and document.mime_type != "text/plain":
        raise UploadValidationError("Please upload a .txt file only.")
    if document.file_size > max_bytes:
        raise UploadValidationError(
            f"File too large. Please keep uploads under {max_bytes // 1024} KB."
        )


def build_status_snapshot(session: Session, limits: UsageLimits) -> Dict[str, Any]:
    """Read-only summary of usage, totals and setup completeness."""

    story = session.story
    usage = session.usage
    return {
        "status": "Fiction Bot Online",
        "dailyStats": {
            "date": usage.day.isoformat(),
            "messagesUsed": usage.messages_used,
            "estimatedSpending": round(usage.spend_estimate, 6),
            "messageLimit": limits.daily_message_limit,
            "spendingLimit": limits.daily_spending_limit,
        },
        "userStats": {
            "totalChapters": usage.total_chapters,
            "totalWords": usage.total_words,
            "totalSpent": round(usage.total_spent, 6),
            "storiesCompleted": usage.stories_completed,
        },
        "currentStory": {
            "hasRules": session.has_profile,
            "hasBible": session.has_bible,
            "title": story.title,
            "chaptersApproved": len(story.approved_chapters()),
            "activeDraft": list(story.active_draft) if story.active_draft else None,
            "awaitingContinuation": story.continuation is not None,
        },
    }


class _LazyClient:
    # Builds the completion client on first use so commands that never call
    # the service work without one configured.
    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory
        self._client: Any = None

    def complete(self, prompt: str, **kwargs: Any) -> Any:
        if self._client is None:
            self._client = self._factory()
        return self._client.complete(prompt, **kwargs)


class SessionController:
    """Handle one inbound message at a time per operator."""

    def __init__(
        self,
        transport: Any,
        client_factory: Callable[[], Any],
        settings: ControllerSettings,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.transport = transport
        self.client_factory = client_factory
        self.settings = settings
        self._today = today
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._commands: Dict[str, Callable[[Session, InboundMessage, str], None]] = {
            "/start": self._cmd_start,
            "/help": self._cmd_help,
            "/setup_rules": self._cmd_setup_rules,
            "/update_rules": self._cmd_setup_rules,
            "/setup_story": self._cmd_setup_story,
            "/new_story": self._cmd_new_story,
            "/set_title": self._cmd_set_title,
            "/write_chapter": self._cmd_write_chapter,
            "/continue": self._cmd_continue,
            "/feedback": self._cmd_feedback,
            "/revise": self._cmd_feedback,
            "/approved": self._cmd_approve,
            "/approve": self._cmd_approve,
            "/status": self._cmd_status,
            "/export": self._cmd_export,
            "/export_previous": self._cmd_export_previous,
        }

    # ---------------- entry point ----------------
    def is_authorized(self, sender_id: str) -> bool:
        expected = self.settings.authorized_user_id
        return bool(expected) and str(sender_id).strip() == expected

    def handle(self, message: InboundMessage) -> None:
        if not self.is_authorized(message.sender_id):
            LOGGER.warning("Rejected message from unauthorized sender %s", message.sender_id)
            self._try_reply(message, ACCESS_DENIED_MESSAGE)
            return

        with self._lock_for(message.sender_id):
            session = load_session(message.sender_id)
            try:
                self._dispatch(session, message)
            except TransportError as exc:
                # Completed work and its usage are kept even when the reply is lost.
                LOGGER.error("Reply to %s could not be delivered: %s", message.chat_id, exc)
            except Exception:
                LOGGER.exception("Unhandled error while processing %r", message.text[:80])
                self._try_reply(message, "❌ Something went wrong. Please try again.")
                return
            save_session(session)

    # ---------------- dispatch ----------------
    def _dispatch(self, session: Session, message: InboundMessage) -> None:
        text = (message.text or "").strip()
        command, args = parse_command(text)

        if not text.startswith(UNGATED_PREFIXES):
            check = session.usage.check_allowed(self.settings.limits, today=self._today())
            if not check.allowed:
                self._reply(message, f"⛔ {check.reason}")
                return

        if message.document is not None:
            self._handle_upload(session, message)
            return

        if session.setup_state and command is None:
            if not text:
                self._reply(message, "❌ Please paste the text or upload a .txt file.")
                return
            self._apply_setup_content(session, message, text)
            return

        if command is None:
            self._reply(message, "🤔 I didn't understand that command. Use /help to see available commands.")
            return

        handler = self._commands.get(command)
        if handler is None:
            self._reply(message, "❌ Unknown command. Use /help to see all available commands.")
            return

        try:
            handler(session, message, args)
        except WorkflowError as exc:
            self._reply(message, f"❌ {exc}")

    def _lock_for(self, operator_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(str(operator_id), threading.Lock())

    def _reply(self, message: InboundMessage, text: str) -> None:
        self.transport.send_long_message(message.chat_id, text)

    def _try_reply(self, message: InboundMessage, text: str) -> None:
        try:
            self._reply(message, text)
        except TransportError as exc:
            LOGGER.error("Reply to %s could not be delivered: %s", message.chat_id, exc)

    def _workflow(self, session: Session) -> ChapterWorkflow:
        return ChapterWorkflow(session, _LazyClient(self.client_factory), self.settings.workflow)

    # ---------------- setup input ----------------
    def _handle_upload(self, session: Session, message: InboundMessage) -> None:
        document = message.document
        if not session.setup_state:
            self._reply(
                message,
                "❌ I'm not expecting a file right now. Use /setup_rules or /setup_story first.",
            )
            return

        try:
            validate_upload(document, self.settings.max_upload_bytes)
        except UploadValidationError as exc:
            self._reply(message, f"❌ {exc}")
            return

        try:
            content = self.transport.download_file(document.file_id)
        except TransportError as exc:
            LOGGER.error("File download error for %s: %s", document.file_name, exc)
            self._reply(message, "❌ Error reading file. Please try uploading again.")
            return

        if not content.strip():
            self._reply(message, "❌ That file is empty. Please upload a file with some text.")
            return
        self._apply_setup_content(session, message, content, file_name=document.file_name)

    def _apply_setup_content(
        self,
        session: Session,
        message: InboundMessage,
        content: str,
        *,
        file_name: Optional[str] = None,
    ) -> None:
        source = f"\n\n📁 File: {file_name}" if file_name else ""
        state = session.setup_state

        if state == SETUP_WRITING_RULES:
            session.writing_profile = content
            session.setup_state = None
            self._reply(
                message,
                f"✅ Writing rules saved! ({len(content)} characters){source}\n\n"
                "Your universal writing rules will now be included with every chapter request.\n\n"
                "Next step: /setup_story to set up your story.",
            )
            return

        if state == SETUP_CHARACTER_SHEET:
            session.pending_character_sheet = content
            session.setup_state = SETUP_STORY_OUTLINE
            self._reply(
                message,
                f"✅ Character sheet saved! ({len(content)} characters){source}\n\n"
                "Now paste (or upload) your story outline. Start each chapter's section with "
                "###Chapter N so I can find it when writing that chapter.",
            )
            return

        if state == SETUP_STORY_OUTLINE:
            previous_title = session.story.title
            session.story.bible = StoryBible(
                character_sheet=session.pending_character_sheet or "",
                story_outline=content,
                title=previous_title,
                start_date=self._today(),
            )
            session.pending_character_sheet = None
            session.setup_state = None
            planned = count_outline_chapters(content)
            self._reply(
                message,
                f"✅ Story outline saved! ({len(content)} characters, {planned} chapters planned){source}\n\n"
                "Your story is ready! Here's what happens next:\n\n"
                "1. Optional: /set_title [Your Story Title]\n"
                "2. Start writing: /write_chapter 1\n"
                "3. Revise if needed: /feedback [your feedback]\n"
                "4. If a chapter gets cut off: /continue\n"
                "5. Approve: /approved\n"
                "6. Continue: /write_chapter 2",
            )

    # ---------------- commands ----------------
    def _cmd_start(self, session: Session, message: InboundMessage, args: str) -> None:
        limits = self.settings.limits
        self._reply(
            message,
            "🎭 Welcome to Your Personal Fiction Writing Bot!\n\n"
            "🔥 Setup Commands (Do These First):\n"
            "• /setup_rules - Set your universal writing style\n"
            "• /setup_story - Set up your characters and outline\n\n"
            "✍️ Writing Commands:\n"
            "• /write_chapter [number] - Write a new chapter\n"
            "• /continue - Keep writing a chapter that was cut off\n"
            "• /feedback [feedback] - Revise current chapter\n"
            "• /approved - Approve current chapter as final\n\n"
            "📊 Management Commands:\n"
            "• /status - Check progress and daily usage\n"
            "• /export - Download current story\n"
            "• /new_story - Start a completely new story\n"
            "• /set_title [title] - Set your story's title\n\n"
            "🛡️ Safety Features:\n"
            "• Only you can use this bot\n"
            f"• ${limits.daily_spending_limit:.2f}/day spending limit (resets at midnight)\n"
            f"• {limits.daily_message_limit} messages/day limit\n\n"
            "Ready? Start with /setup_rules!",
        )

    def _cmd_help(self, session: Session, message: InboundMessage, args: str) -> None:
        session.usage.reset_if_new_day(self._today())
        remaining = session.usage.remaining(self.settings.limits)
        self._reply(
            message,
            "🎭 Fiction Writing Bot Commands\n\n"
            "🔧 Setup (Do Once):\n"
            "• /setup_rules - Your universal writing style\n"
            "• /setup_story - Current story's characters, then outline\n\n"
            "✍️ Writing Workflow:\n"
            "• /write_chapter [number] - Write new chapter\n"
            "• /continue - Continue a chapter cut off by the length limit\n"
            "• /feedback [detailed feedback] - Revise current chapter\n"
            "• /approved - Mark current chapter as final\n\n"
            "📊 Management:\n"
            "• /status - Progress and daily usage\n"
            "• /export - Download current story\n"
            "• /export_previous - Download the previous story\n"
            "• /new_story - Start fresh story (keeps writing rules)\n"
            "• /set_title [title] - Set story title\n\n"
            "💡 Example Workflow:\n"
            "1. /write_chapter 1\n"
            "2. /feedback add more internal monologue and slow down the first scene\n"
            "3. /approved\n"
            "4. /write_chapter 2\n\n"
            f"🛡️ Safety: {remaining['messages']} messages left today.",
        )

    def _cmd_setup_rules(self, session: Session, message: InboundMessage, args: str) -> None:
        session.setup_state = SETUP_WRITING_RULES
        overwrite = "\n\nThis will replace your current rules." if session.has_profile else ""
        self._reply(
            message,
            "📝 Set Your Universal Writing Rules\n\n"
            "These rules will be sent to the AI with EVERY chapter request across ALL stories.\n\n"
            "Include your preferred style, dialogue preferences, pacing, POV, tone and any techniques "
            "you want used.\n\n"
            f"Paste your complete writing rules in your next message, or upload a .txt file.{overwrite}",
        )

    def _cmd_setup_story(self, session: Session, message: InboundMessage, args: str) -> None:
        if not session.has_profile:
            raise PreconditionError("Please set up your writing rules first with /setup_rules")
        session.setup_state = SETUP_CHARACTER_SHEET
        session.pending_character_sheet = None
        self._reply(
            message,
            "📚 Set Up Your Story\n\n"
            "Step 1 of 2: paste your character sheet (descriptions, motivations, relationships), "
            "or upload it as a .txt file.\n\n"
            "Step 2 will ask for the chapter outline.",
        )

    def _cmd_new_story(self, session: Session, message: InboundMessage, args: str) -> None:
        if not session.has_profile:
            raise PreconditionError(
                "Set up writing rules first with /setup_rules, then use /setup_story for your first story."
            )

        story = session.story
        approved = story.approved_chapters()
        if story.bible is not None and approved:
            session.usage.stories_completed += 1
            started = story.bible.start_date.isoformat()
            self._reply(
                message,
                "📚 Previous story archived!\n\n"
                "📊 Final Stats:\n"
                f"• Chapters completed: {len(approved)}\n"
                f"• Story started: {started}\n"
                f"• Words written: {story.approved_word_count:,}\n\n"
                "Use /export_previous if you want to download it.",
            )

        session.start_new_story()
        self._reply(
            message,
            "🆕 Ready for New Story!\n\n"
            "Your writing rules are preserved and will be used for the new story.\n\n"
            "Next step: /setup_story to add your characters and outline.",
        )

    def _cmd_set_title(self, session: Session, message: InboundMessage, args: str) -> None:
        title = args.strip()
        if not title:
            raise PreconditionError("Please provide a title: /set_title My Amazing Story")
        if session.story.bible is None:
            raise PreconditionError("No story set up yet! Use /setup_story first.")
        session.story.bible.title = title
        self._reply(message, f'✅ Story title set to: "{title}"')

    def _cmd_write_chapter(self, session: Session, message: InboundMessage, args: str) -> None:
        token = args.split()[0] if args.split() else ""
        try:
            number = int(token)
        except ValueError:
            number = 0
        if number < 1:
            raise PreconditionError("Please specify chapter number: /write_chapter 1")

        workflow = self._workflow(session)
        workflow.require_setup()
        self._reply(message, f"🤖 Writing Chapter {number}... This may take 30-60 seconds.")
        result = workflow.write_chapter(number)
        self._send_chapter(message, result)

    def _cmd_continue(self, session: Session, message: InboundMessage, args: str) -> None:
        continuation = session.story.continuation
        workflow = self._workflow(session)
        if continuation is not None:
            self._reply(message, f"🤖 Continuing Chapter {continuation.chapter_number}...")
        result = workflow.continue_chapter()
        self._send_chapter(message, result, continued=True)

    def _cmd_feedback(self, session: Session, message: InboundMessage, args: str) -> None:
        draft = session.story.current_draft()
        workflow = self._workflow(session)
        if draft is not None and args.strip():
            self._reply(
                message,
                f"🔄 Revising Chapter {draft.number} v{draft.version + 1} based on your feedback...",
            )
        result = workflow.revise(args)
        self._send_chapter(message, result)

    def _cmd_approve(self, session: Session, message: InboundMessage, args: str) -> None:
        chapter = self._workflow(session).approve()
        story = session.story
        self._reply(
            message,
            f"✅ Chapter {chapter.number} approved and saved!\n\n"
            f"📊 Current Story Progress: {len(story.approved_chapters())} chapters, "
            f"{story.approved_word_count:,} words\n\n"
            f"🚀 Ready for: /write_chapter {chapter.number + 1}",
        )

    def _cmd_status(self, session: Session, message: InboundMessage, args: str) -> None:
        usage = session.usage
        limits = self.settings.limits
        usage.reset_if_new_day(self._today())
        remaining = usage.remaining(limits)
        story = session.story
        bible = story.bible
        planned = count_outline_chapters(bible.story_outline) if bible else 0
        draft = story.current_draft()
        draft_line = f"Chapter {draft.number} v{draft.version}" if draft else "None"
        if story.continuation is not None:
            draft_line += " (cut off, use /continue)"

        self._reply(
            message,
            "📊 Fiction Bot Status\n\n"
            "📖 Current Story:\n"
            f"• Title: {story.title or 'Not set'}\n"
            f"• Approved chapters: {len(story.approved_chapters())}/{planned}\n"
            f"• Words: {story.approved_word_count:,}\n"
            f"• Started: {bible.start_date.isoformat() if bible else 'Not started'}\n"
            f"• Current draft: {draft_line}\n\n"
            "🔧 Setup Status:\n"
            f"• Writing rules: {'✅ Set' if session.has_profile else '❌ Missing'}\n"
            f"• Story setup: {'✅ Set' if bible else '❌ Missing'}\n"
            f"• Chapter outlines: {planned} chapters planned\n\n"
            "💰 Usage Today:\n"
            f"• Messages: {usage.messages_used}/{limits.daily_message_limit}\n"
            f"• Spending: ${usage.spend_estimate:.4f}/${limits.daily_spending_limit:.2f}\n"
            f"• Remaining: {remaining['messages']} messages, ${remaining['spending']:.4f}\n\n"
            "📈 All-Time Stats:\n"
            f"• Total spent: ${usage.total_spent:.4f}\n"
            f"• Stories completed: {usage.stories_completed}\n"
            f"• Total chapters: {usage.total_chapters}\n"
            f"• Total words: {usage.total_words:,}",
        )

    def _cmd_export(self, session: Session, message: InboundMessage, args: str) -> None:
        self._export_story(session, message, session.story)

    def _cmd_export_previous(self, session: Session, message: InboundMessage, args: str) -> None:
        if session.previous_story is None:
            raise PreconditionError("No previous story to export.")
        self._export_story(session, message, session.previous_story)

    # ---------------- rendering ----------------
    def _export_story(self, session: Session, message: InboundMessage, story: Story) -> None:
        approved = story.approved_chapters()
        if not approved:
            raise PreconditionError("No approved chapters to export.")

        title = story.title
        try:
            text_blob = build_story_text(
                title,
                approved,
                start_date=story.bible.start_date if story.bible else None,
                total_spent=session.usage.total_spent,
                exported_on=self._today(),
            )
        except TextExportError as exc:
            raise PreconditionError(str(exc)) from exc

        filename = export_filename(title, today=self._today())
        caption = f"📚 {title or 'My Novel'} exported!\n{len(approved)} chapters • {story.approved_word_count:,} words"
        try:
            self.transport.send_document(message.chat_id, filename, text_blob.encode("utf-8"), caption)
        except TransportError as exc:
            LOGGER.error("Export delivery failed: %s", exc)
            self._reply(message, "❌ Could not send the export file. Please try again.")

    def _send_chapter(self, message: InboundMessage, result: ChapterResult, *, continued: bool = False) -> None:
        chapter = result.chapter
        if continued:
            header = f"📖 Chapter {chapter.number} v{chapter.version} continued ({chapter.word_count} words total)"
            body = result.new_text
        else:
            header = f"📖 Chapter {chapter.number} v{chapter.version} ({chapter.word_count} words)"
            body = chapter.content

        cost_line = (
            f"💰 Cost: ${result.cost:.4f} ({result.input_tokens:,} in + "
            f"{result.output_tokens:,} out tokens, estimated)"
        )
        if result.truncated:
            footer = (
                "⚠️ This chapter was cut off by the length limit.\n"
                "Commands: /continue to keep writing, /feedback [feedback] or /approved"
            )
        else:
            footer = "Commands: /feedback [feedback] or /approved"

        self._reply(message, f"{header}\n\n{body}\n\n{cost_line}\n\n{footer}")


__all__ = [
    "ACCESS_DENIED_MESSAGE",
    "ControllerSettings",
    "SessionController",
    "UploadValidationError",
    "build_status_snapshot",
    "parse_command",
    "validate_upload",
]
