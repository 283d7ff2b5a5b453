import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybot import create_app
from storybot.config import TestConfig
from storybot.controller import (
    ACCESS_DENIED_MESSAGE,
    ControllerSettings,
    SessionController,
    parse_command,
)
from storybot.extensions import db
from storybot.models import SessionSnapshot
from storybot.session import SETUP_WRITING_RULES, Chapter, Session, StoryBible
from storybot.store import load_session, save_session
from storybot.transport import InboundDocument, InboundMessage, TransportError

OPERATOR = "1001"


class FakeTransport:
    def __init__(self, files=None):
        self.messages = []
        self.documents = []
        self.files = files or {}

    def send_long_message(self, chat_id, text):
        self.messages.append(text)
        return 1

    def send_document(self, chat_id, filename, content, caption=""):
        self.documents.append((filename, content.decode("utf-8"), caption))

    def download_file(self, file_id):
        if file_id not in self.files:
            raise TransportError("missing")
        return self.files[file_id]

    @property
    def last(self):
        return self.messages[-1]


class DummyClient:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    def complete(self, prompt, **kwargs):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        text, finish_reason = reply if isinstance(reply, tuple) else (reply, "stop")
        return SimpleNamespace(text=text, finish_reason=finish_reason)


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client():
    return DummyClient()


@pytest.fixture
def controller(app_instance, transport, client):
    settings = ControllerSettings.from_config(app_instance.config)
    return SessionController(transport, lambda: client, settings)


def _send(controller, text="", sender=OPERATOR, document=None):
    controller.handle(InboundMessage(sender_id=sender, chat_id=sender, text=text, document=document))


def _ready_session():
    session = Session(operator_id=OPERATOR, writing_profile="Short sentences.")
    session.story.bible = StoryBible(character_sheet="Nell", story_outline="###Chapter 1\nNell leaves home.")
    save_session(session)
    return session


def test_parse_command_strips_bot_suffix_and_keeps_arguments():
    assert parse_command("/Write_Chapter@FictionBot 3") == ("/write_chapter", "3")
    assert parse_command("/feedback more\nsensory detail") == ("/feedback", "more\nsensory detail")
    assert parse_command("plain text") == (None, "plain text")


def test_unauthorized_sender_is_denied_without_touching_state(controller, transport):
    _send(controller, "/start", sender="999")

    assert transport.messages == [ACCESS_DENIED_MESSAGE]
    assert SessionSnapshot.query.count() == 0


def test_missing_authorized_user_denies_everyone(app_instance, transport, client):
    app_instance.config["AUTHORIZED_USER_ID"] = ""
    controller = SessionController(transport, lambda: client, ControllerSettings.from_config(app_instance.config))

    _send(controller, "/start")

    assert transport.last == ACCESS_DENIED_MESSAGE


def test_setup_flow_stores_rules_and_bible(controller, transport):
    _send(controller, "/setup_rules")
    assert load_session(OPERATOR).setup_state == SETUP_WRITING_RULES

    _send(controller, "Always write in first person.")
    assert transport.last.startswith("✅ Writing rules saved!")

    _send(controller, "/setup_story")
    _send(controller, "Nell: a cartographer.")
    assert transport.last.startswith("✅ Character sheet saved!")

    _send(controller, "###Chapter 1\nNell leaves.\n###Chapter 2\nNell returns.")
    assert "2 chapters planned" in transport.last

    session = load_session(OPERATOR)
    assert session.writing_profile == "Always write in first person."
    assert session.story.bible.character_sheet == "Nell: a cartographer."
    assert session.story.bible.story_outline.endswith("Nell returns.")
    assert session.setup_state is None
    assert session.pending_character_sheet is None


def test_setup_story_requires_rules(controller, transport):
    _send(controller, "/setup_story")

    assert transport.last == "❌ Please set up your writing rules first with /setup_rules"


def test_write_and_approve_round_trip(controller, transport, client):
    _ready_session()
    client.replies.append("Nell packed her maps and left at dawn.")

    _send(controller, "/write_chapter 1")

    assert transport.messages[-2].startswith("🤖 Writing Chapter 1")
    assert transport.last.startswith("📖 Chapter 1 v1 (8 words)")
    assert "Nell packed her maps" in transport.last
    assert "Commands: /feedback [feedback] or /approved" in transport.last

    _send(controller, "/approved")

    assert transport.last.startswith("✅ Chapter 1 approved and saved!")
    session = load_session(OPERATOR)
    assert [c.key for c in session.story.approved_chapters()] == [(1, 1)]
    assert session.story.active_draft is None
    assert session.usage.total_chapters == 1


def test_truncated_chapter_suggests_continue(controller, transport, client):
    _ready_session()
    client.replies.extend([("Nell walked until", "length"), " the road ended."])

    _send(controller, "/write_chapter 1")
    assert "/continue" in transport.last

    _send(controller, "/continue")
    assert transport.last.startswith("📖 Chapter 1 v2 continued")
    assert load_session(OPERATOR).story.current_draft().content == "Nell walked until the road ended."


def test_write_chapter_requires_a_number(controller, transport, client):
    _ready_session()

    _send(controller, "/write_chapter soon")

    assert transport.last == "❌ Please specify chapter number: /write_chapter 1"
    assert client.prompts == []


def test_service_failure_reports_retry_and_keeps_state(controller, transport, client):
    _ready_session()
    client.replies.append(RuntimeError("upstream 502"))

    _send(controller, "/write_chapter 1")

    assert transport.last == "❌ AI service temporarily unavailable. Please try again in a moment."
    session = load_session(OPERATOR)
    assert session.story.chapters == []
    assert session.usage.messages_used == 0


def test_quota_blocks_gated_commands_only(controller, transport):
    session = _ready_session()
    session.usage.messages_used = 50
    save_session(session)

    _send(controller, "/status")
    assert transport.last == "⛔ Daily message limit reached (50). Resets at midnight."

    _send(controller, "/help")
    assert transport.last.startswith("🎭 Fiction Writing Bot Commands")

    _send(controller, "/setup_rules")
    assert transport.last.startswith("📝 Set Your Universal Writing Rules")


def test_unrecognised_input_gets_guidance(controller, transport):
    _send(controller, "hello there")
    assert transport.last.startswith("🤔 I didn't understand that command.")

    _send(controller, "/dance")
    assert transport.last.startswith("❌ Unknown command.")


def test_uploaded_text_file_fills_pending_slot(app_instance, client):
    transport = FakeTransport(files={"file-1": "Rules from a file."})
    controller = SessionController(transport, lambda: client, ControllerSettings.from_config(app_instance.config))
    _send(controller, "/setup_rules")

    document = InboundDocument(file_id="file-1", file_name="rules.txt", mime_type="text/plain", file_size=18)
    _send(controller, document=document)

    assert "📁 File: rules.txt" in transport.last
    assert load_session(OPERATOR).writing_profile == "Rules from a file."


def test_uploads_are_validated(controller, transport):
    pdf = InboundDocument(file_id="x", file_name="rules.pdf", mime_type="application/pdf", file_size=10)
    _send(controller, document=pdf)
    assert transport.last.startswith("❌ I'm not expecting a file right now.")

    _send(controller, "/setup_rules")
    _send(controller, document=pdf)
    assert transport.last == "❌ Please upload a .txt file only."

    huge = InboundDocument(file_id="x", file_name="rules.txt", mime_type="text/plain", file_size=2 * 1024 * 1024)
    _send(controller, document=huge)
    assert transport.last.startswith("❌ File too large.")

    missing = InboundDocument(file_id="gone", file_name="rules.txt", mime_type="text/plain", file_size=10)
    _send(controller, document=missing)
    assert transport.last == "❌ Error reading file. Please try uploading again."
    assert load_session(OPERATOR).setup_state == SETUP_WRITING_RULES


def test_export_sends_manuscript_document(controller, transport):
    session = _ready_session()
    session.story.bible.title = "The Cartographer"
    session.story.chapters = [
        Chapter(number=2, version=1, content="Second.", approved=True),
        Chapter(number=1, version=2, content="First.", approved=True),
        Chapter(number=3, version=1, content="Unapproved draft."),
    ]
    save_session(session)

    _send(controller, "/export")

    filename, text, caption = transport.documents[0]
    assert filename.startswith("The_Cartographer_") and filename.endswith(".txt")
    assert text.index("## Chapter 1") < text.index("## Chapter 2")
    assert "Unapproved draft." not in text
    assert "2 chapters" in caption


def test_export_without_approved_chapters(controller, transport):
    _ready_session()

    _send(controller, "/export")

    assert transport.last == "❌ No approved chapters to export."
    assert transport.documents == []


def test_new_story_archives_and_previous_can_be_exported(controller, transport):
    session = _ready_session()
    session.story.chapters = [Chapter(number=1, version=1, content="Done and dusted.", approved=True)]
    save_session(session)

    _send(controller, "/new_story")

    assert transport.messages[-2].startswith("📚 Previous story archived!")
    stored = load_session(OPERATOR)
    assert stored.story.bible is None
    assert stored.writing_profile == "Short sentences."
    assert stored.usage.stories_completed == 1

    _send(controller, "/export_previous")
    assert "Done and dusted." in transport.documents[0][1]


def test_set_title_requires_story(controller, transport):
    _send(controller, "/set_title Night Maps")
    assert transport.last == "❌ No story set up yet! Use /setup_story first."

    _ready_session()
    _send(controller, "/set_title Night Maps")
    assert load_session(OPERATOR).story.title == "Night Maps"


class ChapterDropTransport(FakeTransport):
    """Delivers everything except the chapter text itself."""

    def send_long_message(self, chat_id, text):
        if text.startswith("📖"):
            raise TransportError("telegram 502")
        return super().send_long_message(chat_id, text)


class OfflineTransport(FakeTransport):
    def send_long_message(self, chat_id, text):
        raise TransportError("telegram 502")


def test_generated_chapter_is_kept_when_delivery_fails(app_instance, client):
    _ready_session()
    client.replies.append("Nell crossed the bridge at dusk.")
    transport = ChapterDropTransport()
    controller = SessionController(transport, lambda: client, ControllerSettings.from_config(app_instance.config))

    _send(controller, "/write_chapter 1")

    session = load_session(OPERATOR)
    assert len(client.prompts) == 1
    assert [c.key for c in session.story.chapters] == [(1, 1)]
    assert session.story.active_draft == (1, 1)
    assert session.usage.messages_used == 1
    assert session.usage.spend_estimate > 0


def test_undeliverable_replies_do_not_escape(app_instance, client):
    transport = OfflineTransport()
    controller = SessionController(transport, lambda: client, ControllerSettings.from_config(app_instance.config))

    _send(controller, "/start", sender="999")
    _send(controller, "/setup_rules")

    assert load_session(OPERATOR).setup_state == SETUP_WRITING_RULES


def test_unexpected_error_reply_failure_is_contained(app_instance, monkeypatch):
    transport = OfflineTransport()
    controller = SessionController(transport, lambda: None, ControllerSettings.from_config(app_instance.config))

    def explode(*_args, **_kwargs):
        raise KeyError("boom")

    monkeypatch.setattr(controller, "_dispatch", explode)

    _send(controller, "/status")

    assert SessionSnapshot.query.count() == 0
