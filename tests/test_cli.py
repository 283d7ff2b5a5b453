import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybot import create_app
from storybot.bot import CONTROLLER_CACHE_KEY, TRANSPORT_CACHE_KEY
from storybot.config import TestConfig
from storybot.extensions import db
from storybot.session import Chapter, Session, StoryBible
from storybot.store import load_session, save_session


class PollingTransport:
    def __init__(self, updates):
        self.updates = updates
        self.offsets = []
        self.messages = []

    def get_updates(self, offset=None, *, poll_timeout=30):
        self.offsets.append(offset)
        return self.updates

    def send_long_message(self, chat_id, text):
        self.messages.append(text)
        return 1


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


def test_poll_once_handles_pending_updates(app_instance):
    transport = PollingTransport(
        [{"update_id": 7, "message": {"from": {"id": 1001}, "chat": {"id": 1001}, "text": "/setup_rules"}}]
    )
    app_instance.config[TRANSPORT_CACHE_KEY] = transport

    result = app_instance.test_cli_runner().invoke(args=["poll", "--once", "--timeout", "0"])

    assert result.exit_code == 0, result.output
    assert transport.offsets == [None]
    assert transport.messages[0].startswith("📝 Set Your Universal Writing Rules")
    assert load_session("1001").setup_state is not None


def test_export_story_writes_file(app_instance, tmp_path):
    session = Session(operator_id="1001", writing_profile="Rules")
    session.story.bible = StoryBible(character_sheet="Cast", story_outline="Plan", title="Salt Road")
    session.story.chapters = [Chapter(number=1, version=1, content="Dust everywhere.", approved=True)]
    save_session(session)

    result = app_instance.test_cli_runner().invoke(args=["export-story", "--output-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    exported = list(tmp_path.glob("Salt_Road_*.txt"))
    assert len(exported) == 1
    assert "Dust everywhere." in exported[0].read_text(encoding="utf-8")


def test_export_story_without_chapters_fails(app_instance, tmp_path):
    result = app_instance.test_cli_runner().invoke(args=["export-story", "--output-dir", str(tmp_path)])

    assert result.exit_code != 0
    assert "No approved chapters to export." in result.output


class BrokenController:
    def __init__(self):
        self.seen = []

    def handle(self, message):
        self.seen.append(message.text)
        raise RuntimeError("database is locked")


def test_poll_survives_a_failing_update(app_instance):
    transport = PollingTransport(
        [
            {"update_id": 8, "message": {"from": {"id": 1001}, "chat": {"id": 1001}, "text": "/status"}},
            {"update_id": 9, "message": {"from": {"id": 1001}, "chat": {"id": 1001}, "text": "/help"}},
        ]
    )
    controller = BrokenController()
    app_instance.config[TRANSPORT_CACHE_KEY] = transport
    app_instance.config[CONTROLLER_CACHE_KEY] = controller

    result = app_instance.test_cli_runner().invoke(args=["poll", "--once", "--timeout", "0"])

    assert result.exit_code == 0, result.output
    assert controller.seen == ["/status", "/help"]
