"""Flask CLI commands: long polling and offline export."""
from __future__ import annotations

import time
from pathlib import Path

import click
from flask import current_app
from flask.cli import with_appcontext

from text_exporter import TextExportError, export_filename, export_story_to_txt

from .bot import get_controller, get_transport
from .store import load_session
from .transport import InboundMessage, TransportError

POLL_RETRY_SECONDS = 5


@click.command("poll")
@click.option("--timeout", default=30, show_default=True, help="Long-poll timeout in seconds.")
@click.option("--once", is_flag=True, help="Process a single batch of updates and exit.")
@with_appcontext
def poll_command(timeout: int, once: bool) -> None:
    """Fetch updates with getUpdates and handle them in arrival order."""

    transport = get_transport()
    controller = get_controller()
    offset = None
    current_app.logger.info("Fiction bot polling for updates...")

    while True:
        try:
            updates = transport.get_updates(offset, poll_timeout=timeout)
        except TransportError as exc:
            current_app.logger.error("Polling error: %s", exc)
            if once:
                raise click.ClickException(str(exc))
            time.sleep(POLL_RETRY_SECONDS)
            continue

        for update in updates:
            offset = int(update.get("update_id", 0)) + 1
            message = InboundMessage.from_update(update)
            if message is None:
                continue
            try:
                controller.handle(message)
            except Exception:
                current_app.logger.exception("Failed to handle update %s", update.get("update_id"))

        if once:
            return


@click.command("export-story")
@click.option("--output-dir", type=click.Path(file_okay=False, path_type=Path), default=Path("."))
@click.option("--previous", is_flag=True, help="Export the archived previous story instead.")
@with_appcontext
def export_story_command(output_dir: Path, previous: bool) -> None:
    """Write the operator's approved chapters to a text file."""

    session = load_session(current_app.config.get("AUTHORIZED_USER_ID") or "unconfigured")
    story = session.previous_story if previous else session.story
    if story is None:
        raise click.ClickException("No previous story to export.")

    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / export_filename(story.title)
    try:
        export_story_to_txt(
            story.title,
            story.approved_chapters(),
            output_path=target,
            start_date=story.bible.start_date if story.bible else None,
            total_spent=session.usage.total_spent,
        )
    except TextExportError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Exported {len(story.approved_chapters())} chapters to {target}")
