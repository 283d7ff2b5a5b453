"""Write the .env settings the fiction bot needs and initialize its database."""
from __future__ import annotations

import argparse
import secrets
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from storybot import create_app, db

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
SECRET_KEYS = {"TELEGRAM_TOKEN", "OPENROUTER_API_KEY", "SECRET_KEY", "TELEGRAM_WEBHOOK_SECRET"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Store Telegram and OpenRouter settings in .env and create the session database."
    )
    parser.add_argument("--telegram-token", help="Bot token issued by @BotFather.")
    parser.add_argument(
        "--authorized-user-id",
        help="Numeric Telegram user id of the only person allowed to use the bot.",
    )
    parser.add_argument("--openrouter-api-key", help="API key for the OpenRouter completion service.")
    parser.add_argument(
        "--webhook-secret",
        help="Value Telegram echoes in X-Telegram-Bot-Api-Secret-Token (generated when missing).",
    )
    parser.add_argument("--database-url", help="Override DATABASE_URL (optional).")
    parser.add_argument("--env-path", type=Path, default=DEFAULT_ENV_PATH, help="The .env file to update.")
    parser.add_argument("--skip-db", action="store_true", help="Leave the database untouched.")
    return parser.parse_args()


def collect_updates(args: argparse.Namespace, existing: Dict[str, Optional[str]]) -> Dict[str, str]:
    updates = {
        "FLASK_APP": "wsgi.py",
        "TELEGRAM_TOKEN": args.telegram_token,
        "AUTHORIZED_USER_ID": args.authorized_user_id,
        "OPENROUTER_API_KEY": args.openrouter_api_key,
        "TELEGRAM_WEBHOOK_SECRET": args.webhook_secret,
        "DATABASE_URL": args.database_url,
    }
    if not existing.get("SECRET_KEY"):
        updates["SECRET_KEY"] = secrets.token_hex(16)
    if not existing.get("TELEGRAM_WEBHOOK_SECRET") and not args.webhook_secret:
        updates["TELEGRAM_WEBHOOK_SECRET"] = secrets.token_urlsafe(24)
    return {key: value for key, value in updates.items() if value}


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    args.env_path.touch(exist_ok=True)
    for key, value in collect_updates(args, dotenv_values(args.env_path)).items():
        set_key(str(args.env_path), key, value)
    print(f"Environment written to {args.env_path}.")
    return {key: value or "" for key, value in dotenv_values(args.env_path).items()}


def initialize_database() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
    print("Database initialized (instance/storybot.db).")


def main() -> None:
    args = parse_args()
    env_values = update_env_file(args)

    if args.skip_db:
        print("Database initialization skipped.")
    else:
        initialize_database()

    missing = [key for key in ("TELEGRAM_TOKEN", "AUTHORIZED_USER_ID", "OPENROUTER_API_KEY") if not env_values.get(key)]
    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        print(f"  {key}={value[:4] + '…' if key in SECRET_KEYS and value else value}")
    if missing:
        print(f"\nStill missing: {', '.join(missing)}")


if __name__ == "__main__":
    main()
