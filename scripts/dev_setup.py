"""Write development settings to .env and initialise the database."""
from __future__ import annotations

import argparse
import secrets
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"
PROVIDER_KEYS = {"anthropic": "ANTHROPIC_API_KEY", "openai": "OPENAI_API_KEY"}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or update the .env file used for local development and create the database tables."
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="Entry point used by Flask (default: wsgi.py)")
    parser.add_argument("--flask-env", default="development", help="Value for FLASK_ENV (default: development)")
    parser.add_argument(
        "--secret-key",
        help="Session signing key. A random key is generated when .env has none.",
    )
    parser.add_argument(
        "--provider",
        choices=sorted(PROVIDER_KEYS),
        help="Text-generation provider written to LLM_PROVIDER.",
    )
    parser.add_argument("--api-key", help="Credential for the selected provider.")
    parser.add_argument("--model", help="Model name written to LLM_MODEL (optional).")
    parser.add_argument(
        "--database-url",
        help="Managed database connection string. Leave unset to use instance/inkwell.db.",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args(argv)


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def build_env_values(args: argparse.Namespace, current: Dict[str, str]) -> Dict[str, str]:
    values = dict(current)
    values["FLASK_APP"] = args.flask_app
    values["FLASK_ENV"] = args.flask_env

    if args.secret_key:
        values["SECRET_KEY"] = args.secret_key
    elif not values.get("SECRET_KEY"):
        values["SECRET_KEY"] = secrets.token_hex(32)

    provider = args.provider or values.get("LLM_PROVIDER") or "anthropic"
    values["LLM_PROVIDER"] = provider
    if args.api_key:
        values[PROVIDER_KEYS[provider]] = args.api_key
    if args.model:
        values["LLM_MODEL"] = args.model
    if args.database_url:
        values["DATABASE_URL"] = args.database_url
    return values


def initialize_database() -> None:
    # Imported late so the freshly written .env is picked up.
    from inkwell import create_app
    from inkwell.extensions import db

    app = create_app()
    with app.app_context():
        db.create_all()
        print(f"Database initialized ({app.config['SQLALCHEMY_DATABASE_URI']}).")


def main(argv=None) -> None:
    args = parse_args(argv)
    env_values = build_env_values(args, read_env(args.env_path))
    write_env(args.env_path, env_values)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialization skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key]
        if key.endswith(("_KEY", "SECRET")):
            value = value[:4] + "…"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
