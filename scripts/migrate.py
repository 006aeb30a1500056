"""Script to run database migrations.

Usage:
    python scripts/migrate.py                 upgrade to head
    python scripts/migrate.py down [revision] downgrade (default: one step)
    python scripts/migrate.py create <message>
"""

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    return config


def run_migrations() -> None:
    """Upgrade the schema to the latest revision."""
    try:
        print("Running database migrations...")
        command.upgrade(_config(), "head")
        print("✓ Migrations completed successfully!")
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        sys.exit(1)


def rollback(revision: str = "-1") -> None:
    """Downgrade the schema to ``revision``."""
    try:
        print(f"Downgrading database to {revision}...")
        command.downgrade(_config(), revision)
        print("✓ Downgrade completed successfully!")
    except Exception as e:
        print(f"✗ Downgrade failed: {e}", file=sys.stderr)
        sys.exit(1)


def create_migration(message: str) -> None:
    """Autogenerate a new revision from the table definitions."""
    try:
        print(f"Creating migration: {message}")
        command.revision(_config(), message=message, autogenerate=True)
        print("✓ Migration created successfully!")
    except Exception as e:
        print(f"✗ Migration creation failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    args = sys.argv[1:]
    if not args:
        run_migrations()
    elif args[0] == "down":
        rollback(args[1] if len(args) > 1 else "-1")
    elif args[0] == "create" and len(args) > 1:
        create_migration(" ".join(args[1:]))
    else:
        print(__doc__)
