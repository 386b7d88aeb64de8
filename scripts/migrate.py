#!/usr/bin/env python3
"""
Apply or roll back catalog migrations.

Usage:
    python scripts/migrate.py                       upgrade to head
    python scripts/migrate.py upgrade <revision>
    python scripts/migrate.py downgrade [revision]  default: one step back
    python scripts/migrate.py current
    python scripts/migrate.py history
"""

import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402

from mediaflow.config.settings import get_settings  # noqa: E402


def _alembic_config() -> Config:
    cfg = Config(str(project_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(project_root / "migrations"))
    cfg.set_main_option("sqlalchemy.url", get_settings().database_url)
    return cfg


def run_migrations(revision: str = "head") -> None:
    command.upgrade(_alembic_config(), revision)
    print(f"Catalog upgraded to {revision}")


def downgrade_migrations(revision: str = "-1") -> None:
    command.downgrade(_alembic_config(), revision)
    print(f"Catalog downgraded to {revision}")


COMMANDS = {
    "upgrade": lambda args: run_migrations(args[0] if args else "head"),
    "downgrade": lambda args: downgrade_migrations(args[0] if args else "-1"),
    "current": lambda args: command.current(_alembic_config(), verbose=True),
    "history": lambda args: command.history(_alembic_config()),
}


def main(argv) -> int:
    name, args = (argv[0], argv[1:]) if argv else ("upgrade", [])
    if name not in COMMANDS:
        print(__doc__, file=sys.stderr)
        return 2
    try:
        COMMANDS[name](args)
    except SQLAlchemyError as e:
        print(f"Migration {name} failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
