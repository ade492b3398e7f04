#!/usr/bin/env python
"""
Migration helper for the login security tables.

Usage:
    python run_migrations.py create "migration message"  # Autogenerate a migration
    python run_migrations.py upgrade [revision]          # Apply migrations (default: head)
    python run_migrations.py downgrade [revision]        # Roll back (default: -1)
    python run_migrations.py current                     # Show current revision
    python run_migrations.py history                     # Show migration history
"""
from alembic.config import Config
from alembic import command
import os
import sys


alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))


def create_migration(message: str):
    command.revision(alembic_cfg, message=message, autogenerate=True)
    print(f"Migration '{message}' created")


def upgrade_migrations(revision: str = "head"):
    print(f"Upgrading database to: {revision}")
    command.upgrade(alembic_cfg, revision)


def downgrade_migrations(revision: str = "-1"):
    print(f"Downgrading database to: {revision}")
    command.downgrade(alembic_cfg, revision)


def main(argv):
    if len(argv) < 2:
        print(__doc__)
        return 1

    action, args = argv[1].lower(), argv[2:]
    try:
        if action == "create":
            if not args:
                print("Error: Migration message required")
                return 1
            create_migration(args[0])
        elif action == "upgrade":
            upgrade_migrations(*args[:1])
        elif action == "downgrade":
            downgrade_migrations(*args[:1])
        elif action == "current":
            command.current(alembic_cfg)
        elif action == "history":
            command.history(alembic_cfg)
        else:
            print(f"Unknown action: {action}")
            print(__doc__)
            return 1
    except Exception as e:
        print(f"Error running '{action}': {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
