"""
Apply database migrations without starting the web server.

Usage:
  python migrate.py            # upgrade to head
  python migrate.py <revision> # upgrade to a specific revision
"""

import os
import sys
import traceback

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')


def build_config():
    config = Config()
    config.set_main_option('script_location', MIGRATIONS_DIR)
    return config


def main(argv=None):
    load_dotenv()
    argv = sys.argv[1:] if argv is None else argv
    revision = argv[0] if argv else 'head'
    try:
        print(f"Applying database migrations up to {revision}...")
        command.upgrade(build_config(), revision)
        print("Migrations completed successfully.")
    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
