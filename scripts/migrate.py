"""Script to manage database migrations.

Usage:
    python scripts/migrate.py                 upgrade to head
    python scripts/migrate.py downgrade <rev> downgrade to a revision
    python scripts/migrate.py current         show the applied revision
    python scripts/migrate.py create <msg>    autogenerate a new revision
"""

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _config() -> Config:
    return Config(str(ALEMBIC_INI))


def _run(description: str, action) -> None:
    try:
        print(f"{description}...")
        action(_config())
        print(f"✓ {description} done")
    except Exception as e:
        print(f"✗ {description} failed: {e}", file=sys.stderr)
        sys.exit(1)


def main(argv: list[str]) -> None:
    """Dispatch the requested migration command."""
    if not argv:
        _run("Upgrading to head", lambda cfg: command.upgrade(cfg, "head"))
    elif argv[0] == "downgrade" and len(argv) == 2:
        _run(f"Downgrading to {argv[1]}", lambda cfg: command.downgrade(cfg, argv[1]))
    elif argv[0] == "current":
        _run("Reading current revision", lambda cfg: command.current(cfg, verbose=True))
    elif argv[0] == "create" and len(argv) > 1:
        message = " ".join(argv[1:])
        _run(
            f"Creating migration '{message}'",
            lambda cfg: command.revision(cfg, message=message, autogenerate=True),
        )
    else:
        print(__doc__)
        sys.exit(2)


if __name__ == "__main__":
    main(sys.argv[1:])
