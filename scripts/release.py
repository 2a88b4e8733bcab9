"""
Release-phase helper.

Goal:
- Fail fast if DATABASE_URL is missing (avoid silently using SQLite in prod).
- Run alembic migrations.
- Seed tiers/roles/apps/admin user (idempotent; does NOT overwrite existing passwords).
- Refuse to finish if any user holds more than one active membership.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def _check_memberships(db_url: str) -> None:
    from app.portal.memberships import find_active_membership_violations
    from scripts._db_utils import script_session

    with script_session(db_url) as s:
        bad = find_active_membership_violations(s)
    if bad:
        raise RuntimeError(
            f"{len(bad)} user(s) hold more than one active membership; run scripts/check_memberships.py --fix."
        )


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    # Guardrail: prevent accidental prod deploys against SQLite.
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print("=== Membership portal release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    print("Seeding tiers/roles/apps/admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)

    _check_memberships(db_url)
    print("=== Membership portal release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
