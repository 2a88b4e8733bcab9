#!/usr/bin/env python3
"""Report (and optionally repair) users holding more than one active membership.

Usage:
  python scripts/check_memberships.py
  python scripts/check_memberships.py --fix
"""

import sys
import os
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.constants import MEMBERSHIP_STATUS_INACTIVE
from app.portal.memberships import active_memberships, find_active_membership_violations
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--fix", action="store_true", help="Keep the highest tier active and deactivate the rest")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()
    with script_session(db_url) as s:
        user_ids = find_active_membership_violations(s)
        if not user_ids:
            print("OK: every user has at most one active membership.")
            return
        print(f"Users with more than one active membership: {len(user_ids)}")
        for user_id in user_ids:
            rows = active_memberships(s, user_id)
            print(f"  user={user_id} memberships={[m.id for m in rows]} keep={rows[0].id}")
            if args.fix:
                for extra in rows[1:]:
                    extra.is_active = False
                    extra.status = MEMBERSHIP_STATUS_INACTIVE
        if not args.fix:
            print("Re-run with --fix to deactivate the duplicates.")
            sys.exit(1)
        print("Duplicates deactivated.")


if __name__ == "__main__":
    main()
