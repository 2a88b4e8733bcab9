#!/usr/bin/env python3
"""Attach the ADMIN role to a user (idempotent).

Usage:
  python scripts/attach_admin_role.py --email someone@example.com
"""

import sys
import os
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.constants import ROLE_ADMIN
from app.portal.models import Role, User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email to attach the ADMIN role to")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        role = s.query(Role).filter(Role.key == ROLE_ADMIN).one_or_none()
        if not role:
            print("ADMIN role not found. Run python scripts/init_db.py first.")
            return
        if role in (user.roles or []):
            print(f"User already has ADMIN role: {args.email}")
            return
        user.roles.append(role)
        # Existing sessions carry the old role set.
        user.session_version = (user.session_version or 0) + 1
        print(f"ADMIN role attached to {args.email}")


if __name__ == "__main__":
    main()
