import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.constants import ROLE_ADMIN
from app.portal.models import User
from app.portal.seed import ensure_apps, ensure_roles, ensure_tiers
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed tiers/roles/apps/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        tiers = ensure_tiers(s)
        roles = ensure_roles(s)
        apps = ensure_apps(s, tiers)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                first_name="Portal",
                last_name="Admin",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if roles[ROLE_ADMIN] not in user.roles:
            user.roles.append(roles[ROLE_ADMIN])

    print("Initialized database (seed_only).")
    print(f"Tiers: {', '.join(sorted(tiers))}")
    print(f"Apps: {', '.join(sorted(apps))}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
