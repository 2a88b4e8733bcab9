import pytest
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.auth import _login_attempts
from app.portal.db import session_scope
from app.portal.models import Base, Membership, MembershipTier, Organisation, Role, User
from app.portal.seed import seed_reference_data


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("APP_BYPASS_ROLES", "CSRF_ENABLED", "PASSWORD_MIN_LENGTH", "TEMP_PASSWORD_LENGTH"):
        monkeypatch.delenv(k, raising=False)
    _login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        seed_reference_data(s)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _make_org(s, name="Acme Ltd", type="INDUSTRY", slug=None):
    org = Organisation(name=name, slug=slug or name.lower().replace(" ", "-"), type=type)
    s.add(org)
    s.flush()
    return org


def _make_user(s, email, *, roles=(), org=None, tier=None, password="pw", first_name="Test", last_name="User"):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=generate_password_hash(password),
        is_active=True,
        organisation_id=org.id if org else None,
    )
    if roles:
        user.roles.extend(s.query(Role).filter(Role.key.in_(list(roles))).all())
    s.add(user)
    s.flush()
    if tier:
        t = s.query(MembershipTier).filter(MembershipTier.key == tier).one()
        s.add(Membership(user=user, organisation_id=org.id, tier_id=t.id, tier=t, status="active", is_active=True))
        s.flush()
    return user


@pytest.fixture()
def make_org():
    return _make_org


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def tier_ids(app):
    with session_scope(app) as s:
        return {t.key: t.id for t in s.query(MembershipTier).all()}


@pytest.fixture()
def people(app):
    """
    admin@example.com   ADMIN, no membership
    gold@example.com    MEMBER, Acme Ltd, gold
    bronze@example.com  MEMBER, Beta Uni, bronze
    student@example.com STUDENT, no membership
    leader@example.com  MODULE_LEADER, no membership
    """
    with session_scope(app) as s:
        acme = _make_org(s, "Acme Ltd", "INDUSTRY")
        beta = _make_org(s, "Beta Uni", "UNIVERSITY")
        ids = {
            "admin": _make_user(s, "admin@example.com", roles=("ADMIN",), first_name="Ada", last_name="Admin").id,
            "gold": _make_user(s, "gold@example.com", roles=("MEMBER",), org=acme, tier="gold", first_name="Gil").id,
            "bronze": _make_user(s, "bronze@example.com", roles=("MEMBER",), org=beta, tier="bronze", first_name="Bea").id,
            "student": _make_user(s, "student@example.com", roles=("STUDENT",)).id,
            "leader": _make_user(s, "leader@example.com", roles=("MODULE_LEADER",)).id,
            "acme": acme.id,
            "beta": beta.id,
        }
    return ids


def login(client, email, password="pw"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return r.json["csrf_token"]


@pytest.fixture()
def login_as(client):
    def _login(email, password="pw"):
        return login(client, email, password)

    return _login
