"""Account administration: create/update/delete, passwords, pending entities."""
import pytest
from werkzeug.security import check_password_hash

from app.portal.accounts import (
    change_password,
    create_organisation,
    create_role,
    create_user,
    delete_user,
    get_user_profile,
    reset_password,
    set_default_app,
    update_user,
)
from app.portal.db import session_scope
from app.portal.errors import (
    ConflictError,
    DemotionConfirmationRequired,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.portal.memberships import get_active_membership
from app.portal.models import App, Membership, Organisation, RedemptionRecord, Role, User, UserRole
from app.portal.rbac import Caller
from app.portal.redemptions import set_redeemed_benefits


def _caller(s, user_id):
    return Caller.from_user(s.get(User, user_id))


def _fields(user):
    return {"firstName": user.first_name, "lastName": user.last_name, "email": user.email}


def test_create_user(app, people):
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        u = create_user(
            s,
            admin,
            email=" New@Example.com ",
            first_name="New",
            last_name="Person",
            password="longenough",
            role_keys=["member"],
            organisation_id=people["acme"],
        )
        assert u.email == "new@example.com"
        assert u.role_keys == frozenset({"MEMBER"})
        assert check_password_hash(u.password_hash, "longenough")


def test_create_user_rejections(app, people):
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        member = _caller(s, people["gold"])
        base = dict(email="x@example.com", first_name="X", last_name="Y", password="longenough")
        with pytest.raises(ForbiddenError):
            create_user(s, member, **base)
        with pytest.raises(ConflictError) as exc:
            create_user(s, admin, **{**base, "email": "gold@example.com"})
        assert exc.value.field == "email"
        with pytest.raises(ValidationError):
            create_user(s, admin, **{**base, "password": "short"})
        with pytest.raises(ValidationError):
            create_user(s, admin, **{**base, "email": "not-an-email"})
        with pytest.raises(ValidationError):
            create_user(s, admin, **base, role_keys=["WIZARD"])


def test_delete_user_leaves_no_orphans(app, people):
    uid = people["gold"]
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        set_redeemed_benefits(s, admin, uid, ["B01"])
    with session_scope(app) as s:
        delete_user(s, _caller(s, people["admin"]), uid)
    with session_scope(app) as s:
        assert s.get(User, uid) is None
        assert s.query(Membership).filter(Membership.user_id == uid).count() == 0
        assert s.query(RedemptionRecord).filter(RedemptionRecord.user_id == uid).count() == 0
        assert s.query(UserRole).filter(UserRole.user_id == uid).count() == 0


def test_delete_user_permissions(app, people):
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        member = _caller(s, people["bronze"])
        with pytest.raises(ForbiddenError) as exc:
            delete_user(s, admin, people["admin"])
        assert "own account" in exc.value.message
        with pytest.raises(ForbiddenError):
            delete_user(s, member, people["gold"])
        with pytest.raises(NotFoundError):
            delete_user(s, admin, 999_999)
    with session_scope(app) as s:
        delete_user(s, _caller(s, people["bronze"]), people["bronze"])
    with session_scope(app) as s:
        assert s.get(User, people["bronze"]) is None


def test_update_profile_self_and_forbidden_cases(app, people):
    with session_scope(app) as s:
        me = s.get(User, people["gold"])
        caller = Caller.from_user(me)
        update_user(s, caller, me.id, {**_fields(me), "firstName": "Gilly"})
        assert me.first_name == "Gilly"

        other = s.get(User, people["bronze"])
        with pytest.raises(ForbiddenError):
            update_user(s, caller, other.id, _fields(other))
        with pytest.raises(ForbiddenError):
            update_user(s, caller, me.id, _fields(me), {"roleChoices": []})
        with pytest.raises(ConflictError):
            update_user(s, caller, me.id, {**_fields(me), "email": "bronze@example.com"})
        with pytest.raises(ValidationError):
            update_user(s, caller, me.id, {**_fields(me), "lastName": "  "})


def test_self_demotion_requires_confirmation(app, people):
    admin_id = people["admin"]
    payload = {"roleChoices": [{"kind": "existing", "key": "STUDENT"}]}
    with session_scope(app) as s:
        me = s.get(User, admin_id)
        with pytest.raises(DemotionConfirmationRequired) as exc:
            update_user(s, Caller.from_user(me), admin_id, _fields(me), payload)
        assert exc.value.to_dict()["confirmation_required"] is True
        assert me.role_keys == frozenset({"ADMIN"})
        version = me.session_version

    with session_scope(app) as s:
        me = s.get(User, admin_id)
        result = update_user(s, Caller.from_user(me), admin_id, _fields(me), payload, confirm_demotion=True)
        assert result.admin_demoted is True
        assert result.roles_changed is True
    with session_scope(app) as s:
        me = s.get(User, admin_id)
        assert me.role_keys == frozenset({"STUDENT"})
        assert me.session_version == version + 1


def test_admin_edit_with_pending_entities(app, people, tier_ids):
    target = people["student"]
    admin_payload = {
        "pending": {
            "organisations": [{"clientId": "org-1", "name": "Gamma Labs", "type": "industry"}],
            "roles": [{"clientId": "role-1", "key": "mentor", "label": "Mentor"}],
        },
        "organisationChoice": {"kind": "pending", "clientId": "org-1"},
        "roleChoices": [
            {"kind": "existing", "key": "MEMBER"},
            {"kind": "pending", "clientId": "role-1"},
        ],
        "membership": {"membershipTierId": tier_ids["silver"], "expiryText": "30/06/2027", "managerName": "Sam"},
    }
    with session_scope(app) as s:
        user = s.get(User, target)
        update_user(s, _caller(s, people["admin"]), target, _fields(user), admin_payload)

    with session_scope(app) as s:
        user = s.get(User, target)
        org = s.query(Organisation).filter(Organisation.name == "Gamma Labs").one()
        assert org.slug == "gamma-labs"
        assert user.organisation_id == org.id
        assert user.role_keys == frozenset({"MEMBER", "MENTOR"})
        m = get_active_membership(s, target)
        assert m.tier.key == "silver"
        assert m.organisation_id == org.id
        assert m.manager_name == "Sam"


def test_failed_admin_edit_writes_nothing(app, people, tier_ids):
    target = people["student"]
    admin_payload = {
        "pending": {"organisations": [{"clientId": "org-1", "name": "Delta Co", "type": "INDUSTRY"}]},
        "organisationChoice": {"kind": "pending", "clientId": "org-1"},
        "roleChoices": [{"kind": "existing", "key": "MEMBER"}],
        "membership": {"membershipTierId": tier_ids["gold"], "expiryText": "31/02/2027"},
    }
    with pytest.raises(ValidationError):
        with session_scope(app) as s:
            user = s.get(User, target)
            update_user(s, _caller(s, people["admin"]), target, _fields(user), admin_payload)
    with session_scope(app) as s:
        assert s.query(Organisation).filter(Organisation.name == "Delta Co").count() == 0
        assert s.get(User, target).role_keys == frozenset({"STUDENT"})


@pytest.mark.parametrize(
    "admin_payload",
    [
        {"pending": ["x"]},
        {"pending": {"organisations": ["not-a-dict"]}},
        {"pending": {"roles": [42]}},
        {"pending": {"organisations": {"clientId": "org-1"}}},
        {"membership": "gold"},
        {"membership": {"membershipTierId": 1, "isActive": "nope"}},
        {
            "pending": {
                "organisations": [
                    {"clientId": "org-1", "name": "Echo Ltd", "type": "INDUSTRY"},
                    {"clientId": "org-1", "name": "Foxtrot Ltd", "type": "INDUSTRY"},
                ]
            }
        },
    ],
)
def test_malformed_admin_edit_is_rejected(app, people, admin_payload):
    target = people["student"]
    with pytest.raises(ValidationError):
        with session_scope(app) as s:
            user = s.get(User, target)
            update_user(s, _caller(s, people["admin"]), target, _fields(user), admin_payload)
    with session_scope(app) as s:
        assert s.query(Organisation).filter(Organisation.name.in_(["Echo Ltd", "Foxtrot Ltd"])).count() == 0


def test_malformed_profile_fields_are_rejected(app, people):
    with session_scope(app) as s:
        me = _caller(s, people["gold"])
        with pytest.raises(ValidationError):
            update_user(s, me, people["gold"], ["firstName"])
        with pytest.raises(ValidationError):
            update_user(s, _caller(s, people["admin"]), people["gold"], _fields(s.get(User, people["gold"])), "x")


def test_membership_tier_needs_organisation(app, people, tier_ids):
    target = people["student"]
    admin_payload = {
        "roleChoices": [{"kind": "existing", "key": "MEMBER"}],
        "membership": {"membershipTierId": tier_ids["gold"]},
    }
    with pytest.raises(ValidationError) as exc:
        with session_scope(app) as s:
            user = s.get(User, target)
            update_user(s, _caller(s, people["admin"]), target, _fields(user), admin_payload)
    assert exc.value.details["field"] == "organisation"


def test_removing_member_role_deactivates_membership(app, people):
    target = people["gold"]
    with session_scope(app) as s:
        user = s.get(User, target)
        update_user(
            s,
            _caller(s, people["admin"]),
            target,
            _fields(user),
            {"roleChoices": [{"kind": "existing", "key": "STUDENT"}]},
        )
    with session_scope(app) as s:
        assert get_active_membership(s, target) is None
        assert s.get(User, target).organisation_id == people["acme"]


def test_passwords(app, people):
    with session_scope(app) as s:
        me = _caller(s, people["gold"])
        with pytest.raises(ValidationError):
            change_password(s, me, "wrong", "newpassword1")
        with pytest.raises(ValidationError):
            change_password(s, me, "pw", "short")
        user = change_password(s, me, "pw", "newpassword1")
        assert check_password_hash(user.password_hash, "newpassword1")
        assert user.session_version == 2

        admin = _caller(s, people["admin"])
        temp = reset_password(s, admin, people["bronze"])
        assert len(temp) == 8
        assert check_password_hash(s.get(User, people["bronze"]).password_hash, temp)
        with pytest.raises(ValidationError):
            reset_password(s, admin, people["admin"])
        with pytest.raises(ForbiddenError):
            reset_password(s, me, people["bronze"])


def test_default_app_and_profile(app, people):
    with session_scope(app) as s:
        me = _caller(s, people["gold"])
        app_id = s.query(App.id).filter(App.key == "TALENT_DISCOVERY").scalar()
        set_default_app(s, me, app_id)
        with pytest.raises(NotFoundError):
            set_default_app(s, me, 999)

        profile = get_user_profile(s, me)
        assert profile["user"]["defaultAppId"] == app_id
        assert profile["membershipSummary"]["tierLabel"] == "Gold"
        assert profile["membershipEdit"]["isActive"] is True

        # Non-admins asking for someone else get their own profile.
        assert get_user_profile(s, me, people["bronze"])["user"]["id"] == people["gold"]
        admin = _caller(s, people["admin"])
        assert get_user_profile(s, admin, people["bronze"])["user"]["id"] == people["bronze"]


def test_create_organisation_and_role(app, people):
    with session_scope(app) as s:
        admin = _caller(s, people["admin"])
        a = create_organisation(s, admin, "Acme Ltd", "industry")
        assert a.slug == "acme-ltd-2"
        with pytest.raises(ValidationError):
            create_organisation(s, admin, "Nope", "CHARITY")

        role = create_role(s, admin, "alumni", "Alumni")
        assert role.key == "ALUMNI"
        with pytest.raises(ConflictError):
            create_role(s, admin, "ALUMNI", "Again")
        with pytest.raises(ValidationError):
            create_role(s, admin, "bad key", "Bad")
        with pytest.raises(ForbiddenError):
            create_role(s, _caller(s, people["gold"]), "OTHER", "Other")
        assert s.query(Role).filter(Role.key == "ALUMNI").count() == 1


def test_delete_member_with_two_roles(app, people, make_user):
    with session_scope(app) as s:
        acme = s.get(Organisation, people["acme"])
        uid = make_user(s, "two@example.com", roles=("MEMBER", "STUDENT"), org=acme, tier="silver").id
    with session_scope(app) as s:
        assert s.query(UserRole).filter(UserRole.user_id == uid).count() == 2
        delete_user(s, _caller(s, people["admin"]), uid)
    with session_scope(app) as s:
        assert s.query(UserRole).filter(UserRole.user_id == uid).count() == 0
        assert s.query(Membership).filter(Membership.user_id == uid).count() == 0
