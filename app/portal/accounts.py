"""
Account and administration operations guarded by the role/admin gate.

Every function takes the acting `Caller` explicitly and checks authorization
before it reads or writes anything on the caller's behalf. None of them commit:
the caller owns the transaction (one request, one commit), so an error anywhere
in a multi-step operation such as `update_user` leaves nothing behind.
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal.audit import record_event
from app.portal.constants import (
    MEMBERSHIP_STATUS_ACTIVE,
    ORGANISATION_TYPES,
    ROLE_ADMIN,
    ROLE_KEY_RE,
    ROLE_MEMBER,
)
from app.portal.errors import (
    ConflictError,
    DemotionConfirmationRequired,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.portal.memberships import (
    deactivate_membership,
    format_uk_date,
    get_active_membership,
    parse_uk_date,
    upsert_membership,
)
from app.portal.models import App, Organisation, Role, User
from app.portal.pending import Choice, Pending, PendingEntityBatch, parse_choice
from app.portal.rbac import Caller, require_admin, require_can_delete, require_self_or_admin
from app.portal.utils import clean_str, is_valid_email, optional_str, parse_bool, parse_optional_int, slugify

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD_MIN_LENGTH = 8
DEFAULT_TEMP_PASSWORD_LENGTH = 8
_TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def unique_organisation_slug(s: Session, name: str) -> str:
    root = slugify(name) or "org"
    candidate = root
    i = 2
    while s.query(Organisation.id).filter(Organisation.slug == candidate).first() is not None:
        candidate = f"{root}-{i}"[:64]
        i += 1
    return candidate


def _require_user(s: Session, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.")
    return user


def _ensure_email_free(s: Session, email: str, user_id: int | None = None) -> None:
    existing = s.query(User).filter(User.email == email).one_or_none()
    if existing and existing.id != user_id:
        raise ConflictError("This email is already associated with another account.", field="email")


def _validate_password(password: str, min_length: int, field: str = "password") -> None:
    if len(password) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters long.", field=field)


def _roles_for_keys(s: Session, keys: list[str]) -> list[Role]:
    if not keys:
        return []
    roles = s.query(Role).filter(Role.key.in_(keys)).all()
    missing = sorted(set(keys) - {r.key for r in roles})
    if missing:
        raise ValidationError(f"Unknown role: {', '.join(missing)}", field="roles")
    return sorted(roles, key=lambda r: r.key)


def _bump_session_version(user: User) -> None:
    user.session_version = (user.session_version or 0) + 1


# ---------------------------------------------------------------------------
# Create / delete
# ---------------------------------------------------------------------------


def create_user(
    s: Session,
    actor: Caller,
    *,
    email: str,
    first_name: str,
    last_name: str,
    password: str,
    role_keys: list[str] | None = None,
    organisation_id: int | None = None,
    min_password_length: int = DEFAULT_PASSWORD_MIN_LENGTH,
) -> User:
    require_admin(actor, action="create_user")

    email = clean_str(email).lower()
    first_name = clean_str(first_name)
    last_name = clean_str(last_name)
    if not email or not first_name or not last_name or not password:
        raise ValidationError("Email, first name, last name, and password are required.")
    if not is_valid_email(email):
        raise ValidationError("Email address format is invalid.", field="email")
    _validate_password(password, min_password_length)
    _ensure_email_free(s, email)
    if organisation_id is not None and not s.get(Organisation, organisation_id):
        raise NotFoundError("Organisation not found.")
    roles = _roles_for_keys(s, [clean_str(k).upper() for k in (role_keys or [])])

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=generate_password_hash(password),
        is_active=True,
        organisation_id=organisation_id,
    )
    user.roles.extend(roles)
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "roles": sorted(user.role_keys)},
    )
    logger.info("User created id=%s by=%s", user.id, actor.user_id)
    return user


def delete_user(s: Session, actor: Caller, target_user_id: int) -> None:
    """
    Delete a user together with their role links, memberships and redemption
    record. Runs inside the caller's transaction, so it is all-or-nothing.
    """
    require_can_delete(actor, target_user_id)
    user = _require_user(s, target_user_id)
    email = user.email

    # Role links go through the secondary table; memberships and the redemption
    # record are cascaded by the relationships on User.
    user.roles.clear()
    s.delete(user)
    s.flush()

    record_event(
        s,
        actor=None if actor.is_self(target_user_id) else actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(target_user_id),
        metadata={"email": email, "self_service": actor.is_self(target_user_id)},
    )
    logger.info("User deleted id=%s by=%s", target_user_id, actor.user_id)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MembershipInput:
    tier_id: int | None
    status: str
    manager_name: str | None
    expiry_text: str
    is_active: bool

    @classmethod
    def from_dict(cls, raw: Any) -> "MembershipInput | None":
        if not raw:
            return None
        if not isinstance(raw, dict):
            raise ValidationError("Membership details are invalid.", field="membership")
        expiry_text = clean_str(raw.get("expiryText") if "expiryText" in raw else raw.get("expiry"))
        # Parse early so a bad date fails before anything is written.
        parse_uk_date(expiry_text)
        is_active = parse_bool(raw.get("isActive", raw.get("is_active")), "isActive", True)
        return cls(
            tier_id=parse_optional_int(raw.get("membershipTierId", raw.get("tier_id")), "membershipTierId"),
            status=clean_str(raw.get("status")) or MEMBERSHIP_STATUS_ACTIVE,
            manager_name=optional_str(raw.get("managerName", raw.get("manager_name"))),
            expiry_text=expiry_text,
            is_active=is_active,
        )


@dataclass(frozen=True)
class AdminEdit:
    """The admin-only part of an update-user request."""

    pending: PendingEntityBatch
    organisation: Choice | None
    roles: tuple[Choice, ...] | None
    membership: MembershipInput | None
    default_app_id: int | None
    sets_default_app: bool
    sets_organisation: bool = False

    @classmethod
    def from_dict(cls, raw: dict) -> "AdminEdit":
        org_raw = raw.get("organisationChoice")
        roles_raw = raw.get("roleChoices")
        if roles_raw is not None and not isinstance(roles_raw, list):
            raise ValidationError("Role selection is invalid.", field="roles")
        return cls(
            pending=PendingEntityBatch.from_dict(raw.get("pending")),
            organisation=parse_choice(org_raw) if org_raw else None,
            roles=tuple(parse_choice(c, existing_field="key") for c in roles_raw) if roles_raw is not None else None,
            membership=MembershipInput.from_dict(raw.get("membership")),
            default_app_id=parse_optional_int(raw.get("defaultAppId"), "defaultAppId"),
            sets_default_app="defaultAppId" in raw,
            sets_organisation="organisationChoice" in raw,
        )

    def proposed_role_keys(self) -> frozenset[str] | None:
        """Role keys after the edit, known without touching the database."""
        if self.roles is None:
            return None
        pending_keys = {r.client_id: r.key for r in self.pending.roles}
        keys = set()
        for c in self.roles:
            if isinstance(c, Pending):
                if c.client_id not in pending_keys:
                    raise ValidationError(f"Unknown pending role: {c.client_id}", field="roles")
                keys.add(pending_keys[c.client_id])
            else:
                keys.add(clean_str(c.id).upper())
        return frozenset(keys)


@dataclass(frozen=True)
class UpdateResult:
    user_id: int
    admin_demoted: bool = False
    roles_changed: bool = False


def update_user(
    s: Session,
    actor: Caller,
    target_user_id: int,
    fields: dict[str, Any],
    admin: dict[str, Any] | None = None,
    *,
    confirm_demotion: bool = False,
) -> UpdateResult:
    """
    Apply a profile edit and, for admins, organisation/role/membership changes.

    Order inside the transaction: validate everything, create pending
    organisations/roles, then write the user, its roles and its membership.
    An admin removing their own ADMIN role must pass `confirm_demotion`; the
    result then has `admin_demoted=True` and the user's session version is
    bumped so existing sessions stop working.
    """
    require_self_or_admin(actor, target_user_id)
    if admin is not None and not actor.is_admin:
        raise ForbiddenError("Admin access required.")
    if not isinstance(fields, dict):
        raise ValidationError("Profile fields are invalid.")
    if admin is not None and not isinstance(admin, dict):
        raise ValidationError("Admin changes are invalid.")

    first_name = clean_str(fields.get("firstName", fields.get("first_name")))
    last_name = clean_str(fields.get("lastName", fields.get("last_name")))
    email = clean_str(fields.get("email")).lower()
    if not first_name or not last_name or not email:
        raise ValidationError("First name, last name, and email are required.")
    if not is_valid_email(email):
        raise ValidationError("Email address format is invalid.", field="email")
    sets_default_app = "defaultAppId" in fields or "default_app_id" in fields
    default_app_id = parse_optional_int(fields.get("defaultAppId", fields.get("default_app_id")), "defaultAppId")

    edit = AdminEdit.from_dict(admin) if admin is not None else None
    new_role_keys = edit.proposed_role_keys() if edit else None

    user = _require_user(s, target_user_id)
    _ensure_email_free(s, email, user.id)

    editing_self = actor.is_self(target_user_id)
    was_admin = ROLE_ADMIN in user.role_keys
    demoting_self = editing_self and was_admin and new_role_keys is not None and ROLE_ADMIN not in new_role_keys
    if demoting_self and not confirm_demotion:
        raise DemotionConfirmationRequired()

    before = {
        "email": user.email,
        "organisation_id": user.organisation_id,
        "roles": sorted(user.role_keys),
        "default_app_id": user.default_app_id,
    }

    # 1) pending organisations/roles become real rows before anything refers to them
    resolved = edit.pending.resolve(s) if edit else None

    # 2) profile fields
    user.first_name = first_name
    user.last_name = last_name
    user.email = email
    if edit and edit.sets_default_app:
        default_app_id, sets_default_app = edit.default_app_id, True
    if sets_default_app:
        if default_app_id is not None and not s.get(App, default_app_id):
            raise NotFoundError("App not found.")
        user.default_app_id = default_app_id

    roles_changed = False
    if edit and resolved is not None:
        # 3) organisation (only when the selection was sent; null clears it)
        if edit.sets_organisation:
            user.organisation_id = resolved.organisation_id(s, edit.organisation)

        # 4) roles
        if edit.roles is not None:
            keys = sorted({resolved.role_key(c) for c in edit.roles})
            roles = _roles_for_keys(s, keys)
            roles_changed = set(keys) != set(before["roles"])
            user.roles.clear()
            user.roles.extend(roles)
            if roles_changed:
                _bump_session_version(user)
        s.flush()

        # 5) membership: only for MEMBERs; otherwise clear it
        if ROLE_MEMBER in user.role_keys:
            m = edit.membership
            if m is not None and m.tier_id:
                upsert_membership(
                    s,
                    user.id,
                    None,
                    m.tier_id,
                    status=m.status,
                    manager_name=m.manager_name,
                    expiry=parse_uk_date(m.expiry_text),
                    is_active=m.is_active,
                    actor=actor,
                )
        elif edit.roles is not None:
            deactivate_membership(s, user.id, actor=actor)

    s.flush()
    admin_demoted = demoting_self and ROLE_ADMIN not in user.role_keys

    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={
            "before": before,
            "after": {
                "email": user.email,
                "organisation_id": user.organisation_id,
                "roles": sorted(user.role_keys),
                "default_app_id": user.default_app_id,
            },
            "admin_demoted": admin_demoted,
        },
    )
    if admin_demoted:
        logger.warning("Admin user=%s removed their own ADMIN role", user.id)
    return UpdateResult(user_id=user.id, admin_demoted=admin_demoted, roles_changed=roles_changed)


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


def change_password(
    s: Session,
    actor: Caller,
    current_password: str,
    new_password: str,
    *,
    min_length: int = DEFAULT_PASSWORD_MIN_LENGTH,
) -> User:
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required.")
    _validate_password(new_password, min_length, field="newPassword")
    user = _require_user(s, actor.user_id)
    if not check_password_hash(user.password_hash, current_password):
        raise ValidationError("Current password is incorrect.", field="currentPassword")
    user.password_hash = generate_password_hash(new_password)
    _bump_session_version(user)
    record_event(s, actor=actor, action="user.password_change", entity_type="User", entity_id=str(user.id))
    return user


def set_default_app(s: Session, actor: Caller, app_id: int | None) -> User:
    user = _require_user(s, actor.user_id)
    if app_id is not None and not s.get(App, app_id):
        raise NotFoundError("App not found.")
    user.default_app_id = app_id
    record_event(
        s,
        actor=actor,
        action="user.default_app",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"default_app_id": app_id},
    )
    return user


def get_user_profile(s: Session, actor: Caller, user_id: int | None = None) -> dict[str, Any]:
    """Admins may read any account; everyone else reads their own."""
    target_id = user_id if (user_id is not None and actor.is_admin) else actor.user_id
    user = _require_user(s, target_id)
    membership = get_active_membership(s, user.id)

    summary = {
        "organisationName": (
            membership.organisation.name if membership else (user.organisation.name if user.organisation else None)
        ),
        "tierLabel": membership.tier.label if membership else None,
        "status": membership.status if membership else None,
        "expiryText": format_uk_date(membership.expiry) if membership and membership.expiry else None,
        "managerName": membership.manager_name if membership else None,
        "isActive": membership.is_active if membership else None,
    }
    edit = None
    if membership:
        edit = {
            "membershipTierId": membership.tier_id,
            "status": membership.status,
            "managerName": membership.manager_name,
            "expiryText": format_uk_date(membership.expiry),
            "isActive": membership.is_active,
        }
    return {
        "user": {
            "id": user.id,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "organisationId": user.organisation_id,
            "defaultAppId": user.default_app_id,
            "roleKeys": sorted(user.role_keys),
        },
        "membershipSummary": summary,
        "membershipEdit": edit,
    }


# ---------------------------------------------------------------------------
# Admin-only
# ---------------------------------------------------------------------------


def reset_password(
    s: Session,
    actor: Caller,
    target_user_id: int,
    *,
    length: int = DEFAULT_TEMP_PASSWORD_LENGTH,
) -> str:
    """Set a random temporary password on another user's account and return it."""
    require_admin(actor, action="reset_password")
    if actor.is_self(target_user_id):
        raise ValidationError("Admins cannot reset their own password here. Use Change password.")
    user = _require_user(s, target_user_id)
    temp = "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(length))
    user.password_hash = generate_password_hash(temp)
    _bump_session_version(user)
    record_event(
        s,
        actor=actor,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"target_email": user.email, "reset_by": actor.email},
    )
    return temp


def create_organisation(s: Session, actor: Caller, name: str, type: str) -> Organisation:
    require_admin(actor, action="create_organisation")
    name = clean_str(name)
    org_type = clean_str(type).upper()
    if not name:
        raise ValidationError("Organisation name is required.", field="name")
    if org_type not in ORGANISATION_TYPES:
        raise ValidationError("Organisation type is invalid.", field="type")
    org = Organisation(name=name, slug=unique_organisation_slug(s, name), type=org_type)
    s.add(org)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="organisation.create",
        entity_type="Organisation",
        entity_id=str(org.id),
        metadata={"name": name, "slug": org.slug, "type": org_type},
    )
    return org


def create_role(s: Session, actor: Caller, key: str, label: str) -> Role:
    require_admin(actor, action="create_role")
    key = clean_str(key).upper()
    label = clean_str(label)
    if not key or not ROLE_KEY_RE.match(key):
        raise ValidationError("Role key must be uppercase alphanumeric with underscores.", field="key")
    if not label:
        raise ValidationError("Role label is required.", field="label")
    if s.query(Role).filter(Role.key == key).one_or_none():
        raise ConflictError("Role key already exists.", field="key")
    role = Role(key=key, label=label)
    s.add(role)
    s.flush()
    record_event(s, actor=actor, action="role.create", entity_type="Role", entity_id=key, metadata={"label": label})
    return role
