"""
Organisations and roles proposed inline during a user edit.

The client refers to not-yet-created rows by a correlation id it chose. The
batch creates them first inside the caller's transaction and hands back real
ids/keys, so every later write in that transaction only ever sees real rows.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from sqlalchemy.orm import Session

from app.portal.constants import ORGANISATION_TYPES, ROLE_KEY_RE
from app.portal.errors import NotFoundError, ValidationError
from app.portal.models import Organisation, Role
from app.portal.utils import clean_str


@dataclass(frozen=True)
class Existing:
    id: int | str  # organisation id, or role key for roles


@dataclass(frozen=True)
class Pending:
    client_id: str


Choice = Union[Existing, Pending]


def parse_choice(raw: Any, *, existing_field: str = "id") -> Choice:
    """
    {"kind": "existing", "id": 3} / {"kind": "existing", "key": "MEMBER"} / {"kind": "pending", "clientId": "tmp-1"}
    """
    if not isinstance(raw, dict):
        raise ValidationError("Selection is invalid.")
    kind = clean_str(raw.get("kind"))
    if kind == "existing":
        value = raw.get(existing_field)
        if value is None or clean_str(value) == "":
            raise ValidationError("Selection is invalid.")
        return Existing(value)
    if kind == "pending":
        client_id = clean_str(raw.get("clientId") or raw.get("client_id"))
        if not client_id:
            raise ValidationError("Selection is invalid.")
        return Pending(client_id)
    raise ValidationError("Selection is invalid.")


@dataclass(frozen=True)
class PendingOrganisation:
    client_id: str
    name: str
    type: str

    @classmethod
    def from_dict(cls, raw: Any) -> "PendingOrganisation":
        if not isinstance(raw, dict):
            raise ValidationError("Pending organisation is invalid.")
        item = cls(
            client_id=clean_str(raw.get("clientId") or raw.get("client_id")),
            name=clean_str(raw.get("name")),
            type=clean_str(raw.get("type")).upper(),
        )
        if not item.client_id or not item.name:
            raise ValidationError("Pending organisation is invalid.")
        if item.type not in ORGANISATION_TYPES:
            raise ValidationError("Organisation type is invalid.")
        return item


@dataclass(frozen=True)
class PendingRole:
    client_id: str
    key: str
    label: str

    @classmethod
    def from_dict(cls, raw: Any) -> "PendingRole":
        if not isinstance(raw, dict):
            raise ValidationError("Pending role is invalid.")
        item = cls(
            client_id=clean_str(raw.get("clientId") or raw.get("client_id")),
            key=clean_str(raw.get("key")).upper(),
            label=clean_str(raw.get("label")),
        )
        if not item.client_id or not item.key or not item.label:
            raise ValidationError("Pending role is invalid.")
        if not ROLE_KEY_RE.match(item.key):
            raise ValidationError("Role key must be uppercase alphanumeric with underscores.")
        return item


@dataclass
class ResolvedBatch:
    organisation_ids: dict[str, int] = field(default_factory=dict)
    role_keys: dict[str, str] = field(default_factory=dict)

    def organisation_id(self, s: Session, choice: Choice | None) -> int | None:
        if choice is None:
            return None
        if isinstance(choice, Pending):
            try:
                return self.organisation_ids[choice.client_id]
            except KeyError:
                raise ValidationError(f"Unknown pending organisation: {choice.client_id}") from None
        try:
            org_id = int(choice.id)
        except (TypeError, ValueError):
            raise ValidationError("Organisation selection is invalid.") from None
        if not s.get(Organisation, org_id):
            raise NotFoundError("Organisation not found.")
        return org_id

    def role_key(self, choice: Choice) -> str:
        if isinstance(choice, Pending):
            try:
                return self.role_keys[choice.client_id]
            except KeyError:
                raise ValidationError(f"Unknown pending role: {choice.client_id}") from None
        return clean_str(choice.id).upper()


@dataclass(frozen=True)
class PendingEntityBatch:
    organisations: tuple[PendingOrganisation, ...] = ()
    roles: tuple[PendingRole, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> "PendingEntityBatch":
        """Validate everything up front; a single malformed item fails the whole batch."""
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ValidationError("Pending entities are invalid.")
        orgs_raw = raw.get("organisations") or []
        roles_raw = raw.get("roles") or []
        if not isinstance(orgs_raw, list) or not isinstance(roles_raw, list):
            raise ValidationError("Pending entities are invalid.")
        orgs = tuple(PendingOrganisation.from_dict(o) for o in orgs_raw)
        roles = tuple(PendingRole.from_dict(r) for r in roles_raw)
        for items, kind in ((orgs, "organisation"), (roles, "role")):
            client_ids = [i.client_id for i in items]
            if len(set(client_ids)) != len(client_ids):
                raise ValidationError(f"Duplicate pending {kind} id.")
        return cls(organisations=orgs, roles=roles)

    def resolve(self, s: Session) -> ResolvedBatch:
        from app.portal.accounts import unique_organisation_slug

        resolved = ResolvedBatch()
        for o in self.organisations:
            org = Organisation(name=o.name, slug=unique_organisation_slug(s, o.name), type=o.type)
            s.add(org)
            s.flush()
            resolved.organisation_ids[o.client_id] = org.id
        for r in self.roles:
            # Re-use a role that already exists under the same key.
            if not s.query(Role).filter(Role.key == r.key).one_or_none():
                s.add(Role(key=r.key, label=r.label))
                s.flush()
            resolved.role_keys[r.client_id] = r.key
        return resolved
