"""
Central constants for the membership portal.
"""
from __future__ import annotations

import re

# Role keys seeded at install time. Admins may create more at runtime.
ROLE_ADMIN = "ADMIN"
ROLE_MEMBER = "MEMBER"
ROLE_STUDENT = "STUDENT"
ROLE_MODULE_LEADER = "MODULE_LEADER"

ROLE_SEED = (
    (ROLE_ADMIN, "Administrator"),
    (ROLE_MEMBER, "Member"),
    (ROLE_STUDENT, "Student"),
    (ROLE_MODULE_LEADER, "Module leader"),
)

ROLE_KEY_RE = re.compile(r"^[A-Z0-9_]+$")

ORGANISATION_TYPES = frozenset({"UNIVERSITY", "INDUSTRY", "OTHER"})
ORGANISATION_SLUG_MAX = 64

# App keys
APP_MEMBERSHIP_DASHBOARD = "MEMBERSHIP_DASHBOARD"
APP_IXN_WORKFLOW_MANAGER = "IXN_WORKFLOW_MANAGER"
APP_TALENT_DISCOVERY = "TALENT_DISCOVERY"

ACCESS_TYPE_ALLOW = "ALLOW"

# (app key, display name, ALLOW rule tier keys)
APP_SEED = (
    (APP_MEMBERSHIP_DASHBOARD, "Membership Dashboard", ("bronze",)),
    (APP_IXN_WORKFLOW_MANAGER, "IXN Workflow Manager", ("silver",)),
    (APP_TALENT_DISCOVERY, "Talent Discovery", ("bronze", "gold")),
)

APP_PATHS = {
    APP_MEMBERSHIP_DASHBOARD: "/membership-dashboard",
    APP_IXN_WORKFLOW_MANAGER: "/ixn-workflow-manager",
    APP_TALENT_DISCOVERY: "/talent-discovery",
}

# Roles that open an app regardless of membership tier (ADMIN opens everything).
APP_BYPASS_ROLES: dict[str, frozenset[str]] = {
    APP_IXN_WORKFLOW_MANAGER: frozenset({ROLE_MODULE_LEADER}),
}

MEMBERSHIP_STATUS_ACTIVE = "active"
MEMBERSHIP_STATUS_INACTIVE = "inactive"

DEFAULT_MANAGER_NAME = "Marco Piccionello"
