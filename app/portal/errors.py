"""
Error taxonomy shared by the service layer and the HTTP handlers.

Services raise these; `create_app()` turns them into JSON responses and rolls
back the request session, so a failed mutation never leaves partial writes.
"""
from __future__ import annotations

from typing import Any


class PortalError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": False, "error": self.message, "code": self.code}
        out.update(self.details)
        return out


class ValidationError(PortalError):
    status_code = 400
    code = "validation_error"


class DemotionConfirmationRequired(ValidationError):
    code = "confirmation_required"

    def __init__(self, message: str = "Removing your own ADMIN role must be confirmed.") -> None:
        super().__init__(message, confirmation_required=True)


class ForbiddenError(PortalError):
    status_code = 403
    code = "forbidden"


class NotFoundError(PortalError):
    status_code = 404
    code = "not_found"


class ConflictError(PortalError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, field=field)
        self.field = field
