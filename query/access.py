"""
Access Policy

Row visibility and ownership rules for record resources (patients,
sessions, module runs):
- Administrators see every row; anyone else sees only rows they own.
- Ownership conditions are conjoined into the statement's WHERE clause, so a
  row owned by someone else is indistinguishable from a missing one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from schema.shape import ShapeDescriptor
from utils.errors import AuthorizationError, ValidationError

OWNER_FIELD = "clinician_id"


class Role(str, Enum):
    """Caller roles, valued with the codes stored in the users table"""
    ADMINISTRATOR = "ADMINISTRADOR"
    CLINICIAN = "TERAPEUTA"
    UNRECOGNIZED = ""


# One alias table for every caller of normalize_role
ROLE_ALIASES = {
    Role.ADMINISTRATOR: {"ADMIN", "ADMINISTRADOR", "ADMINISTRATOR", "SUPERADMIN", "SUPER ADMIN", "SUPER_ADMIN", "ROOT"},
    Role.CLINICIAN: {"TERAPEUTA", "THERAPIST", "CLINICIAN"},
}


def normalize_role(raw: Any) -> Role:
    """Map a free-text role claim onto a Role; unknown text is UNRECOGNIZED."""
    text = str(raw if raw is not None else "").strip().upper()
    for role, aliases in ROLE_ALIASES.items():
        if text in aliases:
            return role
    return Role.UNRECOGNIZED


@dataclass(frozen=True)
class Caller:
    """The authenticated identity a request runs as"""
    id: int
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMINISTRATOR

    @classmethod
    def from_claims(cls, claims: dict) -> "Caller":
        """Build a caller from verified token claims (`rol` or `role`)."""
        try:
            caller_id = int(claims.get("id"))
        except (TypeError, ValueError):
            caller_id = 0
        return cls(
            id=caller_id,
            role=normalize_role(claims.get("rol", claims.get("role"))),
            first_name=claims.get("nombre", claims.get("first_name")),
            last_name=claims.get("apellido", claims.get("last_name")),
            email=claims.get("email"),
        )


class AccessPolicy:
    """Ownership rules for one caller."""

    def __init__(self, caller: Caller):
        self.caller = caller

    @property
    def may_reassign_owner(self) -> bool:
        return self.caller.is_admin

    def ownership_filter(self, shape: ShapeDescriptor, scope_to_self: Optional[bool] = None) -> dict[str, Any]:
        """
        Equality filter to conjoin into every read or write on `shape`.

        Non-administrators are always scoped to themselves. Administrators
        are unscoped unless `scope_to_self` asks otherwise. Returns an empty
        filter when the ownership column did not resolve.
        """
        scoped = True if not self.caller.is_admin else bool(scope_to_self)
        if not scoped or not shape.has(OWNER_FIELD):
            return {}
        return {OWNER_FIELD: self.caller.id}

    def owner_for_create(self, requested: Any, require_explicit: bool = True) -> int:
        """
        Owner id for a new row.

        Clinicians always own what they create; a requested owner is ignored.
        Administrators must name the owner when `require_explicit`, otherwise
        they default to themselves.
        """
        if not self.caller.is_admin:
            return self.caller.id
        if requested is None or requested == "":
            if require_explicit:
                raise ValidationError("An owning clinician (clinician_id) must be assigned")
            return self.caller.id
        try:
            return int(requested)
        except (TypeError, ValueError):
            raise ValidationError("clinician_id is invalid")

    def require_admin(self):
        if not self.caller.is_admin:
            raise AuthorizationError("Administrator access required")
