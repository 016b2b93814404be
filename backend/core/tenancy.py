"""
Tenant/Role Gate — caller identity and tenant binding.

Every catalog, prediction and training-history operation receives a
Caller. Operations declare the role they need; company-scoped operations
additionally bind the requested company id to the caller's own tenant.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

from core.errors import AuthorizationError, ValidationError


class Role(str, Enum):
    ADMIN = "admin"
    COMPANY = "company"


class RequiredRole(str, Enum):
    ANY = "any"  # any authenticated caller
    COMPANY = "company"
    ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    user_id: uuid.UUID
    role: Role
    company_id: uuid.UUID | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def require_role(caller: Caller, required: RequiredRole) -> Caller:
    """Raise AuthorizationError unless the caller holds the required role."""
    if required == RequiredRole.ANY:
        return caller
    if caller.role.value != required.value:
        raise AuthorizationError(
            f"Operation requires the {required.value} role",
            required_role=required.value,
            caller_role=caller.role.value,
        )
    return caller


def bind_tenant(caller: Caller, company_id: uuid.UUID | str) -> uuid.UUID:
    """
    Bind a company-scoped operation to the caller's tenant.

    Admins carry no tenant, so they can never satisfy the binding; they use
    the admin-only cross-tenant views instead.
    """
    if isinstance(company_id, uuid.UUID):
        requested = company_id
    else:
        try:
            requested = uuid.UUID(str(company_id))
        except ValueError:
            raise ValidationError("Invalid company id", field="company_id", value=str(company_id))
    if caller.role != Role.COMPANY or caller.company_id is None:
        raise AuthorizationError(
            "Company-scoped operation requires a company account",
            company_id=str(requested),
            caller_role=caller.role.value,
        )
    if caller.company_id != requested:
        raise AuthorizationError(
            "Cannot access another company's data",
            company_id=str(requested),
        )
    return requested
