"""Authentication schemas."""

from enum import Enum

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Roles recognised by the queue API."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class Principal(BaseModel):
    """Authenticated caller as asserted by the auth service token.

    ``identity`` is the user id from the ``sub`` claim. ``roles`` holds every
    role granted to the caller; ``role`` is the primary one.
    """

    identity: str = Field(..., min_length=1)
    role: UserRole
    extra_roles: frozenset[UserRole] = frozenset()

    model_config = {"frozen": True}

    @property
    def roles(self) -> frozenset[UserRole]:
        """All roles held by the principal."""
        return self.extra_roles | {self.role}

    def has_role(self, role: UserRole) -> bool:
        """Check whether the principal holds a role."""
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        """Check if the principal has the admin role."""
        return self.has_role(UserRole.ADMIN)
