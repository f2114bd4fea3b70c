from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserRole(str, Enum):
    FREE_USER = "free_user"
    PRO_USER = "pro_user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# Roles the authoritative limiter never meters
UNMETERED_ROLES = frozenset({UserRole.PRO_USER, UserRole.ADMIN, UserRole.SUPER_ADMIN})


class AuthenticatedUser(BaseModel):
    """Identity plus the subscription fields mirrored by the authority.

    The mirrored fields can disagree with the locally cached Subscription.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    role: UserRole = UserRole.FREE_USER
    subscription_status: str = "free"
    subscription_plan: Optional[str] = None
    subscription_expires_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)
