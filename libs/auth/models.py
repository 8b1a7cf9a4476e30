from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

ADMIN_ROLES = frozenset({"admin", "service_role"})


class AuthUser(BaseModel):
    """
    Represents an authenticated account from a Supabase JWT.

    ``user_id`` is the account id that billing records use as their owner
    reference.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    app_metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def is_admin(self) -> bool:
        if self.role in ADMIN_ROLES:
            return True
        return self.app_metadata.get("role") == "admin" or "admin" in (
            self.app_metadata.get("roles") or []
        )
