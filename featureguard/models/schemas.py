"""
Input schemas for adapter write operations.

Create schemas carry every field a new record needs. Update schemas are
partial: only fields explicitly set by the caller are applied, so passing
``role_id=None`` clears a user's role while omitting it leaves the role alone.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from featureguard.models.entities import FeatureGrant, Id


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def changes(self) -> Dict[str, Any]:
        """Return the fields the caller explicitly set."""
        return self.model_dump(exclude_unset=True)


def _require_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("name must not be empty")
    return value


class PermissionCreate(_Schema):
    name: str
    description: str = ""

    @field_validator("name")
    def check_name(cls, value):
        return _require_name(value)


class PermissionUpdate(_Schema):
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name")
    def check_name(cls, value):
        return None if value is None else _require_name(value)


class FeatureCreate(_Schema):
    name: str
    description: str = ""

    @field_validator("name")
    def check_name(cls, value):
        return _require_name(value)


class FeatureUpdate(_Schema):
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name")
    def check_name(cls, value):
        return None if value is None else _require_name(value)


class RoleCreate(_Schema):
    name: str
    description: str = ""
    grants: List[FeatureGrant] = Field(default_factory=list)

    @field_validator("name")
    def check_name(cls, value):
        return _require_name(value)


class RoleUpdate(_Schema):
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name")
    def check_name(cls, value):
        return None if value is None else _require_name(value)


class UserCreate(_Schema):
    user_id: str
    name: str = ""
    email: Optional[str] = None
    role_id: Optional[Id] = None

    @field_validator("user_id")
    def check_user_id(cls, value):
        if not value.strip():
            raise ValueError("user_id must not be empty")
        return value

    @field_validator("email")
    def blank_email_is_none(cls, value):
        if value is not None and not value.strip():
            return None
        return value


class UserUpdate(_Schema):
    name: Optional[str] = None
    email: Optional[str] = None
    role_id: Optional[Id] = None

    @field_validator("email")
    def blank_email_is_none(cls, value):
        if value is not None and not value.strip():
            return None
        return value
