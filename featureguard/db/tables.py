"""
Table models for the relational store.

Four base tables hold permissions, features, roles and users. Grants live
in the role_feature_permissions junction table, one row per
(role, feature, permission) triple.
"""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint

from featureguard.db.base import Base, BaseModel, new_id, utcnow


class PermissionRecord(BaseModel):
    __tablename__ = "permissions"

    name = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False, default="")

    def __repr__(self):
        return f"PermissionRecord(name={self.name})"


class FeatureRecord(BaseModel):
    __tablename__ = "features"

    name = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False, default="")

    def __repr__(self):
        return f"FeatureRecord(name={self.name})"


class RoleRecord(BaseModel):
    __tablename__ = "roles"

    name = Column(String(100), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False, default="")

    def __repr__(self):
        return f"RoleRecord(name={self.name})"


class UserRecord(BaseModel):
    __tablename__ = "users"

    user_id = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False, default="")
    # NULLs do not collide under a unique constraint
    email = Column(String(255), nullable=True, unique=True, index=True)
    role_id = Column(
        String(36),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    def __repr__(self):
        return f"UserRecord(user_id={self.user_id})"


class RoleFeaturePermission(Base):
    """One permission held by one role over one feature."""

    __tablename__ = "role_feature_permissions"
    __table_args__ = (UniqueConstraint("role_id", "feature_id", "permission_id"),)

    id = Column(String(36), primary_key=True, default=new_id)
    role_id = Column(
        String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    feature_id = Column(
        String(36),
        ForeignKey("features.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id = Column(
        String(36),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"RoleFeaturePermission(role_id={self.role_id}, "
            f"feature_id={self.feature_id}, permission_id={self.permission_id})"
        )
