import enum
from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, UniqueConstraint, Enum as SAEnum, text
from sqlalchemy.orm import relationship
from taskhub.config import settings
from taskhub.database import Base
from taskhub.utils.timeutils import utcnow, ensure_aware


class Role(str, enum.Enum):
    """Workspace roles, ordered MEMBER < ADMIN < OWNER."""

    MEMBER = "MEMBER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self.value]

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank


_ROLE_RANK = {"MEMBER": 1, "ADMIN": 2, "OWNER": 3}


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("MembersWorkspace", back_populates="workspace", passive_deletes=True)
    invitations = relationship("Invitation", back_populates="workspace", passive_deletes=True)


class MembersWorkspace(Base):
    __tablename__ = "members_workspace"
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="_workspace_member_uc"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SAEnum(Role, native_enum=False, length=10), nullable=False, default=Role.MEMBER)
    invite_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", foreign_keys=[user_id])
    invite_by = relationship("User", foreign_keys=[invite_by_id])


class Invitation(Base):
    __tablename__ = "invitations"
    __table_args__ = (
        # at most one open invitation per email and workspace
        Index(
            "ix_open_invitation_email",
            "workspace_id",
            "email",
            unique=True,
            postgresql_where=text("accepted_at IS NULL"),
            sqlite_where=text("accepted_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(128), unique=True, index=True, nullable=False)
    invite_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    workspace = relationship("Workspace", back_populates="invitations")
    invite_by = relationship("User", foreign_keys=[invite_by_id])

    @property
    def expires_at(self) -> datetime:
        # computed, never stored
        return ensure_aware(self.created_at) + timedelta(days=settings.INVITATION_EXPIRE_DAYS)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at
