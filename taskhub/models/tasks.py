import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import relationship
from taskhub.database import Base
from taskhub.utils.timeutils import utcnow


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(SAEnum(TaskPriority, native_enum=False, length=10), nullable=False)
    status_id = Column(Integer, ForeignKey("status_project.id"), nullable=False, index=True)
    list_id = Column(Integer, ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    responsible_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    conclusion = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    list = relationship("List", back_populates="tasks")
    status = relationship("StatusProject")
    owner = relationship("User", foreign_keys=[owner_id])
    responsible = relationship("User", foreign_keys=[responsible_id])
