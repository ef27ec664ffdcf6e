from sqlalchemy import Column, Integer, String, DateTime, JSON
from taskhub.database import Base
from taskhub.utils.timeutils import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(20), nullable=False, default="audit")  # audit, system
    action = Column(String(100), nullable=False)
    module = Column(String(50), nullable=False)
    entity = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    workspace_id = Column(Integer, nullable=True, index=True)
    project_id = Column(Integer, nullable=True)
    actor = Column(JSON, nullable=False)
    # denormalised actor id so the per-user listing stays an indexed lookup
    actor_id = Column(Integer, nullable=False, index=True)
    changes = Column(JSON, nullable=True)
    extra = Column("metadata", JSON, nullable=True)
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
