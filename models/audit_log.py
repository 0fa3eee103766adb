from sqlalchemy import Column, Integer, String, Text, DateTime, func
from .base import Base

class AuditLog(Base):
    __tablename__ = 'audit_logs'
    id = Column(Integer, primary_key=True, index=True)
    actor = Column(String(255), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)  # project, service, deploy, container, allowlist
    entity_id = Column(String(255), nullable=True, index=True)
    detail = Column(Text, nullable=True)  # JSON 문자열
    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return f"<AuditLog(id={self.id}, actor='{self.actor}', action='{self.action}')>"
