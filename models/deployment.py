import enum
import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from .base import Base


class DeployStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {DeployStatus.SUCCESS.value, DeployStatus.FAILED.value, DeployStatus.CANCELLED.value}


def new_deploy_id() -> str:
    return str(uuid.uuid4())


class Deployment(Base):
    __tablename__ = 'deployments'
    id = Column(String(36), primary_key=True, default=new_deploy_id)
    service_id = Column(String(36), ForeignKey('services.id', ondelete='SET NULL'), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=DeployStatus.PENDING.value, index=True)
    started_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    commit_sha = Column(String(64), nullable=True)
    logs_pointer = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(255), nullable=False)
    # 관계
    service = relationship('Service', back_populates='deployments')

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<Deployment(id={self.id}, service_id={self.service_id}, status='{self.status}')>"
