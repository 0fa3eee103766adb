import enum
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from .base import Base


class DeployStrategy(str, enum.Enum):
    PULL_RESTART = "pull_restart"
    PULL_REBUILD = "pull_rebuild"
    COMPOSE_UP = "compose_up"
    MANUAL = "manual"


class Service(Base):
    __tablename__ = 'services'
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(36), ForeignKey('projects.id', ondelete='CASCADE'), nullable=True, index=True)
    name = Column(String(100), nullable=False)
    type = Column(String(20), nullable=False, default="docker")  # docker, vercel, external
    repo_path = Column(String(255), nullable=True)
    compose_project = Column(String(100), nullable=True)
    deploy_strategy = Column(String(20), nullable=False, default=DeployStrategy.PULL_REBUILD.value)
    created_at = Column(DateTime, server_default=func.now())
    project = relationship('Project', back_populates='services')
    deployments = relationship('Deployment', back_populates='service')

    def __repr__(self):
        return f"<Service(id={self.id}, name='{self.name}', strategy='{self.deploy_strategy}')>"
