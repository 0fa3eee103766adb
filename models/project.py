import uuid
from sqlalchemy import Column, String, Text, DateTime, func
from sqlalchemy.orm import relationship
from .base import Base


class Project(Base):
    __tablename__ = 'projects'
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    github_url = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
    services = relationship('Service', back_populates='project', order_by='Service.created_at')

    def __repr__(self):
        return f"<Project(id={self.id}, slug='{self.slug}')>"
