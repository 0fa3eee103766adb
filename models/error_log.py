from sqlalchemy import Column, Integer, String, Text, DateTime, func
from .base import Base


class ErrorLog(Base):
    """API 요청 처리 중 발생한 도메인/HTTP 에러 기록"""
    __tablename__ = 'error_log'
    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), nullable=False, index=True)
    status_code = Column(Integer, nullable=False, default=500)
    message = Column(Text, nullable=False)
    dev_message = Column(Text, nullable=True)
    method = Column(String(10), nullable=True)
    url = Column(String(255), nullable=True)
    stack = Column(Text, nullable=True)
    actor = Column(String(255), nullable=True)  # PIN 세션 이메일 (없으면 NULL)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
