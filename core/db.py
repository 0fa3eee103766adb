import os
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import create_engine
from dotenv import load_dotenv

# .env 파일에서 환경변수 로드
load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./app.db")

# Base 정의 (모델에서 import)
Base = declarative_base()

# 싱글턴 엔진/세션
engine = None
SessionLocal = None

def init_engine(db_url=DATABASE_URL):
    global engine, SessionLocal
    if engine is None:
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        engine = create_async_engine(db_url, future=True, connect_args=connect_args)
        SessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine

def get_db_url():
    return DATABASE_URL

def get_sync_db_url(db_url=DATABASE_URL):
    # Alembic은 동기 드라이버 사용
    return db_url.replace("+aiosqlite", "") if "+aiosqlite" in db_url else db_url

def get_sync_engine(db_url=DATABASE_URL):
    return create_engine(get_sync_db_url(db_url), future=True)

def get_engine():
    return engine

def get_sessionmaker():
    if SessionLocal is None:
        init_engine()
    return SessionLocal

# FastAPI 의존성 주입용 세션 생성 함수
async def get_db():
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        yield session
