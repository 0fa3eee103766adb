from logging.config import fileConfig
from alembic import context
from sqlalchemy import pool
from core.db import Base, get_db_url, get_sync_engine
# 모델 등록 (metadata 채우기)
from models.project import Project  # noqa: F401
from models.service import Service  # noqa: F401
from models.deployment import Deployment  # noqa: F401
from models.audit_log import AuditLog  # noqa: F401
from models.error_log import ErrorLog  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=get_db_url().replace("+aiosqlite", ""),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # Alembic은 동기 드라이버 사용
    connectable = get_sync_engine(get_db_url())
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
