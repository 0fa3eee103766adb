import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from typing import Callable, List, Optional, Tuple, Union
import pytest
import pytest_asyncio
import yaml
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from core.config import Settings
from core.db import Base
from executors.base import CommandExecutor
from notifier import Notifier
from shell_models import ShellResult
from allowlist import AllowlistGuard
# 모든 모델을 metadata에 등록
from models.project import Project
from models.service import Service
from models.deployment import Deployment  # noqa: F401
from models.audit_log import AuditLog  # noqa: F401
from models.error_log import ErrorLog  # noqa: F401

PROJECTS_DIR = "/home/pi/projects"

Response = Union[ShellResult, Exception, Callable[[str], ShellResult]]


class FakeExecutor(CommandExecutor):
    """Scripted executor: the first rule whose substring occurs in the command answers it."""

    def __init__(self, rules: Optional[List[Tuple[str, Response]]] = None):
        self.rules: List[Tuple[str, Response]] = list(rules or [])
        self.commands: List[str] = []
        self.closed = False

    def on(self, fragment: str, response: Response) -> "FakeExecutor":
        self.rules.insert(0, (fragment, response))
        return self

    async def run(self, command: str, cwd: Optional[str] = None) -> ShellResult:
        self.commands.append(command)
        for fragment, response in self.rules:
            if fragment in command:
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(command)
                return response
        return ShellResult(success=True, stdout="")

    def ran(self, fragment: str) -> List[str]:
        return [c for c in self.commands if fragment in c]

    async def health(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True

    @property
    def executor_type(self) -> str:
        return "fake"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    async def deploy_started(self, service_name, actor):
        self.events.append(("started", service_name, actor))

    async def deploy_succeeded(self, service_name, commit_sha=None):
        self.events.append(("succeeded", service_name, commit_sha))

    async def deploy_failed(self, service_name, error_message):
        self.events.append(("failed", service_name, error_message))


def ok(stdout: str = "") -> ShellResult:
    return ShellResult(success=True, stdout=stdout, exit_code=0)


def failed(stderr: str = "", stdout: str = "") -> ShellResult:
    return ShellResult(success=False, stdout=stdout, stderr=stderr, exit_code=1)


def write_allowlist(path, repo_paths=(), compose_projects=(), container_names=()):
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump({
            "repo_paths": list(repo_paths),
            "compose_projects": list(compose_projects),
            "container_names": list(container_names),
        }, f)


@pytest.fixture
def allowlist_path(tmp_path):
    path = tmp_path / "allowlist.yaml"
    write_allowlist(
        path,
        repo_paths=[f"{PROJECTS_DIR}/demo", f"{PROJECTS_DIR}/custom"],
        compose_projects=["demo"],
        container_names=["demo-web"],
    )
    return str(path)


@pytest.fixture
def settings(tmp_path, allowlist_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        gateway_url="http://runner.test",
        gateway_token="test-token",
        projects_dir=PROJECTS_DIR,
        log_dir="/tmp",
        allowlist_path=allowlist_path,
        freshness_window=30,
        pin_hash=None,
        session_secret="test-session-secret",
    )


@pytest.fixture
def guard(allowlist_path):
    return AllowlistGuard(allowlist_path)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_async_engine(settings.database_url, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def project(db):
    """Project 'Demo' with one docker service linked to an allowlisted checkout."""
    p = Project(name="Demo", slug="demo", github_url="https://github.com/acme/demo")
    db.add(p)
    await db.flush()
    db.add(Service(
        project_id=p.id,
        name="demo-web",
        type="docker",
        repo_path=f"{PROJECTS_DIR}/demo",
        compose_project="demo",
        deploy_strategy="pull_rebuild",
    ))
    await db.commit()
    return p
