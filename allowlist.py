"""
Allowlist guard.

The allowlist names every repository path, compose project and container the
service may touch. It lives in a YAML file and is re-read on every check, so
an administrative update is visible to the very next decision.

    repo_paths:
      - /home/pi/projects/dashboard
    compose_projects:
      - dashboard
    container_names:
      - dashboard-web
"""
import logging
import os
import tempfile
from typing import Optional, Set
import yaml
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from utils.audit import log_audit_event
from utils.exceptions import OperationNotAllowed

logger = logging.getLogger(__name__)

REPO_PATH = "repo_path"
COMPOSE_PROJECT = "compose_project"
CONTAINER_NAME = "container_name"

_FIELDS = {
    REPO_PATH: "repo_paths",
    COMPOSE_PROJECT: "compose_projects",
    CONTAINER_NAME: "container_names",
}


def normalize_path(path: str) -> str:
    path = os.path.normpath((path or "").strip())
    return path.rstrip("/") or "/"


class Allowlist(BaseModel):
    repo_paths: Set[str] = set()
    compose_projects: Set[str] = set()
    container_names: Set[str] = set()

    @field_validator("repo_paths")
    @classmethod
    def _normalize_paths(cls, v: Set[str]) -> Set[str]:
        for p in v:
            if not os.path.isabs(p):
                raise ValueError(f"repo path must be absolute: {p}")
        return {normalize_path(p) for p in v}

    @field_validator("compose_projects", "container_names")
    @classmethod
    def _strip_names(cls, v: Set[str]) -> Set[str]:
        return {n.strip() for n in v if n and n.strip()}

    def to_yaml_dict(self) -> dict:
        return {field: sorted(getattr(self, field)) for field in _FIELDS.values()}


class AllowlistGuard:
    def __init__(self, config_path: str):
        self.config_path = config_path

    def snapshot(self) -> Allowlist:
        """Current persisted allowlist; empty (deny-all) when missing or unreadable."""
        if not os.path.exists(self.config_path):
            logger.warning("allowlist file not found: %s (deny all)", self.config_path)
            return Allowlist()
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError("allowlist document must be a mapping")
            return Allowlist(**{field: data.get(field) or [] for field in _FIELDS.values()})
        except (yaml.YAMLError, ValueError, TypeError) as e:
            # 파싱 실패 시 전부 거부
            logger.warning("allowlist could not be loaded from %s: %s (deny all)", self.config_path, e)
            return Allowlist()

    def is_allowed(self, kind: str, value: Optional[str]) -> bool:
        if kind not in _FIELDS:
            raise ValueError(f"unknown allowlist kind: {kind}")
        if not value:
            return False
        entries = getattr(self.snapshot(), _FIELDS[kind])
        if kind == REPO_PATH:
            return normalize_path(value) in entries
        return value in entries

    async def require(self, kind: str, value: Optional[str], db: AsyncSession, actor: str) -> None:
        if self.is_allowed(kind, value):
            return
        logger.warning("blocked operation: %s %r is not allowlisted (actor=%s)", kind, value, actor)
        await log_audit_event(
            db,
            actor=actor,
            action="blocked_operation",
            entity_type="allowlist",
            entity_id=value,
            detail={"kind": kind, "value": value},
        )
        raise OperationNotAllowed(kind, value or "")

    async def update(self, allowlist: Allowlist, db: AsyncSession, actor: str) -> Allowlist:
        previous = self.snapshot()
        self._write(allowlist)
        await log_audit_event(
            db,
            actor=actor,
            action="allowlist_update",
            entity_type="allowlist",
            detail={"before": previous.to_yaml_dict(), "after": allowlist.to_yaml_dict()},
        )
        logger.info("allowlist updated by %s", actor)
        return allowlist

    def _write(self, allowlist: Allowlist) -> None:
        directory = os.path.dirname(os.path.abspath(self.config_path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".allowlist-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(allowlist.to_yaml_dict(), f, allow_unicode=True, sort_keys=True)
            os.replace(tmp_path, self.config_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
