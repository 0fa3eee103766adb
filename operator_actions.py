import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import commands
from allowlist import AllowlistGuard, CONTAINER_NAME, COMPOSE_PROJECT, REPO_PATH
from executors.base import CommandExecutor
from shell_models import OperationResult
from utils.audit import log_audit_event
from utils.exceptions import GatewayError

logger = logging.getLogger(__name__)


class OperatorActions:
    """Allowlist-gated single operations on containers, compose projects and checkouts."""

    def __init__(self, executor: CommandExecutor, guard: AllowlistGuard, db: AsyncSession):
        self.executor = executor
        self.guard = guard
        self.db = db

    async def _execute(
        self,
        operation: str,
        command: str,
        actor: str,
        entity_type: str,
        entity_id: str,
        audit: bool = True,
    ) -> OperationResult:
        try:
            result = await self.executor.run(command)
        except GatewayError as e:
            logger.error("%s on %s failed: %s", operation, entity_id, e.message)
            return OperationResult(success=False, operation=operation, error=e.message)
        op = OperationResult(
            success=result.success,
            operation=operation,
            output=result.output,
            error=None if result.success else (result.stderr or result.stdout or "command failed"),
        )
        if audit:
            await log_audit_event(
                self.db,
                actor=actor,
                action=operation,
                entity_type=entity_type,
                entity_id=entity_id,
                detail={"success": op.success},
            )
        return op

    async def restart_container(self, name: str, actor: str) -> OperationResult:
        await self.guard.require(CONTAINER_NAME, name, self.db, actor)
        return await self._execute("docker_restart", commands.docker_restart(name), actor, "container", name)

    async def container_logs(self, name: str, actor: str, tail: int = 100) -> OperationResult:
        await self.guard.require(CONTAINER_NAME, name, self.db, actor)
        return await self._execute("docker_logs", commands.docker_logs(name, tail), actor, "container", name, audit=False)

    async def container_status(self, name: str, actor: str) -> OperationResult:
        await self.guard.require(CONTAINER_NAME, name, self.db, actor)
        result = await self._execute("docker_status", commands.docker_status(name), actor, "container", name, audit=False)
        if result.success:
            result.output = result.output.strip() or "not found"
        return result

    async def compose_up(self, project: str, actor: str, build: bool = True, service: Optional[str] = None) -> OperationResult:
        await self.guard.require(COMPOSE_PROJECT, project, self.db, actor)
        return await self._execute("compose_up", commands.compose_up(project, build, service), actor, "compose", project)

    async def git_pull(self, repo_path: str, actor: str) -> OperationResult:
        repo_path = commands.validate_path(repo_path)
        await self.guard.require(REPO_PATH, repo_path, self.db, actor)
        result = await self._execute("git_pull", commands.git_pull(repo_path), actor, "repo", repo_path)
        if result.success:
            head = await self.executor.run(commands.git_head(repo_path))
            if head.success and head.stdout.strip():
                result.commit_sha = head.stdout.strip()
        return result
