"""
Deploy orchestrator.

Resolves where a project lives on the remote host, prepares the checkout
(git fetch/checkout/pull), discovers compose profiles and then launches
`docker compose up` as a detached pipeline whose output goes to a log file.
The call returns as soon as the pipeline has been started; the completion
detector later reads the log file to decide the outcome.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
import commands
from allowlist import AllowlistGuard, REPO_PATH, COMPOSE_PROJECT
from core.config import Settings
from deploy_store import DeployStore
from executors.base import CommandExecutor
from models.project import Project
from models.service import Service, DeployStrategy
from notifier import Notifier
from shell_models import ShellResult
from utils.audit import log_audit_event
from utils.exceptions import DeployError, GatewayError, PreconditionError, ResolutionError

logger = logging.getLogger(__name__)


@dataclass
class DeployHandle:
    deploy_id: str
    output: str
    repo_path: str
    log_pointer: str
    detected_path: Optional[str] = None
    branch: Optional[str] = None
    commit_sha: Optional[str] = None


@dataclass
class ProjectDeployResult:
    project_id: str
    project_name: str
    success: bool
    deploy_id: Optional[str] = None
    log_pointer: Optional[str] = None
    error: Optional[str] = None


@dataclass
class _Transcript:
    sections: List[str] = field(default_factory=list)

    def add(self, title: str, body: str) -> None:
        self.sections.append(f"=== {title} ===\n{(body or '').rstrip() or 'No output'}\n")

    def text(self) -> str:
        return "\n".join(self.sections)


def primary_service(services: Sequence[Service]) -> Optional[Service]:
    """docker 타입 서비스 우선, 없으면 첫 번째 서비스"""
    for s in services:
        if s.type == "docker":
            return s
    return services[0] if services else None


def candidate_paths(projects_dir: str, project: Project) -> List[str]:
    base = projects_dir.rstrip("/")
    raw = [
        f"{base}/{project.slug}",
        f"{base}/{project.name}",
        f"{base}/{'-'.join(project.name.split())}",
    ]
    seen = []
    for p in raw:
        if p not in seen:
            seen.append(p)
    return seen


class DeployOrchestrator:
    def __init__(
        self,
        executor: CommandExecutor,
        guard: AllowlistGuard,
        db: AsyncSession,
        settings: Settings,
        notifier: Notifier,
    ):
        self.executor = executor
        self.guard = guard
        self.db = db
        self.settings = settings
        self.notifier = notifier
        self.store = DeployStore(db)

    async def load_project(self, project_id: str) -> Project:
        result = await self.db.execute(
            select(Project).options(selectinload(Project.services)).where(Project.id == project_id)
        )
        project = result.scalars().first()
        if project is None:
            raise ResolutionError("Project not found", dev_message=f"project id {project_id}")
        return project

    async def _run_step(self, transcript: _Transcript, title: str, command: str) -> ShellResult:
        logger.info("[Deploy] %s", title)
        result = await self.executor.run(command)
        transcript.add(title, result.output)
        if not result.success:
            logger.error("[Deploy] %s failed: %s", title, result.output[:500])
            raise GatewayError(f"{title} failed: {result.output}", dev_message=command)
        return result

    async def resolve_path(
        self,
        project: Project,
        services: Sequence[Service],
        custom_path: Optional[str],
        actor: str,
    ) -> "tuple[str, Optional[str]]":
        """Returns (repo_path, detected_path). detected_path is None for an explicit path."""
        if custom_path and custom_path.strip():
            path = commands.validate_path(custom_path)
            await self.guard.require(REPO_PATH, path, self.db, actor)
            return path, None

        for service in services:
            if service.repo_path:
                path = commands.validate_path(service.repo_path)
                logger.info("[Deploy] Found repo_path from service %s: %s", service.name, path)
                await self.guard.require(REPO_PATH, path, self.db, actor)
                return path, path

        candidates = candidate_paths(self.settings.projects_dir, project)
        logger.info("[Deploy] No service repo_path, trying paths: %s", candidates)
        # 순차 탐색, 먼저 존재하는 경로가 이긴다
        for path in candidates:
            if not self.guard.is_allowed(REPO_PATH, path):
                logger.info("[Deploy] Skipping %s (not allowlisted)", path)
                continue
            result = await self.executor.run(commands.dir_exists(path))
            logger.info("[Deploy] Check %s: %s", path, result.stdout.strip())
            if "EXISTS" in result.stdout:
                return path, path
        raise ResolutionError(
            "could not determine deploy directory",
            dev_message="Could not find project directory. Please enter the repo path manually.",
        )

    async def discover_profiles(self, repo_path: str, transcript: _Transcript) -> List[str]:
        result = await self.executor.run(commands.compose_profiles(repo_path))
        profiles, rejected = commands.parse_profiles(result.stdout)
        for name in rejected:
            logger.warning("[Deploy] Rejected compose profile name %r", name)
        if rejected:
            transcript.add("Rejected Profiles", "\n".join(repr(n) for n in rejected))
        if profiles:
            logger.info("[Deploy] Profiles found: %s", ", ".join(profiles))
            transcript.add("Profiles", ", ".join(profiles))
        return profiles

    async def deploy(
        self,
        project: Project,
        triggered_by: str,
        custom_path: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> DeployHandle:
        self.settings.require_gateway()
        services = list(project.services or [])
        primary = primary_service(services)
        logger.info(
            "[Deploy] Starting deployment for project %s, customPath: %s, branch: %s, triggeredBy: %s",
            project.id, custom_path or "(none)", branch or "(default)", triggered_by,
        )
        if branch:
            branch = commands.validate_branch(branch)

        # 대표 서비스의 repo_path가 우선
        ordered = ([primary] if primary is not None else []) + [s for s in services if s is not primary]
        repo_path, detected_path = await self.resolve_path(project, ordered, custom_path, triggered_by)
        if primary is not None and primary.compose_project:
            await self.guard.require(COMPOSE_PROJECT, primary.compose_project, self.db, triggered_by)

        strategy = primary.deploy_strategy if primary is not None else DeployStrategy.PULL_REBUILD.value
        if strategy == DeployStrategy.MANUAL.value:
            raise PreconditionError(f"Service {primary.name} is configured for manual deploys")
        rebuild = strategy != DeployStrategy.PULL_RESTART.value

        logger.info("[Deploy] Using path: %s", repo_path)
        transcript = _Transcript()
        transcript.add(
            "Deployment Info",
            f"Project: {project.name}\nPath: {repo_path}\nMode: Background build\nTriggered by: {triggered_by}",
        )

        listing = await self.executor.run(commands.list_dir(repo_path))
        transcript.add("Directory Contents", listing.output)
        check = await self.executor.run(commands.compose_file_check(repo_path))
        logger.info("[Deploy] Compose file check: %s", check.stdout.strip())
        if not check.success:
            raise GatewayError(f"Runner error checking compose file: {check.output}")
        if "NOT_FOUND" in check.stdout or "FOUND" not in check.stdout:
            raise PreconditionError(f"No compose file found in {repo_path}")

        await self._run_step(transcript, "Git Fetch", commands.git_fetch(repo_path))
        if branch:
            await self._run_step(transcript, f"Git Checkout ({branch})", commands.git_checkout(repo_path, branch))
        await self._run_step(transcript, "Git Pull", commands.git_pull(repo_path))
        head = await self.executor.run(commands.git_head(repo_path))
        commit_sha = head.stdout.strip() if head.success and head.stdout.strip() else None

        profiles = await self.discover_profiles(repo_path, transcript)
        svc_list = await self.executor.run(commands.compose_services(repo_path, profiles))
        transcript.add("Available Services", svc_list.stdout or "No services found")

        log_pointer = commands.make_log_pointer(self.settings.log_dir, project.slug)
        launch = commands.background_compose(repo_path, log_pointer, profiles, rebuild=rebuild)
        logger.info("[Deploy] Command: %s", launch)
        logger.info("[Deploy] Log file: %s", log_pointer)

        # 실행 전에 기록을 남겨 두어야 크래시 후에도 추적 가능
        record = await self.store.create(
            triggered_by=triggered_by,
            service_id=primary.id if primary is not None else None,
            logs_pointer=log_pointer,
            commit_sha=commit_sha,
        )
        await self.store.mark_running(record.id)
        logger.info("[Deploy] Created deploy record: %s", record.id)

        try:
            started = await self.executor.run(launch)
        except GatewayError as e:
            await self.store.fail_pending_or_running(record.id, e.message)
            transcript.add("Docker Compose", f"Failed to start: {e.message}")
            raise
        if not started.success:
            await self.store.fail_pending_or_running(record.id, started.output or "Failed to start build")
            raise GatewayError(f"Docker compose failed to start: {started.output}")

        transcript.add(
            "Docker Compose",
            f"Build started in background.\nLog file: {log_pointer}\n\n"
            f"To view build progress on the host run: tail -f {log_pointer}",
        )
        logger.info("[Deploy] Docker compose started in background")

        await log_audit_event(
            self.db,
            actor=triggered_by,
            action="deploy",
            entity_type="project",
            entity_id=project.id,
            detail={
                "project": project.name,
                "repo_path": repo_path,
                "branch": branch or "default",
                "log_file": log_pointer,
                "background": True,
                "deploy_id": record.id,
                "profiles": profiles,
            },
        )
        await self.notifier.deploy_started(primary.name if primary is not None else project.name, triggered_by)

        return DeployHandle(
            deploy_id=record.id,
            output=transcript.text(),
            repo_path=repo_path,
            detected_path=detected_path,
            log_pointer=log_pointer,
            branch=branch,
            commit_sha=commit_sha,
        )

    async def deploy_all(self, triggered_by: str) -> List[ProjectDeployResult]:
        """Deploys every project with an automatable docker service, one after another."""
        result = await self.db.execute(
            select(Project).options(selectinload(Project.services)).order_by(Project.name)
        )
        results = []
        for project in result.scalars().all():
            deployable = [
                s for s in project.services
                if s.type == "docker" and s.repo_path and s.deploy_strategy != DeployStrategy.MANUAL.value
            ]
            if not deployable:
                continue
            try:
                handle = await self.deploy(project, triggered_by)
                results.append(ProjectDeployResult(
                    project_id=project.id,
                    project_name=project.name,
                    success=True,
                    deploy_id=handle.deploy_id,
                    log_pointer=handle.log_pointer,
                ))
            except DeployError as e:
                logger.error("[Deploy] %s failed: %s", project.name, e.message)
                results.append(ProjectDeployResult(
                    project_id=project.id,
                    project_name=project.name,
                    success=False,
                    error=e.message,
                ))
        return results
