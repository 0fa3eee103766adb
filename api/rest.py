from fastapi import FastAPI, HTTPException, Depends, Body, Request, Query
from typing import Any, Dict, List, Optional
from datetime import timedelta
import json
import logging
import traceback
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import text
from core.config import Settings, load_settings
from core.db import init_engine, get_sessionmaker
from executors.base import CommandExecutor
from executors.gateway import GatewayExecutor
from allowlist import Allowlist, AllowlistGuard
from orchestrator import DeployOrchestrator
from completion_detector import CompletionDetector
from operator_actions import OperatorActions
from deploy_store import DeployStore
from notifier import Notifier, build_notifier
from shell_models import OperationResult
from models.project import Project
from models.audit_log import AuditLog
from models.error_log import ErrorLog
from schemas.audit_log import AuditLogRead
from schemas.error_log import ErrorLogRead
from schemas.allowlist import AllowlistRead, AllowlistUpdate
from schemas.auth import PinLogin, SessionToken
from schemas.operation import ComposeUpRequest, GitPullRequest
from schemas.deployment import (
    DeployRequest, DeployResponse, ProjectDeployResultRead, DeployStatusResponse,
    DeploymentRead, DeployStats, CancelAbandonedRequest, BulkResult, RefreshResult,
)
from api.auth import SessionUser, require_pin_session, session_actor
from utils.audit import log_audit_event
from utils.exceptions import CustomException, DeployError, to_http_exception
from utils.jwt import create_session_token
from utils.security import verify_pin
from utils.webhook import verify_signature

logger = logging.getLogger(__name__)


def normalize_repo_url(url: Optional[str]) -> str:
    url = (url or "").strip().lower().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]
    return url


def create_app(
    settings: Optional[Settings] = None,
    executor: Optional[CommandExecutor] = None,
    notifier: Optional[Notifier] = None,
    session_factory=None,
) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="Fleet Deploy", description="Remote deployment orchestration for self-hosted services")

    if session_factory is None:
        init_engine(settings.database_url)
        session_factory = get_sessionmaker()
    if executor is None and settings.gateway_url and settings.gateway_token:
        executor = GatewayExecutor(settings.gateway_url, settings.gateway_token, settings.gateway_timeout)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.executor = executor
    app.state.notifier = notifier or build_notifier(settings.discord_webhook_url)
    app.state.guard = AllowlistGuard(settings.allowlist_path)

    @app.on_event("shutdown")
    async def on_shutdown():
        if app.state.executor is not None:
            await app.state.executor.close()
        await app.state.notifier.close()

    # DI
    async def get_db(request: Request):
        async with request.app.state.session_factory() as session:
            yield session

    def get_executor(request: Request) -> CommandExecutor:
        if request.app.state.executor is None:
            request.app.state.settings.require_gateway()
        return request.app.state.executor

    def get_guard(request: Request) -> AllowlistGuard:
        return request.app.state.guard

    def get_orchestrator(
        request: Request,
        db: AsyncSession = Depends(get_db),
        executor: CommandExecutor = Depends(get_executor),
        guard: AllowlistGuard = Depends(get_guard),
    ) -> DeployOrchestrator:
        return DeployOrchestrator(executor, guard, db, request.app.state.settings, request.app.state.notifier)

    def get_detector(
        request: Request,
        db: AsyncSession = Depends(get_db),
        executor: CommandExecutor = Depends(get_executor),
    ) -> CompletionDetector:
        return CompletionDetector(executor, db, request.app.state.settings, request.app.state.notifier)

    def get_operator(
        db: AsyncSession = Depends(get_db),
        executor: CommandExecutor = Depends(get_executor),
        guard: AllowlistGuard = Depends(get_guard),
    ) -> OperatorActions:
        return OperatorActions(executor, guard, db)

    # 인증
    @app.post("/auth/pin", response_model=SessionToken)
    async def verify_pin_route(form: PinLogin, db: AsyncSession = Depends(get_db)):
        settings.require_session()
        if not verify_pin(form.pin, settings.pin_hash):
            await log_audit_event(db, actor=form.email, action="pin_failed", entity_type="session")
            raise HTTPException(status_code=401, detail="Invalid PIN")
        token = create_session_token(form.email, settings.session_secret, settings.session_ttl)
        await log_audit_event(db, actor=form.email, action="pin_verified", entity_type="session")
        return SessionToken(access_token=token, expires_in=settings.session_ttl)

    # 배포
    @app.post("/api/projects/{project_id}/deploy", response_model=DeployResponse)
    async def deploy_project(
        project_id: str,
        body: Optional[DeployRequest] = Body(default=None),
        orchestrator: DeployOrchestrator = Depends(get_orchestrator),
        user: SessionUser = Depends(require_pin_session),
    ):
        body = body or DeployRequest()
        project = await orchestrator.load_project(project_id)
        handle = await orchestrator.deploy(project, user.email, custom_path=body.custom_path, branch=body.branch)
        return DeployResponse(
            deploy_id=handle.deploy_id,
            output=handle.output,
            repo_path=handle.repo_path,
            detected_path=handle.detected_path,
            log_file=handle.log_pointer,
            branch=handle.branch,
            commit_sha=handle.commit_sha,
        )

    @app.post("/api/deploy/all", response_model=List[ProjectDeployResultRead])
    async def deploy_all(
        orchestrator: DeployOrchestrator = Depends(get_orchestrator),
        user: SessionUser = Depends(require_pin_session),
    ):
        results = await orchestrator.deploy_all(user.email)
        return [
            ProjectDeployResultRead(
                project_id=r.project_id,
                project_name=r.project_name,
                success=r.success,
                deploy_id=r.deploy_id,
                log_file=r.log_pointer,
                error=r.error,
            )
            for r in results
        ]

    @app.get("/api/deploys/status", response_model=DeployStatusResponse)
    async def deploy_status(
        log_file: str = Query(...),
        deploy_id: Optional[str] = Query(default=None),
        detector: CompletionDetector = Depends(get_detector),
        user: SessionUser = Depends(require_pin_session),
    ):
        check = await detector.check_status(log_file, deploy_id)
        return DeployStatusResponse(log=check.log, is_complete=check.is_complete, status=check.status)

    @app.post("/api/deploys/refresh", response_model=RefreshResult)
    async def refresh_deploys(
        detector: CompletionDetector = Depends(get_detector),
        user: SessionUser = Depends(require_pin_session),
    ):
        return RefreshResult(transitioned=await detector.refresh_running())

    @app.get("/api/deploys", response_model=List[DeploymentRead])
    async def list_deploys(
        limit: int = Query(default=50, ge=1, le=500),
        service_id: Optional[str] = None,
        status: Optional[str] = None,
        db: AsyncSession = Depends(get_db),
        user: SessionUser = Depends(require_pin_session),
    ):
        deploys = await DeployStore(db).list_recent(limit=limit, service_id=service_id, status=status)
        return [DeploymentRead.from_orm_safe(d) for d in deploys]

    @app.get("/api/deploys/stats", response_model=DeployStats)
    async def deploy_stats(db: AsyncSession = Depends(get_db), user: SessionUser = Depends(require_pin_session)):
        return DeployStats(**await DeployStore(db).stats())

    @app.get("/api/deploys/{deploy_id}", response_model=DeploymentRead)
    async def get_deploy(deploy_id: str, db: AsyncSession = Depends(get_db), user: SessionUser = Depends(require_pin_session)):
        return DeploymentRead.from_orm_safe(await DeployStore(db).get_or_404(deploy_id))

    @app.post("/api/deploys/cancel-abandoned", response_model=BulkResult)
    async def cancel_abandoned(
        body: Optional[CancelAbandonedRequest] = Body(default=None),
        db: AsyncSession = Depends(get_db),
        user: SessionUser = Depends(require_pin_session),
    ):
        body = body or CancelAbandonedRequest()
        affected = await DeployStore(db).cancel_abandoned(timedelta(minutes=body.older_than_minutes))
        await log_audit_event(
            db, actor=user.email, action="deploy_cancel_abandoned", entity_type="deploy",
            detail={"older_than_minutes": body.older_than_minutes, "affected": affected},
        )
        return BulkResult(affected=affected)

    @app.post("/api/deploys/clear", response_model=BulkResult)
    async def clear_deploys(db: AsyncSession = Depends(get_db), user: SessionUser = Depends(require_pin_session)):
        affected = await DeployStore(db).clear_completed()
        await log_audit_event(
            db, actor=user.email, action="deploy_clear", entity_type="deploy", detail={"affected": affected},
        )
        return BulkResult(affected=affected)

    # 허용 목록
    @app.get("/api/settings/allowlist", response_model=AllowlistRead)
    async def read_allowlist(guard: AllowlistGuard = Depends(get_guard), user: SessionUser = Depends(require_pin_session)):
        return AllowlistRead(**guard.snapshot().to_yaml_dict())

    @app.put("/api/settings/allowlist", response_model=AllowlistRead)
    async def update_allowlist(
        body: AllowlistUpdate,
        guard: AllowlistGuard = Depends(get_guard),
        db: AsyncSession = Depends(get_db),
        user: SessionUser = Depends(require_pin_session),
    ):
        try:
            allowlist = Allowlist(**body.model_dump())
        except ValueError as e:
            raise CustomException(code="INVALID_ALLOWLIST", message="Invalid allowlist", dev_message=str(e), status_code=400)
        updated = await guard.update(allowlist, db, user.email)
        return AllowlistRead(**updated.to_yaml_dict())

    # 운영자 작업
    @app.post("/api/containers/{name}/restart", response_model=OperationResult)
    async def restart_container(name: str, ops: OperatorActions = Depends(get_operator), user: SessionUser = Depends(require_pin_session)):
        return await ops.restart_container(name, user.email)

    @app.get("/api/containers/{name}/logs", response_model=OperationResult)
    async def container_logs(
        name: str,
        tail: int = Query(default=100, ge=1, le=10000),
        ops: OperatorActions = Depends(get_operator),
        user: SessionUser = Depends(require_pin_session),
    ):
        return await ops.container_logs(name, user.email, tail=tail)

    @app.get("/api/containers/{name}/status", response_model=OperationResult)
    async def container_status(name: str, ops: OperatorActions = Depends(get_operator), user: SessionUser = Depends(require_pin_session)):
        return await ops.container_status(name, user.email)

    @app.post("/api/compose/{project}/up", response_model=OperationResult)
    async def compose_up(
        project: str,
        body: Optional[ComposeUpRequest] = Body(default=None),
        ops: OperatorActions = Depends(get_operator),
        user: SessionUser = Depends(require_pin_session),
    ):
        body = body or ComposeUpRequest()
        return await ops.compose_up(project, user.email, build=body.build, service=body.service)

    @app.post("/api/repos/pull", response_model=OperationResult)
    async def git_pull(body: GitPullRequest, ops: OperatorActions = Depends(get_operator), user: SessionUser = Depends(require_pin_session)):
        return await ops.git_pull(body.repo_path, user.email)

    # GitHub webhook (PIN 대신 서명으로 검증)
    @app.post("/api/github/webhook")
    async def github_webhook(request: Request, db: AsyncSession = Depends(get_db)):
        body = await request.body()
        signature = request.headers.get("x-hub-signature-256")
        if not verify_signature(body, signature, settings.github_webhook_secret):
            logger.error("[GitHub Webhook] Invalid signature")
            raise CustomException(code="INVALID_SIGNATURE", message="Invalid signature", status_code=401)
        event = request.headers.get("x-github-event", "")
        delivery_id = request.headers.get("x-github-delivery", "")
        try:
            payload = json.loads(body)
        except ValueError:
            raise CustomException(code="INVALID_PAYLOAD", message="Invalid JSON payload", status_code=400)
        if event == "ping":
            return {"message": "pong", "delivery_id": delivery_id}
        if event != "push":
            return {"message": "Event not handled", "event": event}
        return await handle_push(request, db, payload, delivery_id)

    async def handle_push(request: Request, db: AsyncSession, payload: Dict[str, Any], delivery_id: str):
        repository = payload.get("repository") or {}
        branch = (payload.get("ref") or "").replace("refs/heads/", "")
        pusher = payload.get("pusher") or {}
        head_commit = payload.get("head_commit") or {}
        repo_url = normalize_repo_url(repository.get("html_url"))
        actor = f"github:{pusher.get('email') or pusher.get('name') or 'webhook'}"

        result = await db.execute(
            select(Project).options(selectinload(Project.services)).where(Project.github_url.isnot(None))
        )
        linked = [p for p in result.scalars().all() if normalize_repo_url(p.github_url) == repo_url]
        if not linked:
            return {"message": "No linked projects", "repository": repository.get("full_name")}

        results = []
        for project in linked:
            if branch not in settings.auto_deploy_branches:
                results.append({
                    "project_id": project.id,
                    "project_name": project.name,
                    "deployed": False,
                    "reason": f"Branch {branch} not configured for auto-deploy",
                })
                continue
            await log_audit_event(
                db, actor=actor, action="github_webhook_trigger", entity_type="project", entity_id=project.id,
                detail={
                    "event": "push",
                    "branch": branch,
                    "commits": len(payload.get("commits") or []),
                    "head_commit": (head_commit.get("id") or "")[:8],
                    "delivery_id": delivery_id,
                },
            )
            orchestrator = DeployOrchestrator(
                get_executor(request), request.app.state.guard, db, settings, request.app.state.notifier
            )
            try:
                handle = await orchestrator.deploy(project, actor, branch=branch)
                results.append({
                    "project_id": project.id,
                    "project_name": project.name,
                    "deployed": True,
                    "deploy_id": handle.deploy_id,
                    "log_file": handle.log_pointer,
                })
            except DeployError as e:
                logger.error("[GitHub Webhook] Deploy failed for %s: %s", project.name, e.message)
                results.append({
                    "project_id": project.id,
                    "project_name": project.name,
                    "deployed": False,
                    "reason": e.message,
                })
        return {
            "message": "Push event processed",
            "repository": repository.get("full_name"),
            "branch": branch,
            "results": results,
        }

    # 감사/에러 로그
    @app.get("/audit/logs", response_model=List[AuditLogRead])
    async def get_audit_logs(
        limit: int = Query(default=100, ge=1, le=1000),
        action: Optional[str] = None,
        db: AsyncSession = Depends(get_db),
        user: SessionUser = Depends(require_pin_session),
    ):
        stmt = select(AuditLog)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        result = await db.execute(stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit))
        return [AuditLogRead.model_validate(row) for row in result.scalars().all()]

    @app.get("/api/logs/errors", response_model=List[ErrorLogRead])
    async def get_error_logs(
        code: Optional[str] = None,
        limit: int = Query(default=100, ge=1, le=1000),
        db: AsyncSession = Depends(get_db),
        user: SessionUser = Depends(require_pin_session),
    ):
        stmt = select(ErrorLog)
        if code:
            stmt = stmt.where(ErrorLog.code == code)
        result = await db.execute(stmt.order_by(ErrorLog.created_at.desc(), ErrorLog.id.desc()).limit(limit))
        return [ErrorLogRead.model_validate(row) for row in result.scalars().all()]

    # 헬스체크
    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/health/db")
    async def health_db(db: AsyncSession = Depends(get_db)):
        await db.execute(text("SELECT 1"))
        return {"status": "ok"}

    @app.get("/health/gateway")
    async def health_gateway(request: Request):
        executor = request.app.state.executor
        if executor is None:
            return {"status": "unconfigured", "reachable": False}
        reachable = await executor.health()
        return {"status": "ok" if reachable else "unreachable", "reachable": reachable}

    @app.exception_handler(DeployError)
    async def deploy_error_handler(request: Request, exc: DeployError):
        return await custom_exception_handler(request, to_http_exception(exc), exc)

    @app.exception_handler(CustomException)
    async def custom_exception_handler(request: Request, exc: CustomException, cause: Optional[Exception] = None):
        logger.error(f"[{exc.code}] {exc.dev_message} | {request.url}")
        origin = cause or exc
        stack = ''.join(traceback.format_exception(type(origin), origin, origin.__traceback__))
        # 에러 로그 DB 기록
        async with request.app.state.session_factory() as db:
            db.add(ErrorLog(
                code=exc.code,
                status_code=exc.status_code,
                message=exc.message,
                dev_message=exc.dev_message,
                method=request.method,
                url=str(request.url),
                stack=stack,
                actor=session_actor(request),
            ))
            await db.commit()
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict()
        )

    return app
