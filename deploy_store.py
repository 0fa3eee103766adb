import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from sqlalchemy import update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from models.deployment import Deployment, DeployStatus, TERMINAL_STATUSES, new_deploy_id
from utils.exceptions import DeployNotFound

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # DB에는 naive UTC로 저장 (sqlite CURRENT_TIMESTAMP와 동일 기준)
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DeployStore:
    """Deploy Record lifecycle: pending -> running -> success | failed (| cancelled)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        triggered_by: str,
        service_id: Optional[str] = None,
        logs_pointer: Optional[str] = None,
        commit_sha: Optional[str] = None,
    ) -> Deployment:
        deploy = Deployment(
            id=new_deploy_id(),
            service_id=service_id,
            status=DeployStatus.PENDING.value,
            started_at=utcnow(),
            logs_pointer=logs_pointer,
            commit_sha=commit_sha,
            triggered_by=triggered_by,
        )
        self.db.add(deploy)
        await self.db.commit()
        await self.db.refresh(deploy)
        return deploy

    async def mark_running(self, deploy_id: str, logs_pointer: Optional[str] = None) -> bool:
        values = {"status": DeployStatus.RUNNING.value}
        if logs_pointer:
            values["logs_pointer"] = logs_pointer
        result = await self.db.execute(
            update(Deployment)
            .where(Deployment.id == deploy_id, Deployment.status == DeployStatus.PENDING.value)
            .values(**values)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def complete_if_running(
        self,
        deploy_id: str,
        success: bool,
        error_message: Optional[str] = None,
        commit_sha: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-swap terminal write. Exactly one caller observes True for a
        given record; every other caller (concurrent poller, repeated poll,
        record already terminal) gets False and must not notify.
        """
        values = {
            "status": DeployStatus.SUCCESS.value if success else DeployStatus.FAILED.value,
            "completed_at": utcnow(),
            "error_message": None if success else error_message,
        }
        if commit_sha:
            values["commit_sha"] = commit_sha
        result = await self.db.execute(
            update(Deployment)
            .where(Deployment.id == deploy_id, Deployment.status == DeployStatus.RUNNING.value)
            .values(**values)
        )
        await self.db.commit()
        won = result.rowcount == 1
        if won:
            logger.info("deploy %s -> %s", deploy_id, values["status"])
        else:
            logger.debug("deploy %s already handled, terminal write skipped", deploy_id)
        return won

    async def fail_if_running(self, deploy_id: str, error_message: str) -> bool:
        return await self.complete_if_running(deploy_id, success=False, error_message=error_message)

    async def fail_pending_or_running(self, deploy_id: str, error_message: str) -> bool:
        # launch 실패 시에는 pending 상태일 수도 있음
        result = await self.db.execute(
            update(Deployment)
            .where(
                Deployment.id == deploy_id,
                Deployment.status.in_([DeployStatus.PENDING.value, DeployStatus.RUNNING.value]),
            )
            .values(status=DeployStatus.FAILED.value, completed_at=utcnow(), error_message=error_message)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def get(self, deploy_id: str, with_service: bool = False) -> Optional[Deployment]:
        stmt = select(Deployment).where(Deployment.id == deploy_id).execution_options(populate_existing=True)
        if with_service:
            stmt = stmt.options(selectinload(Deployment.service))
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_or_404(self, deploy_id: str) -> Deployment:
        deploy = await self.get(deploy_id, with_service=True)
        if deploy is None:
            raise DeployNotFound(f"Deploy {deploy_id} not found")
        return deploy

    async def list_recent(
        self,
        limit: int = 50,
        service_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Deployment]:
        stmt = select(Deployment).options(selectinload(Deployment.service))
        if service_id:
            stmt = stmt.where(Deployment.service_id == service_id)
        if status:
            stmt = stmt.where(Deployment.status == status)
        stmt = stmt.order_by(Deployment.started_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_running(self) -> List[Deployment]:
        result = await self.db.execute(
            select(Deployment)
            .options(selectinload(Deployment.service))
            .where(Deployment.status == DeployStatus.RUNNING.value)
            .order_by(Deployment.started_at.asc())
        )
        return result.scalars().all()

    async def stats(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(Deployment.status, func.count(Deployment.id)).group_by(Deployment.status)
        )
        counts = {status.value: 0 for status in DeployStatus}
        for status, count in result.all():
            counts[status] = count
        counts["total"] = sum(counts[s.value] for s in DeployStatus)
        return counts

    async def cancel_abandoned(self, older_than: timedelta) -> int:
        """Running records started before the cut-off become cancelled."""
        cutoff = utcnow() - older_than
        result = await self.db.execute(
            update(Deployment)
            .where(Deployment.status == DeployStatus.RUNNING.value, Deployment.started_at < cutoff)
            .values(
                status=DeployStatus.CANCELLED.value,
                completed_at=utcnow(),
                error_message="Cancelled: abandoned running deploy",
            )
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("cancelled %d abandoned deploys (older than %s)", result.rowcount, older_than)
        return result.rowcount

    async def clear_completed(self) -> int:
        result = await self.db.execute(
            delete(Deployment)
            .where(Deployment.status.in_(list(TERMINAL_STATUSES)))
        )
        await self.db.commit()
        return result.rowcount
