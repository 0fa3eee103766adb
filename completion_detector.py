import logging
import os
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import commands
from core.config import Settings
from deploy_store import DeployStore
from executors.base import CommandExecutor
from log_classifier import LogClassifier, has_completion_signature, has_marker
from notifier import Notifier
from utils.audit import log_audit_event
from utils.exceptions import GatewayError, InvalidLogPointer

logger = logging.getLogger(__name__)

NO_LOG_OUTPUT = "No log output"


@dataclass
class StatusCheck:
    log: str
    is_complete: bool
    status: Optional[str] = None  # deploy_id가 주어졌을 때 기록의 현재 상태
    transitioned: bool = False


class CompletionDetector:
    """
    Pull-based completion check for detached deploy pipelines.

    Each call reads the tail of the log file through the gateway and decides
    whether the pipeline is finished. A finished pipeline moves its Deploy
    Record out of `running` exactly once; the caller that wins the conditional
    update sends the notification, every other caller only gets the log back.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        db: AsyncSession,
        settings: Settings,
        notifier: Notifier,
        classifier: Optional[LogClassifier] = None,
    ):
        self.executor = executor
        self.db = db
        self.settings = settings
        self.notifier = notifier
        self.classifier = classifier or LogClassifier()
        self.store = DeployStore(db)

    async def read_log(self, log_pointer: str) -> str:
        result = await self.executor.run(commands.tail_log(log_pointer, self.settings.log_tail_lines))
        return result.stdout or result.stderr or NO_LOG_OUTPUT

    async def is_stale(self, log_pointer: str) -> bool:
        try:
            result = await self.executor.run(commands.log_freshness(log_pointer, self.settings.freshness_window))
        except GatewayError as e:
            # 확인 실패 시 아직 실행 중으로 본다
            logger.warning("freshness probe failed for %s: %s", log_pointer, e.message)
            return False
        return "STALE" in result.stdout

    async def is_complete(self, log: str, log_pointer: str) -> bool:
        if has_marker(log):
            return True
        if has_completion_signature(log):
            return await self.is_stale(log_pointer)
        return False

    async def check_status(self, log_pointer: str, deploy_id: Optional[str] = None) -> StatusCheck:
        if not commands.is_valid_log_pointer(log_pointer, self.settings.log_dir):
            raise InvalidLogPointer("Invalid log file path", dev_message=log_pointer)
        self.settings.require_gateway()

        log = await self.read_log(log_pointer)
        complete = await self.is_complete(log, log_pointer)
        check = StatusCheck(log=log, is_complete=complete)
        if not deploy_id:
            return check

        record = await self.store.get(deploy_id, with_service=True)
        if record is None:
            logger.warning("status check for unknown deploy %s", deploy_id)
            return check
        check.status = record.status
        if record.logs_pointer and os.path.normpath(record.logs_pointer) != os.path.normpath(log_pointer):
            # 다른 배포의 로그로는 결과를 기록하지 않는다
            logger.warning(
                "log file %s does not belong to deploy %s (%s), outcome not recorded",
                log_pointer, deploy_id, record.logs_pointer,
            )
            return check
        if not complete or record.is_terminal:
            return check

        outcome = self.classifier.classify(log)
        won = await self.store.complete_if_running(
            deploy_id,
            success=outcome.success,
            error_message=outcome.error_message,
        )
        record = await self.store.get(deploy_id, with_service=True)
        check.status = record.status if record is not None else check.status
        if not won:
            return check

        check.transitioned = True
        service_name = record.service.name if record is not None and record.service is not None else "Unknown Service"
        await log_audit_event(
            self.db,
            actor="system",
            action="deploy_complete",
            entity_type="deploy",
            entity_id=deploy_id,
            detail={
                "status": check.status,
                "error_kind": outcome.error_kind,
                "error_message": outcome.error_message,
                "log_file": log_pointer,
            },
        )
        if outcome.success:
            await self.notifier.deploy_succeeded(service_name, record.commit_sha if record is not None else None)
        else:
            await self.notifier.deploy_failed(service_name, outcome.error_message or "Unknown error")
        return check

    async def refresh_running(self) -> int:
        """Checks every running record that carries a usable log pointer; returns transitions made."""
        transitioned = 0
        for record in await self.store.list_running():
            pointer = record.logs_pointer
            if not pointer or not commands.is_valid_log_pointer(pointer, self.settings.log_dir):
                logger.debug("deploy %s has no checkable log file, skipped", record.id)
                continue
            try:
                check = await self.check_status(pointer, record.id)
            except GatewayError as e:
                logger.warning("refresh of deploy %s failed: %s", record.id, e.message)
                continue
            if check.transitioned:
                transitioned += 1
        return transitioned
