import asyncio
import httpx
import pytest
import pytest_asyncio
from sqlalchemy.future import select
from completion_detector import CompletionDetector
from deploy_store import DeployStore
from log_classifier import COMPLETION_MARKER
from notifier import DiscordNotifier
from models.audit_log import AuditLog
from models.service import Service
from utils.exceptions import GatewayError, InvalidLogPointer
from conftest import FakeExecutor, RecordingNotifier, ok

LOG = "/tmp/deploy-demo-1700000000000.log"

SUCCESS_LOG = (
    " Container demo-web  Recreate\n"
    "error: optional dependency warning\n"
    " Container demo-web  Started\n\n"
    f"{COMPLETION_MARKER}\nSTATUS: SUCCESS\nTIMESTAMP: 2024-05-01T12:00:00+00:00\n"
)
FAILED_LOG = (
    "#12 ERROR: process \"/bin/sh -c npm run build\" did not complete successfully\n\n"
    f"{COMPLETION_MARKER}\nSTATUS: FAILED (exit code: 1)\nTIMESTAMP: 2024-05-01T12:00:00+00:00\n"
)
LEGACY_LOG = "Successfully built 4f1c2d\nSuccessfully tagged demo:latest\n Container demo-web  Started\n"
IN_PROGRESS_LOG = "#5 [build 3/7] RUN npm ci\n#5 12.3s added 812 packages\n"


def log_executor(log: str, freshness: str = "STALE\n") -> FakeExecutor:
    return FakeExecutor([
        ("tail -n", ok(log)),
        ("-newermt", ok(freshness)),
    ])


@pytest_asyncio.fixture
async def running(db, project):
    result = await db.execute(select(Service).where(Service.project_id == project.id))
    service = result.scalars().first()
    store = DeployStore(db)
    deploy = await store.create(triggered_by="alice", service_id=service.id, logs_pointer=LOG, commit_sha="abcdef1234567")
    await store.mark_running(deploy.id)
    return deploy


def detector(executor, db, settings, notifier):
    return CompletionDetector(executor, db, settings, notifier)


@pytest.mark.asyncio
async def test_invalid_pointer_never_reaches_gateway(db, settings, notifier):
    executor = log_executor(SUCCESS_LOG)
    with pytest.raises(InvalidLogPointer):
        await detector(executor, db, settings, notifier).check_status("/etc/shadow")
    with pytest.raises(InvalidLogPointer):
        await detector(executor, db, settings, notifier).check_status("/tmp/deploy-x-1700000000000.log; rm -rf /")
    assert executor.commands == []


@pytest.mark.asyncio
async def test_still_running_without_marker(db, settings, notifier, running):
    executor = log_executor(IN_PROGRESS_LOG)
    check = await detector(executor, db, settings, notifier).check_status(LOG, running.id)
    assert not check.is_complete
    assert check.log == IN_PROGRESS_LOG
    assert check.status == "running"
    # 성공 시그니처가 없으면 파일 시각도 확인하지 않는다
    assert not executor.ran("-newermt")
    assert notifier.events == []


@pytest.mark.asyncio
async def test_marker_success_wins_over_error_text(db, settings, notifier, running):
    check = await detector(log_executor(SUCCESS_LOG), db, settings, notifier).check_status(LOG, running.id)
    assert check.is_complete
    assert check.status == "success"
    assert notifier.events == [("succeeded", "demo-web", "abcdef1234567")]


@pytest.mark.asyncio
async def test_failed_marker_then_repeat_is_noop(db, settings, notifier, running):
    executor = log_executor(FAILED_LOG)
    first = await detector(executor, db, settings, notifier).check_status(LOG, running.id)
    assert first.is_complete
    assert first.status == "failed"
    assert first.transitioned
    record = await DeployStore(db).get(running.id)
    snapshot = (record.status, record.completed_at, record.error_message)
    assert record.error_message == "Docker compose exited with non-zero code (exit code: 1)"
    assert notifier.events == [("failed", "demo-web", record.error_message)]

    second = await detector(executor, db, settings, notifier).check_status(LOG, running.id)
    assert second.log == first.log
    assert second.is_complete
    assert not second.transitioned
    record = await DeployStore(db).get(running.id)
    assert (record.status, record.completed_at, record.error_message) == snapshot
    assert len(notifier.events) == 1
    audits = (await db.execute(select(AuditLog).where(AuditLog.action == "deploy_complete"))).scalars().all()
    assert len(audits) == 1


@pytest.mark.asyncio
async def test_legacy_log_completes_when_stale(db, settings, notifier, running):
    executor = log_executor(LEGACY_LOG, freshness="STALE\n")
    check = await detector(executor, db, settings, notifier).check_status(LOG, running.id)
    assert check.is_complete
    assert check.status == "success"
    probe = executor.ran("-newermt")[0]
    assert '-newermt "-30 seconds"' in probe


@pytest.mark.asyncio
async def test_legacy_log_still_written_is_running(db, settings, notifier, running):
    check = await detector(log_executor(LEGACY_LOG, freshness="RECENT\n"), db, settings, notifier).check_status(LOG, running.id)
    assert not check.is_complete
    assert check.status == "running"
    assert notifier.events == []


@pytest.mark.asyncio
async def test_freshness_probe_failure_degrades_to_running(db, settings, notifier, running):
    executor = FakeExecutor([
        ("tail -n", ok(LEGACY_LOG)),
        ("-newermt", GatewayError("Runner unreachable: timeout")),
    ])
    check = await detector(executor, db, settings, notifier).check_status(LOG, running.id)
    assert not check.is_complete
    assert check.status == "running"


@pytest.mark.asyncio
async def test_log_only_check_writes_nothing(db, settings, notifier, running):
    check = await detector(log_executor(FAILED_LOG), db, settings, notifier).check_status(LOG)
    assert check.is_complete
    assert check.status is None
    assert (await DeployStore(db).get(running.id)).status == "running"
    assert notifier.events == []


@pytest.mark.asyncio
async def test_empty_log_output(db, settings, notifier):
    executor = FakeExecutor([("tail -n", ok(""))])
    check = await detector(executor, db, settings, notifier).check_status(LOG)
    assert check.log == "No log output"
    assert not check.is_complete


@pytest.mark.asyncio
async def test_concurrent_checks_notify_once(session_factory, settings, project):
    async with session_factory() as db:
        service = (await db.execute(select(Service))).scalars().first()
        store = DeployStore(db)
        deploy = await store.create(triggered_by="alice", service_id=service.id, logs_pointer=LOG)
        await store.mark_running(deploy.id)

    notifier = RecordingNotifier()

    async def poll():
        async with session_factory() as session:
            return await CompletionDetector(log_executor(FAILED_LOG), session, settings, notifier).check_status(LOG, deploy.id)

    checks = await asyncio.gather(*(poll() for _ in range(4)))
    assert all(c.is_complete for c in checks)
    assert sum(1 for c in checks if c.transitioned) == 1
    assert len(notifier.events) == 1


@pytest.mark.asyncio
async def test_refresh_running(db, settings, notifier, running):
    store = DeployStore(db)
    other = await store.create(triggered_by="bob", logs_pointer="/var/log/elsewhere.log")
    await store.mark_running(other.id)
    executor = log_executor(SUCCESS_LOG)
    transitioned = await detector(executor, db, settings, notifier).refresh_running()
    assert transitioned == 1
    assert (await store.get(running.id)).status == "success"
    # 규칙에 맞지 않는 로그 경로는 건너뛴다
    assert (await store.get(other.id)).status == "running"
    assert len(executor.ran("tail -n")) == 1


@pytest.mark.asyncio
async def test_build_only_log_completes_when_stale(db, settings, notifier, running):
    log = "Step 7/7 : CMD [\"node\", \"server.js\"]\n ---> Running in 9c1d\nSuccessfully built 4f1c2d\n"
    executor = log_executor(log, freshness="STALE\n")
    check = await detector(executor, db, settings, notifier).check_status(LOG, running.id)
    assert check.is_complete
    assert check.status == "success"
    assert executor.ran("-newermt")


@pytest.mark.asyncio
async def test_log_of_another_deploy_is_not_recorded(db, settings, notifier, running):
    other_log = "/tmp/deploy-other-1600000000000.log"
    check = await detector(log_executor(FAILED_LOG), db, settings, notifier).check_status(other_log, running.id)
    # 로그는 돌려주되 기록은 건드리지 않는다
    assert check.is_complete
    assert check.status == "running"
    assert not check.transitioned
    assert (await DeployStore(db).get(running.id)).status == "running"
    assert notifier.events == []


@pytest.mark.asyncio
async def test_hung_webhook_does_not_delay_status_check(db, settings, running):
    async def hang(request):
        await asyncio.Event().wait()

    discord = DiscordNotifier("https://discord.test/api/webhooks/1/abc", transport=httpx.MockTransport(hang))
    check = await asyncio.wait_for(
        CompletionDetector(log_executor(FAILED_LOG), db, settings, discord).check_status(LOG, running.id),
        timeout=2,
    )
    assert check.transitioned
    await discord.close(timeout=0.05)
