import json
import pytest
from sqlalchemy.future import select
from operator_actions import OperatorActions
from models.audit_log import AuditLog
from utils.exceptions import GatewayError, InvalidCommandArgument, OperationNotAllowed
from conftest import PROJECTS_DIR, FakeExecutor, ok, failed


async def audit_actions(db):
    result = await db.execute(select(AuditLog).order_by(AuditLog.id))
    return [(a.action, a.entity_id, json.loads(a.detail) if a.detail else None) for a in result.scalars().all()]


@pytest.mark.asyncio
async def test_restart_allowlisted_container(db, guard):
    executor = FakeExecutor([("docker restart", ok("demo-web\n"))])
    result = await OperatorActions(executor, guard, db).restart_container("demo-web", "alice")
    assert result.success
    assert result.operation == "docker_restart"
    assert executor.commands == ["docker restart demo-web 2>&1"]
    assert await audit_actions(db) == [("docker_restart", "demo-web", {"success": True})]


@pytest.mark.asyncio
async def test_blocked_container_never_reaches_gateway(db, guard):
    executor = FakeExecutor()
    with pytest.raises(OperationNotAllowed):
        await OperatorActions(executor, guard, db).restart_container("postgres", "mallory")
    assert executor.commands == []
    assert [a[0] for a in await audit_actions(db)] == ["blocked_operation"]


@pytest.mark.asyncio
async def test_logs_and_status_are_read_only(db, guard):
    executor = FakeExecutor([
        ("docker logs", ok("listening on :3000\n")),
        ("docker ps", ok("Up 2 hours\n")),
    ])
    ops = OperatorActions(executor, guard, db)
    logs = await ops.container_logs("demo-web", "alice", tail=50)
    assert logs.output == "listening on :3000\n"
    assert executor.commands[0] == "docker logs --tail 50 demo-web 2>&1"
    status = await ops.container_status("demo-web", "alice")
    assert status.output == "Up 2 hours"
    # 조회 작업은 감사 로그를 남기지 않는다
    assert await audit_actions(db) == []


@pytest.mark.asyncio
async def test_unknown_container_status(db, guard):
    status = await OperatorActions(FakeExecutor([("docker ps", ok(""))]), guard, db).container_status("demo-web", "alice")
    assert status.success
    assert status.output == "not found"


@pytest.mark.asyncio
async def test_compose_up_failure_is_reported(db, guard):
    executor = FakeExecutor([("docker compose", failed("no configuration file provided"))])
    result = await OperatorActions(executor, guard, db).compose_up("demo", "alice", build=False, service="web")
    assert not result.success
    assert result.error == "no configuration file provided"
    assert executor.commands == ["docker compose -p demo up -d web 2>&1"]
    assert await audit_actions(db) == [("compose_up", "demo", {"success": False})]


@pytest.mark.asyncio
async def test_gateway_error_becomes_failed_result(db, guard):
    executor = FakeExecutor([("docker restart", GatewayError("Runner unreachable: timeout"))])
    result = await OperatorActions(executor, guard, db).restart_container("demo-web", "alice")
    assert not result.success
    assert result.error == "Runner unreachable: timeout"


@pytest.mark.asyncio
async def test_git_pull_reports_head(db, guard):
    executor = FakeExecutor([
        ("git pull", ok("Updating 1a2b..3c4d\n")),
        ("git rev-parse HEAD", ok("3c4d5e6f\n")),
    ])
    result = await OperatorActions(executor, guard, db).git_pull(f"{PROJECTS_DIR}/demo/", "alice")
    assert result.success
    assert result.commit_sha == "3c4d5e6f"
    assert executor.commands[0] == f"cd {PROJECTS_DIR}/demo && git pull 2>&1"


@pytest.mark.asyncio
async def test_git_pull_rejects_unsafe_path(db, guard):
    executor = FakeExecutor()
    with pytest.raises(InvalidCommandArgument):
        await OperatorActions(executor, guard, db).git_pull("/home/pi/projects/demo; rm -rf /", "alice")
    assert executor.commands == []
