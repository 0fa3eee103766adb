from datetime import datetime, timezone
import pytest
import commands
from utils.exceptions import InvalidCommandArgument


def test_background_compose_writes_marker_block():
    cmd = commands.background_compose("/home/pi/projects/demo", "/tmp/deploy-demo-1700000000000.log", ["web", "worker"])
    assert cmd.startswith("cd /home/pi/projects/demo && nohup bash -c ")
    assert "docker compose --profile web --profile worker up -d --build 2>&1" in cmd
    assert "EXIT_CODE=$?" in cmd
    assert commands.COMPLETION_MARKER in cmd
    assert 'STATUS: FAILED (exit code: $EXIT_CODE)' in cmd
    assert "TIMESTAMP: $(date -Iseconds)" in cmd
    assert cmd.endswith("> /tmp/deploy-demo-1700000000000.log 2>&1 &")


def test_background_compose_restart_strategy():
    cmd = commands.background_compose("/home/pi/projects/demo", "/tmp/deploy-demo-1700000000000.log", rebuild=False)
    assert "docker compose up -d --force-recreate" in cmd
    assert "--build" not in cmd


def test_paths_with_spaces_are_quoted():
    cmd = commands.dir_exists("/home/pi/projects/My App")
    assert cmd.startswith("test -d '/home/pi/projects/My App' ")


@pytest.mark.parametrize("path", [
    "relative/path",
    "/home/pi/projects/demo; rm -rf /",
    "/home/pi/projects/$(whoami)",
    "/home/pi/../etc",
    "/home/pi/`id`",
    "",
])
def test_rejects_unsafe_paths(path):
    with pytest.raises(InvalidCommandArgument):
        commands.dir_exists(path)


@pytest.mark.parametrize("branch", ["-f", "main;reboot", "feat/../x", "a b", "$(id)"])
def test_rejects_unsafe_branches(branch):
    with pytest.raises(InvalidCommandArgument):
        commands.git_checkout("/home/pi/projects/demo", branch)


def test_accepts_feature_branch():
    assert commands.git_checkout("/home/pi/projects/demo", "feature/login-v2").endswith("git checkout feature/login-v2 2>&1")


def test_parse_profiles_rejects_metacharacters():
    valid, rejected = commands.parse_profiles("web\nworker\n$(reboot)\n\ndebug;rm -rf /\nweb\n")
    assert valid == ["web", "worker"]
    assert rejected == ["$(reboot)", "debug;rm -rf /"]


def test_profile_flags_refuse_invalid_names():
    with pytest.raises(InvalidCommandArgument):
        commands.profile_flags(["ok", "bad name"])


def test_make_log_pointer_convention():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    pointer = commands.make_log_pointer("/tmp", "demo", now)
    assert pointer == f"/tmp/deploy-demo-{int(now.timestamp() * 1000)}.log"
    assert commands.is_valid_log_pointer(pointer, "/tmp")
    assert commands.slug_from_log_pointer(pointer) == "demo"


def test_make_log_pointer_slugifies_names():
    pointer = commands.make_log_pointer("/tmp", "My Cool App")
    assert pointer.startswith("/tmp/deploy-my-cool-app-")


@pytest.mark.parametrize("pointer", [
    "/etc/passwd",
    "/tmp/deploy-demo.log",
    "/tmp/deploy-demo-1700000000000.txt",
    "/tmp/../etc/deploy-demo-1700000000000.log",
    "/var/tmp/deploy-demo-1700000000000.log",
    "/tmp/deploy-demo-1700000000000.log; rm -rf /",
    "",
])
def test_invalid_log_pointers(pointer):
    assert not commands.is_valid_log_pointer(pointer, "/tmp")


def test_container_commands_validate_names():
    assert commands.docker_restart("demo-web") == "docker restart demo-web 2>&1"
    assert commands.docker_status("demo-web") == "docker ps -a --filter name=demo-web --format '{{.Status}}'"
    with pytest.raises(InvalidCommandArgument):
        commands.docker_logs("demo web")
    with pytest.raises(InvalidCommandArgument):
        commands.docker_logs("demo-web", tail=0)


def test_compose_file_check_covers_all_names():
    cmd = commands.compose_file_check("/home/pi/projects/demo")
    for name in commands.COMPOSE_FILES:
        assert f"/home/pi/projects/demo/{name}" in cmd
