"""
Shell command builders for the execution gateway.

Every dynamic fragment (path, branch, profile, project/container name, log
file) is checked against an allow-pattern before it is quoted and placed into
a command string. Values read back from the remote host (compose profiles,
service names) go through the same checks.
"""
import os
import re
import shlex
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from utils.exceptions import InvalidCommandArgument

COMPLETION_MARKER = "===[DEPLOY_COMPLETE]==="
COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

PATH_PATTERN = re.compile(r"^/[A-Za-z0-9._/ -]+$")
BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")
PROFILE_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")
LOG_POINTER_PATTERN = re.compile(r"^deploy-([a-z0-9][a-z0-9-]*)-(\d{10,})\.log$")


# 검증기

def validate_path(path: str) -> str:
    path = (path or "").strip()
    if len(path) > 1:
        path = path.rstrip("/")
    if not PATH_PATTERN.match(path) or ".." in path.split("/"):
        raise InvalidCommandArgument(f"Invalid path: {path!r}")
    return path


def validate_branch(branch: str) -> str:
    branch = (branch or "").strip()
    if not BRANCH_PATTERN.match(branch) or branch.startswith("-") or ".." in branch:
        raise InvalidCommandArgument(f"Invalid branch name: {branch!r}")
    return branch


def validate_profile(profile: str) -> str:
    if not PROFILE_PATTERN.match(profile or ""):
        raise InvalidCommandArgument(f"Invalid compose profile name: {profile!r}")
    return profile


def validate_name(name: str, kind: str = "name") -> str:
    if not NAME_PATTERN.match(name or ""):
        raise InvalidCommandArgument(f"Invalid {kind}: {name!r}")
    return name


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    if not SLUG_PATTERN.match(slug):
        raise InvalidCommandArgument(f"Cannot derive a slug from {value!r}")
    return slug


def _tail_count(count: int) -> int:
    if not isinstance(count, int) or count <= 0 or count > 10000:
        raise InvalidCommandArgument(f"Invalid line count: {count!r}")
    return count


def _q(value: str) -> str:
    return shlex.quote(value)


# 로그 파일 경로 규칙: {log_dir}/deploy-{slug}-{timestamp}.log

def make_log_pointer(log_dir: str, slug: str, now: Optional[datetime] = None) -> str:
    log_dir = validate_path(log_dir)
    if not SLUG_PATTERN.match(slug):
        slug = slugify(slug)
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"{log_dir}/deploy-{slug}-{millis}.log"


def is_valid_log_pointer(pointer: str, log_dir: str) -> bool:
    if not pointer or "\x00" in pointer:
        return False
    directory, filename = os.path.split(pointer)
    if os.path.normpath(directory) != os.path.normpath(log_dir):
        return False
    return bool(LOG_POINTER_PATTERN.match(filename))


def slug_from_log_pointer(pointer: str) -> Optional[str]:
    match = LOG_POINTER_PATTERN.match(os.path.basename(pointer or ""))
    return match.group(1) if match else None


# 경로/저장소 명령

def dir_exists(path: str) -> str:
    return f'test -d {_q(validate_path(path))} && echo "EXISTS" || echo "NOT_FOUND"'


def list_dir(path: str) -> str:
    return f"ls -la {_q(validate_path(path))} 2>&1 | head -20"


def compose_file_check(path: str) -> str:
    path = validate_path(path)
    checks = " || ".join(f"test -f {_q(path + '/' + name)}" for name in COMPOSE_FILES)
    return f'({checks}) && echo "FOUND" || echo "NOT_FOUND"'


def git_fetch(path: str) -> str:
    return f"cd {_q(validate_path(path))} && git fetch --all 2>&1"


def git_checkout(path: str, branch: str) -> str:
    return f"cd {_q(validate_path(path))} && git checkout {_q(validate_branch(branch))} 2>&1"


def git_pull(path: str) -> str:
    return f"cd {_q(validate_path(path))} && git pull 2>&1"


def git_head(path: str) -> str:
    return f"cd {_q(validate_path(path))} && git rev-parse HEAD"


# docker compose 명령

def profile_flags(profiles: Iterable[str]) -> str:
    return " ".join(f"--profile {validate_profile(p)}" for p in profiles)


def compose_prefix(profiles: Iterable[str] = ()) -> str:
    flags = profile_flags(profiles)
    return f"docker compose {flags}" if flags else "docker compose"


def compose_profiles(path: str) -> str:
    # stderr의 경고는 프로필 이름으로 취급하지 않도록 버린다
    return f"cd {_q(validate_path(path))} && docker compose config --profiles 2>/dev/null"


def compose_services(path: str, profiles: Iterable[str] = ()) -> str:
    return f"cd {_q(validate_path(path))} && {compose_prefix(profiles)} config --services 2>/dev/null"


def compose_up_command(profiles: Iterable[str] = (), rebuild: bool = True) -> str:
    suffix = "up -d --build" if rebuild else "up -d --force-recreate"
    return f"{compose_prefix(profiles)} {suffix}"


def background_compose(path: str, log_pointer: str, profiles: Iterable[str] = (), rebuild: bool = True) -> str:
    """Detached build pipeline that ends its log with the completion marker block."""
    path = validate_path(path)
    log_pointer = validate_path(log_pointer)
    script = (
        f"{compose_up_command(profiles, rebuild)} 2>&1; "
        "EXIT_CODE=$?; "
        'echo ""; '
        f'echo "{COMPLETION_MARKER}"; '
        'if [ $EXIT_CODE -eq 0 ]; then echo "STATUS: SUCCESS"; '
        'else echo "STATUS: FAILED (exit code: $EXIT_CODE)"; fi; '
        'echo "TIMESTAMP: $(date -Iseconds)"'
    )
    return f"cd {_q(path)} && nohup bash -c {_q(script)} > {_q(log_pointer)} 2>&1 &"


def tail_log(log_pointer: str, lines: int = 300) -> str:
    return f'tail -n {_tail_count(lines)} {_q(validate_path(log_pointer))} 2>&1 || echo "Log file not found or empty"'


def log_freshness(log_pointer: str, window_seconds: int) -> str:
    """Prints RECENT if the file was written within the window, STALE otherwise."""
    seconds = _tail_count(window_seconds)
    return (
        f'find {_q(validate_path(log_pointer))} -newermt "-{seconds} seconds" 2>/dev/null '
        '| grep -q . && echo "RECENT" || echo "STALE"'
    )


# 운영자 명령

def docker_restart(container: str) -> str:
    return f"docker restart {_q(validate_name(container, 'container name'))} 2>&1"


def docker_logs(container: str, tail: int = 100) -> str:
    return f"docker logs --tail {_tail_count(tail)} {_q(validate_name(container, 'container name'))} 2>&1"


def docker_status(container: str) -> str:
    name = validate_name(container, "container name")
    return f"docker ps -a --filter {_q('name=' + name)} --format '{{{{.Status}}}}'"


def compose_up(project: str, build: bool = True, service: Optional[str] = None) -> str:
    cmd = f"docker compose -p {_q(validate_name(project, 'compose project'))} up -d"
    if build:
        cmd += " --build"
    if service:
        cmd += f" {_q(validate_name(service, 'service name'))}"
    return cmd + " 2>&1"


def parse_profiles(stdout: str) -> "tuple[List[str], List[str]]":
    """Split `docker compose config --profiles` output into (valid, rejected)."""
    valid, rejected = [], []
    for line in (stdout or "").splitlines():
        name = line.strip()
        if not name:
            continue
        if PROFILE_PATTERN.match(name):
            if name not in valid:
                valid.append(name)
        else:
            rejected.append(name)
    return valid, rejected
