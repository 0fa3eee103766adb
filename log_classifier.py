"""
Classification of background deploy logs.

A finished pipeline writes a completion marker block at the end of its log:

    ===[DEPLOY_COMPLETE]===
    STATUS: SUCCESS | STATUS: FAILED (exit code: N)
    TIMESTAMP: 2024-05-01T12:00:00+00:00

When the marker is present its STATUS line decides the outcome. Logs without a
marker (older jobs) are judged by an ordered list of error rules, each of which
is cancelled out by any co-occurring success signature.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence

logger = logging.getLogger(__name__)

COMPLETION_MARKER = "===[DEPLOY_COMPLETE]==="
GENERIC_ERROR_MESSAGE = "Build completed with errors (check logs)"
MARKER_FAILED_MESSAGE = "Docker compose exited with non-zero code"

_STATUS_LINE = re.compile(r"^STATUS:\s*(SUCCESS|FAILED)(?:\s*\(exit code:\s*(\d+)\))?", re.MULTILINE)


@dataclass(frozen=True)
class ErrorRule:
    pattern: Pattern
    error_kind: str
    message: str

    @classmethod
    def of(cls, regex: str, error_kind: str, message: str, flags: int = re.IGNORECASE) -> "ErrorRule":
        return cls(re.compile(regex, flags), error_kind, message)


@dataclass(frozen=True)
class ErrorMatch:
    error_kind: str
    message: str


@dataclass(frozen=True)
class MarkerStatus:
    present: bool
    success: Optional[bool] = None
    exit_code: Optional[int] = None


@dataclass(frozen=True)
class Classification:
    success: bool
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


# 우선순위 순서대로 평가
DEFAULT_ERROR_RULES: List[ErrorRule] = [
    ErrorRule.of(r"error[:\s]+.*build.*failed", "build_failed", "Build failed"),
    ErrorRule.of(r"error: failed to solve", "docker_build_failed", "Docker build failed"),
    ErrorRule.of(r"exited with code [1-9]\d*", "container_exit", "Container exited with error"),
    ErrorRule.of(r"failed to (build|pull|create|start)", "docker_operation_failed", "Docker operation failed"),
    ErrorRule.of(r"error during connect", "docker_connection", "Docker connection error"),
    ErrorRule.of(r"cannot connect to the docker daemon", "docker_daemon_unreachable", "Docker daemon unreachable"),
    ErrorRule.of(r"no space left on device", "disk_full", "Disk full"),
    ErrorRule.of(r"error:\s*enoent", "file_not_found", "File not found"),
    ErrorRule.of(r"exec /.*: no such file or directory", "entrypoint_missing", "Entrypoint not found"),
    ErrorRule.of(r"npm err!", "npm_error", "NPM error"),
    ErrorRule.of(r"yarn error", "yarn_error", "Yarn error"),
    ErrorRule.of(r"fatal:", "fatal", "Fatal error"),
]

DEFAULT_SUCCESS_OVERRIDES: List[Pattern] = [
    re.compile(r"successfully built", re.IGNORECASE),
    re.compile(r"successfully tagged", re.IGNORECASE),
    re.compile(r"container .+ started", re.IGNORECASE),
    re.compile(r"creating .+ \.\.\. done", re.IGNORECASE),
    re.compile(r"\b0 errors?\b", re.IGNORECASE),
]

# 마커가 없는 예전 배포의 완료 추정용
COMPLETION_SIGNATURES: List[Pattern] = [
    re.compile(r"Container .+ Started", re.IGNORECASE),
    re.compile(r"Container .+ Running", re.IGNORECASE),
    re.compile(r"Creating .+ \.\.\. done", re.IGNORECASE),
    re.compile(r"Started$", re.MULTILINE),
    re.compile(r"successfully built", re.IGNORECASE),
    re.compile(r"successfully tagged", re.IGNORECASE),
]


def has_marker(log: str) -> bool:
    return COMPLETION_MARKER in (log or "")


def parse_marker(log: str) -> MarkerStatus:
    log = log or ""
    index = log.rfind(COMPLETION_MARKER)
    if index < 0:
        return MarkerStatus(present=False)
    match = _STATUS_LINE.search(log, index)
    if not match:
        # 마커 직후 STATUS 줄이 잘렸으면 실패로 간주
        return MarkerStatus(present=True, success=False)
    success = match.group(1) == "SUCCESS"
    exit_code = int(match.group(2)) if match.group(2) else (0 if success else None)
    return MarkerStatus(present=True, success=success, exit_code=exit_code)


def has_completion_signature(log: str, signatures: Sequence[Pattern] = COMPLETION_SIGNATURES) -> bool:
    return any(sig.search(log or "") for sig in signatures)


class LogClassifier:
    def __init__(
        self,
        error_rules: Optional[Sequence[ErrorRule]] = None,
        success_overrides: Optional[Sequence[Pattern]] = None,
    ):
        self.error_rules = list(DEFAULT_ERROR_RULES if error_rules is None else error_rules)
        self.success_overrides = list(DEFAULT_SUCCESS_OVERRIDES if success_overrides is None else success_overrides)

    def _overridden(self, log: str) -> bool:
        return any(p.search(log) for p in self.success_overrides)

    def detect_error(self, log: str) -> Optional[ErrorMatch]:
        log = log or ""
        overridden = None
        for rule in self.error_rules:
            if rule.pattern.search(log):
                if overridden is None:
                    overridden = self._overridden(log)
                if not overridden:
                    return ErrorMatch(rule.error_kind, rule.message)
        lowered = log.lower()
        if "error" in lowered and not re.search(r"\b0 errors?\b", lowered):
            if overridden is None:
                overridden = self._overridden(log)
            if not overridden:
                return ErrorMatch("generic_error", GENERIC_ERROR_MESSAGE)
        return None

    def classify(self, log: str) -> Classification:
        # 마커의 STATUS 줄이 최우선
        marker = parse_marker(log)
        if marker.present:
            if marker.success:
                return Classification(success=True)
            message = MARKER_FAILED_MESSAGE
            if marker.exit_code is not None:
                message = f"{message} (exit code: {marker.exit_code})"
            return Classification(success=False, error_kind="nonzero_exit", error_message=message)
        match = self.detect_error(log)
        if match:
            logger.debug("log matched error rule %s", match.error_kind)
            return Classification(success=False, error_kind=match.error_kind, error_message=match.message)
        return Classification(success=True)
