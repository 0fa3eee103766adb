import os
from typing import List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv
from utils.exceptions import ConfigurationError


class Settings(BaseModel):
    database_url: str = "sqlite+aiosqlite:///./app.db"
    # 실행 게이트웨이 (원격 호스트의 runner)
    gateway_url: Optional[str] = "http://127.0.0.1:8787"
    gateway_token: Optional[str] = None
    gateway_timeout: float = 30.0
    projects_dir: str = "/home/pi/projects"
    log_dir: str = "/tmp"
    log_tail_lines: int = 300
    freshness_window: int = 30  # seconds
    allowlist_path: str = "./data/allowlist.yaml"
    discord_webhook_url: Optional[str] = None
    pin_hash: Optional[str] = None
    session_secret: Optional[str] = None
    session_ttl: int = 1800
    github_webhook_secret: Optional[str] = None
    auto_deploy_branches: List[str] = ["main", "master"]
    log_level: str = "INFO"

    def require_gateway(self) -> None:
        if not self.gateway_url:
            raise ConfigurationError("Runner not configured (missing RUNNER_URL)")
        if not self.gateway_token:
            raise ConfigurationError("Runner not configured (missing RUNNER_TOKEN)")

    def require_session(self) -> None:
        if not self.pin_hash:
            raise ConfigurationError("PIN_HASH environment variable is not set")
        if not self.session_secret:
            raise ConfigurationError("SESSION_SECRET environment variable is not set")


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def load_settings() -> Settings:
    """Build the process-wide settings from the environment (.env included)."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        gateway_url=(os.getenv("RUNNER_URL", defaults.gateway_url) or "").rstrip("/") or None,
        gateway_token=os.getenv("RUNNER_TOKEN"),
        gateway_timeout=float(os.getenv("RUNNER_TIMEOUT", defaults.gateway_timeout)),
        projects_dir=os.getenv("PROJECTS_DIR", defaults.projects_dir),
        log_dir=os.getenv("DEPLOY_LOG_DIR", defaults.log_dir),
        log_tail_lines=int(os.getenv("DEPLOY_LOG_TAIL_LINES", defaults.log_tail_lines)),
        freshness_window=int(os.getenv("DEPLOY_FRESHNESS_WINDOW", defaults.freshness_window)),
        allowlist_path=os.getenv("RUNNER_ALLOWLIST_PATH", defaults.allowlist_path),
        discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL"),
        pin_hash=os.getenv("PIN_HASH"),
        session_secret=os.getenv("SESSION_SECRET"),
        session_ttl=int(os.getenv("PIN_SESSION_TTL", defaults.session_ttl)),
        github_webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET"),
        auto_deploy_branches=_split(os.getenv("AUTO_DEPLOY_BRANCHES")) or defaults.auto_deploy_branches,
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
    )
