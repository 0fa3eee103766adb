import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set
import httpx
from retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

DISCORD_COLORS = {
    "success": 0x22C55E,
    "warning": 0xEAB308,
    "danger": 0xEF4444,
    "info": 0x3B82F6,
}
FOOTER_TEXT = "Fleet Dashboard"


class Notifier(ABC):
    """
    배포 이벤트 수신자. 호출자는 결과를 기다리지 않는다 (fire-and-forget):
    구현은 즉시 반환해야 하며 느린 전송은 백그라운드에서 처리한다.
    """

    @abstractmethod
    async def deploy_started(self, service_name: str, actor: str) -> None:
        pass

    @abstractmethod
    async def deploy_succeeded(self, service_name: str, commit_sha: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def deploy_failed(self, service_name: str, error_message: str) -> None:
        pass

    async def close(self) -> None:
        pass


class NullNotifier(Notifier):
    async def deploy_started(self, service_name: str, actor: str) -> None:
        logger.info("deploy started: %s (by %s)", service_name, actor)

    async def deploy_succeeded(self, service_name: str, commit_sha: Optional[str] = None) -> None:
        logger.info("deploy succeeded: %s (%s)", service_name, (commit_sha or "-")[:7])

    async def deploy_failed(self, service_name: str, error_message: str) -> None:
        logger.info("deploy failed: %s: %s", service_name, error_message)


class DiscordNotifier(Notifier):
    def __init__(
        self,
        webhook_url: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.retry_policy = retry_policy or RetryPolicy(max_retries=2, delay=1.0, retry_on=(httpx.HTTPError,))
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._pending: Set[asyncio.Task] = set()

    def build_embed(self, title: str, message: str, color: str = "info", fields: Optional[List[Dict]] = None) -> Dict:
        return {
            "title": title,
            "description": message,
            "color": DISCORD_COLORS.get(color, DISCORD_COLORS["info"]),
            "fields": [
                {"name": f["name"], "value": f["value"], "inline": f.get("inline", False)}
                for f in (fields or [])
            ],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "footer": {"text": FOOTER_TEXT},
        }

    async def _post(self, payload: Dict) -> None:
        response = await self.client.post(self.webhook_url, json=payload)
        response.raise_for_status()

    async def send(self, embed: Dict) -> bool:
        try:
            await self.retry_policy.execute_with_retry(self._post, {"embeds": [embed]})
            return True
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # 알림 실패는 배포 흐름에 영향을 주지 않는다
            logger.error("Discord notification failed (%s): %s", embed.get("title"), e)
            return False

    def dispatch(self, embed: Dict) -> asyncio.Task:
        """Schedules delivery on the running loop and returns without waiting for it."""
        task = asyncio.create_task(self.send(embed))
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Discord notification task failed: %r", error)

    async def drain(self) -> None:
        """Waits for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def deploy_started(self, service_name: str, actor: str) -> None:
        self.dispatch(self.build_embed(
            "🚀 Deploy Started",
            f"Deployment for **{service_name}** has started.",
            "info",
            [{"name": "Triggered by", "value": actor}],
        ))

    async def deploy_succeeded(self, service_name: str, commit_sha: Optional[str] = None) -> None:
        fields = []
        if commit_sha:
            fields.append({"name": "Commit", "value": commit_sha[:7], "inline": True})
        self.dispatch(self.build_embed(
            "✅ Deploy Successful",
            f"Deployment for **{service_name}** completed successfully.",
            "success",
            fields,
        ))

    async def deploy_failed(self, service_name: str, error_message: str) -> None:
        self.dispatch(self.build_embed(
            "❌ Deploy Failed",
            f"Deployment for **{service_name}** failed.",
            "danger",
            [{"name": "Error", "value": (error_message or "Unknown error")[:1024]}],
        ))

    async def close(self, timeout: float = 15.0) -> None:
        if self._pending:
            try:
                await asyncio.wait_for(self.drain(), timeout)
            except asyncio.TimeoutError:
                logger.warning("dropping %d undelivered Discord notifications", len(self._pending))
                for task in list(self._pending):
                    task.cancel()
        await self.client.aclose()


def build_notifier(webhook_url: Optional[str]) -> Notifier:
    if webhook_url:
        return DiscordNotifier(webhook_url)
    logger.warning("DISCORD_WEBHOOK_URL not configured, notifications are logged only")
    return NullNotifier()
