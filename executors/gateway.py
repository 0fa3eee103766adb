import logging
from typing import Optional
import httpx
from executors.base import CommandExecutor
from shell_models import ShellRequest, ShellResult
from utils.exceptions import GatewayError

logger = logging.getLogger(__name__)


class GatewayExecutor(CommandExecutor):
    """Runs commands through the token-authenticated execution gateway (POST /shell)."""

    def __init__(self, url: str, token: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url.rstrip("/")
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=self.url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def executor_type(self) -> str:
        return "gateway"

    async def run(self, command: str, cwd: Optional[str] = None) -> ShellResult:
        request = ShellRequest(command=command, cwd=cwd)
        try:
            response = await self.client.post("/shell", json=request.model_dump(exclude_none=True))
        except httpx.HTTPError as e:
            logger.error("Gateway request failed: %s", e)
            raise GatewayError(f"Runner unreachable: {e}", dev_message=command) from e
        if response.status_code >= 300:
            body = response.text or response.reason_phrase
            raise GatewayError(
                f"Runner error: {response.status_code} - {body}",
                status=response.status_code,
                dev_message=command,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("Runner returned invalid JSON", status=response.status_code) from e
        if not isinstance(data, dict):
            raise GatewayError("Runner returned invalid JSON", status=response.status_code)
        return ShellResult(
            success=bool(data.get("success")),
            stdout=data.get("stdout") or "",
            stderr=data.get("stderr") or "",
            exit_code=data.get("exit_code"),
        )

    async def health(self) -> bool:
        try:
            response = await self.client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        await self.client.aclose()
