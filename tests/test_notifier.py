import asyncio
import json
import logging
import httpx
import pytest
from notifier import DISCORD_COLORS, FOOTER_TEXT, DiscordNotifier, NullNotifier, build_notifier
from retry_policy import RetryPolicy

WEBHOOK = "https://discord.test/api/webhooks/1/abc"


class Capture:
    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.payloads = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        status = self.statuses.pop(0) if self.statuses else 204
        return httpx.Response(status)


def discord(capture: Capture) -> DiscordNotifier:
    return DiscordNotifier(
        WEBHOOK,
        retry_policy=RetryPolicy(max_retries=2, delay=0, retry_on=(httpx.HTTPError,)),
        transport=httpx.MockTransport(capture),
    )


@pytest.mark.asyncio
async def test_started_embed():
    capture = Capture()
    notifier = discord(capture)
    await notifier.deploy_started("demo-web", "alice@example.com")
    await notifier.drain()
    embed = capture.payloads[0]["embeds"][0]
    assert embed["title"] == "🚀 Deploy Started"
    assert "**demo-web**" in embed["description"]
    assert embed["color"] == DISCORD_COLORS["info"]
    assert embed["fields"] == [{"name": "Triggered by", "value": "alice@example.com", "inline": False}]
    assert embed["footer"] == {"text": FOOTER_TEXT}


@pytest.mark.asyncio
async def test_success_embed_shortens_commit():
    capture = Capture()
    notifier = discord(capture)
    await notifier.deploy_succeeded("demo-web", "0123456789abcdef")
    await notifier.drain()
    embed = capture.payloads[0]["embeds"][0]
    assert embed["title"] == "✅ Deploy Successful"
    assert embed["color"] == DISCORD_COLORS["success"]
    assert embed["fields"] == [{"name": "Commit", "value": "0123456", "inline": True}]


@pytest.mark.asyncio
async def test_failed_embed_carries_error():
    capture = Capture()
    notifier = discord(capture)
    await notifier.deploy_failed("demo-web", "x" * 2000)
    await notifier.drain()
    embed = capture.payloads[0]["embeds"][0]
    assert embed["title"] == "❌ Deploy Failed"
    assert embed["color"] == DISCORD_COLORS["danger"]
    # Discord 필드 길이 제한
    assert len(embed["fields"][0]["value"]) == 1024


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    capture = Capture(statuses=[500, 204])
    sent = await discord(capture).send({"title": "t"})
    assert sent
    assert len(capture.payloads) == 2


@pytest.mark.asyncio
async def test_delivery_failure_is_logged_not_raised(caplog):
    capture = Capture(statuses=[500, 500, 500])
    notifier = discord(capture)
    with caplog.at_level(logging.ERROR):
        await notifier.deploy_failed("demo-web", "Build failed")
        await notifier.drain()
    assert len(capture.payloads) == 3
    assert "Discord notification failed" in caplog.text
    await notifier.close()


@pytest.mark.asyncio
async def test_null_notifier_only_logs(caplog):
    notifier = build_notifier(None)
    assert isinstance(notifier, NullNotifier)
    with caplog.at_level(logging.INFO):
        await notifier.deploy_succeeded("demo-web", "abcdef123")
    assert "demo-web" in caplog.text
    assert isinstance(build_notifier(WEBHOOK), DiscordNotifier)


@pytest.mark.asyncio
async def test_invalid_webhook_url_is_logged_not_raised(caplog):
    def handler(request):
        raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

    notifier = DiscordNotifier(WEBHOOK, transport=httpx.MockTransport(handler))
    with caplog.at_level(logging.ERROR):
        assert not await notifier.send({"title": "t"})
    assert "Discord notification failed" in caplog.text


@pytest.mark.asyncio
async def test_slow_webhook_does_not_block_caller():
    release = asyncio.Event()
    delivered = []

    async def handler(request):
        await release.wait()
        delivered.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = DiscordNotifier(WEBHOOK, transport=httpx.MockTransport(handler))
    # 전송이 끝나지 않아도 즉시 반환
    await asyncio.wait_for(notifier.deploy_started("demo-web", "alice"), timeout=1)
    assert delivered == []
    release.set()
    await notifier.close()
    assert len(delivered) == 1


@pytest.mark.asyncio
async def test_close_gives_up_on_hung_delivery():
    async def handler(request):
        await asyncio.Event().wait()

    notifier = DiscordNotifier(WEBHOOK, transport=httpx.MockTransport(handler))
    await notifier.deploy_failed("demo-web", "boom")
    await asyncio.wait_for(notifier.close(timeout=0.05), timeout=1)
    await asyncio.sleep(0.01)
    assert not notifier._pending
