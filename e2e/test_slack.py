"""SlackClient tests.

Every request goes through httpx.MockTransport, so no token or network is
needed. The live test at the bottom only runs when WARDEN_SLACK_TOKEN and
WARDEN_SLACK_TEST_CHANNEL are set.
"""

import json
import os
from datetime import datetime, timezone

import httpx
import pytest

from channels.slack import SLACK_API_BASE, SlackClient, render_blocks
from core.errors import ChannelClientError
from schemas.notice import MessageRef, Notice, NoticeField


def make_client(handler) -> SlackClient:
    http_client = httpx.AsyncClient(base_url=SLACK_API_BASE, transport=httpx.MockTransport(handler))
    return SlackClient(token="xoxb-test", http_client=http_client)


class TestSlackClient:
    def test_empty_token_raises(self):
        with pytest.raises(ValueError):
            SlackClient(token="")

    async def test_post_sends_text_and_blocks(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "channel": "C1", "ts": "1709283600.000100"})

        async with make_client(handler) as client:
            ref = await client.post("C1", Notice(text="hello", body=["line"]))

        assert ref == MessageRef(channel="C1", ts="1709283600.000100")
        assert seen[0].url.path == "/api/chat.postMessage"
        payload = json.loads(seen[0].content)
        assert payload["channel"] == "C1"
        assert payload["text"] == "hello"
        assert payload["blocks"][0]["text"]["text"] == "hello"

    async def test_pin_calls_pins_add(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as client:
            await client.pin("C1", MessageRef(channel="C1", ts="1.000002"))

        assert seen == [{"channel": "C1", "timestamp": "1.000002"}]

    async def test_last_pin_takes_the_newest_message(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.params["channel"] == "C1"
            return httpx.Response(200, json={"ok": True, "items": [
                {"type": "message", "message": {"ts": "1709283600.000000"}},
                {"type": "file", "file": {"id": "F1"}},
                {"type": "message", "message": {"ts": "1709290800.000000"}},
            ]})

        async with make_client(handler) as client:
            latest = await client.last_pin_timestamp("C1")

        assert latest == datetime(2024, 3, 1, 11, 0, 0, tzinfo=timezone.utc)

    async def test_no_pins_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True, "items": []})

        async with make_client(handler) as client:
            assert await client.last_pin_timestamp("C1") is None

    async def test_ok_false_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})

        async with make_client(handler) as client:
            with pytest.raises(ChannelClientError, match="channel_not_found"):
                await client.post("C404", Notice(text="hi"))

    async def test_http_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream down")

        async with make_client(handler) as client:
            with pytest.raises(ChannelClientError):
                await client.pin("C1", MessageRef(channel="C1", ts="1.0"))

    async def test_malformed_pin_timestamp_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True, "items": [{"message": {"ts": "yesterday"}}]})

        async with make_client(handler) as client:
            with pytest.raises(ChannelClientError, match="bad timestamp"):
                await client.last_pin_timestamp("C1")


class TestRenderBlocks:
    def test_headline_only(self):
        blocks = render_blocks(Notice(text="hi"))
        assert [b["type"] for b in blocks] == ["section", "divider"]

    def test_body_and_fields(self):
        notice = Notice(text="hi", body=["*Channel:* #inc"], fields=[NoticeField(title="Severity", value="SEV1")])
        blocks = render_blocks(notice)
        assert [b["type"] for b in blocks] == ["section", "divider", "section", "divider"]
        assert blocks[2]["text"]["text"] == "*Channel:* #inc\n*Severity:* SEV1"


@pytest.mark.live
@pytest.mark.skipif(
    not (os.environ.get("WARDEN_SLACK_TOKEN") and os.environ.get("WARDEN_SLACK_TEST_CHANNEL")),
    reason="WARDEN_SLACK_TOKEN / WARDEN_SLACK_TEST_CHANNEL not set",
)
async def test_live_post_and_pin():
    channel = os.environ["WARDEN_SLACK_TEST_CHANNEL"]
    async with SlackClient(token=os.environ["WARDEN_SLACK_TOKEN"]) as client:
        ref = await client.post(channel, Notice(text="incident-warden live test"))
        await client.pin(channel, ref)
        assert await client.last_pin_timestamp(channel) is not None
