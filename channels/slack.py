"""Slack notification client.

Implements the three NotificationClient primitives against the Slack Web
API using httpx:
    post                → chat.postMessage
    pin                 → pins.add
    last_pin_timestamp  → pins.list

Notices are laid out as a header section, a divider and a body section, the
same card shape for every transition. Nothing else of the Slack API is used.

Required environment variable (read by core.config):
    WARDEN_SLACK_TOKEN: Bot token with chat:write and pins:read/write scopes.

Slack API reference: https://api.slack.com/methods
"""

import logging
from datetime import datetime

import httpx

from channels.base import NotificationClient
from core.errors import ChannelClientError
from schemas.notice import MessageRef, Notice
from utils.timestamps import TimestampParseError, parse_message_ts

logger = logging.getLogger(__name__)

SLACK_API_BASE = "https://slack.com/api"
DEFAULT_TIMEOUT_SECONDS = 15


class SlackClient(NotificationClient):
    """NotificationClient backed by the Slack Web API.

    One httpx.AsyncClient is shared by every call, so all fan-out
    deliveries reuse the same connection pool. Pass a preconfigured client
    (e.g. with an httpx.MockTransport) to test without network access.

    Example usage:
        async with SlackClient(token=settings.slack_token) as client:
            ref = await client.post("C0123", Notice(text="hello"))

    Attributes:
        _client: The underlying async HTTP client.
    """

    def __init__(
        self,
        token: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialise the client.

        Args:
            token: Slack bot token. No default — always explicit.
            http_client: Optional preconfigured client. When omitted, one is
                created against SLACK_API_BASE with the bearer token set.
            timeout: Per-request timeout used when creating the client.

        Raises:
            ValueError: If token is empty. Fails at construction rather than
                at the first delivery.
        """
        if not token:
            raise ValueError("Slack token must not be empty.")
        self._client = http_client or httpx.AsyncClient(
            base_url=SLACK_API_BASE,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    async def __aenter__(self) -> "SlackClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post(self, target: str, notice: Notice) -> MessageRef:
        data = await self._call("chat.postMessage", {
            "channel": target,
            "text": notice.text,
            "blocks": render_blocks(notice),
        })
        return MessageRef(channel=data.get("channel", target), ts=data["ts"])

    async def pin(self, target: str, ref: MessageRef) -> None:
        await self._call("pins.add", {"channel": target, "timestamp": ref.ts})

    async def last_pin_timestamp(self, target: str) -> datetime | None:
        """Return the post time of the newest pinned message in target.

        pins.list returns items in no guaranteed order, so every pinned
        message timestamp is parsed and the maximum wins. Pinned files and
        other non-message items are skipped.

        Raises:
            ChannelClientError: If the API call fails or a message carries a
                malformed timestamp.
        """
        data = await self._call("pins.list", {"channel": target}, method="GET")

        latest: datetime | None = None
        for item in data.get("items", []):
            message = item.get("message")
            if not message or not message.get("ts"):
                continue
            try:
                ts = parse_message_ts(message["ts"])
            except TimestampParseError as exc:
                raise ChannelClientError(f"pins.list returned a bad timestamp: {exc.raw!r}") from exc
            if latest is None or ts > latest:
                latest = ts
        return latest

    async def _call(self, api_method: str, payload: dict, method: str = "POST") -> dict:
        """Invoke one Web API method and return its JSON body.

        Slack reports most failures as HTTP 200 with {"ok": false, "error":
        "..."}, so both transport errors and ok=false become
        ChannelClientError.
        """
        try:
            if method == "GET":
                resp = await self._client.get(f"/{api_method}", params=payload)
            else:
                resp = await self._client.post(f"/{api_method}", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            logger.error("Slack %s failed: %s", api_method, exc)
            raise ChannelClientError(f"{api_method} failed: {exc}") from exc
        except ValueError as exc:
            raise ChannelClientError(f"{api_method} returned a non-JSON body") from exc

        if not data.get("ok", False):
            error = data.get("error", "unknown_error")
            logger.warning("Slack %s returned error '%s'.", api_method, error)
            raise ChannelClientError(f"{api_method}: {error}")

        return data


def render_blocks(notice: Notice) -> list[dict]:
    """Lay a Notice out as header / divider / body / divider blocks."""
    blocks: list[dict] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": notice.text}},
        {"type": "divider"},
    ]

    lines = list(notice.body)
    lines.extend(f"*{f.title}:* {f.value}" for f in notice.fields)
    if lines:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}})
        blocks.append({"type": "divider"})

    return blocks
