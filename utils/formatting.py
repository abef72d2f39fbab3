"""Text formatting helpers for incident notices and API listings."""

from datetime import datetime

from utils.timestamps import ensure_utc

_SEVERITY_TEXT = {
    0: "SEV0 - All hands on deck",
    1: "SEV1 - Critical impact to many users",
    2: "SEV2 - Minor issue that impacts ability to use product",
    3: "SEV3 - Minor issue not impacting ability to use product",
}

RFC1123 = "%a, %d %b %Y %H:%M:%S UTC"


def severity_text(level: int | None) -> str:
    """Human label for a severity level. Unknown levels render as ''."""
    if level is None:
        return ""
    return _SEVERITY_TEXT.get(level, "")


def format_rfc1123(value: datetime | None) -> str:
    if value is None:
        return ""
    return ensure_utc(value).strftime(RFC1123)


def channel_mention(channel_id: str) -> str:
    return f"<#{channel_id}>"


def user_mention(user_id: str) -> str:
    return f"<@{user_id}>" if user_id else ""


def format_duration(seconds: float) -> str:
    """Compact duration for log lines and the demo display ("2h", "1h30m", "45s")."""
    seconds = int(seconds)
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)
