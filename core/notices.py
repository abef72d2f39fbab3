"""Notice rendering for transitions, reminders and failures.

Every function here is pure: incident in, Notice out. Channel clients decide
how a Notice is laid out on their platform.
"""

from schemas.incident import Incident
from schemas.notice import Notice, NoticeField
from utils.formatting import channel_mention, format_rfc1123, severity_text, user_mention

OPEN_COLOR = "#FE4D4D"
ERROR_COLOR = "#FE4D4D"
WARNING_COLOR = "#FF8C00"
STATUS_COLOR = "#F2B12E"


def open_notice(incident: Incident, support_team: str = "") -> Notice:
    author = user_mention(incident.author_id) or "someone"
    fields = [
        NoticeField(title="Incident ID", value=str(incident.id)),
        NoticeField(title="Incident Channel", value=channel_mention(incident.channel_id)),
        NoticeField(title="Incident Title", value=incident.title),
    ]
    if incident.severity_level is not None:
        fields.append(NoticeField(title="Severity", value=severity_text(incident.severity_level)))
    if incident.product:
        fields.append(NoticeField(title="Product", value=incident.product))
    if incident.commander_id:
        fields.append(NoticeField(title="Commander", value=user_mention(incident.commander_id)))
    fields.append(NoticeField(title="Description", value=f"```{incident.description_started}```"))
    if incident.meeting_url:
        fields.append(NoticeField(title="Incident Room", value=incident.meeting_url))

    body = [f"*cc:* <!subteam^{support_team}>"] if support_team else []
    return Notice(
        text=f"An Incident has been opened by {author}",
        body=body,
        fields=fields,
        color=OPEN_COLOR,
    )


def resolve_notice(incident: Incident) -> Notice:
    body = [f"*Channel:* #{incident.channel_name or incident.channel_id}"]
    if incident.post_mortem_url:
        body.append(f"*Post Mortem:* <{incident.post_mortem_url}|post mortem link>")
    if incident.description_resolved:
        body.append(f"\n*Description:*\n{incident.description_resolved}")
    return Notice(
        text=f":large_blue_circle: *Incident #{incident.id} - {incident.title}* has been resolved",
        body=body,
    )


def close_notice(incident: Incident) -> Notice:
    body = [f"*Channel:* #{incident.channel_name or incident.channel_id}"]
    if incident.severity_level is not None:
        body.append(f"*Severity:* {severity_text(incident.severity_level)}")
    if incident.start_ts is not None:
        body.append(f"*Started:* {format_rfc1123(incident.start_ts)}")
    if incident.post_mortem_url:
        body.append(f"*Post Mortem:* <{incident.post_mortem_url}|post mortem link>")
    if incident.root_cause:
        body.append(f"\n*Root Cause:*\n{incident.root_cause}")
    return Notice(
        text=f":white_check_mark: *Incident #{incident.id} - {incident.title}* has been closed",
        body=body,
    )


def close_private_notice(incident: Incident) -> Notice:
    text = f"The Incident {channel_mention(incident.channel_id)} has been closed by you"
    return Notice(text=text, color=OPEN_COLOR)


def cancel_notice(incident: Incident) -> Notice:
    body = [f"*Channel:* #{incident.channel_name or incident.channel_id}"]
    if incident.description_cancelled:
        body.append(f"\n*Description:*\n{incident.description_cancelled}")
    return Notice(
        text=f":no_entry: *Incident #{incident.id} - {incident.title}* has been canceled",
        body=body,
    )


def error_notice(message: str, warning: bool = False) -> Notice:
    """Explicit failure notice sent back to whoever requested a transition.

    Warnings (orange) are for requests refused because of the incident's
    current status; errors (red) for everything else.
    """
    return Notice(
        text="Your request could not be completed.",
        fields=[NoticeField(title="Error", value=message)],
        color=WARNING_COLOR if warning else ERROR_COLOR,
    )

