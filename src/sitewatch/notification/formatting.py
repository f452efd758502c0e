"""Message formatting for change notifications."""

from typing import Any

from .types import ChangeNotification, NotificationType

# URLs listed per change type before truncating
MAX_LISTED_URLS = 10


def _url_lines(urls: list[str]) -> str:
    lines = [f"• <{url}|{url}>" for url in urls[:MAX_LISTED_URLS]]
    if len(urls) > MAX_LISTED_URLS:
        lines.append(f"_...and {len(urls) - MAX_LISTED_URLS} more_")
    return "\n".join(lines)


def summary_line(payload: ChangeNotification) -> str:
    site = payload.site_url or payload.site_id
    if payload.type == NotificationType.TEST:
        return f"Test notification for {site}"
    return (
        f"Sitemap changes on {site}: "
        f"{payload.added} added, {payload.removed} removed, {payload.updated} updated"
    )


def format_slack_message(payload: ChangeNotification) -> dict[str, Any]:
    """Format a change notification as Slack text plus blocks."""
    text = summary_line(payload)

    if payload.type == NotificationType.TEST:
        header = "🔔 Sitewatch test notification"
    else:
        header = "🗺️ Sitemap changes detected"

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": header},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Site:*\n{payload.site_url or payload.site_id}"},
                {"type": "mrkdwn", "text": f"*Scan:*\n{payload.scan_id}"},
                {"type": "mrkdwn", "text": f"*Added:*\n{payload.added}"},
                {"type": "mrkdwn", "text": f"*Removed:*\n{payload.removed}"},
                {"type": "mrkdwn", "text": f"*Updated:*\n{payload.updated}"},
            ],
        },
    ]

    for title, urls in (
        ("Added", payload.added_urls),
        ("Removed", payload.removed_urls),
        ("Updated", payload.updated_urls),
    ):
        if urls:
            blocks.append(
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*{title}:*\n{_url_lines(urls)}"},
                }
            )

    blocks.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"Detected {payload.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
                }
            ],
        }
    )

    return {"text": text, "blocks": blocks}


def format_email(payload: ChangeNotification) -> tuple[str, str]:
    """Subject and plain-text body of a change notification email."""
    subject = summary_line(payload)
    lines = [subject, "", f"Scan: {payload.scan_id}"]
    for title, urls in (
        ("Added", payload.added_urls),
        ("Removed", payload.removed_urls),
        ("Updated", payload.updated_urls),
    ):
        if urls:
            lines.append("")
            lines.append(f"{title}:")
            lines.extend(f"  {url}" for url in urls)
    return subject, "\n".join(lines) + "\n"
