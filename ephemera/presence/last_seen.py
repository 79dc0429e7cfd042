"""Human-readable "last seen" labels."""

from __future__ import annotations

from datetime import datetime, timedelta


def _clock_time(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_last_seen(last_seen: datetime | None, now: datetime) -> str:
    """Render *last_seen* relative to *now* (both timezone-aware).

    Examples: ``Last seen just now``, ``Last seen 12m ago``,
    ``Last seen today at 3:04 PM``, ``Last seen yesterday at 9:15 AM``,
    ``Last seen Oct 3 at 8:00 PM``.
    """
    if last_seen is None:
        return "Offline"
    last_seen = last_seen.astimezone(now.tzinfo)
    elapsed = now - last_seen
    minutes = int(elapsed.total_seconds() // 60)
    hours = int(elapsed.total_seconds() // 3600)

    if minutes < 1:
        return "Last seen just now"
    if minutes < 60:
        return f"Last seen {minutes}m ago"
    time_str = _clock_time(last_seen)
    if hours < 24 and last_seen.date() == now.date():
        return f"Last seen today at {time_str}"
    if elapsed.days == 1 or (hours < 48 and last_seen.date() == now.date() - timedelta(days=1)):
        return f"Last seen yesterday at {time_str}"
    return f"Last seen {last_seen.strftime('%b')} {last_seen.day} at {time_str}"
