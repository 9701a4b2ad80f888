from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching what SQLite columns return."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def discord_timestamp(moment: datetime, style: str = "R") -> str:
    """Format a naive UTC datetime as a Discord <t:...> timestamp."""
    epoch = int(moment.replace(tzinfo=timezone.utc).timestamp())
    return f"<t:{epoch}:{style}>"
