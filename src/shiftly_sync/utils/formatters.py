"""Formatting utilities for log events and status reports."""

from datetime import datetime


def format_fields(event: str, **fields) -> str:
    """Render a log event as ``event key=value ...``.

    Values containing spaces are quoted so the line stays grep-friendly.
    """
    parts = [event]
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        text = str(value)
        if not text or any(ch.isspace() for ch in text):
            text = '"' + text.replace('"', "'") + '"'
        parts.append(f"{key}={text}")
    return " ".join(parts)


def format_duration(seconds: float) -> str:
    """Format a duration for humans: 850ms, 12.3s, 4m05s."""
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    return f"{minutes}m{secs:02d}s"


def format_table_counts(counts: dict, title: str = "") -> str:
    """Two-column table of row counts per table."""
    lines = [f"=== {title} ===" if title else ""]
    for table, count in counts.items():
        lines.append(f"{table:<20}: {count} rows")
    return "\n".join(line for line in lines if line)


def format_sync_run(run) -> str:
    """Plain-text report for one SyncRun."""
    lines = [
        f"Sync run {run.status.value} "
        f"({format_duration(run.duration_seconds)})",
    ]
    if run.error:
        lines.append(f"  error: {run.error}")
    for outcome in run.tables:
        line = (
            f"  {outcome.table:<16} {outcome.status.value:<16} "
            f"local={outcome.local_count} primary={outcome.primary_count} "
            f"copied={outcome.copied}"
        )
        if outcome.error:
            line += f"  ({outcome.error})"
        lines.append(line)
    return "\n".join(lines)
