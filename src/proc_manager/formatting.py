"""Formatting utilities for consistent output across CLI and TUI."""

from collections.abc import Iterable, Sequence

PLACEHOLDER = "—"

STATE_LABELS = {
    "R": "Running",
    "S": "Sleeping",
    "D": "Waiting",
    "Z": "Zombie",
    "T": "Stopped",
    "I": "Idle",
}


def state_label(state: str) -> str:
    """Human name for a state character; unknown states pass through."""
    return STATE_LABELS.get(state, state)


def format_kb(kb: int | None) -> str:
    """Format a size in kilobytes.

    Returns:
        "512 KB", "1.5 MB" (one decimal) or "2.00 GB" (two decimals)
    """
    if kb is None:
        return PLACEHOLDER
    if kb < 1024:
        return f"{kb} KB"
    mb = kb / 1024
    if mb < 1024:
        return f"{mb:.1f} MB"
    return f"{mb / 1024:.2f} GB"


def format_percent(value: float | None) -> str:
    """Format a percentage with one decimal, e.g. "12.5%"."""
    if value is None or value != value:
        return PLACEHOLDER
    return f"{value:.1f}%"


def csv_value(value: object) -> str:
    """Quote a CSV cell when it holds a comma, quote, CR or LF (RFC 4180)."""
    text = "" if value is None else str(value)
    if any(c in text for c in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def to_csv(header: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    """Render rows as CSV text, one line per row."""
    lines = [",".join(csv_value(h) for h in header)]
    lines.extend(",".join(csv_value(v) for v in row) for row in rows)
    return "\n".join(lines)
