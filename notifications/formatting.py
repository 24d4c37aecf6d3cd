"""
Formatting primitives shared by the notification builders.

All functions are pure and never raise on bad input: absent or malformed
values render as a placeholder instead.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

PLACEHOLDER = "—"
UNKNOWN_TIME = "Unknown time"
DEFAULT_CHUNK_LIMIT = 1900

DECLARE_WAR_URL = "https://politicsandwar.com/nation/war/declare/id={nation_id}"

_THRESHOLD_RE = re.compile(r"threshold:\s*(\d+)h", re.IGNORECASE)


# ── Numbers ──────────────────────────────────────────────────

def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def format_number(value: Any) -> str:
    """en-US grouping, at most 2 decimals, trailing zeros trimmed: 1234.5 -> '1,234.5'."""
    number = _to_decimal(value)
    if number is None:
        return PLACEHOLDER
    rounded = number.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{rounded:,.2f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    return text


def positive_int(value: Any) -> Optional[int]:
    number = _to_decimal(value)
    if number is None or number != number.to_integral_value() or number <= 0:
        return None
    return int(number)


# ── Timestamps ───────────────────────────────────────────────

def parse_date(value: Any) -> Optional[datetime]:
    """Accepts datetimes, ISO-8601 strings (with a trailing Z) and unix seconds."""
    if value is None or isinstance(value, bool) or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def discord_time(value: Optional[datetime], style: str = "R") -> str:
    """Discord timestamp markup, rendered client-side in the reader's locale."""
    if not isinstance(value, datetime):
        return UNKNOWN_TIME
    try:
        seconds = math.floor(value.timestamp())
    except (OverflowError, OSError, ValueError):
        return UNKNOWN_TIME
    return f"<t:{seconds}:{style}>"


def absolute_and_relative(value: Optional[datetime], fallback: str = "Unknown") -> str:
    """'<t:..:f> (<t:..:R>)' or `fallback` when the timestamp is missing."""
    if not isinstance(value, datetime):
        return fallback
    return f"{discord_time(value, 'f')} ({discord_time(value, 'R')})"


# ── Links & labels ───────────────────────────────────────────

def link(label: str, url: Optional[str]) -> str:
    return f"[{label}]({url})" if url else label


def declare_war_url(nation_id: Any) -> Optional[str]:
    normalized = positive_int(nation_id)
    if normalized is None:
        return None
    return DECLARE_WAR_URL.format(nation_id=normalized)


def extract_threshold(message: Any) -> Optional[str]:
    if not isinstance(message, str):
        return None
    match = _THRESHOLD_RE.search(message)
    return match.group(1) if match else None


# ── Chunking ─────────────────────────────────────────────────

def chunk_message(text: str, max_length: int = DEFAULT_CHUNK_LIMIT) -> list[str]:
    """
    Split newline-separated text into chunks no longer than `max_length`.

    Lines are packed greedily and kept whole; a single line longer than the
    limit is hard-sliced into `max_length` pieces. Joining the chunks with
    newlines reproduces the input lines in order.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0

    for line in text.split("\n"):
        added = len(line) if not current else current_len + 1 + len(line)
        if added <= max_length:
            current.append(line)
            current_len = added
            continue

        if current:
            chunks.append("\n".join(current))
            current, current_len = [], 0

        if len(line) > max_length:
            chunks.extend(line[i:i + max_length] for i in range(0, len(line), max_length))
        else:
            current, current_len = [line], len(line)

    if current:
        chunks.append("\n".join(current))
    return chunks
