"""Notification artifact builders and formatting helpers."""
from notifications.formatting import (
    PLACEHOLDER,
    absolute_and_relative,
    chunk_message,
    discord_time,
    format_number,
    parse_date,
)

__all__ = [
    "PLACEHOLDER",
    "absolute_and_relative",
    "chunk_message",
    "discord_time",
    "format_number",
    "parse_date",
]
