"""Messaging surface interfaces, delivery retry, and the Discord adapter."""
from channels.base import (
    ChannelError,
    DeliveryRetrier,
    ForumTarget,
    GuildTarget,
    MemberTarget,
    MessagingSurface,
    RateLimitedError,
    TextTarget,
    retry_after_of,
)

__all__ = [
    "ChannelError", "RateLimitedError", "retry_after_of",
    "MessagingSurface", "TextTarget", "ForumTarget", "GuildTarget", "MemberTarget",
    "DeliveryRetrier",
]
