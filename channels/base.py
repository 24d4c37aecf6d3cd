"""
Messaging surface — base infrastructure for delivering artifacts.

Provides:
- ChannelError: structured error hierarchy
- RateLimitedError: the rate-limit signal carrying a server-specified delay
- Surface targets: text channel, forum channel, guild, member
- MessagingSurface: abstract destination resolver implemented per platform
- DeliveryRetrier: retries one send operation on the rate-limit signal only
"""
from __future__ import annotations

import abc
import asyncio
import math
import structlog
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from models.schemas import Artifact

T = TypeVar("T")


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all surface operations."""

    def __init__(self, message: str, channel: str = ""):
        self.channel = channel
        super().__init__(message)


class RateLimitedError(ChannelError):
    def __init__(self, retry_after: float, channel: str = ""):
        self.retry_after = retry_after
        super().__init__(
            f"Rate limited on {channel or 'surface'}; retry after {retry_after}s",
            channel,
        )


def _as_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if math.isfinite(seconds) else None


def retry_after_of(error: BaseException) -> Optional[float]:
    """
    Server-specified retry delay (seconds) carried by `error`, if any.

    Recognises RateLimitedError, any exception with a numeric `retry_after`
    attribute, and `retry_after` keys inside `data` / `raw_error` mappings.
    """
    seconds = _as_seconds(getattr(error, "retry_after", None))
    if seconds is not None:
        return seconds
    for attr in ("raw_error", "data"):
        body = getattr(error, attr, None)
        if isinstance(body, Mapping):
            seconds = _as_seconds(body.get("retry_after"))
            if seconds is not None:
                return seconds
    return None


# ══════════════════════════════════════════════════════════════
#  SURFACE TARGETS
# ══════════════════════════════════════════════════════════════

class TextTarget(abc.ABC):
    """A destination that accepts messages (text channel or thread)."""

    id: str

    @abc.abstractmethod
    async def send(self, artifact: Artifact) -> Any:
        ...


class ForumTarget(abc.ABC):
    """A thread-only channel; every post opens a new thread."""

    id: str

    @abc.abstractmethod
    async def create_thread(self, name: str, artifact: Artifact) -> TextTarget:
        ...


class MemberTarget(abc.ABC):
    id: str

    @property
    @abc.abstractmethod
    def role_ids(self) -> list[str]:
        ...

    @abc.abstractmethod
    async def remove_roles(self, role_ids: list[str], reason: str = "") -> None:
        ...


class GuildTarget(abc.ABC):
    id: str

    @abc.abstractmethod
    async def fetch_member(self, user_id: str) -> MemberTarget:
        """Raises when the member cannot be fetched."""
        ...


# ══════════════════════════════════════════════════════════════
#  MESSAGING SURFACE — Abstract Base
# ══════════════════════════════════════════════════════════════

class MessagingSurface(abc.ABC):
    """
    Resolves destinations on a messaging platform.

    Resolution is cache-first with a remote fallback and never raises:
    an unreachable destination or one of the wrong kind resolves to None.
    """

    name: str = "surface"

    @abc.abstractmethod
    async def resolve_channel(self, channel_id: str) -> Optional[TextTarget]:
        ...

    @abc.abstractmethod
    async def resolve_forum(self, channel_id: str) -> Optional[ForumTarget]:
        ...

    @abc.abstractmethod
    async def resolve_guild(self, guild_id: str) -> Optional[GuildTarget]:
        ...


# ══════════════════════════════════════════════════════════════
#  DELIVERY RETRIER
# ══════════════════════════════════════════════════════════════

class DeliveryRetrier:
    """
    Wraps a single external send operation.

    Only the rate-limit signal is retried: the retrier sleeps the server
    delay (at least one second) and tries again while attempts remain.
    Any other error, or the last rate-limited attempt, propagates.
    """

    MIN_WAIT_S = 1.0

    def __init__(
        self,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._log = logger or structlog.get_logger().bind(component="delivery_retrier")

    @classmethod
    def wait_seconds(cls, retry_after: float) -> float:
        return max(math.ceil(retry_after * 1000), cls.MIN_WAIT_S * 1000) / 1000

    async def attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "deliver",
        max_attempts: Optional[int] = None,
    ) -> T:
        limit = max_attempts or self.max_attempts
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                retry_after = retry_after_of(e)
                if retry_after is None or attempt >= limit:
                    raise
                wait = self.wait_seconds(retry_after)
                self._log.warning("delivery_rate_limited",
                                  label=label,
                                  attempt=attempt,
                                  max_attempts=limit,
                                  wait_s=wait)
                await self._sleep(wait)
                attempt += 1
