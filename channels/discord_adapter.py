"""
Discord Surface Adapter — discord.py implementation of the messaging surface.

Provides:
- render_artifact: Artifact → discord.py send keyword arguments
- Discord{Text,Forum,Guild,Member}Target: thin wrappers over discord.py objects
- DiscordSurface: cache-first destination resolution with remote fallback
- 429 translation: discord.RateLimited / HTTP 429 → RateLimitedError
"""
from __future__ import annotations

import contextlib
import structlog
from typing import Any, AsyncIterator, Optional

import discord

from channels.base import (
    ChannelError, ForumTarget, GuildTarget, MemberTarget, MessagingSurface,
    RateLimitedError, TextTarget,
)
from models.schemas import Artifact, Embed

logger = structlog.get_logger()

SURFACE_NAME = "discord"


# ══════════════════════════════════════════════════════════════
#  RENDERING
# ══════════════════════════════════════════════════════════════

def render_embed(embed: Embed) -> discord.Embed:
    rendered = discord.Embed(
        title=embed.title,
        url=embed.url,
        description=embed.description or None,
        colour=embed.color,
        timestamp=embed.timestamp,
    )
    for field in embed.fields:
        rendered.add_field(name=field.name, value=field.value, inline=field.inline)
    if embed.footer:
        rendered.set_footer(text=embed.footer)
    return rendered


def render_artifact(artifact: Artifact) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if artifact.content:
        kwargs["content"] = artifact.content
    if artifact.embeds:
        kwargs["embeds"] = [render_embed(e) for e in artifact.embeds]
    if artifact.mention_users:
        kwargs["allowed_mentions"] = discord.AllowedMentions(everyone=False, users=True, roles=False)
    return kwargs


def _header_retry_after(error: discord.HTTPException) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("Retry-After") if hasattr(headers, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@contextlib.asynccontextmanager
async def translate_errors(label: str) -> AsyncIterator[None]:
    """Re-raise Discord rate limiting as RateLimitedError; other errors pass through."""
    try:
        yield
    except discord.RateLimited as e:
        raise RateLimitedError(e.retry_after, SURFACE_NAME) from e
    except discord.HTTPException as e:
        if e.status == 429:
            raise RateLimitedError(_header_retry_after(e) or 1.0, SURFACE_NAME) from e
        logger.debug("discord_http_error", label=label, status=e.status, code=e.code)
        raise


def _snowflake(value: str) -> Optional[int]:
    try:
        snowflake = int(value)
    except (TypeError, ValueError):
        return None
    return snowflake if snowflake > 0 else None


# ══════════════════════════════════════════════════════════════
#  TARGETS
# ══════════════════════════════════════════════════════════════

class DiscordTextTarget(TextTarget):
    def __init__(self, channel: discord.abc.Messageable):
        self._channel = channel
        self.id = str(getattr(channel, "id", ""))

    async def send(self, artifact: Artifact) -> discord.Message:
        async with translate_errors("send"):
            return await self._channel.send(**render_artifact(artifact))


class DiscordForumTarget(ForumTarget):
    def __init__(self, forum: discord.ForumChannel):
        self._forum = forum
        self.id = str(forum.id)

    async def create_thread(self, name: str, artifact: Artifact) -> DiscordTextTarget:
        async with translate_errors("create_thread"):
            created = await self._forum.create_thread(name=name, **render_artifact(artifact))
        return DiscordTextTarget(created.thread)


class DiscordMemberTarget(MemberTarget):
    def __init__(self, member: discord.Member):
        self._member = member
        self.id = str(member.id)

    @property
    def role_ids(self) -> list[str]:
        return [str(role.id) for role in self._member.roles]

    async def remove_roles(self, role_ids: list[str], reason: str = "") -> None:
        roles = [discord.Object(id=int(role_id)) for role_id in role_ids]
        async with translate_errors("remove_roles"):
            await self._member.remove_roles(*roles, reason=reason or None)


class DiscordGuildTarget(GuildTarget):
    def __init__(self, guild: discord.Guild):
        self._guild = guild
        self.id = str(guild.id)

    async def fetch_member(self, user_id: str) -> DiscordMemberTarget:
        snowflake = _snowflake(user_id)
        if snowflake is None:
            raise ChannelError(f"Invalid member id {user_id!r}", SURFACE_NAME)
        async with translate_errors("fetch_member"):
            member = await self._guild.fetch_member(snowflake)
        return DiscordMemberTarget(member)


# ══════════════════════════════════════════════════════════════
#  SURFACE
# ══════════════════════════════════════════════════════════════

class DiscordSurface(MessagingSurface):
    """Resolves Discord destinations through a connected discord.Client."""

    name = SURFACE_NAME

    def __init__(self, client: discord.Client):
        self.client = client

    async def _any_channel(self, channel_id: str) -> Optional[Any]:
        snowflake = _snowflake(channel_id)
        if snowflake is None:
            logger.warning("discord_channel_id_invalid", channel_id=channel_id)
            return None

        cached = self.client.get_channel(snowflake)
        if cached is not None:
            return cached

        try:
            return await self.client.fetch_channel(snowflake)
        except (discord.DiscordException, ValueError) as e:
            logger.warning("discord_channel_fetch_failed", channel_id=channel_id, error=str(e))
            return None

    async def resolve_channel(self, channel_id: str) -> Optional[DiscordTextTarget]:
        channel = await self._any_channel(channel_id)
        if channel is None or not isinstance(channel, discord.abc.Messageable):
            return None
        return DiscordTextTarget(channel)

    async def resolve_forum(self, channel_id: str) -> Optional[DiscordForumTarget]:
        channel = await self._any_channel(channel_id)
        if not isinstance(channel, discord.ForumChannel):
            return None
        return DiscordForumTarget(channel)

    async def resolve_guild(self, guild_id: str) -> Optional[DiscordGuildTarget]:
        snowflake = _snowflake(guild_id)
        if snowflake is None:
            logger.warning("discord_guild_id_invalid", guild_id=guild_id)
            return None

        guild = self.client.get_guild(snowflake)
        if guild is None:
            try:
                guild = await self.client.fetch_guild(snowflake)
            except (discord.DiscordException, ValueError) as e:
                logger.warning("discord_guild_fetch_failed", guild_id=guild_id, error=str(e))
                return None
        return DiscordGuildTarget(guild)
