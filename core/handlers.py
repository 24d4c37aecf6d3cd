"""
Action Handlers — one per ActionKind.

Each handler receives an already-validated payload, resolves its
destination, builds an artifact and delivers it through the
DeliveryRetrier. Expected failures come back as DispatchOutcome values;
only genuine faults raise (the dispatcher turns those into handler_error).
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, ClassVar, Optional

from channels.base import DeliveryRetrier, MessagingSurface, TextTarget
from models.schemas import (
    ActionKind, ActionPayload, AllianceDeparturePayload, AllianceRoleRemovalPayload, Artifact,
    BeigeAlertPayload, DispatchOutcome, FailureReason, InactivityAlertPayload, QueueItem,
    WarAlertPayload, WarRoomCreatePayload,
)
from notifications import builders
from notifications.formatting import DEFAULT_CHUNK_LIMIT

ROLE_REMOVAL_REASON = "Nexus AMS alliance role removal"


class ActionHandler(abc.ABC):
    """Base class: shared collaborators plus channel resolution and delivery helpers."""

    kind: ClassVar[ActionKind]
    payload_model: ClassVar[type[ActionPayload]]

    def __init__(
        self,
        surface: MessagingSurface,
        retrier: DeliveryRetrier,
        guild_id: str = "",
        chunk_limit: int = DEFAULT_CHUNK_LIMIT,
        logger=None,
    ):
        self.surface = surface
        self.retrier = retrier
        self.guild_id = guild_id
        self.chunk_limit = chunk_limit
        self._log = logger or structlog.get_logger().bind(component="handler", action=self.kind.value)

    def parse(self, raw_payload: Any) -> ActionPayload:
        """Raises PayloadError when the payload does not satisfy the schema."""
        return self.payload_model.parse(raw_payload)

    @abc.abstractmethod
    async def handle(self, item: QueueItem, payload: Any) -> DispatchOutcome:
        ...

    async def _resolve_text(self, item: QueueItem, channel_id: str) -> Optional[TextTarget]:
        channel = await self.surface.resolve_channel(channel_id)
        if channel is None:
            self._log.warning("channel_unavailable", item_id=item.id, channel_id=channel_id)
        return channel

    async def _deliver(self, item: QueueItem, target: TextTarget, artifacts: list[Artifact]) -> DispatchOutcome:
        """Send artifacts in order; the first failure after retries aborts the rest."""
        try:
            for artifact in artifacts:
                await self.retrier.attempt(lambda a=artifact: target.send(a), label=f"send {self.kind.value}")
        except Exception as e:
            self._log.error("discord_send_failed", item_id=item.id, error=str(e))
            return DispatchOutcome.fail(FailureReason.DISCORD_SEND_FAILED)
        self._log.info("notification_delivered", item_id=item.id, channel_id=target.id, messages=len(artifacts))
        return DispatchOutcome.ok()


class ChannelEmbedHandler(ActionHandler):
    """Single-artifact handlers that post into a text channel named by `channel_id`."""

    @abc.abstractmethod
    def build(self, item: QueueItem, payload: Any) -> Artifact:
        ...

    async def handle(self, item: QueueItem, payload: Any) -> DispatchOutcome:
        channel = await self._resolve_text(item, payload.channel_id)
        if channel is None:
            return DispatchOutcome.fail(FailureReason.CHANNEL_UNAVAILABLE)
        return await self._deliver(item, channel, [self.build(item, payload)])


# ──────────────────────────────────────────────────────────────
#  Channel notifications
# ──────────────────────────────────────────────────────────────

class WarAlertHandler(ChannelEmbedHandler):
    kind = ActionKind.WAR_ALERT
    payload_model = WarAlertPayload

    def build(self, item: QueueItem, payload: WarAlertPayload) -> Artifact:
        return builders.build_war_alert(item, payload)


class AllianceDepartureHandler(ChannelEmbedHandler):
    kind = ActionKind.ALLIANCE_DEPARTURE
    payload_model = AllianceDeparturePayload

    def build(self, item: QueueItem, payload: AllianceDeparturePayload) -> Artifact:
        return builders.build_alliance_departure(item, payload)


class InactivityAlertHandler(ChannelEmbedHandler):
    kind = ActionKind.INACTIVITY_ALERT
    payload_model = InactivityAlertPayload

    def build(self, item: QueueItem, payload: InactivityAlertPayload) -> Artifact:
        return builders.build_inactivity_alert(item, payload)


class BeigeAlertHandler(ActionHandler):
    """List form → chunked plain-text turn summary; single form → exit embed."""

    kind = ActionKind.BEIGE_ALERT
    payload_model = BeigeAlertPayload

    async def handle(self, item: QueueItem, payload: BeigeAlertPayload) -> DispatchOutcome:
        channel = await self._resolve_text(item, payload.channel_id)
        if channel is None:
            return DispatchOutcome.fail(FailureReason.CHANNEL_UNAVAILABLE)

        if payload.nations:
            messages = builders.build_beige_turn_messages(item, payload, self.chunk_limit)
            artifacts = [Artifact.text(m) for m in messages if m.strip()]
            self._log.debug("beige_turn_summary", item_id=item.id, nations=len(payload.nations),
                            messages=len(artifacts))
            return await self._deliver(item, channel, artifacts)

        if payload.nation is not None:
            return await self._deliver(item, channel, [builders.build_beige_exit(item, payload)])

        self._log.warning("beige_payload_missing_nations", item_id=item.id)
        return DispatchOutcome.fail(FailureReason.INVALID_PAYLOAD)


# ──────────────────────────────────────────────────────────────
#  Guild operations
# ──────────────────────────────────────────────────────────────

class AllianceRoleRemovalHandler(ActionHandler):
    kind = ActionKind.ALLIANCE_ROLE_REMOVAL
    payload_model = AllianceRoleRemovalPayload

    async def handle(self, item: QueueItem, payload: AllianceRoleRemovalPayload) -> DispatchOutcome:
        guild = await self.surface.resolve_guild(self.guild_id) if self.guild_id else None
        if guild is None:
            self._log.warning("guild_unavailable", item_id=item.id, guild_id=self.guild_id)
            return DispatchOutcome.fail(FailureReason.GUILD_UNAVAILABLE)

        try:
            member = await guild.fetch_member(payload.discord_id)
        except Exception as e:
            self._log.warning("member_unavailable", item_id=item.id, discord_id=payload.discord_id, error=str(e))
            return DispatchOutcome.fail(FailureReason.MEMBER_UNAVAILABLE)

        # the default role shares the guild's id and cannot be removed
        role_ids = [role_id for role_id in member.role_ids if role_id != guild.id]
        if not role_ids:
            self._log.info("no_removable_roles", item_id=item.id, discord_id=payload.discord_id)
            return DispatchOutcome.ok()

        try:
            await self.retrier.attempt(
                lambda: member.remove_roles(role_ids, reason=ROLE_REMOVAL_REASON),
                label="remove alliance roles",
            )
        except Exception as e:
            self._log.error("role_removal_failed", item_id=item.id, discord_id=payload.discord_id, error=str(e))
            return DispatchOutcome.fail(FailureReason.ROLE_REMOVAL_FAILED)

        self._log.info("alliance_roles_removed",
                       item_id=item.id,
                       discord_id=payload.discord_id,
                       removed=len(role_ids),
                       nation_id=payload.nation_id,
                       left_at=payload.left_at)
        return DispatchOutcome.ok()


class WarRoomCreateHandler(ActionHandler):
    """Opens a forum thread with the target briefing, then posts pings and assignments."""

    kind = ActionKind.WAR_ROOM_CREATE
    payload_model = WarRoomCreatePayload

    async def handle(self, item: QueueItem, payload: WarRoomCreatePayload) -> DispatchOutcome:
        forum = await self.surface.resolve_forum(payload.forum_channel_id)
        if forum is None:
            self._log.warning("forum_unavailable", item_id=item.id, channel_id=payload.forum_channel_id)
            return DispatchOutcome.fail(FailureReason.CHANNEL_UNAVAILABLE)

        room_name = builders.build_war_room_name(payload)
        briefing = builders.build_war_room_briefing(item, payload)
        mentions = builders.build_war_room_mentions(payload.assigned_members)
        follow_ups = [
            Artifact.text(m, mention_users=True)
            for m in builders.build_war_room_mention_messages(mentions, self.chunk_limit)
        ]
        follow_ups += [
            Artifact.text(m)
            for m in builders.build_war_room_assignment_messages(payload.assigned_members, self.chunk_limit)
            if m.strip()
        ]

        try:
            thread = await self.retrier.attempt(
                lambda: forum.create_thread(room_name, briefing),
                label=f"create war room thread {room_name}",
            )
            for artifact in follow_ups:
                await self.retrier.attempt(lambda a=artifact: thread.send(a), label="send war room message")
        except Exception as e:
            self._log.error("discord_send_failed", item_id=item.id, room=room_name, error=str(e))
            return DispatchOutcome.fail(FailureReason.DISCORD_SEND_FAILED)

        self._log.info("war_room_created",
                       item_id=item.id,
                       forum_channel_id=forum.id,
                       thread_id=getattr(thread, "id", None),
                       target_nation_id=payload.target.id if payload.target else None,
                       assigned=len(payload.assigned_members))
        return DispatchOutcome.ok()


HANDLER_TYPES: tuple[type[ActionHandler], ...] = (
    WarAlertHandler,
    AllianceDepartureHandler,
    InactivityAlertHandler,
    AllianceRoleRemovalHandler,
    BeigeAlertHandler,
    WarRoomCreateHandler,
)
