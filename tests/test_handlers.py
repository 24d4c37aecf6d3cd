"""
Tests — Action handlers: resolution, delivery, guild and forum operations.

Run:
  pytest tests/test_handlers.py -v
"""
import pytest

from core.handlers import (
    ROLE_REMOVAL_REASON, AllianceDepartureHandler, AllianceRoleRemovalHandler, BeigeAlertHandler,
    InactivityAlertHandler, WarAlertHandler, WarRoomCreateHandler,
)
from models.schemas import DispatchOutcome, FailureReason, QueueItem
from notifications import builders
from tests.fakes import FakeGuild, FakeMember, RateLimitSignal


async def _run(handler, item):
    return await handler.handle(item, handler.parse(item.payload))


# ══════════════════════════════════════════════════════════════
#  CHANNEL NOTIFICATIONS
# ══════════════════════════════════════════════════════════════

class TestChannelHandlers:

    @pytest.mark.asyncio
    async def test_war_alert_delivered(self, surface, retrier, war_alert_item):
        channel = surface.add_channel("100")
        outcome = await _run(WarAlertHandler(surface, retrier), war_alert_item)

        assert outcome == DispatchOutcome.ok()
        assert channel.sent[0].embeds[0].title == "⚔️ War Alert #555"

    @pytest.mark.asyncio
    async def test_unresolvable_channel(self, surface, retrier, war_alert_item):
        outcome = await _run(WarAlertHandler(surface, retrier), war_alert_item)
        assert outcome == DispatchOutcome.fail(FailureReason.CHANNEL_UNAVAILABLE)

    @pytest.mark.asyncio
    async def test_rate_limited_send_is_retried(self, surface, retrier, sleeps, war_alert_item):
        channel = surface.add_channel("100", errors=[RateLimitSignal(2)])
        outcome = await _run(WarAlertHandler(surface, retrier), war_alert_item)

        assert outcome.success is True
        assert channel.calls == 2
        assert sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_send_failure(self, surface, retrier, war_alert_item):
        channel = surface.add_channel("100", errors=[PermissionError("Missing Permissions")])
        outcome = await _run(WarAlertHandler(surface, retrier), war_alert_item)

        assert outcome == DispatchOutcome.fail(FailureReason.DISCORD_SEND_FAILED)
        assert channel.calls == 1

    @pytest.mark.asyncio
    async def test_alliance_departure(self, surface, retrier, nation_snapshot):
        channel = surface.add_channel("100")
        item = QueueItem(id="2", action="ALLIANCE_DEPARTURE",
                         payload={"channel_id": 100, "nation": nation_snapshot})

        outcome = await _run(AllianceDepartureHandler(surface, retrier), item)

        assert outcome.success is True
        assert channel.sent[0].embeds[0].title == "🏳️ Alliance Departure"

    @pytest.mark.asyncio
    async def test_inactivity_alert_mentions(self, surface, retrier):
        channel = surface.add_channel("100")
        item = QueueItem(id="3", action="INACTIVITY_ALERT",
                         payload={"channel_id": "100", "discord_user_id": "555"})

        outcome = await _run(InactivityAlertHandler(surface, retrier), item)

        assert outcome.success is True
        assert channel.sent[0].content == "<@555>"
        assert channel.sent[0].mention_users is True


# ══════════════════════════════════════════════════════════════
#  BEIGE
# ══════════════════════════════════════════════════════════════

class TestBeigeHandler:

    @pytest.mark.asyncio
    async def test_list_form_sends_chunks_in_order(self, surface, retrier, nation_snapshot):
        channel = surface.add_channel("100")
        item = QueueItem(id="4", action="BEIGE_ALERT",
                         payload={"channel_id": "100", "nations": [nation_snapshot] * 30})

        outcome = await _run(BeigeAlertHandler(surface, retrier, chunk_limit=600), item)

        assert outcome.success is True
        assert len(channel.sent) > 1
        assert all(a.embeds == () and len(a.content) <= 600 for a in channel.sent)
        assert channel.sent[0].content.startswith("🟨 **Beige Watch**")
        assert "30. [Avalon]" in channel.sent[-1].content

    @pytest.mark.asyncio
    async def test_single_form_sends_exit_embed(self, surface, retrier, nation_snapshot):
        channel = surface.add_channel("100")
        item = QueueItem(id="5", action="BEIGE_ALERT",
                         payload={"channel_id": "100", "nation": nation_snapshot})

        outcome = await _run(BeigeAlertHandler(surface, retrier), item)

        assert outcome.success is True
        assert channel.sent[0].embeds[0].title == "🟨 Beige Exit Alert"

    @pytest.mark.asyncio
    async def test_neither_form_is_invalid(self, surface, retrier):
        channel = surface.add_channel("100")
        item = QueueItem(id="6", action="BEIGE_ALERT", payload={"channel_id": "100", "nations": []})

        outcome = await _run(BeigeAlertHandler(surface, retrier), item)

        assert outcome == DispatchOutcome.fail(FailureReason.INVALID_PAYLOAD)
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_chunk_failure_stops_remaining(self, surface, retrier, nation_snapshot):
        channel = surface.add_channel("100", errors=[RuntimeError("boom")])
        item = QueueItem(id="7", action="BEIGE_ALERT",
                         payload={"channel_id": "100", "nations": [nation_snapshot] * 30})

        outcome = await _run(BeigeAlertHandler(surface, retrier, chunk_limit=600), item)

        assert outcome.reason == FailureReason.DISCORD_SEND_FAILED
        assert channel.calls == 1


# ══════════════════════════════════════════════════════════════
#  ROLE REMOVAL
# ══════════════════════════════════════════════════════════════

class TestRoleRemoval:

    @pytest.fixture
    def item(self):
        return QueueItem(id="8", action="ALLIANCE_ROLE_REMOVAL", payload={"discord_id": "111", "nation_id": 4321})

    @pytest.mark.asyncio
    async def test_removes_all_but_default_role(self, surface, retrier, item):
        member = FakeMember("111", role_ids=["999", "10", "20"])
        surface.add_guild(FakeGuild("999", members={"111": member}))

        outcome = await _run(AllianceRoleRemovalHandler(surface, retrier, guild_id="999"), item)

        assert outcome.success is True
        assert member.removed == [(["10", "20"], ROLE_REMOVAL_REASON)]

    @pytest.mark.asyncio
    async def test_no_roles_is_noop_success(self, surface, retrier, item):
        member = FakeMember("111", role_ids=["999"])
        surface.add_guild(FakeGuild("999", members={"111": member}))

        outcome = await _run(AllianceRoleRemovalHandler(surface, retrier, guild_id="999"), item)

        assert outcome.success is True
        assert member.removed == []

    @pytest.mark.asyncio
    async def test_guild_unavailable(self, surface, retrier, item):
        outcome = await _run(AllianceRoleRemovalHandler(surface, retrier, guild_id="999"), item)
        assert outcome.reason == FailureReason.GUILD_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_no_guild_configured(self, surface, retrier, item):
        surface.add_guild(FakeGuild("999"))
        outcome = await _run(AllianceRoleRemovalHandler(surface, retrier), item)
        assert outcome.reason == FailureReason.GUILD_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_member_unavailable(self, surface, retrier, item):
        surface.add_guild(FakeGuild("999"))
        outcome = await _run(AllianceRoleRemovalHandler(surface, retrier, guild_id="999"), item)
        assert outcome.reason == FailureReason.MEMBER_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_removal_failure(self, surface, retrier, item):
        member = FakeMember("111", role_ids=["10"], error=PermissionError("Missing Permissions"))
        surface.add_guild(FakeGuild("999", members={"111": member}))

        outcome = await _run(AllianceRoleRemovalHandler(surface, retrier, guild_id="999"), item)

        assert outcome == DispatchOutcome.fail(FailureReason.ROLE_REMOVAL_FAILED)


# ══════════════════════════════════════════════════════════════
#  WAR ROOM
# ══════════════════════════════════════════════════════════════

class TestWarRoom:

    @pytest.mark.asyncio
    async def test_creates_thread_then_posts_pings_and_assignments(self, surface, retrier, war_room_item):
        forum = surface.add_forum("300")

        outcome = await _run(WarRoomCreateHandler(surface, retrier), war_room_item)

        assert outcome.success is True
        name, briefing, thread = forum.threads[0]
        assert name == "counter-12-arthur"
        assert briefing.content == builders.WAR_ROOM_STARTER
        assert briefing.embeds[0].title == "⚔️ Target Brief: Arthur"

        mentions, assignments = thread.sent
        assert mentions.content == f"{builders.MENTIONS_HEADER}\n<@111> <@222>"
        assert mentions.mention_users is True
        assert assignments.content.startswith(builders.ASSIGNMENTS_HEADER)
        assert assignments.mention_users is False

    @pytest.mark.asyncio
    async def test_falls_back_to_channel_id(self, surface, retrier):
        forum = surface.add_forum("300")
        item = QueueItem(id="9", action="WAR_ROOM_CREATE", payload={"channel_id": "300"})

        outcome = await _run(WarRoomCreateHandler(surface, retrier), item)

        assert outcome.success is True
        assert len(forum.threads) == 1

    @pytest.mark.asyncio
    async def test_forum_unavailable(self, surface, retrier, war_room_item):
        surface.add_channel("300")
        outcome = await _run(WarRoomCreateHandler(surface, retrier), war_room_item)
        assert outcome.reason == FailureReason.CHANNEL_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_thread_creation_rate_limit_retried(self, surface, retrier, sleeps, war_room_item):
        forum = surface.add_forum("300", errors=[RateLimitSignal(1.5)])

        outcome = await _run(WarRoomCreateHandler(surface, retrier), war_room_item)

        assert outcome.success is True
        assert sleeps == [1.5]
        assert len(forum.threads) == 1

    @pytest.mark.asyncio
    async def test_thread_creation_failure(self, surface, retrier, war_room_item):
        surface.add_forum("300", errors=[RuntimeError("Forum requires tags")])
        outcome = await _run(WarRoomCreateHandler(surface, retrier), war_room_item)
        assert outcome == DispatchOutcome.fail(FailureReason.DISCORD_SEND_FAILED)
