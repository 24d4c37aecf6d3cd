"""Shared test fixtures for the Nexus Discord relay."""
import pytest
from typing import Any

from channels.base import DeliveryRetrier
from models.schemas import QueueItem
from tests.fakes import FakeClock, FakeSurface


# ──────────────────────────────────────────────────────────────
#  Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def retrier(sleeps) -> DeliveryRetrier:
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
    return DeliveryRetrier(max_attempts=3, sleep=fake_sleep)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def nation_snapshot() -> dict[str, Any]:
    return {
        "id": 4321,
        "nation_name": "Avalon",
        "leader_name": "Arthur",
        "alliance": {"id": 7, "name": "Round Table", "acronym": "RT"},
        "links": {
            "nation": "https://politicsandwar.com/nation/id=4321",
            "alliance": "https://politicsandwar.com/alliance/id=7",
        },
        "score": 1234.567,
        "cities": 12,
        "beige_turns": 3,
        "offensive_wars": 1,
        "defensive_wars": 2,
        "military": {"soldiers": 150000, "tanks": 12000, "aircraft": 900, "ships": 60,
                     "spies": 50, "missiles": 2, "nukes": 0},
    }


@pytest.fixture
def war_alert_item(nation_snapshot) -> QueueItem:
    return QueueItem(
        id="42",
        action="WAR_ALERT",
        payload={
            "channel_id": "100",
            "war_id": 555,
            "war_url": "https://politicsandwar.com/nation/war/timeline/war=555",
            "attacker": nation_snapshot,
            "defender": {**nation_snapshot, "nation_name": "Mercia", "leader_name": "Offa", "score": 999},
        },
        created_at="2024-05-01T12:00:00Z",
    )


@pytest.fixture
def war_room_item(nation_snapshot) -> QueueItem:
    return QueueItem(
        id="77",
        action="WAR_ROOM_CREATE",
        payload={
            "forum_channel_id": "300",
            "target": nation_snapshot,
            "source": {"type": "counter", "id": 12, "url": "https://nexus.example/counters/12"},
            "attack_type": {"key": "ground", "label": "Ground"},
            "links": {
                "target_nation": "https://politicsandwar.com/nation/id=4321",
                "declare_war": "https://politicsandwar.com/nation/war/declare/id=4321",
            },
            "assigned_members": [
                {**nation_snapshot, "nation_name": "Wessex", "discord_id": "111", "match_score": 0.92},
                {**nation_snapshot, "nation_name": "Kent", "mention": "<@222>", "match_score": 0.5},
                {**nation_snapshot, "nation_name": "Essex", "discord_id": 111},
            ],
        },
    )
