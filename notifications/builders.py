"""
Notification builders — turn one action payload into a renderable Artifact.

Every builder is a pure function of (item, payload[, now]). Nothing here
touches the network; the surface adapter renders the result at send time.
"""
from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Optional

from models.schemas import (
    AllianceDeparturePayload, AllianceRef, Artifact, AssignedMember, BeigeAlertPayload,
    Embed, EmbedField, InactivityAlertPayload, Military, NationSnapshot, QueueItem,
    WarAlertPayload, WarRoomCreatePayload,
)
from notifications.formatting import (
    DEFAULT_CHUNK_LIMIT, absolute_and_relative, chunk_message, declare_war_url,
    discord_time, extract_threshold, format_number, link, parse_date,
)

WAR_ALERT_COLOR = 0xD64045
ALLIANCE_DEPARTURE_COLOR = 0xF59F00
INACTIVITY_COLOR = 0xE67700
BEIGE_EXIT_COLOR = 0xD4B06A
WAR_ROOM_COLOR = 0xB02E26

WAR_ROOM_STARTER = "## War Room Opened\nTarget briefing below. Assignments and pings follow."
MENTIONS_HEADER = "### Assigned Friendlies"
ASSIGNMENTS_HEADER = "### Friendly Assignments"
MAX_THREAD_NAME = 100

MILITARY_UNITS: tuple[tuple[str, str, str], ...] = (
    ("soldiers", "🪖", "Soldiers"),
    ("tanks", "🛡️", "Tanks"),
    ("aircraft", "✈️", "Aircraft"),
    ("ships", "🚢", "Ships"),
    ("spies", "🕵️", "Spies"),
    ("missiles", "🎯", "Missiles"),
    ("nukes", "☢️", "Nukes"),
)

BEIGE_EVENT_LABELS = {
    "upcoming_turn_exit": "Expected exits this turn",
    "turn_exit": "Exited this turn",
    "early_exit": "Early beige exits",
}
BEIGE_WINDOW_LABELS = {
    "pre_turn": "Pre-turn beige status",
    "post_turn": "Post-turn beige status",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _created_at(item: QueueItem) -> Optional[datetime]:
    return parse_date(item.created_at)


# ──────────────────────────────────────────────────────────────
#  Shared fragments
# ──────────────────────────────────────────────────────────────

def format_military(military: Optional[Military]) -> str:
    military = military or Military()
    return " • ".join(
        f"{emoji} {label}: {format_number(getattr(military, key))}"
        for key, emoji, label in MILITARY_UNITS
    )


def format_military_multiline(military: Optional[Military]) -> str:
    military = military or Military()
    return "\n".join(
        f"{emoji} {label}: {format_number(getattr(military, key))}"
        for key, emoji, label in MILITARY_UNITS
    )


def format_military_compact(military: Optional[Military]) -> str:
    military = military or Military()
    return " • ".join(
        f"{emoji} {format_number(getattr(military, key))}" for key, emoji, _ in MILITARY_UNITS
    )


def format_alliance(alliance: Optional[AllianceRef]) -> Optional[str]:
    if alliance is None:
        return None
    return link(alliance.name or "Unknown alliance", alliance.link)


def format_nation_alliance(nation: NationSnapshot) -> str:
    name = nation.alliance.name if nation.alliance and nation.alliance.name else "No alliance"
    return link(name, nation.links.alliance if nation.links else None)


def format_participant(side: Optional[NationSnapshot], emoji: str) -> str:
    side = side or NationSnapshot()
    links = side.links
    leader = side.leader_name or "Unknown leader"
    nation = side.nation_name or "Unknown nation"

    alliance_name = side.alliance.name if side.alliance else None
    alliance_link = (links.alliance if links else None) or (side.alliance.url if side.alliance else None)
    if alliance_name and alliance_link:
        alliance = f"[{alliance_name}]({alliance_link})"
    else:
        alliance = alliance_name or "—"

    link_parts = []
    if links and links.nation:
        link_parts.append(f"[Nation]({links.nation})")
    if links and links.alliance:
        link_parts.append(f"[Alliance]({links.alliance})")
    link_line = f"🔗 {' • '.join(link_parts)}" if link_parts else "🔗 No links provided"

    return f"{emoji} **{nation}** ({leader})\nAlliance: {alliance}\n{link_line}"


def member_mention(member: AssignedMember) -> Optional[str]:
    if member.mention:
        return member.mention
    if member.discord_id is not None and str(member.discord_id).strip():
        return f"<@{str(member.discord_id).strip()}>"
    return None


# ──────────────────────────────────────────────────────────────
#  WAR_ALERT
# ──────────────────────────────────────────────────────────────

def build_war_alert(item: QueueItem, payload: WarAlertPayload) -> Artifact:
    attacker = payload.attacker or NationSnapshot()
    defender = payload.defender or NationSnapshot()

    description = []
    if payload.war_url:
        description.append(f"➡️ [War Timeline]({payload.war_url})")
    if payload.counter and payload.counter.url:
        label = f"Counter #{payload.counter.id}" if payload.counter.id else "Counter"
        description.append(f"🧭 [{label}]({payload.counter.url})")

    title = f"⚔️ War Alert #{payload.war_id}" if payload.war_id else "⚔️ War Alert"
    embed = Embed(
        title=title,
        url=payload.war_url or None,
        color=WAR_ALERT_COLOR,
        description="\n".join(description) or "A new war alert was received.",
        fields=(
            EmbedField(name="Attacker", value=format_participant(attacker, "🔥"), inline=True),
            EmbedField(name="Defender", value=format_participant(defender, "🛡️"), inline=True),
            EmbedField(
                name="Scores",
                value=f"{format_number(attacker.score)} vs {format_number(defender.score)}",
                inline=True,
            ),
            EmbedField(
                name="Cities",
                value=f"{format_number(attacker.cities)} vs {format_number(defender.cities)}",
                inline=True,
            ),
            EmbedField(name="Attacker Military", value=format_military(attacker.military)),
            EmbedField(name="Defender Military", value=format_military(defender.military)),
        ),
        timestamp=_created_at(item) or _now(),
    )
    return Artifact.embed(embed)


# ──────────────────────────────────────────────────────────────
#  ALLIANCE_DEPARTURE
# ──────────────────────────────────────────────────────────────

def build_alliance_departure(item: QueueItem, payload: AllianceDeparturePayload) -> Artifact:
    nation = payload.nation or NationSnapshot()
    nation_url = nation.links.nation if nation.links else None
    left_at = parse_date(payload.left_at)
    created_at = _created_at(item) or _now()

    previous = format_alliance(payload.previous_alliance)
    new = format_alliance(payload.new_alliance)

    lines = [
        f"{nation.leader_name or 'A nation'} ({nation.nation_name or 'Unknown nation'}) "
        f"has left {previous or 'an alliance'}."
    ]
    lines.append(f"New allegiance: {new}." if new else "They are currently unaffiliated.")
    if nation_url:
        lines.append(f"🔗 [Nation Profile]({nation_url})")

    timing = absolute_and_relative(left_at) if left_at else discord_time(created_at, "R")

    embed = Embed(
        title="🏳️ Alliance Departure",
        url=nation_url,
        color=ALLIANCE_DEPARTURE_COLOR,
        description="\n".join(lines),
        fields=(
            EmbedField(name="Previous Alliance", value=previous or "Unknown", inline=True),
            EmbedField(name="New Alliance", value=new or "Unaffiliated", inline=True),
            EmbedField(name="Timing", value=timing),
        ),
        timestamp=left_at or created_at,
    )
    return Artifact.embed(embed)


# ──────────────────────────────────────────────────────────────
#  INACTIVITY_ALERT
# ──────────────────────────────────────────────────────────────

def build_inactivity_alert(item: QueueItem, payload: InactivityAlertPayload) -> Artifact:
    leader = payload.leader_name or "Unknown leader"
    nation_name = payload.nation_name or "Unknown nation"
    nation_id = f", #{payload.nation_id}" if payload.nation_id else ""
    last_active = parse_date(payload.last_active_at)
    threshold = payload.threshold_hours or extract_threshold(payload.message)

    fields = [EmbedField(name="Last Active", value=absolute_and_relative(last_active))]
    if threshold:
        fields.append(EmbedField(name="Threshold", value=f"{threshold}h", inline=True))

    embed = Embed(
        title="⏰ Inactivity Alert",
        color=INACTIVITY_COLOR,
        description=f"**{leader}** ({nation_name}{nation_id}) has exceeded inactivity limits.",
        fields=tuple(fields),
        timestamp=last_active or _created_at(item) or _now(),
    )
    mention = f"<@{payload.discord_user_id}>" if payload.discord_user_id else None
    return Artifact(content=mention, embeds=(embed,), mention_users=mention is not None)


# ──────────────────────────────────────────────────────────────
#  BEIGE_ALERT
# ──────────────────────────────────────────────────────────────

def describe_beige_event(event_type: Optional[str], window: Optional[str]) -> str:
    if event_type in BEIGE_EVENT_LABELS:
        return BEIGE_EVENT_LABELS[event_type]
    if window in BEIGE_WINDOW_LABELS:
        return BEIGE_WINDOW_LABELS[window]
    return "Beige status update"


def format_beige_line(index: int, nation: NationSnapshot) -> str:
    links = nation.links
    nation_label = link(nation.nation_name or "Unknown nation", links.nation if links else None)
    alliance_name = nation.alliance.name if nation.alliance and nation.alliance.name else "No alliance"
    alliance_label = link(alliance_name, links.alliance if links else None)
    war_url = declare_war_url(nation.id)
    declare = f"[Declare War]({war_url})" if war_url else "Declare War: —"

    return (
        f"{index}. {nation_label} ({nation.leader_name or 'Unknown leader'}) | {alliance_label} | {declare}"
        f" | Score: {format_number(nation.score)} | Cities: {format_number(nation.cities)}"
        f" | Beige: {format_number(nation.beige_turns)} | Mil: {format_military_compact(nation.military)}"
    )


def build_beige_turn_messages(
    item: QueueItem,
    payload: BeigeAlertPayload,
    chunk_limit: int = DEFAULT_CHUNK_LIMIT,
) -> list[str]:
    nations = payload.nations or []
    turn_time = parse_date(payload.turn_change_at)
    created_at = _created_at(item)
    count = payload.nation_count if payload.nation_count is not None else len(nations)

    header = [
        "🟨 **Beige Watch**",
        describe_beige_event(payload.event_type, payload.window),
        f"Nations: **{format_number(count)}**",
    ]
    if turn_time:
        header.append(f"Turn: {absolute_and_relative(turn_time)}")
    elif created_at:
        header.append(f"Updated: {discord_time(created_at, 'R')}")

    lines = [" | ".join(header)]
    lines.extend(format_beige_line(i, nation) for i, nation in enumerate(nations, start=1))
    return chunk_message("\n".join(lines), chunk_limit)


def build_beige_exit(item: QueueItem, payload: BeigeAlertPayload) -> Artifact:
    nation = payload.nation or NationSnapshot()
    nation_url = nation.links.nation if nation.links else None
    detected_at = parse_date(payload.detected_at) or _created_at(item) or _now()
    nation_label = nation.nation_name or "Unknown nation"
    leader = nation.leader_name or "Unknown leader"
    war_url = declare_war_url(nation.id)
    previous_turns = payload.previous_beige_turns if payload.previous_beige_turns is not None else 0

    embed = Embed(
        title="🟨 Beige Exit Alert",
        url=nation_url,
        color=BEIGE_EXIT_COLOR,
        description=f"**{leader}** of **{nation_label}** is no longer beige.",
        fields=(
            EmbedField(name="Nation", value=f"{link(nation_label, nation_url)}\nLeader: {leader}", inline=True),
            EmbedField(name="Alliance", value=format_nation_alliance(nation), inline=True),
            EmbedField(
                name="Stats",
                value=(
                    f"Score: {format_number(nation.score)}\n"
                    f"Cities: {format_number(nation.cities)}\n"
                    f"Previous Beige Turns: {format_number(previous_turns)}"
                ),
                inline=True,
            ),
            EmbedField(name="Military Snapshot", value=format_military_multiline(nation.military)),
            EmbedField(name="Detected", value=absolute_and_relative(detected_at)),
            EmbedField(
                name="War Link",
                value=f"⚔️ {link('Open Declare War Page', war_url) if war_url else 'Unavailable'}",
            ),
        ),
        timestamp=detected_at,
        footer=f"Event: {payload.event_type or 'beige_exit'}",
    )
    return Artifact.embed(embed)


# ──────────────────────────────────────────────────────────────
#  WAR_ROOM_CREATE
# ──────────────────────────────────────────────────────────────

def build_war_room_name(payload: WarRoomCreatePayload, now_ms: Optional[int] = None) -> str:
    target = payload.target or NationSnapshot()
    source = payload.source
    if payload.room_name_suggestion is not None:
        base = payload.room_name_suggestion
    else:
        source_type = (source.type if source else None) or "war"
        source_id = source.id if source and source.id is not None else "target"
        who = target.leader_name or (target.id if target.id is not None else "room")
        base = f"{source_type}-{source_id}-{who}"

    slug = re.sub(r"[^a-z0-9\-_ ]", "", base.lower()).strip()
    slug = re.sub(r"-+", "-", re.sub(r"\s+", "-", slug))
    if not slug:
        slug = f"war-room-{now_ms if now_ms is not None else int(time.time() * 1000)}"
    return slug[:MAX_THREAD_NAME]


def build_war_room_mentions(members: list[AssignedMember]) -> list[str]:
    unique: list[str] = []
    for member in members:
        mention = member_mention(member)
        if mention and mention not in unique:
            unique.append(mention)
    return unique


def build_war_room_mention_messages(mentions: list[str], chunk_limit: int = DEFAULT_CHUNK_LIMIT) -> list[str]:
    if not mentions:
        return [f"{MENTIONS_HEADER}\nNo Discord mentions available for this target."]

    messages = []
    current = f"{MENTIONS_HEADER}\n"
    for mention in mentions:
        token = f"{mention} "
        if len(current + token) <= chunk_limit:
            current += token
            continue
        messages.append(current.rstrip())
        current = f"{MENTIONS_HEADER}\n{token}"

    if current.strip():
        messages.append(current.rstrip())
    return messages


def build_war_room_assignment_messages(
    members: list[AssignedMember],
    chunk_limit: int = DEFAULT_CHUNK_LIMIT,
) -> list[str]:
    if not members:
        return ["No assigned friendly nations were provided for this target."]

    lines = [ASSIGNMENTS_HEADER]
    for index, member in enumerate(members, start=1):
        nation_url = member.links.nation if member.links else None
        nation_label = link(member.nation_name or "Unknown nation", nation_url)
        lines.append(
            f"{index}. {member_mention(member) or 'No Discord link'} | {nation_label} "
            f"({member.leader_name or 'Unknown leader'}) | Match: {format_number(member.match_score)}"
            f" | Score: {format_number(member.score)} | Cities: {format_number(member.cities)}"
            f" | Wars O/D: {format_number(member.offensive_wars)}/{format_number(member.defensive_wars)}"
        )
    return chunk_message("\n".join(lines), chunk_limit)


def build_war_room_briefing(item: QueueItem, payload: WarRoomCreatePayload) -> Artifact:
    target = payload.target or NationSnapshot()
    links = payload.links
    source = payload.source
    attack = payload.attack_type
    attack_type = (attack.label or attack.key if attack else None) or "Unspecified"

    source_type = (source.type if source else None) or "war_plan"
    source_label = f"{source_type} #{source.id}" if source and source.id else source_type
    source_link = link(source_label, source.url if source else None)
    target_name = target.nation_name or "Unknown nation"
    target_leader = target.leader_name or "Unknown leader"
    target_url = links.target_nation if links else None

    objectives = []
    if links and links.declare_war:
        objectives.append(f"⚔️ [Declare War]({links.declare_war})")
    if links and links.war_simulators:
        objectives.append(f"🧪 [War Simulators]({links.war_simulators})")
    if source and source.url:
        objectives.append(f"🧭 [Source Plan]({source.url})")

    description = [
        f"**Target:** {link(target_name, target_url)} ({target_leader})",
        f"**Attack Type:** {attack_type}",
        f"**Source:** {source_link}",
    ]
    if objectives:
        description.append(f"\n{' • '.join(objectives)}")

    alliance = target.alliance
    alliance_label = (alliance.name if alliance and alliance.name else "No alliance")
    if alliance and alliance.acronym:
        alliance_label += f" ({alliance.acronym})"

    embed = Embed(
        title=f"⚔️ Target Brief: {target_leader}",
        url=target_url,
        color=WAR_ROOM_COLOR,
        description="\n".join(description),
        fields=(
            EmbedField(name="Alliance", value=alliance_label, inline=True),
            EmbedField(
                name="Score / Cities",
                value=f"{format_number(target.score)} / {format_number(target.cities)}",
                inline=True,
            ),
            EmbedField(
                name="War Loadout",
                value=(
                    f"Off: {format_number(target.offensive_wars)} | Def: {format_number(target.defensive_wars)}"
                    f" | Beige Turns: {format_number(target.beige_turns)}"
                ),
                inline=True,
            ),
            EmbedField(name="Military Snapshot", value=format_military_multiline(target.military)),
        ),
        timestamp=_created_at(item) or _now(),
        footer="Nexus AMS War Room",
    )
    return Artifact.embed(embed, content=WAR_ROOM_STARTER)
