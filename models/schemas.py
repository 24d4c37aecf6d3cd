"""
Core data models for the Nexus Discord relay.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, model_validator


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ActionKind(str, Enum):
    WAR_ALERT = "WAR_ALERT"
    ALLIANCE_DEPARTURE = "ALLIANCE_DEPARTURE"
    INACTIVITY_ALERT = "INACTIVITY_ALERT"
    ALLIANCE_ROLE_REMOVAL = "ALLIANCE_ROLE_REMOVAL"
    BEIGE_ALERT = "BEIGE_ALERT"
    WAR_ROOM_CREATE = "WAR_ROOM_CREATE"


class FailureReason(str, Enum):
    # validation
    INVALID_ACTION = "invalid_action"
    UNSUPPORTED_ACTION = "unsupported_action"
    INVALID_PAYLOAD = "invalid_payload"
    MISSING_CHANNEL = "missing_channel"
    MISSING_DISCORD_ID = "missing_discord_id"
    # resolution
    CHANNEL_UNAVAILABLE = "channel_unavailable"
    GUILD_UNAVAILABLE = "guild_unavailable"
    MEMBER_UNAVAILABLE = "member_unavailable"
    # delivery
    DISCORD_SEND_FAILED = "discord_send_failed"
    ROLE_REMOVAL_FAILED = "role_removal_failed"
    # fault barrier
    HANDLER_ERROR = "handler_error"


class QueueStatus(str, Enum):
    COMPLETE = "complete"
    FAILED = "failed"


# ──────────────────────────────────────────────────────────────
#  Queue item & dispatch outcome
# ──────────────────────────────────────────────────────────────

def _coerce_identifier(value: Any) -> Any:
    """Snowflakes and queue ids arrive as ints or strings; blank means absent."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


Identifier = Annotated[str, BeforeValidator(_coerce_identifier)]


class QueueItem(BaseModel):
    """One unit of work fetched from the producer queue. Never mutated."""
    model_config = ConfigDict(frozen=True, extra="allow")

    id: Optional[str] = None
    action: Any = None                       # validated by the dispatcher, not here
    payload: Any = None
    created_at: Any = None                   # parsed leniently at render time

    @model_validator(mode="before")
    @classmethod
    def _normalize_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("id") is not None:
            raw_id = data["id"]
            if isinstance(raw_id, bool):
                data = {**data, "id": None}
            elif isinstance(raw_id, (int, float)):
                data = {**data, "id": str(raw_id)}
            elif isinstance(raw_id, str) and not raw_id.strip():
                data = {**data, "id": None}
        return data

    @classmethod
    def from_raw(cls, raw: Any) -> Optional[QueueItem]:
        """Build an item from an API record; returns None for records that are not objects."""
        if not isinstance(raw, dict):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return None


class DispatchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    reason: Optional[FailureReason] = None

    @classmethod
    def ok(cls) -> DispatchOutcome:
        return cls(success=True)

    @classmethod
    def fail(cls, reason: FailureReason) -> DispatchOutcome:
        return cls(success=False, reason=reason)

    @property
    def status(self) -> QueueStatus:
        return QueueStatus.COMPLETE if self.success else QueueStatus.FAILED


# ──────────────────────────────────────────────────────────────
#  Payload schemas
# ──────────────────────────────────────────────────────────────

class PayloadError(Exception):
    """Raised when an action payload does not satisfy its schema."""

    def __init__(self, reason: FailureReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(detail or reason.value)


class PayloadModel(BaseModel):
    """Base for payload fragments: unknown keys are kept, values are read-only."""
    model_config = ConfigDict(frozen=True, extra="allow")


class ActionPayload(PayloadModel):
    """
    Base for top-level action payloads.

    `missing_reasons` maps a required field to the failure reason reported
    when it is absent or blank; any other schema violation is `invalid_payload`.
    """
    missing_reasons: ClassVar[dict[str, FailureReason]] = {}

    @classmethod
    def parse(cls, raw: Any):
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise PayloadError(FailureReason.INVALID_PAYLOAD, "payload is not an object")
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            for error in e.errors():
                loc = error.get("loc") or ()
                if loc and loc[0] in cls.missing_reasons:
                    raise PayloadError(cls.missing_reasons[loc[0]], f"{loc[0]}: {error.get('msg')}") from e
            raise PayloadError(FailureReason.INVALID_PAYLOAD, str(e)) from e


# Numeric snapshot values are rendered leniently; anything non-numeric becomes a placeholder.
Number = Any


class AllianceRef(PayloadModel):
    id: Any = None
    name: Optional[str] = None
    acronym: Optional[str] = None
    link: Optional[str] = None
    url: Optional[str] = None


class NationLinks(PayloadModel):
    nation: Optional[str] = None
    alliance: Optional[str] = None


class Military(PayloadModel):
    soldiers: Number = None
    tanks: Number = None
    aircraft: Number = None
    ships: Number = None
    spies: Number = None
    missiles: Number = None
    nukes: Number = None


class NationSnapshot(PayloadModel):
    id: Any = None
    nation_name: Optional[str] = None
    leader_name: Optional[str] = None
    alliance: Optional[AllianceRef] = None
    links: Optional[NationLinks] = None
    score: Number = None
    cities: Number = None
    beige_turns: Number = None
    offensive_wars: Number = None
    defensive_wars: Number = None
    military: Optional[Military] = None


class AssignedMember(NationSnapshot):
    discord_id: Optional[Union[str, int]] = None
    mention: Optional[str] = None
    match_score: Number = None


class CounterRef(PayloadModel):
    id: Any = None
    url: Optional[str] = None


class SourceRef(PayloadModel):
    type: Optional[str] = None
    id: Any = None
    url: Optional[str] = None


class AttackType(PayloadModel):
    key: Optional[str] = None
    label: Optional[str] = None


class WarRoomLinks(PayloadModel):
    target_nation: Optional[str] = None
    declare_war: Optional[str] = None
    war_simulators: Optional[str] = None


class WarAlertPayload(ActionPayload):
    missing_reasons: ClassVar[dict[str, FailureReason]] = {"channel_id": FailureReason.MISSING_CHANNEL}

    channel_id: Identifier
    war_id: Any = None
    war_url: Optional[str] = None
    counter: Optional[CounterRef] = None
    attacker: Optional[NationSnapshot] = None
    defender: Optional[NationSnapshot] = None


class AllianceDeparturePayload(ActionPayload):
    missing_reasons: ClassVar[dict[str, FailureReason]] = {"channel_id": FailureReason.MISSING_CHANNEL}

    channel_id: Identifier
    nation: Optional[NationSnapshot] = None
    previous_alliance: Optional[AllianceRef] = None
    new_alliance: Optional[AllianceRef] = None
    left_at: Any = None


class InactivityAlertPayload(ActionPayload):
    missing_reasons: ClassVar[dict[str, FailureReason]] = {"channel_id": FailureReason.MISSING_CHANNEL}

    channel_id: Identifier
    discord_user_id: Optional[Identifier] = None
    nation_id: Any = None
    nation_name: Optional[str] = None
    leader_name: Optional[str] = None
    last_active_at: Any = None
    threshold_hours: Any = None
    message: Optional[str] = None


class AllianceRoleRemovalPayload(ActionPayload):
    missing_reasons: ClassVar[dict[str, FailureReason]] = {"discord_id": FailureReason.MISSING_DISCORD_ID}

    discord_id: Identifier
    nation_id: Any = None
    left_at: Any = None


class BeigeAlertPayload(ActionPayload):
    missing_reasons: ClassVar[dict[str, FailureReason]] = {"channel_id": FailureReason.MISSING_CHANNEL}

    channel_id: Identifier
    nations: Optional[list[NationSnapshot]] = None
    nation: Optional[NationSnapshot] = None
    event_type: Optional[str] = None
    window: Optional[str] = None
    nation_count: Number = None
    turn_change_at: Any = None
    detected_at: Any = None
    previous_beige_turns: Number = None

    @model_validator(mode="before")
    @classmethod
    def _blank_nation_entries(cls, data: Any) -> Any:
        # non-object entries render as "Unknown nation" instead of failing the batch
        if isinstance(data, dict) and isinstance(data.get("nations"), list):
            data = {**data, "nations": [n if isinstance(n, dict) else {} for n in data["nations"]]}
        return data


class WarRoomCreatePayload(ActionPayload):
    missing_reasons: ClassVar[dict[str, FailureReason]] = {"forum_channel_id": FailureReason.MISSING_CHANNEL}

    forum_channel_id: Identifier
    target: Optional[NationSnapshot] = None
    assigned_members: list[AssignedMember] = Field(default_factory=list)
    room_name_suggestion: Optional[str] = None
    source: Optional[SourceRef] = None
    attack_type: Optional[AttackType] = None
    links: Optional[WarRoomLinks] = None

    @model_validator(mode="before")
    @classmethod
    def _fallback_channel(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("forum_channel_id") and data.get("channel_id"):
            data = {**data, "forum_channel_id": data["channel_id"]}
        if isinstance(data, dict) and data.get("assigned_members") is None:
            data = {**data, "assigned_members": []}
        return data


# ──────────────────────────────────────────────────────────────
#  Notification artifacts, rendered by the surface adapter at send time
# ──────────────────────────────────────────────────────────────

class EmbedField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    inline: bool = False


class Embed(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    color: int
    description: str = ""
    url: Optional[str] = None
    fields: tuple[EmbedField, ...] = ()
    timestamp: Optional[datetime] = None
    footer: Optional[str] = None


class Artifact(BaseModel):
    """A platform-agnostic message: optional text plus zero or more embeds."""
    model_config = ConfigDict(frozen=True)

    content: Optional[str] = None
    embeds: tuple[Embed, ...] = ()
    mention_users: bool = False

    @classmethod
    def text(cls, content: str, mention_users: bool = False) -> Artifact:
        return cls(content=content, mention_users=mention_users)

    @classmethod
    def embed(cls, embed: Embed, content: Optional[str] = None) -> Artifact:
        return cls(content=content, embeds=(embed,))
