"""
Per-community moderation policy and the escalation ladder.

The ladder maps "warnings beyond the threshold" to a punishment. Tier 1 is
the first entry; any tier past the end reuses the last (harshest) entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Sequence

from modwarden.datatypes.discord_datatypes import GuildID
from modwarden.datatypes.infraction_datatypes import InfractionKind
from modwarden.errors import ValidationError

# Kinds a ladder tier may dispatch
TIER_KINDS = frozenset({InfractionKind.MUTE, InfractionKind.BAN, InfractionKind.KICK})


@dataclass(frozen=True, slots=True)
class PunishmentTier:
    """One rung of the escalation ladder.

    Attributes:
        kind: MUTE, BAN or KICK.
        duration: Length of a mute; ``None`` means permanent. Unused otherwise.
        appealable: Whether the resulting infraction may be appealed.
    """

    kind: InfractionKind
    duration: Optional[timedelta] = None
    appealable: bool = True

    def __post_init__(self) -> None:
        if self.kind not in TIER_KINDS:
            raise ValidationError(f"{self.kind} cannot be used as an escalation tier.")
        if self.duration is not None and self.kind is not InfractionKind.MUTE:
            raise ValidationError("Only mute tiers may carry a duration.")
        if self.duration is not None and self.duration <= timedelta(0):
            raise ValidationError("Mute tier durations must be positive.")

    @classmethod
    def mute(cls, duration: Optional[timedelta] = None, *, appealable: bool = True) -> "PunishmentTier":
        return cls(InfractionKind.MUTE, duration, appealable)

    @classmethod
    def ban(cls, *, appealable: bool = True) -> "PunishmentTier":
        return cls(InfractionKind.BAN, None, appealable)

    @classmethod
    def kick(cls) -> "PunishmentTier":
        return cls(InfractionKind.KICK)

    def describe(self) -> str:
        if self.kind is InfractionKind.MUTE:
            if self.duration is None:
                return "permanent mute"
            hours = self.duration.total_seconds() / 3600
            return f"{hours:g}h mute"
        if self.kind is InfractionKind.BAN:
            return "ban" if self.appealable else "ban (not appealable)"
        return "kick"


@dataclass(frozen=True, slots=True)
class EscalationLadder:
    """Ordered, non-empty sequence of punishment tiers."""

    tiers: tuple[PunishmentTier, ...]

    def __post_init__(self) -> None:
        if not self.tiers:
            raise ValidationError("An escalation ladder needs at least one tier.")

    @classmethod
    def of(cls, tiers: Sequence[PunishmentTier]) -> "EscalationLadder":
        return cls(tuple(tiers))

    def __len__(self) -> int:
        return len(self.tiers)

    def select(self, tier_index: int) -> PunishmentTier:
        """Return the tier for a 1-based ``tier_index``, clamped to the last entry."""
        if tier_index < 1:
            raise ValueError(f"tier_index is 1-based, got {tier_index}")
        return self.tiers[min(tier_index, len(self.tiers)) - 1]


DEFAULT_LADDER = EscalationLadder.of([
    PunishmentTier.mute(timedelta(hours=2)),
    PunishmentTier.mute(timedelta(hours=24)),
    PunishmentTier.ban(appealable=True),
    PunishmentTier.ban(appealable=False),
])

DEFAULT_WARN_THRESHOLD = 3
DEFAULT_APPEAL_COOLDOWN_HOURS = 24


def tier_index_for(active_warnings: int, warn_threshold: int) -> Optional[int]:
    """Return the 1-based tier for ``active_warnings``, or ``None`` below threshold."""
    if active_warnings <= warn_threshold:
        return None
    return active_warnings - warn_threshold


@dataclass(slots=True)
class CommunityPolicy:
    """Persistent per-community moderation settings."""

    community_id: GuildID
    warn_threshold: int = DEFAULT_WARN_THRESHOLD
    allow_appeals: bool = True
    appeal_cooldown_hours: int = DEFAULT_APPEAL_COOLDOWN_HOURS
    dm_notifications: bool = True
    muted_role_id: Optional[int] = None
    moderator_role_id: Optional[int] = None
    log_channel_id: Optional[int] = None
    appeal_channel_id: Optional[int] = None
    ladder: EscalationLadder = field(default=DEFAULT_LADDER)

    def validate(self) -> None:
        """Raise ValidationError when a value is out of range."""
        if isinstance(self.warn_threshold, bool) or not isinstance(self.warn_threshold, int):
            raise ValidationError("warn_threshold must be an integer.")
        if self.warn_threshold < 1:
            raise ValidationError("warn_threshold must be at least 1.")
        if isinstance(self.appeal_cooldown_hours, bool) or not isinstance(self.appeal_cooldown_hours, int):
            raise ValidationError("appeal_cooldown_hours must be an integer.")
        if self.appeal_cooldown_hours < 0:
            raise ValidationError("appeal_cooldown_hours cannot be negative.")

    @property
    def appeal_cooldown(self) -> timedelta:
        return timedelta(hours=self.appeal_cooldown_hours)


# Fields a moderator may change through the policy store
EDITABLE_POLICY_FIELDS = frozenset({
    "warn_threshold",
    "allow_appeals",
    "appeal_cooldown_hours",
    "dm_notifications",
    "muted_role_id",
    "moderator_role_id",
    "log_channel_id",
    "appeal_channel_id",
})
