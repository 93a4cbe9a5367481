"""
Infraction and appeal records.

An ``Infraction`` is one audit entry of a moderation action against a user
in a community. Records are never deleted; lifting a punishment only clears
``active``. An ``Appeal`` asks for an active infraction's effect to be
reversed and is resolved exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.errors import ValidationError

# Issuer recorded on infractions the engine creates on its own
SYSTEM_ISSUER = "system"


class InfractionKind(Enum):
    """Closed set of recorded moderation actions."""

    WARNING = "WARNING"
    MUTE = "MUTE"
    UNMUTE = "UNMUTE"
    BAN = "BAN"
    UNBAN = "UNBAN"
    KICK = "KICK"
    NOTE = "NOTE"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return self.value.lower()


# Kinds whose effect an approved appeal knows how to reverse
APPEALABLE_KINDS = frozenset({InfractionKind.WARNING, InfractionKind.MUTE, InfractionKind.BAN})


class AppealStatus(Enum):
    """Appeal lifecycle. PENDING moves once to APPROVED or DENIED."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self is not AppealStatus.PENDING


@dataclass(slots=True)
class Infraction:
    """A single recorded moderation action.

    Attributes:
        id: Community-scoped, creation-ordered case id.
        community_id: Guild the infraction belongs to.
        subject_id: User the action was taken against.
        issuer_id: Moderator id, or ``SYSTEM_ISSUER`` for automatic actions.
        kind: What was done.
        reason: Free-text reason shown to the user and moderators.
        created_at: When the record was made (aware UTC).
        expires_at: End of a temporary mute; ``None`` for everything else.
        active: False once the punishment was lifted, expired or cleared.
        appealed: True while ``appeal_id`` references an appeal.
        appeal_id: The appeal currently attached to this infraction.
        appealable: False for punishments issued as final.
    """

    id: str
    community_id: GuildID
    subject_id: UserID
    issuer_id: str
    kind: InfractionKind
    reason: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    active: bool = True
    appealed: bool = False
    appeal_id: Optional[str] = None
    appealable: bool = True

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("Infraction id must not be empty.")
        if self.expires_at is not None and self.kind is not InfractionKind.MUTE:
            raise ValidationError(f"Only mutes may expire; got expiry on {self.kind}.")
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValidationError("A mute must expire after it was created.")
        if self.appealed != (self.appeal_id is not None):
            raise ValidationError("appealed must be set exactly when appeal_id is set.")

    @property
    def is_temporary(self) -> bool:
        return self.expires_at is not None

    @property
    def duration(self):
        """Length of a temporary mute, or ``None`` when permanent."""
        if self.expires_at is None:
            return None
        return self.expires_at - self.created_at


@dataclass(slots=True)
class Appeal:
    """A user's request to reverse an infraction."""

    id: str
    community_id: GuildID
    subject_id: UserID
    case_id: str
    infraction_kind: InfractionKind
    reason: str
    submitted_at: datetime
    status: AppealStatus = AppealStatus.PENDING
    reviewer_id: Optional[str] = None
    review_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    def resolved(self, decision: AppealStatus, reviewer_id: str, review_reason: str, reviewed_at: datetime) -> "Appeal":
        """Return the resolved copy of a pending appeal.

        Raises:
            ValidationError: If ``decision`` is not a terminal status.
        """
        if not decision.is_terminal:
            raise ValidationError("An appeal can only be resolved as APPROVED or DENIED.")
        return replace(
            self,
            status=decision,
            reviewer_id=reviewer_id,
            review_reason=review_reason,
            reviewed_at=reviewed_at,
        )


@dataclass(frozen=True, slots=True)
class InfractionFilter:
    """Selection used by ``InfractionStore.list_by_user``.

    ``InfractionFilter.ALL`` returns everything, ``InfractionFilter.ACTIVE``
    only active records, and ``InfractionFilter.of_kind`` narrows to a kind.
    """

    active_only: bool = False
    kind: Optional[InfractionKind] = None

    @classmethod
    def of_kind(cls, kind: InfractionKind, *, active_only: bool = False) -> "InfractionFilter":
        return cls(active_only=active_only, kind=kind)

    def matches(self, infraction: Infraction) -> bool:
        if self.active_only and not infraction.active:
            return False
        return self.kind is None or infraction.kind is self.kind


InfractionFilter.ALL = InfractionFilter()  # type: ignore[attr-defined]
InfractionFilter.ACTIVE = InfractionFilter(active_only=True)  # type: ignore[attr-defined]
