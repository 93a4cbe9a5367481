from datetime import timedelta

import pytest

from modwarden.datatypes.discord_datatypes import GuildID
from modwarden.datatypes.infraction_datatypes import InfractionKind
from modwarden.datatypes.policy_datatypes import (
    DEFAULT_LADDER,
    CommunityPolicy,
    EscalationLadder,
    PunishmentTier,
    tier_index_for,
)
from modwarden.errors import ValidationError


@pytest.mark.parametrize(
    "warnings, threshold, expected",
    [(0, 3, None), (3, 3, None), (4, 3, 1), (7, 3, 4), (2, 1, 1)],
)
def test_tier_index_for(warnings, threshold, expected):
    assert tier_index_for(warnings, threshold) == expected


def test_select_clamps_to_last_tier():
    assert DEFAULT_LADDER.select(1) == PunishmentTier.mute(timedelta(hours=2))
    assert DEFAULT_LADDER.select(4) == PunishmentTier.ban(appealable=False)
    assert DEFAULT_LADDER.select(40) == PunishmentTier.ban(appealable=False)
    with pytest.raises(ValueError):
        DEFAULT_LADDER.select(0)


def test_tier_validation():
    with pytest.raises(ValidationError):
        PunishmentTier(InfractionKind.WARNING)
    with pytest.raises(ValidationError):
        PunishmentTier(InfractionKind.BAN, timedelta(hours=1))
    with pytest.raises(ValidationError):
        PunishmentTier.mute(timedelta(0))
    with pytest.raises(ValidationError):
        EscalationLadder.of([])


def test_describe():
    assert PunishmentTier.mute(timedelta(hours=2)).describe() == "2h mute"
    assert PunishmentTier.mute().describe() == "permanent mute"
    assert PunishmentTier.ban(appealable=False).describe() == "ban (not appealable)"
    assert PunishmentTier.kick().describe() == "kick"


def test_policy_validation():
    CommunityPolicy(GuildID(1)).validate()
    with pytest.raises(ValidationError):
        CommunityPolicy(GuildID(1), warn_threshold=0).validate()
    with pytest.raises(ValidationError):
        CommunityPolicy(GuildID(1), warn_threshold=True).validate()
    with pytest.raises(ValidationError):
        CommunityPolicy(GuildID(1), appeal_cooldown_hours=-2).validate()

    assert CommunityPolicy(GuildID(1), appeal_cooldown_hours=6).appeal_cooldown == timedelta(hours=6)
