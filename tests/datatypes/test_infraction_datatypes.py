from datetime import datetime, timedelta, timezone

import pytest

from modwarden.datatypes.discord_datatypes import GuildID, UserID
from modwarden.datatypes.infraction_datatypes import (
    Appeal,
    AppealStatus,
    Infraction,
    InfractionFilter,
    InfractionKind,
)
from modwarden.errors import ValidationError

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def build(kind=InfractionKind.MUTE, **overrides):
    fields = dict(
        id="1-1-0001",
        community_id=GuildID(1),
        subject_id=UserID(2),
        issuer_id="3",
        kind=kind,
        reason="spam",
        created_at=NOW,
    )
    fields.update(overrides)
    return Infraction(**fields)


def test_mute_duration_and_temporary_flag():
    timed = build(expires_at=NOW + timedelta(hours=2))
    permanent = build()

    assert timed.duration == timedelta(hours=2)
    assert timed.is_temporary is True
    assert permanent.duration is None
    assert permanent.is_temporary is False


def test_only_mutes_may_expire():
    with pytest.raises(ValidationError):
        build(InfractionKind.BAN, expires_at=NOW + timedelta(hours=1))
    with pytest.raises(ValidationError):
        build(expires_at=NOW)


def test_appeal_fields_must_agree():
    with pytest.raises(ValidationError):
        build(appealed=True)
    with pytest.raises(ValidationError):
        build(id="")


def test_filters():
    active_warning = build(InfractionKind.WARNING)
    old_warning = build(InfractionKind.WARNING, active=False)
    mute = build()

    assert InfractionFilter.ACTIVE.matches(active_warning)
    assert not InfractionFilter.ACTIVE.matches(old_warning)
    assert InfractionFilter.ALL.matches(old_warning)

    warnings_only = InfractionFilter.of_kind(InfractionKind.WARNING, active_only=True)
    assert warnings_only.matches(active_warning)
    assert not warnings_only.matches(old_warning)
    assert not warnings_only.matches(mute)


def test_appeal_resolution_is_terminal_only():
    appeal = Appeal(
        id="1-2-0001",
        community_id=GuildID(1),
        subject_id=UserID(2),
        case_id="1-1-0001",
        infraction_kind=InfractionKind.MUTE,
        reason="please",
        submitted_at=NOW,
    )
    assert appeal.status is AppealStatus.PENDING
    assert not appeal.status.is_terminal

    resolved = appeal.resolved(AppealStatus.DENIED, "9", "no", NOW + timedelta(hours=1))
    assert resolved.status.is_terminal
    assert resolved.reviewed_at == NOW + timedelta(hours=1)
    assert appeal.status is AppealStatus.PENDING

    with pytest.raises(ValidationError):
        appeal.resolved(AppealStatus.PENDING, "9", "no", NOW)


def test_kind_labels():
    assert InfractionKind.UNMUTE.label == "unmute"
    assert str(InfractionKind.BAN) == "BAN"
