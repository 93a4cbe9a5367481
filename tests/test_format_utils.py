from datetime import datetime, timedelta, timezone

import pytest

import modwarden.util.format_utils as format_utils
from modwarden.datatypes.discord_datatypes import GuildID
from modwarden.util.case_ids import community_of, generate_case_id


def test_humanize_timestamp_converts_naive_to_utc():
    naive_value = datetime(2025, 1, 3, 12, 34, 56)

    result = format_utils.humanize_timestamp(naive_value)

    assert result == "2025-01-03 12:34:56 UTC"


def test_humanize_timestamp_normalizes_timezones():
    eastern = timezone(timedelta(hours=-5))
    aware_value = datetime(2024, 1, 1, 7, 30, tzinfo=eastern)

    result = format_utils.humanize_timestamp(aware_value)

    assert result == "2024-01-01 12:30:00 UTC"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2h", timedelta(hours=2)),
        ("90m", timedelta(minutes=90)),
        ("1d12h", timedelta(days=1, hours=12)),
        ("1w", timedelta(weeks=1)),
        (" 10S ", timedelta(seconds=10)),
    ],
)
def test_parse_duration(text, expected):
    assert format_utils.parse_duration(text) == expected


@pytest.mark.parametrize("text", [None, "", "0", "permanent", "Forever"])
def test_parse_duration_permanent_spellings(text):
    assert format_utils.parse_duration(text) is None


@pytest.mark.parametrize("text", ["soon", "2x", "h2", "2h later"])
def test_parse_duration_rejects_garbage(text):
    with pytest.raises(ValueError):
        format_utils.parse_duration(text)


def test_format_duration():
    assert format_utils.format_duration(None) == "permanent"
    assert format_utils.format_duration(timedelta(hours=2, minutes=30)) == "2h 30m"
    assert format_utils.format_duration(timedelta(days=1, seconds=5)) == "1d 5s"
    assert format_utils.format_duration(timedelta(0)) == "0s"


def test_unix_conversion_keeps_utc():
    moment = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert format_utils.from_unix(format_utils.to_unix(moment)) == moment
    assert format_utils.to_unix(None) is None
    assert format_utils.from_unix(None) is None


def test_case_ids_are_unique_and_ordered_within_one_millisecond():
    guild = GuildID(42)
    moment = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    ids = [generate_case_id(guild, moment) for _ in range(50)]

    assert len(set(ids)) == 50
    millis = [int(case_id.split("-")[1]) for case_id in ids]
    assert millis == sorted(millis)
    assert all(case_id.startswith("42-") for case_id in ids)


def test_community_of_reads_prefix():
    case_id = generate_case_id(GuildID(987654321), datetime.now(timezone.utc))
    assert community_of(case_id) == GuildID(987654321)

    with pytest.raises(ValueError):
        community_of("not-a-case")
