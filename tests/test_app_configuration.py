from datetime import timedelta
from pathlib import Path

import pytest

from modwarden.configuration.app_configuration import DEFAULT_DB_PATH, AppConfig, parse_ladder
from modwarden.datatypes.infraction_datatypes import InfractionKind
from modwarden.datatypes.policy_datatypes import DEFAULT_LADDER
from modwarden.errors import ValidationError


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path) -> None:
    config_path.write_text(
        """
database:
  path: /tmp/elsewhere.db
policy_defaults:
  warn_threshold: 5
  allow_appeals: false
  appeal_cooldown_hours: 6
escalation:
  ladder:
    - kind: mute
      duration: 30m
    - kind: kick
    - kind: ban
      appealable: false
scheduler:
  recover_on_ready: false
""",
        encoding="utf-8",
    )

    config = AppConfig(config_path)

    assert config.database_path == Path("/tmp/elsewhere.db")
    assert config.policy_defaults == {
        "warn_threshold": 5,
        "allow_appeals": False,
        "appeal_cooldown_hours": 6,
        "dm_notifications": True,
    }
    ladder = config.escalation_ladder
    assert [tier.kind for tier in ladder.tiers] == [InfractionKind.MUTE, InfractionKind.KICK, InfractionKind.BAN]
    assert ladder.tiers[0].duration == timedelta(minutes=30)
    assert ladder.tiers[2].appealable is False
    assert config.recover_on_ready is False


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    assert config.database_path == DEFAULT_DB_PATH
    assert config.policy_defaults["warn_threshold"] == 3
    assert config.escalation_ladder is DEFAULT_LADDER
    assert config.recover_on_ready is True


def test_app_config_invalid_yaml_is_ignored(config_path: Path) -> None:
    config_path.write_text("database: [unclosed", encoding="utf-8")

    config = AppConfig(config_path)

    assert config.data == {}


def test_app_config_invalid_ladder_falls_back(config_path: Path) -> None:
    config_path.write_text("escalation:\n  ladder:\n    - kind: warning\n", encoding="utf-8")

    assert AppConfig(config_path).escalation_ladder is DEFAULT_LADDER


def test_app_config_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text("policy_defaults:\n  warn_threshold: 2\n", encoding="utf-8")
    config = AppConfig(config_path)
    assert config.policy_defaults["warn_threshold"] == 2

    config_path.write_text("policy_defaults:\n  warn_threshold: 7\n", encoding="utf-8")
    config.reload()
    assert config.policy_defaults["warn_threshold"] == 7


def test_parse_ladder_rejects_bad_entries() -> None:
    with pytest.raises(ValidationError):
        parse_ladder(["mute"])
    with pytest.raises(ValidationError):
        parse_ladder([{"kind": "explode"}])
    with pytest.raises(ValidationError):
        parse_ladder([{"kind": "mute", "duration": "soon"}])
    with pytest.raises(ValidationError):
        parse_ladder([])


def test_parse_ladder_permanent_mute() -> None:
    ladder = parse_ladder([{"kind": "mute", "duration": "permanent"}])
    assert ladder.tiers[0].duration is None
