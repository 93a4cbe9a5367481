from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict, List
import yaml

from modwarden.datatypes.infraction_datatypes import InfractionKind
from modwarden.datatypes.policy_datatypes import (
    DEFAULT_APPEAL_COOLDOWN_HOURS,
    DEFAULT_LADDER,
    DEFAULT_WARN_THRESHOLD,
    EscalationLadder,
    PunishmentTier,
)
from modwarden.errors import ValidationError
from modwarden.util.format_utils import parse_duration
from modwarden.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()
DEFAULT_DB_PATH = Path("./data/modwarden.db")


def parse_ladder(entries: List[Dict[str, Any]]) -> EscalationLadder:
    """Build an escalation ladder from its YAML form.

    Each entry is a mapping like ``{kind: mute, duration: 2h}`` or
    ``{kind: ban, appealable: false}``.

    Raises:
        ValidationError: If an entry names an unknown kind or bad duration.
    """
    tiers = []
    for position, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise ValidationError(f"Ladder entry {position} must be a mapping.")
        try:
            kind = InfractionKind(str(entry.get("kind", "")).upper())
        except ValueError as exc:
            raise ValidationError(f"Ladder entry {position} has unknown kind {entry.get('kind')!r}.") from exc
        try:
            duration = parse_duration(entry.get("duration")) if kind is InfractionKind.MUTE else None
        except ValueError as exc:
            raise ValidationError(f"Ladder entry {position}: {exc}") from exc
        tiers.append(PunishmentTier(kind, duration, bool(entry.get("appealable", True))))
    return EscalationLadder.of(tiers)


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed shortcuts for the database path, the policy defaults and the
    escalation ladder. Uses fcntl file locks for safe concurrent access.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] Config file %s not found; using defaults.", self.config_path)
            return {}
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            if data is not None:
                logger.error("[APP CONFIGURATION] Config %s is not a mapping; ignoring it.", self.config_path)
            return {}
        return data

    def section(self, name: str) -> Dict[str, Any]:
        value = self._data.get(name, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file and replace the in-memory cache."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        value = self.section("database").get("path")
        return Path(value) if value else DEFAULT_DB_PATH

    @property
    def policy_defaults(self) -> Dict[str, Any]:
        """Default values for communities that never stored a policy."""
        section = self.section("policy_defaults")
        return {
            "warn_threshold": int(section.get("warn_threshold", DEFAULT_WARN_THRESHOLD)),
            "allow_appeals": bool(section.get("allow_appeals", True)),
            "appeal_cooldown_hours": int(section.get("appeal_cooldown_hours", DEFAULT_APPEAL_COOLDOWN_HOURS)),
            "dm_notifications": bool(section.get("dm_notifications", True)),
        }

    @property
    def escalation_ladder(self) -> EscalationLadder:
        """The configured ladder, or the built-in one when unset or invalid."""
        entries = self.section("escalation").get("ladder")
        if not entries:
            return DEFAULT_LADDER
        try:
            return parse_ladder(entries)
        except ValidationError as exc:
            logger.error("[APP CONFIGURATION] Invalid escalation ladder, using default: %s", exc)
            return DEFAULT_LADDER

    @property
    def recover_on_ready(self) -> bool:
        return bool(self.section("scheduler").get("recover_on_ready", True))


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
