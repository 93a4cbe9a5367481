"""
Case id generation.

Ids look like ``<community>-<unix-ms>-<nnnn>``. The millisecond part is
strictly increasing for the life of the process so ids sort in creation
order even when two records are made within the same millisecond.
"""

from __future__ import annotations

import random
from datetime import datetime

from modwarden.datatypes.discord_datatypes import GuildID

_last_millis = 0


def _next_millis(now: datetime) -> int:
    global _last_millis
    millis = int(now.timestamp() * 1000)
    if millis <= _last_millis:
        millis = _last_millis + 1
    _last_millis = millis
    return millis


def generate_case_id(community_id: GuildID, now: datetime) -> str:
    """Return a new case id for ``community_id`` stamped at ``now``."""
    return f"{community_id}-{_next_millis(now)}-{random.randint(0, 9999):04d}"


def community_of(case_id: str) -> GuildID:
    """Extract the community id prefix of a case id.

    Raises:
        ValueError: If the id does not start with a numeric community id.
    """
    return GuildID(case_id.split("-", 1)[0])
