"""
Plain data types shared by the engine.

- **discord_datatypes.py**: ``GuildID`` / ``UserID`` snowflake wrappers.
- **infraction_datatypes.py**: ``Infraction``, ``Appeal``, their enums and
  the ``InfractionFilter`` used for listing.
- **policy_datatypes.py**: ``CommunityPolicy``, ``PunishmentTier`` and the
  ``EscalationLadder``.
"""
