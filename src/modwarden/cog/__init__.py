"""
py-cord cogs for modwarden.

- **moderation_cmds.py**: moderator slash commands (/warn, /mute, /ban, ...)
  and /modconfig.
- **appeal_cmds.py**: the /appeal command group.
- **scheduler_cog.py**: runs mute recovery on the first ``on_ready``.
"""
