"""
Utility helpers for modwarden.

- **logger.py**: Centralized logging configuration with colored console output,
  rotating file handlers, and per-session log aggregation. Uses prompt_toolkit
  so log lines do not tear an interactive prompt.

- **case_ids.py**: Creation-ordered, community-scoped identifiers for
  infractions and appeals.

- **format_utils.py**: Parsing of human durations ("2h", "1d12h") and the
  reverse formatting used in notifications.

- **discord_utils.py**: Permission checks and error messages shared by the
  slash-command cogs.
"""
