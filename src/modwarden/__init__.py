"""
Modwarden - infraction tracking and escalation for Discord communities

Modwarden records every moderation action against a user as an infraction,
turns repeated warnings into mutes and bans, and lets users appeal.

Core Components:

- **Infraction Store**: SQLite-backed, community-scoped audit trail of
  warnings, mutes, bans, kicks and notes, plus their appeals
- **Escalation Engine**: Applies the next punishment on the escalation ladder
  once a user's active warnings pass the community threshold
- **Mute Scheduler**: Lifts temporary mutes on time and rebuilds its timers
  from the database after a restart
- **Appeal Workflow**: One-shot review of appeals with the compensating
  unmute, unban or warning removal on approval
- **Community Policy**: Per-server threshold, appeal settings and role and
  channel ids, with defaults from ``config/app_config.yml``

Usage:
    from modwarden.main import main
    main()  # Starts the bot
"""
