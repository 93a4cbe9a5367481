"""
The infraction and escalation engine.

- **infraction_store.py**: Durable, community-scoped records of infractions
  and appeals. Owns transaction boundaries; never touches the platform.

- **moderation_service.py**: Direct moderator actions (mute, ban, kick,
  note, clearing warnings). Applies the punishment through the actuator
  first and records it only after the platform confirmed.

- **escalation_engine.py**: Turns repeated warnings into ladder punishments,
  recomputing the tier from the live active-warning count every time.

- **mute_scheduler.py**: One expiry timer per (community, subject); rebuilds
  its timers from the store after a restart.

- **appeal_workflow.py**: Appeal submission and one-shot review, including
  the compensating action on approval.

- **actuator.py**, **notifications.py**, **clock.py**: The engine's external
  collaborators, each a protocol plus its production implementation.
"""
