"""
Configuration for modwarden.

- **app_configuration.py**: YAML application settings (database path,
  policy defaults, escalation ladder).
- **community_policy.py**: per-community policy store with defaults.
"""
