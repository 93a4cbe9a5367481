"""
Database package for modwarden.

- **db_connection.py**: the single long-lived aiosqlite connection, with a
  serialised ``transaction()`` for writes.
- **db_schema.py**: tables and indexes for infractions, appeals and
  community policies.
"""
