"""Column types shared by the pricing tables on PostgreSQL and SQLite."""
from sqlalchemy import JSON, Uuid

# Audit snapshots; plain JSON so the same models run on SQLite in tests
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid
