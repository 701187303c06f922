"""Durable key/record storage backed by SQLModel + SQLite."""
