"""SQLModel ORM tables for durable orchestrator state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel


class StateRecord(SQLModel, table=True):
    __tablename__ = "state_records"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
