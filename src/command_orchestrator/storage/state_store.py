"""Durable key/record store shared by orchestrator subsystems."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from sqlmodel import Session, col, select

from command_orchestrator.storage.alembic_runner import upgrade_head
from command_orchestrator.storage.common import build_sqlite_engine, utc_now
from command_orchestrator.storage.sqlmodel_models import StateRecord

logger = logging.getLogger(__name__)


class StateStore:
    """Independently keyed JSON records backed by SQLModel + SQLite.

    Every subsystem owns one key and loads its own state at startup. Loads are
    tolerant: a missing or undecodable record yields ``None`` so callers can fall
    back to an empty initial state instead of crashing.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def load(self, key: str) -> Any | None:
        """Load one record payload, or ``None`` when missing or corrupt."""

        with Session(self.engine) as session:
            row = session.exec(select(StateRecord).where(StateRecord.key == key)).one_or_none()
        if row is None:
            return None
        try:
            return json.loads(row.payload_json)
        except json.JSONDecodeError as error:
            logger.warning("Ignoring corrupt state record %r: %s", key, error)
            return None

    def save(self, key: str, payload: Any) -> None:
        """Insert or replace one record payload."""

        payload_json = json.dumps(payload, ensure_ascii=False, sort_keys=True)
        with Session(self.engine) as session:
            row = session.exec(select(StateRecord).where(StateRecord.key == key)).one_or_none()
            if row is None:
                row = StateRecord(key=key, payload_json=payload_json, updated_at=utc_now())
            else:
                row.payload_json = payload_json
                row.updated_at = utc_now()
            session.add(row)
            session.commit()

    def keys(self) -> list[str]:
        """List stored record keys."""

        with Session(self.engine) as session:
            return list(session.exec(select(StateRecord.key).order_by(col(StateRecord.key).asc())))


def load_mapping(store: StateStore | None, key: str) -> dict[str, Any]:
    """Load a JSON object record, falling back to an empty mapping."""

    if store is None:
        return {}
    payload = store.load(key)
    if not isinstance(payload, dict):
        if payload is not None:
            logger.warning("State record %r is not an object; starting empty", key)
        return {}
    return payload


def load_list(store: StateStore | None, key: str) -> list[Any]:
    """Load a JSON array record, falling back to an empty list."""

    if store is None:
        return []
    payload = store.load(key)
    if not isinstance(payload, list):
        if payload is not None:
            logger.warning("State record %r is not an array; starting empty", key)
        return []
    return payload
