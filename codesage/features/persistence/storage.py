"""
Key-value storage backends for persisted snapshots.

All backends store strings under string keys:
- MemoryStorage: process-local dict (tests, ephemeral sessions)
- FileStorage: one JSON file per key under a directory
- SqlStorage: rows in the local_snapshots table
"""
from __future__ import annotations

import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import delete, insert, select, update

from codesage.core.config import settings
from codesage.core.database import get_db_session, local_snapshots

logger = logging.getLogger(__name__)


class KeyValueStorage:
    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage(KeyValueStorage):
    def __init__(self, directory):
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        # Keys may contain ':' or '/', so hash them into a safe file name
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path_for(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()


class SqlStorage(KeyValueStorage):
    def get_item(self, key: str) -> Optional[str]:
        with get_db_session() as session:
            row = session.execute(
                select(local_snapshots.c.value).where(local_snapshots.c.key == key)
            ).first()
        return row.value if row else None

    def set_item(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc)
        with get_db_session() as session:
            existing = session.execute(
                select(local_snapshots.c.key).where(local_snapshots.c.key == key)
            ).first()
            if existing:
                session.execute(
                    update(local_snapshots)
                    .where(local_snapshots.c.key == key)
                    .values(value=value, updated_at=now)
                )
            else:
                session.execute(
                    insert(local_snapshots).values(key=key, value=value, updated_at=now)
                )

    def remove_item(self, key: str) -> None:
        with get_db_session() as session:
            session.execute(delete(local_snapshots).where(local_snapshots.c.key == key))


def build_storage(settings_obj=None) -> KeyValueStorage:
    cfg = settings_obj or settings
    backend = (cfg.SNAPSHOT_BACKEND or "sql").lower()
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return FileStorage(cfg.SNAPSHOT_DIR)
    if backend != "sql":
        logger.warning(f"Unknown SNAPSHOT_BACKEND {backend!r}, using sql")
    return SqlStorage()
