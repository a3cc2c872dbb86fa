"""
Key/value persistence for practice stats and settings.

Stores expose get(key) -> Optional[str] and set(key, value) -> bool. They
never raise: a failed read is None, a failed write is False, and callers
substitute defaults.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from readnote.models.settings import PracticeSettings, settings_from_json, settings_to_json
from readnote.models.stats import StatsTable, stats_from_json, stats_to_json

logger = logging.getLogger(__name__)

STATS_STORAGE_KEY = "piano_flashcards_stats_v1"
SETTINGS_STORAGE_KEY = "piano_flashcards_settings_v1"


class KeyValueStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> bool:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True


class JsonFileStore(KeyValueStore):
    """All keys in one JSON object on disk, rewritten on every set()."""

    def __init__(self, path) -> None:
        self.path = Path(path)

    def _read_all(self) -> Dict[str, str]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable store {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring store {self.path}: expected a JSON object")
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> bool:
        data = self._read_all()
        data[key] = value
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"Failed to write store {self.path}: {e}")
            return False
        return True


class PostgresStore(KeyValueStore):
    """
    Key/value rows in PostgreSQL, namespaced per student.

    Expects:
        CREATE TABLE kv_store (
            student_id TEXT NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT NOW(),
            PRIMARY KEY (student_id, key)
        );
    """

    def __init__(self, database_url: Optional[str] = None, student_id: str = "default") -> None:
        self.database_url = database_url or os.environ.get("DATABASE_URL")
        self.student_id = student_id

    def get_db_connection(self):
        """Get PostgreSQL database connection."""
        return psycopg2.connect(self.database_url, cursor_factory=RealDictCursor)

    def get(self, key: str) -> Optional[str]:
        try:
            conn = self.get_db_connection()
        except psycopg2.Error as e:
            logger.warning(f"Store unavailable, reading {key} as missing: {e}")
            return None
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT value FROM kv_store
                    WHERE student_id = %s AND key = %s
                """, (self.student_id, key))
                row = cur.fetchone()
                return row["value"] if row else None
        except psycopg2.Error as e:
            logger.warning(f"Failed to read {key}: {e}")
            return None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> bool:
        try:
            conn = self.get_db_connection()
        except psycopg2.Error as e:
            logger.warning(f"Store unavailable, dropping write of {key}: {e}")
            return False
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO kv_store (student_id, key, value, updated_at)
                    VALUES (%s, %s, %s, NOW())
                    ON CONFLICT (student_id, key)
                    DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = NOW()
                """, (self.student_id, key, value))
                conn.commit()
            return True
        except psycopg2.Error as e:
            logger.warning(f"Failed to write {key}: {e}")
            return False
        finally:
            conn.close()


def load_stats(store: KeyValueStore) -> StatsTable:
    return stats_from_json(store.get(STATS_STORAGE_KEY))


def save_stats(store: KeyValueStore, stats: StatsTable) -> bool:
    ok = store.set(STATS_STORAGE_KEY, stats_to_json(stats))
    if not ok:
        logger.warning("Stats were not persisted")
    return ok


def load_settings(store: KeyValueStore) -> PracticeSettings:
    return settings_from_json(store.get(SETTINGS_STORAGE_KEY))


def save_settings(store: KeyValueStore, settings: PracticeSettings) -> bool:
    ok = store.set(SETTINGS_STORAGE_KEY, settings_to_json(settings))
    if not ok:
        logger.warning("Settings were not persisted")
    return ok
