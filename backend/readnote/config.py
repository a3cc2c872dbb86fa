import os
from typing import List, Optional

from pydantic import BaseModel

from readnote.db.store import JsonFileStore, KeyValueStore, MemoryStore, PostgresStore


class AppConfig(BaseModel):
    store: str = "memory"  # "memory", "file" or "postgres"
    store_path: str = "readnote_store.json"
    database_url: Optional[str] = None
    cors_origins: List[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Read READNOTE_* variables (load .env first with python-dotenv)."""
        defaults = cls()
        origins = os.environ.get("READNOTE_CORS_ORIGINS")
        return cls(
            store=os.environ.get("READNOTE_STORE", defaults.store).lower(),
            store_path=os.environ.get("READNOTE_STORE_PATH", defaults.store_path),
            database_url=os.environ.get("DATABASE_URL"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else defaults.cors_origins,
            log_level=os.environ.get("READNOTE_LOG_LEVEL", defaults.log_level).upper(),
        )


def create_store(config: AppConfig, student_id: str = "default") -> KeyValueStore:
    if config.store == "postgres":
        return PostgresStore(config.database_url, student_id=student_id)
    if config.store == "file":
        return JsonFileStore(config.store_path)
    if config.store != "memory":
        raise ValueError(f"Unknown store backend: {config.store}")
    return MemoryStore()
