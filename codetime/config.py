"""Runtime settings for codetime."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

DATA_DIR = Path.home() / ".codingtimetracker"
DEFAULT_DB_PATH = DATA_DIR / "timetracker.db"
DEFAULT_EXPORT_DIR = DATA_DIR / "exports"

IDLE_TIMEOUT_MS = 2 * 60 * 1000
HEARTBEAT_INTERVAL_MS = 30 * 1000
SAVE_DELAY_MS = 1000


class Settings(BaseModel):
    """Tracker configuration.

    Timeouts are in milliseconds. The heartbeat only polls for idle expiry;
    the idle timeout is what actually bounds a session.
    """

    db_path: Path = DEFAULT_DB_PATH
    export_dir: Path = DEFAULT_EXPORT_DIR
    idle_timeout_ms: int = Field(default=IDLE_TIMEOUT_MS, gt=0)
    heartbeat_interval_ms: int = Field(default=HEARTBEAT_INTERVAL_MS, gt=0)
    save_delay_ms: int = Field(default=SAVE_DELAY_MS, ge=0)

    @classmethod
    def from_env(cls, **overrides: object) -> Settings:
        """Build settings from CODETIME_DB / CODETIME_EXPORT_DIR, then overrides.

        Overrides that are None are ignored so click options can be passed
        straight through.
        """
        values: dict[str, object] = {}
        if db := os.environ.get("CODETIME_DB"):
            values["db_path"] = Path(db).expanduser()
        if export_dir := os.environ.get("CODETIME_EXPORT_DIR"):
            values["export_dir"] = Path(export_dir).expanduser()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)
