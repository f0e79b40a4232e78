from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import Request

from greenwood.domain.models import ServiceConfig
from greenwood.services.query import QueryBuilder
from greenwood.storage.db_manager import DatabaseManager
from greenwood.storage.sqlite_db_manager import SqliteDatabaseManager

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "GREENWOOD_DATA_DIR"
DATABASE_URL_ENV_VAR = "DATABASE_URL"
CONFIG_FILE_NAME = "greenwood.json"
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"

_config: Optional[ServiceConfig] = None
_db_manager: Optional[DatabaseManager] = None


def get_data_dir() -> Path:
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        d = Path(env_path).expanduser()
    else:
        d = _DEFAULT_DATA_DIR
    d.mkdir(parents=True, exist_ok=True)
    return d


def get_database_path() -> Path:
    """
    Resolve the SQLite database file.

    Priority:
    1. Environment variable DATABASE_URL (plain path or sqlite:///path)
    2. '<data dir>/packages.db'
    """
    url = os.environ.get(DATABASE_URL_ENV_VAR)
    if url:
        if url.startswith("sqlite:///"):
            url = url[len("sqlite:///"):]
        return Path(url).expanduser()
    return get_data_dir() / "packages.db"


def load_config(data_dir: Path) -> ServiceConfig:
    """
    Load greenwood.json, merging with defaults for any missing fields,
    and write it back so any new fields are persisted.
    """
    path = data_dir / CONFIG_FILE_NAME
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            config = ServiceConfig(**raw)
        except Exception as e:
            # If parsing fails, fall back to defaults and overwrite file.
            logger.warning(f"Ignoring invalid configuration {path}: {e}")
            config = ServiceConfig()
    else:
        config = ServiceConfig()

    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    return config


def get_config() -> ServiceConfig:
    global _config
    if _config is None:
        _config = load_config(get_data_dir())
    return _config


def get_db_manager() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = SqliteDatabaseManager(get_database_path())
        _db_manager.initialize()
    return _db_manager


# ---------------------------------------------------------------------------
# FastAPI dependencies (objects built once at startup, kept on app.state)
# ---------------------------------------------------------------------------


def get_app_config(request: Request) -> ServiceConfig:
    return request.app.state.config


def get_app_db(request: Request) -> DatabaseManager:
    return request.app.state.db


def get_query_builder(request: Request) -> QueryBuilder:
    return QueryBuilder(get_app_db(request))
