"""
SQLite-backed record store.

Every operation opens its own connection, so request handlers running in a
thread pool can read while the background synchronizer writes. The database
is switched to WAL journaling at initialization for that reason.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from greenwood.domain.errors import DuplicateKeyError, StoreUnavailableError
from greenwood.domain.models import (
    FORMAT_CURRENT,
    LEGACY_ELM_VERSION_PREFIXES,
    NaturalKey,
    PackageQuery,
    PackageRecord,
    ReleaseKind,
)
from greenwood.storage.db_manager import DatabaseManager

logger = logging.getLogger(__name__)

_COLUMNS = (
    "timestamp, major, minor, patch, author, name, "
    "summary, license, elm_version, dependencies, format"
)

_REPO_EXPR = "(author || '/' || name)"
_VERSION_EXPR = (
    "(CAST(major AS TEXT) || '.' || CAST(minor AS TEXT) || '.' || CAST(patch AS TEXT))"
)
_LEGACY_CONDITION = "(format < {current} OR substr(elm_version, 1, 4) IN ({prefixes}))".format(
    current=FORMAT_CURRENT,
    prefixes=", ".join(f"'{p}'" for p in LEGACY_ELM_VERSION_PREFIXES),
)

_RELEASE_CONDITIONS = {
    ReleaseKind.FIRST: "(major = 1 AND minor = 0 AND patch = 0)",
    ReleaseKind.MAJOR: "(minor = 0 AND patch = 0)",
    ReleaseKind.MINOR: "(minor != 0 AND patch = 0)",
    ReleaseKind.PATCH: "(patch != 0)",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS packages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    major INTEGER NOT NULL,
    minor INTEGER NOT NULL,
    patch INTEGER NOT NULL,
    author TEXT NOT NULL,
    name TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    license TEXT NOT NULL DEFAULT '',
    elm_version TEXT NOT NULL DEFAULT '',
    dependencies TEXT NOT NULL DEFAULT '{}',
    format INTEGER NOT NULL DEFAULT 19
);
CREATE INDEX IF NOT EXISTS packages_release_idx
    ON packages (author, name, major, minor, patch);
CREATE INDEX IF NOT EXISTS packages_timestamp_idx
    ON packages (timestamp);
"""


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def _split_repo(repo: str) -> Optional[Tuple[str, str]]:
    author, sep, name = repo.partition("/")
    if not sep or not author or not name:
        return None
    return author, name


class SqliteDatabaseManager(DatabaseManager):
    def __init__(self, db_path: Path, busy_timeout: float = 30.0):
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout
        # Serializes the exists-then-insert sequence.
        self._write_lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open database {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        try:
            yield conn
            conn.commit()
        except sqlite3.DatabaseError as e:
            conn.rollback()
            raise StoreUnavailableError(f"Database {self._db_path} unavailable: {e}") from e
        finally:
            conn.close()

    def initialize(self) -> None:
        logger.debug(f"Initializing package store at {self._db_path}")
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)

    def count(self, format: Optional[int] = None) -> int:
        with self._connect() as conn:
            if format is None:
                row = conn.execute("SELECT COUNT(*) FROM packages").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM packages WHERE format = ?", (format,)
                ).fetchone()
        return row[0]

    def exists(self, key: NaturalKey) -> bool:
        return self.stored_format(key) is not None

    def stored_format(self, key: NaturalKey) -> Optional[int]:
        with self._connect() as conn:
            return self._stored_format(conn, key)

    def _stored_format(self, conn: sqlite3.Connection, key: NaturalKey) -> Optional[int]:
        row = conn.execute(
            """
            SELECT format FROM packages
            WHERE author = ? AND name = ? AND major = ? AND minor = ? AND patch = ?
            ORDER BY id
            LIMIT 1
            """,
            tuple(key),
        ).fetchone()
        return row["format"] if row else None

    def exists_legacy_versions(self, repo: str, versions: Sequence[str]) -> bool:
        wanted = set(versions)
        if not wanted:
            return True
        parts = _split_repo(repo)
        if parts is None:
            return False

        placeholders = ", ".join("?" for _ in wanted)
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(DISTINCT {_VERSION_EXPR}) FROM packages
                WHERE author = ? AND name = ?
                  AND {_VERSION_EXPR} IN ({placeholders})
                  AND {_LEGACY_CONDITION}
                """,
                (*parts, *wanted),
            ).fetchone()
        return row[0] == len(wanted)

    def exists_legacy_version(self, repo: str, version: str) -> bool:
        parts = _split_repo(repo)
        if parts is None:
            return False
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT 1 FROM packages
                WHERE author = ? AND name = ?
                  AND {_VERSION_EXPR} = ?
                  AND {_LEGACY_CONDITION}
                LIMIT 1
                """,
                (*parts, version),
            ).fetchone()
        return row is not None

    def insert(self, record: PackageRecord) -> None:
        key = record.natural_key
        with self._write_lock, self._connect() as conn:
            existing_format = self._stored_format(conn, key)
            if existing_format is not None:
                if existing_format != record.format:
                    logger.warning(
                        f"Format anomaly for {key}: stored as format {existing_format}, "
                        f"seen again as format {record.format}"
                    )
                raise DuplicateKeyError(f"{key} is already stored (format {existing_format})")

            logger.info(f"Adding {key} ({record.elm_version}, format {record.format})")
            conn.execute(
                f"INSERT INTO packages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.timestamp,
                    record.major,
                    record.minor,
                    record.patch,
                    record.author,
                    record.name,
                    record.summary,
                    record.license,
                    record.elm_version,
                    json.dumps(record.dependencies, sort_keys=True),
                    record.format,
                ),
            )

    def query(self, query: PackageQuery) -> List[PackageRecord]:
        sql, params = self._build_query(query)
        logger.debug(f"Running package query {query!r}")
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def distinct_package_names(self, author: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT name FROM packages
                WHERE author = ?
                GROUP BY name
                ORDER BY MAX(timestamp) DESC, name
                """,
                (author,),
            ).fetchall()
        return [row["name"] for row in rows]

    def _build_query(self, query: PackageQuery) -> Tuple[str, list]:
        conditions: List[str] = []
        params: list = []

        package_condition = None
        if query.repos is not None:
            if query.repos:
                placeholders = ", ".join("?" for _ in query.repos)
                package_condition = f"{_REPO_EXPR} IN ({placeholders})"
                params.extend(query.repos)
            else:
                package_condition = "0"

        search_condition = None
        if query.pattern:
            search_condition = (
                f"(instr(casefold({_REPO_EXPR}), ?) > 0 OR instr(casefold(summary), ?) > 0)"
            )
            needle = query.pattern.casefold()
            params.extend([needle, needle])

        if package_condition and search_condition:
            conditions.append(f"({package_condition} OR {search_condition})")
        elif package_condition:
            conditions.append(package_condition)
        elif search_condition:
            conditions.append(search_condition)

        release_condition = _RELEASE_CONDITIONS.get(query.release)
        if release_condition:
            conditions.append(release_condition)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        if query.release is ReleaseKind.LAST:
            sql = f"""
                SELECT {_COLUMNS} FROM (
                    SELECT {_COLUMNS}, id, ROW_NUMBER() OVER (
                        PARTITION BY author, name, elm_version
                        ORDER BY timestamp DESC, id
                    ) AS row_rank
                    FROM packages
                    {where}
                )
                WHERE row_rank = 1
                ORDER BY timestamp DESC, id
                LIMIT ?
            """
        else:
            sql = f"""
                SELECT {_COLUMNS} FROM packages
                {where}
                ORDER BY timestamp DESC, id
                LIMIT ?
            """
        params.append(query.limit)
        return sql, params

    def _row_to_record(self, row: sqlite3.Row) -> PackageRecord:
        data = dict(row)
        try:
            dependencies = json.loads(data["dependencies"] or "{}")
        except ValueError:
            logger.warning(
                f"Ignoring unreadable dependencies of {data['author']}/{data['name']} "
                f"{data['major']}.{data['minor']}.{data['patch']}"
            )
            dependencies = {}
        data["dependencies"] = dependencies
        return PackageRecord(**data)
