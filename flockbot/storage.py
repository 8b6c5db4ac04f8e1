"""SQLite storage layer for persisted watcher state."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from flockbot.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "flockbot.db"


class Database:
    """Manages the SQLite file holding every watcher namespace."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0
        try:
            self._connect()
            self._create_tables()
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.db_path}: {e}") from e

    @classmethod
    def in_directory(cls, directory: str | Path) -> Database:
        """Open (or create) the default database file inside ``directory``."""
        return cls(Path(directory) / DEFAULT_DB_NAME)

    def _connect(self) -> None:
        self._conn = sqlite3.connect(self.db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._connect()
        return self._conn  # type: ignore[return-value]

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            );
        """)
        self.conn.commit()

    def open_map(self, namespace: str) -> PersistentMap:
        """Return the persistent mapping stored under ``namespace``.

        Namespaces need no creation step: an unused one reads as empty.
        """
        return PersistentMap(self, namespace)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so they commit together, or not at all.

        Nested use joins the outermost transaction.
        """
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._commit()

    # -- low-level helpers used by PersistentMap --

    def query(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"read failed on {self.db_path}: {e}") from e

    def write(self, sql: str, params: tuple | list = (), many: bool = False) -> int:
        try:
            if many:
                cursor = self.conn.executemany(sql, params)
            else:
                cursor = self.conn.execute(sql, params)
        except sqlite3.Error as e:
            if self._tx_depth == 0:
                self._rollback()
            raise StorageError(f"write failed on {self.db_path}: {e}") from e
        if self._tx_depth == 0:
            self._commit()
        return cursor.rowcount

    def _commit(self) -> None:
        try:
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"commit failed on {self.db_path}: {e}") from e

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except sqlite3.Error:
            logger.exception("Rollback failed on %s", self.db_path)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


class PersistentMap(MutableMapping):
    """A string-keyed mapping of JSON values living in one namespace."""

    def __init__(self, db: Database, namespace: str) -> None:
        self._db = db
        self.namespace = namespace

    def __getitem__(self, key: str) -> Any:
        rows = self._db.query(
            "SELECT value FROM kv WHERE namespace=? AND key=?",
            (self.namespace, _check_key(key)),
        )
        if not rows:
            raise KeyError(key)
        return json.loads(rows[0][0])

    def __setitem__(self, key: str, value: Any) -> None:
        self._db.write(
            "INSERT OR REPLACE INTO kv (namespace, key, value) VALUES (?, ?, ?)",
            (self.namespace, _check_key(key), json.dumps(value)),
        )

    def __delitem__(self, key: str) -> None:
        deleted = self._db.write(
            "DELETE FROM kv WHERE namespace=? AND key=?",
            (self.namespace, _check_key(key)),
        )
        if deleted == 0:
            raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        rows = self._db.query(
            "SELECT 1 FROM kv WHERE namespace=? AND key=?",
            (self.namespace, key),
        )
        return bool(rows)

    def __iter__(self) -> Iterator[str]:
        # Materialized so callers may mutate the map while iterating.
        rows = self._db.query(
            "SELECT key FROM kv WHERE namespace=? ORDER BY key",
            (self.namespace,),
        )
        return iter([row[0] for row in rows])

    def __len__(self) -> int:
        rows = self._db.query(
            "SELECT COUNT(*) FROM kv WHERE namespace=?", (self.namespace,)
        )
        return rows[0][0]

    def update(self, other: Any = (), /, **kwargs: Any) -> None:  # type: ignore[override]
        """Write many entries with a single statement."""
        pairs = dict(other, **kwargs)
        if not pairs:
            return
        self._db.write(
            "INSERT OR REPLACE INTO kv (namespace, key, value) VALUES (?, ?, ?)",
            [
                (self.namespace, _check_key(k), json.dumps(v))
                for k, v in pairs.items()
            ],
            many=True,
        )

    def __repr__(self) -> str:
        return f"PersistentMap({self.namespace!r})"


def _check_key(key: Any) -> str:
    if not isinstance(key, str):
        raise TypeError(f"persistent map keys must be str, not {type(key).__name__}")
    return key
