"""SQLite document store.

Items are JSON documents addressed by a string key. Besides get/put/query the
store offers a path-scoped conditional update (the primitive the brief state
machine and answer upsert are built on): it sets or removes individual
dotted paths inside one document inside a single IMMEDIATE transaction, and
only if every supplied condition holds.
"""

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..config import get_settings
from ..errors import ConditionalWriteFailedError

_MISSING = object()


@dataclass(frozen=True)
class Exists:
    """The item (path=None) or a path inside it must exist."""
    path: Optional[str] = None


@dataclass(frozen=True)
class NotExists:
    path: Optional[str] = None


@dataclass(frozen=True)
class Equals:
    path: str
    value: Any


@dataclass(frozen=True)
class IfNotExists:
    """Set value: only applied when the target path is absent."""
    value: Any


Condition = Any  # Exists | NotExists | Equals


class DocumentStore(Protocol):
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def put(self, key: str, item: Mapping[str, Any], conditions: Sequence[Condition] = ()) -> None:
        ...

    async def update(
        self,
        key: str,
        set_values: Optional[Mapping[str, Any]] = None,
        remove: Sequence[str] = (),
        conditions: Sequence[Condition] = (),
    ) -> Dict[str, Any]:
        ...

    async def query(self, key_prefix: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        ...


# --- dotted path helpers ----------------------------------------------------

def get_path(doc: Optional[Mapping[str, Any]], path: str) -> Any:
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return _MISSING
        node = node[part]
    return node


def has_path(doc: Optional[Mapping[str, Any]], path: str) -> bool:
    return get_path(doc, path) is not _MISSING


def set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def remove_path(doc: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    node: Any = doc
    for part in parts[:-1]:
        if not isinstance(node, dict) or part not in node:
            return
        node = node[part]
    if isinstance(node, dict):
        node.pop(parts[-1], None)


def check_condition(doc: Optional[Dict[str, Any]], condition: Condition) -> bool:
    if isinstance(condition, Exists):
        return doc is not None if condition.path is None else has_path(doc, condition.path)
    if isinstance(condition, NotExists):
        return doc is None if condition.path is None else not has_path(doc, condition.path)
    if isinstance(condition, Equals):
        return doc is not None and get_path(doc, condition.path) == condition.value
    raise TypeError(f"Unsupported condition: {condition!r}")


def first_failed(doc: Optional[Dict[str, Any]], conditions: Sequence[Condition]) -> Optional[Condition]:
    for condition in conditions:
        if not check_condition(doc, condition):
            return condition
    return None


# --- sqlite implementation ----------------------------------------------------

SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    key TEXT PRIMARY KEY,
    body TEXT NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


class SqliteDocumentStore:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().DB_PATH

    @contextmanager
    def get_db_connection(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self):
        with self.get_db_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    # sync core -------------------------------------------------------------

    @staticmethod
    def _load(conn, key: str) -> Optional[Dict[str, Any]]:
        row = conn.execute("SELECT body FROM items WHERE key = ?", (key,)).fetchone()
        return json.loads(row["body"]) if row else None

    @staticmethod
    def _save(conn, key: str, doc: Mapping[str, Any]) -> None:
        conn.execute(
            """
            INSERT INTO items (key, body, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET body = excluded.body, updated_at = CURRENT_TIMESTAMP
            """,
            (key, json.dumps(doc)),
        )

    def get_sync(self, key: str) -> Optional[Dict[str, Any]]:
        with self.get_db_connection() as conn:
            return self._load(conn, key)

    def put_sync(self, key: str, item: Mapping[str, Any], conditions: Sequence[Condition] = ()) -> None:
        with self.get_db_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._load(conn, key)
                failed = first_failed(current, conditions)
                if failed is not None:
                    raise ConditionalWriteFailedError(key, failed)
                self._save(conn, key, item)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def update_sync(
        self,
        key: str,
        set_values: Optional[Mapping[str, Any]] = None,
        remove: Sequence[str] = (),
        conditions: Sequence[Condition] = (),
    ) -> Dict[str, Any]:
        """
        Atomic path-scoped update. Creates the item when it does not exist and
        no condition forbids it. Returns the stored document.
        """
        with self.get_db_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._load(conn, key)
                failed = first_failed(current, conditions)
                if failed is not None:
                    raise ConditionalWriteFailedError(key, failed)

                doc = current if current is not None else {}
                for path, value in (set_values or {}).items():
                    if isinstance(value, IfNotExists):
                        if not has_path(doc, path):
                            set_path(doc, path, value.value)
                    else:
                        set_path(doc, path, value)
                for path in remove:
                    remove_path(doc, path)

                self._save(conn, key, doc)
                conn.commit()
                return doc
            except Exception:
                conn.rollback()
                raise

    def query_sync(self, key_prefix: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        sql = "SELECT body FROM items WHERE substr(key, 1, ?) = ? ORDER BY key"
        params: Tuple[Any, ...] = (len(key_prefix), key_prefix)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        with self.get_db_connection() as conn:
            return [json.loads(row["body"]) for row in conn.execute(sql, params).fetchall()]

    # async surface -------------------------------------------------------------

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self.get_sync, key)

    async def put(self, key: str, item: Mapping[str, Any], conditions: Sequence[Condition] = ()) -> None:
        await asyncio.to_thread(self.put_sync, key, item, conditions)

    async def update(
        self,
        key: str,
        set_values: Optional[Mapping[str, Any]] = None,
        remove: Sequence[str] = (),
        conditions: Sequence[Condition] = (),
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(self.update_sync, key, set_values, remove, conditions)

    async def query(self, key_prefix: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.query_sync, key_prefix, limit)
