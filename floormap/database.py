"""Connection to the floor map database and lookups by identifier."""

from __future__ import annotations

import functools
import os
import sqlite3
import threading
from typing import Any, Mapping, Optional, Sequence, TypeVar

from dotenv import find_dotenv, load_dotenv

from .models import FloorMap, FloorPlan, MapObject, Record, create_schema
from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "NotFoundError",
    "DuplicateRecordError",
    "LockedError",
    "Database",
    "get_db",
]

R = TypeVar("R", bound=Record)


class NotFoundError(LookupError):
    """No record matches the requested identifier."""


class DuplicateRecordError(LookupError):
    """More than one record matches an identifier that should be unique."""


class LockedError(RuntimeError):
    """The record is locked against changes."""


def _sql_value(value: Any) -> Any:
    if isinstance(value, FlexUuid):
        return str(value)
    if isinstance(value, FlexTimestamp):
        return value.to_sql()
    return value


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _path_from_url(url: str) -> str:
    if url.startswith("sqlite://"):
        return url[len("sqlite://"):] or ":memory:"
    if "://" in url:
        raise ValueError(f"unsupported database URL {url!r}")
    return url


class Database:
    """A SQLite database holding the floor map tables."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(_path_from_url(url), check_same_thread=False)
        except sqlite3.Error as exc:
            raise ConnectionError(f"Error connecting to {url}: {exc}") from exc
        create_schema(self._conn)

    @classmethod
    def from_env(cls) -> Database:
        """Open the database named by ``DATABASE_URL`` (a ``.env`` file is honoured)."""
        load_dotenv(find_dotenv(usecwd=True))
        url = os.environ.get("DATABASE_URL")
        if not url:
            raise RuntimeError("DATABASE_URL must be set")
        return cls(url)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def insert(self, record: Record) -> None:
        """Insert one record; conflicts raise :class:`sqlite3.IntegrityError`."""
        model = type(record)
        names = model.column_names()
        columns = ", ".join(_quote(n) for n in names)
        marks = ", ".join("?" for _ in names)
        sql = f"INSERT INTO {_quote(model.TABLE)} ({columns}) VALUES ({marks})"
        with self._lock, self._conn:
            self._conn.execute(sql, record.to_row())

    def select(
        self,
        model: type[R],
        where: Optional[str] = None,
        params: Sequence[Any] = (),
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[R]:
        """Load the records of ``model`` that match ``where``."""
        columns = ", ".join(_quote(n) for n in model.column_names())
        sql = f"SELECT {columns} FROM {_quote(model.TABLE)}"
        args = [_sql_value(p) for p in params]
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        if limit is not None:
            sql += " LIMIT ?"
            args.append(int(limit))
        with self._lock:
            rows = self._conn.execute(sql, args).fetchall()
        return [model.from_row(row) for row in rows]

    def update(
        self,
        model: type[Record],
        values: Mapping[str, Any],
        where: Optional[str] = None,
        params: Sequence[Any] = (),
    ) -> int:
        """Set ``values`` on the matching rows; returns how many rows changed."""
        if not values:
            raise ValueError("nothing to update")
        known = set(model.column_names())
        unknown = [name for name in values if name not in known]
        if unknown:
            raise ValueError(f"{model.__name__}: unknown columns {', '.join(unknown)}")
        assignments = ", ".join(f"{_quote(name)} = ?" for name in values)
        sql = f"UPDATE {_quote(model.TABLE)} SET {assignments}"
        args = [_sql_value(v) for v in values.values()]
        if where:
            sql += f" WHERE {where}"
            args.extend(_sql_value(p) for p in params)
        with self._lock, self._conn:
            return self._conn.execute(sql, args).rowcount

    def count(self, model: type[Record], where: Optional[str] = None, params: Sequence[Any] = ()) -> int:
        """Number of rows of ``model`` that match ``where``."""
        sql = f"SELECT COUNT(*) FROM {_quote(model.TABLE)}"
        if where:
            sql += f" WHERE {where}"
        with self._lock:
            (result,) = self._conn.execute(sql, [_sql_value(p) for p in params]).fetchone()
        return int(result)

    def _get_by(self, model: type[R], id_field: str, item_id: FlexUuid) -> R:
        found = self.select(
            model, f'"Deleted" = 0 AND {_quote(id_field)} = ?', (item_id,), limit=2
        )
        if len(found) == 1:
            return found[0]
        thing = f"{model.__name__} with {id_field} == {item_id}"
        if not found:
            raise NotFoundError(f"{thing} not found")
        raise DuplicateRecordError(f"more than one {thing}")

    def get_mapobject(self, item_id: FlexUuid) -> MapObject:
        """The live (not deleted) map object with this identifier."""
        return self._get_by(MapObject, "MapObjectUUID", item_id)

    def get_floormap(self, item_id: FlexUuid) -> FloorMap:
        """The live (not deleted) floor map with this identifier."""
        return self._get_by(FloorMap, "FloorMapUUID", item_id)

    def get_floorplan(self, item_id: FlexUuid) -> FloorPlan:
        """The live (not deleted) floor plan with this identifier."""
        return self._get_by(FloorPlan, "FloorPlanUUID", item_id)


@functools.lru_cache(maxsize=None)
def get_db() -> Database:
    """The shared database configured by the environment."""
    return Database.from_env()