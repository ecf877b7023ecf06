"""Database records and their JSON and row forms."""

import functools
import sqlite3
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Mapping, Optional, Sequence, Union, get_args, get_origin

from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "Record",
    "Comment",
    "FloorMap",
    "FloorPlan",
    "Job",
    "Log",
    "MapObject",
    "Service",
    "Upload",
    "MODELS",
    "create_schema",
]

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1

_SQL_TYPES = {
    str: "TEXT",
    int: "INTEGER",
    bool: "BOOLEAN",
    FlexUuid: "TEXT",
    FlexTimestamp: "TIMESTAMP",
}


@dataclass(frozen=True)
class _Column:
    name: str
    kind: type
    nullable: bool


@functools.lru_cache(maxsize=None)
def _columns(cls: type) -> tuple:
    result = []
    for f in fields(cls):
        hint = f.type
        nullable = False
        if get_origin(hint) is Union:
            args = [arg for arg in get_args(hint) if arg is not type(None)]
            nullable = True
            hint = args[0]
        result.append(_Column(f.name, hint, nullable))
    return tuple(result)


def _check_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name}: expected an integer, got {value!r}")
    if not _I32_MIN <= value <= _I32_MAX:
        raise ValueError(f"{name}: {value} is out of range")
    return value


def _decode_json(column: _Column, value: object) -> Any:
    if value is None:
        if column.nullable:
            return None
        raise ValueError(f"{column.name}: null is not allowed")
    kind = column.kind
    if kind is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{column.name}: expected a boolean, got {value!r}")
        return value
    if kind is int:
        return _check_int(column.name, value)
    if kind is str:
        if not isinstance(value, str):
            raise ValueError(f"{column.name}: expected a string, got {value!r}")
        return value
    try:
        return kind.from_json(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{column.name}: {exc}") from None


def _encode_json(value: Any) -> Any:
    if isinstance(value, (FlexUuid, FlexTimestamp)):
        return value.to_json()
    return value


def _encode_sql(value: Any) -> Any:
    if isinstance(value, FlexUuid):
        return str(value)
    if isinstance(value, FlexTimestamp):
        return value.to_sql()
    return value


def _decode_sql(column: _Column, value: object) -> Any:
    if value is None:
        if column.nullable:
            return None
        raise ValueError(f"{column.name}: unexpected NULL")
    kind = column.kind
    if kind is bool:
        return bool(value)
    if kind is int:
        return int(value)  # type: ignore[arg-type]
    if kind is str:
        return str(value)
    if kind is FlexUuid:
        return FlexUuid.parse(value)  # type: ignore[arg-type]
    return FlexTimestamp.from_sql(value)


class Record:
    """Common behaviour of the table records."""

    TABLE: ClassVar[str]

    @classmethod
    def column_names(cls) -> tuple:
        """Column names in table order."""
        return tuple(column.name for column in _columns(cls))

    def to_dict(self) -> dict:
        """The JSON-ready form of the record."""
        return {c.name: _encode_json(getattr(self, c.name)) for c in _columns(type(self))}

    @classmethod
    def from_dict(cls, data: Mapping):
        """Build a record from JSON data; missing fields take their defaults."""
        if not isinstance(data, Mapping):
            raise ValueError(f"{cls.__name__}: expected an object, got {data!r}")
        values = {c.name: _decode_json(c, data[c.name]) for c in _columns(cls) if c.name in data}
        return cls(**values)

    def to_row(self) -> tuple:
        """The values in column order, as stored in the database."""
        return tuple(_encode_sql(getattr(self, c.name)) for c in _columns(type(self)))

    @classmethod
    def from_row(cls, row: Sequence):
        """Build a record from a database row in column order."""
        columns = _columns(cls)
        values = tuple(row)
        if len(values) != len(columns):
            raise ValueError(
                f"{cls.__name__}: expected {len(columns)} columns, got {len(values)}"
            )
        return cls(**{c.name: _decode_sql(c, v) for c, v in zip(columns, values)})


@dataclass
class Comment(Record):
    TABLE: ClassVar[str] = "Comments"

    RecordUUID: FlexUuid = field(default_factory=FlexUuid.new)
    Deleted: bool = False
    ChangesetID: int = 0
    CommentID: int = 0


@dataclass
class FloorMap(Record):
    TABLE: ClassVar[str] = "FloorMaps"

    FloorMapUUID: FlexUuid = field(default_factory=FlexUuid.new)
    Deleted: bool = False
    Name: str = ""
    Description: str = ""
    FullText: str = ""
    ParentFloorPlanUUID: FlexUuid = field(default_factory=FlexUuid.new)
    FloorMapFileName: str = ""
    FloorMapFileVersion: int = 0
    Locked: bool = False
    LockedBy: Optional[str] = None
    LockedAt: Optional[FlexTimestamp] = None
    SortOrder: int = 0
    ClipLeft: int = 0
    ClipTop: int = 0
    ClipWidth: int = 0
    ClipHeight: int = 0
    LegendTop: int = 0
    LegendLeft: int = 0
    LegendFontSize: int = 0
    UpdatedAt: FlexTimestamp = field(default_factory=FlexTimestamp.now)


@dataclass
class FloorPlan(Record):
    TABLE: ClassVar[str] = "FloorPlans"

    FloorPlanUUID: FlexUuid = field(default_factory=FlexUuid.new)
    Deleted: bool = False
    Active: bool = False
    Name: str = ""
    Description: str = ""
    ParentFloorPlanUUID: Optional[FlexUuid] = None
    FloorPlanPath: str = ""
    CreatedAt: FlexTimestamp = field(default_factory=FlexTimestamp.now)
    UpdatedAt: FlexTimestamp = field(default_factory=FlexTimestamp.now)


@dataclass
class Job(Record):
    TABLE: ClassVar[str] = "Jobs"

    RecordUUID: FlexUuid = field(default_factory=FlexUuid.new)
    JobGrouName: str = ""
    InstanceID: int = 0
    JobID: str = ""
    JobPID: int = 0
    ParentJobID: Optional[str] = None
    changeset_id: int = 0
    patchset_id: int = 0
    command: str = ""
    command_pid: Optional[int] = None
    remote_host: Optional[str] = None
    status_message: str = ""
    status_updated_at: Optional[FlexTimestamp] = None
    started_at: Optional[FlexTimestamp] = None
    finished_at: Optional[FlexTimestamp] = None
    return_success: bool = False
    return_code: Optional[int] = None
    trigger_event_id: Optional[str] = None


@dataclass
class Log(Record):
    TABLE: ClassVar[str] = "Logs"

    LogUUID: FlexUuid = field(default_factory=FlexUuid.new)
    LogTimestamp: FlexTimestamp = field(default_factory=FlexTimestamp.now)
    Key1: int = 0
    Key2: int = 0
    Key3UUID: FlexUuid = field(default_factory=FlexUuid.new)
    Key4UUID: FlexUuid = field(default_factory=FlexUuid.new)
    Username: str = ""
    Source: str = ""
    Message: str = ""
    Data1: str = ""
    Data2: str = ""


@dataclass
class MapObject(Record):
    TABLE: ClassVar[str] = "MapObjects"

    MapObjectUUID: FlexUuid = field(default_factory=FlexUuid.new)
    Deleted: bool = False
    DeletedBy: Optional[str] = None
    DeletedAt: Optional[FlexTimestamp] = None
    Locked: bool = False
    LockedBy: Optional[str] = None
    LockedAt: Optional[FlexTimestamp] = None
    Name: str = ""
    LabelSize: int = 0
    Description: str = ""
    Meta: str = ""
    ParentMapUUID: FlexUuid = field(default_factory=FlexUuid.new)
    TypeObjectUUID: Optional[FlexUuid] = None
    MapX: int = 0
    MapY: int = 0
    ArrowX: int = 0
    ArrowY: int = 0
    UpdatedAt: FlexTimestamp = field(default_factory=FlexTimestamp.now)


@dataclass
class Service(Record):
    TABLE: ClassVar[str] = "Services"

    ServiceUUID: FlexUuid = field(default_factory=FlexUuid.new)
    Deleted: bool = False
    MenuOrder: int = 0
    ServiceName: str = ""
    ServiceLabel: str = ""


@dataclass
class Upload(Record):
    TABLE: ClassVar[str] = "Uploads"

    UploadUUID: FlexUuid = field(default_factory=FlexUuid.new)
    RelatedToUUID: FlexUuid = field(default_factory=FlexUuid.new)
    Deleted: bool = False
    CreatedBy: str = ""
    CreatedAt: FlexTimestamp = field(default_factory=FlexTimestamp.now)
    UpdatedAt: FlexTimestamp = field(default_factory=FlexTimestamp.now)
    OriginalFileName: str = ""
    ServerFileName: str = ""
    ServerFileSize: int = 0
    MimeType: str = ""
    Checksum: str = ""
    ChecksumType: str = ""
    Key1: int = 0
    Key2: int = 0
    Key3UUID: FlexUuid = field(default_factory=FlexUuid.new)
    Key4UUID: FlexUuid = field(default_factory=FlexUuid.new)
    Message: str = ""
    Data1: str = ""
    Data2: str = ""


MODELS: tuple = (
    Comment,
    FloorMap,
    FloorPlan,
    Job,
    Log,
    MapObject,
    Service,
    Upload,
)


def _table_sql(model: type) -> str:
    lines = []
    for index, column in enumerate(_columns(model)):
        parts = [f'"{column.name}"', _SQL_TYPES[column.kind]]
        if not column.nullable:
            parts.append("NOT NULL")
        if index == 0:
            parts.append("PRIMARY KEY")
        lines.append(" ".join(parts))
    body = ",\n    ".join(lines)
    return f'CREATE TABLE IF NOT EXISTS "{model.TABLE}" (\n    {body}\n)'


def create_schema(connection: sqlite3.Connection) -> None:
    """Create every table that does not exist yet."""
    for model in MODELS:
        connection.execute(_table_sql(model))
    connection.commit()