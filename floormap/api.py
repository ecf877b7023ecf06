"""Records exchanged by the JSON API and the queries behind them."""

import dataclasses
import enum
import functools
import json
import os
from dataclasses import dataclass
from typing import Any, Optional, Union, get_args, get_origin

from .database import Database
from .models import FloorMap, FloorPlan, MapObject, Record, Service, Upload
from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "ServiceRecord",
    "FloorMapSummary",
    "FloorPlanSummary",
    "FloorMapSetClip",
    "FloorMapSetLegend",
    "MapObjectsResponse",
    "MapObjectSetXY",
    "MapObjectDelete",
    "FloorMapSetName",
    "FloorMapDelete",
    "CopyOperation",
    "FloorMapCopy",
    "MapObjectSetNameDescription",
    "NewMapObject",
    "parse_record",
    "parse_records",
    "to_json_value",
    "get_all_services",
    "get_restart_epoch",
    "get_map_objects",
]

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1
_SERVICES_LIMIT = 2000
_CHANGES_LIMIT = 20000


@dataclass
class ServiceRecord:
    ServiceUUID: FlexUuid
    ServiceName: str
    ServiceLabel: str
    MenuOrder: int


@dataclass
class FloorMapSummary:
    FloorMapUUID: FlexUuid
    Name: str
    Description: str
    Deleted: bool
    ParentFloorPlanUUID: FlexUuid
    SortOrder: int
    FileVersion: int
    ClipLeft: int
    ClipTop: int
    ClipWidth: int
    ClipHeight: int
    LegendLeft: int
    LegendTop: int
    LegendFontSize: int


@dataclass
class FloorPlanSummary:
    FloorPlanUUID: FlexUuid
    Name: str
    Description: str
    Deleted: bool
    Active: bool


@dataclass
class FloorMapSetClip:
    FloorMapUUID: FlexUuid
    ClipLeft: int
    ClipTop: int
    ClipWidth: int
    ClipHeight: int


@dataclass
class FloorMapSetLegend:
    FloorMapUUID: FlexUuid
    LegendLeft: int
    LegendTop: int
    LegendFontSize: int


@dataclass
class MapObjectsResponse:
    NextPollHorizon: int
    ClientRestartEpoch: int
    FloorPlans: list
    FloorMaps: list
    MapObjects: list
    Uploads: list

    def to_dict(self) -> dict:
        """The JSON-ready form of the response."""
        return {f.name: to_json_value(getattr(self, f.name)) for f in dataclasses.fields(self)}


@dataclass
class MapObjectSetXY:
    MapObjectUUID: FlexUuid
    MapX: int
    MapY: int
    ArrowX: int
    ArrowY: int


@dataclass
class MapObjectDelete:
    MapObjectUUID: FlexUuid


@dataclass
class FloorMapSetName:
    FloorMapUUID: FlexUuid
    Name: str


@dataclass
class FloorMapDelete:
    FloorMapUUID: FlexUuid


class CopyOperation(enum.Enum):
    FloorMapOverwrite = "FloorMapOverwrite"
    FloorMapInsertBefore = "FloorMapInsertBefore"
    FloorMapInsertAfter = "FloorMapInsertAfter"


@dataclass
class FloorMapCopy:
    DstFloorMapUUID: FlexUuid
    SrcFloorMapUUID: FlexUuid
    Operation: CopyOperation


@dataclass
class MapObjectSetNameDescription:
    MapObjectUUID: FlexUuid
    TypeObjectUUID: Optional[FlexUuid]
    Name: str
    Description: str
    Meta: str
    LabelSize: int


@dataclass
class NewMapObject:
    Name: str
    Description: str
    MapX: int
    MapY: int
    LabelSize: int
    ParentMapUUID: FlexUuid
    TypeObjectUUID: Optional[FlexUuid]


@functools.lru_cache(maxsize=None)
def _field_types(cls: type) -> tuple:
    result = []
    for f in dataclasses.fields(cls):
        hint = f.type
        nullable = False
        if get_origin(hint) is Union:
            nullable = True
            hint = next(arg for arg in get_args(hint) if arg is not type(None))
        result.append((f.name, hint, nullable))
    return tuple(result)


def _decode(name: str, kind: type, value: object) -> Any:
    if kind is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{name}: expected a boolean, got {value!r}")
        return value
    if kind is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name}: expected an integer, got {value!r}")
        if not _I32_MIN <= value <= _I32_MAX:
            raise ValueError(f"{name}: {value} is out of range")
        return value
    if kind is str:
        if not isinstance(value, str):
            raise ValueError(f"{name}: expected a string, got {value!r}")
        return value
    if isinstance(kind, type) and issubclass(kind, enum.Enum):
        if not isinstance(value, str):
            raise ValueError(f"{name}: expected a variant name, got {value!r}")
        try:
            return kind(value)
        except ValueError:
            raise ValueError(f"{name}: unknown variant {value!r}") from None
    try:
        return kind.from_json(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name}: {exc}") from None


def parse_record(cls: type, data: Any):
    """Build an API record of type ``cls`` from decoded JSON data."""
    if isinstance(cls, type) and issubclass(cls, Record):
        return cls.from_dict(data)
    if not isinstance(data, dict):
        raise ValueError(f"{cls.__name__}: expected an object, got {data!r}")
    values = {}
    for name, kind, nullable in _field_types(cls):
        if name not in data:
            if nullable:
                values[name] = None
                continue
            raise ValueError(f"{cls.__name__}: missing field `{name}`")
        value = data[name]
        if value is None:
            if not nullable:
                raise ValueError(f"{cls.__name__}: {name} may not be null")
            values[name] = None
        else:
            values[name] = _decode(name, kind, value)
    return cls(**values)


def parse_records(cls: type, payload: Union[str, bytes]) -> list:
    """Parse a JSON array of API records of type ``cls``."""
    data = json.loads(payload)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array of {cls.__name__}")
    return [parse_record(cls, item) for item in data]


def to_json_value(record: Any) -> Any:
    """The JSON-ready form of an API record, model record or value."""
    if isinstance(record, Record):
        return record.to_dict()
    if isinstance(record, (FlexUuid, FlexTimestamp)):
        return record.to_json()
    if isinstance(record, enum.Enum):
        return record.value
    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        return {f.name: to_json_value(getattr(record, f.name)) for f in dataclasses.fields(record)}
    if isinstance(record, (list, tuple)):
        return [to_json_value(item) for item in record]
    return record


def get_all_services(db: Database) -> list:
    """The live services in menu order."""
    services = db.select(
        Service, '"Deleted" = 0', order_by='"MenuOrder" ASC', limit=_SERVICES_LIMIT
    )
    return [
        ServiceRecord(
            ServiceUUID=s.ServiceUUID,
            ServiceName=s.ServiceName,
            ServiceLabel=s.ServiceLabel,
            MenuOrder=s.MenuOrder,
        )
        for s in services
    ]


def get_restart_epoch(path: Union[str, os.PathLike] = "client_restart") -> int:
    """Modification time of ``path`` in whole seconds, or 0 if unavailable."""
    try:
        mtime = os.stat(path).st_mtime
    except OSError:
        return 0
    return int(mtime) if mtime >= 0 else 0


def _changed_since(db: Database, model: type, since: FlexTimestamp) -> list:
    return db.select(
        model, '"UpdatedAt" >= ?', (since,), order_by='"UpdatedAt" ASC', limit=_CHANGES_LIMIT
    )


def get_map_objects(db: Database, since: FlexTimestamp) -> MapObjectsResponse:
    """Everything changed at or after ``since``, deleted records included."""
    next_ts = FlexTimestamp.now().timestamp()
    restart_ts = get_restart_epoch()
    mapobjects = _changed_since(db, MapObject, since)
    floormaps = _changed_since(db, FloorMap, since)
    floorplans = _changed_since(db, FloorPlan, since)
    uploads = _changed_since(db, Upload, since)
    return MapObjectsResponse(
        NextPollHorizon=next_ts,
        ClientRestartEpoch=restart_ts,
        FloorPlans=[
            FloorPlanSummary(
                FloorPlanUUID=p.FloorPlanUUID,
                Name=p.Name,
                Description=p.Description,
                Deleted=p.Deleted,
                Active=p.Active,
            )
            for p in floorplans
        ],
        FloorMaps=[
            FloorMapSummary(
                FloorMapUUID=m.FloorMapUUID,
                Name=m.Name,
                Description=m.Description,
                Deleted=m.Deleted,
                ParentFloorPlanUUID=m.ParentFloorPlanUUID,
                SortOrder=m.SortOrder,
                FileVersion=m.FloorMapFileVersion,
                ClipLeft=m.ClipLeft,
                ClipTop=m.ClipTop,
                ClipWidth=m.ClipWidth,
                ClipHeight=m.ClipHeight,
                LegendLeft=m.LegendLeft,
                LegendTop=m.LegendTop,
                LegendFontSize=m.LegendFontSize,
            )
            for m in floormaps
        ],
        MapObjects=mapobjects,
        Uploads=uploads,
    )