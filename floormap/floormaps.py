"""Floor plans and floor maps: import, export and edits."""

from __future__ import annotations

import json
import re
import shutil
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .database import Database, LockedError, NotFoundError
from .models import FloorMap, FloorPlan, MapObject, Record, Upload
from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "DbExport",
    "split_meta_from_str",
    "put_json",
    "get_json",
    "insert_new_floorplan",
    "set_floormap_file",
    "set_floormap_deleted",
    "set_floormap_name",
    "insert_new_floormap",
    "set_floormap_clip",
    "set_floormap_legend",
]

_EXPORT_LIMIT = 20000
_RE_TILDE = re.compile(r"~(?P<meta>[^~]*)~")
_BY_UUID = '"FloorMapUUID" = ?'
_LIVE_BY_UUID = '"FloorMapUUID" = ? AND "Deleted" = 0'


@dataclass
class DbExport:
    """The exported contents of the database."""

    FloorPlans: list[FloorPlan] = field(default_factory=list)
    FloorMaps: list[FloorMap] = field(default_factory=list)
    MapObjects: list[MapObject] = field(default_factory=list)
    Uploads: list[Upload] = field(default_factory=list)

    _MODELS = {
        "FloorPlans": FloorPlan,
        "FloorMaps": FloorMap,
        "MapObjects": MapObject,
        "Uploads": Upload,
    }

    def to_dict(self) -> dict[str, Any]:
        return {key: [r.to_dict() for r in getattr(self, key)] for key in self._MODELS}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DbExport:
        """Build an export from JSON data; missing lists are empty."""
        if not isinstance(data, Mapping):
            raise ValueError(f"expected an object, got {data!r}")
        values = {}
        for key, model in cls._MODELS.items():
            items = data.get(key, [])
            if not isinstance(items, list):
                raise ValueError(f"{key}: expected a list")
            values[key] = [model.from_dict(item) for item in items]
        return cls(**values)


def split_meta_from_str(text: str) -> tuple[str, str]:
    """Split ``~meta~`` out of a text: the first meta, and the text with every one removed."""
    match = _RE_TILDE.search(text)
    if match is None:
        return "", text
    return match["meta"], _RE_TILDE.sub("", text)


def _insert_quietly(db: Database, record: Record) -> None:
    try:
        db.insert(record)
    except sqlite3.IntegrityError:
        pass


def put_json(db: Database, data: str) -> None:
    """Load an export into the database; records already present are kept."""
    export = DbExport.from_dict(json.loads(data))
    for plan in export.FloorPlans:
        _insert_quietly(db, plan)
    for floormap in export.FloorMaps:
        if floormap.SortOrder == 0:
            floormap.SortOrder = 1 + db.count(
                FloorMap, '"ParentFloorPlanUUID" = ?', (floormap.ParentFloorPlanUUID,)
            )
        _insert_quietly(db, floormap)
    for mapobject in export.MapObjects:
        if mapobject.Meta == "":
            mapobject.Meta, mapobject.Description = split_meta_from_str(mapobject.Description)
        _insert_quietly(db, mapobject)
    for upload in export.Uploads:
        _insert_quietly(db, upload)


def get_json(db: Database) -> str:
    """The live records as pretty-printed JSON."""
    def live(model):
        return db.select(model, '"Deleted" = 0', limit=_EXPORT_LIMIT)

    export = DbExport(
        FloorPlans=live(FloorPlan),
        FloorMaps=live(FloorMap),
        MapObjects=live(MapObject),
        Uploads=live(Upload),
    )
    return json.dumps(export.to_dict(), indent=2, ensure_ascii=False)


def insert_new_floorplan(
    db: Database,
    name: str,
    description: str,
    path: str,
    parent: Optional[FlexUuid] = None,
) -> FlexUuid:
    """Create a floor plan and return its identifier."""
    plan = FloorPlan(
        Name=name,
        Description=description,
        FloorPlanPath=path,
        ParentFloorPlanUUID=parent,
        CreatedAt=FlexTimestamp.now(),
    )
    _insert_quietly(db, plan)
    return plan.FloorPlanUUID


def _editable_floormap(db: Database, floormap_uuid: FlexUuid, action: str) -> FloorMap:
    try:
        floormap = db.get_floormap(floormap_uuid)
    except LookupError as exc:
        raise NotFoundError(f"floormap {floormap_uuid} - error {action}: {exc}") from exc
    if floormap.Locked:
        raise LockedError(f"floormap {floormap_uuid} - is locked")
    return floormap


def set_floormap_file(db: Database, floormap_uuid: FlexUuid, filename: str) -> bool:
    """Copy an image (and its thumbnail) into the plan directory as a new version."""
    floormap = _editable_floormap(db, floormap_uuid, "setting floormap")
    try:
        plan = db.get_floorplan(floormap.ParentFloorPlanUUID)
    except LookupError as exc:
        raise NotFoundError(
            f"floormap {floormap_uuid} - error getting floorplan "
            f"{floormap.ParentFloorPlanUUID}: {exc}"
        ) from exc
    version = floormap.FloorMapFileVersion + 1
    dst_name = f"{plan.FloorPlanPath}/{floormap_uuid}-{version}.png"
    for src, dst in ((filename, dst_name), (f"{filename}-thumb.png", f"{dst_name}-thumb.png")):
        try:
            shutil.copy(src, dst)
        except OSError as exc:
            raise NotFoundError(
                f"floormap {floormap_uuid} - error copying file {src} to {dst}: {exc}"
            ) from exc
    db.update(
        FloorMap,
        {
            "FloorMapFileName": dst_name,
            "FloorMapFileVersion": version,
            "UpdatedAt": FlexTimestamp.now(),
        },
        _BY_UUID,
        (floormap_uuid,),
    )
    return True


def set_floormap_deleted(db: Database, floormap_uuid: FlexUuid, deleted: bool = True) -> bool:
    """Mark a floor map as deleted."""
    _editable_floormap(db, floormap_uuid, "deleting")
    # Deleted records are invisible to lookups, so this only ever deletes.
    db.update(
        FloorMap,
        {"Deleted": True, "UpdatedAt": FlexTimestamp.now()},
        _BY_UUID,
        (floormap_uuid,),
    )
    return True


def set_floormap_name(db: Database, floormap_uuid: FlexUuid, name: str) -> bool:
    """Rename a floor map."""
    _editable_floormap(db, floormap_uuid, "setting name")
    db.update(
        FloorMap,
        {"Name": name, "UpdatedAt": FlexTimestamp.now()},
        _BY_UUID,
        (floormap_uuid,),
    )
    return True


def insert_new_floormap(
    db: Database,
    name: str,
    description: str,
    full_text: str,
    filename: str,
    parent: FlexUuid,
    insert_before_order: int,
) -> FlexUuid:
    """Insert a floor map into a plan before ``insert_before_order``, shifting later ones."""
    now = FlexTimestamp.now()
    sort_order = 1 + db.count(
        FloorMap,
        '"SortOrder" < ? AND "ParentFloorPlanUUID" = ?',
        (insert_before_order, parent),
    )
    later = db.select(
        FloorMap, '"ParentFloorPlanUUID" = ? AND "SortOrder" >= ?', (parent, sort_order)
    )
    for floormap in later:
        db.update(
            FloorMap,
            {"SortOrder": floormap.SortOrder + 1, "UpdatedAt": now},
            _BY_UUID,
            (floormap.FloorMapUUID,),
        )
    new_item = FloorMap(
        Name=name,
        Description=description,
        FullText=full_text,
        FloorMapFileName=filename,
        ParentFloorPlanUUID=parent,
        SortOrder=sort_order,
    )
    _insert_quietly(db, new_item)
    return new_item.FloorMapUUID


def set_floormap_clip(
    db: Database, floormap_uuid: FlexUuid, left: int, top: int, width: int, height: int
) -> bool:
    """Set the visible rectangle of a floor map image."""
    _editable_floormap(db, floormap_uuid, "setting clip")
    db.update(
        FloorMap,
        {
            "ClipLeft": left,
            "ClipTop": top,
            "ClipWidth": width,
            "ClipHeight": height,
            "UpdatedAt": FlexTimestamp.now(),
        },
        _LIVE_BY_UUID,
        (floormap_uuid,),
    )
    return True


def set_floormap_legend(
    db: Database, floormap_uuid: FlexUuid, left: int, top: int, font_size: int
) -> bool:
    """Set the legend position and font size of a floor map."""
    _editable_floormap(db, floormap_uuid, "setting legend")
    db.update(
        FloorMap,
        {
            "LegendLeft": left,
            "LegendTop": top,
            "LegendFontSize": font_size,
            "UpdatedAt": FlexTimestamp.now(),
        },
        _LIVE_BY_UUID,
        (floormap_uuid,),
    )
    return True