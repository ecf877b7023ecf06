"""Map objects placed on floor maps, and uploaded files."""

from __future__ import annotations

import os
import shutil
import sqlite3
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from .database import Database, LockedError, NotFoundError
from .models import MapObject, Record, Upload
from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "DEFAULT_UPLOAD_ROOT",
    "insert_new_mapobject",
    "insert_new_upload",
    "set_mapobject_xy",
    "set_mapobject_arrow_xy",
    "set_mapobject_deleted",
    "set_mapobject_name_description_meta",
    "set_mapobject_labelsize",
    "set_mapobject_typeobjectuuid",
]

DEFAULT_UPLOAD_ROOT = "/var/a3s/http/uploads"

_BY_UUID = '"MapObjectUUID" = ?'
_LIVE_BY_UUID = '"MapObjectUUID" = ? AND "Deleted" = 0'


def _insert_quietly(db: Database, record: Record) -> None:
    try:
        db.insert(record)
    except sqlite3.IntegrityError:
        pass


def _editable_mapobject(db: Database, mapobject_uuid: FlexUuid) -> MapObject:
    try:
        mapobject = db.get_mapobject(mapobject_uuid)
    except LookupError as exc:
        raise NotFoundError(f"mapobject {mapobject_uuid} - error: {exc}") from exc
    if mapobject.Locked:
        raise LockedError(f"map object {mapobject_uuid} - is locked")
    return mapobject


def _update_live(db: Database, mapobject_uuid: FlexUuid, values: Mapping[str, Any]) -> bool:
    _editable_mapobject(db, mapobject_uuid)
    db.update(
        MapObject,
        {**values, "UpdatedAt": FlexTimestamp.now()},
        _LIVE_BY_UUID,
        (mapobject_uuid,),
    )
    return True


def insert_new_mapobject(
    db: Database,
    parent_map_uuid: FlexUuid,
    name: str,
    description: str,
    x: int,
    y: int,
) -> FlexUuid:
    """Create a map object on a floor map and return its identifier."""
    item = MapObject(
        Name=name,
        Description=description,
        MapX=x,
        MapY=y,
        ParentMapUUID=parent_map_uuid,
    )
    _insert_quietly(db, item)
    return item.MapObjectUUID


def insert_new_upload(
    db: Database,
    username: str,
    upload_for_uuid: FlexUuid,
    temp_filename: Union[str, os.PathLike],
    original_filename: str,
    comments: str,
    upload_root: Union[str, os.PathLike] = DEFAULT_UPLOAD_ROOT,
) -> Optional[FlexUuid]:
    """Store an uploaded file under ``upload_root`` and record it.

    Returns the upload identifier, or None if the file could not be stored.
    """
    upload_uuid = FlexUuid.new()
    dir_name = f"{upload_for_uuid}/{upload_uuid}"
    full_dir = Path(upload_root) / str(upload_for_uuid) / str(upload_uuid)
    try:
        full_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy(temp_filename, full_dir / original_filename)
    except OSError:
        return None
    item = Upload(
        UploadUUID=upload_uuid,
        RelatedToUUID=upload_for_uuid,
        CreatedBy=username,
        OriginalFileName=original_filename,
        ServerFileName=f"{dir_name}/{original_filename}",
        Message=comments,
    )
    _insert_quietly(db, item)
    return item.UploadUUID


def set_mapobject_xy(db: Database, mapobject_uuid: FlexUuid, x: int, y: int, user: str) -> bool:
    """Move a map object."""
    return _update_live(db, mapobject_uuid, {"MapX": x, "MapY": y})


def set_mapobject_arrow_xy(
    db: Database, mapobject_uuid: FlexUuid, x: int, y: int, user: str
) -> bool:
    """Set the arrow offset of a map object."""
    return _update_live(db, mapobject_uuid, {"ArrowX": x, "ArrowY": y})


def set_mapobject_deleted(db: Database, mapobject_uuid: FlexUuid, deleted: bool = True) -> bool:
    """Mark a map object as deleted."""
    _editable_mapobject(db, mapobject_uuid)
    now = FlexTimestamp.now()
    # Deleted records are invisible to lookups, so this only ever deletes.
    db.update(
        MapObject,
        {"Deleted": True, "DeletedAt": now, "UpdatedAt": now},
        _BY_UUID,
        (mapobject_uuid,),
    )
    return True


def set_mapobject_name_description_meta(
    db: Database, mapobject_uuid: FlexUuid, name: str, description: str, meta: str
) -> bool:
    """Set the name, description and meta text of a map object."""
    return _update_live(
        db, mapobject_uuid, {"Name": name, "Description": description, "Meta": meta}
    )


def set_mapobject_labelsize(db: Database, mapobject_uuid: FlexUuid, labelsize: int) -> bool:
    """Set the label size of a map object."""
    return _update_live(db, mapobject_uuid, {"LabelSize": labelsize})


def set_mapobject_typeobjectuuid(
    db: Database, mapobject_uuid: FlexUuid, typeobject_uuid: Optional[FlexUuid]
) -> bool:
    """Set or clear the type object of a map object."""
    return _update_live(db, mapobject_uuid, {"TypeObjectUUID": typeobject_uuid})