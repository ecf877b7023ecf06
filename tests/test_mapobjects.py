import pytest

from floormap.database import Database, LockedError, NotFoundError
from floormap.mapobjects import (
    insert_new_mapobject,
    insert_new_upload,
    set_mapobject_arrow_xy,
    set_mapobject_deleted,
    set_mapobject_labelsize,
    set_mapobject_name_description_meta,
    set_mapobject_typeobjectuuid,
    set_mapobject_xy,
)
from floormap.models import MapObject, Upload
from floormap.timestamps import FlexTimestamp
from floormap.uuids import FlexUuid


@pytest.fixture
def db():
    with Database(":memory:") as database:
        yield database


@pytest.fixture
def parent():
    return FlexUuid.new()


@pytest.fixture
def obj(db, parent):
    return insert_new_mapobject(db, parent, "Printer", "near door", 10, 20)


def test_insert_new_mapobject(db, parent, obj):
    found = db.get_mapobject(obj)
    assert found.Name == "Printer"
    assert found.Description == "near door"
    assert (found.MapX, found.MapY) == (10, 20)
    assert found.ParentMapUUID == parent
    assert found.Deleted is False


def test_set_xy(db, obj):
    assert set_mapobject_xy(db, obj, 5, 6, "web") is True
    found = db.get_mapobject(obj)
    assert (found.MapX, found.MapY) == (5, 6)


def test_set_arrow_xy(db, obj):
    set_mapobject_arrow_xy(db, obj, -3, 4, "web")
    found = db.get_mapobject(obj)
    assert (found.ArrowX, found.ArrowY) == (-3, 4)
    assert (found.MapX, found.MapY) == (10, 20)


def test_update_moves_updated_at(db, parent):
    old = FlexTimestamp.from_timestamp(0)
    item = MapObject(ParentMapUUID=parent, UpdatedAt=old)
    db.insert(item)
    set_mapobject_xy(db, item.MapObjectUUID, 1, 1, "web")
    assert db.get_mapobject(item.MapObjectUUID).UpdatedAt > old


def test_missing_object_raises_not_found(db):
    with pytest.raises(NotFoundError):
        set_mapobject_xy(db, FlexUuid.new(), 1, 2, "web")


def test_locked_object_raises(db, parent):
    item = MapObject(ParentMapUUID=parent, Locked=True, MapX=7)
    db.insert(item)
    with pytest.raises(LockedError):
        set_mapobject_xy(db, item.MapObjectUUID, 1, 2, "web")
    assert db.get_mapobject(item.MapObjectUUID).MapX == 7


def test_set_deleted(db, obj):
    assert set_mapobject_deleted(db, obj, True) is True
    with pytest.raises(NotFoundError):
        db.get_mapobject(obj)
    (row,) = db.select(MapObject, '"MapObjectUUID" = ?', (obj,))
    assert row.Deleted is True
    assert row.DeletedAt == row.UpdatedAt


def test_deleted_object_cannot_be_edited(db, obj):
    set_mapobject_deleted(db, obj, True)
    with pytest.raises(NotFoundError):
        set_mapobject_labelsize(db, obj, 3)


def test_set_name_description_meta(db, obj):
    set_mapobject_name_description_meta(db, obj, "Desk", "by window", "meta")
    found = db.get_mapobject(obj)
    assert (found.Name, found.Description, found.Meta) == ("Desk", "by window", "meta")


def test_set_labelsize(db, obj):
    set_mapobject_labelsize(db, obj, 14)
    assert db.get_mapobject(obj).LabelSize == 14


def test_set_and_clear_typeobject(db, obj):
    kind = FlexUuid.new()
    set_mapobject_typeobjectuuid(db, obj, kind)
    assert db.get_mapobject(obj).TypeObjectUUID == kind
    set_mapobject_typeobjectuuid(db, obj, None)
    assert db.get_mapobject(obj).TypeObjectUUID is None


def test_insert_new_upload(db, tmp_path):
    source = tmp_path / "incoming.bin"
    source.write_bytes(b"data")
    root = tmp_path / "uploads"
    owner = FlexUuid.new()
    upload_uuid = insert_new_upload(db, "alice", owner, source, "plan.pdf", "first", root)
    stored = root / str(owner) / str(upload_uuid) / "plan.pdf"
    assert stored.read_bytes() == b"data"
    (record,) = db.select(Upload)
    assert record.UploadUUID == upload_uuid
    assert record.RelatedToUUID == owner
    assert record.CreatedBy == "alice"
    assert record.Message == "first"
    assert record.ServerFileName == f"{owner}/{upload_uuid}/plan.pdf"


def test_insert_new_upload_missing_file(db, tmp_path):
    result = insert_new_upload(
        db, "alice", FlexUuid.new(), tmp_path / "absent", "x.txt", "", tmp_path / "uploads"
    )
    assert result is None
    assert db.count(Upload) == 0