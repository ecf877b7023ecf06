import json

import pytest

from floormap.database import Database, LockedError, NotFoundError
from floormap.floormaps import (
    DbExport,
    get_json,
    insert_new_floormap,
    insert_new_floorplan,
    put_json,
    set_floormap_clip,
    set_floormap_deleted,
    set_floormap_file,
    set_floormap_legend,
    set_floormap_name,
    split_meta_from_str,
)
from floormap.models import FloorMap, FloorPlan, MapObject, Upload
from floormap.uuids import FlexUuid


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


def _plan_maps(db, plan):
    return db.select(FloorMap, '"ParentFloorPlanUUID" = ?', (plan,), order_by='"SortOrder"')


def test_split_meta_found():
    assert split_meta_from_str("desk ~rack~ here") == ("rack", "desk  here")


def test_split_meta_absent():
    assert split_meta_from_str("plain text") == ("", "plain text")


def test_split_meta_multiple_takes_first_removes_all():
    assert split_meta_from_str("~a~mid~b~") == ("a", "mid")


def test_dbexport_defaults_and_round_trip():
    empty = DbExport.from_dict({})
    assert empty == DbExport()
    export = DbExport(FloorPlans=[FloorPlan(Name="p")], MapObjects=[MapObject(Name="m")])
    assert DbExport.from_dict(json.loads(json.dumps(export.to_dict()))) == export


def test_dbexport_rejects_non_list():
    with pytest.raises(ValueError):
        DbExport.from_dict({"FloorMaps": "nope"})


def test_get_json_key_order(db):
    assert list(json.loads(get_json(db))) == ["FloorPlans", "FloorMaps", "MapObjects", "Uploads"]


def test_json_round_trip_between_databases(db):
    plan = insert_new_floorplan(db, "plan", "desc", "/tmp/plan")
    fm = insert_new_floormap(db, "Page 01", "d", "", "page-01.png", plan, 999999)
    db.insert(MapObject(Name="obj", ParentMapUUID=fm, Description="no meta"))
    db.insert(Upload(RelatedToUUID=fm, OriginalFileName="a.txt"))
    exported = get_json(db)
    with Database(":memory:") as other:
        put_json(other, exported)
        assert json.loads(get_json(other)) == json.loads(exported)


def test_get_json_skips_deleted(db):
    db.insert(FloorPlan(Name="gone", Deleted=True))
    db.insert(FloorPlan(Name="here"))
    names = [p["Name"] for p in json.loads(get_json(db))["FloorPlans"]]
    assert names == ["here"]


def test_put_json_assigns_sort_order(db):
    plan = FlexUuid.new()
    first = FloorMap(ParentFloorPlanUUID=plan)
    second = FloorMap(ParentFloorPlanUUID=plan)
    put_json(db, json.dumps(DbExport(FloorMaps=[first, second]).to_dict()))
    a = db.get_floormap(first.FloorMapUUID)
    b = db.get_floormap(second.FloorMapUUID)
    assert a.SortOrder == 1
    assert b.SortOrder == a.SortOrder + 1


def test_put_json_splits_meta(db):
    mo = MapObject(Description="printer ~PRN~ corner", Meta="")
    put_json(db, json.dumps(DbExport(MapObjects=[mo]).to_dict()))
    stored = db.get_mapobject(mo.MapObjectUUID)
    assert (stored.Meta, stored.Description) == split_meta_from_str(mo.Description)


def test_put_json_keeps_existing_meta(db):
    mo = MapObject(Description="a ~b~ c", Meta="given")
    put_json(db, json.dumps(DbExport(MapObjects=[mo]).to_dict()))
    assert db.get_mapobject(mo.MapObjectUUID) == mo


def test_put_json_ignores_duplicates(db):
    payload = json.dumps(DbExport(FloorPlans=[FloorPlan(Name="p")]).to_dict())
    put_json(db, payload)
    put_json(db, payload)
    assert db.count(FloorPlan) == 1


def test_put_json_rejects_bad_json(db):
    with pytest.raises(ValueError):
        put_json(db, "{not json")


def test_insert_new_floorplan(db):
    parent = insert_new_floorplan(db, "root", "r", "/data/root")
    child = insert_new_floorplan(db, "child", "c", "/data/child", parent)
    stored = db.get_floorplan(child)
    assert (stored.Name, stored.FloorPlanPath, stored.ParentFloorPlanUUID) == (
        "child",
        "/data/child",
        parent,
    )
    assert db.get_floorplan(parent).ParentFloorPlanUUID is None


def test_insert_new_floormap_appends_and_inserts_before(db):
    plan = insert_new_floorplan(db, "p", "", "/x")
    uuids = [insert_new_floormap(db, f"P{i}", "", "", "f.png", plan, 999999) for i in range(3)]
    orders = [m.SortOrder for m in _plan_maps(db, plan)]
    assert orders == list(range(1, len(uuids) + 1))
    old_second = db.get_floormap(uuids[1])
    new = insert_new_floormap(db, "new", "", "", "n.png", plan, old_second.SortOrder)
    assert db.get_floormap(new).SortOrder == old_second.SortOrder
    assert db.get_floormap(uuids[1]).SortOrder == old_second.SortOrder + 1
    maps = _plan_maps(db, plan)
    assert [m.SortOrder for m in maps] == list(range(1, len(maps) + 1))
    assert [m.FloorMapUUID for m in maps] == [uuids[0], new, uuids[1], uuids[2]]


def test_set_floormap_name(db):
    fm = FloorMap(Name="old")
    db.insert(fm)
    assert set_floormap_name(db, fm.FloorMapUUID, "new name") is True
    stored = db.get_floormap(fm.FloorMapUUID)
    assert stored.Name == "new name"
    assert stored.UpdatedAt >= fm.UpdatedAt


def test_set_floormap_deleted_hides_record(db):
    fm = FloorMap()
    db.insert(fm)
    assert set_floormap_deleted(db, fm.FloorMapUUID, True) is True
    with pytest.raises(NotFoundError):
        db.get_floormap(fm.FloorMapUUID)


def test_locked_floormap_refuses_changes(db):
    fm = FloorMap(Locked=True, Name="fixed")
    db.insert(fm)
    with pytest.raises(LockedError):
        set_floormap_name(db, fm.FloorMapUUID, "other")
    assert db.get_floormap(fm.FloorMapUUID).Name == "fixed"


def test_missing_floormap_raises(db):
    with pytest.raises(NotFoundError):
        set_floormap_clip(db, FlexUuid.new(), 0, 0, 0, 0)


def test_set_floormap_clip(db):
    fm = FloorMap()
    db.insert(fm)
    set_floormap_clip(db, fm.FloorMapUUID, 5, 6, 700, 800)
    s = db.get_floormap(fm.FloorMapUUID)
    assert (s.ClipLeft, s.ClipTop, s.ClipWidth, s.ClipHeight) == (5, 6, 700, 800)


def test_set_floormap_legend(db):
    fm = FloorMap()
    db.insert(fm)
    set_floormap_legend(db, fm.FloorMapUUID, 11, 22, 14)
    s = db.get_floormap(fm.FloorMapUUID)
    assert (s.LegendLeft, s.LegendTop, s.LegendFontSize) == (11, 22, 14)


def test_set_floormap_file_copies_new_version(db, tmp_path):
    plan_dir = tmp_path / "plan"
    plan_dir.mkdir()
    src = tmp_path / "src.png"
    src.write_bytes(b"image-bytes")
    (tmp_path / "src.png-thumb.png").write_bytes(b"thumb-bytes")
    plan = insert_new_floorplan(db, "p", "", str(plan_dir))
    fm = insert_new_floormap(db, "n", "", "", str(src), plan, 999999)
    before = db.get_floormap(fm)
    assert set_floormap_file(db, fm, str(src)) is True
    after = db.get_floormap(fm)
    assert after.FloorMapFileVersion == before.FloorMapFileVersion + 1
    expected = f"{plan_dir}/{fm}-{after.FloorMapFileVersion}.png"
    assert after.FloorMapFileName == expected
    with open(expected, "rb") as fh:
        assert fh.read() == b"image-bytes"
    with open(expected + "-thumb.png", "rb") as fh:
        assert fh.read() == b"thumb-bytes"


def test_set_floormap_file_missing_thumbnail(db, tmp_path):
    src = tmp_path / "src.png"
    src.write_bytes(b"x")
    plan = insert_new_floorplan(db, "p", "", str(tmp_path))
    fm = insert_new_floormap(db, "n", "", "", str(src), plan, 999999)
    with pytest.raises(NotFoundError):
        set_floormap_file(db, fm, str(src))
    assert db.get_floormap(fm).FloorMapFileName == str(src)


def test_set_floormap_file_missing_plan(db, tmp_path):
    fm = FloorMap()
    db.insert(fm)
    with pytest.raises(NotFoundError):
        set_floormap_file(db, fm.FloorMapUUID, str(tmp_path / "none.png"))