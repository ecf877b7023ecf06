import json
import zipfile

import pytest
from PIL import Image

from floormap.cli import (
    ExportMapObject,
    export_cropped_floorplan,
    import_pages_from,
    list_imports,
    main,
)
from floormap.database import Database
from floormap.floormaps import insert_new_floormap, insert_new_floorplan, set_floormap_clip
from floormap.mapobjects import insert_new_mapobject
from floormap.models import FloorMap, FloorPlan
from floormap.timestamps import FlexTimestamp


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    database = Database(str(tmp_path / "floor.sqlite3"))
    yield database
    database.close()


def _touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")


def test_export_map_object_defaults():
    assert ExportMapObject() == ExportMapObject(Label="", PositionX=0, PositionY=0)


def test_import_pages_plain_numbers(db, tmp_path):
    images = tmp_path / "plan" / "images"
    for n in (1, 2):
        _touch(images / f"page-{n}.png")
        _touch(images / f"page-{n}.png-thumb.png")
    (images / "page-1.txt").write_text("  Lobby \nsecond line\n", encoding="utf-8")

    plan_uuid = import_pages_from(db, str(tmp_path / "plan"))

    plan = db.get_floorplan(plan_uuid)
    assert plan.Name == "floorplan"
    assert plan.FloorPlanPath == f"{tmp_path / 'plan'}/images"
    maps = db.select(FloorMap, order_by='"SortOrder" ASC')
    assert [m.Name for m in maps] == ["Page 01", "Page 02"]
    assert [m.Description for m in maps] == ["Lobby", ""]
    assert [m.SortOrder for m in maps] == [1, 2]
    assert [m.FloorMapFileName for m in maps] == [
        f"{tmp_path / 'plan'}/images/page-1.png",
        f"{tmp_path / 'plan'}/images/page-2.png",
    ]
    assert all(m.ParentFloorPlanUUID == plan_uuid for m in maps)


def test_import_pages_padded_numbers(db, tmp_path):
    images = tmp_path / "plan" / "images"
    _touch(images / "page-01.png")
    _touch(images / "page-01.png-thumb.png")
    _touch(images / "page-03.png")
    _touch(images / "page-03.png-thumb.png")

    import_pages_from(db, str(tmp_path / "plan"))

    maps = db.select(FloorMap)
    assert [m.FloorMapFileName for m in maps] == [f"{tmp_path / 'plan'}/images/page-01.png"]


def test_import_pages_requires_thumbnail(db, tmp_path):
    _touch(tmp_path / "plan" / "images" / "page-1.png")
    with pytest.raises(FileNotFoundError):
        import_pages_from(db, str(tmp_path / "plan"))
    assert db.count(FloorMap) == 0


def _make_floor(db, tmp_path, name, size):
    image = tmp_path / f"{name}.png"
    Image.new("RGB", size, "white").save(image)
    plan = insert_new_floorplan(db, "plan", "", str(tmp_path), None)
    return insert_new_floormap(db, name, "", "", str(image), plan, 999999)


def test_export_cropped_floorplan(db, tmp_path):
    lobby = _make_floor(db, tmp_path, "Lobby", (100, 80))
    _make_floor(db, tmp_path, "Empty", (100, 80))
    set_floormap_clip(db, lobby, 10, 20, 50, 40)
    insert_new_mapobject(db, lobby, "Desk", "", 30, 25)
    insert_new_mapobject(db, lobby, "Far", "", 90, 25)

    out = tmp_path / "out"
    archive_path = export_cropped_floorplan(db, str(out), tmp_path / "export.zip")

    with zipfile.ZipFile(archive_path) as archive:
        assert archive.namelist() == ["Lobby/", "Lobby/floor.png", "Lobby/floor.csv"]
        csv_text = archive.read("Lobby/floor.csv").decode("utf-8")
        assert archive.read("Lobby/floor.png") == (out / "Lobby" / "floor.png").read_bytes()
    assert csv_text == "Label,PositionX,PositionY\nDesk,20,5\n"
    assert (out / "Lobby" / "floor.csv").read_text(encoding="utf-8") == csv_text
    with Image.open(out / "Lobby" / "floor.png") as img:
        assert img.size == (50, 40)
    assert not (out / "Empty").exists()


def test_export_crop_is_clamped_to_image(db, tmp_path):
    floor = _make_floor(db, tmp_path, "Hall", (100, 80))
    set_floormap_clip(db, floor, 90, 70, 50, 40)
    insert_new_mapobject(db, floor, "Sign", "", 200, 200)

    out = tmp_path / "out"
    export_cropped_floorplan(db, str(out), tmp_path / "export.zip")

    with Image.open(out / "Hall" / "floor.png") as img:
        assert img.size == (10, 10)
    assert (out / "Hall" / "floor.csv").read_text(encoding="utf-8") == ""


def test_export_without_clip_uses_whole_image(db, tmp_path):
    floor = _make_floor(db, tmp_path, "Roof", (64, 48))
    insert_new_mapobject(db, floor, "Vent", "", 1, 1)

    out = tmp_path / "out"
    export_cropped_floorplan(db, str(out), tmp_path / "export.zip")

    with Image.open(out / "Roof" / "floor.png") as img:
        assert img.size == (64, 48)


def test_list_imports(tmp_path):
    base = tmp_path / "imports"
    good = base / "1600000000" / "images"
    _touch(good / "page-01.png")
    _touch(good / "page-01.png-thumb.png")
    _touch(base / "notanumber" / "images" / "page-01.png")
    _touch(base / "notanumber" / "images" / "page-01.png-thumb.png")
    (base / "17" / "images").mkdir(parents=True)

    assert list_imports(str(base)) == [
        (f"{base}/1600000000", FlexTimestamp.from_timestamp(1600000000))
    ]


def test_main_export_then_import(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    source_url = str(tmp_path / "source.sqlite3")
    with Database(source_url) as source:
        plan_uuid = insert_new_floorplan(source, "Main building", "desc", "/plans", None)

    monkeypatch.setenv("DATABASE_URL", source_url)
    dump = tmp_path / "dump.json"
    assert main(["export-database", "-o", str(dump)]) == 0
    exported = json.loads(dump.read_text(encoding="utf-8"))
    assert [p["Name"] for p in exported["FloorPlans"]] == ["Main building"]

    target_url = str(tmp_path / "target.sqlite3")
    monkeypatch.setenv("DATABASE_URL", target_url)
    assert main(["import-database", "-i", str(dump)]) == 0
    with Database(target_url) as target:
        plan = target.get_floorplan(plan_uuid)
        assert plan.Name == "Main building"
        assert target.count(FloorPlan) == 1


def test_main_requires_output(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc:
        main(["export-database"])
    assert exc.value.code == 2