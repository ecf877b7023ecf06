"""Command line tool: import floor plans, export and import the database."""

from __future__ import annotations

import argparse
import csv
import dataclasses
import io
import itertools
import os
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from PIL import Image

from .api import get_map_objects
from .database import Database
from .floormaps import get_json, insert_new_floormap, insert_new_floorplan, put_json
from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "DEFAULT_IMPORT_BASE",
    "DEFAULT_EXPORT_ZIP",
    "ExportMapObject",
    "import_pages_from",
    "export_cropped_floorplan",
    "list_imports",
    "main",
]

DEFAULT_IMPORT_BASE = "/var/a3s/http/floor-plan-images"
DEFAULT_EXPORT_ZIP = "/tmp/export.zip"

_APPEND_ORDER = 999999
_INTEGER = re.compile(r"[+-]?[0-9]+")
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


@dataclass
class ExportMapObject:
    """A map object as written to the exported CSV."""

    Label: str = ""
    PositionX: int = 0
    PositionY: int = 0


def _first_line(path: Path) -> str:
    if not path.exists():
        return ""
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return ""
    lines = text.splitlines()
    return lines[0].strip() if lines else ""


def _page_image(images: str, page_nr: int) -> Optional[str]:
    plain = f"{images}/page-{page_nr}.png"
    if Path(f"{plain}-thumb.png").exists():
        return plain if Path(plain).exists() else None
    padded = f"{images}/page-{page_nr:02}.png"
    if not Path(f"{padded}-thumb.png").exists() or not Path(padded).exists():
        return None
    return padded


def import_pages_from(db: Database, dirname: str) -> FlexUuid:
    """Create a floor plan from ``dirname/images/page-N.png`` files; returns its identifier."""
    print(f"Importing floor plan from {dirname}")
    images = f"{dirname}/images"
    now = FlexTimestamp.now()
    plan_uuid = insert_new_floorplan(db, "floorplan", f"imported via cli at {now}", images, None)
    page_count = 0
    for page_nr in itertools.count(1):
        description = _first_line(Path(f"{images}/page-{page_nr}.txt"))
        image = _page_image(images, page_nr)
        if image is None:
            break
        insert_new_floormap(
            db, f"Page {page_nr:02}", description, "", image, plan_uuid, _APPEND_ORDER
        )
        page_count = page_nr
    if page_count == 0:
        raise FileNotFoundError("No pages found of format 'page-N.png'")
    print(f"imported {page_count} pages")
    return plan_uuid


def _crop(img: Image.Image, x: int, y: int, width: int, height: int) -> Image.Image:
    img_width, img_height = img.size
    x = min(x, img_width)
    y = min(y, img_height)
    width = min(width, img_width - x)
    height = min(height, img_height - y)
    return img.crop((x, y, x + width, y + height))


def _csv_text(rows: Sequence[ExportMapObject]) -> str:
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([f.name for f in dataclasses.fields(ExportMapObject)])
    writer.writerows(dataclasses.astuple(row) for row in rows)
    return buffer.getvalue()


def _add_directory(archive: zipfile.ZipFile, name: str) -> None:
    info = zipfile.ZipInfo(f"{name}/")
    info.compress_type = zipfile.ZIP_STORED
    info.external_attr = (0o40755 << 16) | 0x10
    archive.writestr(info, b"")


def export_cropped_floorplan(
    db: Database,
    directory: Union[str, os.PathLike],
    zip_path: Union[str, os.PathLike] = DEFAULT_EXPORT_ZIP,
) -> Path:
    """Write each floor that has map objects as a cropped image and CSV, also zipped."""
    directory = os.fspath(directory)
    Path(directory).mkdir(parents=True, exist_ok=True)
    results = get_map_objects(db, FlexTimestamp.from_timestamp(0))
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_STORED) as archive:
        for floor in results.FloorMaps:
            objects = [o for o in results.MapObjects if o.ParentMapUUID == floor.FloorMapUUID]
            if not objects:
                continue
            _add_directory(archive, floor.Name)
            floor_dir = Path(f"{directory}/{floor.Name}")
            floor_dir.mkdir(parents=True, exist_ok=True)
            print(f"==== {floor}")
            floormap = db.get_floormap(floor.FloorMapUUID)
            with Image.open(floormap.FloorMapFileName) as img:
                clip_width, clip_height = img.size
                if floormap.ClipWidth != 0:
                    clip_width = floormap.ClipWidth & 0xFFFFFFFF
                if floormap.ClipHeight != 0:
                    clip_height = floormap.ClipHeight & 0xFFFFFFFF
                clip_x = max(floormap.ClipLeft, 0)
                clip_y = max(floormap.ClipTop, 0)
                cropped = _crop(img, clip_x, clip_y, clip_width, clip_height)
            image_file = floor_dir / "floor.png"
            cropped.save(image_file, format="PNG")
            archive.writestr(f"{floor.Name}/floor.png", image_file.read_bytes())

            rows = []
            for o in objects:
                x = o.MapX + o.ArrowX - floormap.ClipLeft
                y = o.MapY + o.ArrowY - floormap.ClipTop
                if 0 <= x <= clip_width and 0 <= y <= clip_height:
                    rows.append(ExportMapObject(Label=o.Name, PositionX=x, PositionY=y))
            csv_text = _csv_text(rows)
            (floor_dir / "floor.csv").write_text(csv_text, encoding="utf-8", newline="")
            archive.writestr(f"{floor.Name}/floor.csv", csv_text.encode("utf-8"))
    return Path(zip_path)


def _count_pages(images: str) -> int:
    pages = 0
    for page_nr in itertools.count(1):
        image = f"{images}/page-{page_nr:02}.png"
        if not Path(image).exists() or not Path(f"{image}-thumb.png").exists():
            break
        pages = page_nr
    return pages


def list_imports(
    base_dir: Union[str, os.PathLike] = DEFAULT_IMPORT_BASE,
) -> list[tuple[str, FlexTimestamp]]:
    """Import directories under ``base_dir`` (named by a Unix time) that hold pages."""
    base = os.fspath(base_dir)
    found = []
    for name in sorted(entry.name for entry in os.scandir(base)):
        if _INTEGER.fullmatch(name) is None:
            continue
        seconds = int(name)
        if not _I64_MIN <= seconds <= _I64_MAX:
            continue
        try:
            stamp = FlexTimestamp.from_timestamp(seconds)
        except ValueError:
            continue
        if _count_pages(f"{base}/{name}/images") > 0:
            found.append((f"{base}/{name}", stamp))
    return found


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="floormap-cli", description="CLI for MyFloorMap")
    parser.add_argument("--version", action="version", version="FloorMap CLI 1.0")
    parser.add_argument("-c", "--config", metavar="FILE", help="Sets a custom config file")
    parser.add_argument("-v", action="count", default=0, help="Sets the level of verbosity")
    parser.add_argument(
        "-d", dest="debug", action="store_true", help="print debug information verbosely"
    )
    commands = parser.add_subparsers(dest="command")

    floor_plan = commands.add_parser(
        "import-floor-plan", help="Import the floor plan from a directory"
    )
    floor_plan.add_argument("-i", dest="input", metavar="DIR", help="input directory with files")

    export_db = commands.add_parser("export-database", help="export the database to file")
    export_db.add_argument("-o", dest="output", metavar="FILE", required=True, help="output file name")

    export_crop = commands.add_parser(
        "export-cropped-floorplan", help="export the cropped floorplan"
    )
    export_crop.add_argument("-o", dest="output", metavar="DIR", required=True, help="output dir name")

    import_db = commands.add_parser("import-database", help="import the database from file")
    import_db.add_argument("-i", dest="input", metavar="FILE", required=True, help="input file name")

    commands.add_parser("export-assets", help="export the assets to stdout")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "export-cropped-floorplan":
        with Database.from_env() as db:
            export_cropped_floorplan(db, args.output)
    elif args.command == "export-database":
        with Database.from_env() as db:
            Path(args.output).write_text(get_json(db), encoding="utf-8")
    elif args.command == "import-database":
        text = Path(args.input).read_text(encoding="utf-8")
        with Database.from_env() as db:
            put_json(db, text)
    elif args.command == "import-floor-plan":
        if args.input:
            with Database.from_env() as db:
                import_pages_from(db, args.input)
        else:
            print("Available imports:")
            for path, stamp in list_imports(DEFAULT_IMPORT_BASE):
                print(f"{path}: {stamp}")
    return 0