# floormap

floormap stores floor plans in a SQLite database. A floor plan is a set of page images called floor maps. Labelled map objects are placed on those pages. The package provides:

- a WSGI JSON service that a browser client polls and edits through, and that serves the floor map images;
- a command-line tool that imports page images, exports the database to JSON and imports it back, and exports cropped floors.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`Database.from_env()` reads the database location from the `DATABASE_URL` environment variable. It also reads a `.env` file if one is found. The value can be a plain file path or a `sqlite://` URL, for example:

```
DATABASE_URL=db/floor.sqlite3
```

Any other URL scheme is rejected. Tables that are missing are created when the database is opened.

## The web service

```
floormap-server
```

The service listens on `127.0.0.1:4242` by default. `BIND_IP` and `BIND_PORT` override the address and port. Files in `staticfiles/` are served under `/static/`. The routes are:

- `GET /services`: adds a placeholder service entry named `SomeName`, then returns every service that is not deleted, in menu order.
- `GET /api/v1/mapobjects/get/json/<unix timestamp>`: returns the floor plans, floor maps, map objects and uploads changed at or after that time, deleted ones included. The response also carries `NextPollHorizon` (the current time) and `ClientRestartEpoch`, which is the modification time of a file named `client_restart` in the working directory, or 0 if that file is absent.
- `PUT /api/v1/mapobjects/xy/put/json`
- `PUT /api/v1/mapobjects/delete/put/json`
- `PUT /api/v1/mapobjects/name_description/put/json`
- `PUT /api/v1/mapobjects/new/put/json`: takes one record and returns the new object's UUID.
- `PUT /api/v1/floormaps/delete/put/json`
- `PUT /api/v1/floormaps/name/put/json`
- `PUT /api/v1/floormaps/copy/put/json`: `Operation` is one of `FloorMapOverwrite`, `FloorMapInsertBefore` or `FloorMapInsertAfter`.
- `PUT /api/v1/floormaps/clip/put/json`
- `PUT /api/v1/floormaps/legend/put/json`
- `GET /images/floormaps/<uuid>/<version>`: returns the floor map image. If the floor map is not found, it returns `staticfiles/grid_page.png` instead.
- `GET /images/floormaps/thumbnails/<uuid>/<version>`: returns the thumbnail, or 404 if the floor map is not found.

Every PUT route except the one that creates a map object takes a JSON list of records and echoes the request body back. A body that does not parse gets a 400 answer.

The application is `floormap.server.FloorMapService(db, static_dir="staticfiles")`. It can be mounted in any WSGI server.

## The command-line tool

```
floormap-cli import-floor-plan -i /path/to/plan
floormap-cli import-floor-plan
floormap-cli export-database -o export.json
floormap-cli import-database -i export.json
floormap-cli export-cropped-floorplan -o /path/to/outdir
```

- `import-floor-plan -i DIR` creates a floor plan with one floor map per page. It reads the pages from `DIR/images/page-N.png` or `page-NN.png`, and each page needs a matching `-thumb.png`. If `page-N.txt` exists, its first line becomes the page description.
- `import-floor-plan` without `-i` lists the import directories under `/var/a3s/http/floor-plan-images` that hold pages. These directories are named by a Unix time.
- `export-database` writes every record that is not deleted as pretty-printed JSON.
- `import-database` loads such a file. Records that are already present are kept.
- `export-cropped-floorplan` handles each floor that holds map objects. It writes a cropped `floor.png` and a `floor.csv` of label positions into the output directory. The same files also go into `/tmp/export.zip`.

## Library use

```python
from floormap.database import Database
from floormap.floormaps import insert_new_floorplan, insert_new_floormap
from floormap.mapobjects import insert_new_mapobject

with Database("floor.sqlite3") as db:
    plan = insert_new_floorplan(db, "floorplan", "main building", "/srv/plans", None)
    page = insert_new_floormap(db, "Page 01", "", "", "/srv/plans/page-01.png", plan, 999999)
    insert_new_mapobject(db, page, "Room 1", "", 100, 200)
```

Editing functions raise `NotFoundError` when a record is missing and `LockedError` when it is locked. Both come from `floormap.database`.

## What it does not do

- Only SQLite is supported as storage.
- The web service has no authentication. Anyone who can reach it can edit.
- `floormap.templates` provides page data, the menu and template files, and it checks that template sections are balanced. It does not render HTML pages, and the service has no HTML routes.
- The `export-assets` command is accepted but does nothing.