"""HTTP service answering the floor map JSON API and serving floor map images."""

from __future__ import annotations

import argparse
import json
import os
import re
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from werkzeug.exceptions import HTTPException
from werkzeug.middleware.shared_data import SharedDataMiddleware
from werkzeug.routing import Map, Rule
from werkzeug.serving import run_simple
from werkzeug.wrappers import Request, Response

from .api import (
    CopyOperation,
    FloorMapCopy,
    FloorMapDelete,
    FloorMapSetClip,
    FloorMapSetLegend,
    FloorMapSetName,
    MapObjectDelete,
    MapObjectSetNameDescription,
    MapObjectSetXY,
    NewMapObject,
    get_all_services,
    get_map_objects,
    parse_record,
    parse_records,
    to_json_value,
)
from .database import Database, LockedError
from .floormaps import (
    insert_new_floormap,
    set_floormap_clip,
    set_floormap_deleted,
    set_floormap_file,
    set_floormap_legend,
    set_floormap_name,
)
from .mapobjects import (
    insert_new_mapobject,
    set_mapobject_arrow_xy,
    set_mapobject_deleted,
    set_mapobject_labelsize,
    set_mapobject_name_description_meta,
    set_mapobject_typeobjectuuid,
    set_mapobject_xy,
)
from .models import Service
from .timestamps import FlexTimestamp
from .uuids import FlexUuid

__all__ = [
    "DEFAULT_PORT",
    "DEFAULT_FLOORMAP_UUID",
    "SERVICE_NAME",
    "FloorMapService",
    "insert_new_service",
    "run_http_server",
    "main",
]

DEFAULT_PORT = 4242
SERVICE_NAME = "MyFloorMap JSON/HTML service"
DEFAULT_FLOORMAP_UUID = "1e79ba6e-fb3a-11e9-b124-03c84357f69a"

_INTEGER = re.compile(r"[+-]?[0-9]+")
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1

_ROUTES = (
    ("/services", "get_services", "GET"),
    ("/api/v1/mapobjects/get/json/<query_timestamp>", "get_map_objects", "GET"),
    ("/api/v1/mapobjects/xy/put/json", "put_mapobject_xy", "PUT"),
    ("/api/v1/mapobjects/delete/put/json", "put_mapobject_delete", "PUT"),
    ("/api/v1/floormaps/delete/put/json", "put_floormap_delete", "PUT"),
    ("/api/v1/floormaps/name/put/json", "put_floormap_name", "PUT"),
    ("/api/v1/floormaps/copy/put/json", "put_floormap_copy", "PUT"),
    ("/api/v1/mapobjects/name_description/put/json", "put_mapobject_name_description", "PUT"),
    ("/api/v1/mapobjects/new/put/json", "put_new_mapobject", "PUT"),
    ("/images/floormaps/<floormap_uuid>/<version>", "get_floormap_image", "GET"),
    ("/api/v1/floormaps/clip/put/json", "put_floormap_clip", "PUT"),
    ("/api/v1/floormaps/legend/put/json", "put_floormap_legend", "PUT"),
    (
        "/images/floormaps/thumbnails/<floormap_uuid>/<version>",
        "get_floormap_thumbnail",
        "GET",
    ),
)


def insert_new_service(db: Database) -> FlexUuid:
    """Add a placeholder service entry and return its identifier."""
    service = Service(
        MenuOrder=0,
        Deleted=False,
        ServiceName="SomeName",
        ServiceLabel="SomeName",
    )
    db.insert(service)
    return service.ServiceUUID


def _parse_query_timestamp(text: str) -> FlexTimestamp:
    seconds = 0
    if _INTEGER.fullmatch(text) is not None:
        value = int(text)
        if _I64_MIN <= value <= _I64_MAX:
            seconds = value
    try:
        return FlexTimestamp.from_timestamp(seconds)
    except ValueError:
        return FlexTimestamp.from_timestamp(0)


def _parse_floormap_uuid(text: str) -> FlexUuid:
    try:
        return FlexUuid.parse(text)
    except ValueError:
        return FlexUuid.parse(DEFAULT_FLOORMAP_UUID)


def _png_response(data: bytes) -> Response:
    response = Response(data, status=200, mimetype="image/png")
    response.headers["Connection"] = "close"
    return response


class FloorMapService:
    """WSGI application for the floor map API, with static files under ``/static/``."""

    def __init__(self, db: Database, static_dir: Union[str, os.PathLike] = "staticfiles") -> None:
        self.db = db
        self.static_dir = Path(static_dir)
        self._url_map = Map(
            [Rule(path, endpoint=endpoint, methods=[method]) for path, endpoint, method in _ROUTES]
        )
        self._wsgi = SharedDataMiddleware(self._dispatch, {"/static": str(self.static_dir)})

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        return self._wsgi(environ, start_response)

    def _dispatch(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ)
        adapter = self._url_map.bind_to_environ(environ)
        try:
            endpoint, args = adapter.match()
            response = getattr(self, endpoint)(request, **args)
        except HTTPException as exc:
            response = exc.get_response(environ)
        except (LookupError, LockedError, OSError) as exc:
            response = Response(f"internal error: {exc}", status=500, mimetype="text/plain")
        return response(environ, start_response)

    def _apply(
        self, request: Request, record_type: type, action: Callable[[Any], None]
    ) -> Response:
        payload = request.get_data(as_text=True)
        try:
            records = parse_records(record_type, payload)
        except ValueError as exc:
            return Response(f"error: {exc}", status=400, mimetype="text/plain")
        print(f"CR: {records!r}")
        for record in records:
            action(record)
        return Response(payload, status=200, mimetype="application/json")

    def get_services(self, request: Request) -> Response:
        insert_new_service(self.db)
        services = get_all_services(self.db)
        payload = json.dumps(to_json_value(services))
        return Response(payload, status=200, mimetype="application/json")

    def get_map_objects(self, request: Request, query_timestamp: str) -> Response:
        since = _parse_query_timestamp(query_timestamp)
        result = get_map_objects(self.db, since)
        response = Response(
            json.dumps(result.to_dict()), status=200, mimetype="application/json"
        )
        response.headers["Connection"] = "close"
        return response

    def put_mapobject_xy(self, request: Request) -> Response:
        def action(o: MapObjectSetXY) -> None:
            set_mapobject_xy(self.db, o.MapObjectUUID, o.MapX, o.MapY, "web")
            set_mapobject_arrow_xy(self.db, o.MapObjectUUID, o.ArrowX, o.ArrowY, "web")

        return self._apply(request, MapObjectSetXY, action)

    def put_mapobject_delete(self, request: Request) -> Response:
        def action(o: MapObjectDelete) -> None:
            set_mapobject_deleted(self.db, o.MapObjectUUID, True)

        return self._apply(request, MapObjectDelete, action)

    def put_floormap_delete(self, request: Request) -> Response:
        def action(o: FloorMapDelete) -> None:
            set_floormap_deleted(self.db, o.FloorMapUUID, True)

        return self._apply(request, FloorMapDelete, action)

    def put_floormap_name(self, request: Request) -> Response:
        def action(o: FloorMapSetName) -> None:
            set_floormap_name(self.db, o.FloorMapUUID, o.Name)

        return self._apply(request, FloorMapSetName, action)

    def put_floormap_copy(self, request: Request) -> Response:
        def action(o: FloorMapCopy) -> None:
            try:
                dst = self.db.get_floormap(o.DstFloorMapUUID)
                src = self.db.get_floormap(o.SrcFloorMapUUID)
            except LookupError:
                return
            if o.Operation is CopyOperation.FloorMapOverwrite:
                try:
                    set_floormap_file(self.db, dst.FloorMapUUID, src.FloorMapFileName)
                except (LookupError, LockedError):
                    pass
                return
            order = dst.SortOrder
            if o.Operation is CopyOperation.FloorMapInsertAfter:
                order += 1
            insert_new_floormap(
                self.db,
                src.Name,
                src.Description,
                src.FullText,
                src.FloorMapFileName,
                dst.ParentFloorPlanUUID,
                order,
            )

        return self._apply(request, FloorMapCopy, action)

    def put_mapobject_name_description(self, request: Request) -> Response:
        def action(o: MapObjectSetNameDescription) -> None:
            set_mapobject_name_description_meta(
                self.db, o.MapObjectUUID, o.Name, o.Description, o.Meta
            )
            set_mapobject_labelsize(self.db, o.MapObjectUUID, o.LabelSize)
            set_mapobject_typeobjectuuid(self.db, o.MapObjectUUID, o.TypeObjectUUID)

        return self._apply(request, MapObjectSetNameDescription, action)

    def put_new_mapobject(self, request: Request) -> Response:
        payload = request.get_data(as_text=True)
        try:
            o = parse_record(NewMapObject, json.loads(payload))
        except ValueError as exc:
            return Response(f"error: {exc}", status=400, mimetype="text/plain")
        print(f"O: {o!r}")
        new_uuid = insert_new_mapobject(
            self.db, o.ParentMapUUID, o.Name, o.Description, o.MapX, o.MapY
        )
        set_mapobject_labelsize(self.db, new_uuid, o.LabelSize)
        set_mapobject_typeobjectuuid(self.db, new_uuid, o.TypeObjectUUID)
        return Response(json.dumps(new_uuid.to_json()), status=200, mimetype="application/json")

    def put_floormap_clip(self, request: Request) -> Response:
        def action(o: FloorMapSetClip) -> None:
            try:
                set_floormap_clip(
                    self.db, o.FloorMapUUID, o.ClipLeft, o.ClipTop, o.ClipWidth, o.ClipHeight
                )
            except (LookupError, LockedError):
                pass

        return self._apply(request, FloorMapSetClip, action)

    def put_floormap_legend(self, request: Request) -> Response:
        def action(o: FloorMapSetLegend) -> None:
            try:
                set_floormap_legend(
                    self.db, o.FloorMapUUID, o.LegendLeft, o.LegendTop, o.LegendFontSize
                )
            except (LookupError, LockedError):
                pass

        return self._apply(request, FloorMapSetLegend, action)

    def get_floormap_image(self, request: Request, floormap_uuid: str, version: str) -> Response:
        query_uuid = _parse_floormap_uuid(floormap_uuid)
        try:
            floor = self.db.get_floormap(query_uuid)
        except LookupError as exc:
            print(f"Got floormap: {exc!r}")
            return _png_response((self.static_dir / "grid_page.png").read_bytes())
        print(f"Got floormap: {floor!r}")
        return _png_response(Path(floor.FloorMapFileName).read_bytes())

    def get_floormap_thumbnail(
        self, request: Request, floormap_uuid: str, version: str
    ) -> Response:
        query_uuid = _parse_floormap_uuid(floormap_uuid)
        try:
            floor = self.db.get_floormap(query_uuid)
        except LookupError as exc:
            print(f"Got floormap: {exc!r}")
            return Response(
                f"Floor plan with uuid {query_uuid} not found: {exc}",
                status=404,
                mimetype="text/plain",
            )
        print(f"Got floormap: {floor!r}")
        filename = f"{floor.FloorMapFileName}-thumb.png"
        print(f"Filename: {filename}")
        return _png_response(Path(filename).read_bytes())


def run_http_server(service_name: str, port: int, app: Callable) -> None:
    """Serve ``app`` on ``BIND_IP``:``BIND_PORT`` (defaults 127.0.0.1 and ``port``)."""
    bind_ip = os.environ.get("BIND_IP", "127.0.0.1")
    port_text = os.environ.get("BIND_PORT", str(port))
    try:
        bind_port = int(port_text)
    except ValueError:
        bind_port = port
    if not 0 <= bind_port <= 65535:
        bind_port = port
    print(
        f"HTTP server for {service_name} starting on {bind_ip}:{bind_port} "
        "without address/port reuse"
    )
    run_simple(bind_ip, bind_port, app, threaded=True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="service-floormap-json", description="Floor map JSON/HTML service"
    )
    parser.parse_args(argv)
    with Database.from_env() as db:
        run_http_server(SERVICE_NAME, DEFAULT_PORT, FloorMapService(db))
    return 0