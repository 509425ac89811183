from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace

import httpx
import pytest

from fake_server import create_app
from fakes import FakeTileSource
from geo.projection import Projection, ViewState, from_lonlat
from net.client import ApiClient
from net.errors import ApiError
from permalink.codec import decode
from session.controller import ViewerSession
from settings.config import ViewerSettings

MODIS = "gibs:MODIS_Terra_CorrectedReflectance_TrueColor"
MOON = "trek:moon_lro_wac"
START = f"#10.50000,20.25000,3.00,2024-01-01,{MODIS},EPSG:3857"

SETTINGS = ViewerSettings(
    api_base_url="http://viewer.test",
    delete_secret="s3cret",
    save_debounce_s=0.02,
    fetch_debounce_s=0.0,
    request_timeout_s=5.0,
    max_query_length=1800,
    log_level="INFO",
)


@dataclass
class Recorder:
    permalinks: list[str] = field(default_factory=list)
    tile_sources: list[FakeTileSource] = field(default_factory=list)

    def tile_source(self, layer, url):
        src = FakeTileSource(url)
        self.tile_sources.append(src)
        return src


def _run(scenario, *, app=None, transport=None, settings=SETTINGS):
    app = app or create_app()
    rec = Recorder()

    async def run():
        http = httpx.AsyncClient(transport=transport or httpx.ASGITransport(app=app))
        session = ViewerSession(
            ApiClient(settings.api_base_url, http=http, settings=settings),
            settings=settings,
            write_permalink=rec.permalinks.append,
            tile_source_factory=rec.tile_source,
            today=lambda: "2026-10-18",
        )
        try:
            return await scenario(session, rec)
        finally:
            await session.close()
            await http.aclose()

    return app, rec, asyncio.run(run())


def _annotation_reads(app):
    return [params for method, path, params in app.state.requests if (method, path) == ("GET", "/v1/annotations")]


def test_start_restores_permalink_and_loads_frame():
    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        return session.layer.layerKey, session.date, session.tile_url, session.view

    app, rec, (layer_key, date, tile_url, view) = _run(scenario)

    assert (layer_key, date) == (MODIS, "2024-01-01")
    assert view.projection == Projection.epsg3857
    assert rec.permalinks == [START]
    assert tile_url == (
        "https://gibs.earthdata.nasa.gov/wmts/epsg3857/best/"
        "MODIS_Terra_CorrectedReflectance_TrueColor/default/2024-01-01/"
        "GoogleMapsCompatible_Level9/{z}/{y}/{x}.jpg"
    )
    assert [s.url for s in rec.tile_sources] == [tile_url]

    (read,) = _annotation_reads(app)
    assert read["layerKey"] == MODIS
    assert read["projection"] == "EPSG:3857"
    assert read["date"] == "2024-01-01"
    assert read["swLon"] == read["minLon"]
    assert app.state.requests[0][:2] == ("GET", "/v1/layers")


def test_drawing_is_saved_once_and_survives_moving_the_map():
    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()

        x, y = from_lonlat(10.5, 20.25, Projection.epsg3857)
        pin = session.draw({"type": "Point", "coordinates": [x, y]})
        session.rename(pin, "Landing site")
        session.rename(pin, "Landing site B")
        await session.sync.wait_idle()
        saved_id = pin.id

        session.move_end(ViewState.from_lonlat(11.0, 21.0, 4.0, Projection.epsg3857))
        await session.sync.wait_idle()
        names = [e.name for e in session.annotation_list()]
        return saved_id, [f.id for f in session.source], names

    app, rec, (saved_id, ids, names) = _run(scenario)

    saves = [r for r in app.state.requests if r[:2] == ("POST", "/v1/annotations")]
    assert len(saves) == 1
    assert saved_id == "srv-1"
    assert app.state.records["srv-1"]["properties"] == {"name": "Landing site B"}
    assert ids == ["srv-1"]
    assert names == ["Landing site B"]
    assert rec.permalinks[-1] == f"#11.00000,21.00000,4.00,2024-01-01,{MODIS},EPSG:3857"
    assert len(_annotation_reads(app)) == 2


def test_switching_body_changes_projection_and_scopes_annotations():
    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        x, y = from_lonlat(10.5, 20.25, Projection.epsg3857)
        session.draw({"type": "Point", "coordinates": [x, y]}, {"name": "earth pin"})
        await session.sync.wait_idle()

        assert session.change_layer(MOON) is True
        on_moon = (session.view, session.projected.show_base_layer, session.source.projection)
        await session.sync.wait_idle()
        moon_count = len(session.source)

        assert session.change_layer(MODIS) is True
        await session.sync.wait_idle()
        back = [f.geometry["coordinates"] for f in session.source]
        return on_moon, moon_count, back

    app, rec, (on_moon, moon_count, back) = _run(scenario)
    view, show_base, source_projection = on_moon

    assert view.projection == Projection.epsg4326
    assert view.center == pytest.approx((10.5, 20.25), abs=1e-6)
    assert show_base is False
    assert source_projection == Projection.epsg4326
    assert moon_count == 0
    assert back == [pytest.approx(list(from_lonlat(10.5, 20.25, Projection.epsg3857)))]

    moon_link = decode(rec.permalinks[1])
    assert (moon_link.layer_key, moon_link.projection, moon_link.date) == (
        MOON,
        Projection.epsg4326,
        "2024-01-01",
    )
    # Tile sources: MODIS, moon, MODIS again; replaced ones are fully detached.
    assert [s.url.startswith("https://trek.example") for s in rec.tile_sources] == [False, True, False]
    assert [s.listener_count for s in rec.tile_sources] == [0, 0, 0]
    moon_read = _annotation_reads(app)[1]
    assert moon_read["layerKey"] == MOON
    assert "date" not in moon_read


def test_unknown_layer_and_bad_date_are_ignored():
    async def scenario(session, rec):
        await session.start(START)
        before = (session.layer, session.view, len(rec.permalinks))
        assert session.change_layer("trek:pluto") is False
        assert session.change_date("yesterday") is False
        return before, (session.layer, session.view, len(rec.permalinks))

    _, _, (before, after) = _run(scenario)
    assert before == after


def test_date_change_swaps_tile_source_and_refetches():
    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        rec.tile_sources[0].fire("tileloadstart")
        assert session.tiles.pending == 1
        assert session.change_date("2024-02-02") is True
        await session.sync.wait_idle()
        return session.tiles.pending

    app, rec, pending = _run(scenario)
    assert pending == 0
    assert "/default/2024-02-02/" in rec.tile_sources[1].url
    assert [r["date"] for r in _annotation_reads(app)] == ["2024-01-01", "2024-02-02"]


def test_opacity_is_clamped_and_resize_rescopes_frame():
    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        session.set_opacity(3.0)
        opacity = session.opacity
        reads_after_opacity = len(_annotation_reads(app))
        narrow = session.current_frame().extent
        session.resize((4000, 4000))
        await session.sync.wait_idle()
        return opacity, reads_after_opacity, narrow, session.current_frame()

    app = create_app()
    _, _, (opacity, reads_after_opacity, narrow, frame) = _run(scenario, app=app)
    assert opacity == 1.0
    assert frame.opacity == 1.0
    assert reads_after_opacity == 1
    assert len(_annotation_reads(app)) == 2
    assert frame.extent.maxLon - frame.extent.minLon > narrow.maxLon - narrow.minLon


def test_export_and_import_round_trip_through_server():
    geojson = json.dumps(
        {
            "type": "FeatureCollection",
            "features": [
                {"type": "Feature", "geometry": {"type": "Point", "coordinates": [1.0, 2.0]}, "properties": {"name": "a"}},
                {
                    "type": "Feature",
                    "geometry": {"type": "LineString", "coordinates": [[0, 0], [3, 4]]},
                    "properties": {"name": "b"},
                },
            ],
        }
    )

    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        persisted = await session.import_annotations(geojson)
        await session.sync.wait_idle()
        return persisted, json.loads(session.export_annotations())

    app, _, (persisted, exported) = _run(scenario)

    assert [f.id for f in persisted] == ["srv-1", "srv-2"]
    saves = [r for r in app.state.requests if r[:2] == ("POST", "/v1/annotations")]
    assert len(saves) == 2
    assert [f["geometry"] for f in exported["features"]] == [
        {"type": "Point", "coordinates": [1.0, 2.0]},
        {"type": "LineString", "coordinates": [[0.0, 0.0], [3.0, 4.0]]},
    ]
    assert [f["id"] for f in exported["features"]] == ["srv-1", "srv-2"]


def test_delete_uses_secret_and_failure_keeps_annotation():
    wrong = replace(SETTINGS, delete_secret="nope")

    async def scenario(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        pin = session.draw({"type": "Point", "coordinates": [0.0, 0.0]})
        await session.sync.wait_idle()
        with pytest.raises(ApiError) as err:
            await session.delete(pin)
        return err.value.status, pin in session.source

    app, _, (status, kept) = _run(scenario, settings=wrong)
    assert status == 403
    assert kept
    deletes = [r for r in app.state.requests if r[0] == "DELETE"]
    assert deletes == [("DELETE", "/v1/annotations/srv-1", {"secret": "nope"})]

    async def deleting(session, rec):
        await session.start(START)
        await session.sync.wait_idle()
        pin = session.draw({"type": "Point", "coordinates": [0.0, 0.0]})
        await session.sync.wait_idle()
        return await session.delete(pin), len(session.source)

    app, _, (removed, remaining) = _run(deleting)
    assert removed is True
    assert remaining == 0
    assert app.state.records == {}


def test_catalog_outage_leaves_session_usable():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(503, json={"detail": "catalog down"})

    async def scenario(session, rec):
        await session.start("#5,6,2,,,EPSG:4326")
        await session.sync.wait_idle()
        return session.status, session.layer, session.view, session.tile_url

    _, rec, (status, layer, view, tile_url) = _run(scenario, transport=httpx.MockTransport(handler))

    assert status == "Layer catalog unavailable (503)"
    assert layer is None
    assert tile_url is None
    assert view.projection == Projection.epsg4326
    assert view.center == (5.0, 6.0)
    assert calls == ["/v1/layers"]
    assert rec.permalinks == ["#5.00000,6.00000,2.00,2026-10-18,,EPSG:4326"]
