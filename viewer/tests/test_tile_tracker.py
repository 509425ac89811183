from __future__ import annotations

from fakes import FakeTileSource, make_layer
from tiles.source import resolve_tile_url
from tiles.tracker import TILE_LOAD_END, TILE_LOAD_ERROR, TILE_LOAD_START, TileLoadTracker


def test_counts_pending_and_errors():
    changes = []
    tracker = TileLoadTracker(on_change=lambda pending, errors: changes.append((pending, errors)))
    source = FakeTileSource()
    tracker.attach(source)

    source.fire(TILE_LOAD_START)
    source.fire(TILE_LOAD_START)
    source.fire(TILE_LOAD_START)
    assert tracker.loading
    source.fire(TILE_LOAD_END)
    source.fire(TILE_LOAD_ERROR)
    assert (tracker.pending, tracker.errors) == (1, 1)

    source.fire(TILE_LOAD_END)
    source.fire(TILE_LOAD_END)
    assert tracker.pending == 0
    assert not tracker.loading
    assert changes[-1] == (0, 1)


def test_attaching_new_source_resets_and_detaches_old_one():
    tracker = TileLoadTracker()
    old = FakeTileSource("old")
    tracker.attach(old)
    old.fire(TILE_LOAD_START)
    old.fire(TILE_LOAD_ERROR)
    old.fire(TILE_LOAD_START)

    new = FakeTileSource("new")
    tracker.attach(new)
    assert (tracker.pending, tracker.errors) == (0, 0)
    assert old.listener_count == 0
    assert new.listener_count == 3

    # Late events from the replaced source are ignored.
    old.fire(TILE_LOAD_END)
    old.fire(TILE_LOAD_ERROR)
    assert (tracker.pending, tracker.errors) == (0, 0)

    tracker.detach()
    assert new.listener_count == 0
    assert tracker.source is None


def test_resolve_tile_url_substitutes_date():
    layer = make_layer(
        "trek:mars",
        tileTemplate="https://trek.example/mars/{date}/{z}/{y}/{x}.png",
        requiresDate=True,
    )
    assert resolve_tile_url(layer, "2024-01-01", today="2026-10-18") == (
        "https://trek.example/mars/2024-01-01/{z}/{y}/{x}.png"
    )
    assert resolve_tile_url(layer, "", today="2026-10-18").startswith(
        "https://trek.example/mars/2026-10-18/"
    )

    static = make_layer("trek:moon", tileTemplate="https://trek.example/moon/{z}/{y}/{x}.png")
    assert resolve_tile_url(static, "2024-01-01", today="2026-10-18") == static.tileTemplate
    assert resolve_tile_url(make_layer("custom:none", kind="custom"), None, today="2026-10-18") is None


def test_gibs_layer_without_template_gets_wmts_url():
    layer = make_layer(
        "gibs:MODIS_Terra_CorrectedReflectance_TrueColor",
        kind="gibs",
        requiresDate=True,
        defaultDate="2023-07-04",
        imageFormat="image/jpeg",
    )
    assert resolve_tile_url(layer, None, today="2026-10-18") == (
        "https://gibs.earthdata.nasa.gov/wmts/epsg3857/best/"
        "MODIS_Terra_CorrectedReflectance_TrueColor/default/2023-07-04/"
        "GoogleMapsCompatible_Level9/{z}/{y}/{x}.jpg"
    )

    night = make_layer("gibs:VIIRS_Black_Marble", kind="gibs", imageFormat="png")
    assert "/default//GoogleMapsCompatible_Level9/" in resolve_tile_url(night, None, today="2026-10-18")
