from __future__ import annotations

from datetime import date as _date
from typing import Any, Callable

from loguru import logger

from annotations.api import AnnotationApi, AnnotationStore
from annotations.frame import build_frame
from annotations.interchange import export_geojson, parse_geojson
from annotations.listing import AnnotationEntry, list_annotations
from annotations.source import AnnotationSource
from annotations.sync import AnnotationSyncEngine, EventListener
from annotations.types import AnnotationFeature, ViewportFrame
from catalog.cache import CatalogCache, find_layer
from catalog.normalize import is_iso_date
from catalog.types import LayerDescriptor, LayersCatalog
from geo.projection import ProjectedView, ViewState, ensure_projection, view_extent
from net.client import ApiClient
from net.errors import ApiError
from permalink.codec import decode, format_fragment
from permalink.startup import resolve_startup
from scheduling.debounce import DebounceScheduler
from settings.config import ViewerSettings, load_settings
from tiles.source import resolve_tile_url
from tiles.tracker import TileLoadTracker, TileSource

DEFAULT_VIEWPORT = (1280, 800)

TileSourceFactory = Callable[[LayerDescriptor, str], TileSource]


def today_iso() -> str:
    return _date.today().isoformat()


class ViewerSession:
    """
    Glue between the map collaborator's settle events and the controller pieces.

    The renderer calls `move_end` / `change_layer` / `change_date` once a gesture has
    settled; the session updates the permalink, builds the frame for the active layer
    and hands it to the annotation sync engine.
    """

    def __init__(
        self,
        client: ApiClient | None = None,
        *,
        catalog: CatalogCache | None = None,
        store: AnnotationStore | None = None,
        write_permalink: Callable[[str], None] | None = None,
        tile_source_factory: TileSourceFactory | None = None,
        viewport_size: tuple[int, int] = DEFAULT_VIEWPORT,
        today: Callable[[], str] = today_iso,
        settings: ViewerSettings | None = None,
        scheduler: DebounceScheduler | None = None,
        on_sync_event: EventListener | None = None,
    ):
        self.settings = settings or load_settings()
        self._owns_client = client is None
        self.client = client or ApiClient(settings=self.settings)
        self.catalog = catalog or CatalogCache(self.client)
        self.source = AnnotationSource()
        self.sync = AnnotationSyncEngine(
            store or AnnotationApi(self.client, delete_secret=self.settings.delete_secret),
            self.source,
            scheduler=scheduler,
            save_debounce_s=self.settings.save_debounce_s,
            fetch_debounce_s=self.settings.fetch_debounce_s,
            max_query_length=self.settings.max_query_length,
            on_event=on_sync_event,
            on_status=self._on_sync_status,
        )
        self.tiles = TileLoadTracker()
        self.write_permalink = write_permalink
        self.tile_source_factory = tile_source_factory
        self.viewport_size = viewport_size
        self.today = today

        self.layer: LayerDescriptor | None = None
        self.date: str = today()
        self.opacity: float = 1.0
        self.view: ViewState | None = None
        self.projected: ProjectedView | None = None
        self.status: str | None = None
        self.permalink: str | None = None
        self._tile_url: str | None = None

    # -- lifecycle -----------------------------------------------------------------------

    async def start(self, fragment: str | None = None) -> None:
        catalog = await self._load_catalog()
        startup = resolve_startup(decode(fragment), catalog, today=self.today())

        self.date = startup.date
        self.layer = startup.layer
        self.sync.reproject(startup.projection)
        view = ViewState.from_lonlat(startup.lon, startup.lat, startup.zoom, startup.projection)
        if self.layer is not None:
            self.projected = ensure_projection(view, self.layer)
            view = self.projected.view
        self.view = view

        logger.info(
            f"Viewer started on {self.layer.layerKey if self.layer else '<no layer>'} "
            f"({startup.projection.value}, {self.date})"
        )
        self._sync_tiles()
        self._settled()

    async def _load_catalog(self) -> LayersCatalog:
        try:
            catalog = await self.catalog.get()
        except ApiError as e:
            logger.warning(f"Layer catalog unavailable: {e}")
            self._set_status(f"Layer catalog unavailable ({e.status or 'network'})")
            return self.catalog.cached or []
        return catalog

    async def close(self, *, flush: bool = True) -> None:
        if flush:
            await self.sync.flush()
        await self.sync.wait_idle()
        self.sync.close()
        self.tiles.detach()
        if self._owns_client:
            await self.client.aclose()

    # -- settle events -------------------------------------------------------------------

    def move_end(self, view: ViewState) -> None:
        self.view = view
        self._settled()

    def resize(self, size: tuple[int, int]) -> None:
        self.viewport_size = (int(size[0]), int(size[1]))
        self._settled()

    def change_layer(self, layer_key: str) -> bool:
        layer = find_layer(self.catalog.cached or [], layer_key)
        if layer is None or self.view is None:
            logger.warning(f"Ignoring switch to unknown layer {layer_key!r}")
            return False

        self.projected = ensure_projection(self.view, layer, keep_center=True)
        if layer.projection != self.source.projection:
            self.sync.reproject(layer.projection)
        self.layer = layer
        self.view = self.projected.view
        self._sync_tiles()
        self._settled()
        return True

    def change_date(self, value: str) -> bool:
        if not is_iso_date(value):
            return False
        self.date = value
        self._sync_tiles()
        self._settled()
        return True

    def set_opacity(self, value: float) -> None:
        # Styling only; does not rescope annotations.
        self.opacity = max(0.0, min(1.0, float(value)))

    def current_frame(self) -> ViewportFrame | None:
        if self.layer is None or self.view is None:
            return None
        return build_frame(
            self.view,
            self.layer,
            view_extent(self.view, self.viewport_size),
            date=self.date,
            opacity=self.opacity,
        )

    def _settled(self) -> None:
        if self.view is None:
            return
        self.permalink = format_fragment(
            self.view.center_lonlat(),
            self.view.zoom,
            self.date,
            self.layer.layerKey if self.layer else None,
            self.view.projection,
        )
        if self.write_permalink is not None:
            self.write_permalink(self.permalink)

        frame = self.current_frame()
        if frame is not None:
            self.sync.frame_changed(frame)

    def _sync_tiles(self) -> None:
        url = resolve_tile_url(self.layer, self.date, today=self.today()) if self.layer else None
        if url == self._tile_url:
            return
        self._tile_url = url
        if url is None or self.tile_source_factory is None:
            self.tiles.detach()
            return
        self.tiles.attach(self.tile_source_factory(self.layer, url))

    @property
    def tile_url(self) -> str | None:
        return self._tile_url

    # -- annotations ---------------------------------------------------------------------

    def draw(self, geometry: dict[str, Any], properties: dict[str, Any] | None = None) -> AnnotationFeature:
        """
        Add a user drawing; `geometry` is in the current working projection.
        """
        return self.source.add(AnnotationFeature(geometry=geometry, properties=dict(properties or {})))

    def rename(self, feature: AnnotationFeature, name: str) -> None:
        self.source.set_property(feature, "name", name)

    async def delete(self, feature: AnnotationFeature) -> bool:
        return await self.sync.delete(feature)

    def annotation_list(self, filter_text: str = "") -> list[AnnotationEntry]:
        return list_annotations(self.source.features, self.source.projection, filter_text=filter_text)

    def export_annotations(self) -> str:
        return export_geojson(self.source.features, self.source.projection)

    async def import_annotations(self, text: str) -> list[AnnotationFeature]:
        features = parse_geojson(text, self.source.projection)
        return await self.sync.import_features(features)

    # -- status --------------------------------------------------------------------------

    def _set_status(self, message: str | None) -> None:
        self.status = message

    def _on_sync_status(self, message: str | None) -> None:
        self._set_status(message)
