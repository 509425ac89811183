from __future__ import annotations

import asyncio
from typing import Protocol

from loguru import logger

from catalog.normalize import normalize_layers_response
from catalog.types import LayerDescriptor, LayersCatalog


class CatalogSource(Protocol):
    async def fetch_layers(self): ...


class CatalogCache:
    """
    Process-wide layer catalog memo with single-flight fetch.

    - first successful result is kept until `invalidate()`
    - concurrent callers during the first fetch share one pending task
    - a failed fetch is not cached; the next call retries
    """

    def __init__(self, source: CatalogSource):
        self._source = source
        self._catalog: LayersCatalog | None = None
        self._pending: asyncio.Task | None = None

    @property
    def cached(self) -> LayersCatalog | None:
        return self._catalog

    async def get(self, *, force: bool = False) -> LayersCatalog:
        if not force and self._catalog is not None:
            return self._catalog
        if self._pending is None or force:
            self._pending = asyncio.ensure_future(self._load())
        task = self._pending
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._pending is task:
                self._pending = None

    async def _load(self) -> LayersCatalog:
        data = await self._source.fetch_layers()
        catalog = normalize_layers_response(data)
        self._catalog = catalog
        logger.info(
            f"Layer catalog loaded: {len(catalog)} bodies, "
            f"{sum(len(b.layers) for b in catalog)} layers"
        )
        return catalog

    def invalidate(self) -> None:
        self._catalog = None
        self._pending = None


def flatten_catalog(catalog: LayersCatalog) -> list[LayerDescriptor]:
    return [layer for body in catalog for layer in body.layers]


def find_layer(catalog: LayersCatalog, layer_key: str | None) -> LayerDescriptor | None:
    key = (layer_key or "").strip()
    if not key:
        return None
    for layer in flatten_catalog(catalog):
        if layer.layerKey == key:
            return layer
    return None


def layer_needs_date(layer: LayerDescriptor) -> bool:
    return layer.requiresDate or "{date}" in (layer.tileTemplate or "")


def layer_default_date(layer: LayerDescriptor, fallback_iso: str) -> str:
    return layer.defaultDate or fallback_iso
