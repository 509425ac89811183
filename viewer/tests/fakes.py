from __future__ import annotations

import asyncio
from typing import Any, Callable

from annotations.records import normalize_annotation_list, normalize_envelope
from annotations.types import AnnotationEnvelope, AnnotationRecord
from catalog.types import LayerDescriptor
from geo.projection import Projection
from net.errors import ApiError


def make_layer(
    key: str = "gibs:MODIS_Terra_CorrectedReflectance_TrueColor",
    *,
    projection: Projection = Projection.epsg3857,
    body_id: str = "earth",
    **extra: Any,
) -> LayerDescriptor:
    extra.setdefault("title", key)
    extra.setdefault("bodyName", body_id.title())
    return LayerDescriptor(layerKey=key, bodyId=body_id, projection=projection, **extra)


class FakeStore:
    """
    In-memory annotation store keyed by frame layer.

    Saves upsert by id; records not carrying an id get `a<N>`. Server-side properties
    gain a `savedBy` marker so merges can be observed.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, dict[str, Any]]] = {}
        self.fetch_calls: list[dict[str, Any]] = []
        self.query_calls: list[dict[str, Any]] = []
        self.create_calls: list[dict[str, Any]] = []
        self.delete_calls: list[str] = []
        self.fetch_delays: dict[str, float] = {}
        self.create_delay = 0.0
        self.respond_delay = 0.0
        self.fail_create: Callable[[dict[str, Any]], bool] = lambda payload: False
        self.fail_delete = False
        self.fail_fetch = False
        self.saving_now = 0
        self.max_saving = 0
        self._next = 1

    def seed(self, layer_key: str, rid: str, lon: float, lat: float, **props: Any) -> None:
        order = len(self.records.get(layer_key, {}))
        self.records.setdefault(layer_key, {})[rid] = {
            "id": rid,
            "order": props.pop("order", order),
            "feature": {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
                "properties": {},
            },
            "properties": props,
        }

    async def fetch_annotations(self, params: dict[str, Any]) -> list[AnnotationRecord]:
        self.fetch_calls.append(params)
        layer_key = params.get("layerKey")
        await asyncio.sleep(self.fetch_delays.get(layer_key, 0.0))
        if self.fail_fetch:
            raise ApiError("API request failed (503)", 503)
        return normalize_annotation_list(list(self.records.get(layer_key, {}).values()))

    async def query_annotations(self, payload: dict[str, Any]) -> AnnotationEnvelope:
        self.query_calls.append(payload)
        layer_key = payload["frame"]["layerKey"]
        return normalize_envelope(
            {"frame": payload["frame"], "items": list(self.records.get(layer_key, {}).values())}
        )

    async def create_annotations(self, payload: dict[str, Any]) -> AnnotationEnvelope:
        self.create_calls.append(payload)
        self.saving_now += 1
        self.max_saving = max(self.max_saving, self.saving_now)
        try:
            await asyncio.sleep(self.create_delay)
            if self.fail_create(payload):
                raise ApiError("API request failed (500)", 500, {"detail": "boom"})
            layer_key = payload["frame"]["layerKey"]
            out = []
            for item in payload["features"]:
                rid = item.get("id")
                if not rid:
                    rid = f"a{self._next}"
                    self._next += 1
                rec = {
                    "id": rid,
                    "order": item["order"],
                    "feature": item["feature"],
                    "properties": {**item["properties"], "savedBy": "server"},
                }
                self.records.setdefault(layer_key, {})[rid] = rec
                out.append(rec)
            # Committed; the response itself can still be slow.
            await asyncio.sleep(self.respond_delay)
            return normalize_envelope({"frame": payload["frame"], "features": out})
        finally:
            self.saving_now -= 1

    async def delete_annotation(self, annotation_id: str) -> None:
        self.delete_calls.append(annotation_id)
        await asyncio.sleep(0)
        if self.fail_delete:
            raise ApiError("API request failed (403)", 403, {"detail": "bad secret"})
        for recs in self.records.values():
            recs.pop(annotation_id, None)


class FakeTileSource:
    def __init__(self, url: str = "") -> None:
        self.url = url
        self.listeners: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self.listeners.setdefault(event, []).append(listener)

    def un(self, event: str, listener: Callable[..., Any]) -> None:
        if listener in self.listeners.get(event, []):
            self.listeners[event].remove(listener)

    def fire(self, event: str) -> None:
        for listener in list(self.listeners.get(event, [])):
            listener({"type": event})

    @property
    def listener_count(self) -> int:
        return sum(len(v) for v in self.listeners.values())
