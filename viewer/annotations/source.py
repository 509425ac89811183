from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Literal

from annotations.types import AnnotationFeature
from geo.projection import Projection, transform_geometry

MutationKind = Literal["add", "remove", "change", "clear"]


@dataclass(frozen=True)
class MutationEvent:
    kind: MutationKind
    feature: AnnotationFeature | None = None


Listener = Callable[[MutationEvent], None]


class AnnotationSource:
    """
    The local annotation entity set (what the map draws).

    Every mutation notifies listeners. Whether a mutation counts as a user edit is not
    decided here; the sync engine decides that from its own phase.
    """

    def __init__(self, projection: Projection = Projection.epsg3857):
        self.projection = projection
        self._features: list[AnnotationFeature] = []
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: MutationKind, feature: AnnotationFeature | None = None) -> None:
        event = MutationEvent(kind=kind, feature=feature)
        for listener in list(self._listeners):
            listener(event)

    @property
    def features(self) -> list[AnnotationFeature]:
        return list(self._features)

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self) -> Iterator[AnnotationFeature]:
        return iter(list(self._features))

    def __contains__(self, feature: object) -> bool:
        return any(f is feature for f in self._features)

    def index_of(self, feature: AnnotationFeature) -> int:
        for i, f in enumerate(self._features):
            if f is feature:
                return i
        return -1

    def find_by_id(self, annotation_id: str) -> AnnotationFeature | None:
        for f in self._features:
            if f.id == annotation_id:
                return f
        return None

    def add(self, feature: AnnotationFeature) -> AnnotationFeature:
        if feature not in self:
            self._features.append(feature)
            self._emit("add", feature)
        return feature

    def add_many(self, features: Iterable[AnnotationFeature]) -> None:
        for f in features:
            self.add(f)

    def remove(self, feature: AnnotationFeature) -> bool:
        i = self.index_of(feature)
        if i < 0:
            return False
        del self._features[i]
        self._emit("remove", feature)
        return True

    def clear(self) -> None:
        self._features = []
        self._emit("clear")

    def set_geometry(self, feature: AnnotationFeature, geometry: dict[str, Any]) -> None:
        feature.geometry = geometry
        self._emit("change", feature)

    def set_property(self, feature: AnnotationFeature, key: str, value: Any) -> None:
        feature.properties = {**feature.properties, key: value}
        self._emit("change", feature)

    def assign_identity(
        self,
        feature: AnnotationFeature,
        annotation_id: str | None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        if annotation_id:
            feature.id = annotation_id
        if properties:
            feature.properties = {**feature.properties, **properties}
        self._emit("change", feature)

    def reproject(self, target: Projection) -> None:
        if target == self.projection:
            return
        src = self.projection
        self.projection = target
        for f in self._features:
            f.geometry = transform_geometry(f.geometry, src, target)
            self._emit("change", f)
