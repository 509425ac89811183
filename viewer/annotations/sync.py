from __future__ import annotations

import asyncio
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator
from urllib.parse import urlencode

from loguru import logger
from shapely.errors import ShapelyError

from annotations.api import AnnotationStore
from annotations.frame import frame_query_params
from annotations.interchange import DATA_PROJECTION, to_geojson_feature
from annotations.source import AnnotationSource, MutationEvent
from annotations.types import AnnotationFeature, AnnotationRecord, ViewportFrame
from geo.projection import Projection, transform_geometry
from net.errors import ApiError
from scheduling.debounce import DebounceScheduler
from settings.config import load_settings

FETCH_SLOT = "fetch"
SAVE_SLOT = "save"


class LaneState(str, Enum):
    idle = "idle"
    scheduled = "scheduled"
    running = "running"


class SyncEvent(str, Enum):
    frame_changed = "frame_changed"
    fetch_scheduled = "fetch_scheduled"
    fetch_started = "fetch_started"
    fetch_applied = "fetch_applied"
    fetch_discarded = "fetch_discarded"
    fetch_failed = "fetch_failed"
    local_mutation = "local_mutation"
    save_scheduled = "save_scheduled"
    save_started = "save_started"
    save_completed = "save_completed"
    save_failed = "save_failed"
    remote_apply_start = "remote_apply_start"
    remote_apply_end = "remote_apply_end"
    delete_completed = "delete_completed"
    delete_failed = "delete_failed"
    import_persisted = "import_persisted"
    import_rolled_back = "import_rolled_back"


EventListener = Callable[[SyncEvent, dict[str, Any]], None]
StatusListener = Callable[[str | None], None]


class AnnotationSyncEngine:
    """
    Keeps the local annotation set and the remote store in step for the current frame.

    Two lanes, each idle -> scheduled -> running -> idle:
    - fetch: frame changes (re)start a debounce; the fetch replaces the local set
    - save: local mutations (re)start a debounce; the save posts the whole local set

    Anything that writes non-user state into the source (fetch results, id merges,
    reprojection, bulk import) runs inside a remote-apply phase bracketed by
    `remote_apply_start` / `remote_apply_end`. Mutations seen inside that phase are not
    user edits and never schedule a save.
    """

    def __init__(
        self,
        store: AnnotationStore,
        source: AnnotationSource,
        *,
        scheduler: DebounceScheduler | None = None,
        save_debounce_s: float | None = None,
        fetch_debounce_s: float | None = None,
        max_query_length: int | None = None,
        on_event: EventListener | None = None,
        on_status: StatusListener | None = None,
    ):
        settings = load_settings()
        self.store = store
        self.source = source
        self.scheduler = scheduler or DebounceScheduler()
        self.save_debounce_s = settings.save_debounce_s if save_debounce_s is None else save_debounce_s
        self.fetch_debounce_s = settings.fetch_debounce_s if fetch_debounce_s is None else fetch_debounce_s
        self.max_query_length = settings.max_query_length if max_query_length is None else max_query_length
        self.on_event = on_event
        self.on_status = on_status

        self.frame: ViewportFrame | None = None
        self.last_error: str | None = None

        self._remote_depth = 0
        self._fetch_token = 0
        self._fetches_in_flight = 0
        self._saving = False
        self._save_again_frame: ViewportFrame | None = None
        # User-edited entities not yet confirmed by a save, keyed by object identity.
        self._dirty: dict[int, AnnotationFeature] = {}
        self._persist_lock = asyncio.Lock()
        self._unsubscribe = source.subscribe(self._on_mutation)

    # -- state ---------------------------------------------------------------------------

    @property
    def applying_remote(self) -> bool:
        return self._remote_depth > 0

    @property
    def fetch_state(self) -> LaneState:
        if self._fetches_in_flight:
            return LaneState.running
        if self.scheduler.is_pending(FETCH_SLOT):
            return LaneState.scheduled
        return LaneState.idle

    @property
    def save_state(self) -> LaneState:
        if self._saving:
            return LaneState.running
        if self.scheduler.is_pending(SAVE_SLOT):
            return LaneState.scheduled
        return LaneState.idle

    def _emit(self, event: SyncEvent, **info: Any) -> None:
        logger.debug(f"annotation sync: {event.value} {info or ''}")
        if self.on_event is not None:
            self.on_event(event, info)

    def _report(self, message: str | None) -> None:
        self.last_error = message
        if self.on_status is not None:
            self.on_status(message)

    @contextmanager
    def remote_apply(self) -> Iterator[None]:
        self._remote_depth += 1
        if self._remote_depth == 1:
            self._emit(SyncEvent.remote_apply_start)
        try:
            yield
        finally:
            self._remote_depth -= 1
            if self._remote_depth == 0:
                self._emit(SyncEvent.remote_apply_end)

    # -- triggers ------------------------------------------------------------------------

    def _on_mutation(self, event: MutationEvent) -> None:
        if self.applying_remote:
            return
        if event.kind == "clear":
            self._dirty.clear()
        elif event.kind == "remove":
            self._dirty.pop(id(event.feature), None)
        elif event.feature is not None:
            self._dirty[id(event.feature)] = event.feature
        self._emit(SyncEvent.local_mutation, kind=event.kind)
        self.schedule_save()

    def schedule_save(self) -> None:
        self.scheduler.schedule(SAVE_SLOT, self.save_debounce_s, self._run_save)
        self._emit(SyncEvent.save_scheduled)

    def frame_changed(self, frame: ViewportFrame) -> None:
        previous = self.frame
        if previous is not None and self.scheduler.cancel(SAVE_SLOT):
            # Edits made in the old frame are saved against the old frame.
            self.scheduler.track(asyncio.ensure_future(self._run_save(previous)))
        if previous is not None and previous.layerKey != frame.layerKey:
            # The old layer's save carries these; they must not leak into the new layer.
            self._dirty.clear()
        self.frame = frame
        self._emit(SyncEvent.frame_changed, layerKey=frame.layerKey)
        self.scheduler.schedule(FETCH_SLOT, self.fetch_debounce_s, self._run_fetch)
        self._emit(SyncEvent.fetch_scheduled)

    async def fetch_now(self) -> None:
        self.scheduler.cancel(FETCH_SLOT)
        await self._run_fetch()

    async def flush(self) -> None:
        """
        Run a scheduled save right away (e.g. before teardown).
        """
        if self.scheduler.cancel(SAVE_SLOT):
            await self._run_save()

    # -- fetch lane ----------------------------------------------------------------------

    async def _run_fetch(self) -> None:
        frame = self.frame
        if frame is None:
            return
        self._fetch_token += 1
        token = self._fetch_token
        self._fetches_in_flight += 1
        self._emit(SyncEvent.fetch_started, token=token)
        try:
            records = await self._load(frame)
        except ApiError as e:
            if token == self._fetch_token:
                logger.warning(f"Loading annotations failed: {e} (status={e.status})")
                self._report(f"Could not load annotations ({e.status or 'network'})")
                self._emit(SyncEvent.fetch_failed, token=token, status=e.status)
            return
        finally:
            self._fetches_in_flight -= 1

        if token != self._fetch_token or frame != self.frame:
            # A newer fetch was started (or the view moved on); its result wins.
            self._emit(SyncEvent.fetch_discarded, token=token)
            return
        self._apply_records(records)
        self._report(None)
        self._emit(SyncEvent.fetch_applied, token=token, count=len(records))

    async def _load(self, frame: ViewportFrame) -> list[AnnotationRecord]:
        params = frame_query_params(frame)
        if len(urlencode(params)) > self.max_query_length:
            envelope = await self.store.query_annotations({"frame": frame.to_wire(), "features": []})
            return envelope.features
        return await self.store.fetch_annotations(params)

    def _apply_records(self, records: list[AnnotationRecord]) -> None:
        ordered = sorted(
            enumerate(records),
            key=lambda p: (p[1].order if p[1].order is not None else p[0], p[0]),
        )
        # User edits survive while their save is still on its way: edited entities
        # replace the server's copy, unpersisted drawings are appended.
        edited: dict[str, AnnotationFeature] = {}
        unsaved: list[AnnotationFeature] = []
        if self.save_state != LaneState.idle:
            for f in self.source:
                if id(f) not in self._dirty:
                    continue
                if f.id is None:
                    unsaved.append(f)
                else:
                    edited[f.id] = f

        with self.remote_apply():
            self.source.clear()
            for _, rec in ordered:
                local = edited.pop(rec.id, None) or self._local_feature(rec)
                if local is not None:
                    self.source.add(local)
            for f in [*edited.values(), *unsaved]:
                self.source.add(f)
            for i, f in enumerate(self.source):
                f.order = i
        self._dirty = {k: f for k, f in self._dirty.items() if f in self.source}

    def _local_feature(self, rec: AnnotationRecord) -> AnnotationFeature | None:
        geometry = rec.feature.get("geometry")
        try:
            local = transform_geometry(geometry, DATA_PROJECTION, self.source.projection)
        except (KeyError, ValueError, TypeError, ShapelyError) as e:
            logger.warning(f"Skipping annotation {rec.id}: unreadable geometry ({e})")
            return None
        return AnnotationFeature(
            geometry=local,
            properties=dict(rec.feature.get("properties") or {}),
            id=rec.id,
        )

    # -- save lane -----------------------------------------------------------------------

    def _payload_feature(self, feature: AnnotationFeature) -> dict[str, Any]:
        out: dict[str, Any] = {
            "order": feature.order,
            "feature": to_geojson_feature(feature, self.source.projection),
            "properties": dict(feature.properties),
        }
        if feature.id is not None:
            out["id"] = feature.id
        return out

    async def _run_save(self, frame: ViewportFrame | None = None) -> None:
        frame = frame or self.frame
        if frame is None:
            logger.debug("Save skipped: no frame yet")
            return
        if self._saving:
            # One persistence call at a time; the running save picks this up afterwards.
            self._save_again_frame = frame
            return

        self._saving = True
        try:
            while frame is not None:
                await self._save_once(frame)
                frame, self._save_again_frame = self._save_again_frame, None
        finally:
            self._saving = False

    async def _save_once(self, frame: ViewportFrame) -> None:
        submitted = self.source.features
        for i, f in enumerate(submitted):
            f.order = i
        snapshots = [(dict(f.properties), f.geometry) for f in submitted]
        payload = {
            "frame": frame.to_wire(),
            "features": [self._payload_feature(f) for f in submitted],
        }

        self._emit(SyncEvent.save_started, count=len(submitted))
        try:
            async with self._persist_lock:
                envelope = await self.store.create_annotations(payload)
        except ApiError as e:
            logger.warning(f"Saving annotations failed: {e} (status={e.status})")
            self._report(f"Could not save annotations ({e.status or 'network'})")
            self._emit(SyncEvent.save_failed, status=e.status)
            return

        with self.remote_apply():
            # Server records come back in submission order.
            for local, (props_before, geometry_before), rec in zip(submitted, snapshots, envelope.features):
                if local not in self.source:
                    continue
                unchanged = local.properties == props_before and local.geometry == geometry_before
                # Don't clobber an edit made while the request was in flight.
                self.source.assign_identity(local, rec.id, rec.properties if unchanged else None)
                if unchanged:
                    self._dirty.pop(id(local), None)
                if rec.id:
                    # A fetch that landed after the commit may already hold this record.
                    for other in self.source:
                        if other is not local and other.id == rec.id:
                            self.source.remove(other)
        self._report(None)
        self._emit(SyncEvent.save_completed, count=len(envelope.features))

    # -- explicit operations -------------------------------------------------------------

    async def delete(self, feature: AnnotationFeature) -> bool:
        """
        Remove an annotation; persisted ones are deleted remotely first.

        Raises ApiError (and keeps the local entity) when the remote delete fails.
        """
        if feature not in self.source:
            return False
        if feature.id is not None:
            try:
                await self.store.delete_annotation(feature.id)
            except ApiError as e:
                logger.warning(f"Deleting annotation {feature.id} failed: {e}")
                self._report(f"Could not delete annotation ({e.status or 'network'})")
                self._emit(SyncEvent.delete_failed, id=feature.id, status=e.status)
                raise
        # Already in sync (deleted remotely or never persisted); not a save trigger.
        with self.remote_apply():
            self.source.remove(feature)
        self._emit(SyncEvent.delete_completed, id=feature.id)
        return True

    async def import_features(self, features: list[AnnotationFeature]) -> list[AnnotationFeature]:
        """
        Add features locally, then persist each one on its own. A feature whose save
        fails is removed again; the others are kept.
        """
        frame = self.frame
        if frame is None:
            raise RuntimeError("Cannot import annotations before a frame is known")

        with self.remote_apply():
            self.source.add_many(features)

        persisted: list[AnnotationFeature] = []
        failures = 0
        for f in features:
            f.order = max(0, self.source.index_of(f))
            payload = {"frame": frame.to_wire(), "features": [self._payload_feature(f)]}
            try:
                async with self._persist_lock:
                    envelope = await self.store.create_annotations(payload)
            except ApiError as e:
                failures += 1
                logger.warning(f"Imported annotation rolled back: {e}")
                with self.remote_apply():
                    self.source.remove(f)
                self._emit(SyncEvent.import_rolled_back, status=e.status)
                continue
            rec = envelope.features[0] if envelope.features else None
            with self.remote_apply():
                self.source.assign_identity(f, rec.id if rec else None, rec.properties if rec else None)
            persisted.append(f)
            self._emit(SyncEvent.import_persisted, id=f.id)

        if failures:
            self._report(f"{failures} imported annotation(s) could not be saved")
        return persisted

    def reproject(self, target: Projection) -> None:
        with self.remote_apply():
            self.source.reproject(target)

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    def close(self) -> None:
        self.scheduler.cancel_all()
        self._unsubscribe()
