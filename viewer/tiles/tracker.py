from __future__ import annotations

from typing import Any, Callable, Protocol

TILE_LOAD_START = "tileloadstart"
TILE_LOAD_END = "tileloadend"
TILE_LOAD_ERROR = "tileloaderror"


class TileSource(Protocol):
    """
    Event surface of the renderer's tile source.
    """

    def on(self, event: str, listener: Callable[..., Any]) -> Any: ...

    def un(self, event: str, listener: Callable[..., Any]) -> Any: ...


class TileLoadTracker:
    """
    Pending/error tile counters for the active tile source.

    Attaching a new source detaches every listener from the old one first and resets
    both counters, so a replaced source can't keep moving them.
    """

    def __init__(self, on_change: Callable[[int, int], None] | None = None):
        self.pending = 0
        self.errors = 0
        self.source: TileSource | None = None
        self._on_change = on_change
        self._listeners: dict[str, Callable[..., Any]] = {
            TILE_LOAD_START: self._on_start,
            TILE_LOAD_END: self._on_end,
            TILE_LOAD_ERROR: self._on_error,
        }

    def attach(self, source: TileSource) -> None:
        self.detach()
        self.source = source
        for event, listener in self._listeners.items():
            source.on(event, listener)

    def detach(self) -> None:
        if self.source is not None:
            for event, listener in self._listeners.items():
                self.source.un(event, listener)
            self.source = None
        self.pending = 0
        self.errors = 0
        self._changed()

    @property
    def loading(self) -> bool:
        return self.pending > 0

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.pending, self.errors)

    def _on_start(self, *_args: Any) -> None:
        self.pending += 1
        self._changed()

    def _on_end(self, *_args: Any) -> None:
        self.pending = max(0, self.pending - 1)
        self._changed()

    def _on_error(self, *_args: Any) -> None:
        self.pending = max(0, self.pending - 1)
        self.errors += 1
        self._changed()
