"""Interfaces to the rendering host plus a small in-memory implementation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

from imosaic.geo.rectangle import Rectangle
from imosaic.models import Raster
from imosaic.viewport import ViewState

LOGGER = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Event:
    """Listener list raised by the host (camera moves, frame ticks)."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: Listener) -> bool:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return False
            return True

    def raise_event(self, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(*args)


class LayerCollection(Protocol):
    """Imagery layer operations the mosaic needs from the renderer."""

    def create_imagery_layer(self, raster: Raster, rectangle: Rectangle, credit: str | None) -> Any:
        ...

    def add_layer(self, layer: Any) -> None:
        ...

    def remove_layer(self, layer: Any) -> None:
        ...

    def set_cutout(self, layer: Any, rectangle: Rectangle | None) -> None:
        ...


class DebugOverlay(Protocol):
    """Optional outline drawing used for debugging."""

    def show_bounds(self, rectangle: Rectangle, visible: bool) -> None:
        ...

    def set_bounds_visible(self, visible: bool) -> None:
        ...

    def show_footprints(self, footprints: Sequence[tuple[str, list[tuple[float, float]]]]) -> None:
        ...


class Scene(Protocol):
    """Host scene the controller attaches to."""

    layers: LayerCollection
    camera_changed: Event
    post_render: Event
    debug: DebugOverlay | None

    def current_view(self) -> ViewState:
        ...


@dataclass(eq=False)
class ImageryLayer:
    """Layer handle; compared by identity."""

    raster: Raster
    rectangle: Rectangle
    credit: str | None = None
    cutout: Rectangle | None = None


@dataclass
class LayerStack:
    """In-memory layer collection, bottom layer first."""

    layers: list[ImageryLayer] = field(default_factory=list)

    def create_imagery_layer(
        self,
        raster: Raster,
        rectangle: Rectangle,
        credit: str | None,
    ) -> ImageryLayer:
        return ImageryLayer(raster=raster, rectangle=rectangle, credit=credit)

    def add_layer(self, layer: ImageryLayer) -> None:
        self.layers.append(layer)

    def remove_layer(self, layer: ImageryLayer) -> None:
        self.layers = [item for item in self.layers if item is not layer]

    def set_cutout(self, layer: ImageryLayer, rectangle: Rectangle | None) -> None:
        layer.cutout = rectangle
