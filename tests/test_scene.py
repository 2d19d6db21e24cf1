from __future__ import annotations

from imosaic.geo.rectangle import Rectangle
from imosaic.models import Raster
from imosaic.scene import Event, LayerStack


def test_event_listeners_and_remover() -> None:
    event = Event()
    calls: list[tuple] = []
    remove = event.add_listener(lambda *args: calls.append(args))

    event.raise_event(1, "a")
    remove()
    event.raise_event(2, "b")

    assert calls == [(1, "a")]
    assert len(event) == 0
    assert not event.remove_listener(print)


def test_layer_stack_add_remove_and_cutout() -> None:
    stack = LayerStack()
    rectangle = Rectangle(0.0, 0.0, 1.0, 1.0)
    raster = Raster.blank(2, 2, rectangle, 0)
    bottom = stack.create_imagery_layer(raster, rectangle, "credit")
    top = stack.create_imagery_layer(raster, rectangle, None)

    stack.add_layer(bottom)
    stack.add_layer(top)
    stack.set_cutout(bottom, Rectangle(0.25, 0.25, 0.5, 0.5))
    stack.remove_layer(top)

    assert stack.layers == [bottom]
    assert bottom.credit == "credit"
    assert bottom.cutout == Rectangle(0.25, 0.25, 0.5, 0.5)
