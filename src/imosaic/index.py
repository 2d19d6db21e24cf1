"""Spatial index over source footprints for picking."""

from __future__ import annotations

from typing import Generic, Iterable, TypeVar

import shapely
from shapely import STRtree
from shapely.geometry.base import BaseGeometry

from imosaic.geo.rectangle import Rectangle

IdT = TypeVar("IdT")


def _geometry(rectangle: Rectangle) -> BaseGeometry:
    """Return a shapely geometry whose envelope is the rectangle."""
    if rectangle.west == rectangle.east and rectangle.south == rectangle.north:
        return shapely.Point(rectangle.west, rectangle.south)
    return shapely.box(rectangle.west, rectangle.south, rectangle.east, rectangle.north)


class SpatialIndex(Generic[IdT]):
    """Immutable R-tree of geographic rectangles keyed by caller ids.

    Entries are supplied once at construction. A rectangle whose east edge
    runs past 180 degrees is stored as its two longitude parts under one id.
    Queries compare envelopes, so touching edges count as overlap.
    """

    def __init__(self, entries: Iterable[tuple[IdT, Rectangle]]) -> None:
        ids: list[IdT] = []
        owners: list[int] = []
        geometries: list[BaseGeometry] = []
        for item_id, rectangle in entries:
            for part in rectangle.longitude_parts():
                owners.append(len(ids))
                geometries.append(_geometry(part))
            ids.append(item_id)
        self._ids = tuple(ids)
        self._owners = tuple(owners)
        self._tree = STRtree(geometries)

    def __len__(self) -> int:
        return len(self._ids)

    def search(self, rectangle: Rectangle) -> list[IdT]:
        """Return ids of every entry overlapping the query, in entry order."""
        if not self._ids:
            return []
        entries: set[int] = set()
        for part in rectangle.longitude_parts():
            hits = self._tree.query(_geometry(part))
            entries.update(self._owners[int(position)] for position in hits)
        return [self._ids[entry] for entry in sorted(entries)]
