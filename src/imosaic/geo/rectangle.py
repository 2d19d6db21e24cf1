"""Axis-aligned rectangle value type."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

Bounds = Tuple[float, float, float, float]

LONGITUDE_LIMIT = 180.0


@dataclass(frozen=True)
class Rectangle:
    """Rectangle in (west, south, east, north) order.

    Geographic rectangles are in degrees. The same type holds projected
    rectangles in the units of their source CRS.
    """

    west: float
    south: float
    east: float
    north: float

    @classmethod
    def from_bounds(cls, bounds: Sequence[float]) -> "Rectangle":
        """Build a rectangle from a (west, south, east, north) sequence."""
        if len(bounds) != 4:
            raise ValueError(f"Rectangle bounds need 4 values, got {len(bounds)}.")
        west, south, east, north = (float(value) for value in bounds)
        return cls(west, south, east, north)

    @classmethod
    def point(cls, x: float, y: float) -> "Rectangle":
        """Return a zero-area rectangle at a single point."""
        return cls(x, y, x, y)

    @classmethod
    def unbounded(cls) -> "Rectangle":
        """Return an inverted rectangle that acts as the identity for union."""
        return cls(math.inf, math.inf, -math.inf, -math.inf)

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    def is_empty(self) -> bool:
        """Return True when the rectangle is inverted or has zero extent."""
        return self.north <= self.south or self.east <= self.west

    def is_finite(self) -> bool:
        return all(math.isfinite(value) for value in self.bounds())

    def union(self, other: "Rectangle") -> "Rectangle":
        """Return the min/max merge of both rectangles' edges."""
        return Rectangle(
            min(self.west, other.west),
            min(self.south, other.south),
            max(self.east, other.east),
            max(self.north, other.north),
        )

    def clip(self, other: "Rectangle") -> "Rectangle":
        """Return the intersection with another rectangle.

        The result is inverted when the rectangles do not overlap; callers
        check ``is_empty`` afterwards.
        """
        return Rectangle(
            max(self.west, other.west),
            max(self.south, other.south),
            min(self.east, other.east),
            min(self.north, other.north),
        )

    def overlaps(self, other: "Rectangle") -> bool:
        """Return True when the rectangles share any point (edges inclusive)."""
        return (
            self.west <= other.east
            and other.west <= self.east
            and self.south <= other.north
            and other.south <= self.north
        )

    def contains(self, x: float, y: float) -> bool:
        """Return True when the point lies inside or on the boundary."""
        return self.west <= x <= self.east and self.south <= y <= self.north

    def expand(self, x: float, y: float) -> "Rectangle":
        """Return the rectangle grown to include a point."""
        return Rectangle(
            min(self.west, x),
            min(self.south, y),
            max(self.east, x),
            max(self.north, y),
        )

    def crosses_antimeridian(self) -> bool:
        """Return True for a geographic rectangle whose east edge runs past 180."""
        return self.east > LONGITUDE_LIMIT

    def longitude_parts(self) -> tuple["Rectangle", ...]:
        """Split a geographic rectangle at the antimeridian.

        A rectangle crossing 180 degrees becomes its western part up to 180
        and its eastern part from -180. One wrapping the whole globe becomes
        the full longitude band.
        """
        if not self.crosses_antimeridian():
            return (self,)
        wrapped_east = self.east - 2 * LONGITUDE_LIMIT
        if wrapped_east >= self.west:
            return (Rectangle(-LONGITUDE_LIMIT, self.south, LONGITUDE_LIMIT, self.north),)
        return (
            Rectangle(self.west, self.south, LONGITUDE_LIMIT, self.north),
            Rectangle(-LONGITUDE_LIMIT, self.south, wrapped_east, self.north),
        )

    def overlaps_geographic(self, other: "Rectangle") -> bool:
        """Like ``overlaps``, with either side allowed to cross 180 degrees."""
        return any(
            part.overlaps(other_part)
            for part in self.longitude_parts()
            for other_part in other.longitude_parts()
        )

    def bounds(self) -> Bounds:
        return (self.west, self.south, self.east, self.north)


def union_all(rectangles: Iterable[Rectangle | None]) -> Rectangle | None:
    """Merge rectangles edge-wise, skipping missing entries."""
    merged: Rectangle | None = None
    for rectangle in rectangles:
        if rectangle is None:
            continue
        merged = rectangle if merged is None else merged.union(rectangle)
    return merged


def union_geographic(rectangles: Iterable[Rectangle | None]) -> Rectangle | None:
    """Merge geographic rectangles after splitting them at the antimeridian."""
    return union_all(
        part
        for rectangle in rectangles
        if rectangle is not None
        for part in rectangle.longitude_parts()
    )
