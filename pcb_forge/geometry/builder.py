"""Geometry builder -- drawing primitives to closed polygons.

A pure projection: every primitive maps to one or more :class:`Polygon`
values, in input order, without any boolean combination.  Overlap and
clear-polarity subtraction are resolved later by the contour classifier.

Mapping
-------
Flash      aperture outline placed at the flash point (object transform
           applied about that point); an aperture hole becomes a following
           polygon of opposite polarity.
Stroke     circular aperture: the path inflated by the shared offset
           primitive (round joins and caps).  Rectangular aperture: exact
           Minkowski sum, the convex hull of the rectangle at both ends of
           each segment, unioned.
Region     the contour itself.
DrillHit   circle of the hit diameter, tagged ``is_hole``.
DrillRoute ribbon of the route diameter, tagged ``is_hole`` and keeping
           its centreline.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

import numpy as np
from shapely.geometry import MultiPoint
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.ops import unary_union

from pcb_forge.artwork.primitives import (
    Aperture,
    ApertureTransform,
    CircleAperture,
    DrillHit,
    DrillRoute,
    Flash,
    MacroAperture,
    ObroundAperture,
    Point,
    Polarity,
    PolygonAperture,
    RectangleAperture,
    Region,
    Stroke,
)
from pcb_forge.errors import GeometryError
from pcb_forge.utils.geometry import (
    circle_ring,
    close_ring,
    linearize_arc,
    offset_polyline,
    signed_area,
)

logger = logging.getLogger(__name__)

MIN_AREA_MM2 = 1e-9


# ---------------------------------------------------------------------------
# Polygon
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Polygon:
    """Closed contour with polarity.

    Parameters
    ----------
    ring : np.ndarray
        ``(N, 2)`` vertices in mm; closed on construction.
    polarity : Polarity
        Dark adds material, clear removes it.
    label : str
        Human-readable origin used in error messages.
    holes : tuple[np.ndarray, ...]
        Interior rings (only stroke ribbons that cross themselves).
    is_hole : bool
        Drilled hole; exempt from tool-radius compensation.
    circle : tuple[Point, float] | None
        Exact centre and diameter of a drilled hole.
    centerline : np.ndarray | None
        Path of a routed slot.

    Raises
    ------
    GeometryError
        If the ring has fewer than three distinct vertices or zero area.
    """

    ring: np.ndarray
    polarity: Polarity = Polarity.DARK
    label: str = "polygon"
    holes: tuple[np.ndarray, ...] = ()
    is_hole: bool = False
    circle: tuple[Point, float] | None = None
    centerline: np.ndarray | None = None

    def __post_init__(self) -> None:
        ring = close_ring(self.ring)
        if len(ring) < 4:
            raise GeometryError(self.label, "polygon needs at least three vertices")
        if abs(signed_area(ring)) <= MIN_AREA_MM2:
            raise GeometryError(self.label, "degenerate zero-area polygon")
        object.__setattr__(self, "ring", ring)
        object.__setattr__(self, "holes", tuple(close_ring(h) for h in self.holes))

    @property
    def area(self) -> float:
        return abs(signed_area(self.ring))

    def to_shapely(self) -> ShapelyPolygon:
        return ShapelyPolygon(self.ring, [h for h in self.holes])


# ---------------------------------------------------------------------------
# Aperture outlines (local coordinates, mm)
# ---------------------------------------------------------------------------


def _obround(width: float, height: float) -> np.ndarray:
    if math.isclose(width, height):
        return circle_ring((0.0, 0.0), width)
    if width > height:
        r = height / 2.0
        dx = width / 2.0 - r
        right = linearize_arc((dx, -r), (dx, r), (dx, 0.0), clockwise=False)
        left = linearize_arc((-dx, r), (-dx, -r), (-dx, 0.0), clockwise=False)
    else:
        r = width / 2.0
        dy = height / 2.0 - r
        top = linearize_arc((r, dy), (-r, dy), (0.0, dy), clockwise=False)
        bottom = linearize_arc((-r, -dy), (r, -dy), (0.0, -dy), clockwise=False)
        right, left = top, bottom
    return close_ring(np.vstack([right, left]))


def _regular_polygon(outer_diameter: float, vertices: int, rotation_deg: float) -> np.ndarray:
    r = outer_diameter / 2.0
    angles = np.radians(rotation_deg) + 2.0 * np.pi * np.arange(vertices) / vertices
    return close_ring(np.column_stack([r * np.cos(angles), r * np.sin(angles)]))


def _rectangle(width: float, height: float) -> np.ndarray:
    hw, hh = width / 2.0, height / 2.0
    return close_ring([(-hw, -hh), (hw, -hh), (hw, hh), (-hw, hh)])


def aperture_shapes(aperture: Aperture) -> list[tuple[bool, np.ndarray]]:
    """Outline of an aperture centred on the origin.

    Returns
    -------
    list[tuple[bool, np.ndarray]]
        ``(exposed, ring)`` pairs in drawing order; ``exposed=False``
        marks a cut-out (aperture hole or macro exposure off).
    """
    if isinstance(aperture, CircleAperture):
        shapes = [(True, circle_ring((0.0, 0.0), aperture.diameter))]
    elif isinstance(aperture, RectangleAperture):
        shapes = [(True, _rectangle(aperture.width, aperture.height))]
    elif isinstance(aperture, ObroundAperture):
        shapes = [(True, _obround(aperture.width, aperture.height))]
    elif isinstance(aperture, PolygonAperture):
        shapes = [(True, _regular_polygon(
            aperture.outer_diameter, aperture.vertices, aperture.rotation_deg,
        ))]
    elif isinstance(aperture, MacroAperture):
        return [
            (shape.polarity is Polarity.DARK, close_ring(shape.points))
            for shape in aperture.shapes
        ]
    else:
        raise TypeError(f"Unsupported aperture: {type(aperture).__name__}")

    hole = getattr(aperture, "hole_diameter", None)
    if hole:
        shapes.append((False, circle_ring((0.0, 0.0), hole)))
    return shapes


def _place(ring: np.ndarray, at: Point, transform: ApertureTransform) -> np.ndarray:
    if not transform.is_identity:
        ring = np.array([transform.apply(x, y) for x, y in ring])
        if signed_area(ring) < 0:
            ring = ring[::-1]
    return ring + np.asarray(at, dtype=np.float64)


# ---------------------------------------------------------------------------
# Per-primitive builders
# ---------------------------------------------------------------------------


def _is_zero_size(aperture: Aperture) -> bool:
    return isinstance(aperture, CircleAperture) and aperture.diameter == 0.0


def _flash(flash: Flash, label: str) -> list[Polygon]:
    if _is_zero_size(flash.aperture):
        logger.debug("Skipping zero-size flash at %s", label)
        return []
    out = []
    for exposed, ring in aperture_shapes(flash.aperture):
        polarity = flash.polarity if exposed else flash.polarity.inverted()
        out.append(Polygon(_place(ring, flash.position, flash.transform), polarity, label))
    return out


def _stroke(stroke: Stroke, label: str) -> list[Polygon]:
    aperture = stroke.aperture
    if _is_zero_size(aperture):
        logger.debug("Skipping zero-width stroke at %s", label)
        return []

    path = np.asarray(stroke.path, dtype=np.float64)
    if isinstance(aperture, CircleAperture):
        rings = offset_polyline(path, aperture.diameter / 2.0)
        if not rings:
            raise GeometryError(label, "stroke inflation produced no outline")
        ribbon = unary_union([ShapelyPolygon(r) for r in rings if signed_area(r) > 0])
        holes = [ShapelyPolygon(r) for r in rings if signed_area(r) < 0]
        if holes:
            ribbon = ribbon.difference(unary_union(holes))
        return _from_shapely(ribbon, stroke.polarity, label)

    _, cross_section = aperture_shapes(aperture)[0]
    if not stroke.transform.is_identity:
        cross_section = _place(cross_section, (0.0, 0.0), stroke.transform)
    if len(path) == 1:
        path = np.vstack([path, path])
    hulls = [
        MultiPoint(np.vstack([cross_section + a, cross_section + b])).convex_hull
        for a, b in zip(path[:-1], path[1:])
    ]
    return _from_shapely(unary_union(hulls), stroke.polarity, label)


def _from_shapely(geom, polarity: Polarity, label: str) -> list[Polygon]:
    polys = [geom] if geom.geom_type == "Polygon" else [
        g for g in getattr(geom, "geoms", []) if g.geom_type == "Polygon"
    ]
    return [
        Polygon(
            np.asarray(p.exterior.coords),
            polarity,
            label,
            holes=tuple(np.asarray(i.coords) for i in p.interiors),
        )
        for p in polys
        if not p.is_empty
    ]


def _region(region: Region, label: str) -> list[Polygon]:
    return [Polygon(np.asarray(region.points, dtype=np.float64), region.polarity, label)]


def _drill(hit: DrillHit, label: str) -> list[Polygon]:
    return [Polygon(
        circle_ring(hit.position, hit.diameter), Polarity.DARK, label,
        is_hole=True, circle=(hit.position, hit.diameter),
    )]


def _route(route: DrillRoute, label: str) -> list[Polygon]:
    path = np.asarray(route.path, dtype=np.float64)
    rings = offset_polyline(path, route.diameter / 2.0)
    if not rings:
        raise GeometryError(label, "route inflation produced no outline")
    return [Polygon(
        rings[0], Polarity.DARK, label,
        is_hole=True, centerline=path,
    )]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_polygons(
    primitives: Iterable[Flash | Stroke | Region | DrillHit | DrillRoute],
    source: str = "artwork",
) -> list[Polygon]:
    """Convert primitives to polygons, preserving input order.

    Parameters
    ----------
    primitives : Iterable
        Output of the Gerber or drill parser.
    source : str
        Artwork name used in polygon labels.

    Returns
    -------
    list[Polygon]
        Polygons in primitive order.

    Raises
    ------
    GeometryError
        If a primitive yields a degenerate polygon.
    """
    polygons: list[Polygon] = []
    for prim in primitives:
        if isinstance(prim, Flash):
            label = f"{source}:{prim.line} flash"
            polygons.extend(_flash(prim, label))
        elif isinstance(prim, Stroke):
            label = f"{source}:{prim.line} stroke"
            polygons.extend(_stroke(prim, label))
        elif isinstance(prim, Region):
            label = f"{source}:{prim.line} region"
            polygons.extend(_region(prim, label))
        elif isinstance(prim, DrillHit):
            x, y = prim.position
            label = f"{source}:{prim.line} drill T{prim.tool} at ({x:.3f}, {y:.3f})"
            polygons.extend(_drill(prim, label))
        elif isinstance(prim, DrillRoute):
            label = f"{source}:{prim.line} route T{prim.tool}"
            polygons.extend(_route(prim, label))
        else:
            raise TypeError(f"Unsupported primitive: {type(prim).__name__}")
    logger.debug("Built %d polygons from %s", len(polygons), source)
    return polygons
