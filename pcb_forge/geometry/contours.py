"""Contour classifier -- polygons to a solid/hole containment forest.

Algorithm
---------
1. Artwork polygons are resolved in input order: a dark polygon is
   unioned into the running area, a clear polygon is removed from it.
   This is the Gerber painting model, so overlapping pads and traces
   merge and clear polarity cuts openings.
2. Every exterior and interior ring of the resolved area becomes a
   :class:`ContourNode` in an arena (``ContourForest.nodes``); parents and
   children are indices into that arena.
3. Parents are found by ray-casting a point just inside each ring
   against every other ring (O(n²)); the smallest enclosing ring wins.
4. Even depth is an ``OUTER_BOUNDARY`` (solid material edge), odd depth an
   ``INNER_HOLE``.

Drill hits and routes are never resolved or nested: each is an
``INNER_HOLE`` root marked ``is_drill`` and is exempt from tool-radius
compensation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Sequence

import numpy as np
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry import box
from shapely.ops import unary_union
from shapely.validation import make_valid

from pcb_forge.artwork.primitives import Polarity
from pcb_forge.errors import GeometryError
from pcb_forge.geometry.builder import Polygon
from pcb_forge.utils.geometry import ensure_ccw, point_in_ring, signed_area

logger = logging.getLogger(__name__)


class ContourKind(Enum):
    OUTER_BOUNDARY = "outer"
    INNER_HOLE = "inner"

    def swapped(self) -> ContourKind:
        if self is ContourKind.OUTER_BOUNDARY:
            return ContourKind.INNER_HOLE
        return ContourKind.OUTER_BOUNDARY


class LineSelection(Enum):
    """Which contours a stage traces."""

    OUTER = "outer"
    INNER = "inner"
    ALL = "all"


# ---------------------------------------------------------------------------
# Forest
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class ContourNode:
    """One classified ring.

    Parameters
    ----------
    index : int
        Position in the owning forest's arena.
    ring : np.ndarray
        Closed counter-clockwise ring in mm.
    kind : ContourKind
        Solid boundary or hole.
    depth : int
        Number of enclosing rings.
    parent : int | None
        Arena index of the smallest enclosing ring.
    label : str
        Name used in error messages.
    is_drill : bool
        Drilled hole; traced at its own diameter.
    circle : tuple[tuple[float, float], float] | None
        Exact centre and diameter of a drilled hole.
    centerline : np.ndarray | None
        Path of a routed slot.
    """

    index: int
    ring: np.ndarray
    kind: ContourKind
    depth: int
    parent: int | None
    label: str
    is_drill: bool = False
    children: tuple[int, ...] = ()
    circle: tuple[tuple[float, float], float] | None = None
    centerline: np.ndarray | None = None

    @property
    def area(self) -> float:
        return abs(signed_area(self.ring))

    @property
    def is_cuttable(self) -> bool:
        return len(self.ring) >= 4 and self.area > 0.0


@dataclass(frozen=True, eq=False)
class ContourForest:
    """Arena of classified contours plus the resolved material.

    ``material`` is the resolved solid area as a shapely geometry.
    """

    nodes: tuple[ContourNode, ...]
    material: object = field(default=None, repr=False)
    inverted: bool = False

    @property
    def roots(self) -> list[ContourNode]:
        return [n for n in self.nodes if n.parent is None]

    def children_of(self, node: ContourNode) -> list[ContourNode]:
        return [self.nodes[i] for i in node.children]

    def select(self, selection: LineSelection) -> list[ContourNode]:
        """Contours of the requested kind, in arena order.

        ``OUTER`` keeps root-level boundaries only, ``INNER`` every hole.
        """
        if selection is LineSelection.ALL:
            return [n for n in self.nodes if n.is_cuttable]
        if selection is LineSelection.OUTER:
            return [
                n for n in self.nodes
                if n.kind is ContourKind.OUTER_BOUNDARY and n.parent is None and n.is_cuttable
            ]
        return [n for n in self.nodes if n.kind is ContourKind.INNER_HOLE and n.is_cuttable]

    def bounds(self) -> tuple[float, float, float, float] | None:
        """``(min_x, min_y, max_x, max_y)`` over all rings, or ``None``."""
        if not self.nodes:
            return None
        stacked = np.vstack([n.ring for n in self.nodes])
        mins = stacked.min(axis=0)
        maxs = stacked.max(axis=0)
        return float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1])

    def solid_area(self):
        """Material as a shapely geometry (honours :meth:`invert`)."""
        material = self.material if self.material is not None else ShapelyPolygon()
        if not self.inverted:
            return material
        b = self.bounds()
        if b is None:
            return ShapelyPolygon()
        return box(*b).difference(material)

    def removal_area(self):
        """Everything inside the bounding box that is not solid."""
        b = self.bounds()
        if b is None:
            return ShapelyPolygon()
        return box(*b).difference(self.solid_area())

    def invert(self) -> ContourForest:
        """Swap solid and hole designation of every non-drill contour."""
        nodes = tuple(
            n if n.is_drill else replace(n, kind=n.kind.swapped())
            for n in self.nodes
        )
        return ContourForest(nodes=nodes, material=self.material, inverted=not self.inverted)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _repair_touching(poly: Polygon, shp):
    """Valid equivalent of a ring that touches itself but never crosses.

    A cut-in (a ring running into a hole and back out along a zero-width
    bridge) winds at most once around any point, so its shoelace area
    equals the area of the repaired shape.  A crossing ring has lobes of
    opposite winding and fails the comparison.

    Raises
    ------
    GeometryError
        If the ring crosses itself.
    """
    repaired = make_valid(shp)
    if repaired.geom_type == "GeometryCollection":
        repaired = unary_union(
            [g for g in repaired.geoms if g.geom_type in ("Polygon", "MultiPolygon")]
        )
    winding_area = poly.area - sum(abs(signed_area(h)) for h in poly.holes)
    if repaired.is_empty or not math.isclose(repaired.area, winding_area, rel_tol=1e-6, abs_tol=1e-9):
        raise GeometryError(poly.label, "self-intersecting polygon")
    logger.debug("%s: self-touching outline resolved", poly.label)
    return repaired


def _resolve(polygons: Sequence[Polygon]):
    area = ShapelyPolygon()
    for poly in polygons:
        shp = poly.to_shapely()
        if not shp.is_valid:
            shp = _repair_touching(poly, shp)
        if poly.polarity is Polarity.DARK:
            area = area.union(shp)
        else:
            area = area.difference(shp)
    return area


def _rings_of(geom) -> list[np.ndarray]:
    if geom.is_empty:
        return []
    if geom.geom_type == "Polygon":
        polys = [geom]
    else:
        polys = [g for g in getattr(geom, "geoms", []) if g.geom_type == "Polygon"]
    rings: list[np.ndarray] = []
    for p in polys:
        rings.append(ensure_ccw(np.asarray(p.exterior.coords)))
        rings.extend(ensure_ccw(np.asarray(i.coords)) for i in p.interiors)
    return rings


INTERIOR_NUDGE_MM = 1e-6


def _interior_point(ring: np.ndarray) -> tuple[float, float]:
    """Point just inside a counter-clockwise ring, next to its longest edge.

    Taken beside the ring itself rather than at a centroid so that the
    point of a hole never lands inside an island nested in that hole.
    """
    edges = np.diff(ring, axis=0)
    lengths = np.hypot(edges[:, 0], edges[:, 1])
    k = int(np.argmax(lengths))
    dx, dy = edges[k] / lengths[k]
    mx, my = ring[k] + edges[k] / 2.0
    return float(mx - dy * INTERIOR_NUDGE_MM), float(my + dx * INTERIOR_NUDGE_MM)


def _find_parents(rings: list[np.ndarray], labels: list[str]) -> list[int | None]:
    n = len(rings)
    areas = [abs(signed_area(r)) for r in rings]
    reps = [_interior_point(r) for r in rings]
    bboxes = np.array([[r[:, 0].min(), r[:, 1].min(), r[:, 0].max(), r[:, 1].max()] for r in rings]) \
        if rings else np.zeros((0, 4))

    contains = np.zeros((n, n), dtype=bool)
    for i in range(n):
        x, y = reps[i]
        for j in range(n):
            if i == j:
                continue
            bx0, by0, bx1, by1 = bboxes[j]
            if not (bx0 <= x <= bx1 and by0 <= y <= by1):
                continue
            contains[j, i] = point_in_ring(x, y, rings[j])

    parents: list[int | None] = []
    for i in range(n):
        candidates = [j for j in range(n) if contains[j, i]]
        for j in candidates:
            if contains[i, j]:
                raise GeometryError(labels[i], f"ambiguous containment with {labels[j]}")
        parents.append(min(candidates, key=lambda j: areas[j]) if candidates else None)
    return parents


def classify(polygons: Sequence[Polygon]) -> ContourForest:
    """Build the contour forest for one artwork layer.

    Parameters
    ----------
    polygons : Sequence[Polygon]
        Builder output in primitive order.

    Returns
    -------
    ContourForest

    Raises
    ------
    GeometryError
        For self-intersecting polygons or ambiguous containment.
    """
    artwork = [p for p in polygons if not p.is_hole]
    drills = [p for p in polygons if p.is_hole]

    material = _resolve(artwork)
    rings = _rings_of(material)
    labels = []
    for k, ring in enumerate(rings):
        x0, y0 = ring[:, 0].min(), ring[:, 1].min()
        labels.append(f"contour {k} at ({x0:.3f}, {y0:.3f})")
    parents = _find_parents(rings, labels)

    depths: list[int] = []
    for i in range(len(rings)):
        depth, p = 0, parents[i]
        while p is not None:
            depth += 1
            p = parents[p]
        depths.append(depth)

    children: dict[int, list[int]] = {i: [] for i in range(len(rings))}
    for i, p in enumerate(parents):
        if p is not None:
            children[p].append(i)

    nodes: list[ContourNode] = []
    for i, ring in enumerate(rings):
        solid = depths[i] % 2 == 0
        nodes.append(ContourNode(
            index=i,
            ring=ring,
            kind=ContourKind.OUTER_BOUNDARY if solid else ContourKind.INNER_HOLE,
            depth=depths[i],
            parent=parents[i],
            label=labels[i],
            children=tuple(children[i]),
        ))

    for poly in drills:
        nodes.append(ContourNode(
            index=len(nodes),
            ring=ensure_ccw(poly.ring),
            kind=ContourKind.INNER_HOLE,
            depth=0,
            parent=None,
            label=poly.label,
            is_drill=True,
            circle=poly.circle,
            centerline=poly.centerline,
        ))

    if drills:
        material = unary_union([material] + [p.to_shapely() for p in drills])

    logger.debug(
        "Classified %d contours (%d outer, %d inner, %d drill)",
        len(nodes),
        sum(n.kind is ContourKind.OUTER_BOUNDARY for n in nodes),
        sum(n.kind is ContourKind.INNER_HOLE for n in nodes),
        len(drills),
    )
    return ContourForest(nodes=tuple(nodes), material=material)
