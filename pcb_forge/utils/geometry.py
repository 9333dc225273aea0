"""Planar geometry kernels shared by the builder, classifier and planner.

Provides:
    - Ring helpers: closing, signed area (shoelace), orientation, bounds
    - Point-in-ring test by ray casting (vectorized with numpy)
    - Arc linearization at a fixed chord tolerance
    - The single polygon offset primitive (``offset_ring``, pyclipper)
    - Mirroring of coordinates about a vertical axis

All coordinates are millimetres.  A *ring* is an ``(N, 2)`` float64 array
whose last vertex repeats the first.

Offsetting runs on pyclipper's integer lattice: coordinates are scaled
by ``CLIPPER_SCALE`` (1 nm resolution) before offsetting and scaled back
afterwards.  ``ARC_CHORD_TOLERANCE_MM`` bounds the deviation of every
linearized arc (Gerber arcs, round offset corners, drill circles).
"""

from __future__ import annotations

import math
from typing import Literal

import numpy as np
import pyclipper

CLIPPER_SCALE = 1_000_000.0
ARC_CHORD_TOLERANCE_MM = 0.005
CLIPPER_MITER_LIMIT = 4.0

Corner = Literal["round", "miter"]


class OffsetCollapse(ValueError):
    """Raised by :func:`offset_ring` when the offset ring degenerates."""

    pass


# ---------------------------------------------------------------------------
# Ring helpers
# ---------------------------------------------------------------------------


def as_points(points) -> np.ndarray:
    """Coerce a point sequence to an ``(N, 2)`` float64 array."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"Expected (N, 2) points, got shape {arr.shape}")
    return arr


def close_ring(points) -> np.ndarray:
    """Return *points* as a closed ring (first vertex repeated at the end)."""
    arr = as_points(points)
    if len(arr) == 0:
        return arr
    if not np.allclose(arr[0], arr[-1], rtol=0.0, atol=1e-12):
        arr = np.vstack([arr, arr[:1]])
    return arr


def signed_area(ring: np.ndarray) -> float:
    """Shoelace area; positive for counter-clockwise rings."""
    x = ring[:, 0]
    y = ring[:, 1]
    return 0.5 * float(np.dot(x[:-1], y[1:]) - np.dot(x[1:], y[:-1]))


def ensure_ccw(ring: np.ndarray) -> np.ndarray:
    """Return *ring* with counter-clockwise orientation."""
    return ring if signed_area(ring) >= 0 else ring[::-1].copy()


def ring_bounds(ring: np.ndarray) -> tuple[float, float, float, float]:
    """Return ``(min_x, min_y, max_x, max_y)``."""
    mins = ring.min(axis=0)
    maxs = ring.max(axis=0)
    return float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1])


def point_in_ring(x: float, y: float, ring: np.ndarray) -> bool:
    """Even-odd ray casting test.

    A horizontal ray is cast from ``(x, y)`` towards +X and edge crossings
    are counted.  Points exactly on an edge may fall either way; callers
    test interior representative points only.
    """
    x0 = ring[:-1, 0]
    y0 = ring[:-1, 1]
    x1 = ring[1:, 0]
    y1 = ring[1:, 1]
    straddles = (y0 > y) != (y1 > y)
    with np.errstate(divide="ignore", invalid="ignore"):
        x_cross = x0 + (y - y0) * (x1 - x0) / (y1 - y0)
    crossings = np.count_nonzero(straddles & (x < x_cross))
    return bool(crossings % 2)


# ---------------------------------------------------------------------------
# Arcs
# ---------------------------------------------------------------------------


def arc_step_count(radius: float, sweep: float, tolerance: float = ARC_CHORD_TOLERANCE_MM) -> int:
    """Number of chords needed so no chord deviates more than *tolerance*.

    The sagitta of a chord subtending angle ``t`` is ``r * (1 - cos(t/2))``;
    solving for ``t`` gives the largest admissible step.
    """
    if radius <= tolerance:
        return max(1, math.ceil(abs(sweep) / (math.pi / 2)))
    max_step = 2.0 * math.acos(1.0 - tolerance / radius)
    return max(1, math.ceil(abs(sweep) / max_step))


def linearize_arc(
    start: tuple[float, float],
    end: tuple[float, float],
    center: tuple[float, float],
    clockwise: bool,
    tolerance: float = ARC_CHORD_TOLERANCE_MM,
) -> np.ndarray:
    """Approximate a circular arc by a polyline.

    Parameters
    ----------
    start, end : tuple[float, float]
        Arc end points.  Coincident end points denote a full circle.
    center : tuple[float, float]
        Arc centre.
    clockwise : bool
        Direction of travel from *start* to *end*.
    tolerance : float
        Maximum chord deviation in mm.

    Returns
    -------
    np.ndarray
        ``(N, 2)`` points from *start* to *end* inclusive.  The last point
        is exactly *end*.
    """
    sx, sy = start
    ex, ey = end
    cx, cy = center
    radius = math.hypot(sx - cx, sy - cy)
    a0 = math.atan2(sy - cy, sx - cx)
    a1 = math.atan2(ey - cy, ex - cx)

    sweep = a1 - a0
    if clockwise:
        if sweep >= 0:
            sweep -= 2.0 * math.pi
    elif sweep <= 0:
        sweep += 2.0 * math.pi

    if math.isclose(sx, ex, abs_tol=1e-9) and math.isclose(sy, ey, abs_tol=1e-9):
        sweep = -2.0 * math.pi if clockwise else 2.0 * math.pi

    steps = arc_step_count(radius, sweep, tolerance)
    angles = a0 + sweep * np.arange(steps + 1) / steps
    pts = np.column_stack([cx + radius * np.cos(angles), cy + radius * np.sin(angles)])
    pts[0] = (sx, sy)
    pts[-1] = (ex, ey)
    return pts


def circle_ring(
    center: tuple[float, float], diameter: float,
    tolerance: float = ARC_CHORD_TOLERANCE_MM,
) -> np.ndarray:
    """Closed counter-clockwise ring approximating a circle."""
    cx, cy = center
    r = diameter / 2.0
    steps = max(8, arc_step_count(r, 2.0 * math.pi, tolerance))
    angles = 2.0 * math.pi * np.arange(steps) / steps
    pts = np.column_stack([cx + r * np.cos(angles), cy + r * np.sin(angles)])
    return close_ring(pts)


# ---------------------------------------------------------------------------
# Offset primitive
# ---------------------------------------------------------------------------


def _to_clipper(ring: np.ndarray) -> list[tuple[int, int]]:
    scaled = np.round(ring[:-1] * CLIPPER_SCALE).astype(np.int64)
    return [(int(x), int(y)) for x, y in scaled]


def _from_clipper(path) -> np.ndarray:
    return close_ring(np.asarray(path, dtype=np.float64) / CLIPPER_SCALE)


def offset_ring(
    ring: np.ndarray,
    distance: float,
    corner: Corner = "round",
    tolerance: float = ARC_CHORD_TOLERANCE_MM,
) -> np.ndarray:
    """Offset a simple closed ring by a signed distance.

    Positive *distance* grows the enclosed area, negative shrinks it.
    Round corners are linearized at *tolerance*.  This is the one offset
    routine used for stroke inflation and tool-radius compensation.

    Parameters
    ----------
    ring : np.ndarray
        Closed ring, any orientation.
    distance : float
        Signed offset in mm.
    corner : ``"round"`` | ``"miter"``
        Join type at convex corners of the grown ring.
    tolerance : float
        Chord tolerance for round joins in mm.

    Returns
    -------
    np.ndarray
        Closed counter-clockwise ring.

    Raises
    ------
    OffsetCollapse
        If the result is empty, splits into several rings, or contains
        holes (the offset inverted part of the ring).
    """
    ring = ensure_ccw(close_ring(ring))
    if distance == 0.0:
        return ring.copy()

    join = pyclipper.JT_ROUND if corner == "round" else pyclipper.JT_MITER
    pco = pyclipper.PyclipperOffset(
        miter_limit=CLIPPER_MITER_LIMIT,
        arc_tolerance=tolerance * CLIPPER_SCALE,
    )
    pco.AddPath(_to_clipper(ring), join, pyclipper.ET_CLOSEDPOLYGON)
    result = pco.Execute(distance * CLIPPER_SCALE)

    if not result:
        raise OffsetCollapse(f"offset by {distance:g} mm removed the ring entirely")
    if len(result) > 1:
        raise OffsetCollapse(
            f"offset by {distance:g} mm split the ring into {len(result)} parts"
        )
    out = _from_clipper(result[0])
    if len(out) < 4 or signed_area(out) <= 0.0:
        raise OffsetCollapse(f"offset by {distance:g} mm inverted the ring")
    return out


def offset_polyline(
    points: np.ndarray,
    distance: float,
    tolerance: float = ARC_CHORD_TOLERANCE_MM,
) -> list[np.ndarray]:
    """Inflate an open polyline into closed rings with round caps and joins.

    Uses the same pyclipper offsetter as :func:`offset_ring`.  A single
    point yields a circle.  Self-crossing paths may produce hole rings,
    which are returned clockwise after the counter-clockwise outer ring.
    """
    pts = as_points(points)
    pco = pyclipper.PyclipperOffset(
        miter_limit=CLIPPER_MITER_LIMIT,
        arc_tolerance=tolerance * CLIPPER_SCALE,
    )
    scaled = [(int(x), int(y)) for x, y in np.round(pts * CLIPPER_SCALE).astype(np.int64)]
    if len(scaled) == 1:
        scaled = scaled * 2
    pco.AddPath(scaled, pyclipper.JT_ROUND, pyclipper.ET_OPENROUND)
    result = pco.Execute(distance * CLIPPER_SCALE)
    rings = [_from_clipper(path) for path in result]
    rings.sort(key=lambda r: signed_area(r), reverse=True)
    return rings


# ---------------------------------------------------------------------------
# Mirroring
# ---------------------------------------------------------------------------


def mirror_point(point: tuple[float, float]) -> tuple[float, float]:
    """Reflect a point about the Y axis.

    A plain negation of X, so applying it twice returns the input bit for
    bit.  Re-centring a mirrored board is a separate translation.
    """
    x, y = point
    return (-x, y)
