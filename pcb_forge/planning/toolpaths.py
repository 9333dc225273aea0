"""Toolpath value types produced by the planner.

A :class:`Toolpath` is an ordered chain of :class:`LineSegment` and
:class:`ArcSegment` values in millimetres; a :class:`PlannedPass` groups
the toolpaths traced at one Z depth; a :class:`PathPlan` is everything a
stage will emit.  All types are immutable so plans can be shared across
worker threads and mirrored without copying concerns.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Literal, Sequence, Union

import numpy as np

from pcb_forge.utils.geometry import mirror_point
from pcb_forge.utils.units import UnitValue

Point = tuple[float, float]
PathKind = Literal["contour", "fill", "drill"]


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LineSegment:
    start: Point
    end: Point

    def mirrored(self) -> LineSegment:
        return LineSegment(mirror_point(self.start), mirror_point(self.end))

    def extreme_points(self) -> list[Point]:
        return [self.start, self.end]


@dataclass(frozen=True, slots=True)
class ArcSegment:
    """Circular arc from *start* to *end* about *center*.

    Coincident end points denote a full circle.
    """

    start: Point
    end: Point
    center: Point
    clockwise: bool

    @property
    def radius(self) -> float:
        return math.hypot(self.start[0] - self.center[0], self.start[1] - self.center[1])

    @property
    def offset(self) -> Point:
        """Centre relative to *start* (G-code ``I``/``J``)."""
        return (self.center[0] - self.start[0], self.center[1] - self.start[1])

    def mirrored(self) -> ArcSegment:
        return ArcSegment(
            mirror_point(self.start),
            mirror_point(self.end),
            mirror_point(self.center),
            not self.clockwise,
        )

    def sweep(self) -> tuple[float, float]:
        """Start angle and signed sweep in radians (negative = clockwise)."""
        cx, cy = self.center
        a0 = math.atan2(self.start[1] - cy, self.start[0] - cx)
        if self.start == self.end:
            return a0, (-2.0 * math.pi if self.clockwise else 2.0 * math.pi)
        a1 = math.atan2(self.end[1] - cy, self.end[0] - cx)
        sweep = a1 - a0
        if self.clockwise and sweep >= 0:
            sweep -= 2.0 * math.pi
        elif not self.clockwise and sweep <= 0:
            sweep += 2.0 * math.pi
        return a0, sweep

    def extreme_points(self) -> list[Point]:
        """End points plus every axis extreme the arc passes through."""
        a0, sweep = self.sweep()
        lo, hi = (a0, a0 + sweep) if sweep >= 0 else (a0 + sweep, a0)
        cx, cy = self.center
        r = self.radius
        points = [self.start, self.end]
        k = math.ceil(lo / (math.pi / 2))
        while k * (math.pi / 2) <= hi:
            theta = k * (math.pi / 2)
            points.append((cx + r * math.cos(theta), cy + r * math.sin(theta)))
            k += 1
        return points


Segment = Union[LineSegment, ArcSegment]


# ---------------------------------------------------------------------------
# Toolpath
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Toolpath:
    """Connected chain of segments traced without lifting the tool.

    Parameters
    ----------
    segments : tuple[Segment, ...]
        Non-empty; each segment starts where the previous one ends.
    label : str
        Contour the path was derived from (used in error messages).
    closed : bool
        The chain ends where it starts.
    kind : ``"contour"`` | ``"fill"`` | ``"drill"``
    """

    segments: tuple[Segment, ...]
    label: str
    closed: bool = True
    kind: PathKind = "contour"

    def __post_init__(self) -> None:
        if not self.segments:
            raise ValueError(f"Toolpath '{self.label}' has no segments")

    @property
    def start(self) -> Point:
        return self.segments[0].start

    @property
    def end(self) -> Point:
        return self.segments[-1].end

    def mirrored(self) -> Toolpath:
        return replace(self, segments=tuple(s.mirrored() for s in self.segments))

    def extreme_points(self) -> list[Point]:
        return [p for s in self.segments for p in s.extreme_points()]

    def vertices(self) -> np.ndarray:
        """Segment end points as an ``(N, 2)`` array (arcs not linearized)."""
        pts = [self.start] + [s.end for s in self.segments]
        return np.asarray(pts, dtype=np.float64)

    def length(self) -> float:
        total = 0.0
        for s in self.segments:
            if isinstance(s, ArcSegment):
                _, sweep = s.sweep()
                total += abs(sweep) * s.radius
            else:
                total += math.hypot(s.end[0] - s.start[0], s.end[1] - s.start[1])
        return total

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_points(
        cls, points: Sequence[Point] | np.ndarray, label: str,
        *, closed: bool, kind: PathKind = "contour",
    ) -> Toolpath:
        """Chain of line segments through *points*, dropping zero-length steps."""
        pts = [(float(x), float(y)) for x, y in np.asarray(points, dtype=np.float64)]
        segments = tuple(
            LineSegment(a, b) for a, b in zip(pts[:-1], pts[1:]) if a != b
        )
        return cls(segments, label, closed, kind)

    @classmethod
    def from_ring(cls, ring: np.ndarray, label: str, kind: PathKind = "contour") -> Toolpath:
        return cls.from_points(ring, label, closed=True, kind=kind)

    @classmethod
    def circle(cls, center: Point, diameter: float, label: str) -> Toolpath:
        """Full circle as two counter-clockwise half arcs starting at +X."""
        cx, cy = center
        r = diameter / 2.0
        east = (cx + r, cy)
        west = (cx - r, cy)
        return cls(
            (ArcSegment(east, west, center, False), ArcSegment(west, east, center, False)),
            label,
            True,
            "drill",
        )


# ---------------------------------------------------------------------------
# Passes and plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlannedPass:
    """All toolpaths of a stage traced at one depth.

    ``depth`` is the Z of the cut (0 = surface, negative below it).
    """

    index: int
    depth: UnitValue
    paths: tuple[Toolpath, ...]

    def mirrored(self) -> PlannedPass:
        return replace(self, paths=tuple(p.mirrored() for p in self.paths))


def mirror_passes(passes: Sequence[PlannedPass]) -> tuple[PlannedPass, ...]:
    """Reflect every pass about the Y axis for backside work.

    Arc directions flip so the traced shape is the mirror image.  Applying
    this twice restores the input exactly.
    """
    return tuple(p.mirrored() for p in passes)


@dataclass(frozen=True)
class PathPlan:
    """Planner output for one stage.

    Parameters
    ----------
    stage : str
        Stage name, used in every error raised further down.
    operation : ``"cut"`` | ``"engrave"``
    passes : tuple[PlannedPass, ...]
        In execution order (shallow to deep for cuts).
    notices : tuple[str, ...]
        Informational messages that did not abort planning.
    x_offset : float
        Added to every X when the plan is emitted (mm).  Backside
        alignment lives here so that the geometry itself only ever
        changes by exact negation.
    """

    stage: str
    operation: Literal["cut", "engrave"]
    passes: tuple[PlannedPass, ...]
    notices: tuple[str, ...] = ()
    x_offset: float = 0.0

    @property
    def path_count(self) -> int:
        return sum(len(p.paths) for p in self.passes)

    def mirrored(self) -> PathPlan:
        """Mirror image about the Y axis of the emitted coordinates."""
        return replace(self, passes=mirror_passes(self.passes), x_offset=-self.x_offset)

    def translated(self, dx: float) -> PathPlan:
        return replace(self, x_offset=self.x_offset + dx)

    def extreme_points(self) -> list[Point]:
        """Extremes in emitted coordinates (``x_offset`` applied)."""
        return [
            (x + self.x_offset, y)
            for p in self.passes for path in p.paths for x, y in path.extreme_points()
        ]
