"""Drawing primitives -- the vocabulary between artwork text and geometry.

The Gerber and drill parsers produce these immutable, slotted
dataclasses and nothing else.  All coordinates are **millimetres** in the
artwork frame (origin where the CAD tool put it, +Y up); unit conversion
from the file's declared unit happens in the parsers.

A Gerber layer is an ordered sequence of :class:`Flash`, :class:`Stroke`
and :class:`Region` values.  Order matters: a later clear-polarity
primitive removes material drawn by earlier dark ones.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

Point = tuple[float, float]


class Polarity(Enum):
    DARK = "dark"
    CLEAR = "clear"

    def inverted(self) -> Polarity:
        return Polarity.CLEAR if self is Polarity.DARK else Polarity.DARK


# ---------------------------------------------------------------------------
# Coordinate format
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CoordinateFormat:
    """How integer coordinate strings map to numbers.

    Parameters
    ----------
    integer_digits, decimal_digits : int
        Digit counts of the fixed-point representation.
    zero_omission : ``"leading"`` | ``"trailing"``
        Which zeros the file leaves out.
    incremental : bool
        Coordinates are relative to the current point.
    """

    integer_digits: int = 3
    decimal_digits: int = 5
    zero_omission: Literal["leading", "trailing"] = "leading"
    incremental: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.integer_digits <= 7 or not 0 <= self.decimal_digits <= 7:
            raise ValueError(
                f"coordinate digits out of range: "
                f"{self.integer_digits}.{self.decimal_digits}"
            )
        if self.zero_omission not in ("leading", "trailing"):
            raise ValueError(f"unknown zero omission {self.zero_omission!r}")

    def decode(self, text: str) -> float:
        """Decode one coordinate string into a number in file units."""
        if "." in text:
            return float(text)
        sign = -1.0 if text.startswith("-") else 1.0
        digits = text.lstrip("+-")
        if not digits.isdigit():
            raise ValueError(f"malformed coordinate {text!r}")
        if self.zero_omission == "trailing":
            digits = digits.ljust(self.integer_digits + self.decimal_digits, "0")
        return sign * int(digits) / (10 ** self.decimal_digits)


# ---------------------------------------------------------------------------
# Apertures
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Aperture:
    """Base class for aperture templates (sizes in mm)."""

    pass


@dataclass(frozen=True, slots=True)
class CircleAperture(Aperture):
    diameter: float
    hole_diameter: float | None = None

    def __post_init__(self) -> None:
        if self.diameter < 0:
            raise ValueError(f"circle diameter must be >= 0, got {self.diameter}")


@dataclass(frozen=True, slots=True)
class RectangleAperture(Aperture):
    width: float
    height: float
    hole_diameter: float | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"rectangle size must be > 0, got {self.width}x{self.height}"
            )


@dataclass(frozen=True, slots=True)
class ObroundAperture(Aperture):
    """Rectangle with semicircular ends on its shorter sides."""

    width: float
    height: float
    hole_diameter: float | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"obround size must be > 0, got {self.width}x{self.height}"
            )


@dataclass(frozen=True, slots=True)
class PolygonAperture(Aperture):
    """Regular polygon inscribed in a circle of *outer_diameter*."""

    outer_diameter: float
    vertices: int
    rotation_deg: float = 0.0
    hole_diameter: float | None = None

    def __post_init__(self) -> None:
        if not 3 <= self.vertices <= 12:
            raise ValueError(f"polygon vertices must be 3..12, got {self.vertices}")
        if self.outer_diameter <= 0:
            raise ValueError(
                f"polygon diameter must be > 0, got {self.outer_diameter}"
            )


@dataclass(frozen=True, slots=True)
class MacroShape:
    """One evaluated macro primitive: a ring relative to the flash point."""

    polarity: Polarity
    points: tuple[Point, ...]


@dataclass(frozen=True, slots=True)
class MacroAperture(Aperture):
    """Aperture built from an evaluated ``%AM`` macro."""

    name: str
    shapes: tuple[MacroShape, ...]


# ---------------------------------------------------------------------------
# Object transform (LM / LR / LS)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ApertureTransform:
    """Mirroring, rotation and scaling applied to aperture shapes.

    Applied in the order mirror, scale, rotate, about the flash point.
    """

    mirror: Literal["N", "X", "Y", "XY"] = "N"
    rotation_deg: float = 0.0
    scale: float = 1.0

    @property
    def is_identity(self) -> bool:
        return self.mirror == "N" and self.rotation_deg == 0.0 and self.scale == 1.0

    def apply(self, x: float, y: float) -> Point:
        if "X" in self.mirror:
            x = -x
        if "Y" in self.mirror:
            y = -y
        x *= self.scale
        y *= self.scale
        if self.rotation_deg:
            a = math.radians(self.rotation_deg)
            c, s = math.cos(a), math.sin(a)
            x, y = x * c - y * s, x * s + y * c
        return x, y


IDENTITY = ApertureTransform()


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Flash:
    """Aperture stamped once at *position*."""

    aperture: Aperture
    position: Point
    polarity: Polarity = Polarity.DARK
    transform: ApertureTransform = IDENTITY
    line: int = 0


@dataclass(frozen=True, slots=True)
class Stroke:
    """Aperture dragged along an already linearized path.

    Parameters
    ----------
    aperture : Aperture
        Circular or rectangular cross-section.
    path : tuple[Point, ...]
        Path vertices in mm, >= 1 point (a single point is a dot).
    """

    aperture: Aperture
    path: tuple[Point, ...]
    polarity: Polarity = Polarity.DARK
    transform: ApertureTransform = IDENTITY
    line: int = 0

    def __post_init__(self) -> None:
        if len(self.path) < 1:
            raise ValueError("Stroke requires at least one path point")


@dataclass(frozen=True, slots=True)
class Region:
    """Filled contour (``G36``/``G37``); points are implicitly closed."""

    points: tuple[Point, ...]
    polarity: Polarity = Polarity.DARK
    line: int = 0


@dataclass(frozen=True, slots=True)
class DrillHit:
    """One drilled hole."""

    diameter: float
    position: Point
    tool: int = 0
    line: int = 0

    def __post_init__(self) -> None:
        if self.diameter <= 0:
            raise ValueError(f"drill diameter must be > 0, got {self.diameter}")


@dataclass(frozen=True, slots=True)
class DrillRoute:
    """Routed slot: the tool plunges, follows *path*, then retracts."""

    diameter: float
    path: tuple[Point, ...]
    tool: int = 0
    line: int = 0

    def __post_init__(self) -> None:
        if self.diameter <= 0:
            raise ValueError(f"route diameter must be > 0, got {self.diameter}")
        if len(self.path) < 2:
            raise ValueError("DrillRoute requires at least two path points")


Primitive = Union[Flash, Stroke, Region, DrillHit, DrillRoute]


# ---------------------------------------------------------------------------
# Parsed layers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GerberLayer:
    """Result of parsing one Gerber file."""

    source: str
    primitives: tuple[Flash | Stroke | Region, ...]
    apertures: dict[int, Aperture] = field(default_factory=dict)
    attributes: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class DrillLayer:
    """Result of parsing one Excellon drill file."""

    source: str
    hits: tuple[DrillHit, ...]
    routes: tuple[DrillRoute, ...] = ()
    tools: dict[int, float] = field(default_factory=dict)

    @property
    def primitives(self) -> tuple[DrillHit | DrillRoute, ...]:
        return self.hits + self.routes
