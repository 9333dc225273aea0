"""Instruction stream -- the vocabulary between toolpaths and G-code.

Every machine action is an immutable, slotted dataclass.  Operations are
expressed in the **machine's** unit system (the emitter has already
converted lengths to mm or inches and feeds to units per minute), so the
G-code generator only formats numbers.

Axis fields left as ``None`` are not commanded: ``RapidMove(z=2.0)`` is a
pure retract.
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from typing import Literal

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Program = list["Operation"]
"""Ordered instructions of one output file."""

UnitSystem = Literal["metric", "imperial"]

# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Operation(ABC):
    """Base class for all instructions."""

    pass


# ---------------------------------------------------------------------------
# Program setup
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Comment(Operation):
    text: str


@dataclass(frozen=True, slots=True)
class SetUnits(Operation):
    """Select millimetres (``G21``) or inches (``G20``)."""

    system: UnitSystem

    def __post_init__(self) -> None:
        if self.system not in ("metric", "imperial"):
            raise ValueError(
                f"system must be 'metric' or 'imperial', got {self.system!r}"
            )


@dataclass(frozen=True, slots=True)
class AbsoluteMode(Operation):
    """Absolute positioning (``G90``)."""

    pass


@dataclass(frozen=True, slots=True)
class ToolInit(Operation):
    """Verbatim G-code from a machine or tool ``init_gcode``.

    Parameters
    ----------
    text : str
        Inserted unchanged; may span several lines.
    owner : str
        Machine or tool the text belongs to (rendered as a comment).
    """

    text: str
    owner: str = ""


@dataclass(frozen=True, slots=True)
class ToolShutdown(Operation):
    """Verbatim G-code from a machine or tool ``shutdown_gcode``."""

    text: str
    owner: str = ""


# ---------------------------------------------------------------------------
# Tool activation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SpindleOn(Operation):
    """Start the spindle.

    Parameters
    ----------
    rpm : float
        Spindle speed, > 0.
    clockwise : bool
        ``M3`` when true, ``M4`` otherwise.
    """

    rpm: float
    clockwise: bool = True

    def __post_init__(self) -> None:
        if self.rpm <= 0:
            raise ValueError(f"SpindleOn requires rpm > 0, got {self.rpm}")


@dataclass(frozen=True, slots=True)
class SpindleOff(Operation):
    pass


@dataclass(frozen=True, slots=True)
class LaserOn(Operation):
    """Fire the laser at ``power`` out of ``max_power`` (watts)."""

    power: float
    max_power: float

    def __post_init__(self) -> None:
        if not 0 < self.power <= self.max_power:
            raise ValueError(
                f"LaserOn requires 0 < power <= max_power, got {self.power}/{self.max_power}"
            )

    @property
    def duty(self) -> float:
        return self.power / self.max_power


@dataclass(frozen=True, slots=True)
class LaserOff(Operation):
    pass


# ---------------------------------------------------------------------------
# Motion  (machine units; feeds in units per minute)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RapidMove(Operation):
    """Travel move (``G0``); the tool is retracted or inactive."""

    x: float | None = None
    y: float | None = None
    z: float | None = None
    feed: float | None = None


@dataclass(frozen=True, slots=True)
class LinearMove(Operation):
    """Controlled straight move (``G1``)."""

    x: float | None = None
    y: float | None = None
    z: float | None = None
    feed: float | None = None


@dataclass(frozen=True, slots=True)
class ArcMove(Operation):
    """Circular move in the XY plane (``G2``/``G3``).

    Uses the centre-offset form: the centre of curvature lies at
    ``(current + i, current + j)``.

    Parameters
    ----------
    x, y : float
        End point.
    i, j : float
        Centre offset from the start point.
    clockwise : bool
        ``G2`` when true, ``G3`` otherwise.
    feed : float | None
        Feed rate in units per minute.
    """

    x: float
    y: float
    i: float
    j: float
    clockwise: bool
    feed: float | None = None


@dataclass(frozen=True, slots=True)
class ProgramEnd(Operation):
    """End of program (``M2``)."""

    pass
