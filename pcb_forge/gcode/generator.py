"""G-code generator -- instruction stream to G-code text.

The instruction stream already carries machine units, so this module
only formats.  Dialect:

    G21 / G20        units (from ``SetUnits``)
    G90              absolute positioning
    G0 / G1          rapid / linear moves, feed ``F`` in units per minute
    G2 / G3          clockwise / counter-clockwise arcs, ``I``/``J`` form
    M3 / M4 S<rpm>   spindle on
    M3 S<0-255>      laser on, power scaled to 8-bit PWM
    M5               spindle or laser off
    M2               program end

Comments use ``;``.  Verbatim init/shutdown text is written line by line.
"""

from __future__ import annotations

import logging
from io import StringIO
from typing import Iterable

from pcb_forge.errors import ForgeError
from pcb_forge.gcode.emitter import OutputStream
from pcb_forge.job_ir.operations import (
    AbsoluteMode,
    ArcMove,
    Comment,
    LaserOff,
    LaserOn,
    LinearMove,
    Operation,
    ProgramEnd,
    RapidMove,
    SetUnits,
    SpindleOff,
    SpindleOn,
    ToolInit,
    ToolShutdown,
)

logger = logging.getLogger(__name__)

LASER_PWM_MAX = 255


class GCodeError(ForgeError):
    """Raised when an instruction cannot be rendered."""

    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _f(feed_per_min: float | None) -> str:
    """``F`` word for a feed in units per minute (empty when unset)."""
    if feed_per_min is None:
        return ""
    return f" F{feed_per_min:.1f}"


def _axes(decimals: int, **axes: float | None) -> str:
    return "".join(
        f" {name.upper()}{value:.{decimals}f}"
        for name, value in axes.items()
        if value is not None
    )


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class GCodeGenerator:
    """Render instruction streams as G-code text.

    Parameters
    ----------
    decimals : int | None
        Digits after the decimal point for coordinates.  ``None`` uses 3
        for millimetres and 4 for inches.
    """

    def __init__(self, decimals: int | None = None) -> None:
        self._decimals_override = decimals
        self._decimals = decimals if decimals is not None else 3

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, stream: OutputStream | Iterable[Operation]) -> str:
        """Generate G-code for a complete stream.

        Parameters
        ----------
        stream : OutputStream | Iterable[Operation]
            Instructions in file order.  An :class:`OutputStream` that is
            not finished yet gets its shutdown and ``M2`` appended first.

        Returns
        -------
        str
            Program text, newline terminated.

        Raises
        ------
        GCodeError
            For unsupported instructions.
        """
        if isinstance(stream, OutputStream):
            stream.finish()
            operations: Iterable[Operation] = stream.operations
        else:
            operations = stream

        buf = StringIO()
        self._decimals = self._decimals_override if self._decimals_override is not None else 3
        for op in operations:
            self._generate_op(op, buf)
        return buf.getvalue()

    # ------------------------------------------------------------------
    # Internal: per-operation dispatch
    # ------------------------------------------------------------------

    def _generate_op(self, op: Operation, buf: StringIO) -> None:
        if isinstance(op, Comment):
            for line in op.text.splitlines() or [""]:
                buf.write(f"; {line}\n")
        elif isinstance(op, SetUnits):
            self._gen_units(op, buf)
        elif isinstance(op, AbsoluteMode):
            buf.write("G90\n")
        elif isinstance(op, (ToolInit, ToolShutdown)):
            self._gen_verbatim(op, buf)
        elif isinstance(op, SpindleOn):
            buf.write(f"{'M3' if op.clockwise else 'M4'} S{op.rpm:.0f}\n")
        elif isinstance(op, LaserOn):
            pwm = max(1, min(LASER_PWM_MAX, round(op.duty * LASER_PWM_MAX)))
            buf.write(f"M3 S{pwm}\n")
        elif isinstance(op, (SpindleOff, LaserOff)):
            buf.write("M5\n")
        elif isinstance(op, RapidMove):
            buf.write(f"G0{_axes(self._decimals, x=op.x, y=op.y, z=op.z)}{_f(op.feed)}\n")
        elif isinstance(op, LinearMove):
            buf.write(f"G1{_axes(self._decimals, x=op.x, y=op.y, z=op.z)}{_f(op.feed)}\n")
        elif isinstance(op, ArcMove):
            code = "G2" if op.clockwise else "G3"
            words = _axes(self._decimals, x=op.x, y=op.y, i=op.i, j=op.j)
            buf.write(f"{code}{words}{_f(op.feed)}\n")
        elif isinstance(op, ProgramEnd):
            buf.write("M2\n")
        else:
            raise GCodeError(f"Unsupported operation: {type(op).__name__}")

    # ------------------------------------------------------------------
    # Individual generators
    # ------------------------------------------------------------------

    def _gen_units(self, op: SetUnits, buf: StringIO) -> None:
        if op.system == "metric":
            buf.write("G21\n")
            default = 3
        else:
            buf.write("G20\n")
            default = 4
        if self._decimals_override is None:
            self._decimals = default

    def _gen_verbatim(self, op: ToolInit | ToolShutdown, buf: StringIO) -> None:
        kind = "init" if isinstance(op, ToolInit) else "shutdown"
        if op.owner:
            buf.write(f"; --- {op.owner} {kind} ---\n")
        # Written byte for byte; only a missing final newline is supplied.
        buf.write(op.text)
        if op.text and not op.text.endswith("\n"):
            buf.write("\n")
