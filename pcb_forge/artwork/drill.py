"""Excellon (XNC) drill parser -- drill text to hits and routed slots.

File layout::

    M48                 header start
    ; comment
    METRIC,TZ,000.000   unit, zero mode, digit template
    T1C0.800            tool 1, 0.8 mm diameter
    %                   header end (M95 also accepted)
    G90 / G05           absolute, drill mode
    T1                  select tool 1 (T0 unloads)
    X10.0Y5.0           drill hit
    X1Y1G85X3Y1         slot (routed between the two points)
    G00X0Y0 M15 G01X5Y0 M16   routed path
    G02X7Y2A2.0         clockwise routed arc, radius 2 (G03 counter-clockwise;
                        I/J centre offsets also accepted)
    M30                 end of program

``LZ`` means leading zeros are kept (trailing ones dropped), ``TZ`` the
opposite.  Coordinates containing a decimal point are taken literally.
Without a digit template, metric files use 3.3 and inch files 2.4.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

from pcb_forge.artwork.primitives import (
    CoordinateFormat,
    DrillHit,
    DrillLayer,
    DrillRoute,
    Point,
)
from pcb_forge.errors import ParseError
from pcb_forge.utils.geometry import ARC_CHORD_TOLERANCE_MM, linearize_arc
from pcb_forge.utils.units import LengthUnit

logger = logging.getLogger(__name__)

_UNIT_RE = re.compile(r"^(METRIC|INCH)(?:,(LZ|TZ))?(?:,(0+)\.(0+))?$")
_TOOL_RE = re.compile(r"^T(\d+)((?:[FSBHZ][-+\d.]+)*)C([\d.]+)((?:[FSBHZ][-+\d.]+)*)$")
_SELECT_RE = re.compile(r"^T(\d+)$")
_COORD_RE = re.compile(r"^(?:X([-+]?[\d.]+))?(?:Y([-+]?[\d.]+))?$")
_SLOT_RE = re.compile(r"^(X[-+]?[\d.]+)?(Y[-+]?[\d.]+)?G85(X[-+]?[\d.]+)?(Y[-+]?[\d.]+)?$")
_ROUTE_RE = re.compile(r"^G0?([01])((?:[XY][-+]?[\d.]+)*)$")
_ARC_RE = re.compile(r"^G0?([23])((?:[XYAIJ][-+]?[\d.]+)*)$")

_DEFAULT_DIGITS = {
    LengthUnit.MILLIMETER: (3, 3),
    LengthUnit.INCH: (2, 4),
}
_IGNORED = {"M71", "M72", "ICI,OFF", "VER,1", "FMAT,1", "FMAT,2", "DETECT,ON", "ATC,ON"}


@dataclass
class DrillState:
    """Mutable parser state for one drill file."""

    unit: LengthUnit | None = None
    coordinate_format: CoordinateFormat | None = None
    in_header: bool = False
    header_seen: bool = False
    tool: int | None = None
    incremental: bool = False
    current: Point = (0.0, 0.0)
    route_mode: bool = False
    route_down: bool = False
    route_path: list[Point] = field(default_factory=list)
    route_line: int = 0
    ended: bool = False


class _DrillInterpreter:
    def __init__(
        self,
        source: str,
        coordinate_format: CoordinateFormat | None,
        unit: LengthUnit | None,
    ) -> None:
        self.source = source
        self.state = DrillState(unit=unit, coordinate_format=coordinate_format)
        self.tools: dict[int, float] = {}
        self.hits: list[DrillHit] = []
        self.routes: list[DrillRoute] = []
        self._line = 0
        self._col = 1

    def error(self, message: str) -> ParseError:
        return ParseError(self.source, self._line, self._col, message)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run(self, text: str) -> DrillLayer:
        for lineno, raw in enumerate(text.splitlines(), start=1):
            stripped = raw.strip()
            if not stripped:
                continue
            self._line = lineno
            self._col = len(raw) - len(raw.lstrip()) + 1
            if self.state.ended:
                raise self.error("content after M30 end of program")
            if stripped.startswith(";"):
                continue
            if self.state.in_header:
                self._header(stripped)
            else:
                self._body(stripped)

        if self.state.in_header:
            raise self.error("drill header (M48) not terminated")
        if not self.state.ended:
            raise self.error("missing M30 end of program")

        logger.debug(
            "Parsed %s: %d hits, %d routes, %d tools",
            self.source, len(self.hits), len(self.routes), len(self.tools),
        )
        return DrillLayer(
            source=self.source,
            hits=tuple(self.hits),
            routes=tuple(self.routes),
            tools=dict(self.tools),
        )

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def _header(self, line: str) -> None:
        if line in ("%", "M95"):
            if self.state.unit is None:
                raise self.error("drill header does not declare METRIC or INCH")
            self.state.in_header = False
            return
        m = _UNIT_RE.match(line)
        if m:
            self._set_unit(m)
            return
        if _TOOL_RE.match(line):
            self._define_tool(line)
            return
        if line in _IGNORED or line.startswith("FMAT,"):
            return
        raise self.error(f"unknown header command {line!r}")

    def _set_unit(self, m: re.Match) -> None:
        unit = LengthUnit.MILLIMETER if m.group(1) == "METRIC" else LengthUnit.INCH
        zeros = m.group(2)
        if m.group(3):
            digits = (len(m.group(3)), len(m.group(4)))
        else:
            digits = _DEFAULT_DIGITS[unit]
        self.state.unit = unit
        self.state.coordinate_format = CoordinateFormat(
            integer_digits=digits[0],
            decimal_digits=digits[1],
            zero_omission="trailing" if zeros == "LZ" else "leading",
        )

    def _define_tool(self, line: str) -> None:
        m = _TOOL_RE.match(line)
        number = int(m.group(1))
        if self.state.unit is None:
            raise self.error("tool defined before METRIC/INCH")
        diameter = float(m.group(3)) * self.state.unit.factor
        if diameter <= 0:
            raise self.error(f"tool T{number} has non-positive diameter")
        if number in self.tools:
            logger.warning("%s: tool T%d redefined at line %d", self.source, number, self._line)
        self.tools[number] = diameter

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------

    def _body(self, line: str) -> None:
        st = self.state
        if line == "M48":
            if st.header_seen:
                raise self.error("second M48 header")
            st.in_header = True
            st.header_seen = True
            return
        if line == "M30" or line == "M00":
            self._finish_route()
            st.ended = True
            return
        if line == "%" or line in _IGNORED:
            return
        if line in ("G05", "G5"):
            self._finish_route()
            st.route_mode = False
            return
        if line == "G90":
            st.incremental = False
            return
        if line == "G91":
            st.incremental = True
            return
        if line == "M15":
            if st.tool is None:
                raise self.error("route plunge (M15) before a tool was selected")
            st.route_down = True
            st.route_path = [st.current]
            st.route_line = self._line
            return
        if line in ("M16", "M17"):
            self._finish_route()
            return
        if _SELECT_RE.match(line):
            self._select(int(_SELECT_RE.match(line).group(1)))
            return
        if _TOOL_RE.match(line):
            self._define_tool(line)
            self._select(int(_TOOL_RE.match(line).group(1)))
            return

        m = _ROUTE_RE.match(line)
        if m:
            self._route(m.group(1), m.group(2))
            return

        m = _ARC_RE.match(line)
        if m:
            self._arc(m.group(1) == "2", m.group(2))
            return

        m = _SLOT_RE.match(line)
        if m:
            self._slot(m)
            return

        m = _COORD_RE.match(line)
        if m and (m.group(1) or m.group(2)):
            target = self._target(m.group(1), m.group(2))
            if st.route_mode and st.route_down:
                st.route_path.append(target)
            elif not st.route_mode:
                self._hit(target)
            st.current = target
            return

        raise self.error(f"unknown drill command {line!r}")

    def _select(self, number: int) -> None:
        self._finish_route()
        if number == 0:
            self.state.tool = None
            return
        if number not in self.tools:
            raise self.error(f"tool T{number} is not defined")
        self.state.tool = number

    def _distance(self, text: str) -> float:
        fmt = self.state.coordinate_format
        unit = self.state.unit
        if fmt is None or unit is None:
            raise self.error("coordinates before METRIC/INCH was declared")
        try:
            return fmt.decode(text) * unit.factor
        except ValueError as exc:
            raise self.error(str(exc)) from exc

    def _coord(self, text: str | None, current: float) -> float:
        if text is None:
            return current
        value = self._distance(text)
        return current + value if self.state.incremental else value

    def _target(self, x: str | None, y: str | None) -> Point:
        cx, cy = self.state.current
        return (self._coord(x, cx), self._coord(y, cy))

    def _hit(self, position: Point) -> None:
        tool = self.state.tool
        if tool is None:
            raise self.error("drill hit before a tool was selected")
        self.hits.append(DrillHit(
            diameter=self.tools[tool],
            position=position,
            tool=tool,
            line=self._line,
        ))

    def _route(self, code: str, coords: str) -> None:
        st = self.state
        words = dict(re.findall(r"([XY])([-+]?[\d.]+)", coords))
        target = self._target(words.get("X"), words.get("Y"))
        if code == "0":
            self._finish_route()
            st.route_mode = True
        else:
            if not st.route_down:
                raise self.error("linear route (G01) without plunge (M15)")
            st.route_path.append(target)
        st.current = target

    def _arc(self, clockwise: bool, coords: str) -> None:
        """Extend the routed path by a circular arc, linearized.

        The centre is given either by ``I``/``J`` offsets from the start
        point or by an ``A`` radius, in which case the shorter of the two
        candidate arcs is taken.
        """
        st = self.state
        if not st.route_down:
            raise self.error("circular route (G02/G03) without plunge (M15)")
        words = dict(re.findall(r"([XYAIJ])([-+]?[\d.]+)", coords))
        start = st.current
        end = self._target(words.get("X"), words.get("Y"))
        if "A" in words:
            center = self._center_from_radius(start, end, self._distance(words["A"]), clockwise)
        elif "I" in words or "J" in words:
            i = self._distance(words["I"]) if "I" in words else 0.0
            j = self._distance(words["J"]) if "J" in words else 0.0
            center = (start[0] + i, start[1] + j)
        else:
            raise self.error("circular route needs an A radius or I/J centre offsets")
        points = linearize_arc(start, end, center, clockwise)
        st.route_path.extend((float(x), float(y)) for x, y in points[1:])
        st.current = end

    def _center_from_radius(
        self, start: Point, end: Point, radius: float, clockwise: bool,
    ) -> Point:
        dx, dy = end[0] - start[0], end[1] - start[1]
        chord = math.hypot(dx, dy)
        if chord == 0.0:
            raise self.error("circular route with radius needs distinct end points")
        half = chord / 2.0
        if radius < half - ARC_CHORD_TOLERANCE_MM:
            raise self.error(f"arc radius {radius:g} mm is shorter than half the chord {half:g} mm")
        h = math.sqrt(max(radius * radius - half * half, 0.0))
        # Left normal of the chord; a counter-clockwise minor arc bends around it.
        nx, ny = -dy / chord, dx / chord
        sign = -1.0 if clockwise else 1.0
        mx, my = (start[0] + end[0]) / 2.0, (start[1] + end[1]) / 2.0
        return (mx + sign * h * nx, my + sign * h * ny)

    def _slot(self, m: re.Match) -> None:
        def val(word: str | None) -> str | None:
            return word[1:] if word else None

        start = self._target(val(m.group(1)), val(m.group(2)))
        self.state.current = start
        end = self._target(val(m.group(3)), val(m.group(4)))
        tool = self.state.tool
        if tool is None:
            raise self.error("slot (G85) before a tool was selected")
        self.routes.append(DrillRoute(
            diameter=self.tools[tool],
            path=(start, end),
            tool=tool,
            line=self._line,
        ))
        self.state.current = end

    def _finish_route(self) -> None:
        st = self.state
        if st.route_down and len(st.route_path) >= 2:
            self.routes.append(DrillRoute(
                diameter=self.tools[st.tool],
                path=tuple(st.route_path),
                tool=st.tool,
                line=st.route_line,
            ))
        st.route_down = False
        st.route_path = []


def parse_drill(
    text: str,
    *,
    source: str = "<drill>",
    coordinate_format: CoordinateFormat | None = None,
    unit: LengthUnit | None = None,
) -> DrillLayer:
    """Parse Excellon drill text.

    Parameters
    ----------
    text : str
        Complete file contents.
    source : str
        Name used in error messages.
    coordinate_format, unit
        Declared defaults; the header's ``METRIC``/``INCH`` line overrides
        both.

    Returns
    -------
    DrillLayer
        Hits (diameters in mm) and routed slots.

    Raises
    ------
    ParseError
        On unknown commands, hits before tool selection, undefined tools,
        or a missing ``M30``.
    """
    return _DrillInterpreter(source, coordinate_format, unit).run(text)
