"""Gerber (RS-274X) parser -- artwork text to drawing primitives.

The parser is a single pass over the command stream with an explicit
interpreter state (:class:`GerberState`).  It never reads files: callers
hand over the full text and a source name used in error messages.

Supported command subset
------------------------
Extended (``%...%``):
    FS, MO, AD (C, R, O, P and macros), AM, LP, LM, LR, LS,
    TF/TA/TO/TD (attributes, no geometry), IP POS, IN/LN (ignored)
Word (``...*``):
    G04 comment, G01/G02/G03, G75, G36/G37, G70/G71, G90/G91,
    G54Dnn (deprecated select), Dnn select, D01/D02/D03, M02

Anything else (``G74`` single quadrant mode, ``%SR%``, ``%AB%``, unknown
codes) raises :class:`~pcb_forge.errors.ParseError` with the 1-based line
and column of the offending command.  No primitives are returned from a
file that fails to parse.

Consecutive ``D01`` plots with the same aperture and polarity are merged
into one :class:`~pcb_forge.artwork.primitives.Stroke` so that joins
between segments are round rather than overlapping capsules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, Literal

from pcb_forge.artwork.macros import ApertureMacro, MacroError
from pcb_forge.artwork.primitives import (
    IDENTITY,
    Aperture,
    ApertureTransform,
    CircleAperture,
    CoordinateFormat,
    Flash,
    GerberLayer,
    ObroundAperture,
    Point,
    Polarity,
    PolygonAperture,
    RectangleAperture,
    Region,
    Stroke,
)
from pcb_forge.errors import ParseError
from pcb_forge.utils.geometry import linearize_arc
from pcb_forge.utils.units import LengthUnit

logger = logging.getLogger(__name__)

Interpolation = Literal["linear", "cw", "ccw"]


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Command:
    """One command with the position of its first character.

    Extended commands keep their ``*``-separated blocks; word commands
    have exactly one block.
    """

    blocks: tuple[str, ...]
    line: int
    column: int
    extended: bool


def tokenize(text: str, source: str = "<gerber>") -> Iterator[Command]:
    """Split Gerber text into commands.

    Raises
    ------
    ParseError
        If an extended command or a word command is left unterminated.
    """
    i = 0
    n = len(text)
    line, col = 1, 1

    def advance(ch: str) -> None:
        nonlocal line, col
        if ch == "\n":
            line += 1
            col = 1
        else:
            col += 1

    while i < n:
        ch = text[i]
        if ch in " \t\r\n":
            advance(ch)
            i += 1
            continue

        start_line, start_col = line, col
        if ch == "%":
            end = text.find("%", i + 1)
            if end < 0:
                raise ParseError(source, start_line, start_col, "unterminated extended command")
            body = text[i + 1:end]
            for c in text[i:end + 1]:
                advance(c)
            i = end + 1
            cleaned = re.sub(r"[\r\n]", "", body)
            blocks = tuple(b for b in (blk.strip() for blk in cleaned.split("*")) if b)
            if not cleaned.rstrip().endswith("*"):
                raise ParseError(source, start_line, start_col, "extended command missing '*'")
            yield Command(blocks, start_line, start_col, extended=True)
        else:
            end = text.find("*", i)
            if end < 0:
                raise ParseError(source, start_line, start_col, "unterminated command (missing '*')")
            body = text[i:end]
            for c in text[i:end + 1]:
                advance(c)
            i = end + 1
            yield Command((re.sub(r"[\r\n]", "", body).strip(),), start_line, start_col, extended=False)


# ---------------------------------------------------------------------------
# Interpreter state
# ---------------------------------------------------------------------------


@dataclass
class GerberState:
    """Mutable graphics state threaded through the interpreter."""

    coordinate_format: CoordinateFormat | None = None
    unit: LengthUnit | None = None
    current: Point = (0.0, 0.0)
    aperture_id: int | None = None
    interpolation: Interpolation | None = None
    last_operation: int | None = None
    polarity: Polarity = Polarity.DARK
    transform: ApertureTransform = IDENTITY
    in_region: bool = False
    region_contours: list[list[Point]] = field(default_factory=list)
    region_line: int = 0
    pending_path: list[Point] = field(default_factory=list)
    pending_line: int = 0
    ended: bool = False


_WORD_RE = re.compile(r"([GDMXYIJ])([+-]?(?:\d+\.?\d*|\.\d+))")
_FS_RE = re.compile(r"^FS([LTD]?)([AI])X(\d)(\d)Y(\d)(\d)$")
_AD_RE = re.compile(r"^ADD(\d+)([A-Za-z_.$][\w.$-]*)(?:,(.*))?$")


class _Interpreter:
    def __init__(
        self,
        source: str,
        coordinate_format: CoordinateFormat | None,
        unit: LengthUnit | None,
    ) -> None:
        self.source = source
        self.state = GerberState(coordinate_format=coordinate_format, unit=unit)
        self.apertures: dict[int, Aperture] = {}
        self.macros: dict[str, ApertureMacro] = {}
        self.attributes: dict[str, tuple[str, ...]] = {}
        self.primitives: list[Flash | Stroke | Region] = []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def error(self, cmd: Command, message: str) -> ParseError:
        return ParseError(self.source, cmd.line, cmd.column, message)

    def _scale(self, cmd: Command) -> float:
        """Millimetres per file unit."""
        if self.state.unit is None:
            raise self.error(cmd, "length data before %MO% unit specification")
        return self.state.unit.factor

    def _require_format(self, cmd: Command) -> CoordinateFormat:
        st = self.state
        if st.coordinate_format is None:
            raise self.error(cmd, "coordinate data before %FS% format specification")
        if st.unit is None:
            raise self.error(cmd, "coordinate data before %MO% unit specification")
        return st.coordinate_format

    def _coord(self, cmd: Command, text: str | None, current: float) -> float:
        if text is None:
            return current
        fmt = self._require_format(cmd)
        try:
            value = fmt.decode(text) * self._scale(cmd)
        except ValueError as exc:
            raise self.error(cmd, str(exc)) from exc
        return current + value if fmt.incremental else value

    def _offset(self, cmd: Command, text: str | None) -> float:
        if text is None:
            return 0.0
        fmt = self._require_format(cmd)
        try:
            return fmt.decode(text) * self._scale(cmd)
        except ValueError as exc:
            raise self.error(cmd, str(exc)) from exc

    def _flush_stroke(self) -> None:
        st = self.state
        if st.pending_path:
            self.primitives.append(Stroke(
                aperture=self.apertures[st.aperture_id],
                path=tuple(st.pending_path),
                polarity=st.polarity,
                transform=st.transform,
                line=st.pending_line,
            ))
            st.pending_path = []

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def run(self, text: str) -> GerberLayer:
        last_cmd: Command | None = None
        for cmd in tokenize(text, self.source):
            last_cmd = cmd
            if self.state.ended:
                raise self.error(cmd, "content after M02 end of file")
            if cmd.extended:
                self._extended(cmd)
            else:
                self._word(cmd)

        eof_line = last_cmd.line if last_cmd else 1
        eof_col = last_cmd.column if last_cmd else 1
        if self.state.in_region:
            raise ParseError(
                self.source, self.state.region_line, 1,
                "region (G36) not terminated by G37 before end of file",
            )
        if not self.state.ended:
            raise ParseError(self.source, eof_line, eof_col, "missing M02 end of file")

        logger.debug(
            "Parsed %s: %d primitives, %d apertures",
            self.source, len(self.primitives), len(self.apertures),
        )
        return GerberLayer(
            source=self.source,
            primitives=tuple(self.primitives),
            apertures=dict(self.apertures),
            attributes=dict(self.attributes),
        )

    # ------------------------------------------------------------------
    # Extended commands
    # ------------------------------------------------------------------

    def _extended(self, cmd: Command) -> None:
        if not cmd.blocks:
            raise self.error(cmd, "empty extended command")
        head = cmd.blocks[0]
        code = head[:2]

        if code == "AM":
            name = head[2:]
            if not name:
                raise self.error(cmd, "aperture macro without a name")
            self.macros[name] = ApertureMacro(name, cmd.blocks[1:])
            return

        if len(cmd.blocks) != 1:
            raise self.error(cmd, f"unexpected data in %{code}% command")

        if code == "FS":
            self._fs(cmd, head)
        elif code == "MO":
            if head == "MOMM":
                self.state.unit = LengthUnit.MILLIMETER
            elif head == "MOIN":
                self.state.unit = LengthUnit.INCH
            else:
                raise self.error(cmd, f"unknown unit mode {head!r}")
        elif code == "AD":
            self._ad(cmd, head)
        elif code == "LP":
            if head not in ("LPD", "LPC"):
                raise self.error(cmd, f"unknown polarity {head!r}")
            self._flush_stroke()
            self.state.polarity = Polarity.DARK if head == "LPD" else Polarity.CLEAR
        elif code == "LM":
            mirror = head[2:]
            if mirror not in ("N", "X", "Y", "XY"):
                raise self.error(cmd, f"unknown mirroring {head!r}")
            self._set_transform(mirror=mirror)
        elif code == "LR":
            self._set_transform(rotation_deg=self._float(cmd, head[2:]))
        elif code == "LS":
            scale = self._float(cmd, head[2:])
            if scale <= 0:
                raise self.error(cmd, f"scale must be > 0, got {scale}")
            self._set_transform(scale=scale)
        elif code in ("TF", "TA", "TO", "TD"):
            if code == "TF":
                parts = head[2:].split(",")
                self.attributes[parts[0]] = tuple(parts[1:])
        elif code == "IP":
            if head != "IPPOS":
                raise self.error(cmd, f"unsupported image polarity {head!r}")
        elif code in ("IN", "LN"):
            pass
        elif code == "SR":
            raise self.error(cmd, "step and repeat (%SR%) is not supported")
        elif code == "AB":
            raise self.error(cmd, "aperture blocks (%AB%) are not supported")
        else:
            raise self.error(cmd, f"unknown extended command {head!r}")

    def _float(self, cmd: Command, text: str) -> float:
        try:
            return float(text)
        except ValueError:
            raise self.error(cmd, f"expected a number, got {text!r}") from None

    def _set_transform(self, **changes) -> None:
        self._flush_stroke()
        t = self.state.transform
        self.state.transform = ApertureTransform(
            mirror=changes.get("mirror", t.mirror),
            rotation_deg=changes.get("rotation_deg", t.rotation_deg),
            scale=changes.get("scale", t.scale),
        )

    def _fs(self, cmd: Command, head: str) -> None:
        m = _FS_RE.match(head)
        if m is None:
            raise self.error(cmd, f"malformed format specification {head!r}")
        omission, notation, xi, xd, yi, yd = m.groups()
        if (xi, xd) != (yi, yd):
            raise self.error(cmd, "X and Y coordinate formats must match")
        try:
            self.state.coordinate_format = CoordinateFormat(
                integer_digits=int(xi),
                decimal_digits=int(xd),
                zero_omission="trailing" if omission == "T" else "leading",
                incremental=notation == "I",
            )
        except ValueError as exc:
            raise self.error(cmd, str(exc)) from exc

    def _ad(self, cmd: Command, head: str) -> None:
        m = _AD_RE.match(head)
        if m is None:
            raise self.error(cmd, f"malformed aperture definition {head!r}")
        number = int(m.group(1))
        template = m.group(2)
        raw = m.group(3)
        if number < 10:
            raise self.error(cmd, f"aperture number must be >= 10, got D{number}")
        try:
            params = [float(p) for p in raw.split("X")] if raw else []
        except ValueError:
            raise self.error(cmd, f"malformed aperture parameters {raw!r}") from None
        k = self._scale(cmd)

        try:
            if template == "C":
                self._arity(cmd, params, 1, 2)
                aperture = CircleAperture(params[0] * k, self._hole(params, 1, k))
            elif template == "R":
                self._arity(cmd, params, 2, 3)
                aperture = RectangleAperture(params[0] * k, params[1] * k, self._hole(params, 2, k))
            elif template == "O":
                self._arity(cmd, params, 2, 3)
                aperture = ObroundAperture(params[0] * k, params[1] * k, self._hole(params, 2, k))
            elif template == "P":
                self._arity(cmd, params, 2, 4)
                aperture = PolygonAperture(
                    outer_diameter=params[0] * k,
                    vertices=int(round(params[1])),
                    rotation_deg=params[2] if len(params) > 2 else 0.0,
                    hole_diameter=self._hole(params, 3, k),
                )
            elif template in self.macros:
                aperture = self.macros[template].instantiate(params, k)
            else:
                raise self.error(cmd, f"undefined aperture template {template!r}")
        except (MacroError, ValueError) as exc:
            raise self.error(cmd, f"D{number}: {exc}") from exc

        if number in self.apertures:
            logger.warning("%s: aperture D%d redefined at line %d", self.source, number, cmd.line)
        self.apertures[number] = aperture

    def _arity(self, cmd: Command, params: list[float], lo: int, hi: int) -> None:
        if not lo <= len(params) <= hi:
            raise self.error(cmd, f"expected {lo}..{hi} aperture parameters, got {len(params)}")

    def _hole(self, params: list[float], index: int, k: float) -> float | None:
        if len(params) > index and params[index] > 0:
            return params[index] * k
        return None

    # ------------------------------------------------------------------
    # Word commands
    # ------------------------------------------------------------------

    def _word(self, cmd: Command) -> None:
        body = cmd.blocks[0]
        if not body:
            return
        if re.match(r"^G0*4(?!\d)", body):
            return

        words = _WORD_RE.findall(body)
        if "".join(letter + value for letter, value in words) != body:
            raise self.error(cmd, f"unknown command {body!r}")

        coords: dict[str, str] = {}
        operation: int | None = None
        for letter, value in words:
            if letter == "G":
                self._g(cmd, int(float(value)))
            elif letter == "M":
                if int(float(value)) != 2:
                    raise self.error(cmd, f"unsupported command M{value}")
                self._end_of_file(cmd)
            elif letter == "D":
                d = int(float(value))
                if d >= 10:
                    self._select(cmd, d)
                elif d in (1, 2, 3):
                    operation = d
                else:
                    raise self.error(cmd, f"invalid D code D{value}")
            else:
                if letter in coords:
                    raise self.error(cmd, f"duplicate {letter} coordinate")
                coords[letter] = value

        if coords and operation is None:
            operation = self.state.last_operation
            if operation is None:
                raise self.error(cmd, "coordinate data without D01/D02/D03")
        if operation is not None:
            self.state.last_operation = operation
            self._operate(cmd, operation, coords)

    def _g(self, cmd: Command, code: int) -> None:
        st = self.state
        if code == 1:
            st.interpolation = "linear"
        elif code == 2:
            st.interpolation = "cw"
        elif code == 3:
            st.interpolation = "ccw"
        elif code == 75:
            pass
        elif code == 74:
            raise self.error(cmd, "single quadrant mode (G74) is not supported")
        elif code == 36:
            if st.in_region:
                raise self.error(cmd, "G36 inside an open region")
            self._flush_stroke()
            st.in_region = True
            st.region_contours = [[st.current]]
            st.region_line = cmd.line
        elif code == 37:
            if not st.in_region:
                raise self.error(cmd, "G37 without matching G36")
            self._close_region()
        elif code == 70:
            st.unit = LengthUnit.INCH
        elif code == 71:
            st.unit = LengthUnit.MILLIMETER
        elif code in (90, 91):
            if st.coordinate_format is not None:
                fmt = st.coordinate_format
                st.coordinate_format = CoordinateFormat(
                    fmt.integer_digits, fmt.decimal_digits, fmt.zero_omission,
                    incremental=code == 91,
                )
        elif code in (54, 55):
            pass
        else:
            raise self.error(cmd, f"unsupported command G{code:02d}")

    def _select(self, cmd: Command, number: int) -> None:
        if number not in self.apertures:
            raise self.error(cmd, f"aperture D{number} is not defined")
        if self.state.in_region:
            raise self.error(cmd, "aperture selection inside a region")
        if number != self.state.aperture_id:
            self._flush_stroke()
        self.state.aperture_id = number

    def _end_of_file(self, cmd: Command) -> None:
        if self.state.in_region:
            raise ParseError(
                self.source, self.state.region_line, 1,
                "region (G36) not terminated by G37 before M02",
            )
        self._flush_stroke()
        self.state.ended = True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _operate(self, cmd: Command, operation: int, coords: dict[str, str]) -> None:
        st = self.state
        start = st.current
        target = (
            self._coord(cmd, coords.get("X"), start[0]),
            self._coord(cmd, coords.get("Y"), start[1]),
        )

        if operation == 2:
            self._flush_stroke()
            if st.in_region:
                st.region_contours.append([target])
            st.current = target
            return

        if operation == 3:
            if st.in_region:
                raise self.error(cmd, "flash (D03) inside a region")
            self._flush_stroke()
            if st.aperture_id is None:
                raise self.error(cmd, "flash (D03) before any aperture was selected")
            self.primitives.append(Flash(
                aperture=self.apertures[st.aperture_id],
                position=target,
                polarity=st.polarity,
                transform=st.transform,
                line=cmd.line,
            ))
            st.current = target
            return

        points = self._interpolate(cmd, start, target, coords)
        if st.in_region:
            st.region_contours[-1].extend(points)
        else:
            if st.aperture_id is None:
                raise self.error(cmd, "plot (D01) before any aperture was selected")
            aperture = self.apertures[st.aperture_id]
            if isinstance(aperture, CircleAperture):
                if aperture.hole_diameter is not None:
                    raise self.error(cmd, f"D{st.aperture_id}: stroking with an aperture that has a hole")
            elif not isinstance(aperture, RectangleAperture):
                raise self.error(
                    cmd, f"D{st.aperture_id}: only circular or rectangular apertures can be stroked"
                )
            if not st.pending_path:
                st.pending_path = [start]
                st.pending_line = cmd.line
            st.pending_path.extend(points)
        st.current = target

    def _interpolate(
        self, cmd: Command, start: Point, target: Point, coords: dict[str, str],
    ) -> list[Point]:
        mode = self.state.interpolation
        if mode is None:
            raise self.error(cmd, "plot (D01) before an interpolation mode (G01/G02/G03)")
        if mode == "linear":
            return [target]
        if "I" not in coords and "J" not in coords:
            raise self.error(cmd, "circular plot without I/J centre offset")
        center = (
            start[0] + self._offset(cmd, coords.get("I")),
            start[1] + self._offset(cmd, coords.get("J")),
        )
        pts = linearize_arc(start, target, center, clockwise=mode == "cw")
        return [tuple(p) for p in pts[1:].tolist()]

    def _close_region(self) -> None:
        st = self.state
        for contour in st.region_contours:
            if len(contour) >= 3:
                self.primitives.append(Region(
                    points=tuple(contour),
                    polarity=st.polarity,
                    line=st.region_line,
                ))
        st.in_region = False
        st.region_contours = []


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_gerber(
    text: str,
    *,
    source: str = "<gerber>",
    coordinate_format: CoordinateFormat | None = None,
    unit: LengthUnit | None = None,
) -> GerberLayer:
    """Parse Gerber text into an ordered primitive sequence.

    Parameters
    ----------
    text : str
        Complete file contents.
    source : str
        Name used in error messages.
    coordinate_format : CoordinateFormat | None
        Declared format; an ``%FS%`` command in the file overrides it.
    unit : LengthUnit | None
        Declared unit; an ``%MO%`` command in the file overrides it.

    Returns
    -------
    GerberLayer
        Primitives in file order, all coordinates in mm.

    Raises
    ------
    ParseError
        On malformed or unsupported input, with line and column.
    """
    return _Interpreter(source, coordinate_format, unit).run(text)
