"""Aperture macro (``%AM``) definition and evaluation.

A macro is stored as its raw statement list when ``%AM`` is read and
evaluated into concrete :class:`~pcb_forge.artwork.primitives.MacroShape`
rings when an ``%AD`` command instantiates it with actual parameters.

Supported primitives:
    0   comment
    1   circle        exposure, diameter, cx, cy[, rotation]
    4   outline       exposure, n, x0, y0, ... xn, yn, rotation
    5   polygon       exposure, n, cx, cy, diameter, rotation
    20  vector line   exposure, width, x1, y1, x2, y2, rotation
    21  center line   exposure, width, height, cx, cy, rotation

Variables ``$n`` are bound from the ``%AD`` parameters (``$1`` first) and
may be redefined with ``$n=<expr>``.  Unbound variables read as 0.
Expressions support ``+ - x / ( )`` and unary sign; ``x`` (or ``X``) is
multiplication.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from pcb_forge.artwork.primitives import MacroAperture, MacroShape, Point, Polarity
from pcb_forge.utils.geometry import ARC_CHORD_TOLERANCE_MM, arc_step_count


class MacroError(ValueError):
    """Raised when a macro cannot be parsed or evaluated."""

    pass


_TOKEN_RE = re.compile(r"\s*(?:(\d+\.?\d*|\.\d+)|(\$\d+)|([-+xX/()]))")
_ASSIGN_RE = re.compile(r"^\$(\d+)\s*=\s*(.+)$")


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------


def _tokenize(expr: str) -> list[str]:
    tokens: list[str] = []
    pos = 0
    expr = expr.strip()
    while pos < len(expr):
        m = _TOKEN_RE.match(expr, pos)
        if m is None or m.end() == pos:
            raise MacroError(f"bad character in expression {expr!r} at {pos}")
        tokens.append(next(g for g in m.groups() if g is not None))
        pos = m.end()
    return tokens


class _ExprParser:
    """Recursive-descent evaluator: expr := term (('+'|'-') term)*."""

    def __init__(self, tokens: list[str], variables: dict[int, float]) -> None:
        self._tokens = tokens
        self._pos = 0
        self._vars = variables

    def parse(self) -> float:
        value = self._expr()
        if self._pos != len(self._tokens):
            raise MacroError(f"unexpected token {self._tokens[self._pos]!r}")
        return value

    def _peek(self) -> str | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> str:
        tok = self._peek()
        if tok is None:
            raise MacroError("unexpected end of expression")
        self._pos += 1
        return tok

    def _expr(self) -> float:
        value = self._term()
        while self._peek() in ("+", "-"):
            if self._take() == "+":
                value += self._term()
            else:
                value -= self._term()
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._peek() in ("x", "X", "/"):
            if self._take() == "/":
                divisor = self._factor()
                if divisor == 0:
                    raise MacroError("division by zero")
                value /= divisor
            else:
                value *= self._factor()
        return value

    def _factor(self) -> float:
        tok = self._take()
        if tok == "-":
            return -self._factor()
        if tok == "+":
            return self._factor()
        if tok == "(":
            value = self._expr()
            if self._take() != ")":
                raise MacroError("missing ')'")
            return value
        if tok.startswith("$"):
            return self._vars.get(int(tok[1:]), 0.0)
        try:
            return float(tok)
        except ValueError:
            raise MacroError(f"unexpected token {tok!r}") from None


def evaluate(expr: str, variables: dict[int, float]) -> float:
    """Evaluate one macro arithmetic expression."""
    return _ExprParser(_tokenize(expr), variables).parse()


# ---------------------------------------------------------------------------
# Macro definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ApertureMacro:
    """Unevaluated macro: name plus raw statements (without ``*``)."""

    name: str
    statements: tuple[str, ...]

    def instantiate(self, params: list[float], unit_scale: float) -> MacroAperture:
        """Evaluate the macro for one ``%AD`` instance.

        Parameters
        ----------
        params : list[float]
            Actual parameters bound to ``$1``, ``$2``, ...
        unit_scale : float
            Millimetres per file unit; applied to every length.

        Raises
        ------
        MacroError
            On malformed statements or unsupported primitives.
        """
        variables = {i + 1: v for i, v in enumerate(params)}
        shapes: list[MacroShape] = []
        for stmt in self.statements:
            stmt = stmt.strip()
            if not stmt:
                continue
            assign = _ASSIGN_RE.match(stmt)
            if assign:
                variables[int(assign.group(1))] = evaluate(assign.group(2), variables)
                continue
            # Primitive 0 is a comment; its text runs to the end of the statement.
            if stmt.split(None, 1)[0].split(",")[0] == "0":
                continue
            fields = [f.strip() for f in stmt.split(",")]
            code = fields[0]
            args = [evaluate(f, variables) for f in fields[1:]]
            shapes.append(_primitive(code, args, unit_scale))
        if not shapes:
            raise MacroError(f"macro {self.name!r} produced no shapes")
        return MacroAperture(name=self.name, shapes=tuple(shapes))


# ---------------------------------------------------------------------------
# Primitive builders (local coordinates, mm)
# ---------------------------------------------------------------------------


def _need(args: list[float], n: int, what: str) -> None:
    if len(args) < n:
        raise MacroError(f"{what} primitive needs {n} parameters, got {len(args)}")


def _rotate(points: list[Point], rotation_deg: float) -> tuple[Point, ...]:
    if not rotation_deg:
        return tuple(points)
    a = math.radians(rotation_deg)
    c, s = math.cos(a), math.sin(a)
    return tuple((x * c - y * s, x * s + y * c) for x, y in points)


def _exposure(value: float) -> Polarity:
    return Polarity.DARK if round(value) == 1 else Polarity.CLEAR


def _circle_points(cx: float, cy: float, diameter: float) -> list[Point]:
    r = diameter / 2.0
    steps = max(8, arc_step_count(r, 2.0 * math.pi, ARC_CHORD_TOLERANCE_MM))
    return [
        (cx + r * math.cos(2.0 * math.pi * k / steps),
         cy + r * math.sin(2.0 * math.pi * k / steps))
        for k in range(steps)
    ]


def _rect(cx: float, cy: float, w: float, h: float) -> list[Point]:
    hw, hh = w / 2.0, h / 2.0
    return [(cx - hw, cy - hh), (cx + hw, cy - hh), (cx + hw, cy + hh), (cx - hw, cy + hh)]


def _primitive(code: str, args: list[float], k: float) -> MacroShape:
    if code == "1":
        _need(args, 4, "circle")
        rot = args[4] if len(args) > 4 else 0.0
        pts = _circle_points(args[2] * k, args[3] * k, args[1] * k)
        return MacroShape(_exposure(args[0]), _rotate(pts, rot))

    if code == "20":
        _need(args, 7, "vector line")
        width = args[1] * k
        x1, y1, x2, y2 = (v * k for v in args[2:6])
        length = math.hypot(x2 - x1, y2 - y1)
        if length == 0:
            raise MacroError("vector line has zero length")
        nx = -(y2 - y1) / length * width / 2.0
        ny = (x2 - x1) / length * width / 2.0
        pts = [(x1 + nx, y1 + ny), (x1 - nx, y1 - ny), (x2 - nx, y2 - ny), (x2 + nx, y2 + ny)]
        return MacroShape(_exposure(args[0]), _rotate(pts, args[6]))

    if code == "21":
        _need(args, 6, "center line")
        pts = _rect(args[3] * k, args[4] * k, args[1] * k, args[2] * k)
        return MacroShape(_exposure(args[0]), _rotate(pts, args[5]))

    if code == "4":
        _need(args, 2, "outline")
        n = int(round(args[1]))
        _need(args, 2 + 2 * (n + 1) + 1, "outline")
        coords = args[2:2 + 2 * (n + 1)]
        pts = [(coords[i] * k, coords[i + 1] * k) for i in range(0, len(coords), 2)]
        return MacroShape(_exposure(args[0]), _rotate(pts[:-1] if pts[0] == pts[-1] else pts, args[-1]))

    if code == "5":
        _need(args, 6, "polygon")
        n = int(round(args[1]))
        if not 3 <= n <= 12:
            raise MacroError(f"polygon primitive needs 3..12 vertices, got {n}")
        cx, cy, r = args[2] * k, args[3] * k, args[4] * k / 2.0
        pts = [
            (cx + r * math.cos(2.0 * math.pi * i / n), cy + r * math.sin(2.0 * math.pi * i / n))
            for i in range(n)
        ]
        return MacroShape(_exposure(args[0]), _rotate(pts, args[5]))

    raise MacroError(f"unsupported macro primitive {code}")
