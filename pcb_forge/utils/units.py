"""Typed physical quantities with explicit units.

Every length, speed, power and angular speed that crosses a module
boundary is a :class:`UnitValue`.  Each unit belongs to exactly one
:class:`Quantity`, so mixing a length with a speed fails loudly instead
of silently producing a wrong toolpath.

Canonical units (what ``canonical()`` returns):
    LENGTH         millimetre
    SPEED          millimetre per second
    POWER          watt
    ANGULAR_SPEED  revolutions per minute

Conversion to machine units happens once, in the motion emitter.  Only
the configuration layer parses text such as ``"2.5 mm"``.

Usage::

    from pcb_forge.utils.units import UnitValue, LengthUnit, mm
    depth = mm(-2.0)
    depth.to(LengthUnit.INCH).magnitude
    UnitValue.parse("1200 mm/min").canonical()   # 20.0 (mm/s)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from pcb_forge.errors import ForgeError


class UnitError(ForgeError, TypeError):
    """Raised when values of incompatible quantities are combined."""

    pass


class Quantity(Enum):
    LENGTH = "length"
    SPEED = "speed"
    POWER = "power"
    ANGULAR_SPEED = "angular speed"


# ---------------------------------------------------------------------------
# Unit enums.  Value tuple: (symbol, factor to canonical unit)
# ---------------------------------------------------------------------------


class _UnitEnum(Enum):
    @property
    def symbol(self) -> str:
        return self.value[0]

    @property
    def factor(self) -> float:
        return self.value[1]

    def __str__(self) -> str:
        return self.symbol


class LengthUnit(_UnitEnum):
    MILLIMETER = ("mm", 1.0)
    CENTIMETER = ("cm", 10.0)
    METER = ("m", 1000.0)
    MICROMETER = ("um", 0.001)
    INCH = ("in", 25.4)
    MIL = ("mil", 0.0254)


class SpeedUnit(_UnitEnum):
    MM_PER_SECOND = ("mm/s", 1.0)
    MM_PER_MINUTE = ("mm/min", 1.0 / 60.0)
    M_PER_SECOND = ("m/s", 1000.0)
    INCH_PER_SECOND = ("in/s", 25.4)
    INCH_PER_MINUTE = ("in/min", 25.4 / 60.0)


class PowerUnit(_UnitEnum):
    MILLIWATT = ("mW", 0.001)
    WATT = ("W", 1.0)
    KILOWATT = ("kW", 1000.0)


class AngularSpeedUnit(_UnitEnum):
    RPM = ("rpm", 1.0)
    RPS = ("rps", 60.0)


Unit = Union[LengthUnit, SpeedUnit, PowerUnit, AngularSpeedUnit]

_QUANTITY_OF: dict[type, Quantity] = {
    LengthUnit: Quantity.LENGTH,
    SpeedUnit: Quantity.SPEED,
    PowerUnit: Quantity.POWER,
    AngularSpeedUnit: Quantity.ANGULAR_SPEED,
}

_SYMBOLS: dict[str, Unit] = {
    u.symbol.lower(): u
    for enum_cls in _QUANTITY_OF
    for u in enum_cls
}
_SYMBOLS.update({
    "inch": LengthUnit.INCH,
    "µm": LengthUnit.MICROMETER,
    "mm/sec": SpeedUnit.MM_PER_SECOND,
    "rev/min": AngularSpeedUnit.RPM,
})

_PARSE_RE = re.compile(
    r"^\s*(?P<num>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)\s*(?P<unit>[^\d\s.+-]\S*)\s*$"
)


def quantity_of(unit: Unit) -> Quantity:
    """Return the physical quantity a unit measures."""
    return _QUANTITY_OF[type(unit)]


# ---------------------------------------------------------------------------
# Value type
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UnitValue:
    """A magnitude tagged with its unit.

    Parameters
    ----------
    magnitude : float
        Numeric value expressed in *unit*.
    unit : Unit
        One of the unit enums above.
    """

    magnitude: float
    unit: Unit

    def __post_init__(self) -> None:
        if type(self.unit) not in _QUANTITY_OF:
            raise UnitError(f"Not a unit: {self.unit!r}")
        if not math.isfinite(self.magnitude):
            raise ValueError(f"Magnitude must be finite, got {self.magnitude}")

    # -- Introspection ------------------------------------------------------

    @property
    def quantity(self) -> Quantity:
        return quantity_of(self.unit)

    def require(self, quantity: Quantity) -> UnitValue:
        """Return ``self`` if it measures *quantity*, else raise ``UnitError``."""
        if self.quantity is not quantity:
            raise UnitError(
                f"Expected a {quantity.value} value, got {self} "
                f"({self.quantity.value})"
            )
        return self

    # -- Conversion ---------------------------------------------------------

    def to(self, unit: Unit) -> UnitValue:
        """Convert to another unit of the same quantity.

        Raises
        ------
        UnitError
            If *unit* measures a different quantity.
        """
        if quantity_of(unit) is not self.quantity:
            raise UnitError(
                f"Cannot convert {self.quantity.value} ({self.unit}) "
                f"to {quantity_of(unit).value} ({unit})"
            )
        if unit is self.unit:
            return self
        return UnitValue(self.magnitude * self.unit.factor / unit.factor, unit)

    def canonical(self) -> float:
        """Magnitude in the canonical unit of this quantity."""
        return self.magnitude * self.unit.factor

    def in_unit(self, unit: Unit) -> float:
        """Magnitude expressed in *unit*."""
        return self.to(unit).magnitude

    # -- Arithmetic that keeps the unit -------------------------------------

    def __neg__(self) -> UnitValue:
        return UnitValue(-self.magnitude, self.unit)

    def __abs__(self) -> UnitValue:
        return UnitValue(abs(self.magnitude), self.unit)

    def __mul__(self, scalar: float) -> UnitValue:
        if isinstance(scalar, UnitValue):
            raise UnitError("UnitValue * UnitValue is not supported")
        return UnitValue(self.magnitude * float(scalar), self.unit)

    __rmul__ = __mul__

    def __add__(self, other: UnitValue) -> UnitValue:
        other = self._coerce(other)
        return UnitValue(self.magnitude + other.in_unit(self.unit), self.unit)

    def __sub__(self, other: UnitValue) -> UnitValue:
        other = self._coerce(other)
        return UnitValue(self.magnitude - other.in_unit(self.unit), self.unit)

    def __lt__(self, other: UnitValue) -> bool:
        return self.canonical() < self._coerce(other).canonical()

    def __le__(self, other: UnitValue) -> bool:
        return self.canonical() <= self._coerce(other).canonical()

    def __gt__(self, other: UnitValue) -> bool:
        return self.canonical() > self._coerce(other).canonical()

    def __ge__(self, other: UnitValue) -> bool:
        return self.canonical() >= self._coerce(other).canonical()

    def is_zero(self) -> bool:
        return self.magnitude == 0.0

    def _coerce(self, other: object) -> UnitValue:
        if not isinstance(other, UnitValue):
            raise UnitError(f"Cannot combine {self} with {other!r}")
        return other.require(self.quantity)

    def __str__(self) -> str:
        return f"{self.magnitude:g} {self.unit.symbol}"

    # -- Parsing (configuration layer only) ---------------------------------

    @classmethod
    def parse(cls, text: str | int | float, default_unit: Unit | None = None) -> UnitValue:
        """Parse ``"<number> <unit>"`` into a value.

        Parameters
        ----------
        text : str | int | float
            Text such as ``"2.5 mm"`` or ``"12000 rpm"``.  A bare number is
            accepted only when *default_unit* is given.
        default_unit : Unit | None
            Unit applied to bare numbers.

        Raises
        ------
        ValueError
            If the text cannot be parsed or names an unknown unit.
        """
        if isinstance(text, bool):
            raise ValueError(f"Not a quantity: {text!r}")
        if isinstance(text, (int, float)):
            if default_unit is None:
                raise ValueError(f"Missing unit for value {text!r}")
            return cls(float(text), default_unit)

        m = _PARSE_RE.match(str(text))
        if m is None:
            try:
                number = float(text)
            except ValueError:
                raise ValueError(f"Cannot parse quantity {text!r}") from None
            if default_unit is None:
                raise ValueError(f"Missing unit for value {text!r}")
            return cls(number, default_unit)

        symbol = m.group("unit").lower()
        unit = _SYMBOLS.get(symbol)
        if unit is None:
            raise ValueError(f"Unknown unit {m.group('unit')!r} in {text!r}")
        return cls(float(m.group("num")), unit)


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def mm(value: float) -> UnitValue:
    return UnitValue(float(value), LengthUnit.MILLIMETER)


def inches(value: float) -> UnitValue:
    return UnitValue(float(value), LengthUnit.INCH)


def mm_per_s(value: float) -> UnitValue:
    return UnitValue(float(value), SpeedUnit.MM_PER_SECOND)


def mm_per_min(value: float) -> UnitValue:
    return UnitValue(float(value), SpeedUnit.MM_PER_MINUTE)


def watts(value: float) -> UnitValue:
    return UnitValue(float(value), PowerUnit.WATT)


def rpm(value: float) -> UnitValue:
    return UnitValue(float(value), AngularSpeedUnit.RPM)
