"""
Artwork parsing module.

Parses Gerber (RS-274X) and Excellon drill text into ordered drawing
primitives with all coordinates in millimetres.
"""

from pcb_forge.artwork.drill import parse_drill
from pcb_forge.artwork.gerber import parse_gerber
from pcb_forge.artwork.primitives import (
    CoordinateFormat,
    DrillHit,
    DrillLayer,
    DrillRoute,
    Flash,
    GerberLayer,
    Polarity,
    Region,
    Stroke,
)

__all__ = [
    "parse_gerber",
    "parse_drill",
    "CoordinateFormat",
    "DrillHit",
    "DrillLayer",
    "DrillRoute",
    "Flash",
    "GerberLayer",
    "Polarity",
    "Region",
    "Stroke",
]
