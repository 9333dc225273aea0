"""
Geometry module.

Builds closed polygons from drawing primitives and classifies them into
a containment forest of solid boundaries and holes.
"""

from pcb_forge.geometry.builder import Polygon, build_polygons
from pcb_forge.geometry.contours import (
    ContourForest,
    ContourKind,
    ContourNode,
    LineSelection,
    classify,
)

__all__ = [
    "Polygon",
    "build_polygons",
    "ContourForest",
    "ContourKind",
    "ContourNode",
    "LineSelection",
    "classify",
]
