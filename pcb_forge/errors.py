"""Error taxonomy shared by every stage of the forge.

Each layer raises the most specific error it can; only the stage pipeline
turns an error into a per-file failure result.  Nothing here carries
partial output: a raised error always means the caller's output for that
file is discarded.
"""

from __future__ import annotations


class ForgeError(Exception):
    """Base class for all PCB Forge errors."""

    pass


class ParseError(ForgeError):
    """Raised when Gerber or drill text is malformed or unsupported.

    Parameters
    ----------
    source : str
        Name of the artwork file being parsed.
    line, column : int
        1-based position of the offending command.
    message : str
        Human-readable description.
    """

    def __init__(self, source: str, line: int, column: int, message: str) -> None:
        self.source = source
        self.line = line
        self.column = column
        self.message = message
        super().__init__(f"{source}:{line}:{column}: {message}")


class GeometryError(ForgeError):
    """Raised for degenerate, self-intersecting, or ambiguous polygons."""

    def __init__(self, contour: str, reason: str) -> None:
        self.contour = contour
        self.reason = reason
        super().__init__(f"{contour}: {reason}")


class PlanningError(ForgeError):
    """Raised when a toolpath cannot be planned for a stage."""

    def __init__(self, stage: str, reason: str) -> None:
        self.stage = stage
        self.reason = reason
        super().__init__(f"stage '{stage}': {reason}")


class BoundsError(ForgeError):
    """Raised when commanded motion leaves the machine workspace."""

    def __init__(self, stage: str, coordinate: tuple[float, float]) -> None:
        self.stage = stage
        self.coordinate = coordinate
        x, y = coordinate
        super().__init__(
            f"stage '{stage}': X={x:.3f} Y={y:.3f} mm outside workspace"
        )
