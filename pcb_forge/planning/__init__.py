"""
Toolpath planning module.

Turns a classified contour forest plus a process configuration into
depth-sliced toolpaths, and mirrors them for backside work.
"""

from pcb_forge.planning.planner import (
    compensate,
    plan_cut,
    plan_engrave,
    raster_fill,
    slice_depths,
)
from pcb_forge.planning.toolpaths import (
    ArcSegment,
    LineSegment,
    PathPlan,
    PlannedPass,
    Toolpath,
    mirror_passes,
)

__all__ = [
    "compensate",
    "plan_cut",
    "plan_engrave",
    "raster_fill",
    "slice_depths",
    "ArcSegment",
    "LineSegment",
    "PathPlan",
    "PlannedPass",
    "Toolpath",
    "mirror_passes",
]
