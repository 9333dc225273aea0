"""Path planner -- classified contours to depth-sliced toolpaths.

Two operations:

``plan_cut``
    Selects contours, applies tool-radius compensation (the tool centre
    stays in the removed material: boundaries grow, holes shrink, drill
    features are traced as drawn) and repeats the resulting paths at every
    depth from :func:`slice_depths`.  Holes are cut before boundaries.

``plan_engrave``
    Traces every contour ``passes`` times at the engraving depth without
    compensation, optionally followed by a boustrophedon raster over the
    area to remove.

Every failure is raised as :class:`~pcb_forge.errors.PlanningError`
before anything is emitted.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np
from shapely.geometry import LineString

from pcb_forge.configs.loader import CuttingConfig, EngravingConfig, ProcessConfig, ToolSelection
from pcb_forge.errors import PlanningError
from pcb_forge.geometry.contours import ContourForest, ContourKind, ContourNode, LineSelection
from pcb_forge.planning.toolpaths import PathPlan, PlannedPass, Toolpath
from pcb_forge.utils.geometry import OffsetCollapse, offset_ring
from pcb_forge.utils.units import UnitValue, mm

logger = logging.getLogger(__name__)

# Slack for floating-point noise in |cut_depth| / pass_depth
DEPTH_RATIO_EPS = 1e-9


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def check_tool(config: ProcessConfig, tool: ToolSelection, *, stage: str) -> None:
    """Reject process configs whose activation does not fit the tool.

    Raises
    ------
    PlanningError
        Laser with ``spindle_speed``, spindle with ``laser_power``, a
        spindle without a mounted bit, or a speed/power above the tool's
        maximum.
    """
    if tool.is_laser:
        if config.spindle_speed is not None:
            raise PlanningError(
                stage, f"config '{config.name}' sets spindle_speed but tool '{tool.ref}' is a laser",
            )
        limit, requested = tool.tool.max_power, config.laser_power
    else:
        if config.laser_power is not None:
            raise PlanningError(
                stage, f"config '{config.name}' sets laser_power but tool '{tool.ref}' is a spindle",
            )
        if tool.bit is None:
            raise PlanningError(stage, f"spindle tool '{tool.ref}' has no bit selected")
        limit, requested = tool.tool.max_speed, config.spindle_speed

    # A zero limit marks a passive tool (pen, drag knife) that is never activated
    if requested is not None and not limit.is_zero() and requested > limit:
        raise PlanningError(
            stage, f"config '{config.name}' requests {requested}, tool '{tool.ref}' allows {limit}",
        )


# ---------------------------------------------------------------------------
# Depth slicing
# ---------------------------------------------------------------------------


def slice_depths(
    cut_depth: UnitValue, pass_depth: UnitValue, *, stage: str,
) -> tuple[list[UnitValue], str | None]:
    """Z levels of the successive passes of a cut.

    Parameters
    ----------
    cut_depth : UnitValue
        Final depth, negative (below the surface).
    pass_depth : UnitValue
        Maximum descent per pass, positive.

    Returns
    -------
    depths : list[UnitValue]
        ``ceil(|cut_depth| / pass_depth)`` depths in mm, each ``pass_depth``
        below the previous one; the last is exactly ``cut_depth``.
    notice : str | None
        Set when the ratio is not integral and the count was rounded up.

    Raises
    ------
    PlanningError
        If ``cut_depth`` is zero or above the surface, or ``pass_depth``
        is not positive.
    """
    cut = cut_depth.canonical()
    step = pass_depth.canonical()
    if step <= 0.0:
        raise PlanningError(stage, f"pass_depth must be positive, got {pass_depth}")
    if cut == 0.0:
        raise PlanningError(stage, "cut_depth of zero yields no passes")
    if cut > 0.0:
        raise PlanningError(stage, f"cut_depth must be below the surface, got {cut_depth}")

    ratio = abs(cut) / step
    count = max(1, math.ceil(ratio - DEPTH_RATIO_EPS))
    depths = [mm(-step * k) for k in range(1, count)]
    depths.append(mm(cut))

    notice = None
    if abs(ratio - round(ratio)) > DEPTH_RATIO_EPS:
        notice = (
            f"{cut_depth} / {pass_depth} is {ratio:.3f} passes, rounded up to {count}"
        )
    return depths, notice


# ---------------------------------------------------------------------------
# Per-contour paths
# ---------------------------------------------------------------------------


def trace(node: ContourNode) -> Toolpath:
    """Contour as drawn (drill features at their own size)."""
    if node.circle is not None:
        center, diameter = node.circle
        return Toolpath.circle(center, diameter, node.label)
    if node.centerline is not None:
        return Toolpath.from_points(node.centerline, node.label, closed=False, kind="drill")
    return Toolpath.from_ring(node.ring, node.label)


def compensate(node: ContourNode, diameter_mm: float, *, stage: str) -> Toolpath:
    """Tool-centre path for cutting *node* with a tool of *diameter_mm*.

    Raises
    ------
    PlanningError
        If the offset collapses the contour (tool too large for it).
    """
    if node.is_drill:
        return trace(node)
    radius = diameter_mm / 2.0
    distance = radius if node.kind is ContourKind.OUTER_BOUNDARY else -radius
    try:
        ring = offset_ring(node.ring, distance, corner="round")
    except OffsetCollapse as exc:
        raise PlanningError(
            stage, f"{node.label}: {diameter_mm:g} mm tool does not fit ({exc})",
        ) from exc
    return Toolpath.from_ring(ring, node.label)


def raster_fill(area, spacing_mm: float, label: str) -> list[Toolpath]:
    """Horizontal scan lines over *area*, alternating direction per row.

    Rows are ``spacing_mm`` apart starting half a spacing above the bottom
    of the area so the tool edge touches the boundary.
    """
    if area.is_empty or spacing_mm <= 0.0:
        return []
    min_x, min_y, max_x, max_y = area.bounds
    rows = np.arange(min_y + spacing_mm / 2.0, max_y, spacing_mm)
    paths: list[Toolpath] = []
    for row, y in enumerate(rows):
        scan = LineString([(min_x - 1.0, y), (max_x + 1.0, y)])
        hit = area.intersection(scan)
        if hit.is_empty:
            continue
        pieces = [hit] if hit.geom_type == "LineString" else [
            g for g in getattr(hit, "geoms", []) if g.geom_type == "LineString"
        ]
        pieces.sort(key=lambda g: g.bounds[0], reverse=bool(row % 2))
        for piece in pieces:
            if piece.length <= 0.0:
                continue
            coords = np.asarray(piece.coords)
            coords = coords[np.argsort(coords[:, 0])]
            if row % 2:
                coords = coords[::-1]
            paths.append(
                Toolpath.from_points(coords, f"{label} row {row}", closed=False, kind="fill")
            )
    return paths


def _ordered(nodes: Sequence[ContourNode]) -> list[ContourNode]:
    # Holes first, then boundaries; arena order within each group
    return sorted(nodes, key=lambda n: n.kind is ContourKind.OUTER_BOUNDARY)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plan_cut(
    forest: ContourForest,
    config: CuttingConfig,
    tool: ToolSelection,
    *,
    stage: str,
    select_lines: LineSelection = LineSelection.ALL,
) -> PathPlan:
    """Plan a through-cut of the selected contours.

    Parameters
    ----------
    forest : ContourForest
        Classified artwork.
    config : CuttingConfig
        Depths and speeds.
    tool : ToolSelection
        Resolved tool (bit diameter or laser spot used for compensation).
    stage : str
        Stage name for error messages.
    select_lines : LineSelection
        Which contours to cut.

    Returns
    -------
    PathPlan
        One :class:`PlannedPass` per depth, each retracing every path.

    Raises
    ------
    PlanningError
    """
    check_tool(config, tool, stage=stage)
    depths, notice = slice_depths(config.cut_depth, config.pass_depth, stage=stage)
    notices = []
    if notice is not None:
        logger.info("Stage %s: %s", stage, notice)
        notices.append(notice)

    selected = forest.select(select_lines)
    if not selected:
        raise PlanningError(stage, f"no contours match select_lines={select_lines.value}")

    diameter = tool.diameter.canonical()
    paths = tuple(compensate(node, diameter, stage=stage) for node in _ordered(selected))
    passes = tuple(
        PlannedPass(index=i, depth=depth, paths=paths) for i, depth in enumerate(depths)
    )
    logger.debug(
        "Stage %s: %d contour(s) x %d pass(es) with %g mm tool",
        stage, len(paths), len(passes), diameter,
    )
    return PathPlan(stage=stage, operation="cut", passes=passes, notices=tuple(notices))


def plan_engrave(
    forest: ContourForest,
    config: EngravingConfig,
    tool: ToolSelection,
    *,
    stage: str,
    invert: bool = False,
) -> PathPlan:
    """Plan a surface engraving.

    Every contour is traced once per configured pass at ``config.depth``;
    with ``config.fill`` a raster spaced at the tool diameter sweeps the
    removal area.  ``invert`` swaps solid and hole designation before
    anything is selected.

    Raises
    ------
    PlanningError
    """
    check_tool(config, tool, stage=stage)
    if invert:
        forest = forest.invert()

    outlines = [trace(node) for node in _ordered(forest.select(LineSelection.ALL))]
    fill: list[Toolpath] = []
    if config.fill:
        fill = raster_fill(forest.removal_area(), tool.diameter.canonical(), stage)

    paths = tuple(outlines + fill)
    if not paths:
        raise PlanningError(stage, "artwork contains nothing to engrave")

    passes = tuple(
        PlannedPass(index=i, depth=config.depth, paths=paths)
        for i in range(config.passes)
    )
    logger.debug(
        "Stage %s: %d outline(s), %d fill row(s), %d pass(es)",
        stage, len(outlines), len(fill), len(passes),
    )
    return PathPlan(stage=stage, operation="engrave", passes=passes)
