"""Tests for depth slicing, compensation and toolpath planning."""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np
import pytest

from pcb_forge.artwork.drill import parse_drill
from pcb_forge.artwork.gerber import parse_gerber
from pcb_forge.configs.loader import SpindleBit, ToolSelection
from pcb_forge.errors import PlanningError
from pcb_forge.geometry.builder import build_polygons
from pcb_forge.geometry.contours import ContourForest, LineSelection, classify
from pcb_forge.planning.planner import check_tool, plan_cut, plan_engrave, slice_depths
from pcb_forge.planning.toolpaths import ArcSegment, LineSegment, PathPlan, Toolpath
from pcb_forge.utils.units import inches, mm, rpm, watts


def forest_of(text: str, source: str = "art.gbr") -> ContourForest:
    return classify(build_polygons(parse_gerber(text, source=source).primitives, source))


def path_bounds(path: Toolpath) -> tuple[float, float, float, float]:
    pts = np.asarray(path.extreme_points())
    return (pts[:, 0].min(), pts[:, 1].min(), pts[:, 0].max(), pts[:, 1].max())


@pytest.fixture()
def square_forest(square_gerber) -> ContourForest:
    return forest_of(square_gerber(20.0, 20.0, 10.0), "edge.gbr")


@pytest.fixture()
def end_mill(machine) -> ToolSelection:
    return machine.resolve_tool("spindle/end_mill_0.5")


@pytest.fixture()
def laser(machine) -> ToolSelection:
    return machine.resolve_tool("laser")


# ---------------------------------------------------------------------------
# Depth slicing
# ---------------------------------------------------------------------------


class TestSliceDepths:
    def test_integral_ratio(self) -> None:
        depths, notice = slice_depths(mm(-2.0), mm(0.25), stage="s")
        assert len(depths) == 8
        assert [d.magnitude for d in depths] == pytest.approx([-0.25 * k for k in range(1, 9)])
        assert depths[-1] == mm(-2.0)
        assert notice is None

    def test_non_integral_ratio_rounds_up_with_notice(self) -> None:
        depths, notice = slice_depths(mm(-1.6), mm(0.5), stage="s")
        assert [d.magnitude for d in depths] == pytest.approx([-0.5, -1.0, -1.5, -1.6])
        assert notice is not None and "rounded up to 4" in notice

    def test_float_noise_does_not_add_a_pass(self) -> None:
        depths, notice = slice_depths(mm(-1.2), mm(0.4), stage="s")
        assert len(depths) == 3
        assert notice is None

    def test_single_shallow_pass(self) -> None:
        depths, _ = slice_depths(mm(-0.1), mm(0.5), stage="s")
        assert depths == [mm(-0.1)]

    def test_mixed_units(self) -> None:
        depths, _ = slice_depths(inches(-0.1), mm(1.0), stage="s")
        assert [d.magnitude for d in depths] == pytest.approx([-1.0, -2.0, -2.54])

    def test_zero_cut_depth(self) -> None:
        with pytest.raises(PlanningError, match="cut_depth of zero"):
            slice_depths(mm(0.0), mm(0.5), stage="outline")

    def test_positive_cut_depth(self) -> None:
        with pytest.raises(PlanningError, match="below the surface"):
            slice_depths(mm(1.0), mm(0.5), stage="outline")

    def test_non_positive_pass_depth(self) -> None:
        with pytest.raises(PlanningError, match="pass_depth"):
            slice_depths(mm(-1.0), mm(0.0), stage="outline")


# ---------------------------------------------------------------------------
# Toolpath value types
# ---------------------------------------------------------------------------


class TestToolpaths:
    def test_from_points_drops_zero_length_steps(self) -> None:
        path = Toolpath.from_points([(0, 0), (0, 0), (1, 0)], "p", closed=False)
        assert path.segments == (LineSegment((0.0, 0.0), (1.0, 0.0)),)

    def test_empty_path_rejected(self) -> None:
        with pytest.raises(ValueError):
            Toolpath((), "empty")

    def test_circle_extremes_and_length(self) -> None:
        path = Toolpath.circle((25.0, 25.0), 0.8, "hole")
        assert path.kind == "drill"
        assert path.start == pytest.approx((25.4, 25.0))
        assert path.end == path.start
        assert path_bounds(path) == pytest.approx((24.6, 24.6, 25.4, 25.4))
        assert path.length() == pytest.approx(math.pi * 0.8)

    def test_arc_offset_is_relative_to_start(self) -> None:
        arc = ArcSegment((1.0, 0.0), (0.0, 1.0), (0.0, 0.0), clockwise=False)
        assert arc.offset == (-1.0, 0.0)
        assert arc.radius == 1.0

    def test_mirroring_flips_arc_direction(self) -> None:
        arc = ArcSegment((1.0, 0.0), (0.0, 1.0), (0.0, 0.0), clockwise=False)
        m = arc.mirrored()
        assert m.clockwise
        assert m.start == (-1.0, 0.0)
        assert m.mirrored() == arc

    def test_plan_mirror_is_involution(self, square_forest, cutting_config, end_mill) -> None:
        plan = plan_cut(square_forest, cutting_config, end_mill, stage="s")
        twice = plan.mirrored().mirrored()
        assert twice.passes == plan.passes

    def test_aligned_mirror_is_exact_involution(self, frame_text, cutting_config, end_mill) -> None:
        plan = plan_cut(forest_of(frame_text), cutting_config, end_mill, stage="s")
        shift = 9.75 + 30.25 + 0.1 / 3.0
        back = plan.mirrored().translated(shift).mirrored().translated(shift)
        assert back.passes == plan.passes
        assert back.x_offset == 0.0
        assert back.extreme_points() == plan.extreme_points()

    def test_mirror_about_board_centre_keeps_bounds(self, square_forest, cutting_config, end_mill) -> None:
        plan = plan_cut(square_forest, cutting_config, end_mill, stage="s")
        mirrored = plan.mirrored().translated(50.0)
        pts = np.asarray(mirrored.extreme_points())
        assert (pts[:, 0].min(), pts[:, 0].max()) == pytest.approx((19.75, 30.25), abs=1e-5)
        assert mirrored.passes[0].paths[0].start[0] < 0.0


# ---------------------------------------------------------------------------
# Tool checks
# ---------------------------------------------------------------------------


class TestCheckTool:
    def test_laser_power_on_spindle(self, cutting_config, end_mill) -> None:
        config = replace(cutting_config, spindle_speed=None, laser_power=watts(1.0))
        with pytest.raises(PlanningError, match="is a spindle"):
            check_tool(config, end_mill, stage="s")

    def test_spindle_speed_on_laser(self, cutting_config, laser) -> None:
        with pytest.raises(PlanningError, match="is a laser"):
            check_tool(cutting_config, laser, stage="s")

    def test_spindle_without_bit(self, cutting_config, machine) -> None:
        with pytest.raises(PlanningError, match="no bit"):
            check_tool(cutting_config, machine.resolve_tool("spindle"), stage="s")

    def test_speed_above_maximum(self, cutting_config, end_mill) -> None:
        config = replace(cutting_config, spindle_speed=rpm(20000))
        with pytest.raises(PlanningError, match="allows 12000 rpm"):
            check_tool(config, end_mill, stage="s")

    def test_passive_tool_has_no_limit(self, cutting_config, make_machine) -> None:
        tool = make_machine(max_speed=0.0).resolve_tool("spindle/end_mill_0.5")
        check_tool(replace(cutting_config, spindle_speed=rpm(20000)), tool, stage="s")


# ---------------------------------------------------------------------------
# Cutting
# ---------------------------------------------------------------------------


class TestPlanCut:
    def test_outline_is_grown_by_tool_radius(self, square_forest, cutting_config, end_mill) -> None:
        plan = plan_cut(square_forest, cutting_config, end_mill, stage="outline")
        assert isinstance(plan, PathPlan)
        assert plan.operation == "cut"
        assert [p.depth for p in plan.passes] == [mm(-1.0), mm(-2.0)]
        (path,) = plan.passes[0].paths
        min_x, min_y, max_x, max_y = path_bounds(path)
        assert max_x - min_x == pytest.approx(10.5, abs=1e-5)
        assert max_y - min_y == pytest.approx(10.5, abs=1e-5)
        assert path.closed
        # Rounded corners: the corner vertex of the square is never reached.
        corner_dist = np.hypot(*(path.vertices() - (30.25, 30.25)).T).min()
        assert corner_dist > 0.05

    def test_every_pass_retraces_the_same_paths(self, square_forest, cutting_config, end_mill) -> None:
        config = replace(cutting_config, pass_depth=mm(0.25))
        plan = plan_cut(square_forest, config, end_mill, stage="outline")
        assert len(plan.passes) == 8
        assert all(p.paths == plan.passes[0].paths for p in plan.passes)
        assert plan.path_count == 8

    def test_notice_for_rounded_pass_count(self, square_forest, cutting_config, end_mill) -> None:
        config = replace(cutting_config, pass_depth=mm(0.75))
        plan = plan_cut(square_forest, config, end_mill, stage="outline")
        assert len(plan.passes) == 3
        assert len(plan.notices) == 1

    def test_holes_shrink_and_come_first(self, frame_text, cutting_config, end_mill) -> None:
        plan = plan_cut(forest_of(frame_text), cutting_config, end_mill, stage="frame")
        hole, outline = plan.passes[0].paths
        assert path_bounds(hole) == pytest.approx((15.25, 15.25, 24.75, 24.75), abs=1e-5)
        assert path_bounds(outline) == pytest.approx((9.75, 9.75, 30.25, 30.25), abs=1e-5)

    def test_select_outer_only(self, frame_text, cutting_config, end_mill) -> None:
        plan = plan_cut(
            forest_of(frame_text), cutting_config, end_mill,
            stage="frame", select_lines=LineSelection.OUTER,
        )
        assert len(plan.passes[0].paths) == 1

    def test_empty_selection_fails(self, square_forest, cutting_config, end_mill) -> None:
        with pytest.raises(PlanningError, match="select_lines=inner"):
            plan_cut(
                square_forest, cutting_config, end_mill,
                stage="outline", select_lines=LineSelection.INNER,
            )

    def test_tool_too_large_for_hole(self, frame_text, cutting_config, machine) -> None:
        spindle = machine.tools["spindle"]
        big = ToolSelection("spindle/big", spindle, SpindleBit("big", "end_mill", mm(12.0)))
        with pytest.raises(PlanningError, match="12 mm tool does not fit") as excinfo:
            plan_cut(forest_of(frame_text), cutting_config, big, stage="frame")
        assert "contour" in excinfo.value.reason

    def test_drill_hole_traced_at_hit_diameter(self, drill_text, cutting_config, machine) -> None:
        layer = parse_drill(drill_text, source="board.drl")
        forest = classify(build_polygons(layer.primitives, "board.drl"))
        drill_bit = machine.resolve_tool("spindle/drill_0.8")
        config = replace(cutting_config, tool="spindle/drill_0.8")
        plan = plan_cut(forest, config, drill_bit, stage="drill")
        (path,) = plan.passes[0].paths
        assert path.kind == "drill"
        assert all(isinstance(s, ArcSegment) for s in path.segments)
        assert path_bounds(path) == pytest.approx((24.6, 24.6, 25.4, 25.4))

    def test_slot_traced_along_centerline(self, cutting_config, machine) -> None:
        text = "M48\nMETRIC,TZ\nT1C1.0\n%\nT1\nX10.0Y10.0G85X14.0Y10.0\nM30\n"
        forest = classify(build_polygons(parse_drill(text).primitives))
        plan = plan_cut(forest, cutting_config, machine.resolve_tool("spindle/end_mill_0.5"), stage="slot")
        (path,) = plan.passes[0].paths
        assert not path.closed
        assert (path.start, path.end) == ((10.0, 10.0), (14.0, 10.0))


# ---------------------------------------------------------------------------
# Engraving
# ---------------------------------------------------------------------------


class TestPlanEngrave:
    def test_outlines_traced_once_per_pass(self, frame_text, engraving_config, laser) -> None:
        plan = plan_engrave(forest_of(frame_text), engraving_config, laser, stage="mask")
        assert plan.operation == "engrave"
        assert len(plan.passes) == 2
        assert all(p.depth == mm(0.0) for p in plan.passes)
        hole, outline = plan.passes[0].paths
        # Engraving is not compensated.
        assert path_bounds(hole) == pytest.approx((15.0, 15.0, 25.0, 25.0))
        assert path_bounds(outline) == pytest.approx((10.0, 10.0, 30.0, 30.0))

    def test_raster_fill_alternates_direction(self, frame_text, engraving_config, laser) -> None:
        config = replace(engraving_config, fill=True, passes=1)
        plan = plan_engrave(forest_of(frame_text), config, laser, stage="mask")
        fill = [p for p in plan.passes[0].paths if p.kind == "fill"]
        assert len(fill) == 100
        assert fill[0].start[0] == pytest.approx(15.0)
        assert fill[1].start[0] == pytest.approx(25.0)
        assert fill[0].start[1] == pytest.approx(15.05)
        assert sum(p.length() for p in fill) == pytest.approx(1000.0, rel=0.01)

    def test_invert_fills_the_other_region(self, frame_text, engraving_config, laser) -> None:
        config = replace(engraving_config, fill=True, passes=1)
        plan = plan_engrave(forest_of(frame_text), config, laser, stage="mask", invert=True)
        fill = [p for p in plan.passes[0].paths if p.kind == "fill"]
        assert sum(p.length() for p in fill) == pytest.approx(3000.0, rel=0.01)

    def test_nothing_to_engrave(self, engraving_config, laser) -> None:
        with pytest.raises(PlanningError, match="nothing to engrave"):
            plan_engrave(classify([]), engraving_config, laser, stage="mask")

    def test_laser_power_above_maximum(self, frame_text, engraving_config, laser) -> None:
        config = replace(engraving_config, laser_power=watts(8.0))
        with pytest.raises(PlanningError, match="requests 8 W"):
            plan_engrave(forest_of(frame_text), config, laser, stage="mask")
