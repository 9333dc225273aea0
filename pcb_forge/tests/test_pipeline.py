"""End-to-end tests for the stage pipeline and the build CLI."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest

from pcb_forge.configs.loader import ConfigError, ForgeProject, Stage
from pcb_forge.errors import BoundsError, ParseError, PlanningError
from pcb_forge.geometry.contours import LineSelection
from pcb_forge.pipeline import stages
from pcb_forge.pipeline.stages import (
    build_forest,
    load_artwork,
    plan_stage,
    run_file,
    run_project,
    stage_label,
    write_results,
)
from pcb_forge.scripts.build import main
from pcb_forge.utils.units import mm


def cut(artwork: str, ref: str = "bench/outline", **kwargs) -> Stage:
    kind = "drill" if artwork.endswith(".drl") else "gerber"
    return Stage("cut_board", artwork, kind, ref, **kwargs)


def engrave(artwork: str, ref: str = "bench/mask", **kwargs) -> Stage:
    return Stage("engrave_mask", artwork, "gerber", ref, **kwargs)


def x_bounds(plan) -> tuple[float, float]:
    pts = np.asarray(plan.extreme_points())
    return pts[:, 0].min(), pts[:, 0].max()


@pytest.fixture()
def artwork(square_gerber, frame_text, drill_text) -> dict[str, str]:
    return {
        "edge.gbr": square_gerber(20.0, 20.0, 10.0),
        "mask.gbr": frame_text,
        "board.drl": drill_text,
        "broken.gbr": "%FSLAX26Y26*%\n%MOMM*%\nD10*\nM02*\n",
    }


@pytest.fixture()
def make_project(machine):
    def _make(files: dict[str, list[Stage]], align_backside: bool = True) -> ForgeProject:
        return ForgeProject(
            project_name="blinky",
            board_version="1.0",
            gcode_files={name: tuple(stages) for name, stages in files.items()},
            align_backside=align_backside,
            machines={"bench": machine},
        )

    return _make


# ---------------------------------------------------------------------------
# Single file
# ---------------------------------------------------------------------------


class TestRunFile:
    def test_outline_end_to_end(self, make_project, artwork) -> None:
        project = make_project({"board.gcode": [cut("edge.gbr", select_lines=LineSelection.OUTER)]})
        result = run_file("board.gcode", project.gcode_files["board.gcode"], project, artwork)
        assert result.ok
        lines = result.gcode.splitlines()
        assert [line for line in lines if line.startswith("G1 Z")] == [
            "G1 Z-1.000 F60.0",
            "G1 Z-2.000 F60.0",
        ]
        assert lines[:2] == ["G21", "G90"]
        assert lines[-1] == "M2"
        assert lines.count("M3 S10000") == 1
        assert lines.count("M5") == 1
        # 10 mm square grown by half of the 0.5 mm end mill.
        assert any("X30.250" in line for line in lines if line.startswith("G1"))
        assert any(line.startswith("G1 Z-2.000") for line in lines)

    def test_stage_order_is_kept(self, make_project, artwork) -> None:
        stages = [engrave("mask.gbr"), cut("board.drl"), cut("edge.gbr", select_lines=LineSelection.OUTER)]
        project = make_project({"board.gcode": stages})
        result = run_file("board.gcode", project.gcode_files["board.gcode"], project, artwork)
        assert result.ok
        gcode = result.gcode
        positions = [
            gcode.index(f"; stage {stage_label('board.gcode', i, s)}")
            for i, s in enumerate(stages)
        ]
        assert positions == sorted(positions)
        assert gcode.index("M3 S128") < gcode.index("M3 S10000")

    def test_laser_shutdown_written_at_end(self, make_project, artwork) -> None:
        project = make_project({"mask.gcode": [engrave("mask.gbr")]})
        result = run_file("mask.gcode", project.gcode_files["mask.gcode"], project, artwork)
        lines = result.gcode.splitlines()
        assert lines[-3:] == ["; --- tool:bench/laser shutdown ---", "M107", "M2"]
        assert lines.count("M106 S255") == 1

    def test_notices_are_collected(self, make_machine, cutting_config, artwork) -> None:
        machine = make_machine(cutting=replace(cutting_config, pass_depth=mm(0.75)))
        project = ForgeProject(
            "blinky", "1.0", {"board.gcode": (cut("edge.gbr"),)}, machines={"bench": machine},
        )
        result = run_file("board.gcode", project.gcode_files["board.gcode"], project, artwork)
        assert result.ok
        (notice,) = result.notices
        assert "rounded up to 3" in notice
        assert f"; notice: {notice}" in result.gcode

    def test_parse_error_fails_the_file(self, make_project, artwork) -> None:
        project = make_project({"bad.gcode": [cut("broken.gbr")]})
        result = run_file("bad.gcode", project.gcode_files["bad.gcode"], project, artwork)
        assert not result.ok
        assert result.gcode is None
        assert isinstance(result.error, ParseError)

    def test_missing_artwork(self, make_project, artwork) -> None:
        project = make_project({"bad.gcode": [cut("absent.gbr")]})
        result = run_file("bad.gcode", project.gcode_files["bad.gcode"], project, artwork)
        assert isinstance(result.error, ConfigError)

    def test_out_of_bounds_fails_the_file(self, make_project, square_gerber) -> None:
        project = make_project({"big.gcode": [cut("far.gbr")]})
        artwork = {"far.gbr": square_gerber(195.0, 20.0, 10.0)}
        result = run_file("big.gcode", project.gcode_files["big.gcode"], project, artwork)
        assert isinstance(result.error, BoundsError)
        assert result.error.stage == "big.gcode#1 cut_board[far.gbr]"


# ---------------------------------------------------------------------------
# Backside
# ---------------------------------------------------------------------------


class TestBackside:
    def test_mirrored_about_artwork_centre(self, machine, artwork) -> None:
        stage = cut("edge.gbr", backside=True)
        forest = build_forest(stage, artwork["edge.gbr"])
        config = machine.cutting_configs["outline"]
        plan = plan_stage("s", stage, forest, config, machine.resolve_tool(config.tool))
        assert x_bounds(plan) == pytest.approx((19.75, 30.25), abs=1e-5)

    def test_mirrored_about_origin_without_alignment(self, machine, artwork) -> None:
        stage = cut("edge.gbr", backside=True)
        forest = build_forest(stage, artwork["edge.gbr"])
        config = machine.cutting_configs["outline"]
        plan = plan_stage(
            "s", stage, forest, config, machine.resolve_tool(config.tool), align_backside=False,
        )
        assert x_bounds(plan) == pytest.approx((-30.25, -19.75), abs=1e-5)

    def test_unaligned_backside_leaves_workspace(self, make_project, artwork) -> None:
        project = make_project({"bottom.gcode": [cut("edge.gbr", backside=True)]}, align_backside=False)
        result = run_file("bottom.gcode", project.gcode_files["bottom.gcode"], project, artwork)
        assert isinstance(result.error, BoundsError)

    def test_aligned_backside_emits_on_the_footprint(self, make_project, artwork) -> None:
        project = make_project({"bottom.gcode": [cut("edge.gbr", backside=True)]})
        result = run_file("bottom.gcode", project.gcode_files["bottom.gcode"], project, artwork)
        assert result.ok
        moves = [line for line in result.gcode.splitlines() if line.startswith(("G0 X", "G1 X", "G2 X", "G3 X"))]
        assert any("X30.250" in line for line in moves)
        assert any("X19.750" in line for line in moves)
        assert not any("X-" in line for line in moves)


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class TestRunProject:
    def test_failed_file_does_not_affect_others(self, make_project, artwork, tmp_path: Path) -> None:
        project = make_project({
            "good.gcode": [cut("edge.gbr")],
            "bad.gcode": [cut("edge.gbr", select_lines=LineSelection.INNER)],
        })
        results = run_project(project, artwork)
        assert list(results) == ["good.gcode", "bad.gcode"]
        assert results["good.gcode"].ok
        assert isinstance(results["bad.gcode"].error, PlanningError)

        written = write_results(results, tmp_path / "out")
        assert written == [tmp_path / "out" / "good.gcode"]
        assert not (tmp_path / "out" / "bad.gcode").exists()
        assert written[0].read_text(encoding="utf-8") == results["good.gcode"].gcode

    def test_parallel_matches_sequential(self, make_project, artwork) -> None:
        project = make_project({
            "mask.gcode": [engrave("mask.gbr")],
            "board.gcode": [cut("board.drl"), cut("edge.gbr")],
            "edge.gcode": [cut("edge.gbr", select_lines=LineSelection.OUTER)],
        })
        parallel = run_project(project, artwork, max_workers=3)
        sequential = run_project(project, artwork, max_workers=1)
        assert {n: r.gcode for n, r in parallel.items()} == {n: r.gcode for n, r in sequential.items()}
        assert all(r.ok for r in parallel.values())

    def test_unexpected_error_is_contained(self, make_project, artwork, monkeypatch) -> None:
        real_build_forest = stages.build_forest

        def failing_build_forest(stage, text):
            if stage.artwork == "mask.gbr":
                raise RuntimeError("boom")
            return real_build_forest(stage, text)

        monkeypatch.setattr(stages, "build_forest", failing_build_forest)
        project = make_project({
            "mask.gcode": [engrave("mask.gbr")],
            "edge.gcode": [cut("edge.gbr")],
        })
        results = run_project(project, artwork, max_workers=2)
        assert isinstance(results["mask.gcode"].error, RuntimeError)
        assert results["mask.gcode"].gcode is None
        assert results["edge.gcode"].ok


class TestArtworkFiles:
    def test_load_artwork_relative_to_forge_file(self, tmp_path: Path, square_gerber, make_project) -> None:
        (tmp_path / "edge.gbr").write_text(square_gerber(20.0, 20.0, 10.0), encoding="utf-8")
        project = make_project({"a.gcode": [cut("edge.gbr")], "b.gcode": [cut("edge.gbr")]})
        project = ForgeProject(
            project.project_name, project.board_version, project.gcode_files,
            machines=project.machines, base_dir=tmp_path,
        )
        assert list(load_artwork(project)) == ["edge.gbr"]

    def test_missing_artwork_file(self, tmp_path: Path, make_project) -> None:
        project = make_project({"a.gcode": [cut("edge.gbr")]})
        project = ForgeProject(
            project.project_name, project.board_version, project.gcode_files, base_dir=tmp_path,
        )
        with pytest.raises(FileNotFoundError):
            load_artwork(project)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


FORGE_YAML = """\
project_name: blinky
board_version: "1.0"
gcode_files:
  board.gcode:
    - cut_board:
        drill_file: board.drl
        machine_config: desktop_cnc/drill_0.8
    - cut_board:
        gerber_file: edge.gbr
        select_lines: {select}
"""


@pytest.fixture()
def cli_project(tmp_path: Path, square_gerber, drill_text):
    def _write(select: str = "outer") -> Path:
        (tmp_path / "edge.gbr").write_text(square_gerber(20.0, 20.0, 10.0), encoding="utf-8")
        (tmp_path / "board.drl").write_text(drill_text, encoding="utf-8")
        forge = tmp_path / "forge.yaml"
        forge.write_text(FORGE_YAML.format(select=select), encoding="utf-8")
        return forge

    return _write


class TestCli:
    def test_build_writes_gcode(self, cli_project, tmp_path: Path) -> None:
        forge = cli_project()
        out = tmp_path / "gcode"
        assert main(["-f", str(forge), "-t", str(out), "--log-level", "WARNING"]) == 0
        text = (out / "board.gcode").read_text(encoding="utf-8")
        assert text.startswith("G21\nG90\n")
        assert "G28 X Y" in text
        assert text.rstrip().endswith("M2")

    def test_dry_run_writes_nothing(self, cli_project, tmp_path: Path, capsys) -> None:
        forge = cli_project()
        out = tmp_path / "gcode"
        assert main(["-f", str(forge), "-t", str(out), "--dry-run", "-j", "1"]) == 0
        assert not out.exists()
        assert "board.gcode: ok" in capsys.readouterr().out

    def test_failed_file_sets_exit_status(self, cli_project, tmp_path: Path) -> None:
        forge = cli_project(select="inner")
        out = tmp_path / "gcode"
        assert main(["-f", str(forge), "-t", str(out)]) == 1
        assert not (out / "board.gcode").exists()

    def test_missing_forge_file(self, tmp_path: Path) -> None:
        assert main(["-f", str(tmp_path / "absent.yaml"), "--dry-run"]) == 1
