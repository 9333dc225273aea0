"""Tests for machine library and forge file loading."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest
import yaml

from pcb_forge.configs.loader import (
    ConfigError,
    CuttingConfig,
    EngravingConfig,
    LaserTool,
    SpindleTool,
    Stage,
    load_config,
    load_forge_file,
    resolve_machine_config,
)
from pcb_forge.geometry.contours import LineSelection
from pcb_forge.utils.units import LengthUnit, mm, mm_per_min, rpm, watts

MINIMAL_MACHINE = {
    "jog_speed": "1000 mm/min",
    "workspace_area": {"width": "100 mm", "height": "100 mm"},
    "tools": {
        "spindle": {
            "type": "spindle",
            "max_speed": "10000 rpm",
            "bits": {"mill": {"kind": "end_mill", "diameter": "1 mm"}},
        },
    },
    "cutting_configs": {
        "outline": {
            "tool": "spindle/mill",
            "spindle_speed": "8000 rpm",
            "travel_height": "2 mm",
            "cut_depth": "-1.6 mm",
            "pass_depth": "0.4 mm",
            "work_speed": "200 mm/min",
            "plunge_speed": "50 mm/min",
        },
    },
}

FORGE_FILE = """\
project_name: blinky
board_version: "1.2"
gcode_files:
  top.gcode:
    - engrave_mask:
        gerber_file: top_mask.gbr
        machine_config: desktop_cnc/mask_laser
        invert: true
  board.gcode:
    - cut_board:
        drill_file: board.drl
        machine_config: desktop_cnc/drill_0.8
    - cut_board:
        gerber_file: edge.gbr
        select_lines: outer
        backside: true
"""


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture()
def machine_data() -> dict:
    return copy.deepcopy(MINIMAL_MACHINE)


@pytest.fixture()
def forge_path(tmp_path: Path) -> Path:
    path = tmp_path / "forge.yaml"
    path.write_text(FORGE_FILE, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Machine library
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_shipped_library(self) -> None:
        cfg = load_config()
        machine = cfg.machines["desktop_cnc"]
        assert machine.unit_system == "metric"
        assert machine.jog_speed == mm_per_min(1500)
        assert isinstance(machine.tools["laser"], LaserTool)
        assert isinstance(machine.tools["spindle"], SpindleTool)
        assert machine.engraving_configs["mask_laser"].laser_power == watts(2.5)
        assert machine.cutting_configs["outline"].cut_depth == mm(-1.6)
        assert cfg.default_engraver == "desktop_cnc/mask_laser"
        assert cfg.default_cutter == "desktop_cnc/outline"

    def test_engraving_defaults(self) -> None:
        eng = load_config().machines["desktop_cnc"].engraving_configs["mask_laser"]
        assert isinstance(eng, EngravingConfig)
        assert eng.depth == mm(0.0)
        assert eng.spindle_speed is None
        assert eng.fill

    def test_units_are_kept_as_written(self, tmp_path: Path, machine_data: dict) -> None:
        machine_data["workspace_area"]["width"] = "4 in"
        cfg = load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))
        width = cfg.machines["m"].workspace_area.width
        assert width.unit is LengthUnit.INCH
        assert width.canonical() == pytest.approx(101.6)

    def test_missing_key(self, tmp_path: Path, machine_data: dict) -> None:
        del machine_data["jog_speed"]
        with pytest.raises(ConfigError, match="Missing required configuration key"):
            load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))

    def test_wrong_quantity(self, tmp_path: Path, machine_data: dict) -> None:
        machine_data["jog_speed"] = "5 mm"
        with pytest.raises(ConfigError, match="jog_speed"):
            load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))

    def test_missing_unit(self, tmp_path: Path, machine_data: dict) -> None:
        machine_data["tools"]["spindle"]["max_speed"] = 10000
        with pytest.raises(ConfigError, match="max_speed"):
            load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))

    def test_power_and_speed_are_exclusive(self, tmp_path: Path, machine_data: dict) -> None:
        machine_data["cutting_configs"]["outline"]["laser_power"] = "1 W"
        with pytest.raises(ConfigError, match="mutually exclusive"):
            load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))

    def test_unknown_tool_reference(self, tmp_path: Path, machine_data: dict) -> None:
        machine_data["cutting_configs"]["outline"]["tool"] = "spindle/v_bit"
        with pytest.raises(ConfigError, match="unknown bit 'v_bit'"):
            load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))

    def test_bad_unit_system(self, tmp_path: Path, machine_data: dict) -> None:
        machine_data["unit_system"] = "cubits"
        with pytest.raises(ConfigError, match="unit_system"):
            load_config(write_yaml(tmp_path / "m.yaml", {"machines": {"m": machine_data}}))

    def test_bad_default_reference(self, tmp_path: Path, machine_data: dict) -> None:
        data = {"machines": {"m": machine_data}, "default_cutter": "outline"}
        with pytest.raises(ConfigError, match="machine/config"):
            load_config(write_yaml(tmp_path / "m.yaml", data))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ConfigError, match="Empty"):
            load_config(path)


class TestResolveTool:
    def test_bit_selection(self) -> None:
        machine = load_config().machines["desktop_cnc"]
        sel = machine.resolve_tool("spindle/end_mill_1.0")
        assert not sel.is_laser
        assert sel.diameter == mm(1.0)

    def test_laser_diameter_is_spot(self) -> None:
        sel = load_config().machines["desktop_cnc"].resolve_tool("laser")
        assert sel.is_laser
        assert sel.diameter == mm(0.1)

    def test_laser_takes_no_bit(self) -> None:
        with pytest.raises(ConfigError, match="does not take a bit"):
            load_config().machines["desktop_cnc"].resolve_tool("laser/fast")

    def test_unknown_tool(self) -> None:
        with pytest.raises(ConfigError, match="unknown tool 'plasma'"):
            load_config().machines["desktop_cnc"].resolve_tool("plasma")


# ---------------------------------------------------------------------------
# Forge files
# ---------------------------------------------------------------------------


class TestLoadForgeFile:
    def test_stages_in_declared_order(self, forge_path: Path) -> None:
        project = load_forge_file(forge_path)
        assert project.project_name == "blinky"
        assert project.board_version == "1.2"
        assert project.base_dir == forge_path.parent
        assert list(project.gcode_files) == ["top.gcode", "board.gcode"]
        drill, edge = project.gcode_files["board.gcode"]
        assert drill == Stage("cut_board", "board.drl", "drill", "desktop_cnc/drill_0.8")
        assert edge.artwork_kind == "gerber"
        assert edge.select_lines is LineSelection.OUTER
        assert edge.backside
        assert edge.machine_config is None
        (mask,) = project.gcode_files["top.gcode"]
        assert mask.invert
        assert mask.name == "engrave_mask[top_mask.gbr]"

    def test_align_backside_defaults_on(self, forge_path: Path) -> None:
        assert load_forge_file(forge_path).align_backside

    @pytest.mark.parametrize(
        "stage,message",
        [
            ({"mill_board": {"gerber_file": "a.gbr"}}, "unknown operation"),
            ({"cut_board": {"gerber_file": "a.gbr", "drill_file": "a.drl"}}, "exactly one of"),
            ({"cut_board": {}}, "exactly one of"),
            ({"cut_board": {"gerber_file": "a.gbr", "invert": True}}, "unknown keys"),
            ({"engrave_mask": {"gerber_file": "a.gbr", "select_lines": "outer"}}, "unknown keys"),
            ({"cut_board": {"gerber_file": "a.gbr", "select_lines": "both"}}, "select_lines"),
            ({"cut_board": {"gerber_file": "a.gbr"}, "engrave_mask": {}}, "exactly one operation"),
        ],
    )
    def test_invalid_stages(self, tmp_path: Path, stage: dict, message: str) -> None:
        data = {"project_name": "p", "gcode_files": {"out.gcode": [stage]}}
        with pytest.raises(ConfigError, match=message):
            load_forge_file(write_yaml(tmp_path / "forge.yaml", data))

    def test_empty_stage_list(self, tmp_path: Path) -> None:
        data = {"project_name": "p", "gcode_files": {"out.gcode": []}}
        with pytest.raises(ConfigError, match="non-empty list"):
            load_forge_file(write_yaml(tmp_path / "forge.yaml", data))

    def test_missing_project_name(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="project_name"):
            load_forge_file(write_yaml(tmp_path / "forge.yaml", {"gcode_files": {}}))


# ---------------------------------------------------------------------------
# Machine config resolution
# ---------------------------------------------------------------------------


class TestResolveMachineConfig:
    def test_explicit_reference(self, forge_path: Path) -> None:
        project = load_forge_file(forge_path)
        stage = project.gcode_files["board.gcode"][0]
        machine, config = resolve_machine_config(stage, project, load_config())
        assert machine.name == "desktop_cnc"
        assert isinstance(config, CuttingConfig)
        assert config.name == "drill_0.8"
        assert config.spindle_speed == rpm(12000)

    def test_default_cutter(self, forge_path: Path) -> None:
        project = load_forge_file(forge_path)
        stage = project.gcode_files["board.gcode"][1]
        _, config = resolve_machine_config(stage, project, load_config())
        assert config.name == "outline"

    def test_project_machine_shadows_library(self, tmp_path: Path, machine_data: dict) -> None:
        data = {
            "project_name": "p",
            "machines": {"desktop_cnc": machine_data},
            "gcode_files": {
                "out.gcode": [{"cut_board": {"gerber_file": "a.gbr", "machine_config": "desktop_cnc/outline"}}],
            },
        }
        project = load_forge_file(write_yaml(tmp_path / "forge.yaml", data))
        machine, config = resolve_machine_config(
            project.gcode_files["out.gcode"][0], project, load_config(),
        )
        assert machine.jog_speed == mm_per_min(1000)
        assert config.cut_depth == mm(-1.6)
        assert config.spindle_speed == rpm(8000)

    def test_wrong_operation_kind(self, forge_path: Path) -> None:
        project = load_forge_file(forge_path)
        stage = Stage("engrave_mask", "a.gbr", "gerber", "desktop_cnc/outline")
        with pytest.raises(ConfigError, match="no engraving config 'outline'"):
            resolve_machine_config(stage, project, load_config())

    def test_unknown_machine(self, forge_path: Path) -> None:
        project = load_forge_file(forge_path)
        stage = Stage("cut_board", "a.gbr", "gerber", "router/outline")
        with pytest.raises(ConfigError, match="unknown machine 'router'"):
            resolve_machine_config(stage, project, load_config())

    def test_no_default_available(self, forge_path: Path) -> None:
        project = load_forge_file(forge_path)
        stage = Stage("cut_board", "a.gbr", "gerber")
        with pytest.raises(ConfigError, match="no default"):
            resolve_machine_config(stage, project, None)
