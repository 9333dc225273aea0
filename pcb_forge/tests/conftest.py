"""Shared fixtures: small machines, tools and artwork snippets."""

from __future__ import annotations

from typing import Callable

import pytest

from pcb_forge.configs.loader import (
    CuttingConfig,
    EngravingConfig,
    LaserTool,
    Machine,
    SpindleBit,
    SpindleTool,
    WorkspaceArea,
)
from pcb_forge.utils.units import mm, mm_per_min, rpm, watts


def square_region_gerber(x0: float, y0: float, size: float) -> str:
    """Gerber text with one dark square region (FS 2.6, millimetres)."""

    def c(v: float) -> str:
        return str(int(round(v * 1_000_000)))

    x1, y1 = x0 + size, y0 + size
    return "\n".join([
        "G04 square outline*",
        "%FSLAX26Y26*%",
        "%MOMM*%",
        "G01*",
        "G36*",
        f"X{c(x0)}Y{c(y0)}D02*",
        f"X{c(x1)}Y{c(y0)}D01*",
        f"X{c(x1)}Y{c(y1)}D01*",
        f"X{c(x0)}Y{c(y1)}D01*",
        f"X{c(x0)}Y{c(y0)}D01*",
        "G37*",
        "M02*",
        "",
    ])


def frame_gerber() -> str:
    """A 20 mm dark square at (10, 10) with a clear 10 mm square cut from its centre."""
    return "\n".join([
        "%FSLAX26Y26*%",
        "%MOMM*%",
        "G01*",
        "G36*",
        "X10000000Y10000000D02*",
        "X30000000Y10000000D01*",
        "X30000000Y30000000D01*",
        "X10000000Y30000000D01*",
        "X10000000Y10000000D01*",
        "G37*",
        "%LPC*%",
        "G36*",
        "X15000000Y15000000D02*",
        "X25000000Y15000000D01*",
        "X25000000Y25000000D01*",
        "X15000000Y25000000D01*",
        "X15000000Y15000000D01*",
        "G37*",
        "M02*",
        "",
    ])


DRILL_ONE_HIT = """\
M48
; single 0.8 mm hole
METRIC,TZ
T1C0.800
%
G90
G05
T1
X25.0Y25.0
M30
"""


@pytest.fixture()
def square_gerber() -> Callable[[float, float, float], str]:
    return square_region_gerber


@pytest.fixture()
def frame_text() -> str:
    return frame_gerber()


@pytest.fixture()
def drill_text() -> str:
    return DRILL_ONE_HIT


@pytest.fixture()
def cutting_config() -> CuttingConfig:
    return CuttingConfig(
        name="outline",
        tool="spindle/end_mill_0.5",
        travel_height=mm(2.0),
        cut_depth=mm(-2.0),
        pass_depth=mm(1.0),
        work_speed=mm_per_min(300.0),
        plunge_speed=mm_per_min(60.0),
        spindle_speed=rpm(10000.0),
    )


@pytest.fixture()
def engraving_config() -> EngravingConfig:
    return EngravingConfig(
        name="mask",
        tool="laser",
        work_speed=mm_per_min(600.0),
        passes=2,
        laser_power=watts(2.5),
        fill=False,
    )


@pytest.fixture()
def make_machine(
    cutting_config: CuttingConfig, engraving_config: EngravingConfig,
) -> Callable[..., Machine]:
    """Factory for a small test machine; keyword overrides replace fields."""

    def _make(
        *,
        unit_system: str = "metric",
        max_speed: float = 12000.0,
        max_power: float = 5.0,
        width: float = 200.0,
        height: float = 150.0,
        spindle_init: str = "",
        cutting: CuttingConfig | None = None,
        engraving: EngravingConfig | None = None,
    ) -> Machine:
        cut = cutting or cutting_config
        eng = engraving or engraving_config
        spindle = SpindleTool(
            name="spindle",
            max_speed=rpm(max_speed),
            bits={
                "end_mill_0.5": SpindleBit("end_mill_0.5", "end_mill", mm(0.5)),
                "drill_0.8": SpindleBit("drill_0.8", "drill", mm(0.8)),
            },
            init_gcode=spindle_init,
        )
        laser = LaserTool(
            name="laser",
            point_diameter=mm(0.1),
            max_power=watts(max_power),
            init_gcode="M106 S255",
            shutdown_gcode="M107",
        )
        return Machine(
            name="bench",
            jog_speed=mm_per_min(1200.0),
            workspace_area=WorkspaceArea(mm(width), mm(height)),
            tools={"spindle": spindle, "laser": laser},
            engraving_configs={eng.name: eng},
            cutting_configs={cut.name: cut},
            unit_system=unit_system,
        )

    return _make


@pytest.fixture()
def machine(make_machine: Callable[..., Machine]) -> Machine:
    return make_machine()
