"""Motion emitter -- planned passes to an instruction stream.

The emitter is the single point where canonical units (mm, mm/s, W, rpm)
become machine units: lengths in mm or inches, feeds per minute.  Every
stage is emitted into a private list first and appended to the file's
:class:`OutputStream` only after the whole stage succeeded, so a stage
that fails bounds checking leaves the file untouched.

Stage layout::

    ; stage comment
    <tool init_gcode>        first use of the tool in this file only
    G0 Z<travel>
    M3 S<rpm>                spindle tools, once per stage
    per pass, per path:
        G0 X Y               travel to the path start
        M3 S<pwm>            laser tools, once per path
        G1 Z<depth>          plunge at plunge speed
        G1/G2/G3 ...         trace at work speed
        G0 Z<travel>         retract
        M5                   laser tools
    M5                       spindle tools

Activation is skipped entirely when the configured speed or power, or
the tool's maximum, is zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pcb_forge.configs.loader import (
    CuttingConfig,
    EngravingConfig,
    Machine,
    ProcessConfig,
    ToolSelection,
)
from pcb_forge.errors import BoundsError, PlanningError
from pcb_forge.job_ir.operations import (
    AbsoluteMode,
    ArcMove,
    Comment,
    LaserOff,
    LaserOn,
    LinearMove,
    Operation,
    ProgramEnd,
    RapidMove,
    SetUnits,
    SpindleOff,
    SpindleOn,
    ToolInit,
    ToolShutdown,
    UnitSystem,
)
from pcb_forge.planning.toolpaths import ArcSegment, PathPlan, Toolpath
from pcb_forge.utils.units import LengthUnit, SpeedUnit, UnitValue

logger = logging.getLogger(__name__)

_LENGTH_UNIT: dict[str, LengthUnit] = {
    "metric": LengthUnit.MILLIMETER,
    "imperial": LengthUnit.INCH,
}
_FEED_UNIT: dict[str, SpeedUnit] = {
    "metric": SpeedUnit.MM_PER_MINUTE,
    "imperial": SpeedUnit.INCH_PER_MINUTE,
}


# ---------------------------------------------------------------------------
# Output stream
# ---------------------------------------------------------------------------


@dataclass
class OutputStream:
    """Growing instruction stream of one output file.

    Parameters
    ----------
    name : str
        Output file name.
    unit_system : ``"metric"`` | ``"imperial"`` | None
        Fixed by the first stage appended.
    operations : list[Operation]
        Instructions in file order.
    initialized : dict[str, str]
        Owners (machine or tool keys) whose ``init_gcode`` was inserted,
        mapped to their ``shutdown_gcode``, in first-use order.
    """

    name: str
    unit_system: UnitSystem | None = None
    operations: list[Operation] = field(default_factory=list)
    initialized: dict[str, str] = field(default_factory=dict)
    finished: bool = False

    def __len__(self) -> int:
        return len(self.operations)

    def finish(self) -> None:
        """Append shutdown G-code (reverse init order) and ``ProgramEnd``."""
        if self.finished:
            return
        for owner, text in reversed(list(self.initialized.items())):
            if text:
                self.operations.append(ToolShutdown(text, owner))
        self.operations.append(ProgramEnd())
        self.finished = True


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------


class MotionEmitter:
    """Emit one stage's :class:`PathPlan` for a machine and tool.

    Parameters
    ----------
    machine : Machine
        Machine the output file targets; decides units and workspace.
    tool : ToolSelection
        Resolved tool (and bit) of the stage.
    config : EngravingConfig | CuttingConfig
        Process parameters of the stage.
    """

    def __init__(self, machine: Machine, tool: ToolSelection, config: ProcessConfig) -> None:
        self._machine = machine
        self._tool = tool
        self._config = config
        self._length = _LENGTH_UNIT[machine.unit_system]
        self._feed_unit = _FEED_UNIT[machine.unit_system]

    # ------------------------------------------------------------------
    # Unit conversion (the only place it happens)
    # ------------------------------------------------------------------

    def _len(self, value_mm: float) -> float:
        return value_mm / self._length.factor

    def _z(self, value: UnitValue) -> float:
        return value.in_unit(self._length)

    def _feed(self, value: UnitValue) -> float:
        return value.in_unit(self._feed_unit)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def check_bounds(self, plan: PathPlan) -> None:
        """Reject plans that leave the machine workspace.

        Raises
        ------
        BoundsError
            With the first offending XY coordinate (mm).
        """
        area = self._machine.workspace_area
        for x, y in plan.extreme_points():
            if not area.contains(x, y):
                raise BoundsError(plan.stage, (x, y))

    def emit(self, plan: PathPlan, stream: OutputStream) -> int:
        """Append *plan* to *stream*.

        Returns
        -------
        int
            Number of instructions appended.

        Raises
        ------
        BoundsError
            If any commanded XY lies outside ``workspace_area``.
        PlanningError
            If the stream already uses another unit system or is finished.
        """
        if stream.finished:
            raise PlanningError(plan.stage, f"output '{stream.name}' is already finished")
        if stream.unit_system not in (None, self._machine.unit_system):
            raise PlanningError(
                plan.stage,
                f"machine '{self._machine.name}' is {self._machine.unit_system} but "
                f"'{stream.name}' is already {stream.unit_system}",
            )
        self.check_bounds(plan)

        ops: list[Operation] = []
        initialized = dict(stream.initialized)
        if not stream.operations:
            ops.append(SetUnits(self._machine.unit_system))
            ops.append(AbsoluteMode())
        self._init_once(ops, initialized, f"machine:{self._machine.name}", self._machine)
        self._init_once(
            ops, initialized, f"tool:{self._machine.name}/{self._tool.tool.name}", self._tool.tool,
        )
        ops.extend(self._stage_ops(plan))

        stream.operations.extend(ops)
        stream.initialized = initialized
        stream.unit_system = self._machine.unit_system
        logger.debug("Stage %s: %d instruction(s) into %s", plan.stage, len(ops), stream.name)
        return len(ops)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _init_once(ops: list[Operation], initialized: dict[str, str], key: str, owner) -> None:
        if key in initialized:
            return
        initialized[key] = owner.shutdown_gcode
        if owner.init_gcode:
            ops.append(ToolInit(owner.init_gcode, key))

    def _spindle_rpm(self) -> float:
        tool = self._tool
        speed = self._config.spindle_speed
        if tool.is_laser or speed is None or speed.is_zero() or tool.tool.max_speed.is_zero():
            return 0.0
        return speed.canonical()

    def _laser_power(self) -> float:
        tool = self._tool
        power = self._config.laser_power
        if not tool.is_laser or power is None or power.is_zero() or tool.tool.max_power.is_zero():
            return 0.0
        return power.canonical()

    def _stage_ops(self, plan: PathPlan) -> list[Operation]:
        cfg = self._config
        if isinstance(cfg, CuttingConfig):
            plunge = self._feed(cfg.plunge_speed)
        else:
            plunge = self._feed(cfg.work_speed)
        work = self._feed(cfg.work_speed)
        jog = self._feed(self._machine.jog_speed)
        travel_z = self._z(cfg.travel_height)
        rpm = self._spindle_rpm()
        power = self._laser_power()

        kind = "engraving" if isinstance(cfg, EngravingConfig) else "cutting"
        ops: list[Operation] = [
            Comment(f"stage {plan.stage}: {kind} config '{cfg.name}', tool {self._tool.ref}"),
        ]
        ops.extend(Comment(f"notice: {n}") for n in plan.notices)
        ops.append(RapidMove(z=travel_z, feed=jog))
        if rpm > 0:
            ops.append(SpindleOn(rpm))

        total = len(plan.passes)
        for planned in plan.passes:
            depth_z = self._z(planned.depth)
            ops.append(Comment(f"pass {planned.index + 1}/{total} at Z{depth_z:.4f}"))
            for path in planned.paths:
                sx, sy = path.start
                ops.append(RapidMove(x=self._len(sx + plan.x_offset), y=self._len(sy), feed=jog))
                if power > 0:
                    ops.append(LaserOn(power, self._tool.tool.max_power.canonical()))
                ops.append(LinearMove(z=depth_z, feed=plunge))
                ops.extend(self._trace(path, work, plan.x_offset))
                ops.append(RapidMove(z=travel_z, feed=jog))
                if power > 0:
                    ops.append(LaserOff())

        if rpm > 0:
            ops.append(SpindleOff())
        return ops

    def _trace(self, path: Toolpath, feed: float, x_offset: float = 0.0) -> list[Operation]:
        ops: list[Operation] = []
        for seg in path.segments:
            ex, ey = seg.end
            ex += x_offset
            if isinstance(seg, ArcSegment):
                i, j = seg.offset
                ops.append(ArcMove(
                    x=self._len(ex), y=self._len(ey),
                    i=self._len(i), j=self._len(j),
                    clockwise=seg.clockwise, feed=feed,
                ))
            else:
                ops.append(LinearMove(x=self._len(ex), y=self._len(ey), feed=feed))
        return ops
