"""Configuration loader for machines and forge projects.

Loads and validates YAML into typed, frozen dataclasses.  Every physical
value is written with its unit in the YAML (``"0.8 mm"``,
``"600 mm/min"``, ``"2.5 W"``, ``"12000 rpm"``) and parsed into a
:class:`~pcb_forge.utils.units.UnitValue` here; nothing downstream parses
unit text.

Two file kinds:
    global config  ``machines`` + ``default_engraver`` / ``default_cutter``
                   (default: ``machines.yaml`` shipped alongside this module)
    forge file     project metadata, optional project ``machines`` and the
                   ordered stages of every output G-code file

Usage::

    from pcb_forge.configs.loader import load_config, load_forge_file
    cfg = load_config()                        # shipped machines.yaml
    project = load_forge_file("forge.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Union

from pcb_forge.errors import ForgeError
from pcb_forge.geometry.contours import LineSelection
from pcb_forge.utils.fs import load_yaml
from pcb_forge.utils.units import Quantity, UnitValue, mm

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ForgeError):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LaserTool:
    """Laser head.  ``point_diameter`` is the kerf used for compensation."""

    name: str
    point_diameter: UnitValue
    max_power: UnitValue
    init_gcode: str = ""
    shutdown_gcode: str = ""


@dataclass(frozen=True)
class SpindleBit:
    """One bit that can be mounted in a spindle."""

    name: str
    kind: Literal["drill", "end_mill"]
    diameter: UnitValue


@dataclass(frozen=True)
class SpindleTool:
    """Rotary spindle with its bit library."""

    name: str
    max_speed: UnitValue
    bits: dict[str, SpindleBit]
    init_gcode: str = ""
    shutdown_gcode: str = ""


Tool = Union[LaserTool, SpindleTool]


@dataclass(frozen=True)
class ToolSelection:
    """A tool plus, for spindles, the mounted bit."""

    ref: str
    tool: Tool
    bit: SpindleBit | None = None

    @property
    def is_laser(self) -> bool:
        return isinstance(self.tool, LaserTool)

    @property
    def diameter(self) -> UnitValue:
        """Effective cutting width (laser spot or bit diameter)."""
        if isinstance(self.tool, LaserTool):
            return self.tool.point_diameter
        if self.bit is None:
            raise ConfigError(f"Spindle tool '{self.ref}' has no bit selected")
        return self.bit.diameter


@dataclass(frozen=True)
class EngravingConfig:
    """Surface engraving process (mask removal, silkscreen, ...).

    Exactly one of ``laser_power`` / ``spindle_speed`` is set.  ``depth`` is
    the Z of the engraving passes (0 = surface), ``travel_height`` the Z
    used for rapids between paths when a spindle is used.
    """

    name: str
    tool: str
    work_speed: UnitValue
    passes: int
    laser_power: UnitValue | None = None
    spindle_speed: UnitValue | None = None
    fill: bool = True
    depth: UnitValue = field(default_factory=lambda: mm(0.0))
    travel_height: UnitValue = field(default_factory=lambda: mm(1.0))


@dataclass(frozen=True)
class CuttingConfig:
    """Through-cutting process (board outline, holes, slots)."""

    name: str
    tool: str
    travel_height: UnitValue
    cut_depth: UnitValue
    pass_depth: UnitValue
    work_speed: UnitValue
    plunge_speed: UnitValue
    spindle_speed: UnitValue | None = None
    laser_power: UnitValue | None = None


ProcessConfig = Union[EngravingConfig, CuttingConfig]


@dataclass(frozen=True)
class WorkspaceArea:
    """Reachable XY rectangle starting at the machine origin."""

    width: UnitValue
    height: UnitValue

    def contains(self, x_mm: float, y_mm: float, tol: float = 1e-9) -> bool:
        return (
            -tol <= x_mm <= self.width.canonical() + tol
            and -tol <= y_mm <= self.height.canonical() + tol
        )


@dataclass(frozen=True)
class Machine:
    """Complete machine description.

    All lengths, speeds and powers are :class:`UnitValue`; the machine's
    ``unit_system`` only decides the units written into G-code.
    """

    name: str
    jog_speed: UnitValue
    workspace_area: WorkspaceArea
    tools: dict[str, Tool]
    engraving_configs: dict[str, EngravingConfig]
    cutting_configs: dict[str, CuttingConfig]
    unit_system: Literal["metric", "imperial"] = "metric"
    init_gcode: str = ""
    shutdown_gcode: str = ""

    # -- Convenience helpers ------------------------------------------------

    def resolve_tool(self, ref: str) -> ToolSelection:
        """Resolve ``"laser"`` or ``"spindle/bit_name"`` to a tool.

        Raises
        ------
        ConfigError
            If the tool or bit does not exist.
        """
        name, _, bit_name = ref.partition("/")
        if name not in self.tools:
            raise ConfigError(
                f"Machine '{self.name}': unknown tool '{name}'. "
                f"Available: {list(self.tools.keys())}"
            )
        tool = self.tools[name]
        if isinstance(tool, LaserTool):
            if bit_name:
                raise ConfigError(f"Laser tool '{name}' does not take a bit ('{ref}')")
            return ToolSelection(ref, tool)
        if not bit_name:
            return ToolSelection(ref, tool)
        if bit_name not in tool.bits:
            raise ConfigError(
                f"Spindle '{name}': unknown bit '{bit_name}'. "
                f"Available: {list(tool.bits.keys())}"
            )
        return ToolSelection(ref, tool, tool.bits[bit_name])


@dataclass(frozen=True)
class GlobalConfig:
    """User-wide machine library with default process references."""

    machines: dict[str, Machine]
    default_engraver: str | None = None
    default_cutter: str | None = None


@dataclass(frozen=True)
class Stage:
    """One processing step of an output file.

    Parameters
    ----------
    operation : ``"engrave_mask"`` | ``"cut_board"``
    artwork : str
        Gerber or drill file name, relative to the forge file.
    artwork_kind : ``"gerber"`` | ``"drill"``
    machine_config : str | None
        ``"machine/config_name"``; ``None`` uses the global default.
    backside : bool
        Mirror the toolpaths for the bottom side of the board.
    invert : bool
        Engraving only: swap solid and hole before planning.
    select_lines : LineSelection
        Cutting only: which contours to cut.
    """

    operation: Literal["engrave_mask", "cut_board"]
    artwork: str
    artwork_kind: Literal["gerber", "drill"]
    machine_config: str | None = None
    backside: bool = False
    invert: bool = False
    select_lines: LineSelection = LineSelection.ALL

    @property
    def name(self) -> str:
        return f"{self.operation}[{self.artwork}]"


@dataclass(frozen=True)
class ForgeProject:
    """A forge file: which artwork goes into which G-code file, in order."""

    project_name: str
    board_version: str
    gcode_files: dict[str, tuple[Stage, ...]]
    align_backside: bool = True
    machines: dict[str, Machine] = field(default_factory=dict)
    base_dir: Path = field(default_factory=Path)


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------


def _quantity(
    data: dict[str, Any], key: str, quantity: Quantity, where: str,
) -> UnitValue:
    if key not in data:
        raise KeyError(f"{where}.{key}")
    try:
        return UnitValue.parse(data[key]).require(quantity)
    except (ValueError, TypeError) as exc:
        raise ConfigError(f"{where}.{key}: {exc}") from exc


def _optional_quantity(
    data: dict[str, Any], key: str, quantity: Quantity, where: str,
) -> UnitValue | None:
    if data.get(key) is None:
        return None
    return _quantity(data, key, quantity, where)


def _parse_tool(name: str, data: dict[str, Any], where: str) -> Tool:
    """Parse a single ``tools.<name>`` section."""
    where = f"{where}.tools.{name}"
    kind = data.get("type", name)
    if kind == "laser":
        return LaserTool(
            name=name,
            point_diameter=_quantity(data, "point_diameter", Quantity.LENGTH, where),
            max_power=_quantity(data, "max_power", Quantity.POWER, where),
            init_gcode=str(data.get("init_gcode", "") or ""),
            shutdown_gcode=str(data.get("shutdown_gcode", "") or ""),
        )
    if kind == "spindle":
        bits = {}
        for bit_name, bit in (data.get("bits") or {}).items():
            bit_kind = bit.get("kind", "end_mill")
            if bit_kind not in ("drill", "end_mill"):
                raise ConfigError(
                    f"{where}.bits.{bit_name}.kind must be 'drill' or 'end_mill', "
                    f"got {bit_kind!r}"
                )
            bits[bit_name] = SpindleBit(
                name=bit_name,
                kind=bit_kind,
                diameter=_quantity(bit, "diameter", Quantity.LENGTH, f"{where}.bits.{bit_name}"),
            )
        return SpindleTool(
            name=name,
            max_speed=_quantity(data, "max_speed", Quantity.ANGULAR_SPEED, where),
            bits=bits,
            init_gcode=str(data.get("init_gcode", "") or ""),
            shutdown_gcode=str(data.get("shutdown_gcode", "") or ""),
        )
    raise ConfigError(f"{where}.type must be 'laser' or 'spindle', got {kind!r}")


def _parse_engraving(name: str, data: dict[str, Any], where: str) -> EngravingConfig:
    where = f"{where}.engraving_configs.{name}"
    return EngravingConfig(
        name=name,
        tool=str(data["tool"]),
        work_speed=_quantity(data, "work_speed", Quantity.SPEED, where),
        passes=int(data.get("passes", 1)),
        laser_power=_optional_quantity(data, "laser_power", Quantity.POWER, where),
        spindle_speed=_optional_quantity(data, "spindle_speed", Quantity.ANGULAR_SPEED, where),
        fill=bool(data.get("fill", True)),
        depth=_optional_quantity(data, "depth", Quantity.LENGTH, where) or mm(0.0),
        travel_height=(
            _optional_quantity(data, "travel_height", Quantity.LENGTH, where) or mm(1.0)
        ),
    )


def _parse_cutting(name: str, data: dict[str, Any], where: str) -> CuttingConfig:
    where = f"{where}.cutting_configs.{name}"
    return CuttingConfig(
        name=name,
        tool=str(data["tool"]),
        travel_height=_quantity(data, "travel_height", Quantity.LENGTH, where),
        cut_depth=_quantity(data, "cut_depth", Quantity.LENGTH, where),
        pass_depth=_quantity(data, "pass_depth", Quantity.LENGTH, where),
        work_speed=_quantity(data, "work_speed", Quantity.SPEED, where),
        plunge_speed=_quantity(data, "plunge_speed", Quantity.SPEED, where),
        spindle_speed=_optional_quantity(data, "spindle_speed", Quantity.ANGULAR_SPEED, where),
        laser_power=_optional_quantity(data, "laser_power", Quantity.POWER, where),
    )


def _parse_machine(name: str, data: dict[str, Any]) -> Machine:
    """Parse one ``machines.<name>`` section."""
    where = f"machines.{name}"
    unit_system = data.get("unit_system", "metric")
    if unit_system not in ("metric", "imperial"):
        raise ConfigError(f"{where}.unit_system must be 'metric' or 'imperial', got {unit_system!r}")

    wa = data["workspace_area"]
    workspace = WorkspaceArea(
        width=_quantity(wa, "width", Quantity.LENGTH, f"{where}.workspace_area"),
        height=_quantity(wa, "height", Quantity.LENGTH, f"{where}.workspace_area"),
    )
    tools = {
        tool_name: _parse_tool(tool_name, tool_data, where)
        for tool_name, tool_data in (data.get("tools") or {}).items()
    }
    engraving = {
        cfg_name: _parse_engraving(cfg_name, cfg, where)
        for cfg_name, cfg in (data.get("engraving_configs") or {}).items()
    }
    cutting = {
        cfg_name: _parse_cutting(cfg_name, cfg, where)
        for cfg_name, cfg in (data.get("cutting_configs") or {}).items()
    }
    machine = Machine(
        name=name,
        jog_speed=_quantity(data, "jog_speed", Quantity.SPEED, where),
        workspace_area=workspace,
        tools=tools,
        engraving_configs=engraving,
        cutting_configs=cutting,
        unit_system=unit_system,
        init_gcode=str(data.get("init_gcode", "") or ""),
        shutdown_gcode=str(data.get("shutdown_gcode", "") or ""),
    )
    _validate_machine(machine)
    return machine


def _validate_machine(m: Machine) -> None:
    """Cross-field validation of a parsed machine."""
    wa = m.workspace_area
    if wa.width.canonical() <= 0 or wa.height.canonical() <= 0:
        raise ConfigError(f"Machine '{m.name}': workspace_area must be positive, got {wa}")
    if m.jog_speed.canonical() <= 0:
        raise ConfigError(f"Machine '{m.name}': jog_speed must be > 0")

    for tool in m.tools.values():
        if isinstance(tool, SpindleTool):
            for bit in tool.bits.values():
                if bit.diameter.canonical() <= 0:
                    raise ConfigError(f"Bit '{bit.name}' diameter must be > 0")
        elif tool.point_diameter.canonical() <= 0:
            raise ConfigError(f"Laser '{tool.name}' point_diameter must be > 0")

    for cfg in list(m.engraving_configs.values()) + list(m.cutting_configs.values()):
        m.resolve_tool(cfg.tool)
        if cfg.laser_power is None and cfg.spindle_speed is None:
            raise ConfigError(
                f"Machine '{m.name}' config '{cfg.name}': "
                f"one of laser_power or spindle_speed is required"
            )
        if cfg.laser_power is not None and cfg.spindle_speed is not None:
            raise ConfigError(
                f"Machine '{m.name}' config '{cfg.name}': "
                f"laser_power and spindle_speed are mutually exclusive"
            )
        if cfg.work_speed.canonical() <= 0:
            raise ConfigError(f"Config '{cfg.name}': work_speed must be > 0")

    for eng in m.engraving_configs.values():
        if eng.passes < 1:
            raise ConfigError(f"Engraving config '{eng.name}': passes must be >= 1")


def _parse_machines(data: dict[str, Any] | None) -> dict[str, Machine]:
    return {
        name: _parse_machine(name, mdata)
        for name, mdata in (data or {}).items()
    }


_STAGE_KEYS = {
    "engrave_mask": {"machine_config", "gerber_file", "backside", "invert"},
    "cut_board": {"machine_config", "gerber_file", "drill_file", "backside", "select_lines"},
}


def _parse_stage(raw: Any, where: str) -> Stage:
    if not isinstance(raw, dict) or len(raw) != 1:
        raise ConfigError(f"{where}: a stage is a mapping with exactly one operation key")
    (operation, body), = raw.items()
    if operation not in _STAGE_KEYS:
        raise ConfigError(
            f"{where}: unknown operation {operation!r}. Expected one of {sorted(_STAGE_KEYS)}"
        )
    body = body or {}
    unknown = set(body) - _STAGE_KEYS[operation]
    if unknown:
        raise ConfigError(f"{where}.{operation}: unknown keys {sorted(unknown)}")

    gerber = body.get("gerber_file")
    drill = body.get("drill_file")
    if bool(gerber) == bool(drill):
        raise ConfigError(f"{where}.{operation}: exactly one of gerber_file or drill_file is required")

    select = body.get("select_lines", "all")
    try:
        selection = LineSelection(str(select))
    except ValueError:
        raise ConfigError(
            f"{where}.{operation}.select_lines must be outer, inner or all, got {select!r}"
        ) from None

    return Stage(
        operation=operation,
        artwork=str(gerber or drill),
        artwork_kind="gerber" if gerber else "drill",
        machine_config=body.get("machine_config"),
        backside=bool(body.get("backside", False)),
        invert=bool(body.get("invert", False)),
        select_lines=selection,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> GlobalConfig:
    """Load and validate the global machine configuration.

    Parameters
    ----------
    path : str | Path | None
        Path to the YAML file.  ``None`` loads the ``machines.yaml``
        shipped alongside this module.

    Returns
    -------
    GlobalConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "machines.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading machine configuration from %s", path)
    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        machines = _parse_machines(data.get("machines"))
        config = GlobalConfig(
            machines=machines,
            default_engraver=data.get("default_engraver"),
            default_cutter=data.get("default_cutter"),
        )
        for ref in (config.default_engraver, config.default_cutter):
            if ref is not None:
                _split_ref(ref)
        logger.info("Loaded %d machine(s)", len(machines))
        return config

    except KeyError as exc:
        raise ConfigError(f"Missing required configuration key: {exc}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def load_forge_file(path: str | Path) -> ForgeProject:
    """Load a forge project file.

    Artwork paths in the stages stay relative; ``ForgeProject.base_dir``
    records the directory they are relative to.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Forge file not found: {path}")

    logger.info("Loading forge file %s", path)
    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty forge file: {path}")

    try:
        files: dict[str, tuple[Stage, ...]] = {}
        for file_name, stages in (data.get("gcode_files") or {}).items():
            if not isinstance(stages, list) or not stages:
                raise ConfigError(f"gcode_files.{file_name} must be a non-empty list of stages")
            files[str(file_name)] = tuple(
                _parse_stage(raw, f"gcode_files.{file_name}[{i}]")
                for i, raw in enumerate(stages)
            )
        project = ForgeProject(
            project_name=str(data["project_name"]),
            board_version=str(data.get("board_version", "")),
            gcode_files=files,
            align_backside=bool(data.get("align_backside", True)),
            machines=_parse_machines(data.get("machines")),
            base_dir=path.parent,
        )
        logger.info(
            "Forge project '%s': %d output file(s)", project.project_name, len(files),
        )
        return project

    except KeyError as exc:
        raise ConfigError(f"Missing required forge file key: {exc}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid forge file value: {exc}") from exc


def _split_ref(ref: str) -> tuple[str, str]:
    machine, sep, config = str(ref).partition("/")
    if not sep or not machine or not config:
        raise ConfigError(f"Machine config reference must be 'machine/config', got {ref!r}")
    return machine, config


def resolve_machine_config(
    stage: Stage,
    project: ForgeProject,
    global_config: GlobalConfig | None = None,
) -> tuple[Machine, ProcessConfig]:
    """Find the machine and process config a stage runs with.

    Lookup order: the stage's own ``machine_config`` (else the global
    ``default_engraver`` / ``default_cutter``), resolved against the
    project's machines first and the global library second.

    Raises
    ------
    ConfigError
        If no reference is available or it names nothing.
    """
    ref = stage.machine_config
    if ref is None and global_config is not None:
        ref = (
            global_config.default_engraver
            if stage.operation == "engrave_mask"
            else global_config.default_cutter
        )
    if ref is None:
        raise ConfigError(f"Stage {stage.name}: no machine_config and no default configured")

    machine_name, config_name = _split_ref(ref)
    machine = project.machines.get(machine_name)
    if machine is None and global_config is not None:
        machine = global_config.machines.get(machine_name)
    if machine is None:
        raise ConfigError(f"Stage {stage.name}: unknown machine '{machine_name}'")

    configs: dict[str, ProcessConfig]
    if stage.operation == "engrave_mask":
        configs = machine.engraving_configs
    else:
        configs = machine.cutting_configs
    if config_name not in configs:
        raise ConfigError(
            f"Stage {stage.name}: machine '{machine_name}' has no "
            f"{'engraving' if stage.operation == 'engrave_mask' else 'cutting'} "
            f"config '{config_name}'"
        )
    return machine, configs[config_name]
