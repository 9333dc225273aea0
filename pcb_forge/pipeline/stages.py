"""Stage pipeline -- forge project to G-code text per output file.

For each output file the stages run in declared order:

    artwork text -> parse -> build polygons -> classify
        -> [invert] -> plan -> [mirror] -> emit into the file's stream

Output files are independent and run in a thread pool; configuration is
frozen and shared read-only.  Any :class:`~pcb_forge.errors.ForgeError`
aborts only the file it occurred in, which is reported as a failed
:class:`FileResult` and never written.

Usage::

    project = load_forge_file("forge.yaml")
    artwork = load_artwork(project)
    results = run_project(project, artwork, global_config=load_config())
    write_results(results, "forge")
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Union

from pcb_forge.artwork.drill import parse_drill
from pcb_forge.artwork.gerber import parse_gerber
from pcb_forge.configs.loader import (
    ConfigError,
    CuttingConfig,
    ForgeProject,
    GlobalConfig,
    Stage,
    resolve_machine_config,
)
from pcb_forge.errors import ForgeError
from pcb_forge.gcode.emitter import MotionEmitter, OutputStream
from pcb_forge.gcode.generator import GCodeGenerator
from pcb_forge.geometry.builder import build_polygons
from pcb_forge.geometry.contours import ContourForest, classify
from pcb_forge.planning.planner import plan_cut, plan_engrave
from pcb_forge.planning.toolpaths import PathPlan
from pcb_forge.utils.fs import atomic_write_text, ensure_dir, read_text
from pcb_forge.utils.logging_config import log_context

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileResult:
    """Outcome of one output file.

    Exactly one of ``gcode`` and ``error`` is set.
    """

    name: str
    gcode: str | None = None
    error: Exception | None = None
    notices: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Per-stage steps
# ---------------------------------------------------------------------------


def stage_label(file_name: str, index: int, stage: Stage) -> str:
    return f"{file_name}#{index + 1} {stage.name}"


def build_forest(stage: Stage, text: str) -> ContourForest:
    """Parse a stage's artwork and classify it.

    Raises
    ------
    ParseError, GeometryError
    """
    if stage.artwork_kind == "drill":
        primitives = parse_drill(text, source=stage.artwork).primitives
    else:
        primitives = parse_gerber(text, source=stage.artwork).primitives
    return classify(build_polygons(primitives, source=stage.artwork))


def plan_stage(
    label: str,
    stage: Stage,
    forest: ContourForest,
    config,
    tool,
    *,
    align_backside: bool = True,
) -> PathPlan:
    """Plan one stage, then mirror it when it targets the backside.

    Inversion is applied before planning and mirroring after it.  The
    mirror negates X exactly; with *align_backside* the plan then carries
    an X offset of ``min_x + max_x`` so the board lands on its own
    footprint, which amounts to a reflection about its vertical centre line.

    Raises
    ------
    PlanningError
    """
    if stage.operation == "cut_board":
        if not isinstance(config, CuttingConfig):
            raise ConfigError(f"Stage {label}: cut_board needs a cutting config")
        plan = plan_cut(forest, config, tool, stage=label, select_lines=stage.select_lines)
    else:
        plan = plan_engrave(forest, config, tool, stage=label, invert=stage.invert)

    if stage.backside:
        plan = plan.mirrored()
        bounds = forest.bounds()
        if align_backside and bounds is not None:
            # -x + (min_x + max_x) maps the artwork onto its own footprint.
            plan = plan.translated(bounds[0] + bounds[2])
        logger.debug("Stage %s: mirrored, X offset %.4f mm", label, plan.x_offset)
    return plan


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def run_file(
    file_name: str,
    stages: tuple[Stage, ...],
    project: ForgeProject,
    artwork: Mapping[str, str],
    global_config: GlobalConfig | None = None,
) -> FileResult:
    """Run the stages of one output file in order.

    Never raises; a :class:`ForgeError` or any unexpected exception is
    returned in the result so sibling files are unaffected.
    """
    stream = OutputStream(file_name)
    notices: list[str] = []
    with log_context(file=file_name):
        try:
            for index, stage in enumerate(stages):
                label = stage_label(file_name, index, stage)
                with log_context(stage=label):
                    machine, config = resolve_machine_config(stage, project, global_config)
                    tool = machine.resolve_tool(config.tool)
                    if stage.artwork not in artwork:
                        raise ConfigError(f"Stage {label}: artwork '{stage.artwork}' not loaded")

                    forest = build_forest(stage, artwork[stage.artwork])
                    plan = plan_stage(
                        label, stage, forest, config, tool,
                        align_backside=project.align_backside,
                    )
                    MotionEmitter(machine, tool, config).emit(plan, stream)
                    notices.extend(plan.notices)
                    logger.info(
                        "Stage %s: %d pass(es), %d path(s)",
                        label, len(plan.passes), plan.path_count,
                    )
            gcode = GCodeGenerator().generate(stream)
        except ForgeError as exc:
            logger.error("Output %s failed: %s", file_name, exc)
            return FileResult(file_name, error=exc, notices=tuple(notices))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Output %s failed unexpectedly: %s", file_name, exc)
            return FileResult(file_name, error=exc, notices=tuple(notices))

    logger.info("Output %s: %d instruction(s)", file_name, len(stream))
    return FileResult(file_name, gcode=gcode, notices=tuple(notices))


def run_project(
    project: ForgeProject,
    artwork: Mapping[str, str],
    *,
    global_config: GlobalConfig | None = None,
    max_workers: int | None = None,
) -> dict[str, FileResult]:
    """Run every output file of a project.

    Parameters
    ----------
    project : ForgeProject
        Loaded forge file.
    artwork : Mapping[str, str]
        Artwork text by the file name used in the stages.
    global_config : GlobalConfig | None
        Machine library and defaults.
    max_workers : int | None
        Thread pool size; ``1`` runs the files sequentially.

    Returns
    -------
    dict[str, FileResult]
        Keyed by output file name, in declaration order.
    """
    names = list(project.gcode_files)
    logger.info(
        "Project %s %s: %d output file(s)",
        project.project_name, project.board_version, len(names),
    )
    if max_workers == 1 or len(names) <= 1:
        return {
            name: run_file(name, project.gcode_files[name], project, artwork, global_config)
            for name in names
        }

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            name: executor.submit(
                run_file, name, project.gcode_files[name], project, artwork, global_config,
            )
            for name in names
        }
        return {name: futures[name].result() for name in names}


# ---------------------------------------------------------------------------
# File IO (CLI side)
# ---------------------------------------------------------------------------


def load_artwork(project: ForgeProject) -> dict[str, str]:
    """Read every artwork file the project's stages reference.

    Paths are relative to the forge file's directory.

    Raises
    ------
    FileNotFoundError
        If a referenced file does not exist.
    """
    artwork: dict[str, str] = {}
    for stages in project.gcode_files.values():
        for stage in stages:
            if stage.artwork not in artwork:
                path = project.base_dir / stage.artwork
                logger.debug("Reading artwork %s", path)
                artwork[stage.artwork] = read_text(path)
    return artwork


def write_results(
    results: Mapping[str, FileResult], target_dir: Union[str, Path],
) -> list[Path]:
    """Write successful outputs atomically; failed ones are skipped.

    Returns
    -------
    list[Path]
        Files written.
    """
    target = ensure_dir(target_dir)
    written: list[Path] = []
    for name, result in results.items():
        if not result.ok:
            logger.warning("Not writing %s: %s", name, result.error)
            continue
        path = target / name
        atomic_write_text(path, result.gcode)
        written.append(path)
        logger.info("Wrote %s", path)
    return written
