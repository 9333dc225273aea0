"""
Stage pipeline module.

Runs the stages of every output file of a forge project and writes the
resulting G-code.
"""

from pcb_forge.pipeline.stages import (
    FileResult,
    build_forest,
    load_artwork,
    plan_stage,
    run_file,
    run_project,
    write_results,
)

__all__ = [
    "FileResult",
    "build_forest",
    "load_artwork",
    "plan_stage",
    "run_file",
    "run_project",
    "write_results",
]
