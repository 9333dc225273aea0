"""
Instruction stream module.

Machine-level instructions between planned toolpaths and G-code text.
"""

from pcb_forge.job_ir.operations import (
    AbsoluteMode,
    ArcMove,
    Comment,
    LaserOff,
    LaserOn,
    LinearMove,
    Operation,
    Program,
    ProgramEnd,
    RapidMove,
    SetUnits,
    SpindleOff,
    SpindleOn,
    ToolInit,
    ToolShutdown,
)

__all__ = [
    "AbsoluteMode",
    "ArcMove",
    "Comment",
    "LaserOff",
    "LaserOn",
    "LinearMove",
    "Operation",
    "Program",
    "ProgramEnd",
    "RapidMove",
    "SetUnits",
    "SpindleOff",
    "SpindleOn",
    "ToolInit",
    "ToolShutdown",
]
