"""
G-code module.

Emits planned toolpaths as an instruction stream and renders that stream
as G-code text.
"""

from pcb_forge.gcode.emitter import MotionEmitter, OutputStream
from pcb_forge.gcode.generator import GCodeError, GCodeGenerator

__all__ = [
    "GCodeError",
    "GCodeGenerator",
    "MotionEmitter",
    "OutputStream",
]
