"""
PCB Forge Package.

Turns Gerber (RS-274X) and Excellon drill artwork into machine-specific
G-code for laser engravers and spindle mills.

Subpackages:
    artwork: Gerber and drill text parsers producing drawing primitives
    geometry: Polygon construction and solid/hole contour classification
    planning: Tool-radius compensation, depth slicing, engraving fill
    job_ir: Intermediate representation for machine instructions
    gcode: Motion emission and G-code text rendering
    configs: Machine and forge-project configuration loading
    pipeline: Per-file stage orchestration and atomic output
    utils: Units, shared geometry kernels, logging, filesystem helpers
"""

__all__ = [
    "artwork",
    "geometry",
    "planning",
    "job_ir",
    "gcode",
    "configs",
    "pipeline",
    "utils",
]
