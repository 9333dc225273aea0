"""Machine and project configuration.

Load the shipped machine library with :func:`load_config` and a project's
forge file with :func:`load_forge_file`.
"""

from pcb_forge.configs.loader import (
    ConfigError,
    CuttingConfig,
    EngravingConfig,
    ForgeProject,
    GlobalConfig,
    LaserTool,
    Machine,
    SpindleBit,
    SpindleTool,
    Stage,
    ToolSelection,
    WorkspaceArea,
    load_config,
    load_forge_file,
    resolve_machine_config,
)

__all__ = [
    "ConfigError",
    "CuttingConfig",
    "EngravingConfig",
    "ForgeProject",
    "GlobalConfig",
    "LaserTool",
    "Machine",
    "SpindleBit",
    "SpindleTool",
    "Stage",
    "ToolSelection",
    "WorkspaceArea",
    "load_config",
    "load_forge_file",
    "resolve_machine_config",
]
