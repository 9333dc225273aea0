"""
Shared utilities.

Modules:
    units: Typed quantities (length, speed, power, angular speed)
    geometry: Ring math, ray casting, arc linearization, offsetting
    fs: Atomic writes and YAML loading
    logging_config: Logging setup with contextual fields
"""

__all__ = ["units", "geometry", "fs", "logging_config"]
