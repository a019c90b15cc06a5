"""Visual feature tracking, a pinhole camera model and lidar cloud handling."""

__version__ = "0.1.0"
__all__ = [
    "calibration",
    "cloud",
    "config",
    "frames",
    "mathutils",
    "pinhole",
    "tracker",
    "vision",
]