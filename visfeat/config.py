"""Settings of the visual feature front end, read from an OpenCV YAML file."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path

import yaml

__all__ = ["SemanticClass", "Config", "load_config", "NUM_OF_CAM"]

NUM_OF_CAM = 1


class SemanticClass(enum.IntEnum):
    """Label values of the segmentation and detection images."""

    PAVED = 1
    GRASS = 3
    PERSON = 15
    CAR = 17
    BUS = 23
    TRUCK = 24


@dataclass
class Config:
    """Feature tracker, lidar and semantic-rejection settings."""

    project_name: str = ""
    image_topic: str = ""
    imu_topic: str = ""
    point_cloud_topic: str = ""
    use_lidar: int = 0
    use_dense_cloud: int = 0
    lidar_skip: int = 0
    seg: int = 0
    det: int = 0
    max_cnt: int = 0
    min_dist: int = 0
    row: int = 0
    col: int = 0
    freq: int = 100
    f_threshold: float = 0.0
    show_track: int = 0
    equalize: int = 0
    lidar_to_cam_tx: float = 0.0
    lidar_to_cam_ty: float = 0.0
    lidar_to_cam_tz: float = 0.0
    lidar_to_cam_rx: float = 0.0
    lidar_to_cam_ry: float = 0.0
    lidar_to_cam_rz: float = 0.0
    fisheye: int = 0
    fisheye_mask: str = ""
    car_mask: str = ""
    bus_mask: str = ""
    cam_names: list[str] = field(default_factory=list)
    window_size: int = 20
    stereo_track: bool = False
    focal_length: int = 460
    pub_this_frame: bool = False
    seg_classes: tuple[int, ...] = (SemanticClass.GRASS,)
    det_classes: tuple[int, ...] = (
        SemanticClass.CAR,
        SemanticClass.BUS,
        SemanticClass.PERSON,
        SemanticClass.TRUCK,
    )

    @property
    def lidar_to_cam(self) -> tuple[float, float, float, float, float, float]:
        """Lidar-to-camera offset as ``(tx, ty, tz, rx, ry, rz)``."""
        return (
            self.lidar_to_cam_tx,
            self.lidar_to_cam_ty,
            self.lidar_to_cam_tz,
            self.lidar_to_cam_rx,
            self.lidar_to_cam_ry,
            self.lidar_to_cam_rz,
        )


class _OpenCvLoader(yaml.SafeLoader):
    """Safe loader that accepts OpenCV matrix tags as plain mappings."""


def _construct_opencv(loader, _suffix, node):
    return loader.construct_mapping(node, deep=True)


_OpenCvLoader.add_multi_constructor("tag:yaml.org,2002:opencv-", _construct_opencv)


def _read(config_file) -> dict:
    try:
        text = Path(config_file).read_text()
    except OSError as exc:
        raise OSError(f"wrong path to settings: {config_file}") from exc
    lines = text.splitlines()
    if lines and lines[0].startswith("%YAML"):
        lines = lines[1:]
    data = yaml.load("\n".join(lines), Loader=_OpenCvLoader)
    return data if isinstance(data, dict) else {}


def _int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    return int(round(float(value)))


def _float(data: dict, key: str) -> float:
    value = data.get(key)
    return 0.0 if value is None else float(value)


def _str(data: dict, key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def load_config(config_file, package_path: str = "") -> Config:
    """Read the settings file.

    ``package_path`` is prefixed to the fisheye mask name; detection mask
    names are resolved against the directory of ``config_file``. Raises
    OSError if the file cannot be read.
    """
    config_file = str(config_file)
    data = _read(config_file)
    slash = config_file.rfind("/")
    config_path = config_file[:slash] if slash >= 0 else config_file

    cfg = Config(
        project_name=_str(data, "project_name"),
        image_topic=_str(data, "image_topic"),
        imu_topic=_str(data, "imu_topic"),
        point_cloud_topic=_str(data, "point_cloud_topic"),
        use_lidar=_int(data, "use_lidar"),
        use_dense_cloud=_int(data, "use_dense_cloud"),
        lidar_skip=_int(data, "lidar_skip"),
        seg=_int(data, "seg"),
        det=_int(data, "det"),
        max_cnt=_int(data, "max_cnt"),
        min_dist=_int(data, "min_dist"),
        row=_int(data, "image_height"),
        col=_int(data, "image_width"),
        freq=_int(data, "freq"),
        f_threshold=_float(data, "F_threshold"),
        show_track=_int(data, "show_track"),
        equalize=_int(data, "equalize"),
        lidar_to_cam_tx=_float(data, "lidar_to_cam_tx"),
        lidar_to_cam_ty=_float(data, "lidar_to_cam_ty"),
        lidar_to_cam_tz=_float(data, "lidar_to_cam_tz"),
        lidar_to_cam_rx=_float(data, "lidar_to_cam_rx"),
        lidar_to_cam_ry=_float(data, "lidar_to_cam_ry"),
        lidar_to_cam_rz=_float(data, "lidar_to_cam_rz"),
        fisheye=_int(data, "fisheye"),
        cam_names=[config_file],
    )

    if cfg.fisheye == 1:
        cfg.fisheye_mask = package_path + _str(data, "fisheye_mask")
    if cfg.det:
        cfg.bus_mask = config_path + "/" + _str(data, "bus_mask")
        cfg.car_mask = config_path + "/" + _str(data, "car_mask")
    if cfg.freq == 0:
        cfg.freq = 100
    return cfg