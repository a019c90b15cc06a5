"""Lidar point clouds: filtering, downsampling and the fused depth cloud."""

from __future__ import annotations

import math
import threading
from collections import deque

import numpy as np

__all__ = [
    "get_transformation",
    "transform_points",
    "voxel_downsample",
    "filter_camera_view",
    "CloudBuffer",
]

_VIEW_RATIO = 10.0


def _as_cloud(points) -> np.ndarray:
    """Return points as an ``(N, 4)`` array of ``x, y, z, intensity``."""
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 4))
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2 or arr.shape[1] not in (3, 4):
        raise ValueError("points must have 3 or 4 columns")
    if arr.shape[1] == 3:
        arr = np.hstack([arr, np.zeros((len(arr), 1))])
    return arr.copy()


def get_transformation(x, y, z, roll, pitch, yaw) -> np.ndarray:
    """Homogeneous 4x4 transform from a translation and roll/pitch/yaw angles."""
    a, b = math.cos(yaw), math.sin(yaw)
    c, d = math.cos(pitch), math.sin(pitch)
    e, f = math.cos(roll), math.sin(roll)
    de, df = d * e, d * f
    return np.array(
        [
            [a * c, a * df - b * e, b * f + a * de, x],
            [b * c, a * e + b * df, b * de - a * f, y],
            [-d, c * f, c * e, z],
            [0.0, 0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def _as_transform(value) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape == (4, 4):
        return arr
    if arr.shape == (6,):
        return get_transformation(*arr)
    raise ValueError("a transform is a 4x4 matrix or (x, y, z, roll, pitch, yaw)")


def transform_points(points, transform) -> np.ndarray:
    """Apply a rigid transform to the coordinates; intensities are kept."""
    cloud = _as_cloud(points)
    t = _as_transform(transform)
    cloud[:, :3] = cloud[:, :3] @ t[:3, :3].T + t[:3, 3]
    return cloud


def voxel_downsample(points, leaf_size) -> np.ndarray:
    """Replace the points in each voxel by their centroid.

    Non-finite points are dropped. The result is ordered by voxel index.
    """
    cloud = _as_cloud(points)
    cloud = cloud[np.isfinite(cloud[:, :3]).all(axis=1)]
    if len(cloud) == 0:
        return cloud
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=np.float64), (3,))
    if (leaf <= 0).any():
        raise ValueError("leaf size must be positive")
    idx = np.floor(cloud[:, :3] / leaf).astype(np.int64)
    idx -= idx.min(axis=0)
    dims = idx.max(axis=0) + 1
    linear = idx[:, 0] + idx[:, 1] * dims[0] + idx[:, 2] * dims[0] * dims[1]
    keys, inverse = np.unique(linear, return_inverse=True)
    inverse = inverse.ravel()
    sums = np.zeros((len(keys), cloud.shape[1]))
    np.add.at(sums, inverse, cloud)
    counts = np.bincount(inverse, minlength=len(keys))
    return sums / counts[:, None]


def filter_camera_view(points) -> np.ndarray:
    """Keep points in front of the sensor within the camera's field of view."""
    cloud = _as_cloud(points)
    x, y, z = cloud[:, 0], cloud[:, 1], cloud[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        keep = (x >= 0) & (np.abs(y / x) <= _VIEW_RATIO) & (np.abs(z / x) <= _VIEW_RATIO)
    return cloud[keep]


class CloudBuffer:
    """Recent lidar scans in the world frame, fused into one depth cloud."""

    def __init__(self, dense=False, leaf_size=0.2, keep_seconds=5.0, skip=0):
        self.dense = bool(dense)
        self.leaf_size = leaf_size
        self.keep_seconds = float(keep_seconds)
        self.skip = int(skip)
        self._count = -1
        self._clouds: deque[tuple[float, np.ndarray]] = deque()
        self._lock = threading.Lock()
        self._depth = np.zeros((0, 4))
        self._local = np.zeros((0, 4))

    def __len__(self) -> int:
        return len(self._clouds)

    @property
    def local_cloud(self) -> np.ndarray:
        """The latest scan after filtering, in the camera frame."""
        return self._local.copy()

    def add(self, cloud, stamp, pose, offset=None) -> bool:
        """Add a scan taken at ``stamp`` seconds.

        ``pose`` is the body pose in the world frame and ``offset`` the
        lidar-to-camera transform, each a 4x4 matrix or
        ``(x, y, z, roll, pitch, yaw)``. A ``pose`` of None means no pose is
        known and the scan is dropped. Returns whether the scan was used.
        """
        self._count += 1
        if self._count % (self.skip + 1) != 0:
            return False
        if pose is None:
            return False
        trans_now = _as_transform(pose)
        trans_offset = np.eye(4) if offset is None else _as_transform(offset)

        scan = voxel_downsample(cloud, self.leaf_size)
        scan = filter_camera_view(scan)
        scan = transform_points(scan, trans_offset)
        global_scan = transform_points(scan, trans_now)

        stamp = float(stamp)
        self._clouds.append((stamp, global_scan))
        self._local = scan
        while self._clouds and stamp - self._clouds[0][0] > self.keep_seconds:
            self._clouds.popleft()

        with self._lock:
            if self.dense:
                merged = np.vstack([c for _, c in self._clouds])
            else:
                merged = self._clouds[-1][1]
            self._depth = voxel_downsample(merged, self.leaf_size)
        return True

    def depth_cloud(self) -> np.ndarray:
        """A copy of the fused, downsampled world-frame depth cloud."""
        with self._lock:
            return self._depth.copy()