"""Closed-form intrinsic calibration of a pinhole camera from planar targets."""

from __future__ import annotations

import dataclasses

import numpy as np

from visfeat.pinhole import PinholeCamera, PinholeParameters

__all__ = ["find_homography", "estimate_intrinsics"]


def _normalizing_transform(points: np.ndarray) -> np.ndarray:
    centroid = points.mean(axis=0)
    spread = np.sqrt(((points - centroid) ** 2).sum(axis=1)).mean()
    scale = np.sqrt(2.0) / spread if spread > 0 else 1.0
    return np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ]
    )


def find_homography(src, dst) -> np.ndarray:
    """Estimate the 3x3 homography mapping ``src`` points onto ``dst`` points.

    Uses the normalised direct linear transform over all correspondences.
    The result is scaled so that its bottom-right entry is 1. Raises
    ValueError when fewer than four correspondences are given, when the
    point lists differ in length, or when the estimate is degenerate.
    """
    src_pts = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst_pts = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if len(src_pts) != len(dst_pts):
        raise ValueError("source and destination point counts differ")
    if len(src_pts) < 4:
        raise ValueError("a homography needs at least four correspondences")

    t_src = _normalizing_transform(src_pts)
    t_dst = _normalizing_transform(dst_pts)
    ones = np.ones((len(src_pts), 1))
    s = (t_src @ np.hstack([src_pts, ones]).T).T
    d = (t_dst @ np.hstack([dst_pts, ones]).T).T

    rows = []
    for (x, y, w), (u, v, z) in zip(s, d):
        rows.append([0.0, 0.0, 0.0, -z * x, -z * y, -z * w, v * x, v * y, v * w])
        rows.append([z * x, z * y, z * w, 0.0, 0.0, 0.0, -u * x, -u * y, -u * w])
    _, _, vt = np.linalg.svd(np.asarray(rows))
    h_norm = vt[-1].reshape(3, 3)

    h = np.linalg.inv(t_dst) @ h_norm @ t_src
    if abs(h[2, 2]) < 1e-12:
        raise ValueError("degenerate homography")
    return h / h[2, 2]


def estimate_intrinsics(camera: PinholeCamera, board_size, object_points, image_points) -> PinholeParameters:
    """Estimate focal lengths from views of a planar target.

    The principal point is fixed at the image centre and distortion is set
    to zero; the focal lengths follow from the orthogonality and equal-norm
    constraints on each view's homography. The camera's parameters are
    replaced and the new parameters are returned.
    """
    params = camera.parameters
    cx = params.image_width / 2.0
    cy = params.image_height / 2.0

    a_rows = []
    b_rows = []
    for obj, img in zip(object_points, image_points):
        planar = np.asarray(obj, dtype=np.float64).reshape(-1, 3)[:, :2]
        h = find_homography(planar, img).copy()
        h[0, :] -= h[2, :] * cx
        h[1, :] -= h[2, :] * cy

        col0 = h[:, 0]
        col1 = h[:, 1]
        d1 = (col0 + col1) * 0.5
        d2 = (col0 - col1) * 0.5
        col0 = col0 / np.linalg.norm(col0)
        col1 = col1 / np.linalg.norm(col1)
        d1 = d1 / np.linalg.norm(d1)
        d2 = d2 / np.linalg.norm(d2)

        a_rows.append([col0[0] * col1[0], col0[1] * col1[1]])
        a_rows.append([d1[0] * d2[0], d1[1] * d2[1]])
        b_rows.append(-col0[2] * col1[2])
        b_rows.append(-d1[2] * d2[2])

    if not a_rows:
        raise ValueError("no views given")
    f, *_ = np.linalg.lstsq(np.asarray(a_rows), np.asarray(b_rows), rcond=None)

    new_params = dataclasses.replace(
        params,
        k1=0.0,
        k2=0.0,
        p1=0.0,
        p2=0.0,
        cx=cx,
        cy=cy,
        fx=float(np.sqrt(abs(1.0 / f[0]))),
        fy=float(np.sqrt(abs(1.0 / f[1]))),
    )
    camera.parameters = new_params
    return camera.parameters