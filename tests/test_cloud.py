import math

import numpy as np
import pytest

from visfeat.cloud import (
    CloudBuffer,
    filter_camera_view,
    get_transformation,
    transform_points,
    voxel_downsample,
)

IDENTITY = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


def test_transformation_identity():
    np.testing.assert_allclose(get_transformation(*IDENTITY), np.eye(4))


def test_transformation_translation_column():
    t = get_transformation(1.0, 2.0, 3.0, 0.0, 0.0, 0.0)
    np.testing.assert_allclose(t[:3, 3], [1.0, 2.0, 3.0])
    np.testing.assert_allclose(t[:3, :3], np.eye(3))


def test_transformation_yaw_quarter_turn():
    t = get_transformation(0, 0, 0, 0, 0, math.pi / 2)
    np.testing.assert_allclose(t[:3, :3] @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)


def test_transformation_rotation_is_orthonormal():
    r = get_transformation(0.3, -1.0, 2.0, 0.4, -0.7, 1.9)[:3, :3]
    np.testing.assert_allclose(r @ r.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_transform_points_round_trip_keeps_intensity():
    pts = np.array([[1.0, 2.0, 3.0, 7.0], [-4.0, 0.5, 2.0, 9.0]])
    t = get_transformation(0.5, 1.0, -2.0, 0.1, 0.2, 0.3)
    moved = transform_points(pts, t)
    np.testing.assert_allclose(moved[:, 3], pts[:, 3])
    back = transform_points(moved, np.linalg.inv(t))
    np.testing.assert_allclose(back, pts, atol=1e-12)


def test_transform_points_accepts_six_values():
    out = transform_points([[1.0, 0.0, 0.0]], (2.0, 0.0, 0.0, 0.0, 0.0, 0.0))
    np.testing.assert_allclose(out, [[3.0, 0.0, 0.0, 0.0]])


def test_transform_points_bad_transform():
    with pytest.raises(ValueError):
        transform_points([[1.0, 0.0, 0.0]], np.eye(3))


def test_voxel_downsample_averages_within_voxel():
    pts = np.array([[0.01, 0.01, 0.01, 2.0], [0.05, 0.03, 0.07, 4.0], [5.0, 5.0, 5.0, 1.0]])
    out = voxel_downsample(pts, 0.2)
    assert len(out) == 2
    np.testing.assert_allclose(out[0], pts[:2].mean(axis=0))
    np.testing.assert_allclose(out[1], pts[2])


def test_voxel_downsample_drops_non_finite_and_empty():
    out = voxel_downsample([[np.nan, 0.0, 0.0, 0.0], [1.0, 1.0, 1.0, 0.0]], 0.2)
    np.testing.assert_allclose(out, [[1.0, 1.0, 1.0, 0.0]])
    assert voxel_downsample(np.zeros((0, 4)), 0.2).shape == (0, 4)


def test_voxel_downsample_never_grows():
    rng = np.random.default_rng(0)
    pts = rng.uniform(-2, 2, size=(500, 4))
    out = voxel_downsample(pts, 0.5)
    assert 0 < len(out) <= len(pts)


def test_voxel_downsample_rejects_bad_leaf():
    with pytest.raises(ValueError):
        voxel_downsample([[1.0, 2.0, 3.0]], 0.0)


def test_filter_camera_view():
    pts = np.array(
        [
            [5.0, 1.0, 1.0, 0.0],
            [-1.0, 0.0, 0.0, 0.0],
            [1.0, 20.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 0.0],
            [1.0, 0.0, -10.0, 0.0],
        ]
    )
    out = filter_camera_view(pts)
    np.testing.assert_allclose(out, pts[[0, 4]])


def test_buffer_skips_scans():
    buf = CloudBuffer(dense=False, skip=1)
    results = [buf.add([[5.0, 0.0, 0.0]], float(i), IDENTITY) for i in range(4)]
    assert results == [True, False, True, False]


def test_buffer_without_pose_drops_scan():
    buf = CloudBuffer()
    assert buf.add([[5.0, 0.0, 0.0]], 0.0, None) is False
    assert len(buf) == 0
    assert buf.depth_cloud().shape == (0, 4)


def test_buffer_dense_keeps_recent_scans():
    buf = CloudBuffer(dense=True)
    for stamp, x in ((0.0, 5.0), (3.0, 10.0), (6.0, 15.0)):
        buf.add([[x, 0.0, 0.0, 1.0]], stamp, IDENTITY)
    assert len(buf) == 2
    xs = sorted(buf.depth_cloud()[:, 0].tolist())
    assert xs == pytest.approx([10.0, 15.0])


def test_buffer_sparse_uses_last_scan():
    buf = CloudBuffer(dense=False)
    buf.add([[5.0, 0.0, 0.0]], 0.0, IDENTITY)
    buf.add([[15.0, 0.0, 0.0]], 1.0, IDENTITY)
    np.testing.assert_allclose(buf.depth_cloud()[:, :3], [[15.0, 0.0, 0.0]])


def test_buffer_applies_offset_then_pose():
    buf = CloudBuffer()
    pose = (1.0, 0.0, 0.0, 0.0, 0.0, 0.0)
    offset = (0.0, 2.0, 0.0, 0.0, 0.0, 0.0)
    assert buf.add([[5.0, 0.0, 0.0, 3.0]], 0.0, pose, offset)
    np.testing.assert_allclose(buf.local_cloud, [[5.0, 2.0, 0.0, 3.0]])
    np.testing.assert_allclose(buf.depth_cloud(), [[6.0, 2.0, 0.0, 3.0]])


def test_buffer_filters_points_behind():
    buf = CloudBuffer()
    buf.add([[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0]], 0.0, IDENTITY)
    cloud = buf.depth_cloud()
    assert len(cloud) == 1
    assert cloud[0, 0] == pytest.approx(5.0)