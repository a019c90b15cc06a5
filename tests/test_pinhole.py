import numpy as np
import pytest

from visfeat.pinhole import PinholeCamera, PinholeParameters, project_with_pose


def make_params(distorted=True):
    return PinholeParameters(
        camera_name="cam0",
        image_width=64,
        image_height=48,
        k1=-0.1 if distorted else 0.0,
        k2=0.01 if distorted else 0.0,
        p1=1e-4 if distorted else 0.0,
        p2=-1e-4 if distorted else 0.0,
        fx=460.0,
        fy=455.0,
        cx=32.0,
        cy=24.0,
    )


def test_principal_point_lifts_to_optical_axis():
    cam = PinholeCamera(make_params())
    ray = cam.lift_projective((32.0, 24.0))
    np.testing.assert_allclose(ray, [0.0, 0.0, 1.0], atol=1e-12)


@pytest.mark.parametrize("pixel", [(40.0, 30.0), (5.0, 3.0), (60.0, 45.0), (400.0, 300.0)])
def test_lift_then_project_round_trip(pixel):
    cam = PinholeCamera(make_params())
    ray = cam.lift_projective(pixel)
    back = cam.space_to_plane(ray * 3.0)
    np.testing.assert_allclose(back, pixel, atol=1e-3)


def test_lift_sphere_is_unit_and_parallel():
    cam = PinholeCamera(make_params())
    ray = cam.lift_projective((50.0, 10.0))
    sphere = cam.lift_sphere((50.0, 10.0))
    assert np.linalg.norm(sphere) == pytest.approx(1.0)
    np.testing.assert_allclose(np.cross(ray, sphere), 0.0, atol=1e-12)


def test_undist_to_plane_matches_space_to_plane():
    cam = PinholeCamera(make_params())
    np.testing.assert_allclose(
        cam.undist_to_plane((0.1, -0.05)), cam.space_to_plane((0.2, -0.1, 2.0))
    )


def test_no_distortion_gives_zero_offset():
    cam = PinholeCamera(make_params(distorted=False))
    np.testing.assert_allclose(cam.distortion((0.3, -0.2)), [0.0, 0.0])


def test_distortion_jacobian_matches_finite_difference():
    cam = PinholeCamera(make_params())
    point = np.array([0.2, -0.15])
    d_u, jac = cam.distortion_jacobian(point)
    np.testing.assert_allclose(d_u, cam.distortion(point))
    eps = 1e-6
    numeric = np.zeros((2, 2))
    for axis in range(2):
        step = np.zeros(2)
        step[axis] = eps
        plus = point + step + cam.distortion(point + step)
        minus = point - step + cam.distortion(point - step)
        numeric[:, axis] = (plus - minus) / (2 * eps)
    np.testing.assert_allclose(jac, numeric, atol=1e-6)


def test_undistort_map_is_identity_without_distortion():
    cam = PinholeCamera(make_params(distorted=False))
    map_x, map_y = cam.init_undistort_map(1.0)
    assert map_x.shape == (48, 64)
    assert map_x.dtype == np.float32
    u, v = np.meshgrid(np.arange(64), np.arange(48))
    np.testing.assert_allclose(map_x, u, atol=1e-3)
    np.testing.assert_allclose(map_y, v, atol=1e-3)


def test_rectify_map_defaults():
    cam = PinholeCamera(make_params(distorted=False))
    map_x, map_y, k_rect = cam.init_undistort_rectify_map()
    assert map_x.shape == (48, 64)
    assert k_rect[0, 0] == pytest.approx(460.0)
    assert k_rect[1, 1] == pytest.approx(455.0)
    assert k_rect[0, 2] == 64 // 2
    assert k_rect[1, 2] == 48 // 2
    u, v = np.meshgrid(np.arange(64), np.arange(48))
    np.testing.assert_allclose(map_x, u, atol=1e-3)
    np.testing.assert_allclose(map_y, v, atol=1e-3)


def test_parameter_vector_round_trip():
    cam = PinholeCamera(make_params())
    values = cam.write_parameters()
    assert len(values) == cam.parameter_count()
    other = PinholeCamera(make_params(distorted=False))
    other.read_parameters(values)
    assert other.write_parameters() == values
    np.testing.assert_allclose(
        other.lift_projective((10.0, 20.0)), cam.lift_projective((10.0, 20.0))
    )


def test_read_parameters_wrong_length_is_ignored():
    cam = PinholeCamera(make_params())
    before = cam.write_parameters()
    cam.read_parameters([1.0, 2.0, 3.0])
    assert cam.write_parameters() == before


def test_yaml_round_trip(tmp_path):
    path = tmp_path / "camera.yaml"
    cam = PinholeCamera(make_params())
    cam.write_parameters_to_yaml_file(path)
    assert path.read_text().startswith("%YAML:1.0")
    loaded = PinholeParameters.from_yaml(path)
    assert loaded == make_params()


def test_from_yaml_rejects_other_model(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text("%YAML:1.0\n---\nmodel_type: MEI\nimage_width: 10\n")
    with pytest.raises(ValueError):
        PinholeParameters.from_yaml(path)


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(OSError):
        PinholeParameters.from_yaml(tmp_path / "absent.yaml")


def test_parameters_to_string_mentions_model():
    cam = PinholeCamera(make_params())
    text = cam.parameters_to_string()
    assert "model_type PINHOLE" in text
    assert "camera_name cam0" in text
    assert cam.model_type == "PINHOLE"


def test_project_with_identity_pose_matches_camera():
    params = make_params()
    cam = PinholeCamera(params)
    point = np.array([0.3, -0.2, 2.5])
    projected = project_with_pose(cam.write_parameters(), (0, 0, 0, 1), (0, 0, 0), point)
    np.testing.assert_allclose(projected, cam.space_to_plane(point), atol=1e-9)


def test_project_with_pose_translation_and_scaled_quaternion():
    cam = PinholeCamera(make_params())
    values = cam.write_parameters()
    point = np.array([0.1, 0.2, 1.0])
    shifted = project_with_pose(values, (0, 0, 0, 2.0), (0.0, 0.0, 1.0), point)
    np.testing.assert_allclose(shifted, cam.space_to_plane(point + [0.0, 0.0, 1.0]), atol=1e-9)