"""Pinhole camera model with radial-tangential distortion."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml

__all__ = ["PinholeParameters", "PinholeCamera", "project_with_pose"]

MODEL_TYPE = "PINHOLE"
_PARAMETER_COUNT = 8
_UNDISTORT_ITERATIONS = 8


class _OpenCvLoader(yaml.SafeLoader):
    """Safe loader that accepts OpenCV matrix tags as plain mappings."""


def _construct_opencv(loader, _suffix, node):
    return loader.construct_mapping(node, deep=True)


_OpenCvLoader.add_multi_constructor("tag:yaml.org,2002:opencv-", _construct_opencv)


def _read_storage(filename) -> dict:
    try:
        text = Path(filename).read_text()
    except OSError as exc:
        raise OSError(f"cannot open camera file {filename}") from exc
    lines = text.splitlines()
    if lines and lines[0].startswith("%YAML"):
        lines = lines[1:]
    data = yaml.load("\n".join(lines), Loader=_OpenCvLoader)
    return data if isinstance(data, dict) else {}


def _number(mapping, key) -> float:
    if not isinstance(mapping, dict):
        return 0.0
    value = mapping.get(key)
    return 0.0 if value is None else float(value)


@dataclass
class PinholeParameters:
    """Intrinsics and distortion coefficients of a pinhole camera."""

    camera_name: str = ""
    image_width: int = 0
    image_height: int = 0
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0

    @property
    def model_type(self) -> str:
        return MODEL_TYPE

    @classmethod
    def from_yaml(cls, filename) -> "PinholeParameters":
        """Read parameters from an OpenCV-style YAML file.

        Raises OSError if the file cannot be read and ValueError if it
        describes a different camera model.
        """
        data = _read_storage(filename)
        model = data.get("model_type")
        if model is not None and str(model) != MODEL_TYPE:
            raise ValueError(f"camera model is {model}, not {MODEL_TYPE}")
        dist = data.get("distortion_parameters") or {}
        proj = data.get("projection_parameters") or {}
        name = data.get("camera_name")
        return cls(
            camera_name="" if name is None else str(name),
            image_width=int(_number(data, "image_width")),
            image_height=int(_number(data, "image_height")),
            k1=_number(dist, "k1"),
            k2=_number(dist, "k2"),
            p1=_number(dist, "p1"),
            p2=_number(dist, "p2"),
            fx=_number(proj, "fx"),
            fy=_number(proj, "fy"),
            cx=_number(proj, "cx"),
            cy=_number(proj, "cy"),
        )

    def to_yaml(self, filename) -> None:
        """Write parameters to an OpenCV-style YAML file."""
        document = {
            "model_type": MODEL_TYPE,
            "camera_name": self.camera_name,
            "image_width": int(self.image_width),
            "image_height": int(self.image_height),
            "distortion_parameters": {
                "k1": float(self.k1),
                "k2": float(self.k2),
                "p1": float(self.p1),
                "p2": float(self.p2),
            },
            "projection_parameters": {
                "fx": float(self.fx),
                "fy": float(self.fy),
                "cx": float(self.cx),
                "cy": float(self.cy),
            },
        }
        body = yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
        Path(filename).write_text("%YAML:1.0\n---\n" + body)

    def __str__(self) -> str:
        lines = [
            "Camera Parameters:",
            f"    model_type {MODEL_TYPE}",
            f"   camera_name {self.camera_name}",
            f"   image_width {self.image_width}",
            f"  image_height {self.image_height}",
            "Distortion Parameters",
        ]
        lines += [f"            {n} {getattr(self, n):g}" for n in ("k1", "k2", "p1", "p2")]
        lines.append("Projection Parameters")
        lines += [f"            {n} {getattr(self, n):g}" for n in ("fx", "fy", "cx", "cy")]
        return "\n".join(lines) + "\n"


def _distortion(k1, k2, p1, p2, x, y):
    mx2 = x * x
    my2 = y * y
    mxy = x * y
    rho2 = mx2 + my2
    rad = k1 * rho2 + k2 * rho2 * rho2
    dx = x * rad + 2.0 * p1 * mxy + p2 * (rho2 + 2.0 * mx2)
    dy = y * rad + 2.0 * p2 * mxy + p1 * (rho2 + 2.0 * my2)
    return dx, dy


def _safe_ratio(num, den):
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.divide(np.float64(num), np.float64(den)))


class PinholeCamera:
    """Projection and back-projection for a distorted pinhole camera."""

    def __init__(self, parameters: PinholeParameters | None = None):
        if parameters is None:
            self._params = PinholeParameters()
            self._no_distortion = True
            self._inv_k11, self._inv_k13 = 1.0, 0.0
            self._inv_k22, self._inv_k23 = 1.0, 0.0
        else:
            self.parameters = parameters

    @property
    def parameters(self) -> PinholeParameters:
        return dataclasses.replace(self._params)

    @parameters.setter
    def parameters(self, parameters: PinholeParameters) -> None:
        p = dataclasses.replace(parameters)
        self._params = p
        self._no_distortion = p.k1 == 0.0 and p.k2 == 0.0 and p.p1 == 0.0 and p.p2 == 0.0
        self._inv_k11 = _safe_ratio(1.0, p.fx)
        self._inv_k13 = _safe_ratio(-p.cx, p.fx)
        self._inv_k22 = _safe_ratio(1.0, p.fy)
        self._inv_k23 = _safe_ratio(-p.cy, p.fy)

    @property
    def model_type(self) -> str:
        return MODEL_TYPE

    @property
    def camera_name(self) -> str:
        return self._params.camera_name

    @property
    def image_width(self) -> int:
        return self._params.image_width

    @property
    def image_height(self) -> int:
        return self._params.image_height

    def _coeffs(self):
        p = self._params
        return p.k1, p.k2, p.p1, p.p2

    def lift_sphere(self, p) -> np.ndarray:
        """Lift an image point onto the unit sphere."""
        ray = self.lift_projective(p)
        return ray / np.linalg.norm(ray)

    def lift_projective(self, p) -> np.ndarray:
        """Lift an image point to its projective ray ``(x, y, 1)``."""
        mx_d = self._inv_k11 * float(p[0]) + self._inv_k13
        my_d = self._inv_k22 * float(p[1]) + self._inv_k23
        if self._no_distortion:
            mx_u, my_u = mx_d, my_d
        else:
            mx_u, my_u = mx_d, my_d
            for _ in range(_UNDISTORT_ITERATIONS):
                dx, dy = _distortion(*self._coeffs(), mx_u, my_u)
                mx_u = mx_d - dx
                my_u = my_d - dy
        return np.array([mx_u, my_u, 1.0])

    def _normalized_to_plane(self, x, y):
        if not self._no_distortion:
            dx, dy = _distortion(*self._coeffs(), x, y)
            x = x + dx
            y = y + dy
        p = self._params
        return p.fx * x + p.cx, p.fy * y + p.cy

    def space_to_plane(self, point) -> np.ndarray:
        """Project a 3D point onto the image plane."""
        x, y, z = (float(c) for c in point)
        u, v = self._normalized_to_plane(x / z, y / z)
        return np.array([u, v])

    def undist_to_plane(self, p_u) -> np.ndarray:
        """Project an undistorted normalised point onto the image plane."""
        u, v = self._normalized_to_plane(float(p_u[0]), float(p_u[1]))
        return np.array([u, v])

    def distortion(self, p_u) -> np.ndarray:
        """Offset ``d_u`` such that the distorted point is ``p_u + d_u``."""
        dx, dy = _distortion(*self._coeffs(), float(p_u[0]), float(p_u[1]))
        return np.array([dx, dy])

    def distortion_jacobian(self, p_u):
        """Return ``(d_u, J)`` where ``J`` is the Jacobian of ``p_u + d_u``."""
        k1, k2, p1, p2 = self._coeffs()
        x, y = float(p_u[0]), float(p_u[1])
        d_u = self.distortion((x, y))
        mx2, my2 = x * x, y * y
        rho2 = mx2 + my2
        rad = k1 * rho2 + k2 * rho2 * rho2
        dxdmx = 1.0 + rad + k1 * 2.0 * mx2 + k2 * rho2 * 4.0 * mx2 + 2.0 * p1 * y + 6.0 * p2 * x
        dydmx = k1 * 2.0 * x * y + k2 * 4.0 * rho2 * x * y + p1 * 2.0 * x + 2.0 * p2 * y
        dxdmy = dydmx
        dydmy = 1.0 + rad + k1 * 2.0 * my2 + k2 * rho2 * 4.0 * my2 + 6.0 * p1 * y + 2.0 * p2 * x
        jac = np.array([[dxdmx, dxdmy], [dydmx, dydmy]])
        return d_u, jac

    def init_undistort_map(self, f_scale: float = 1.0):
        """Build remap tables ``(map_x, map_y)`` for undistorting an image."""
        width, height = self._params.image_width, self._params.image_height
        u, v = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
        mx_u = self._inv_k11 / f_scale * u + self._inv_k13 / f_scale
        my_u = self._inv_k22 / f_scale * v + self._inv_k23 / f_scale
        map_x, map_y = self._normalized_to_plane(mx_u, my_u)
        return np.asarray(map_x, dtype=np.float32), np.asarray(map_y, dtype=np.float32)

    def init_undistort_rectify_map(
        self, fx=-1.0, fy=-1.0, image_size=(0, 0), cx=-1.0, cy=-1.0, rmat=None
    ):
        """Build rectifying remap tables.

        ``image_size`` is ``(width, height)``; a value of ``-1`` for a focal
        length or principal point selects the camera's own or the image
        centre. Returns ``(map_x, map_y, k_rect)``.
        """
        width, height = (int(s) for s in image_size)
        if (width, height) == (0, 0):
            width, height = self._params.image_width, self._params.image_height
        if rmat is None:
            rmat = np.eye(3, dtype=np.float32)
        r = np.asarray(rmat, dtype=np.float32).reshape(3, 3)
        r_inv = np.linalg.inv(r).astype(np.float32)

        fx32, fy32 = np.float32(fx), np.float32(fy)
        cx32, cy32 = np.float32(cx), np.float32(cy)
        if cx32 == np.float32(-1.0) or cy32 == np.float32(-1.0):
            k_rect = np.array(
                [[fx32, 0, width // 2], [0, fy32, height // 2], [0, 0, 1]], dtype=np.float32
            )
        else:
            k_rect = np.array([[fx32, 0, cx32], [0, fy32, cy32], [0, 0, 1]], dtype=np.float32)
        if fx32 == np.float32(-1.0) or fy32 == np.float32(-1.0):
            k_rect[0, 0] = self._params.fx
            k_rect[1, 1] = self._params.fy
        k_rect_inv = np.linalg.inv(k_rect).astype(np.float32)

        u, v = np.meshgrid(np.arange(width, dtype=np.float32), np.arange(height, dtype=np.float32))
        xo = np.stack([u.ravel(), v.ravel(), np.ones(u.size, dtype=np.float32)])
        uo = ((r_inv @ k_rect_inv) @ xo).astype(np.float32).astype(np.float64)
        map_x, map_y = self._normalized_to_plane(uo[0] / uo[2], uo[1] / uo[2])
        map_x = np.asarray(map_x, dtype=np.float32).reshape(height, width)
        map_y = np.asarray(map_y, dtype=np.float32).reshape(height, width)
        return map_x, map_y, k_rect

    def parameter_count(self) -> int:
        return _PARAMETER_COUNT

    def read_parameters(self, values) -> None:
        """Load ``k1, k2, p1, p2, fx, fy, cx, cy``; other lengths are ignored."""
        values = list(values)
        if len(values) != self.parameter_count():
            return
        k1, k2, p1, p2, fx, fy, cx, cy = (float(x) for x in values)
        self.parameters = dataclasses.replace(
            self._params, k1=k1, k2=k2, p1=p1, p2=p2, fx=fx, fy=fy, cx=cx, cy=cy
        )

    def write_parameters(self) -> list[float]:
        """Return ``[k1, k2, p1, p2, fx, fy, cx, cy]``."""
        p = self._params
        return [p.k1, p.k2, p.p1, p.p2, p.fx, p.fy, p.cx, p.cy]

    def write_parameters_to_yaml_file(self, filename) -> None:
        self._params.to_yaml(filename)

    def parameters_to_string(self) -> str:
        return str(self._params)


def _rotate(q, point) -> np.ndarray:
    x, y, z, w = (float(c) for c in q)
    norm = np.sqrt(w * w + x * x + y * y + z * z)
    w, x, y, z = w / norm, x / norm, y / norm, z / norm
    rot = np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )
    return rot @ np.asarray(point, dtype=np.float64)


def project_with_pose(params, q, t, point) -> np.ndarray:
    """Project a world point through a pose and a parameter vector.

    ``params`` is ``[k1, k2, p1, p2, fx, fy, cx, cy]``, ``q`` a quaternion
    ``(x, y, z, w)`` and ``t`` a translation.
    """
    k1, k2, p1, p2, fx, fy, cx, cy = (float(v) for v in params)
    pc = _rotate(q, point) + np.asarray(t, dtype=np.float64)
    u = pc[0] / pc[2]
    v = pc[1] / pc[2]
    rho_sqr = u * u + v * v
    radial = 1.0 + k1 * rho_sqr + k2 * rho_sqr * rho_sqr
    du = 2.0 * p1 * u * v + p2 * (rho_sqr + 2.0 * u * u)
    dv = p1 * (rho_sqr + 2.0 * v * v) + 2.0 * p2 * u * v
    u = radial * u + du
    v = radial * v + dv
    return np.array([fx * u + cx, fy * v + cy])