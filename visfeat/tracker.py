"""KLT feature tracker with semantic rejection of points on unwanted classes."""

from __future__ import annotations

import math

import numpy as np

from visfeat.config import Config
from visfeat.vision import (
    calc_optical_flow_lk,
    equalize_clahe,
    fill_circle,
    good_features_to_track,
)

__all__ = ["in_border", "reduce_vector", "distance", "FeatureTracker"]

_BORDER_SIZE = 1
_WIN_SIZE = (21, 21)
_QUALITY_LEVEL = 0.01
_FLOW_BACK_THRESHOLD = 0.5
_CLAHE_CLIP = 3.0
_CLAHE_GRID = (8, 8)
_ARROW_TIP = 0.2
_REJECT_COLOR = (0, 255, 0)
_ARROW_COLOR = (0, 255, 0)


def in_border(pt, row, col) -> bool:
    """Whether ``pt`` (x, y), rounded to a pixel, lies inside the image border."""
    img_x = round(float(pt[0]))
    img_y = round(float(pt[1]))
    return _BORDER_SIZE <= img_x < col - _BORDER_SIZE and _BORDER_SIZE <= img_y < row - _BORDER_SIZE


def reduce_vector(values, status) -> list:
    """Keep the entries of ``values`` whose status is set."""
    return [v for v, keep in zip(values, status) if keep]


def distance(pt1, pt2) -> float:
    """Euclidean distance between two image points."""
    dx = float(pt1[0]) - float(pt2[0])
    dy = float(pt1[1]) - float(pt2[1])
    return math.sqrt(dx * dx + dy * dy)


def _pixel(pt) -> tuple[int, int]:
    """Row and column of the pixel nearest to ``pt`` (x, y)."""
    return round(float(pt[1])), round(float(pt[0]))


def _as_points(array) -> list[tuple[float, float]]:
    return [(float(x), float(y)) for x, y in np.asarray(array, dtype=np.float64).reshape(-1, 2)]


def _ratio(num: float, den: float) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.divide(np.float64(num), np.float64(den)))


def _draw_line(image: np.ndarray, p0, p1, color) -> None:
    x0, y0 = round(float(p0[0])), round(float(p0[1]))
    x1, y1 = round(float(p1[0])), round(float(p1[1]))
    n = max(abs(x1 - x0), abs(y1 - y0)) + 1
    xs = np.rint(np.linspace(x0, x1, n)).astype(np.intp)
    ys = np.rint(np.linspace(y0, y1, n)).astype(np.intp)
    h, w = image.shape[:2]
    inside = (xs >= 0) & (xs < w) & (ys >= 0) & (ys < h)
    image[ys[inside], xs[inside]] = color


def _draw_arrow(image: np.ndarray, start, end, color) -> None:
    _draw_line(image, start, end, color)
    sx, sy = float(start[0]), float(start[1])
    ex, ey = float(end[0]), float(end[1])
    tip = math.hypot(sx - ex, sy - ey) * _ARROW_TIP
    angle = math.atan2(sy - ey, sx - ex)
    for side in (math.pi / 4, -math.pi / 4):
        wing = (ex + tip * math.cos(angle + side), ey + tip * math.sin(angle + side))
        _draw_line(image, wing, end, color)


class FeatureTracker:
    """Tracks corners across a mono image stream and assigns them stable ids.

    Ids are drawn from a counter shared by all trackers.
    """

    n_id = 0

    def __init__(self, camera, config: Config):
        self.camera = camera
        self.config = config

        self.track_image: np.ndarray | None = None
        self.mask: np.ndarray | None = None
        self.fisheye_mask: np.ndarray | None = None
        self.prev_img: np.ndarray | None = None
        self.cur_img: np.ndarray | None = None
        self.forw_img: np.ndarray | None = None
        self.seg_img: np.ndarray | None = None
        self.det_img: np.ndarray | None = None
        self.car_mask: np.ndarray | None = None
        self.bus_mask: np.ndarray | None = None

        self.seg_reject_flag: list[int] = []
        self.det_reject_flag: list[int] = []
        self.n_pts: list[tuple[float, float]] = []
        self.prev_pts: list[tuple[float, float]] = []
        self.cur_pts: list[tuple[float, float]] = []
        self.forw_pts: list[tuple[float, float]] = []
        self.prev_un_pts: list[tuple[float, float]] = []
        self.cur_un_pts: list[tuple[float, float]] = []
        self.pts_velocity: list[tuple[float, float]] = []
        self.ids: list[int] = []
        self.track_cnt: list[int] = []
        self.cur_un_pts_map: dict[int, tuple[float, float]] = {}
        self.prev_un_pts_map: dict[int, tuple[float, float]] = {}
        self.prev_pts_map: dict[int, tuple[float, float]] = {}
        self.cur_time = 0.0
        self.prev_time = 0.0

    @classmethod
    def _new_id(cls) -> int:
        new = cls.n_id
        cls.n_id += 1
        return new

    @property
    def _semantic(self) -> bool:
        return bool(self.config.seg or self.config.det)

    def _blank_mask(self) -> np.ndarray:
        return np.full((self.config.row, self.config.col), 255, dtype=np.uint8)

    def set_mask(self) -> None:
        """Thin out tracked points, preferring long tracks, and build the detection mask."""
        if self.config.fisheye:
            if self.fisheye_mask is None:
                raise ValueError("fisheye mode needs a fisheye mask")
            self.mask = np.array(self.fisheye_mask, dtype=np.uint8, copy=True)
        else:
            self.mask = self._blank_mask()

        entries = sorted(
            zip(self.track_cnt, self.forw_pts, self.ids), key=lambda e: e[0], reverse=True
        )
        self.forw_pts, self.ids, self.track_cnt = [], [], []
        for cnt, pt, pid in entries:
            if self.mask[_pixel(pt)] == 255:
                self.forw_pts.append(pt)
                self.ids.append(pid)
                self.track_cnt.append(cnt)
                fill_circle(self.mask, pt, self.config.min_dist, 0)

    def set_mask_mod(self) -> None:
        """Like :meth:`set_mask`, also keeping the rejection flags aligned.

        With detection enabled the car mask is the starting mask; otherwise
        every pixel starts allowed.
        """
        if self.config.det and self.car_mask is not None:
            self.mask = np.array(self.car_mask, dtype=np.uint8, copy=True)
        else:
            self.mask = self._blank_mask()

        count = len(self.forw_pts)
        seg = list(self.seg_reject_flag) + [0] * (count - len(self.seg_reject_flag))
        det = list(self.det_reject_flag) + [0] * (count - len(self.det_reject_flag))
        entries = sorted(
            zip(self.track_cnt, self.forw_pts, self.ids, seg, det),
            key=lambda e: e[0],
            reverse=True,
        )
        self.forw_pts, self.ids, self.track_cnt = [], [], []
        self.seg_reject_flag, self.det_reject_flag = [], []
        for cnt, pt, pid, seg_flag, det_flag in entries:
            if self.mask[_pixel(pt)] == 255:
                self.forw_pts.append(pt)
                self.ids.append(pid)
                self.track_cnt.append(cnt)
                self.seg_reject_flag.append(seg_flag)
                self.det_reject_flag.append(det_flag)
                fill_circle(self.mask, pt, self.config.min_dist, 0)

    def add_points(self) -> None:
        """Append the newly detected corners with fresh ids."""
        for pt in self.n_pts:
            self.forw_pts.append(pt)
            self.ids.append(self._new_id())
            self.track_cnt.append(1)

    def update_id(self, i) -> bool:
        """Give point ``i`` an id if it has none; False once ``i`` is past the end."""
        if i < len(self.ids):
            if self.ids[i] == -1:
                self.ids[i] = self._new_id()
            return True
        return False

    def reject_mask(self, image, classes, reject_flag) -> list[int]:
        """Flag points lying on one of ``classes`` in a label image.

        Old points keep an existing flag; new corners get a flag each,
        appended after the old ones. Returns the new flag list.
        """
        labels = np.asarray(image)
        wanted = {int(c) for c in classes}
        flags = list(reject_flag)[: len(self.forw_pts)]
        flags += [0] * (len(self.forw_pts) - len(flags))
        for i, pt in enumerate(self.forw_pts):
            if flags[i] == 0 and int(labels[_pixel(pt)]) in wanted:
                flags[i] = 1
        flags.extend(1 if int(labels[_pixel(pt)]) in wanted else 0 for pt in self.n_pts)
        return flags

    def _track(self) -> None:
        cur = np.asarray(self.cur_pts, dtype=np.float32)
        forw, status = calc_optical_flow_lk(
            self.cur_img, self.forw_img, cur, _WIN_SIZE, 3
        )
        reverse, reverse_status = calc_optical_flow_lk(
            self.forw_img, self.cur_img, forw, _WIN_SIZE, 1, initial_pts=cur
        )
        self.forw_pts = _as_points(forw)
        reverse_pts = _as_points(reverse)
        keep = [
            bool(ok and back and distance(c, r) <= _FLOW_BACK_THRESHOLD)
            and in_border(f, self.config.row, self.config.col)
            for ok, back, c, r, f in zip(
                status, reverse_status, self.cur_pts, reverse_pts, self.forw_pts
            )
        ]
        self.prev_pts = reduce_vector(self.prev_pts, keep)
        self.cur_pts = reduce_vector(self.cur_pts, keep)
        self.forw_pts = reduce_vector(self.forw_pts, keep)
        self.ids = reduce_vector(self.ids, keep)
        self.cur_un_pts = reduce_vector(self.cur_un_pts, keep)
        self.track_cnt = reduce_vector(self.track_cnt, keep)
        if self._semantic:
            self.seg_reject_flag = reduce_vector(self.seg_reject_flag, keep)
            self.det_reject_flag = reduce_vector(self.det_reject_flag, keep)

    def read_image(self, image, cur_time) -> None:
        """Track the existing points into ``image`` and top up with new corners."""
        cfg = self.config
        self.cur_time = float(cur_time)
        img = np.asarray(image)
        if cfg.equalize:
            img = equalize_clahe(img, _CLAHE_CLIP, _CLAHE_GRID)

        if self.forw_img is None:
            self.prev_img = self.cur_img = self.forw_img = img
        else:
            self.forw_img = img

        self.forw_pts = []
        if self.cur_pts:
            self._track()

        self.track_cnt = [n + 1 for n in self.track_cnt]

        if self._semantic:
            self.set_mask_mod()
        else:
            self.set_mask()

        n_max_cnt = cfg.max_cnt - len(self.forw_pts)
        if n_max_cnt > 0:
            corners = good_features_to_track(
                self.forw_img, n_max_cnt, _QUALITY_LEVEL, cfg.min_dist, self.mask
            )
            self.n_pts = _as_points(corners)
        else:
            self.n_pts = []

        if cfg.seg and self.seg_img is not None:
            self.seg_reject_flag = self.reject_mask(
                self.seg_img, cfg.seg_classes, self.seg_reject_flag
            )
        if cfg.det and self.det_img is not None:
            self.det_reject_flag = self.reject_mask(
                self.det_img, cfg.det_classes, self.det_reject_flag
            )

        self.add_points()
        if self._semantic:
            if len(self.seg_reject_flag) != len(self.forw_pts):
                self.seg_reject_flag = [0] * len(self.forw_pts)
            if len(self.det_reject_flag) != len(self.forw_pts):
                self.det_reject_flag = [0] * len(self.forw_pts)

        self.prev_img = self.cur_img
        self.prev_pts = self.cur_pts
        self.prev_un_pts = self.cur_un_pts
        self.cur_img = self.forw_img
        self.cur_pts = list(self.forw_pts)
        self.undistorted_points()
        self.prev_time = self.cur_time

        if cfg.show_track:
            self.draw_track(self.cur_img)

        self.prev_pts_map = dict(zip(self.ids, self.cur_pts))

    def undistorted_points(self) -> None:
        """Lift current points to the normalised plane and estimate their velocities."""
        self.cur_un_pts = []
        self.cur_un_pts_map = {}
        for pid, pt in zip(self.ids, self.cur_pts):
            ray = self.camera.lift_projective(pt)
            un = (_ratio(ray[0], ray[2]), _ratio(ray[1], ray[2]))
            self.cur_un_pts.append(un)
            self.cur_un_pts_map.setdefault(pid, un)

        if self.prev_un_pts_map:
            dt = self.cur_time - self.prev_time
            velocity = []
            for pid, un in zip(self.ids, self.cur_un_pts):
                prev = self.prev_un_pts_map.get(pid) if pid != -1 else None
                if prev is None:
                    velocity.append((0.0, 0.0))
                else:
                    velocity.append((_ratio(un[0] - prev[0], dt), _ratio(un[1] - prev[1], dt)))
            self.pts_velocity = velocity
        else:
            self.pts_velocity = [(0.0, 0.0)] * len(self.cur_pts)
        self.prev_un_pts_map = dict(self.cur_un_pts_map)

    def draw_track(self, image) -> np.ndarray:
        """Draw the current points and their motion onto a colour copy of ``image``."""
        gray = np.asarray(image)
        canvas = np.repeat(np.clip(gray, 0, 255).astype(np.uint8)[:, :, None], 3, axis=2)
        semantic = self._semantic
        for j, pt in enumerate(self.cur_pts):
            rejected = semantic and (
                (j < len(self.seg_reject_flag) and self.seg_reject_flag[j])
                or (j < len(self.det_reject_flag) and self.det_reject_flag[j])
            )
            if rejected:
                fill_circle(canvas, pt, 5, _REJECT_COLOR)
            else:
                length = min(1.0, self.track_cnt[j] / self.config.window_size)
                color = (round(255 * (1 - length)), 0, round(255 * length))
                fill_circle(canvas, pt, 3, color)
        for pid, pt in zip(self.ids, self.cur_pts):
            prev = self.prev_pts_map.get(pid)
            if prev is not None:
                _draw_arrow(canvas, pt, prev, _ARROW_COLOR)
        self.track_image = canvas
        return canvas