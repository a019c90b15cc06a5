"""Per-image feature messages and pairing of images with semantic labels."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field

import numpy as np

__all__ = [
    "FeatureFrame",
    "build_feature_frame",
    "SyncedImage",
    "ImageSynchronizer",
]

FRAME_ID = "vins_body"
TIME_OUT_COUNT = 25
_MAX_IMAGE_GAP = 1.0


@dataclass
class FeatureFrame:
    """Tracked features of one image, as handed to the estimator.

    ``points`` hold normalised image coordinates ``(x, y, 1)``; the other
    lists are aligned with them.
    """

    stamp: float
    frame_id: str = FRAME_ID
    points: list[tuple[float, float, float]] = field(default_factory=list)
    ids: list[int] = field(default_factory=list)
    u: list[float] = field(default_factory=list)
    v: list[float] = field(default_factory=list)
    velocity_x: list[float] = field(default_factory=list)
    velocity_y: list[float] = field(default_factory=list)
    depth: list[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.points)

    def channels(self) -> dict[str, list[float]]:
        """The per-point channels by name, in publication order."""
        result = {
            "id": [float(i) for i in self.ids],
            "u": list(self.u),
            "v": list(self.v),
            "velocity_x": list(self.velocity_x),
            "velocity_y": list(self.velocity_y),
        }
        if self.depth:
            result["depth"] = list(self.depth)
        return result


def build_feature_frame(tracker, stamp, use_seg=False, use_det=False) -> FeatureFrame:
    """Collect the tracker's current features that have been seen more than once.

    Points flagged by segmentation (when ``use_seg``) or detection (when
    ``use_det``) are left out.
    """
    count = len(tracker.cur_pts)
    if use_seg or use_det:
        seg = tracker.seg_reject_flag
        det = tracker.det_reject_flag
        reduce_flag = [
            bool((use_seg and seg[j]) or (use_det and det[j])) for j in range(count)
        ]
    else:
        reduce_flag = [False] * count

    frame = FeatureFrame(stamp=float(stamp))
    for rejected, pid, un, pt, vel, cnt in zip(
        reduce_flag,
        tracker.ids,
        tracker.cur_un_pts,
        tracker.cur_pts,
        tracker.pts_velocity,
        tracker.track_cnt,
    ):
        if rejected or cnt <= 1:
            continue
        frame.points.append((float(un[0]), float(un[1]), 1.0))
        frame.ids.append(int(pid))
        frame.u.append(float(pt[0]))
        frame.v.append(float(pt[1]))
        frame.velocity_x.append(float(vel[0]))
        frame.velocity_y.append(float(vel[1]))
    return frame


@dataclass
class SyncedImage:
    """An image ready for tracking, with the label images that matched it."""

    stamp: float
    image: np.ndarray
    seg_image: np.ndarray | None = None
    det_image: np.ndarray | None = None


class ImageSynchronizer:
    """Pairs camera images with segmentation or detection images by time stamp.

    Images arriving out of order or after a gap of more than a second
    reset the stream; each reset increments :attr:`restarts`.
    """

    def __init__(self, use_seg=False, use_det=False, timeout_count=TIME_OUT_COUNT):
        if int(timeout_count) <= 0:
            raise ValueError("timeout_count must be positive")
        self.use_seg = bool(use_seg)
        self.use_det = bool(use_det)
        self.timeout_count = int(timeout_count)
        self.restarts = 0
        self.first_image_time = 0.0
        self.last_image_time = 0.0
        self._first_image = True
        self._empty_count = 0
        self._images: deque[tuple[float, np.ndarray]] = deque()
        self._segs: deque[tuple[float, np.ndarray]] = deque()
        self._dets: deque[tuple[float, np.ndarray]] = deque()
        self._lock = threading.Lock()

    def push_image(self, stamp, image) -> None:
        """Queue a camera image taken at ``stamp`` seconds."""
        with self._lock:
            self._images.append((float(stamp), np.asarray(image)))

    def push_seg(self, stamp, image) -> None:
        """Queue a segmentation label image."""
        with self._lock:
            self._segs.append((float(stamp), np.asarray(image)))

    def push_det(self, stamp, image) -> None:
        """Queue a detection label image."""
        with self._lock:
            self._dets.append((float(stamp), np.asarray(image)))

    def _take_image(self, stamp: float) -> SyncedImage:
        _, image = self._images.popleft()
        return SyncedImage(stamp=stamp, image=image)

    def _match(self, stamp: float, labels: deque, reset_on_data: bool, attr: str):
        if labels:
            if reset_on_data:
                self._empty_count = 0
            label_stamp = labels[0][0]
            if label_stamp < stamp:
                labels.popleft()
                return None
            result = self._take_image(stamp)
            if label_stamp == stamp:
                setattr(result, attr, labels.popleft()[1])
            return result
        self._empty_count += 1
        if self._empty_count == self.timeout_count:
            self._empty_count = 0
            return self._take_image(stamp)
        return None

    def poll(self) -> SyncedImage | None:
        """Advance the pairing by one step; return an image once one is ready."""
        with self._lock:
            if not self._images:
                return None
            stamp = self._images[0][0]
            if self._first_image:
                self._first_image = False
                self.first_image_time = stamp
                self.last_image_time = stamp
                return None
            if stamp - self.last_image_time > _MAX_IMAGE_GAP or stamp < self.last_image_time:
                self._first_image = True
                self.last_image_time = 0.0
                self.restarts += 1
                return None
            self.last_image_time = stamp

            if self.use_seg:
                return self._match(stamp, self._segs, False, "seg_image")
            if self.use_det:
                return self._match(stamp, self._dets, True, "det_image")
            return self._take_image(stamp)