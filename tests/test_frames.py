from types import SimpleNamespace

import numpy as np
import pytest

from visfeat.frames import (
    FeatureFrame,
    ImageSynchronizer,
    build_feature_frame,
)


def _tracker(seg=None, det=None):
    return SimpleNamespace(
        cur_pts=[(10.0, 20.0), (30.0, 40.0), (50.0, 60.0)],
        cur_un_pts=[(0.1, 0.2), (0.3, 0.4), (0.5, 0.6)],
        ids=[7, 8, 9],
        pts_velocity=[(1.0, 2.0), (3.0, 4.0), (5.0, 6.0)],
        track_cnt=[2, 1, 5],
        seg_reject_flag=seg if seg is not None else [0, 0, 0],
        det_reject_flag=det if det is not None else [0, 0, 0],
    )


def _img(value):
    return np.full((4, 4), value, dtype=np.uint8)


def test_frame_keeps_points_tracked_more_than_once():
    frame = build_feature_frame(_tracker(), 3.5)
    assert frame.ids == [7, 9]
    assert frame.points == [(0.1, 0.2, 1.0), (0.5, 0.6, 1.0)]
    assert frame.u == [10.0, 50.0]
    assert frame.v == [20.0, 60.0]
    assert frame.velocity_x == [1.0, 5.0]
    assert frame.velocity_y == [2.0, 6.0]
    assert frame.stamp == 3.5
    assert frame.frame_id == "vins_body"
    assert len(frame) == 2


def test_frame_drops_segmentation_rejected_points():
    frame = build_feature_frame(_tracker(seg=[1, 0, 0]), 0.0, use_seg=True)
    assert frame.ids == [9]


def test_frame_ignores_flags_when_semantics_disabled():
    frame = build_feature_frame(_tracker(seg=[1, 0, 1], det=[1, 1, 1]), 0.0)
    assert frame.ids == [7, 9]


def test_frame_uses_only_enabled_flag_kind():
    tracker = _tracker(seg=[1, 0, 1], det=[0, 0, 1])
    assert build_feature_frame(tracker, 0.0, use_det=True).ids == [7]
    assert build_feature_frame(tracker, 0.0, use_seg=True, use_det=True).ids == []


def test_channels_order_and_depth():
    frame = FeatureFrame(stamp=1.0, ids=[4], u=[1.0], v=[2.0], velocity_x=[0.0], velocity_y=[0.0])
    assert list(frame.channels()) == ["id", "u", "v", "velocity_x", "velocity_y"]
    frame.depth = [5.0]
    assert frame.channels()["depth"] == [5.0]
    assert frame.channels()["id"] == [4.0]


def test_plain_stream_skips_one_poll_for_first_image():
    sync = ImageSynchronizer()
    sync.push_image(0.0, _img(1))
    assert sync.poll() is None
    result = sync.poll()
    assert result.stamp == 0.0
    assert np.array_equal(result.image, _img(1))
    assert result.seg_image is None
    assert sync.poll() is None


def test_empty_buffer_polls_nothing():
    assert ImageSynchronizer().poll() is None


def test_gap_in_stream_requests_restart():
    sync = ImageSynchronizer()
    sync.push_image(0.0, _img(1))
    sync.poll()
    sync.poll()
    sync.push_image(2.0, _img(2))
    assert sync.poll() is None
    assert sync.restarts == 1
    assert sync.poll() is None
    result = sync.poll()
    assert result.stamp == 2.0
    assert sync.restarts == 1


def test_time_going_backwards_requests_restart():
    sync = ImageSynchronizer()
    sync.push_image(1.0, _img(1))
    sync.poll()
    sync.poll()
    sync.push_image(0.5, _img(2))
    assert sync.poll() is None
    assert sync.restarts == 1


def test_matching_segmentation_is_attached():
    sync = ImageSynchronizer(use_seg=True)
    sync.push_image(1.0, _img(1))
    sync.push_seg(1.0, _img(3))
    sync.poll()
    result = sync.poll()
    assert result.stamp == 1.0
    assert np.array_equal(result.seg_image, _img(3))


def test_old_segmentation_discarded_then_timeout():
    sync = ImageSynchronizer(use_seg=True, timeout_count=2)
    sync.push_image(1.0, _img(1))
    sync.push_seg(0.5, _img(3))
    assert sync.poll() is None
    assert sync.poll() is None
    assert sync.poll() is None
    result = sync.poll()
    assert result.stamp == 1.0
    assert result.seg_image is None


def test_later_segmentation_is_kept_for_next_image():
    sync = ImageSynchronizer(use_seg=True)
    sync.push_image(1.0, _img(1))
    sync.push_image(1.5, _img(2))
    sync.push_seg(1.5, _img(3))
    sync.poll()
    first = sync.poll()
    assert first.stamp == 1.0
    assert first.seg_image is None
    second = sync.poll()
    assert second.stamp == 1.5
    assert np.array_equal(second.seg_image, _img(3))


def test_matching_detection_is_attached():
    sync = ImageSynchronizer(use_det=True)
    sync.push_image(2.0, _img(1))
    sync.push_det(2.0, _img(4))
    sync.poll()
    result = sync.poll()
    assert np.array_equal(result.det_image, _img(4))
    assert result.seg_image is None


def test_detection_data_resets_empty_count():
    sync = ImageSynchronizer(use_det=True, timeout_count=2)
    sync.push_image(1.0, _img(1))
    sync.poll()
    assert sync.poll() is None
    sync.push_det(0.5, _img(4))
    assert sync.poll() is None
    assert sync.poll() is None
    result = sync.poll()
    assert result.stamp == 1.0
    assert result.det_image is None


def test_invalid_timeout_count():
    with pytest.raises(ValueError):
        ImageSynchronizer(timeout_count=0)