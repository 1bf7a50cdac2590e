import numpy as np
import pytest

from pose_sync.common.models import Keypoint, PoseResult
from pose_sync.processing.keypoint_smoother import KeypointSmoother
from pose_sync.processing.one_euro_filter import OneEuroFilter


def pose_at(timestamp_ms, x, z=0.0, names=("nose", "left_hip")):
    return PoseResult(
        timestamp_ms=timestamp_ms,
        frame_timestamp_ms=timestamp_ms,
        source_id="src",
        keypoints=[Keypoint(name=name, x=x, y=0.5, z=z, score=0.9) for name in names],
    )


def test_filter_passes_first_sample_through():
    f = OneEuroFilter()
    out = f(np.array([1.0, 2.0]), 0.0)
    assert np.allclose(out, [1.0, 2.0])


def test_filter_lags_behind_a_jump():
    f = OneEuroFilter(min_cutoff=0.5, beta=0.0)
    f(np.array([0.0]), 0.0)
    out = f(np.array([1.0]), 0.1)
    assert 0.0 < out[0] < 1.0


def test_filter_ignores_repeated_timestamp():
    f = OneEuroFilter()
    f(np.array([0.0]), 1.0)
    assert np.allclose(f(np.array([5.0]), 1.0), [0.0])


def test_filter_reset_forgets_history():
    f = OneEuroFilter(beta=0.0)
    f(np.array([0.0]), 0.0)
    f.reset()
    assert np.allclose(f(np.array([1.0]), 0.1), [1.0])


def test_disabled_smoother_is_identity():
    smoother = KeypointSmoother({'enabled': False})
    result = pose_at(0, 0.2)
    assert smoother(result) is result


def test_smoother_moves_keypoints_partially():
    smoother = KeypointSmoother({'enabled': True, 'min_cutoff': 0.5, 'beta': 0.0})
    smoother(pose_at(0, 0.0))
    smoothed = smoother(pose_at(100, 1.0))

    nose = smoothed.get("nose")
    assert 0.0 < nose.x < 1.0
    assert nose.y == pytest.approx(0.5)
    assert nose.score == pytest.approx(0.9)
    assert smoothed.timestamp_ms == 100


def test_smoother_keeps_missing_depth():
    smoother = KeypointSmoother({'enabled': True})
    result = PoseResult(
        timestamp_ms=0, frame_timestamp_ms=0, source_id="src",
        keypoints=[Keypoint(name="nose", x=0.5, y=0.5, score=1.0)],
    )
    assert smoother(result).get("nose").z is None


def test_smoother_restarts_when_layout_changes():
    smoother = KeypointSmoother({'enabled': True, 'beta': 0.0})
    smoother(pose_at(0, 0.0))
    changed = smoother(pose_at(100, 1.0, names=("nose",)))
    assert changed.get("nose").x == pytest.approx(1.0)
