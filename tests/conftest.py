import queue
import threading
import time
from concurrent.futures import Future
from functools import partial

import cv2
import numpy as np
import pytest

from pose_sync.common.models import Keypoint, PoseResult
from pose_sync.pipeline.pose_sync_pipeline import PoseSyncPipeline
from pose_sync.pipeline.sinks import CollectingSink
from pose_sync.playback.playback_controller import PlaybackController
from pose_sync.processing.model_runner import ModelRunner
from pose_sync.processing.pose_model import PoseModel
from pose_sync.source.frame_source import open_frame_source


def make_image(index, size=(8, 6)):
    # The first pixel encodes the frame index so models can tell frames apart.
    return np.full((size[1], size[0], 3), index % 256, dtype=np.uint8)


class FakeCapture:
    """Stands in for cv2.VideoCapture over a recorded file."""

    def __init__(self, uri, fps=30.0, frame_count=300, opened=True, bad_frames=(), corrupt_frames=(),
                 broken_seek=False):
        self.uri = uri
        self.fps = fps
        self.frame_count = frame_count
        self.opened = opened
        self.bad_frames = set(bad_frames)
        self.corrupt_frames = set(corrupt_frames)
        self.broken_seek = broken_seek
        self.pos = 0
        self.props = {}
        self.seeks = []
        self.grabs = 0
        self.retrieves = 0
        self.released = False
        self._grabbed = None

    def isOpened(self):
        return self.opened

    def get(self, prop):
        if prop == cv2.CAP_PROP_FPS:
            return self.fps
        if prop == cv2.CAP_PROP_FRAME_COUNT:
            return self.frame_count
        return self.props.get(prop, 0.0)

    def set(self, prop, value):
        if prop == cv2.CAP_PROP_POS_FRAMES:
            if self.broken_seek:
                raise cv2.error("seek failed")
            self.pos = int(value)
            self.seeks.append(int(value))
        else:
            self.props[prop] = value
        return True

    def grab(self):
        if self.pos >= self.frame_count:
            return False
        self._grabbed = self.pos
        self.pos += 1
        self.grabs += 1
        return True

    def retrieve(self):
        self.retrieves += 1
        if self._grabbed in self.corrupt_frames:
            raise cv2.error("corrupt packet")
        if self._grabbed is None or self._grabbed in self.bad_frames:
            return False, None
        return True, make_image(self._grabbed)

    def release(self):
        self.released = True


class FakeLiveCapture(FakeCapture):
    """A camera that produces a new frame every millisecond."""

    def __init__(self, uri):
        super().__init__(uri, frame_count=0)
        self._counter = 0

    def grab(self):
        time.sleep(0.001)
        self._counter += 1
        return True

    def retrieve(self):
        return True, make_image(self._counter)


class FakePoseModel(PoseModel):
    """Records which frames it saw; can fail, find nobody, or block on a gate."""

    def __init__(self, fail_on=(), no_pose_on=(), gate=None):
        self.fail_on = set(fail_on)
        self.no_pose_on = set(no_pose_on)
        self.gate = gate
        self.started = threading.Event()
        self.calls = []
        self.closed = False

    def name(self):
        return "fake_pose"

    def estimate(self, image):
        index = int(image[0, 0, 0])
        self.calls.append(index)
        self.started.set()
        if self.gate is not None:
            assert self.gate.wait(timeout=5), "test never released the model gate"
        if index in self.fail_on:
            raise RuntimeError(f"model exploded on frame {index}")
        if index in self.no_pose_on:
            return None
        return [
            Keypoint(name="nose", x=0.5, y=0.25, z=0.0, score=0.9),
            Keypoint(name="left_hip", x=0.4, y=0.6, z=0.0, score=0.8),
            Keypoint(name="right_hip", x=0.6, y=0.6, z=0.0, score=0.3),
        ]

    def close(self):
        self.closed = True


class ManualRunner:
    """A runner whose futures are completed by the test, in any order."""

    def __init__(self):
        self.model_version = 1
        self.is_busy = False
        self.submitted = []

    def submit(self, frame):
        future = Future()
        self.submitted.append((frame, future))
        return future

    def complete(self, index):
        frame, future = self.submitted[index]
        future.set_result(PoseResult(
            timestamp_ms=frame.timestamp_ms,
            frame_timestamp_ms=frame.timestamp_ms,
            source_id=frame.source_id,
            model_version=self.model_version,
            keypoints=[Keypoint(name="nose", x=0.5, y=0.5, score=1.0)],
        ))


@pytest.fixture
def captures():
    """Every FakeCapture created through `source_opener`, in creation order."""
    return []


@pytest.fixture
def capture_options():
    return {}


@pytest.fixture
def source_opener(captures, capture_options):
    def factory(uri):
        if uri == "camera":
            cap = FakeLiveCapture(uri)
        else:
            cap = FakeCapture(uri, opened=uri != "missing.mp4", **capture_options)
        captures.append(cap)
        return cap
    return partial(open_frame_source, capture_factory=factory)


@pytest.fixture
def fake_model():
    return FakePoseModel()


@pytest.fixture
def runner(fake_model):
    runner = ModelRunner({}, model_factory=lambda config: fake_model)
    runner.load().result(timeout=5)
    yield runner
    runner.close()


@pytest.fixture
def controller():
    return PlaybackController(queue.Queue())


@pytest.fixture
def sink():
    return CollectingSink(keep_frames=True)


@pytest.fixture
def make_pipeline(runner, controller, sink, source_opener):
    pipelines = []

    def build(**kwargs):
        kwargs.setdefault("source_opener", source_opener)
        pipeline = PoseSyncPipeline(kwargs.pop("runner", runner), controller.events, sink, **kwargs)
        pipelines.append(pipeline)
        return pipeline

    yield build
    for pipeline in pipelines:
        pipeline.close()


def drain(events):
    items = []
    while True:
        try:
            items.append(events.get_nowait())
        except queue.Empty:
            return items
