# pose_sync/source/frame_source.py
import cv2
import time
import logging
import threading
import numpy as np
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Optional
from ..common.models import Frame, VideoHandle
from ..common.errors import DecodeFailure, EndOfStream, SourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_CONFIG = {
    'resolution': None,
    'target_fps': None,
    'buffer_size': 5,
    'seek_threshold_frames': 30,
}

class FrameSource(ABC):
    """A decodable video yielding timestamped frames on request."""

    def __init__(self, handle: VideoHandle):
        self.handle = handle

    @property
    def source_id(self) -> str:
        return self.handle.source_id

    @property
    def duration_ms(self) -> Optional[int]:
        return None

    @abstractmethod
    def next_frame(self, at_or_after_ms: int) -> Frame:
        """Returns a frame for the requested position.

        Raises EndOfStream when the source is exhausted and DecodeFailure when
        a single frame cannot be produced.
        """

    def restart(self, at_ms: int) -> None:
        """Begins a new forward pass at `at_ms`. Live sources ignore this."""

    @abstractmethod
    def get_stats(self) -> dict: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FileFrameSource(FrameSource):
    """Decodes the frame nearest a requested timestamp from a recorded file.

    Within one forward pass the decoder never moves backward: a request for a
    position before the last decoded frame returns that frame again. Call
    `restart()` after a seek to begin a new pass.
    """

    def __init__(self, handle: VideoHandle, cap, config: dict):
        super().__init__(handle)
        self._cap = cap
        self._seek_threshold = config['seek_threshold_frames']

        fps = cap.get(cv2.CAP_PROP_FPS)
        if not fps or fps < 1e-3:
            cap.release()
            raise SourceUnavailable(f"Video source reports no frame rate: {handle.uri}")
        self._fps = float(fps)
        self._frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)

        self._next_index = 0 # index the next grab() will decode
        self._last_index = -1
        self._last_image = None
        self._decoded_frames = 0
        self._decode_failures = 0
        self._container_seeks = 0

    @property
    def fps(self) -> float:
        return self._fps

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def duration_ms(self) -> Optional[int]:
        if self._frame_count <= 0:
            return None
        return self._timestamp_of(self._frame_count)

    def _timestamp_of(self, index: int) -> int:
        return int(round(index * 1000.0 / self._fps))

    def _index_of(self, timestamp_ms: int) -> int:
        return int(round(max(0, timestamp_ms) * self._fps / 1000.0))

    def _make_frame(self, index: int, image: np.ndarray) -> Frame:
        return Frame(
            image=image.copy(),
            timestamp_ms=self._timestamp_of(index),
            frame_index=index,
            source_id=self.source_id,
        )

    def next_frame(self, at_or_after_ms: int) -> Frame:
        target = self._index_of(at_or_after_ms)
        duration_ms = self.duration_ms
        if duration_ms is not None:
            if at_or_after_ms >= duration_ms:
                raise EndOfStream(f"{at_or_after_ms} ms is past the end of {self.handle.uri}")
            # The last half-frame rounds past the end; it still belongs to the last frame.
            target = min(target, self._frame_count - 1)

        try:
            return self._read(target)
        except cv2.error as e:
            self._decode_failures += 1
            raise DecodeFailure(f"Decoder error near frame {target} of {self.handle.uri}: {e}") from e

    def _read(self, target: int) -> Frame:
        if target <= self._last_index and self._last_image is not None:
            return self._make_frame(self._last_index, self._last_image)

        target = max(target, self._next_index)
        if target - self._next_index > self._seek_threshold:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, target)
            self._next_index = target
            self._container_seeks += 1

        # Skip intermediate frames without paying for a full decode.
        while self._next_index < target:
            if not self._cap.grab():
                raise EndOfStream(f"Decoder exhausted at frame {self._next_index}")
            self._next_index += 1

        if not self._cap.grab():
            raise EndOfStream(f"Decoder exhausted at frame {self._next_index}")
        index = self._next_index
        self._next_index += 1

        ret, image = self._cap.retrieve()
        if not ret or image is None:
            self._decode_failures += 1
            raise DecodeFailure(f"Failed to decode frame {index} of {self.handle.uri}")

        self._decoded_frames += 1
        self._last_index = index
        self._last_image = image
        return self._make_frame(index, image)

    def restart(self, at_ms: int) -> None:
        target = self._index_of(at_ms)
        if self._frame_count > 0:
            target = min(target, self._frame_count - 1)
        self._last_index = -1
        self._last_image = None
        try:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, target)
        except cv2.error as e:
            raise DecodeFailure(f"Cannot seek {self.handle.uri} to frame {target}: {e}") from e
        self._next_index = target
        logger.debug("File source %s restarted at frame %d", self.source_id, target)

    def get_stats(self) -> dict:
        return {
            "fps": self._fps,
            "frame_count": self._frame_count,
            "decoded_frames": self._decoded_frames,
            "decode_failures": self._decode_failures,
            "container_seeks": self._container_seeks,
        }

    def close(self) -> None:
        self._cap.release()
        logger.info("File source %s released.", self.source_id)


class LiveFrameSource(FrameSource):
    """Manages non-blocking camera I/O in a separate thread.

    `next_frame` ignores its timestamp hint and always returns the most recent
    frame; frames captured while the consumer is busy are dropped.
    """

    def __init__(self, handle: VideoHandle, cap, config: dict):
        super().__init__(handle)
        self._cap = cap
        resolution = config.get('resolution')
        if resolution:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])
        if config.get('target_fps'):
            self._cap.set(cv2.CAP_PROP_FPS, config['target_fps'])

        self._buffer = deque(maxlen=config['buffer_size'])
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._update, name="live-capture", daemon=True)
        self._running = False
        self._frame_id = 0
        self._dropped_frames = 0
        self._started_at = time.perf_counter()

    def start(self) -> "LiveFrameSource":
        self._started_at = time.perf_counter()
        self._running = True
        self._thread.start()
        logger.info("Live source %s started.", self.source_id)
        return self

    def _update(self):
        """The frame-grabbing loop running in a dedicated thread."""
        while self._running:
            grabbed = self._cap.grab()
            if not grabbed:
                self._dropped_frames += 1
                time.sleep(0.01)
                continue

            ret, image = self._cap.retrieve()
            if ret:
                timestamp_ms = int((time.perf_counter() - self._started_at) * 1000)
                with self._lock:
                    self._frame_id += 1
                    self._buffer.append((image, self._frame_id, timestamp_ms))
            else:
                self._dropped_frames += 1

    def next_frame(self, at_or_after_ms: int) -> Frame:
        if not self._running:
            raise EndOfStream(f"Live source {self.source_id} is closed")
        with self._lock:
            if not self._buffer:
                raise DecodeFailure("No frame captured yet")
            image, frame_id, timestamp_ms = self._buffer[-1]
        return Frame(image=image.copy(), timestamp_ms=timestamp_ms, frame_index=frame_id, source_id=self.source_id)

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return {
            "is_running": self.is_running(),
            "buffer_size": len(self._buffer),
            "captured_frames": self._frame_id,
            "dropped_frames": self._dropped_frames,
            "actual_resolution": (self._cap.get(cv2.CAP_PROP_FRAME_WIDTH), self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        }

    def close(self) -> None:
        if self._running:
            self._running = False
            self._thread.join()
        self._cap.release()
        logger.info("Live source %s stopped and resources released.", self.source_id)


def open_frame_source(handle: VideoHandle, config: Optional[dict] = None,
                      capture_factory: Callable = cv2.VideoCapture) -> FrameSource:
    """Opens `handle` for decoding; raises SourceUnavailable when it cannot be opened."""
    config = {**DEFAULT_SOURCE_CONFIG, **(config or {})}
    try:
        cap = capture_factory(handle.uri)
    except cv2.error as e:
        raise SourceUnavailable(f"Cannot open video source: {handle.uri}") from e
    if not cap.isOpened():
        cap.release()
        raise SourceUnavailable(f"Cannot open video source: {handle.uri}")

    if handle.is_live:
        return LiveFrameSource(handle, cap, config).start()
    source = FileFrameSource(handle, cap, config)
    logger.info("Opened %s (%.2f fps, %d frames).", handle.uri, source.fps, source.frame_count)
    return source
