# pose_sync/pipeline/sinks.py
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Tuple
from ..common.models import Frame, PoseResult

logger = logging.getLogger(__name__)

class ResultsSink(ABC):
    """Consumer of published pose results.

    `publish` is called from the inference worker thread, in non-decreasing
    sampled-timestamp order within a pass. Samples may be missing.
    The frame is only valid for the duration of the call; copy it to keep it.
    """

    @abstractmethod
    def publish(self, result: PoseResult, frame: Frame) -> None: ...


class CollectingSink(ResultsSink):
    """Keeps every published result in memory."""

    def __init__(self, keep_frames: bool = False):
        self.keep_frames = keep_frames
        self._lock = threading.Lock()
        self._results: List[PoseResult] = []
        self._frames: List[Frame] = []

    def publish(self, result: PoseResult, frame: Frame) -> None:
        with self._lock:
            self._results.append(result)
            if self.keep_frames:
                self._frames.append(frame.model_copy(update={'image': frame.image.copy()}))

    @property
    def results(self) -> List[PoseResult]:
        with self._lock:
            return list(self._results)

    @property
    def frames(self) -> List[Frame]:
        with self._lock:
            return list(self._frames)

    def timestamps(self) -> List[Tuple[str, int]]:
        with self._lock:
            return [(r.source_id, r.timestamp_ms) for r in self._results]

    def clear(self) -> None:
        with self._lock:
            self._results.clear()
            self._frames.clear()


class LoggingSink(ResultsSink):
    """Logs a one-line summary of every result."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def publish(self, result: PoseResult, frame: Frame) -> None:
        if not logger.isEnabledFor(self.level):
            return
        confident = sum(1 for kp in result.keypoints if kp.score >= 0.5)
        logger.log(
            self.level,
            "pose @%d ms (frame %d ms): %d/%d keypoints confident, %.1f ms inference",
            result.timestamp_ms, result.frame_timestamp_ms, confident,
            len(result.keypoints), result.inference_time_ms,
        )
