# pose_sync/processing/model_runner.py
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional
from ..common.enums import ModelState
from ..common.errors import InferenceFailure, ModelLoadFailure, ModelNotReady
from ..common.models import Frame, PoseResult
from .pose_model import PoseModel

logger = logging.getLogger(__name__)

DEFAULT_MODEL_CONFIG = {
    'model_complexity': 1,
    'static_image_mode': False,
    'min_detection_confidence': 0.5,
    'min_tracking_confidence': 0.5,
}

def _mediapipe_factory(config: dict) -> PoseModel:
    # Deferred so that importing the runner does not pull in MediaPipe.
    from .mediapipe_model import MediaPipePoseModel
    return MediaPipePoseModel(config)

class ModelRunner:
    """Owns the pose model and runs it on a single dedicated worker thread.

    Loading, reloading and inference are all executed by the same worker, so a
    reload always drains the inference in flight before replacing the model.
    At most one inference is accepted at a time; further submissions are
    dropped until it completes.
    """

    def __init__(self, config: Optional[dict] = None,
                 model_factory: Optional[Callable[[dict], PoseModel]] = None):
        self.config = {**DEFAULT_MODEL_CONFIG, **(config or {})}
        self._model_factory = model_factory or _mediapipe_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose-model")
        self._lock = threading.Lock()
        self._state = ModelState.UNLOADED
        self._model: Optional[PoseModel] = None
        self._model_version = 0
        self._load_future: Optional[Future] = None
        self._load_error: Optional[BaseException] = None
        self._inflight: Optional[Future] = None
        self._closed = False

        self._completed = 0
        self._failed = 0
        self._dropped = 0
        self._last_inference_ms = 0.0

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def model_version(self) -> int:
        return self._model_version

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._inflight is not None and not self._inflight.done()

    def load(self) -> Future:
        """Starts loading the model; the returned future resolves to the model version.

        While a load is pending or the model is ready, the existing future is
        returned. After a failure, calling load() again retries.
        """
        with self._lock:
            self._check_open()
            if self._state in (ModelState.LOADING, ModelState.READY):
                return self._load_future
            return self._schedule_load()

    def reload(self) -> Future:
        """Replaces the model once the inference in flight has completed."""
        with self._lock:
            self._check_open()
            if self._state == ModelState.LOADING:
                return self._load_future
            return self._schedule_load()

    def _schedule_load(self) -> Future:
        self._state = ModelState.LOADING
        self._load_error = None
        self._load_future = self._executor.submit(self._load_model)
        return self._load_future

    def _load_model(self) -> int:
        with self._lock:
            previous, self._model = self._model, None
        if previous is not None:
            previous.close()

        start_time = time.perf_counter()
        try:
            model = self._model_factory(self.config)
        except Exception as e:
            with self._lock:
                self._state = ModelState.FAILED
                self._load_error = e
            logger.error("Pose model failed to load: %s", e)
            raise ModelLoadFailure(f"Pose model failed to load: {e}") from e

        with self._lock:
            self._model = model
            self._model_version += 1
            self._state = ModelState.READY
            version = self._model_version
        logger.info("Pose model '%s' v%d loaded in %.0f ms.",
                    model.name(), version, (time.perf_counter() - start_time) * 1000)
        return version

    def submit(self, frame: Frame) -> Optional[Future]:
        """Schedules inference on `frame`.

        Returns a future resolving to a PoseResult (None when no pose was
        found), or None when another inference is still in flight.
        """
        with self._lock:
            self._check_open()
            if self._state == ModelState.FAILED:
                raise ModelLoadFailure("Pose model is unavailable; retry load() first") from self._load_error
            if self._state != ModelState.READY:
                raise ModelNotReady(f"Pose model is {self._state.value.lower()}")
            if self._inflight is not None and not self._inflight.done():
                self._dropped += 1
                return None
            self._inflight = self._executor.submit(self._infer, self._model, self._model_version, frame)
            return self._inflight

    def infer(self, frame: Frame, timeout: Optional[float] = None) -> Optional[PoseResult]:
        """Blocking inference. Raises ModelNotReady when a call is already in flight."""
        future = self.submit(frame)
        if future is None:
            raise ModelNotReady("Another inference is in flight")
        return future.result(timeout=timeout)

    def _infer(self, model: PoseModel, version: int, frame: Frame) -> Optional[PoseResult]:
        start_time = time.perf_counter()
        try:
            keypoints = model.estimate(frame.image)
        except Exception as e:
            with self._lock:
                self._failed += 1
            raise InferenceFailure(f"Inference failed on frame {frame.frame_index}: {e}") from e
        inference_time_ms = (time.perf_counter() - start_time) * 1000

        with self._lock:
            self._completed += 1
            self._last_inference_ms = inference_time_ms

        if keypoints is None:
            return None
        return PoseResult(
            timestamp_ms=frame.timestamp_ms,
            frame_timestamp_ms=frame.timestamp_ms,
            source_id=frame.source_id,
            model_version=version,
            inference_time_ms=inference_time_ms,
            keypoints=keypoints,
        )

    def _release_model(self) -> None:
        with self._lock:
            model, self._model = self._model, None
            self._state = ModelState.UNLOADED
        if model is not None:
            model.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ModelNotReady("ModelRunner has been closed")

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "state": self._state.value,
                "model_version": self._model_version,
                "completed": self._completed,
                "failed": self._failed,
                "dropped": self._dropped,
                "last_inference_ms": self._last_inference_ms,
            }

    def close(self) -> None:
        """Drains pending work, releases the model and stops the worker."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.submit(self._release_model)
        self._executor.shutdown(wait=True)
        logger.info("ModelRunner stopped and model released.")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
