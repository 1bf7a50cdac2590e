# pose_sync/pipeline/pose_sync_pipeline.py
import queue
import logging
import threading
from concurrent.futures import CancelledError, Future
from functools import partial
from typing import Callable, NamedTuple, Optional
from ..common.enums import PlaybackEventKind, PlaybackStatus
from ..common.errors import (
    DecodeFailure, EndOfStream, InferenceFailure, ModelLoadFailure, ModelNotReady,
    PoseSyncError, SourceUnavailable,
)
from ..common.models import Frame, PlaybackEvent, VideoHandle
from ..processing.keypoint_smoother import KeypointSmoother
from ..processing.model_runner import ModelRunner
from ..source.frame_source import FrameSource, open_frame_source
from .sinks import ResultsSink

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_CONFIG = {
    'min_sample_interval_ms': 0,
    'event_poll_interval_s': 0.05,
    'smoothing': {'enabled': False},
}

class _Sample(NamedTuple):
    source_id: str
    pass_index: int
    sampled_ms: int
    frame: Frame

class PoseSyncPipeline:
    """Binds frame sampling to playback position and publishes time-ordered pose results.

    PlaybackEvents read from `events` are the only trigger: each position
    update received while playing samples the frame at that position and
    submits it to the ModelRunner, unless an inference is already in flight.

    Every sample is tagged with the source identity and the playback pass
    (a pass starts with each new source and each seek). When an inference
    completes, its result is discarded if the source or pass has changed in
    the meantime, and dropped if a result for a later position was already
    published. Per-sample failures are logged and skipped.
    """

    def __init__(self, runner: ModelRunner, events: queue.Queue, sink: ResultsSink,
                 config: Optional[dict] = None,
                 source_config: Optional[dict] = None,
                 source_opener: Callable[..., FrameSource] = open_frame_source,
                 on_session_error: Optional[Callable[[PoseSyncError], None]] = None,
                 on_source_opened: Optional[Callable[[VideoHandle, FrameSource], None]] = None,
                 on_end_of_stream: Optional[Callable[[str], None]] = None):
        self.config = {**DEFAULT_PIPELINE_CONFIG, **(config or {})}
        self.runner = runner
        self.events = events
        self.sink = sink
        self._source_config = source_config
        self._source_opener = source_opener
        self._on_session_error = on_session_error
        self._on_source_opened = on_source_opened
        self._on_end_of_stream = on_end_of_stream

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0

        self._source: Optional[FrameSource] = None
        self._source_id: Optional[str] = None
        self._pass_index = 0
        self._last_sampled_ms: Optional[int] = None
        self._last_published_ms: Optional[int] = None
        self._model_failure_reported = False
        self._smoother = KeypointSmoother(self.config['smoothing'])

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

        self._stats = {
            "events": 0,
            "published": 0,
            "dropped_busy": 0,
            "throttled": 0,
            "skipped_decode": 0,
            "skipped_not_ready": 0,
            "skipped_inference": 0,
            "discarded_stale": 0,
            "dropped_out_of_order": 0,
            "no_pose": 0,
        }

    @property
    def source(self) -> Optional[FrameSource]:
        return self._source

    @property
    def pass_index(self) -> int:
        return self._pass_index

    # --- Event handling (control thread) ---

    def handle_event(self, event: PlaybackEvent) -> None:
        state = event.state
        with self._lock:
            self._stats["events"] += 1
            if event.kind == PlaybackEventKind.SOURCE_CHANGED:
                self._switch_source(state.source)
                return
            if state.source_id != self._source_id:
                return

            if event.kind == PlaybackEventKind.STATUS_CHANGED and state.status == PlaybackStatus.SEEKING:
                self._begin_pass(state.position_ms)
            elif event.kind == PlaybackEventKind.POSITION_UPDATED and state.is_playing:
                self._sample(state.position_ms)

    def pump(self) -> int:
        """Handles every event currently queued without blocking; returns how many."""
        handled = 0
        while True:
            try:
                event = self.events.get_nowait()
            except queue.Empty:
                return handled
            self.handle_event(event)
            handled += 1

    def _switch_source(self, handle: Optional[VideoHandle]) -> None:
        self._close_source()
        self._source_id = handle.source_id if handle is not None else None
        self._reset_pass()
        if handle is None:
            return

        try:
            self._source = self._source_opener(handle, self._source_config)
        except SourceUnavailable as e:
            logger.error("Cannot open source %s: %s", handle.uri, e)
            self._report_session_error(e)
            return

        logger.info("Pipeline bound to source %s.", handle.source_id)
        if self._on_source_opened is not None:
            self._on_source_opened(handle, self._source)

    def _close_source(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None

    def _reset_pass(self) -> None:
        self._pass_index += 1
        self._last_sampled_ms = None
        self._last_published_ms = None
        self._smoother.reset()

    def _begin_pass(self, position_ms: int) -> None:
        self._reset_pass()
        if self._source is not None:
            try:
                self._source.restart(position_ms)
            except DecodeFailure as e:
                logger.warning("Could not reposition source for pass %d: %s", self._pass_index, e)
        logger.debug("Pass %d starts at %d ms.", self._pass_index, position_ms)

    def _sample(self, position_ms: int) -> None:
        if self._source is None:
            return

        interval = self.config['min_sample_interval_ms']
        if interval and self._last_sampled_ms is not None and \
                0 <= position_ms - self._last_sampled_ms < interval:
            self._stats["throttled"] += 1
            return

        if self.runner.is_busy:
            self._stats["dropped_busy"] += 1
            return

        try:
            frame = self._source.next_frame(position_ms)
        except EndOfStream as e:
            logger.info("Source %s reached end of stream: %s", self._source_id, e)
            if self._on_end_of_stream is not None:
                self._on_end_of_stream(self._source_id)
            return
        except DecodeFailure as e:
            self._stats["skipped_decode"] += 1
            logger.warning("Skipping sample at %d ms: %s", position_ms, e)
            return

        try:
            future = self.runner.submit(frame)
        except ModelNotReady as e:
            self._stats["skipped_not_ready"] += 1
            logger.debug("Skipping sample at %d ms: %s", position_ms, e)
            return
        except ModelLoadFailure as e:
            if not self._model_failure_reported:
                self._model_failure_reported = True
                self._report_session_error(e)
            return

        if future is None:
            self._stats["dropped_busy"] += 1
            return

        self._model_failure_reported = False
        self._last_sampled_ms = position_ms
        self._pending += 1
        future.add_done_callback(
            partial(self._on_inference_done, _Sample(self._source_id, self._pass_index, position_ms, frame))
        )

    def _report_session_error(self, error: PoseSyncError) -> None:
        if self._on_session_error is not None:
            self._on_session_error(error)

    # --- Completion (inference worker thread) ---

    def _on_inference_done(self, sample: _Sample, future: Future) -> None:
        with self._lock:
            try:
                self._complete(sample, future)
            finally:
                self._pending -= 1
                self._idle.notify_all()

    def _complete(self, sample: _Sample, future: Future) -> None:
        try:
            result = future.result()
        except CancelledError:
            self._stats["discarded_stale"] += 1
            return
        except InferenceFailure as e:
            self._stats["skipped_inference"] += 1
            logger.warning("Skipping sample at %d ms: %s", sample.sampled_ms, e)
            return

        if sample.source_id != self._source_id or sample.pass_index != self._pass_index:
            self._stats["discarded_stale"] += 1
            return
        if result is None:
            self._stats["no_pose"] += 1
            return
        if result.model_version != self.runner.model_version:
            self._stats["discarded_stale"] += 1
            return
        if self._last_published_ms is not None and sample.sampled_ms < self._last_published_ms:
            self._stats["dropped_out_of_order"] += 1
            return

        result = result.model_copy(update={'timestamp_ms': sample.sampled_ms, 'pass_index': sample.pass_index})
        result = self._smoother(result)
        self._last_published_ms = sample.sampled_ms
        self._stats["published"] += 1
        try:
            self.sink.publish(result, sample.frame)
        except Exception:
            logger.exception("Results sink failed on sample at %d ms.", sample.sampled_ms)

    # --- Lifecycle ---

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every submitted inference has been handled."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def start(self) -> "PoseSyncPipeline":
        """Consumes events on a background thread instead of via pump()."""
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="pose-sync", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        poll = self.config['event_poll_interval_s']
        while not self._stop.is_set():
            try:
                event = self.events.get(timeout=poll)
            except queue.Empty:
                continue
            self.handle_event(event)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def get_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
            stats["pass_index"] = self._pass_index
            stats["in_flight"] = self._pending
            if self._source is not None:
                stats["source"] = self._source.get_stats()
            return stats

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stops consuming events and releases the frame source.

        Inference still in flight completes on the runner but is discarded.
        The ModelRunner is owned by the caller and left running.
        """
        self.stop()
        with self._lock:
            self._close_source()
            self._source_id = None
            self._reset_pass()
        self.wait_idle(timeout)
        logger.info("Pipeline closed. Stats: %s", self._stats)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
