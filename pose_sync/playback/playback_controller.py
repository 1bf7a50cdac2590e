# pose_sync/playback/playback_controller.py
import queue
import logging
import threading
from typing import Optional
from ..common.enums import PlaybackEventKind, PlaybackStatus
from ..common.models import PlaybackEvent, PlaybackState, VideoHandle

logger = logging.getLogger(__name__)

class PlaybackController:
    """Owns play/pause/seek state and the current position of the video under review.

    All transitions are synchronous. Every change is pushed as a PlaybackEvent
    onto `events`, which is the only channel downstream consumers read from.
    Decoder status updates may arrive from any thread.
    """

    def __init__(self, events: Optional[queue.Queue] = None):
        self.events = events if events is not None else queue.Queue()
        self._lock = threading.Lock()
        self._state = PlaybackState()
        self._sequence = 0
        self._transport_generation = 0

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def transport_generation(self) -> int:
        """Incremented on every transport command that moves the playhead or its rate."""
        return self._transport_generation

    def _emit(self, kind: PlaybackEventKind, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        self._sequence += 1
        self.events.put(PlaybackEvent(kind=kind, state=self._state, sequence=self._sequence))

    @staticmethod
    def _clamp(position_ms: int, duration_ms: Optional[int]) -> int:
        position_ms = int(position_ms)
        if duration_ms is not None:
            position_ms = min(position_ms, duration_ms)
        return max(0, position_ms)

    def set_source(self, handle: Optional[VideoHandle], duration_ms: Optional[int] = None) -> None:
        """Replaces the current source and resets the transport to STOPPED."""
        if duration_ms is not None and duration_ms < 0:
            raise ValueError(f"duration_ms must be non-negative, got {duration_ms}")
        with self._lock:
            previous = self._state.source
            self._transport_generation += 1
            self._emit(
                PlaybackEventKind.SOURCE_CHANGED,
                status=PlaybackStatus.STOPPED,
                position_ms=0,
                duration_ms=duration_ms,
                source=handle,
            )
        if previous is not None:
            logger.info("Released source %s (%s).", previous.source_id, previous.uri)
        if handle is not None:
            logger.info("Source set to %s (%s, live=%s).", handle.source_id, handle.uri, handle.is_live)

    def close(self) -> bool:
        if self._state.source is None:
            return False
        self.set_source(None)
        return True

    def play(self) -> bool:
        with self._lock:
            status = self._state.status
            if self._state.source is None or status in (PlaybackStatus.PLAYING, PlaybackStatus.SEEKING):
                return False
            if status == PlaybackStatus.ENDED:
                self._seek(0, resume=True)
                return True
            self._transport_generation += 1
            self._emit(PlaybackEventKind.STATUS_CHANGED, status=PlaybackStatus.PLAYING)
            return True

    def pause(self) -> bool:
        with self._lock:
            if self._state.status != PlaybackStatus.PLAYING:
                return False
            self._transport_generation += 1
            self._emit(PlaybackEventKind.STATUS_CHANGED, status=PlaybackStatus.PAUSED)
            return True

    def toggle(self) -> bool:
        if self._state.is_playing:
            return self.pause()
        return self.play()

    def seek(self, position_ms: int) -> bool:
        """Moves the playhead: SEEKING, then PLAYING if it was playing, else PAUSED."""
        with self._lock:
            source = self._state.source
            if source is None:
                return False
            if source.is_live:
                logger.debug("Ignoring seek on live source %s.", source.source_id)
                return False
            self._seek(position_ms, resume=self._state.status == PlaybackStatus.PLAYING)
            return True

    def _seek(self, position_ms: int, resume: bool) -> None:
        target = self._clamp(position_ms, self._state.duration_ms)
        self._transport_generation += 1
        self._emit(PlaybackEventKind.STATUS_CHANGED, status=PlaybackStatus.SEEKING, position_ms=target)
        self._emit(
            PlaybackEventKind.STATUS_CHANGED,
            status=PlaybackStatus.PLAYING if resume else PlaybackStatus.PAUSED,
        )

    def on_decoder_status(self, source_id: str, position_ms: int,
                          duration_ms: Optional[int] = None, did_just_finish: bool = False) -> bool:
        """Applies a position/duration report from the decoder.

        Reports for a source other than the current one are discarded.
        """
        with self._lock:
            state = self._state
            if state.source is None or source_id != state.source_id:
                logger.debug("Discarding stale decoder update for source %s.", source_id)
                return False

            duration = state.duration_ms
            if duration_ms is not None and duration_ms >= 0:
                duration = int(duration_ms)
            self._emit(
                PlaybackEventKind.POSITION_UPDATED,
                position_ms=self._clamp(position_ms, duration),
                duration_ms=duration,
            )
            if did_just_finish and state.status == PlaybackStatus.PLAYING:
                self._emit(PlaybackEventKind.STATUS_CHANGED, status=PlaybackStatus.ENDED)
            return True

    def on_end_of_stream(self, source_id: str) -> bool:
        with self._lock:
            if source_id != self._state.source_id or self._state.status != PlaybackStatus.PLAYING:
                return False
            self._emit(PlaybackEventKind.STATUS_CHANGED, status=PlaybackStatus.ENDED)
        logger.info("Playback of %s ended.", source_id)
        return True
