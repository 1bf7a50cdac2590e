# pose_sync/playback/playback_clock.py
import time
from typing import Callable, Optional
from .playback_controller import PlaybackController

class PlaybackClock:
    """Reports playback position from wall time, standing in for a media player callback.

    The clock re-anchors whenever the controller's transport generation
    changes (play, pause, seek, new source).
    """

    def __init__(self, controller: PlaybackController, rate: float = 1.0,
                 time_fn: Callable[[], float] = time.perf_counter):
        self.controller = controller
        self.rate = rate
        self._time_fn = time_fn
        self._anchor = None

    def tick(self) -> Optional[int]:
        """Pushes the current position to the controller; returns it, or None when not playing."""
        state = self.controller.state
        if not state.is_playing:
            self._anchor = None
            return None

        now = self._time_fn()
        generation = self.controller.transport_generation
        if self._anchor is None or self._anchor[0] != generation:
            self._anchor = (generation, now, state.position_ms)
        _, started_at, start_position = self._anchor

        position = start_position + int((now - started_at) * 1000 * self.rate)
        self.controller.on_decoder_status(state.source_id, position)

        duration = state.duration_ms
        if duration is not None and position >= duration:
            self.controller.on_end_of_stream(state.source_id)
        return position
