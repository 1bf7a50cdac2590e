# pose_sync/processing/keypoint_smoother.py
import numpy as np
from ..common.models import PoseResult
from .one_euro_filter import OneEuroFilter

class KeypointSmoother:
    """Applies One-Euro smoothing to the coordinates of consecutive PoseResults.

    Time is taken from the sampled timestamp, so smoothing follows playback
    position rather than wall time. Call `reset()` whenever the sequence of
    samples is interrupted (new pass or new source).
    """

    def __init__(self, config: dict):
        self.enabled = config.get('enabled', False)
        self.filter = OneEuroFilter(
            min_cutoff=config.get('min_cutoff', 0.5),
            beta=config.get('beta', 0.05),
            d_cutoff=config.get('d_cutoff', 1.0),
        )
        self._names = None

    def reset(self):
        self.filter.reset()
        self._names = None

    def __call__(self, result: PoseResult) -> PoseResult:
        if not self.enabled or not result.keypoints:
            return result

        names = [kp.name for kp in result.keypoints]
        if names != self._names:
            # Different keypoint layout, history is meaningless.
            self.filter.reset()
            self._names = names

        coords = np.array([[kp.x, kp.y, kp.z if kp.z is not None else 0.0] for kp in result.keypoints])
        smoothed = self.filter(coords, result.timestamp_ms / 1000.0)

        keypoints = [
            kp.model_copy(update={
                'x': float(row[0]),
                'y': float(row[1]),
                'z': float(row[2]) if kp.z is not None else None,
            })
            for kp, row in zip(result.keypoints, smoothed)
        ]
        return result.model_copy(update={'keypoints': keypoints})
