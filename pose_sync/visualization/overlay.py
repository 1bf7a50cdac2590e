# pose_sync/visualization/overlay.py
import cv2
import threading
import numpy as np
from typing import Optional, Tuple
from ..common.models import Frame, PlaybackState, PoseResult
from ..pipeline.sinks import ResultsSink

# Pairs of keypoint names joined when drawing the skeleton. Names rather than
# landmark indices keep the overlay usable with any model that names its keypoints.
SKELETON_EDGES = [
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
    ("left_ankle", "left_heel"),
    ("left_heel", "left_foot_index"),
    ("right_ankle", "right_heel"),
    ("right_heel", "right_foot_index"),
    ("nose", "left_eye_inner"),
    ("left_eye_inner", "left_eye"),
    ("left_eye", "left_eye_outer"),
    ("left_eye_outer", "left_ear"),
    ("nose", "right_eye_inner"),
    ("right_eye_inner", "right_eye"),
    ("right_eye", "right_eye_outer"),
    ("right_eye_outer", "right_ear"),
]

def format_ms(ms: Optional[int]) -> str:
    if ms is None:
        return "--:--"
    seconds = ms // 1000
    return f"{seconds // 60:02d}:{seconds % 60:02d}"

class OverlaySink(ResultsSink):
    """Keeps the latest published frame and draws its pose on demand for the display thread."""

    def __init__(self, config: dict):
        self.config = config
        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self._lock = threading.Lock()
        self._latest: Optional[Tuple[np.ndarray, PoseResult]] = None

    def publish(self, result: PoseResult, frame: Frame) -> None:
        image = frame.image.copy()
        with self._lock:
            self._latest = (image, result)

    def latest(self) -> Optional[Tuple[np.ndarray, PoseResult]]:
        with self._lock:
            return self._latest

    def clear(self) -> None:
        with self._lock:
            self._latest = None

    def draw_pose(self, image: np.ndarray, result: PoseResult, dimmed: bool = False) -> None:
        """Draws keypoints above the score threshold and the edges joining them."""
        h, w = image.shape[:2]
        threshold = self.config['min_keypoint_score']
        points = {
            kp.name: (int(kp.x * w), int(kp.y * h))
            for kp in result.keypoints if kp.score >= threshold
        }

        connection_color = (100, 100, 100) if dimmed else (200, 200, 200)
        for a, b in SKELETON_EDGES:
            if a in points and b in points:
                cv2.line(image, points[a], points[b], connection_color, 2, cv2.LINE_AA)
        for point in points.values():
            cv2.circle(image, point, 3, (0, 255, 0), -1, cv2.LINE_AA)

    def render(self, state: PlaybackState, current_fps: float) -> Optional[np.ndarray]:
        """Returns the latest frame with its pose and the HUD drawn on a copy."""
        latest = self.latest()
        if latest is None:
            return None
        image, result = latest
        output_frame = image.copy()

        # Adaptive Level of Detail (LOD)
        lod_reduced = self.config['adaptive_lod'] and current_fps < self.config['lod_threshold_fps']
        if self.config['draw_landmarks']:
            self.draw_pose(output_frame, result, dimmed=lod_reduced)

        if self.config['draw_hud']:
            self._draw_hud(output_frame, state, result, current_fps, lod_reduced)
        return output_frame

    def _draw_hud(self, frame: np.ndarray, state: PlaybackState, result: PoseResult,
                  fps: float, lod_reduced: bool):
        hud_elements = [
            f"{format_ms(state.position_ms)} / {format_ms(state.duration_ms)}  {state.status.value}",
            f"Pose @ {result.timestamp_ms} ms  ({result.inference_time_ms:.1f} ms)",
            f"FPS: {fps:.1f}",
        ]
        if lod_reduced:
            hud_elements.append("LOD: REDUCED")

        for i, text in enumerate(hud_elements):
            cv2.putText(frame, text, (10, 30 + i * 30), self.font, 0.7, (240, 240, 240), 2, cv2.LINE_AA)
