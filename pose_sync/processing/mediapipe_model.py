# pose_sync/processing/mediapipe_model.py
import cv2
import logging
import mediapipe as mp
import numpy as np
from typing import List, Optional
from ..common.models import Keypoint
from .pose_model import PoseModel

logger = logging.getLogger(__name__)

class MediaPipePoseModel(PoseModel):
    """Single-pose MediaPipe estimator emitting all 33 BlazePose landmarks."""

    def __init__(self, config: dict):
        self.config = config
        self.mp_pose = mp.solutions.pose
        self.pose = self.mp_pose.Pose(
            static_image_mode=config['static_image_mode'],
            model_complexity=config['model_complexity'],
            smooth_landmarks=False, # Smoothing happens downstream on sampled timestamps
            enable_segmentation=False,
            min_detection_confidence=config['min_detection_confidence'],
            min_tracking_confidence=config['min_tracking_confidence']
        )
        self._names = [landmark.name.lower() for landmark in self.mp_pose.PoseLandmark]
        logger.info("MediaPipe Pose ready (complexity=%s).", config['model_complexity'])

    def name(self) -> str:
        return "mediapipe_pose"

    def estimate(self, image: np.ndarray) -> Optional[List[Keypoint]]:
        frame_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        frame_rgb.flags.writeable = False # Performance optimization

        results = self.pose.process(frame_rgb)

        if not results.pose_landmarks:
            return None

        return [
            Keypoint(
                name=self._names[i],
                x=float(lm.x),
                y=float(lm.y),
                z=float(lm.z),
                score=min(1.0, max(0.0, float(lm.visibility))),
            )
            for i, lm in enumerate(results.pose_landmarks.landmark)
        ]

    def close(self) -> None:
        self.pose.close()
