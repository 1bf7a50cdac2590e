# pose_sync/processing/pose_model.py
import numpy as np
from abc import ABC, abstractmethod
from typing import List, Optional
from ..common.models import Keypoint

class PoseModel(ABC):
    """Model adapter interface.

    Implementations take a BGR image (H,W,3 uint8) and return the keypoints of
    a single pose, or None when nobody is detected.
    """

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def estimate(self, image: np.ndarray) -> Optional[List[Keypoint]]: ...

    @abstractmethod
    def close(self) -> None: ...
