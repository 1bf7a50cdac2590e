# pose_sync/common/models.py
import uuid
import numpy as np
from pydantic import BaseModel, Field
from typing import List, Optional, Union
from .enums import PlaybackStatus, PlaybackEventKind

def _new_source_id() -> str:
    return uuid.uuid4().hex

class VideoHandle(BaseModel):
    """Opaque reference to a playable source: a file/URL or a live capture device."""
    uri: Union[int, str]
    is_live: bool = False
    source_id: str = Field(default_factory=_new_source_id)

    class Config:
        frozen = True

class Frame(BaseModel):
    """A decoded BGR image plus its presentation timestamp."""
    image: np.ndarray
    timestamp_ms: int
    frame_index: int
    source_id: str

    class Config:
        arbitrary_types_allowed = True

class Keypoint(BaseModel):
    """A named body joint, normalized to frame dimensions."""
    name: str
    x: float
    y: float
    z: Optional[float] = None
    score: float = Field(ge=0.0, le=1.0)

    class Config:
        frozen = True

class PoseResult(BaseModel):
    """Keypoints of the single pose inferred for one sampled frame."""
    timestamp_ms: int
    frame_timestamp_ms: int
    source_id: str
    pass_index: int = 0
    model_version: int = 0
    inference_time_ms: float = 0.0
    keypoints: List[Keypoint] = Field(default_factory=list)

    def get(self, name: str) -> Optional[Keypoint]:
        for keypoint in self.keypoints:
            if keypoint.name == name:
                return keypoint
        return None

class PlaybackState(BaseModel):
    """Snapshot of the transport. duration_ms is None until the source reports it."""
    status: PlaybackStatus = PlaybackStatus.STOPPED
    position_ms: int = 0
    duration_ms: Optional[int] = None
    source: Optional[VideoHandle] = None

    class Config:
        frozen = True

    @property
    def is_playing(self) -> bool:
        return self.status == PlaybackStatus.PLAYING

    @property
    def source_id(self) -> Optional[str]:
        return self.source.source_id if self.source is not None else None

class PlaybackEvent(BaseModel):
    """A PlaybackState change pushed onto the controller's event queue."""
    kind: PlaybackEventKind
    state: PlaybackState
    sequence: int

    class Config:
        frozen = True
