# pose_sync/common/enums.py
from enum import Enum

class PlaybackStatus(str, Enum):
    """Defines the transport state of the PlaybackController."""
    STOPPED = "STOPPED"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    SEEKING = "SEEKING"
    ENDED = "ENDED"

class PlaybackEventKind(str, Enum):
    """What caused a PlaybackEvent to be emitted."""
    SOURCE_CHANGED = "SOURCE_CHANGED"
    STATUS_CHANGED = "STATUS_CHANGED"
    POSITION_UPDATED = "POSITION_UPDATED"

class ModelState(str, Enum):
    """Lifecycle of the model owned by a ModelRunner."""
    UNLOADED = "UNLOADED"
    LOADING = "LOADING"
    READY = "READY"
    FAILED = "FAILED"

class LogLevel(str, Enum):
    """Defines logging levels for structured logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
