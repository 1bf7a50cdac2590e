# pose_sync/common/errors.py
"""Error taxonomy of the pose sync engine.

Session-level errors (SourceUnavailable, ModelLoadFailure) are reported to the
owning application. Per-sample errors (DecodeFailure, InferenceFailure,
ModelNotReady) are absorbed by the pipeline, which skips the sample.
"""


class PoseSyncError(Exception):
    """Base class for every error raised by the engine."""


class SourceUnavailable(PoseSyncError, IOError):
    """The video source could not be opened (missing file, denied device)."""


class DecodeFailure(PoseSyncError):
    """A single frame could not be decoded."""


class ModelLoadFailure(PoseSyncError):
    """The pose model failed to initialize."""


class ModelNotReady(PoseSyncError):
    """Inference was requested before the model finished loading."""


class InferenceFailure(PoseSyncError):
    """A single inference call failed."""


class EndOfStream(Exception):
    """Raised by a frame source when no more frames can be produced."""


class ConfigError(PoseSyncError, ValueError):
    """The configuration file holds invalid values."""
