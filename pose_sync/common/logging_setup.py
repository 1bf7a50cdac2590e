# pose_sync/common/logging_setup.py
import logging
from typing import Union
from .enums import LogLevel

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"

def configure_logging(level: Union[LogLevel, str] = LogLevel.INFO) -> None:
    """Configures root logging for the application entry point."""
    level = LogLevel(level)
    logging.basicConfig(level=getattr(logging, level.value), format=LOG_FORMAT)
    # MediaPipe and OpenCV are chatty at DEBUG.
    logging.getLogger("absl").setLevel(logging.WARNING)
