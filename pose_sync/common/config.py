# pose_sync/common/config.py
"""Loads `config.yaml` and validates each section.

Components keep taking plain `config: dict` sections; this module only makes
sure those dicts are complete and well-typed before anything is constructed.
"""
import os
import logging
import yaml
from pydantic import BaseModel, Field, ValidationError
from typing import List, Optional
from .enums import LogLevel
from .errors import ConfigError

logger = logging.getLogger(__name__)

class _Section(BaseModel):
    class Config:
        extra = "forbid"

class SourceConfig(_Section):
    resolution: Optional[List[int]] = None
    target_fps: Optional[int] = None
    buffer_size: int = Field(default=5, ge=1)
    seek_threshold_frames: int = Field(default=30, ge=1)

class ModelConfig(_Section):
    class Config:
        extra = "forbid"
        protected_namespaces = ()

    model_complexity: int = Field(default=1, ge=0, le=2)
    static_image_mode: bool = False
    min_detection_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    min_tracking_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

class SmoothingConfig(_Section):
    enabled: bool = False
    min_cutoff: float = 0.5
    beta: float = 0.05
    d_cutoff: float = 1.0

class PipelineConfig(_Section):
    min_sample_interval_ms: int = Field(default=0, ge=0)
    event_poll_interval_s: float = Field(default=0.05, gt=0.0)
    smoothing: SmoothingConfig = Field(default_factory=SmoothingConfig)

class VisualizationConfig(_Section):
    window_name: str = "Pose Sync"
    draw_landmarks: bool = True
    draw_hud: bool = True
    min_keypoint_score: float = Field(default=0.5, ge=0.0, le=1.0)
    adaptive_lod: bool = True
    lod_threshold_fps: float = 15.0

class LoggingConfig(_Section):
    level: LogLevel = LogLevel.INFO

class AppConfig(_Section):
    source: SourceConfig = Field(default_factory=SourceConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

def default_config() -> dict:
    return AppConfig().model_dump()

def load_config(path: Optional[str] = None) -> dict:
    """Reads a YAML config file and returns validated per-section dicts.

    A missing file yields the defaults. Malformed YAML raises yaml.YAMLError,
    invalid values raise ConfigError.
    """
    if path is None or not os.path.exists(path):
        if path is not None:
            logger.warning("Config file '%s' not found, using defaults.", path)
        return default_config()

    with open(path, 'r') as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")

    try:
        return AppConfig(**raw).model_dump()
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in '{path}': {e}") from e
