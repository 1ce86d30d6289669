"""Configuration loading for the dataset pipeline."""

from .settings import (
    DEFAULT_EXTENSIONS,
    DEFAULT_MAX_FILE_SIZE,
    PipelineConfig,
    apply_overrides,
    build_config,
    config_from_env,
    load_pipeline_config,
)
