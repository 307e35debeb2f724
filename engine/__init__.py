from .core import (
    PipelineConfig,
    build_pipeline_config,
    load_config,
    load_runtime_config,
    validate_config,
)
from .paths import EnginePaths
from .runtime import get_runtime_info

__all__ = [
    "EnginePaths",
    "PipelineConfig",
    "build_pipeline_config",
    "get_runtime_info",
    "load_config",
    "load_runtime_config",
    "validate_config",
]
