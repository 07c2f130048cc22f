"""Styleforge - train EverArt image models and apply them to photos."""

__version__ = "0.1.0"

from styleforge.core.config import StyleforgeConfig, config
from styleforge.core.tracker import BatchGenerationTracker, BatchResult

__all__ = [
    "BatchGenerationTracker",
    "BatchResult",
    "StyleforgeConfig",
    "config",
]
