"""Provider implementations."""

from .base import ContentGenerator, GeneratorCapabilities
from .deepseek import DeepSeekContentGenerator

__all__ = [
    "ContentGenerator",
    "DeepSeekContentGenerator",
    "GeneratorCapabilities",
]
