"""Knowledge-base retrieval package."""

from .config import ChunkingConfig, CorrectiveConfig, FallbackConfig, RerankConfig, SearchConfig
from .pipeline import RAGPipeline

__all__ = [
    "ChunkingConfig",
    "CorrectiveConfig",
    "FallbackConfig",
    "RAGPipeline",
    "RerankConfig",
    "SearchConfig",
]
