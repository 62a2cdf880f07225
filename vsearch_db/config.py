from typing import Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

# RediSearch's default English stopword list.
DEFAULT_STOPWORDS: Tuple[str, ...] = (
    "a", "is", "the", "an", "and", "are", "as", "at", "be", "but", "by", "for",
    "if", "in", "into", "it", "no", "not", "of", "on", "or", "such", "that", "their",
    "then", "there", "these", "they", "this", "to", "was", "will", "with",
)


class EngineSettings(BaseSettings):
    """Engine-wide defaults, overridable through ``VSEARCH_*`` environment variables."""
    model_config = SettingsConfigDict(env_prefix="VSEARCH_")

    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef_runtime: int = 10
    hnsw_seed: Optional[int] = None

    # Hybrid queries whose filter leaves at most this many candidates are
    # answered by an exact scan over the candidates instead of graph traversal.
    flat_filter_threshold: int = 1000

    # Rebuild an HNSW graph once tombstones exceed this share of its nodes.
    tombstone_compaction_ratio: float = 0.5

    default_stopwords: Tuple[str, ...] = DEFAULT_STOPWORDS

    query_timeout_seconds: Optional[float] = None
    checksum_algorithm: str = "sha256"

    # Directory for the sqlite write-through store; None keeps everything in memory.
    data_path: Optional[str] = None


settings = EngineSettings()
