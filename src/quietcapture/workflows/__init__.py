"""High-level exports for the enrichment workflows."""

from .enrich_config import EnrichConfig
from .errors import (
    EnrichmentError,
    FetchError,
    IllegalTransition,
    ParseError,
    ResolutionExhausted,
    ValidationTimeout,
)
from .image_probe import ImageValidator
from .meta_cache import CacheEntry, EnrichmentCache
from .orchestrator import EnrichmentOrchestrator
from .page_fetch import PageCandidates, PageFetcher, extract_candidates
from .resolver import MetadataResolver, ResolvedMetadata, StrategyOutcome
from .store import Bucket, CaptureItem, CaptureStore, MetaStatus
from .titles import extract_best_title, infer_title_from_url, normalize_title

__all__ = [
    "Bucket",
    "CacheEntry",
    "CaptureItem",
    "CaptureStore",
    "EnrichConfig",
    "EnrichmentCache",
    "EnrichmentError",
    "EnrichmentOrchestrator",
    "FetchError",
    "IllegalTransition",
    "ImageValidator",
    "MetaStatus",
    "MetadataResolver",
    "PageCandidates",
    "PageFetcher",
    "ParseError",
    "ResolutionExhausted",
    "ResolvedMetadata",
    "StrategyOutcome",
    "ValidationTimeout",
    "extract_best_title",
    "extract_candidates",
    "infer_title_from_url",
    "normalize_title",
]
