"""High-level exports for the indexing workflows."""

from .batch import BatchRunner, RunReport
from .buckets import bucket_for, should_skip
from .entity_cache import CacheFormatError, EntityCache, EntitySummary
from .indexer import EvaluationFailure, Indexer, Outcome
from .ord_client import OrdClient
from .runner import load_ids, run_collection
from .settings import IndexerSettings, load_settings
from .simulation import PetSimulation, SimulationLoadError, load_simulation_factory
from .status import build_status, load_cache_document, write_status
from .web_fetch import (
    ContentCache,
    FetchConfig,
    FetchMetrics,
    FetchResponse,
    HTTPStatusError,
    RetryingFetcher,
    TransportFailure,
)

__all__ = [
    "BatchRunner",
    "RunReport",
    "bucket_for",
    "should_skip",
    "CacheFormatError",
    "EntityCache",
    "EntitySummary",
    "EvaluationFailure",
    "Indexer",
    "Outcome",
    "OrdClient",
    "load_ids",
    "run_collection",
    "IndexerSettings",
    "load_settings",
    "PetSimulation",
    "SimulationLoadError",
    "load_simulation_factory",
    "build_status",
    "load_cache_document",
    "write_status",
    "ContentCache",
    "FetchConfig",
    "FetchMetrics",
    "FetchResponse",
    "HTTPStatusError",
    "RetryingFetcher",
    "TransportFailure",
]
