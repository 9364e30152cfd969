"""dhis2-sqlview -- fetch, normalize, cache and score DHIS2 SQL view results."""

from dhis2_sqlview.cache import Flight, ResultCacheStore, SingleFlight
from dhis2_sqlview.config import MAX_PAGES, PipelineSettings
from dhis2_sqlview.dhis2 import Dhis2Client, Dhis2Credentials, get_dhis2_credentials
from dhis2_sqlview.errors import (
    ExecutionCancelled,
    InvalidUid,
    MissingParameter,
    PageLimitExceeded,
    SqlViewError,
    UnrecognizedResponseShape,
    UpstreamError,
)
from dhis2_sqlview.executor import SqlViewExecutor, fingerprint
from dhis2_sqlview.models import (
    CacheEntry,
    CanonicalTable,
    ExecutionRequest,
    ExecutionResult,
    MetadataKind,
    ProgressEvent,
)
from dhis2_sqlview.normalizer import detect_shape, normalize
from dhis2_sqlview.parameters import build_parameters, extract_placeholders

__all__ = [
    "MAX_PAGES",
    "CacheEntry",
    "CanonicalTable",
    "Dhis2Client",
    "Dhis2Credentials",
    "ExecutionCancelled",
    "ExecutionRequest",
    "ExecutionResult",
    "Flight",
    "InvalidUid",
    "MetadataKind",
    "MissingParameter",
    "PageLimitExceeded",
    "PipelineSettings",
    "ProgressEvent",
    "ResultCacheStore",
    "SingleFlight",
    "SqlViewError",
    "SqlViewExecutor",
    "UnrecognizedResponseShape",
    "UpstreamError",
    "build_parameters",
    "detect_shape",
    "extract_placeholders",
    "fingerprint",
    "get_dhis2_credentials",
    "normalize",
]
