"""Override resolution engine: records, durable cache, store clients, resolver."""

from .cache import DurableOverrideCache
from .records import (
    LookupResult,
    LookupStatus,
    OverrideRecord,
    QueryKind,
    RecordType,
    ResolutionOutcome,
    ResolutionStatus,
    normalize_name,
)
from .resolver import OverrideResolver
from .store import (
    MySQLOverrideStore,
    OverrideStore,
    StaticOverrideStore,
    build_override_store,
)

__all__ = [
    "DurableOverrideCache",
    "LookupResult",
    "LookupStatus",
    "MySQLOverrideStore",
    "OverrideRecord",
    "OverrideResolver",
    "OverrideStore",
    "QueryKind",
    "RecordType",
    "ResolutionOutcome",
    "ResolutionStatus",
    "StaticOverrideStore",
    "build_override_store",
    "normalize_name",
]
