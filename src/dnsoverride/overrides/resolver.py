from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Union

from .cache import DurableOverrideCache
from .records import (
    DEFAULT_OVERRIDE_TTL,
    LookupResult,
    LookupStatus,
    OverrideRecord,
    QueryKind,
    RecordType,
    ResolutionOutcome,
    ResolutionStatus,
    build_answer,
    normalize_name,
)
from .store import OverrideStore

logger = logging.getLogger(__name__)

RESOLVER_MODES = ("cache_first", "store_first")


class OverrideResolver:
    """Answer questions from the override set, chasing CNAMEs to addresses.

    Brief:
      Each hop looks the name up in the durable cache and/or the override store
      (depending on mode), keeps the cache in step with what the store reports,
      and emits one answer RR. ALIAS hops continue with the target name and
      the requested type forced to ADDRESS, so the outcome is an ordered chain
      such as ``a CNAME b`` followed by ``b A 1.2.3.4``.

    Inputs:
      - store: OverrideStore client.
      - cache: DurableOverrideCache shared by all requests.
      - mode: "cache_first" answers from a usable cache entry without contacting
        the store; "store_first" asks the store first and falls back to the
        cache only when the store is unreachable.
      - ttl: TTL stored with records learned from the store.
      - max_alias_hops: Maximum number of CNAME records followed per question.

    Outputs:
      - OverrideResolver instance.

    Example:
      >>> from dnslib import QTYPE
      >>> from dnsoverride.overrides.store import StaticOverrideStore
      >>> resolver = OverrideResolver(
      ...     StaticOverrideStore({"a.test": ("A", "10.0.0.1")}),
      ...     DurableOverrideCache(),
      ... )
      >>> [str(rr.rdata) for rr in resolver.resolve("a.test", QTYPE.A).records]
      ['10.0.0.1']
    """

    def __init__(
        self,
        store: OverrideStore,
        cache: DurableOverrideCache,
        *,
        mode: str = "cache_first",
        ttl: int = DEFAULT_OVERRIDE_TTL,
        max_alias_hops: int = 8,
    ) -> None:
        mode = str(mode).lower()
        if mode not in RESOLVER_MODES:
            raise ValueError(f"Unknown resolver mode: {mode!r}")
        self.store = store
        self.cache = cache
        self.mode = mode
        self.ttl = int(ttl)
        self.max_alias_hops = max(0, int(max_alias_hops))
        # Lookups for one key are ticketed in start order; a reply only
        # touches the cache if no later-started lookup has already done so.
        self._lock = threading.Lock()
        self._seq = 0
        self._inflight: Dict[str, int] = {}
        self._applied: Dict[str, int] = {}

    def resolve(self, qname: object, qtype: Union[int, QueryKind]) -> ResolutionOutcome:
        """Brief: Resolve one question against the override set.

        Inputs:
          - qname: Question name (str or dnslib.DNSLabel); used as the owner of
            the first answer.
          - qtype: dnslib QTYPE value or QueryKind.

        Outputs:
          - ResolutionOutcome with ANSWERED and the ordered chain, NO_ANSWER, or
            CHAIN_TOO_LONG (no records) when more than max_alias_hops aliases
            would have to be followed.
        """
        kind = qtype if isinstance(qtype, QueryKind) else QueryKind.from_qtype(int(qtype))
        owner = qname
        key = normalize_name(qname)
        records = []
        hops = 0

        while True:
            record = self._record_for(key, kind)
            if record is None or not record.matches(kind):
                break
            rr = build_answer(owner, record)
            if rr is None:
                break
            records.append(rr)
            if record.record_type is RecordType.ADDRESS:
                break

            hops += 1
            if hops > self.max_alias_hops:
                logger.warning(
                    "CNAME chain for %s exceeds %d hops; not answering locally",
                    normalize_name(qname),
                    self.max_alias_hops,
                )
                return ResolutionOutcome(ResolutionStatus.CHAIN_TOO_LONG)
            owner = rr.rdata.label
            key = normalize_name(owner)
            kind = QueryKind.ADDRESS

        if not records:
            return ResolutionOutcome(ResolutionStatus.NO_ANSWER)
        return ResolutionOutcome(ResolutionStatus.ANSWERED, records)

    def _record_for(self, key: str, kind: QueryKind) -> Optional[OverrideRecord]:
        if self.mode == "store_first":
            status, record = self._query_store(key)
            if status is not LookupStatus.UNREACHABLE:
                return record
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Override store unreachable; using cached %s", key)
            return cached

        cached = self.cache.get(key)
        if cached is not None and cached.matches(kind):
            logger.debug("Override cache hit for %s", key)
            return cached
        _status, record = self._query_store(key)
        return record

    def _query_store(self, key: str):
        """Brief: Ask the store about key and mirror the answer into the cache.

        Inputs:
          - key: Normalized name.

        Outputs:
          - (LookupStatus, OverrideRecord | None). FOUND inserts into the cache,
            NOT_FOUND evicts, UNREACHABLE leaves the cache untouched. A reply
            that is older than one already applied for the same key is
            returned but not written to the cache.
        """
        with self._lock:
            self._seq += 1
            ticket = self._seq
            self._inflight[key] = self._inflight.get(key, 0) + 1

        try:
            result = self.store.lookup(key)
        except Exception as exc:
            logger.warning("Override store lookup for %s raised: %s", key, exc)
            result = LookupResult.unreachable(str(exc))

        record: Optional[OverrideRecord] = None
        if result.status is LookupStatus.FOUND:
            rtype = RecordType.parse(result.record_type)
            if rtype is None or result.value is None:
                logger.warning(
                    "Ignoring override for %s with unsupported type %r",
                    key,
                    result.record_type,
                )
            else:
                record = OverrideRecord(record_type=rtype, value=str(result.value), ttl=self.ttl)
        elif result.status is LookupStatus.UNREACHABLE:
            logger.debug("Override store unreachable for %s: %s", key, result.error)

        with self._lock:
            mutates = result.status is LookupStatus.NOT_FOUND or record is not None
            if mutates and ticket < self._applied.get(key, 0):
                logger.debug("Not caching out-of-order store reply for %s", key)
            elif result.status is LookupStatus.NOT_FOUND:
                self.cache.remove(key)
                self._applied[key] = ticket
            elif record is not None:
                self.cache.insert(key, record)
                self._applied[key] = ticket
            self._inflight[key] -= 1
            if not self._inflight[key]:
                del self._inflight[key]
                self._applied.pop(key, None)

        return result.status, record
