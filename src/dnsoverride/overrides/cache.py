from __future__ import annotations

import json
import logging
import os
import threading
from typing import Dict, Optional

from .records import OverrideRecord, normalize_name

logger = logging.getLogger(__name__)


class DurableOverrideCache:
    """Durable fallback copy of the override records seen so far.

    Brief:
      In-memory mapping of normalized name -> OverrideRecord, backed by a JSON
      snapshot file that is rewritten in full after every mutation. There is no
      expiry: the cache mirrors the last state observed in the override store
      for names that have been queried.

    Inputs:
      - path: Snapshot file path. An empty path keeps the cache memory-only.
      - records: Optional initial mapping (already normalized).

    Outputs:
      - DurableOverrideCache instance.

    Example:
      >>> cache = DurableOverrideCache.load("./dns_cache.json")
      >>> cache.get("override.test") is None
      True
    """

    def __init__(
        self, path: str = "", records: Optional[Dict[str, OverrideRecord]] = None
    ) -> None:
        self.path = str(path or "")
        self._records: Dict[str, OverrideRecord] = dict(records or {})
        # Single lock for reads, mutations and persistence so every snapshot
        # reflects one point in time.
        self._lock = threading.RLock()

    @classmethod
    def load(cls, path: str) -> "DurableOverrideCache":
        """Brief: Load a cache from its snapshot file.

        Inputs:
          - path: Snapshot file path.

        Outputs:
          - DurableOverrideCache; empty when the file is missing or unparsable.
            Malformed individual entries are skipped.
        """
        records: Dict[str, OverrideRecord] = {}
        if not path or not os.path.exists(path):
            logger.info("No override cache snapshot at %s; starting empty", path)
            return cls(path, records)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Ignoring unreadable override cache snapshot %s: %s", path, exc
            )
            return cls(path, records)

        raw = data.get("records") if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed override cache snapshot %s", path)
            return cls(path, records)

        for name, entry in raw.items():
            record = OverrideRecord.from_dict(entry)
            if record is None:
                logger.warning("Skipping malformed cache entry for %r in %s", name, path)
                continue
            records[normalize_name(name)] = record

        logger.info("Loaded %d override records from %s", len(records), path)
        return cls(path, records)

    def get(self, name: str) -> Optional[OverrideRecord]:
        with self._lock:
            return self._records.get(normalize_name(name))

    def insert(self, name: str, record: OverrideRecord) -> None:
        """Upsert record under name and persist the snapshot."""
        key = normalize_name(name)
        with self._lock:
            self._records[key] = record
            self.persist()
        logger.debug("Cached override %s -> %s %s", key, record.record_type.value, record.value)

    def remove(self, name: str) -> None:
        """Drop name from the cache and persist; no-op when absent."""
        key = normalize_name(name)
        with self._lock:
            if key not in self._records:
                return
            del self._records[key]
            self.persist()
        logger.debug("Evicted override %s", key)

    def persist(self) -> bool:
        """Brief: Write the full mapping to the snapshot file.

        Inputs:
          - None.

        Outputs:
          - bool: True on success. Write failures are logged and swallowed; the
            in-memory mapping stays authoritative for the process lifetime.
        """
        if not self.path:
            return True
        with self._lock:
            payload = {
                "records": {
                    name: record.to_dict()
                    for name, record in sorted(self._records.items())
                }
            }
            tmp_path = self.path + ".tmp"
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, self.path)
            except OSError as exc:
                logger.warning(
                    "Failed to persist override cache to %s: %s", self.path, exc
                )
                return False
        return True

    def snapshot(self) -> Dict[str, OverrideRecord]:
        with self._lock:
            return dict(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return normalize_name(name) in self._records
