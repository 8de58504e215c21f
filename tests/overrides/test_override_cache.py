"""
Brief: Tests for DurableOverrideCache load/insert/remove/persist behaviour.

Inputs:
  - None

Outputs:
  - None
"""

import json
import os

from dnsoverride.overrides.cache import DurableOverrideCache
from dnsoverride.overrides.records import OverrideRecord, RecordType


def _read_snapshot(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def test_load_missing_file_starts_empty(tmp_path):
    """
    Brief: A missing snapshot yields an empty cache bound to that path.

    Inputs:
      - path: non-existent file

    Outputs:
      - None: Asserts empty cache and no file created
    """
    path = tmp_path / "dns_cache.json"
    cache = DurableOverrideCache.load(str(path))
    assert len(cache) == 0
    assert cache.path == str(path)
    assert not path.exists()


def test_load_unparsable_file_starts_empty(tmp_path, caplog):
    path = tmp_path / "dns_cache.json"
    path.write_text("{not json", encoding="utf-8")
    cache = DurableOverrideCache.load(str(path))
    assert len(cache) == 0
    assert "Ignoring unreadable" in caplog.text


def test_load_wrong_shape_starts_empty(tmp_path):
    path = tmp_path / "dns_cache.json"
    path.write_text(json.dumps(["a", "b"]), encoding="utf-8")
    assert len(DurableOverrideCache.load(str(path))) == 0


def test_load_skips_malformed_entries(tmp_path):
    """
    Brief: Valid entries load; malformed ones are skipped individually.

    Inputs:
      - snapshot: one good entry, two bad entries

    Outputs:
      - None: Asserts only the good entry is present
    """
    path = tmp_path / "dns_cache.json"
    path.write_text(
        json.dumps(
            {
                "records": {
                    "Good.Test.": {"record_type": "A", "value": "10.0.0.5", "ttl": 3600},
                    "bad-type.test": {"record_type": "MX", "value": "x", "ttl": 1},
                    "bad-shape.test": "10.0.0.6",
                }
            }
        ),
        encoding="utf-8",
    )
    cache = DurableOverrideCache.load(str(path))
    assert len(cache) == 1
    assert cache.get("good.test") == OverrideRecord(RecordType.ADDRESS, "10.0.0.5")


def test_insert_persists_and_round_trips(tmp_path):
    """
    Brief: insert() rewrites the snapshot and a reload sees the same mapping.

    Inputs:
      - records: one A and one CNAME record

    Outputs:
      - None: Asserts snapshot layout and reloaded contents
    """
    path = tmp_path / "dns_cache.json"
    cache = DurableOverrideCache.load(str(path))
    a_rec = OverrideRecord(RecordType.ADDRESS, "10.0.0.5")
    c_rec = OverrideRecord(RecordType.ALIAS, "b.test", ttl=120)
    cache.insert("A.Test", a_rec)
    cache.insert("c.test.", c_rec)

    data = _read_snapshot(path)
    assert data == {
        "records": {
            "a.test": {"record_type": "A", "value": "10.0.0.5", "ttl": 3600},
            "c.test": {"record_type": "CNAME", "value": "b.test", "ttl": 120},
        }
    }
    assert not os.path.exists(str(path) + ".tmp")

    reloaded = DurableOverrideCache.load(str(path))
    assert reloaded.snapshot() == {"a.test": a_rec, "c.test": c_rec}


def test_insert_replaces_existing_entry(tmp_path):
    path = tmp_path / "dns_cache.json"
    cache = DurableOverrideCache.load(str(path))
    cache.insert("a.test", OverrideRecord(RecordType.ADDRESS, "10.0.0.5"))
    cache.insert("a.test", OverrideRecord(RecordType.ALIAS, "b.test"))
    assert cache.get("a.test").record_type is RecordType.ALIAS
    assert list(_read_snapshot(path)["records"]) == ["a.test"]


def test_remove_persists_and_absent_is_noop(tmp_path):
    """
    Brief: remove() drops and persists; removing an absent name writes nothing.

    Inputs:
      - cache: one entry

    Outputs:
      - None: Asserts snapshot contents and untouched mtime for no-op
    """
    path = tmp_path / "dns_cache.json"
    cache = DurableOverrideCache.load(str(path))
    cache.insert("a.test", OverrideRecord(RecordType.ADDRESS, "10.0.0.5"))
    cache.remove("a.test")
    assert "a.test" not in cache
    assert _read_snapshot(path) == {"records": {}}

    path.unlink()
    cache.remove("never.test")
    assert not path.exists()


def test_persist_failure_is_logged_and_memory_kept(tmp_path, caplog):
    """
    Brief: A snapshot write failure does not lose the in-memory entry.

    Inputs:
      - path: located under a regular file so the directory cannot exist

    Outputs:
      - None: Asserts warning logged, persist() False, entry still served
    """
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    cache = DurableOverrideCache(str(blocker / "dns_cache.json"))
    rec = OverrideRecord(RecordType.ADDRESS, "10.0.0.5")
    cache.insert("a.test", rec)

    assert cache.get("a.test") == rec
    assert cache.persist() is False
    assert "Failed to persist override cache" in caplog.text


def test_memory_only_cache_never_writes(tmp_path):
    cache = DurableOverrideCache()
    cache.insert("a.test", OverrideRecord(RecordType.ADDRESS, "10.0.0.5"))
    assert cache.persist() is True
    assert list(tmp_path.iterdir()) == []
