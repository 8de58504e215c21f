"""
Brief: Tests for resolve_query_bytes local-answer vs upstream-relay dispatch.

Inputs:
  - None

Outputs:
  - None
"""

import json

import pytest
from dnslib import OPCODE, QTYPE, RCODE, DNSRecord, DNSQuestion

from dnsoverride.overrides.cache import DurableOverrideCache
from dnsoverride.overrides.resolver import OverrideResolver
from dnsoverride.overrides.store import StaticOverrideStore
from dnsoverride.servers import server as server_mod
from dnsoverride.servers.server import (
    build_local_response,
    forward_upstream,
    resolve_query_bytes,
)
from dnsoverride.servers.transports.udp import UDPError
from dnsoverride.servers.udp_server import DNSUDPHandler

UPSTREAM = {"host": "192.0.2.53", "port": 53}


@pytest.fixture
def relay_calls(monkeypatch):
    """
    Brief: Replace udp_query in the server module with a recorder.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - dict: 'calls' list of (host, port, bytes, timeout_ms) and a settable 'reply'
    """
    state = {"calls": [], "reply": b"\xde\xadupstream-reply", "error": None}

    def fake_udp_query(host, port, query, *, timeout_ms=2000, **_kw):
        state["calls"].append((host, port, query, timeout_ms))
        if state["error"] is not None:
            raise state["error"]
        return state["reply"]

    monkeypatch.setattr(server_mod, "udp_query", fake_udp_query)
    return state


def _install(records=None, cache=None, reachable=True):
    store = StaticOverrideStore(records or {}, reachable=reachable)
    resolver = OverrideResolver(store, cache if cache is not None else DurableOverrideCache())
    DNSUDPHandler.resolver = resolver
    DNSUDPHandler.upstream = dict(UPSTREAM)
    DNSUDPHandler.timeout_ms = 750
    return store, resolver


def test_local_answer_end_to_end(tmp_path, relay_calls):
    """
    Brief: override.test A query is answered locally and written to the cache file.

    Inputs:
      - store: override.test -> A 10.0.0.5
      - cache: file-backed

    Outputs:
      - None: Asserts response header, single answer, no relay, snapshot entry
    """
    cache_path = tmp_path / "dns_cache.json"
    _install(
        {"override.test": ("A", "10.0.0.5")},
        cache=DurableOverrideCache.load(str(cache_path)),
    )
    q = DNSRecord.question("override.test", "A")
    q.header.rd = 0

    wire = resolve_query_bytes(q.pack(), "127.0.0.1")
    resp = DNSRecord.parse(wire)

    assert resp.header.id == q.header.id
    assert resp.header.qr == 1
    assert resp.header.rd == 1
    assert resp.header.rcode == RCODE.NOERROR
    assert [str(x.qname) for x in resp.questions] == ["override.test."]
    assert len(resp.rr) == 1
    rr = resp.rr[0]
    assert (str(rr.rname), rr.ttl, rr.rtype, str(rr.rdata)) == (
        "override.test.",
        3600,
        QTYPE.A,
        "10.0.0.5",
    )
    assert relay_calls["calls"] == []

    data = json.loads(cache_path.read_text(encoding="utf-8"))
    assert data["records"]["override.test"]["value"] == "10.0.0.5"


@pytest.mark.parametrize("reachable", [True, False])
def test_unanswered_query_is_relayed_verbatim(relay_calls, reachable):
    """
    Brief: With no local answer the exact inbound bytes go upstream and the reply comes back unchanged.

    Inputs:
      - reachable: NOT_FOUND vs UNREACHABLE store

    Outputs:
      - None: Asserts relayed bytes and returned reply
    """
    _install(reachable=reachable)
    data = DNSRecord.question("absent.test", "A").pack()

    out = resolve_query_bytes(data, "127.0.0.1")

    assert out == b"\xde\xadupstream-reply"
    assert relay_calls["calls"] == [("192.0.2.53", 53, data, 750)]


def test_type_mismatch_is_relayed(relay_calls):
    _install({"a.test": ("A", "10.0.0.5")})
    data = DNSRecord.question("a.test", "AAAA").pack()
    assert resolve_query_bytes(data, "127.0.0.1") == relay_calls["reply"]
    assert len(relay_calls["calls"]) == 1


def test_alias_chain_in_response_order(relay_calls):
    _install({"a.test": ("CNAME", "b.test"), "b.test": ("A", "1.2.3.4")})
    q = DNSRecord.question("a.test", "A")
    resp = DNSRecord.parse(resolve_query_bytes(q.pack(), "127.0.0.1"))
    assert [(str(rr.rname), QTYPE[rr.rtype], str(rr.rdata)) for rr in resp.rr] == [
        ("a.test.", "CNAME", "b.test."),
        ("b.test.", "A", "1.2.3.4"),
    ]
    assert relay_calls["calls"] == []


def test_partial_answers_across_questions_stay_local(relay_calls):
    """
    Brief: One answered question out of two keeps the whole message local.

    Inputs:
      - request: two questions, only the first has an override

    Outputs:
      - None: Asserts both questions echoed, one answer, no relay
    """
    _install({"known.test": ("A", "10.0.0.5")})
    q = DNSRecord.question("known.test", "A")
    q.add_question(DNSQuestion("unknown.test", QTYPE.A))

    resp = DNSRecord.parse(resolve_query_bytes(q.pack(), "127.0.0.1"))

    assert [str(x.qname) for x in resp.questions] == ["known.test.", "unknown.test."]
    assert len(resp.rr) == 1
    assert relay_calls["calls"] == []


def test_undecodable_datagram_is_dropped(relay_calls):
    _install()
    assert resolve_query_bytes(b"\x00\x01\x02", "127.0.0.1") is None
    assert relay_calls["calls"] == []


def test_upstream_failure_returns_servfail(relay_calls):
    """
    Brief: A relay failure answers SERVFAIL with the request id.

    Inputs:
      - udp_query: raises UDPError

    Outputs:
      - None: Asserts SERVFAIL response id and rcode
    """
    _install()
    relay_calls["error"] = UDPError("timed out")
    q = DNSRecord.question("absent.test", "A")

    resp = DNSRecord.parse(resolve_query_bytes(q.pack(), "127.0.0.1"))

    assert resp.header.id == q.header.id
    assert resp.header.rcode == RCODE.SERVFAIL


def test_missing_upstream_returns_servfail(relay_calls):
    _install()
    DNSUDPHandler.upstream = None
    q = DNSRecord.question("absent.test", "A")
    resp = DNSRecord.parse(resolve_query_bytes(q.pack(), "127.0.0.1"))
    assert resp.header.rcode == RCODE.SERVFAIL
    assert relay_calls["calls"] == []


def test_non_query_messages_are_relayed(relay_calls):
    """
    Brief: Responses and non-QUERY opcodes bypass the override set.

    Inputs:
      - request: NOTIFY opcode for a name that has an override

    Outputs:
      - None: Asserts relay of original bytes
    """
    store, _resolver = _install({"a.test": ("A", "10.0.0.5")})
    q = DNSRecord.question("a.test", "A")
    q.header.opcode = OPCODE.NOTIFY
    data = q.pack()

    assert resolve_query_bytes(data, "127.0.0.1") == relay_calls["reply"]
    assert relay_calls["calls"][0][2] == data
    assert store.lookups == 0


def test_no_resolver_relays(relay_calls):
    DNSUDPHandler.resolver = None
    DNSUDPHandler.upstream = dict(UPSTREAM)
    data = DNSRecord.question("a.test", "A").pack()
    assert resolve_query_bytes(data, "127.0.0.1") == relay_calls["reply"]


def test_build_local_response_sets_header_flags():
    q = DNSRecord.question("x.test", "A")
    q.header.rd = 0
    resp = build_local_response(q, [])
    assert resp.header.id == q.header.id
    assert resp.header.qr == 1
    assert resp.header.rd == 1
    assert resp.header.opcode == OPCODE.QUERY
    assert len(resp.questions) == 1


def test_forward_upstream_uses_default_port(relay_calls):
    DNSUDPHandler.upstream = {"host": "192.0.2.1"}
    DNSUDPHandler.timeout_ms = 2000
    q = DNSRecord.question("x.test", "A")
    forward_upstream(q.pack(), q, "127.0.0.1")
    assert relay_calls["calls"][0][:2] == ("192.0.2.1", 53)
