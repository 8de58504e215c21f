"""Record types and result variants shared by the override store, cache and resolver.

Brief:
  The override set only knows two kinds of answers: IPv4 addresses ("A") and
  aliases ("CNAME"). This module holds the small value types that flow between
  the store client, the durable cache and the resolver, plus the helpers that
  turn an override record into a dnslib RR.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dnslib import CNAME, QTYPE, RR, A, DNSLabel

logger = logging.getLogger(__name__)

# TTL applied to records learned from the override store.
DEFAULT_OVERRIDE_TTL = 3600

# One DNS label as sent on the wire: LDH plus underscore (SRV/DKIM-style names).
_LABEL_RE = re.compile(r"^[A-Za-z0-9_-]{1,63}$")


class RecordType(str, enum.Enum):
    """Brief: Kind of override answer, spelled with its DNS mnemonic.

    Inputs:
      - value: "A" or "CNAME".

    Outputs:
      - RecordType member.

    Example:
      >>> RecordType.parse("cname")
      <RecordType.ALIAS: 'CNAME'>
    """

    ADDRESS = "A"
    ALIAS = "CNAME"

    @classmethod
    def parse(cls, text: object) -> Optional["RecordType"]:
        """Brief: Parse a store or snapshot record type string.

        Inputs:
          - text: Mnemonic such as "A" or "CNAME" (case-insensitive).

        Outputs:
          - RecordType member, or None for any other value.
        """
        try:
            return cls(str(text).strip().upper())
        except ValueError:
            return None


class QueryKind(enum.Enum):
    """Requested type of a question, as far as the override set is concerned."""

    ADDRESS = "address"
    ALIAS = "alias"
    OTHER = "other"

    @classmethod
    def from_qtype(cls, qtype: int) -> "QueryKind":
        if qtype == QTYPE.A:
            return cls.ADDRESS
        if qtype == QTYPE.CNAME:
            return cls.ALIAS
        return cls.OTHER


@dataclass(frozen=True)
class OverrideRecord:
    """Brief: One authoritative override answer for exactly one name.

    Inputs (fields):
      - record_type: RecordType of the answer.
      - value: IPv4 literal for ADDRESS, domain name for ALIAS.
      - ttl: Time-to-live advertised in answers (seconds).

    Outputs:
      - Immutable OverrideRecord instance.
    """

    record_type: RecordType
    value: str
    ttl: int = DEFAULT_OVERRIDE_TTL

    def to_dict(self) -> Dict[str, Any]:
        """Return the snapshot-file representation of this record."""
        return {
            "record_type": self.record_type.value,
            "value": self.value,
            "ttl": int(self.ttl),
        }

    @classmethod
    def from_dict(cls, data: object) -> Optional["OverrideRecord"]:
        """Brief: Build a record from its snapshot-file representation.

        Inputs:
          - data: Mapping with record_type, value and ttl keys.

        Outputs:
          - OverrideRecord, or None when the mapping is malformed.
        """
        if not isinstance(data, dict):
            return None
        rtype = RecordType.parse(data.get("record_type"))
        value = data.get("value")
        if rtype is None or not isinstance(value, str):
            return None
        try:
            ttl = int(data.get("ttl", DEFAULT_OVERRIDE_TTL))
        except (TypeError, ValueError):
            return None
        if ttl < 0 or ttl > 0xFFFFFFFF:
            return None
        return cls(record_type=rtype, value=value, ttl=ttl)

    def matches(self, kind: QueryKind) -> bool:
        """Brief: Whether this record can answer a question of the given kind.

        Inputs:
          - kind: QueryKind requested at the current hop.

        Outputs:
          - bool: ADDRESS answers ADDRESS only; ALIAS answers ADDRESS and ALIAS.
        """
        if self.record_type is RecordType.ADDRESS:
            return kind is QueryKind.ADDRESS
        return kind in (QueryKind.ADDRESS, QueryKind.ALIAS)


class LookupStatus(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class LookupResult:
    """Brief: Result of a single override store lookup.

    Inputs (fields):
      - status: LookupStatus.
      - record_type: Raw type string from the store (FOUND only).
      - value: Raw value string from the store (FOUND only).
      - error: Optional error description (UNREACHABLE only).

    Outputs:
      - LookupResult instance; use the found()/not_found()/unreachable()
        constructors.
    """

    status: LookupStatus
    record_type: Optional[str] = None
    value: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, record_type: str, value: str) -> "LookupResult":
        return cls(LookupStatus.FOUND, record_type=record_type, value=value)

    @classmethod
    def not_found(cls) -> "LookupResult":
        return cls(LookupStatus.NOT_FOUND)

    @classmethod
    def unreachable(cls, error: Optional[str] = None) -> "LookupResult":
        return cls(LookupStatus.UNREACHABLE, error=error)


class ResolutionStatus(enum.Enum):
    ANSWERED = "answered"
    NO_ANSWER = "no_answer"
    CHAIN_TOO_LONG = "chain_too_long"


@dataclass
class ResolutionOutcome:
    """Brief: Ordered answer chain produced for one question.

    Inputs (fields):
      - status: ResolutionStatus.
      - records: dnslib RR answers; aliases precede the records they resolve to.

    Outputs:
      - ResolutionOutcome instance.
    """

    status: ResolutionStatus
    records: List[RR] = field(default_factory=list)

    @property
    def answered(self) -> bool:
        return self.status is ResolutionStatus.ANSWERED and bool(self.records)


def normalize_name(name: object) -> str:
    """Brief: Normalize a query name into a cache/store key.

    Inputs:
      - name: str or dnslib.DNSLabel.

    Outputs:
      - str: lowercased name without the trailing root separator.

    Example:
      >>> normalize_name("Override.Test.")
      'override.test'
    """
    return str(name).rstrip(".").lower()


def parse_ipv4(value: str) -> Optional[str]:
    """Return the canonical IPv4 literal for value, or None when it does not parse."""
    try:
        return str(ipaddress.IPv4Address(str(value).strip()))
    except ValueError:
        return None


def parse_domain_name(value: str) -> Optional[DNSLabel]:
    """Brief: Parse an alias target into a DNSLabel.

    Inputs:
      - value: Domain name text, with or without the trailing dot.

    Outputs:
      - DNSLabel, or None when the name has empty or oversized labels, or
        labels with characters other than letters, digits, hyphen and
        underscore (after IDNA encoding).
    """
    text = str(value).strip().rstrip(".")
    if not text or len(text) > 253:
        return None
    labels = text.split(".")
    for label in labels:
        if not label or len(label) > 63:
            return None
        try:
            ascii_label = label.encode("idna").decode("ascii")
        except UnicodeError:
            return None
        if not _LABEL_RE.match(ascii_label):
            return None
    return DNSLabel(text + ".")


def build_answer(owner: object, record: OverrideRecord) -> Optional[RR]:
    """Brief: Turn an override record into a dnslib answer RR.

    Inputs:
      - owner: Owner name of the answer (str or DNSLabel).
      - record: OverrideRecord to render.

    Outputs:
      - RR, or None when the record's value is malformed.
    """
    if record.record_type is RecordType.ADDRESS:
        addr = parse_ipv4(record.value)
        if addr is None:
            logger.warning("Dropping A override for %s: bad address %r", owner, record.value)
            return None
        return RR(rname=owner, rtype=QTYPE.A, ttl=record.ttl, rdata=A(addr))

    target = parse_domain_name(record.value)
    if target is None:
        logger.warning("Dropping CNAME override for %s: bad target %r", owner, record.value)
        return None
    return RR(rname=owner, rtype=QTYPE.CNAME, ttl=record.ttl, rdata=CNAME(target))
