"""Owner-scoped, thread-safe store of address records with wildcard lookup.

Brief:
  - Records are keyed by (owner_id, domain, rtype). The owner id identifies
    the cluster resource that declared the hostname so that every record it
    produced can be dropped in one call when it changes or goes away.
  - Stored domains may contain "*" labels, each matching exactly one
    non-empty label of the queried name (case-insensitive).
"""

from __future__ import annotations

import ipaddress
import logging
import re
import threading
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Pattern

from cachetools import LRUCache, cached
from dnslib import QTYPE

from .config.logging_config import TRACE

logger = logging.getLogger(__name__)

# Every answer is served with TTL 0 so clients never cache cluster state.
DEFAULT_TTL = 0

WILDCARD_LABEL = "*"


class RecordKey(NamedTuple):
    owner_id: str
    domain: str
    rtype: int


@dataclass(frozen=True)
class Record:
    """Brief: Immutable address record served to DNS clients.

    Inputs (constructor fields):
      - name: Domain pattern the record was registered under (may contain
        "*" labels).
      - address: IPv4 address string.
      - rtype: dnslib QTYPE value (QTYPE.A).
      - ttl: TTL in seconds, always DEFAULT_TTL.
    """

    name: str
    address: str
    rtype: int = QTYPE.A
    ttl: int = DEFAULT_TTL


def _escape_and_match_wildcard(label: str) -> str:
    return r"\w+" if label == WILDCARD_LABEL else re.escape(label)


@cached(cache=LRUCache(maxsize=1024), lock=threading.Lock())
def compile_domain_pattern(domain: str) -> Pattern[str]:
    """Brief: Build the anchored, case-insensitive matcher for a stored domain.

    Inputs:
      - domain: Dot-separated domain pattern, e.g. "*.example.com".

    Outputs:
      - Compiled regex matching names with the same label count where each
        "*" label matches one run of word characters.

    Example:
      >>> bool(compile_domain_pattern("*.example.com").match("foo.example.com"))
      True
      >>> bool(compile_domain_pattern("*.example.com").match("a.b.example.com"))
      False
    """

    regex = r"\.".join(_escape_and_match_wildcard(p) for p in domain.split("."))
    return re.compile(f"^{regex}$", re.IGNORECASE)


def domain_matches(query_name: str, domain: str) -> bool:
    return compile_domain_pattern(domain).match(query_name) is not None


def normalize_domain(name: str) -> str:
    """Lowercase name and drop surrounding whitespace and the trailing dot."""
    return str(name).strip().rstrip(".").lower()


class RecordStore:
    """Thread-safe record map shared by the watchers and the DNS listeners.

    Writers only ever touch their own keys; the lock is held just long enough
    for the dict operation (or to take a snapshot for lookups), and pattern
    matching runs on the snapshot outside the lock.

    Example use:
        >>> store = RecordStore()
        >>> store.add_record("res-1", "a.example.com", "10.0.0.5")
        True
        >>> [r.address for r in store.resolve("a.example.com", QTYPE.A)]
        ['10.0.0.5']
        >>> store.remove_records_for_owner("res-1")
        >>> store.resolve("a.example.com", QTYPE.A)
        []
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: Dict[RecordKey, Record] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add_record(self, owner_id: str, domain: str, address: str) -> bool:
        """Brief: Insert an A record for owner_id unless the exact key exists.

        Inputs:
          - owner_id: Id of the resource declaring the hostname.
          - domain: Hostname or wildcard pattern; keyed case-insensitively.
          - address: IPv4 address the name should resolve to.

        Outputs:
          - bool: True when inserted, False when the key was already present
            (the existing record is left untouched).

        Raises ValueError when address is not an IPv4 address.
        """

        ip = str(ipaddress.IPv4Address(str(address).strip()))
        name = normalize_domain(domain)
        key = RecordKey(str(owner_id), name, QTYPE.A)
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = Record(name=name, address=ip)
        return True

    def remove_records_for_owner(self, owner_id: str) -> None:
        """Brief: Remove every A record owned by owner_id.

        Each removal is logged; a key that vanished between the scan and the
        delete is reported as a warning and otherwise ignored.
        """

        owner_id = str(owner_id)
        with self._lock:
            keys = [
                k
                for k in self._entries
                if k.owner_id == owner_id and k.rtype == QTYPE.A
            ]

        for key in keys:
            with self._lock:
                removed = self._entries.pop(key, None) is not None
            if removed:
                logger.log(
                    TRACE,
                    "Removal of %s for resource %s succeeded",
                    key.domain,
                    key.owner_id,
                )
            else:
                logger.warning(
                    "Removal of %s for resource %s failed", key.domain, key.owner_id
                )

    def records_for_owner(self, owner_id: str) -> List[Record]:
        owner_id = str(owner_id)
        with self._lock:
            return [r for k, r in self._entries.items() if k.owner_id == owner_id]

    def resolve(self, name: str, qtype: int) -> List[Record]:
        """Brief: Return every record whose pattern matches name and type.

        Inputs:
          - name: Queried domain name; a trailing dot is ignored.
          - qtype: dnslib QTYPE value; QTYPE.ANY matches every record type.

        Outputs:
          - List[Record] snapshot; empty when nothing matches, which the
            transport reports as NXDOMAIN.
        """

        query = normalize_domain(name)
        with self._lock:
            candidates = list(self._entries.values())

        return [
            r
            for r in candidates
            if (qtype == QTYPE.ANY or r.rtype == qtype)
            and domain_matches(query, r.name)
        ]
