"""
Brief: Tests for gatewayapi_dns.records.RecordStore and domain matching.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import threading

import pytest
from dnslib import QTYPE

from gatewayapi_dns.records import (
    DEFAULT_TTL,
    Record,
    RecordStore,
    compile_domain_pattern,
    domain_matches,
)


def test_add_resolve_remove_scenario():
    """
    Brief: A record added for an owner resolves until the owner is removed.

    Inputs:
      - None

    Outputs:
      - None: Asserts one answer before removal and none after
    """
    store = RecordStore()
    assert store.add_record("res-1", "a.example.com", "10.0.0.5") is True

    found = store.resolve("a.example.com", QTYPE.A)
    assert found == [Record(name="a.example.com", address="10.0.0.5")]
    assert found[0].ttl == DEFAULT_TTL == 0
    assert found[0].rtype == QTYPE.A

    store.remove_records_for_owner("res-1")
    assert store.resolve("a.example.com", QTYPE.A) == []
    assert len(store) == 0


def test_add_is_idempotent_and_never_overwrites():
    store = RecordStore()
    assert store.add_record("res-1", "a.example.com", "10.0.0.5") is True
    assert store.add_record("res-1", "a.example.com", "10.0.0.5") is False
    # Same key with another address is still a duplicate; the first wins.
    assert store.add_record("res-1", "a.example.com", "10.0.0.9") is False
    assert len(store) == 1
    assert [r.address for r in store.resolve("a.example.com", QTYPE.A)] == [
        "10.0.0.5"
    ]


def test_same_hostname_for_two_owners_is_two_records():
    store = RecordStore()
    store.add_record("res-1", "a.example.com", "10.0.0.5")
    store.add_record("res-2", "a.example.com", "10.0.0.5")
    assert len(store.resolve("a.example.com", QTYPE.A)) == 2

    store.remove_records_for_owner("res-1")
    assert len(store.resolve("a.example.com", QTYPE.A)) == 1
    assert store.records_for_owner("res-1") == []
    assert len(store.records_for_owner("res-2")) == 1


def test_remove_only_touches_the_given_owner():
    store = RecordStore()
    store.add_record("res-1", "a.example.com", "10.0.0.5")
    store.add_record("res-1", "b.example.com", "10.0.0.5")
    store.add_record("res-2", "c.example.com", "10.0.0.5")

    store.remove_records_for_owner("res-1")

    assert store.resolve("a.example.com", QTYPE.A) == []
    assert store.resolve("b.example.com", QTYPE.A) == []
    assert len(store.resolve("c.example.com", QTYPE.A)) == 1


def test_remove_unknown_owner_is_a_noop():
    store = RecordStore()
    store.add_record("res-1", "a.example.com", "10.0.0.5")
    store.remove_records_for_owner("missing")
    assert len(store) == 1


def test_remove_of_vanished_key_logs_warning(caplog):
    """
    Brief: A key that disappears between scan and delete is reported, not raised.

    Inputs:
      - caplog: pytest log capture fixture

    Outputs:
      - None: Asserts a warning naming the domain and owner
    """

    class _VanishingDict(dict):
        def pop(self, key, default=None):
            super().pop(key, None)
            return default

    store = RecordStore()
    store.add_record("res-1", "a.example.com", "10.0.0.5")
    store._entries = _VanishingDict(store._entries)

    caplog.set_level(logging.WARNING, logger="gatewayapi_dns.records")
    store.remove_records_for_owner("res-1")

    assert "Removal of a.example.com for resource res-1 failed" in caplog.text
    assert len(store) == 0


def test_add_rejects_non_ipv4_address():
    store = RecordStore()
    with pytest.raises(ValueError):
        store.add_record("res-1", "a.example.com", "not-an-ip")
    with pytest.raises(ValueError):
        store.add_record("res-1", "a.example.com", "2001:db8::1")
    assert len(store) == 0


def test_resolve_is_case_insensitive_and_ignores_trailing_dot():
    store = RecordStore()
    store.add_record("res-1", "foo.example.com", "10.0.0.5")
    assert len(store.resolve("FOO.example.com", QTYPE.A)) == 1
    assert len(store.resolve("foo.EXAMPLE.com.", QTYPE.A)) == 1


def test_wildcard_matches_exactly_one_label():
    store = RecordStore()
    store.add_record("res-1", "*.example.com", "10.0.0.5")

    assert len(store.resolve("foo.example.com", QTYPE.A)) == 1
    assert store.resolve("foo.bar.example.com", QTYPE.A) == []
    assert store.resolve("example.com", QTYPE.A) == []


def test_resolve_filters_on_type_and_any_matches_all():
    store = RecordStore()
    store.add_record("res-1", "a.example.com", "10.0.0.5")
    assert store.resolve("a.example.com", QTYPE.AAAA) == []
    assert len(store.resolve("a.example.com", QTYPE.ANY)) == 1


def test_resolve_returns_snapshot():
    store = RecordStore()
    store.add_record("res-1", "a.example.com", "10.0.0.5")
    snapshot = store.resolve("a.example.com", QTYPE.A)
    store.remove_records_for_owner("res-1")
    assert len(snapshot) == 1


@pytest.mark.parametrize(
    "pattern,query,expected",
    [
        ("*.example.com", "foo.example.com", True),
        ("*.example.com", "foo.bar.example.com", False),
        ("a.*.example.com", "a.b.example.com", True),
        ("a.*.example.com", "a.example.com", False),
        ("foo.example.com", "FOO.Example.COM", True),
        ("foo.example.com", "fooXexample.com", False),
        ("*.example.com", ".example.com", False),
    ],
)
def test_domain_matches(pattern, query, expected):
    assert domain_matches(query, pattern) is expected


def test_compiled_patterns_are_memoised():
    assert compile_domain_pattern("*.example.com") is compile_domain_pattern(
        "*.example.com"
    )


def test_concurrent_writers_on_independent_owners():
    """
    Brief: Parallel add/remove for distinct owners leaves each owner consistent.

    Inputs:
      - None

    Outputs:
      - None: Asserts every surviving owner has exactly its own records
    """
    store = RecordStore()
    errors = []

    def worker(i):
        try:
            owner = f"res-{i}"
            for n in range(20):
                store.add_record(owner, f"h{n}.svc{i}.example.com", "10.0.0.5")
            if i % 2:
                store.remove_records_for_owner(owner)
            store.resolve(f"h0.svc{i}.example.com", QTYPE.A)
        except Exception as exc:  # pragma: no cover - surfaced via assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for i in range(8):
        owned = store.records_for_owner(f"res-{i}")
        assert len(owned) == (0 if i % 2 else 20)


def test_domain_case_variants_share_one_record():
    store = RecordStore()
    assert store.add_record("res-1", "A.Example.com", "10.0.0.5") is True
    assert store.add_record("res-1", "a.example.com.", "10.0.0.5") is False

    answers = store.resolve("a.example.com", QTYPE.A)
    assert answers == [Record(name="a.example.com", address="10.0.0.5")]


def test_owner_ids_are_compared_as_strings():
    store = RecordStore()
    store.add_record(42, "a.example.com", "10.0.0.5")

    assert len(store.records_for_owner(42)) == 1
    assert len(store.records_for_owner("42")) == 1
    store.remove_records_for_owner("42")
    assert store.records_for_owner(42) == []
