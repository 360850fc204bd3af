# tests/unit/test_digest.py

import hashlib

from record_ingest.digest import canonical_size, canonicalize, digest, record_id


def test_canonicalize_is_compact_and_keeps_field_order():
    row = {"b": "2", "a": "1"}

    assert canonicalize(row) == '{"b":"2","a":"1"}'


def test_canonicalize_keeps_non_ascii_characters_literal():
    assert canonicalize({"name": "café"}) == '{"name":"café"}'


def test_canonical_size_counts_utf8_bytes():
    # "é" is two bytes in UTF-8
    assert canonical_size({"name": "café"}) == len('{"name":"café"}') + 1


def test_digest_is_sha1_hex_of_utf8():
    canonical = '{"name":"café"}'

    assert digest(canonical) == hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    assert len(digest(canonical)) == 40  # 160 bits


def test_record_id_is_deterministic(sku_row):
    assert record_id(sku_row) == record_id(dict(sku_row))


def test_field_order_changes_the_identity():
    """The same fields in a different order are a different canonical form."""
    assert record_id({"a": "1", "b": "2"}) != record_id({"b": "2", "a": "1"})


def test_different_values_produce_different_ids(sku_row):
    changed = dict(sku_row, color="red")

    assert record_id(sku_row) != record_id(changed)
