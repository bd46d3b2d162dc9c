"""Tests for similarity fingerprints and bucketing."""

import re

import pytest

from quizcore.fingerprint import (
    EMPTY_FINGERPRINT,
    _shingle_hash,
    compute_fingerprint,
    get_bucket,
    hamming_distance,
    normalize_text,
    record_fingerprint_text,
    shingles,
    update_fingerprint_text,
)


HEX16 = re.compile(r"^[0-9A-F]{16}$")


class TestNormalization:

    def test_lowercases_and_collapses_whitespace(self):
        assert normalize_text("  What   IS\tthe\nAnswer ") == "what is the answer"

    def test_empty_and_none_like(self):
        assert normalize_text("") == ""
        assert normalize_text("   ") == ""

    def test_shingles_are_bigrams_then_words(self):
        assert shingles("A b  C") == ["a b", "b c", "a", "b", "c"]

    def test_single_word_has_no_bigrams(self):
        assert shingles("Paris") == ["paris"]


class TestComputeFingerprint:

    def test_format_is_sixteen_uppercase_hex(self):
        fp = compute_fingerprint("What is the capital of France?")
        assert HEX16.match(fp), fp

    def test_deterministic(self):
        text = "Which planet is known as the Red Planet?"
        assert compute_fingerprint(text) == compute_fingerprint(text)

    def test_case_and_whitespace_do_not_matter(self):
        a = compute_fingerprint("What is the capital of France?")
        b = compute_fingerprint("  what IS the   capital of\tfrance?  ")
        assert a == b
        assert hamming_distance(a, b) == 0

    def test_empty_text_is_all_zero(self):
        assert compute_fingerprint("") == EMPTY_FINGERPRINT
        assert compute_fingerprint("   \n ") == EMPTY_FINGERPRINT

    def test_single_shingle_equals_its_hash(self):
        """With one shingle every bit vote is unanimous."""
        assert compute_fingerprint("Paris") == f"{_shingle_hash('paris'):016X}"

    def test_shingle_hash_is_sha256_prefix_little_endian(self):
        import hashlib
        digest = hashlib.sha256(b"paris").digest()
        assert _shingle_hash("paris") == int.from_bytes(digest[:8], "little")

    def test_different_texts_differ(self):
        a = compute_fingerprint("What is the capital of France?")
        b = compute_fingerprint("Who painted the Mona Lisa?")
        assert a != b


class TestBucket:

    def test_bucket_is_top_byte(self):
        fp = compute_fingerprint("What is the capital of France?")
        assert get_bucket(fp) == int(fp[:2], 16)

    @pytest.mark.parametrize("fp,expected", [
        ("0000000000000000", 0),
        ("FF00000000000000", 255),
        ("7A12345678ABCDEF", 0x7A),
    ])
    def test_known_buckets(self, fp, expected):
        assert get_bucket(fp) == expected

    def test_short_input_maps_to_zero(self):
        assert get_bucket("") == 0
        assert get_bucket("F") == 0

    def test_bucket_range(self):
        for text in ["a", "b c", "what is love", "2+2", "Ünïcödé text"]:
            assert 0 <= get_bucket(compute_fingerprint(text)) <= 255


class TestHammingDistance:

    def test_identical_is_zero(self):
        assert hamming_distance("00000000000000FF", "00000000000000FF") == 0

    def test_all_bits(self):
        assert hamming_distance("0000000000000000", "FFFFFFFFFFFFFFFF") == 64

    def test_single_bit(self):
        assert hamming_distance("0000000000000000", "0000000000000001") == 1


class TestFingerprintInputs:

    def test_ingestion_uses_question_only(self):
        assert record_fingerprint_text("What is 2+2?") == "What is 2+2?"

    def test_update_includes_answers(self):
        text = update_fingerprint_text("What is 2+2?", "4", ["3", "5"])
        assert text == "What is 2+2? 4 3 5"

    def test_update_and_ingest_fingerprints_differ(self):
        """Editing a record without changes still moves its fingerprint."""
        q = "What is the capital of France?"
        ingest_fp = compute_fingerprint(record_fingerprint_text(q))
        update_fp = compute_fingerprint(update_fingerprint_text(q, "Paris", ["Lyon"]))
        assert ingest_fp != update_fp
