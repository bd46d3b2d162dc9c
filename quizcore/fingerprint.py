"""
Similarity fingerprints for quiz question text.

A fingerprint is a 64-bit SimHash over word shingles, rendered as 16
uppercase hex digits. Texts that share most of their shingles converge to
fingerprints with a small Hamming distance.

The bucket is the top 8 bits of the fingerprint (0..255). It narrows
duplicate lookups to one slice of the store. Two near-duplicates can land
in different buckets; that false negative is accepted in exchange for an
indexed lookup instead of a full scan.

Everything here is pure and safe to call from any thread.
"""

import hashlib
import re
from typing import Iterable

FINGERPRINT_BITS = 64
BUCKET_BITS = 8

EMPTY_FINGERPRINT = "0" * (FINGERPRINT_BITS // 4)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, trim, and collapse whitespace runs to single spaces."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text.lower()).strip()


def shingles(text: str) -> list[str]:
    """Word bigrams followed by the individual words of normalized text."""
    words = normalize_text(text).split()
    result = [f"{a} {b}" for a, b in zip(words, words[1:])]
    result.extend(words)
    return result


def _shingle_hash(shingle: str) -> int:
    """Stable 64-bit hash: first 8 bytes of SHA-256, little-endian."""
    digest = hashlib.sha256(shingle.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "little")


def _simhash(features: Iterable[str]) -> int:
    votes = [0] * FINGERPRINT_BITS
    for feature in features:
        h = _shingle_hash(feature)
        for i in range(FINGERPRINT_BITS):
            if h & (1 << i):
                votes[i] += 1
            else:
                votes[i] -= 1

    result = 0
    for i, vote in enumerate(votes):
        if vote > 0:
            result |= 1 << i
    return result


def compute_fingerprint(text: str) -> str:
    """
    Compute the 64-bit SimHash fingerprint of text.

    Input is normalized first, so texts that differ only in case or in
    whitespace run-length produce the same fingerprint.

    Returns:
        16 uppercase hex digits. Empty input yields all zeros.
    """
    features = shingles(text)
    if not features:
        return EMPTY_FINGERPRINT
    return f"{_simhash(features):016X}"


def get_bucket(fingerprint: str) -> int:
    """Map a fingerprint to its bucket (top 8 bits, 0..255)."""
    if not fingerprint or len(fingerprint) < BUCKET_BITS // 4:
        return 0
    return int(fingerprint[:BUCKET_BITS // 4], 16)


def hamming_distance(a: str, b: str) -> int:
    """Number of differing bits between two fingerprints."""
    return bin(int(a, 16) ^ int(b, 16)).count("1")


def record_fingerprint_text(question: str) -> str:
    """Fingerprint input used at ingestion time: the question alone."""
    return question


def update_fingerprint_text(
    question: str,
    correct_answer: str,
    incorrect_answers: Iterable[str],
) -> str:
    """Fingerprint input used when a record is edited.

    Covers the question plus every answer. Ingestion deliberately uses
    the question alone; the two inputs are not unified.
    """
    return f"{question} {correct_answer} {' '.join(incorrect_answers)}"
