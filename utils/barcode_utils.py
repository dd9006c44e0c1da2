"""
Barcode utilities for comparing local and Shopify barcodes.

Shopify stores barcodes as free text, so the same EAN can come back as
"00123", " 123 " or "12-3". Exhaustive search tolerates that; the batched
search query does not (the remote index matches exact strings only).
"""

import re
from enum import Enum
from typing import Iterable, Optional


class MatchStrategy(str, Enum):
    """Which comparison recognised two barcodes as equal."""
    EXACT = "exact"
    LEADING_ZEROS = "leading_zeros"
    ALPHANUMERIC = "alphanumeric"


_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")


def normalize_barcode(barcode: Optional[str]) -> Optional[str]:
    """
    Normalize a barcode for storage and lookup.

    - " 4770175046139 " → "4770175046139"
    - "" → None

    Args:
        barcode: Raw barcode (may be None, padded, or empty)

    Returns:
        Stripped barcode, or None if input is empty
    """
    if barcode is None:
        return None

    barcode = str(barcode).strip()

    if not barcode:
        return None

    return barcode


def match_barcode(remote: Optional[str], local: Optional[str]) -> Optional[MatchStrategy]:
    """
    Compare a Shopify barcode with a local barcode.

    Strategies, first match wins:
    - exact (after trimming):        "123"   == "123"
    - leading zeros stripped:        "00123" == "123"
    - alphanumeric, case-insensitive: "12-3a" == "123A"

    Args:
        remote: Barcode stored on the Shopify variant
        local: Barcode from the local catalog

    Returns:
        The matching strategy, or None if the barcodes differ
    """
    remote = normalize_barcode(remote)
    local = normalize_barcode(local)

    if not remote or not local:
        return None

    if remote == local:
        return MatchStrategy.EXACT

    stripped_remote = remote.lstrip("0")
    if stripped_remote and stripped_remote == local.lstrip("0"):
        return MatchStrategy.LEADING_ZEROS

    alnum_remote = _NON_ALPHANUMERIC.sub("", remote).lower()
    if alnum_remote and alnum_remote == _NON_ALPHANUMERIC.sub("", local).lower():
        return MatchStrategy.ALPHANUMERIC

    return None


def barcode_search_term(barcode: str) -> str:
    """Single search clause for the Shopify query language."""
    escaped = barcode.replace("\\", "\\\\").replace("'", "\\'")
    return f"barcode:'{escaped}'"


def chunk_barcode_query(
    barcodes: Iterable[str],
    size: int,
    max_length: int,
) -> list[list[str]]:
    """
    Split barcodes into batches for disjunctive search queries.

    A batch closes when it holds `size` barcodes or when adding one more
    clause would push the joined query past `max_length` characters.
    Duplicates are dropped; order is preserved.

    Args:
        barcodes: Barcodes to search for
        size: Maximum barcodes per batch
        max_length: Maximum characters of the joined query

    Returns:
        List of barcode batches
    """
    batches: list[list[str]] = []
    current: list[str] = []
    current_length = 0
    seen: set[str] = set()
    separator = len(" OR ")

    for barcode in barcodes:
        if barcode in seen:
            continue
        seen.add(barcode)

        clause_length = len(barcode_search_term(barcode))
        added = clause_length if not current else clause_length + separator

        if current and (len(current) >= size or current_length + added > max_length):
            batches.append(current)
            current, current_length = [], 0
            added = clause_length

        current.append(barcode)
        current_length += added

    if current:
        batches.append(current)

    return batches


def build_barcode_query(barcodes: Iterable[str]) -> str:
    """Join barcodes into one `barcode:'a' OR barcode:'b'` query."""
    return " OR ".join(barcode_search_term(b) for b in barcodes)
