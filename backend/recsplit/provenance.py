"""
Provenance id naming for derived recordings.

The `split-<parent>-part<NNN>` form is durable: deletion eligibility and
title-sync eligibility test for these prefixes to tell device-originated
recordings from locally derived ones, so the prefix and the three-digit
padding must not change.
"""

import re
from typing import Optional

SPLIT_PREFIX = "split-"
PART_WIDTH = 3

# Provenance prefixes of recordings created by this application rather than
# synced from a device
LOCAL_PREFIXES = (SPLIT_PREFIX, "silence-removed-", "uploaded-")


def format_part(part_number: int) -> str:
    return str(part_number).zfill(PART_WIDTH)


def split_prefix(parent_provenance_id: str) -> str:
    return f"{SPLIT_PREFIX}{parent_provenance_id}-part"


def split_provenance_id(parent_provenance_id: str, part_number: int) -> str:
    """`split_provenance_id("abc", 2)` -> `"split-abc-part002"`."""
    if part_number < 1:
        raise ValueError("part numbers are 1-based")
    return f"{split_prefix(parent_provenance_id)}{format_part(part_number)}"


def split_part_number(parent_provenance_id: str, candidate: str) -> Optional[int]:
    """
    Part number of `candidate` if it is a split segment of the given parent.

    A plain prefix match is not enough: a parent whose own id is `abc-part9`
    shares the `split-abc-part` prefix, so the remainder must be all digits.
    """
    prefix = split_prefix(parent_provenance_id)
    if not candidate.startswith(prefix):
        return None
    match = re.fullmatch(r"\d+", candidate[len(prefix):])
    if match is None:
        return None
    return int(match.group(0))


def is_locally_created(provenance_id: str) -> bool:
    return provenance_id.startswith(LOCAL_PREFIXES)
