"""Candidate identifier generation for gateway lookups."""

import re
from typing import List, Optional

from .normalizer import (
    PAYMENT_ID_PREFIX,
    PAYMENT_ID_BODY_LENGTH,
    fallback_payment_id,
    fit_body,
    split_prefix,
)

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
)


def is_uuid_shaped(raw: str) -> bool:
    return UUID_PATTERN.match(raw) is not None


def uuid_derivation(raw: str) -> Optional[str]:
    """Derive a 22-character body from a UUID.

    Takes the first 8, the 6 at offset 8-14 and the last 8 hex characters of
    the hyphen-stripped UUID, in that order.

    Args:
        raw: Hyphenated or plain 32-hex UUID.

    Returns:
        The prefixed id, or None if raw is not UUID-shaped.
    """
    if not raw or not is_uuid_shaped(raw):
        return None
    hex_digits = raw.replace("-", "")
    return PAYMENT_ID_PREFIX + hex_digits[0:8] + hex_digits[8:14] + hex_digits[-8:]


def generate_candidates(raw: Optional[str]) -> List[str]:
    """Produce plausible gateway ids for a raw identifier.

    Ordered from cheapest/most likely to least likely:

    1. raw unchanged
    2. raw with the prefix added
    3. raw without hyphens
    4. hyphen-stripped raw with the prefix added
    5. structured 8+6+8 derivation for UUIDs
    6. truncated / padded cleaned body with the prefix

    Args:
        raw: Stored identifier; may be empty or None.

    Returns:
        Non-empty, deduplicated list of candidate ids.
    """
    if not raw:
        return [fallback_payment_id()]

    candidates: List[str] = [raw]
    has_prefix = raw.startswith(PAYMENT_ID_PREFIX)

    if not has_prefix:
        candidates.append(PAYMENT_ID_PREFIX + raw)

    no_hyphens = raw.replace("-", "")
    candidates.append(no_hyphens)
    if not no_hyphens.startswith(PAYMENT_ID_PREFIX):
        candidates.append(PAYMENT_ID_PREFIX + no_hyphens)

    derived = uuid_derivation(raw)
    if derived:
        candidates.append(derived)

    _, body = split_prefix(raw)
    if len(body) > PAYMENT_ID_BODY_LENGTH:
        candidates.append(PAYMENT_ID_PREFIX + body[:PAYMENT_ID_BODY_LENGTH])
    candidates.append(PAYMENT_ID_PREFIX + fit_body(body))

    # dict preserves first-seen order
    return list(dict.fromkeys(c for c in candidates if c))
