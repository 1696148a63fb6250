"""Normalization of raw identifiers into gateway payment ids.

The gateway only accepts ids of the form ``pay_`` followed by exactly 22
alphanumeric characters. ``normalize`` always produces that shape; whether the
gateway actually knows the id is checked separately by a gateway probe.
"""

import re
import time
from typing import Optional, Tuple

PAYMENT_ID_PREFIX = "pay_"
PAYMENT_ID_BODY_LENGTH = 22
PAYMENT_ID_LENGTH = len(PAYMENT_ID_PREFIX) + PAYMENT_ID_BODY_LENGTH
FILLER = "0"

PAYMENT_ID_PATTERN = re.compile(r"^pay_[A-Za-z0-9]{22}$")
_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def is_normalized(value: Optional[str]) -> bool:
    """Return True if value already has the gateway payment id shape."""
    return bool(value) and PAYMENT_ID_PATTERN.match(value) is not None


def clean(value: str) -> str:
    """Strip every non-alphanumeric character."""
    return _NON_ALPHANUMERIC.sub("", value)


def fit_body(body: str) -> str:
    """Truncate or right-pad body to the fixed body length."""
    return body[:PAYMENT_ID_BODY_LENGTH].ljust(PAYMENT_ID_BODY_LENGTH, FILLER)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def fallback_payment_id(now: Optional[float] = None) -> str:
    """Build a syntactically valid id from the current time.

    Args:
        now: Optional POSIX timestamp in seconds; defaults to time.time().

    Returns:
        ``pay_`` + base-36 millisecond timestamp padded with the filler.
    """
    millis = int((time.time() if now is None else now) * 1000)
    return PAYMENT_ID_PREFIX + fit_body(_to_base36(millis))


def split_prefix(raw: str) -> Tuple[bool, str]:
    """Split raw into (has_prefix, cleaned remainder)."""
    if raw.startswith(PAYMENT_ID_PREFIX):
        return True, clean(raw[len(PAYMENT_ID_PREFIX):])
    return False, clean(raw)


def normalize(raw: Optional[str]) -> str:
    """Convert any raw identifier into a 26-character ``pay_`` id.

    Args:
        raw: Client order token, database UUID, gateway token, or None.

    Returns:
        The normalized payment id. Already normalized input is returned
        unchanged; empty input yields a timestamp based fallback.
    """
    if not raw:
        return fallback_payment_id()
    if is_normalized(raw):
        return raw

    _, body = split_prefix(raw)
    return PAYMENT_ID_PREFIX + fit_body(body)
