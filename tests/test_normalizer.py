"""Tests for identifier normalization."""

import pytest

from payment_reconciler.identifiers.normalizer import (
    FILLER,
    PAYMENT_ID_BODY_LENGTH,
    PAYMENT_ID_LENGTH,
    PAYMENT_ID_PREFIX,
    clean,
    fallback_payment_id,
    fit_body,
    is_normalized,
    normalize,
    split_prefix,
)

UUID = "0196b315-25b4-27a5-c420-5abf1c4521ba"


class TestConstants:

    def test_lengths(self):
        assert PAYMENT_ID_PREFIX == "pay_"
        assert PAYMENT_ID_BODY_LENGTH == 22
        assert PAYMENT_ID_LENGTH == 26
        assert FILLER == "0"


class TestIsNormalized:

    def test_accepts_gateway_shape(self):
        assert is_normalized("pay_" + "A1" * 11)

    @pytest.mark.parametrize("value", [
        None,
        "",
        "pay_" + "a" * 21,
        "pay_" + "a" * 23,
        "PAY_" + "a" * 22,
        "pay_" + "a" * 21 + "-",
        "a" * 26,
    ])
    def test_rejects_other_shapes(self, value):
        assert not is_normalized(value)


class TestNormalize:

    def test_already_normalized_is_unchanged(self):
        payment_id = "pay_ABCDEFGHIJKLMNOPQRSTUV"
        assert normalize(payment_id) == payment_id

    def test_short_token_is_padded(self):
        assert normalize("abc123") == "pay_abc123" + "0" * 16

    def test_uuid_hyphens_stripped_and_truncated(self):
        assert normalize(UUID) == "pay_" + UUID.replace("-", "")[:22]

    def test_existing_prefix_is_kept(self):
        assert normalize("pay_abc-123") == "pay_" + "abc123".ljust(22, "0")

    def test_prefix_not_duplicated(self):
        result = normalize("pay_short")
        assert result.count("pay_") == 1
        assert result == "pay_short" + "0" * 17

    def test_long_input_is_truncated(self):
        result = normalize("x" * 40)
        assert result == "pay_" + "x" * 22

    def test_non_ascii_characters_removed(self):
        result = normalize("주문-123")
        assert result == "pay_123" + "0" * 19
        assert is_normalized(result)

    @pytest.mark.parametrize("raw", [None, ""])
    def test_empty_input_yields_fallback(self, raw):
        result = normalize(raw)
        assert result.startswith("pay_")
        assert len(result) == PAYMENT_ID_LENGTH
        assert is_normalized(result)

    @pytest.mark.parametrize("raw", [
        "abc123",
        UUID,
        "pay_abc-123",
        "order_1700000000000_x9",
        "x" * 40,
    ])
    def test_output_is_always_normalized_and_stable(self, raw):
        once = normalize(raw)
        assert len(once) == 26
        assert is_normalized(once)
        assert normalize(once) == once


class TestHelpers:

    def test_clean_strips_non_alphanumerics(self):
        assert clean("a-b_c d!") == "abcd"

    def test_fit_body(self):
        assert fit_body("abc") == "abc" + "0" * 19
        assert fit_body("y" * 30) == "y" * 22

    def test_split_prefix(self):
        assert split_prefix("pay_a-b") == (True, "ab")
        assert split_prefix("a-b") == (False, "ab")

    def test_fallback_at_epoch(self):
        assert fallback_payment_id(now=0) == "pay_" + "0" * 22

    def test_fallback_is_base36_milliseconds(self):
        # 1000 ms is "rs" in base 36
        assert fallback_payment_id(now=1.0) == "pay_rs" + "0" * 20

    def test_fallback_uses_current_time(self):
        assert is_normalized(fallback_payment_id())
