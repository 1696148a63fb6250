"""Tests for the reconciliation engine against the simulator gateway."""

import uuid

import pytest

from payment_reconciler.config import GatewayConfig
from payment_reconciler.exceptions import (
    GatewayRejected,
    GatewayUnreachable,
    InvalidInput,
    PaymentNotFound,
    ResolutionFailed,
)
from payment_reconciler.gateway import PaymentState, SimulatorConfig, SimulatorGateway
from payment_reconciler.identifiers import generate_candidates, normalize
from payment_reconciler.reconciliation import (
    InMemoryIdentifierCache,
    ReconciliationEngine,
    ResolutionMethod,
)

UUID = "0196b315-25b4-27a5-c420-5abf1c4521ba"
DERIVED = "pay_0196b31525b4271c4521ba"


@pytest.fixture
def engine(simulator, gateway_config):
    return ReconciliationEngine(simulator, config=gateway_config)


class TestResolve:

    async def test_direct_hit_stops_after_one_probe(self, simulator, engine):
        simulator.add_payment(normalize("abc123"))

        resolution = await engine.resolve_detailed("abc123")

        assert resolution.payment_id == normalize("abc123")
        assert resolution.method == ResolutionMethod.DIRECT
        assert simulator.probed_ids == [normalize("abc123")]

    async def test_uuid_derivation_found_after_earlier_candidates(self, simulator, engine):
        simulator.add_payment(DERIVED)

        resolution = await engine.resolve_detailed(UUID)

        assert resolution.payment_id == DERIVED
        assert resolution.method == ResolutionMethod.CANDIDATE
        hex_digits = UUID.replace("-", "")
        assert simulator.probed_ids == [
            normalize(UUID),
            UUID,
            "pay_" + UUID,
            hex_digits,
            "pay_" + hex_digits,
            DERIVED,
        ]
        assert resolution.attempts == simulator.probed_ids

    async def test_normalized_id_is_not_probed_twice(self, simulator, engine):
        with pytest.raises(ResolutionFailed):
            await engine.resolve("abc123")

        probed = simulator.probed_ids
        assert len(probed) == len(set(probed))
        assert set(probed) == set(generate_candidates("abc123")) | {normalize("abc123")}

    async def test_order_lookup_is_last_resort(self, simulator, engine):
        real_id = "pay_" + "Z" * 22
        simulator.add_payment(real_id, order_id="order-42")

        resolution = await engine.resolve_detailed("order-42")

        assert resolution.payment_id == real_id
        assert resolution.method == ResolutionMethod.ORDER_LOOKUP
        assert [c.target for c in simulator.calls_for("find_by_order_id")] == ["order-42"]
        assert resolution.record.order_id == "order-42"

    async def test_order_lookup_uses_explicit_order_id(self, simulator, engine):
        real_id = "pay_" + "Q" * 22
        simulator.add_payment(real_id, order_id="merchant-order-7")

        payment_id = await engine.resolve("legacy-token", order_id="merchant-order-7")

        assert payment_id == real_id
        assert simulator.calls_for("find_by_order_id")[0].target == "merchant-order-7"

    async def test_resolution_failed_carries_attempts(self, simulator, engine):
        with pytest.raises(ResolutionFailed) as exc_info:
            await engine.resolve(UUID)

        error = exc_info.value
        assert error.raw_identifier == UUID
        assert error.attempted == simulator.probed_ids
        assert DERIVED in error.attempted
        assert isinstance(error, PaymentNotFound)

    async def test_empty_identifier_probes_fallback(self, simulator, engine):
        with pytest.raises(ResolutionFailed):
            await engine.resolve(None)

        assert len(simulator.probed_ids) >= 1
        assert all(p.startswith("pay_") for p in simulator.probed_ids)
        assert simulator.calls_for("find_by_order_id") == []

    async def test_cache_hit_skips_gateway(self, simulator, gateway_config):
        cache = InMemoryIdentifierCache()
        engine = ReconciliationEngine(simulator, config=gateway_config, cache=cache)
        simulator.add_payment(DERIVED)

        first = await engine.resolve_detailed(UUID)
        assert first.method == ResolutionMethod.CANDIDATE
        assert len(cache) == 1

        simulator.calls.clear()
        second = await engine.resolve_detailed(UUID)

        assert second.payment_id == DERIVED
        assert second.method == ResolutionMethod.CACHE
        assert simulator.calls == []

    async def test_failed_resolution_is_not_cached(self, simulator, gateway_config):
        cache = InMemoryIdentifierCache()
        engine = ReconciliationEngine(simulator, config=gateway_config, cache=cache)

        with pytest.raises(ResolutionFailed):
            await engine.resolve("abc123")

        assert len(cache) == 0

    async def test_search_can_bypass_a_cached_mapping(self, simulator, gateway_config):
        cache = InMemoryIdentifierCache()
        await cache.set(UUID, "pay_" + "X" * 22, ResolutionMethod.CANDIDATE)
        engine = ReconciliationEngine(simulator, config=gateway_config, cache=cache)
        simulator.add_payment(DERIVED)

        resolution = await engine.resolve_detailed(UUID, use_cache=False)

        assert resolution.method == ResolutionMethod.CANDIDATE
        assert resolution.payment_id == DERIVED
        assert await cache.get(UUID) == DERIVED

    async def test_forget_drops_mapping(self, simulator, gateway_config):
        cache = InMemoryIdentifierCache()
        engine = ReconciliationEngine(simulator, config=gateway_config, cache=cache)
        simulator.add_payment(DERIVED)
        await engine.resolve(UUID)

        await engine.forget(UUID)
        await engine.forget("never-cached")

        assert len(cache) == 0


class TestReadRetries:

    async def test_transient_failures_are_retried(self, gateway_config):
        simulator = SimulatorGateway(SimulatorConfig(transient_failures=2))
        simulator.add_payment(normalize("abc123"))
        engine = ReconciliationEngine(simulator, config=gateway_config)

        payment_id = await engine.resolve("abc123")

        assert payment_id == normalize("abc123")
        assert len(simulator.calls_for("probe")) == 3

    async def test_exhausted_retries_abort_search(self, gateway_config):
        simulator = SimulatorGateway(SimulatorConfig(unreachable=True))
        engine = ReconciliationEngine(simulator, config=gateway_config)

        with pytest.raises(GatewayUnreachable):
            await engine.resolve(UUID)

        # Only the first candidate was tried, once per allowed attempt
        assert simulator.probed_ids == [normalize(UUID)] * gateway_config.max_read_attempts

    async def test_single_attempt_config_does_not_retry(self):
        simulator = SimulatorGateway(SimulatorConfig(transient_failures=1))
        engine = ReconciliationEngine(
            simulator, config=GatewayConfig(max_read_attempts=1, retry_backoff_seconds=0)
        )

        with pytest.raises(GatewayUnreachable):
            await engine.resolve("abc123")

        assert len(simulator.calls) == 1

    async def test_fetch_record(self, simulator, engine):
        simulator.add_payment(DERIVED, amount=5000)

        record = await engine.fetch_record(DERIVED)
        assert record.amount == 5000

        with pytest.raises(PaymentNotFound):
            await engine.fetch_record("pay_" + "9" * 22)


class TestCancel:

    async def test_cancel_uses_fresh_uuid_key_each_call(self, simulator, engine):
        simulator.add_payment(DERIVED, amount=10000)

        first = await engine.cancel(DERIVED, reason="partial", amount=3000)
        second = await engine.cancel(DERIVED, reason="partial", amount=3000)

        assert first.idempotency_key != second.idempotency_key
        uuid.UUID(first.idempotency_key)
        uuid.UUID(second.idempotency_key)
        assert simulator.get_payment(DERIVED).cancelled_amount == 6000

    async def test_empty_reason_uses_default(self, simulator, engine, gateway_config):
        simulator.add_payment(DERIVED)

        result = await engine.cancel(DERIVED, reason="   ")

        assert result.raw_response["cancellation"]["reason"] == gateway_config.default_cancel_reason
        assert result.record.status == PaymentState.CANCELLED

    @pytest.mark.parametrize("amount", [0, -100])
    async def test_non_positive_amount_rejected_before_gateway(self, simulator, engine, amount):
        simulator.add_payment(DERIVED)

        with pytest.raises(InvalidInput):
            await engine.cancel(DERIVED, amount=amount)

        assert simulator.calls_for("cancel") == []

    async def test_empty_payment_id_rejected(self, engine):
        with pytest.raises(InvalidInput):
            await engine.cancel("")

    async def test_transport_failure_is_not_retried(self, gateway_config):
        simulator = SimulatorGateway(SimulatorConfig(transient_failures=1))
        simulator.add_payment(DERIVED)
        engine = ReconciliationEngine(simulator, config=gateway_config)

        with pytest.raises(GatewayUnreachable) as exc_info:
            await engine.cancel(DERIVED)

        assert len(simulator.calls_for("cancel")) == 1
        assert exc_info.value.idempotency_key == simulator.calls_for("cancel")[0].idempotency_key
        assert simulator.get_payment(DERIVED).status == PaymentState.PAID

    async def test_already_cancelled_rejection_propagates(self, simulator, engine):
        simulator.add_payment(DERIVED, status=PaymentState.CANCELLED, cancelled_amount=10000)

        with pytest.raises(GatewayRejected) as exc_info:
            await engine.cancel(DERIVED)

        assert exc_info.value.already_cancelled
        assert exc_info.value.response_body["type"] == "PAYMENT_ALREADY_CANCELLED"

    async def test_resolve_and_cancel(self, simulator, engine):
        simulator.add_payment(DERIVED, amount=8000)

        resolution, result = await engine.resolve_and_cancel(UUID, reason="customer request")

        assert resolution.payment_id == DERIVED
        assert result.payment_id == DERIVED
        assert result.cancelled_amount == 8000
        assert simulator.get_payment(DERIVED).status == PaymentState.CANCELLED
