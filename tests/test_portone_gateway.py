"""Tests for the PortOne gateway client with mocked HTTP."""

import json

import httpx
import pytest
import respx

from payment_reconciler.config import GatewayConfig
from payment_reconciler.exceptions import GatewayRejected, GatewayUnreachable
from payment_reconciler.gateway import CancelRequest, PaymentState, PortOneGateway
from payment_reconciler.reconciliation import ReconciliationEngine, ResolutionMethod

BASE_URL = "https://api.portone.io"
PAYMENT_ID = "pay_0196b31525b4271c4521ba"


def payment_body(payment_id=PAYMENT_ID, status="PAID", total=10000, cancelled=0, **extra):
    body = {
        "id": payment_id,
        "status": status,
        "orderName": "Test order",
        "amount": {"total": total, "cancelled": cancelled},
        "currency": "KRW",
        "requestedAt": "2026-01-05T10:00:00Z",
        "paidAt": "2026-01-05T10:00:05Z",
        "customer": {"name": "Kim", "phoneNumber": "010-0000-0000"},
        "method": {"type": "PaymentMethodCard", "card": {"number": "1234********"}},
    }
    body.update(extra)
    return body


@pytest.fixture
def portone_api():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        yield mock


@pytest.fixture
async def gateway():
    gateway = PortOneGateway(config=GatewayConfig(api_secret="test_secret"))
    yield gateway
    await gateway.aclose()


class TestConfiguration:

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            PortOneGateway(config=GatewayConfig(api_secret=""))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PORTONE_API_SECRET", "env_secret")
        monkeypatch.setenv("PORTONE_API_BASE_URL", "https://sandbox.example.com/")
        monkeypatch.setenv("PORTONE_MAX_READ_ATTEMPTS", "5")

        config = GatewayConfig.from_env()

        assert config.api_secret == "env_secret"
        assert config.base_url == "https://sandbox.example.com"
        assert config.max_read_attempts == 5
        assert config.authorization_header == "PortOne env_secret"

    def test_from_env_v2_secret_fallback(self, monkeypatch):
        monkeypatch.delenv("PORTONE_API_SECRET", raising=False)
        monkeypatch.setenv("PORTONE_V2_API_SECRET", "v2_secret")

        assert GatewayConfig.from_env().api_secret == "v2_secret"


class TestProbe:

    async def test_valid_payment(self, portone_api, gateway):
        route = portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(200, json=payment_body())
        )

        result = await gateway.probe(PAYMENT_ID)

        assert result.valid
        assert result.status_code == 200
        assert result.record.id == PAYMENT_ID
        assert result.record.status == PaymentState.PAID
        assert result.record.gateway_status == "PAID"
        assert result.record.amount == 10000
        assert result.record.currency == "KRW"
        assert route.calls.last.request.headers["Authorization"] == "PortOne test_secret"

    async def test_sensitive_fields_removed(self, portone_api, gateway):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(200, json=payment_body())
        )

        record = (await gateway.probe(PAYMENT_ID)).record

        assert "customer" not in record.raw_data
        assert "card" not in record.raw_data["method"]
        assert record.raw_data["orderName"] == "Test order"

    async def test_wrapped_payment_body(self, portone_api, gateway):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(
                200, json={"payment": payment_body(status="PARTIAL_CANCELLED", cancelled=4000)}
            )
        )

        record = (await gateway.probe(PAYMENT_ID)).record

        assert record.status == PaymentState.PARTIALLY_CANCELLED
        assert record.cancelled_amount == 4000
        assert record.cancellable_amount == 6000

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404])
    async def test_client_errors_mean_invalid_candidate(self, portone_api, gateway, status_code):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(
                status_code, json={"type": "PAYMENT_NOT_FOUND", "message": "not found"}
            )
        )

        result = await gateway.probe(PAYMENT_ID)

        assert not result.valid
        assert result.status_code == status_code

    async def test_server_error_is_unreachable(self, portone_api, gateway):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(503, json={"message": "maintenance"})
        )

        with pytest.raises(GatewayUnreachable) as exc_info:
            await gateway.probe(PAYMENT_ID)

        assert exc_info.value.status_code == 503
        assert exc_info.value.response_body == {"message": "maintenance"}

    async def test_timeout_is_unreachable(self, portone_api, gateway):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(side_effect=httpx.ConnectTimeout("timed out"))

        with pytest.raises(GatewayUnreachable):
            await gateway.probe(PAYMENT_ID)

    async def test_unparseable_success_body_is_unreachable(self, portone_api, gateway):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(200, text="<html>proxy</html>")
        )

        with pytest.raises(GatewayUnreachable):
            await gateway.probe(PAYMENT_ID)

    @pytest.mark.parametrize("body", [
        {"payment": None},
        {"payment": ["pay_x"]},
        {"id": PAYMENT_ID, "status": "PAID", "amount": [10000]},
    ])
    async def test_malformed_payment_body_is_unreachable(self, portone_api, gateway, body):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(
            return_value=httpx.Response(200, json=body)
        )

        with pytest.raises(GatewayUnreachable):
            await gateway.probe(PAYMENT_ID)


class TestFindByOrderId:

    async def test_returns_matching_order(self, portone_api, gateway):
        route = portone_api.get("/payments").mock(
            return_value=httpx.Response(200, json={"items": [
                payment_body(payment_id="pay_" + "A" * 22, orderId="other"),
                payment_body(orderId="order-1"),
            ]})
        )

        record = await gateway.find_by_order_id("order-1")

        assert record.id == PAYMENT_ID
        assert record.order_id == "order-1"
        assert route.calls.last.request.url.params["order_id"] == "order-1"

    async def test_no_items(self, portone_api, gateway):
        portone_api.get("/payments").mock(return_value=httpx.Response(200, json={"items": []}))

        assert await gateway.find_by_order_id("order-1") is None

    async def test_not_found(self, portone_api, gateway):
        portone_api.get("/payments").mock(return_value=httpx.Response(404, json={}))

        assert await gateway.find_by_order_id("order-1") is None

    async def test_merchant_id_sent(self, portone_api):
        gateway = PortOneGateway(config=GatewayConfig(api_secret="s", merchant_id="mid-1"))
        route = portone_api.get("/payments").mock(return_value=httpx.Response(200, json={"items": []}))

        await gateway.find_by_order_id("order-1")
        await gateway.aclose()

        assert route.calls.last.request.url.params["merchantId"] == "mid-1"

    async def test_payment_of_another_order_is_not_returned(self, portone_api, gateway):
        portone_api.get("/payments").mock(
            return_value=httpx.Response(200, json={"items": [
                payment_body(payment_id="pay_" + "B" * 22, orderId="someone-else"),
            ]})
        )

        assert await gateway.find_by_order_id("order-1") is None

    async def test_record_without_order_reference_is_accepted(self, portone_api, gateway):
        portone_api.get("/payments").mock(
            return_value=httpx.Response(200, json={"items": [
                payment_body(payment_id="pay_" + "B" * 22, orderId="someone-else"),
                payment_body(),
            ]})
        )

        record = await gateway.find_by_order_id("order-1")

        assert record.id == PAYMENT_ID
        assert record.order_id is None

    async def test_non_object_item_is_unreachable(self, portone_api, gateway):
        portone_api.get("/payments").mock(
            return_value=httpx.Response(200, json={"items": ["pay_x"]})
        )

        with pytest.raises(GatewayUnreachable):
            await gateway.find_by_order_id("order-1")


class TestCancel:

    async def test_cancel_request_shape(self, portone_api, gateway):
        route = portone_api.post(f"/payments/{PAYMENT_ID}/cancel").mock(
            return_value=httpx.Response(200, json={
                "cancellation": {"status": "SUCCEEDED", "id": "c1", "totalAmount": 5000}
            })
        )

        result = await gateway.cancel(PAYMENT_ID, CancelRequest(reason="Out of stock", amount=5000), "idem-1")

        request = route.calls.last.request
        assert json.loads(request.content) == {"reason": "Out of stock", "amount": 5000}
        assert request.headers["Idempotency-Key"] == "idem-1"
        assert request.headers["Authorization"] == "PortOne test_secret"
        assert result.status == "SUCCEEDED"
        assert result.cancelled_amount == 5000
        assert result.idempotency_key == "idem-1"

    async def test_full_cancel_omits_amount(self, portone_api):
        gateway = PortOneGateway(config=GatewayConfig(api_secret="s", merchant_id="mid-1"))
        route = portone_api.post(f"/payments/{PAYMENT_ID}/cancel").mock(
            return_value=httpx.Response(200, json={"cancellation": {"status": "SUCCEEDED"}})
        )

        await gateway.cancel(PAYMENT_ID, CancelRequest(reason="r"), "idem-2")
        await gateway.aclose()

        assert json.loads(route.calls.last.request.content) == {"reason": "r", "mid": "mid-1"}

    async def test_already_cancelled(self, portone_api, gateway):
        body = {"type": "PAYMENT_ALREADY_CANCELLED", "message": "Payment already cancelled"}
        portone_api.post(f"/payments/{PAYMENT_ID}/cancel").mock(
            return_value=httpx.Response(409, json=body)
        )

        with pytest.raises(GatewayRejected) as exc_info:
            await gateway.cancel(PAYMENT_ID, CancelRequest(reason="r"), "idem-3")

        error = exc_info.value
        assert error.already_cancelled
        assert error.status_code == 409
        assert error.response_body == body
        assert error.gateway_message == "Payment already cancelled"

    async def test_rejection_keeps_raw_body(self, portone_api, gateway):
        portone_api.post(f"/payments/{PAYMENT_ID}/cancel").mock(
            return_value=httpx.Response(400, json={
                "type": "CANCEL_AMOUNT_EXCEEDS_CANCELLABLE_AMOUNT", "message": "too much"
            })
        )

        with pytest.raises(GatewayRejected) as exc_info:
            await gateway.cancel(PAYMENT_ID, CancelRequest(reason="r", amount=99999), "idem-4")

        assert not exc_info.value.already_cancelled
        assert exc_info.value.to_dict()["error_type"] == "CANCEL_AMOUNT_EXCEEDS_CANCELLABLE_AMOUNT"

    async def test_server_error(self, portone_api, gateway):
        portone_api.post(f"/payments/{PAYMENT_ID}/cancel").mock(
            return_value=httpx.Response(500, text="internal error")
        )

        with pytest.raises(GatewayUnreachable) as exc_info:
            await gateway.cancel(PAYMENT_ID, CancelRequest(reason="r"), "idem-5")

        assert exc_info.value.response_body == "internal error"


class TestEngineOverHttp:

    async def test_resolves_legacy_uuid(self, portone_api, gateway_config):
        def lookup(request):
            if request.url.path == f"/payments/{PAYMENT_ID}":
                return httpx.Response(200, json=payment_body())
            return httpx.Response(404, json={"type": "PAYMENT_NOT_FOUND"})

        route = portone_api.route(method="GET").mock(side_effect=lookup)
        gateway = PortOneGateway(config=gateway_config)
        engine = ReconciliationEngine(gateway, config=gateway_config)

        resolution = await engine.resolve_detailed("0196b315-25b4-27a5-c420-5abf1c4521ba")
        await gateway.aclose()

        assert resolution.payment_id == PAYMENT_ID
        assert resolution.method == ResolutionMethod.CANDIDATE
        assert route.call_count == 6

    async def test_retries_server_errors(self, portone_api, gateway_config):
        portone_api.get(f"/payments/{PAYMENT_ID}").mock(side_effect=[
            httpx.Response(502),
            httpx.Response(200, json=payment_body()),
        ])
        gateway = PortOneGateway(config=gateway_config)
        engine = ReconciliationEngine(gateway, config=gateway_config)

        payment_id = await engine.resolve(PAYMENT_ID)
        await gateway.aclose()

        assert payment_id == PAYMENT_ID
