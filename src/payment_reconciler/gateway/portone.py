"""PortOne V2 REST gateway client."""

import logging
from typing import Optional, Dict, Any, List
from urllib.parse import quote

import httpx

from ..config import GatewayConfig
from ..exceptions import GatewayRejected, GatewayUnreachable
from .base import (
    GatewayProbeBase,
    GatewayPaymentRecord,
    ProbeResult,
    CancelRequest,
    CancelResult,
    PaymentState,
)

logger = logging.getLogger(__name__)


class PortOneGateway(GatewayProbeBase):
    """PortOne V2 gateway client built on httpx.

    Lookups and cancels are plain REST calls authorized with
    ``Authorization: PortOne <secret>``. Transport failures and 5xx responses
    raise GatewayUnreachable; 4xx lookups are reported as invalid candidates
    and 4xx cancels raise GatewayRejected.
    """

    # Fields that should not be kept in stored raw responses
    SENSITIVE_FIELDS = frozenset([
        'customer',
        'card',
        'bankAccount',
        'billingKey',
        'virtualAccount',
        'accountNumber',
    ])

    STATUS_MAPPING = {
        "READY": PaymentState.READY,
        "PENDING": PaymentState.PENDING,
        "PAY_PENDING": PaymentState.PENDING,
        "VIRTUAL_ACCOUNT_ISSUED": PaymentState.PENDING,
        "PAID": PaymentState.PAID,
        "FAILED": PaymentState.FAILED,
        "PARTIAL_CANCELLED": PaymentState.PARTIALLY_CANCELLED,
        "CANCELLED": PaymentState.CANCELLED,
    }

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the gateway client.

        Args:
            config: Gateway configuration. Falls back to GatewayConfig.from_env().
            client: Optional shared httpx client (mainly for tests).

        Raises:
            ValueError: If no API secret is configured.
        """
        self.config = config or GatewayConfig.from_env()
        if not self.config.api_secret:
            raise ValueError(
                "PORTONE_API_SECRET must be provided either in the config or environment"
            )
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": self.config.authorization_header,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    @staticmethod
    def _payment_path(payment_id: str) -> str:
        return f"/payments/{quote(payment_id, safe='')}"

    @staticmethod
    def _body(response: httpx.Response) -> Any:
        """Return the JSON body, or the text when it is not JSON."""
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, converting transport failures and 5xx to GatewayUnreachable."""
        client = self._get_client()
        try:
            response = await client.request(
                method,
                self._url(path),
                timeout=self.config.timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.error(f"PortOne {method} {path} timed out")
            raise GatewayUnreachable(f"Gateway request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"PortOne {method} {path} transport error: {type(e).__name__}")
            raise GatewayUnreachable(f"Gateway request failed: {e}") from e

        if response.status_code >= 500:
            logger.error(f"PortOne {method} {path} returned {response.status_code}")
            raise GatewayUnreachable(
                f"Gateway returned {response.status_code} for {method} {path}",
                status_code=response.status_code,
                response_body=self._body(response),
            )
        return response

    def _sanitize_response(self, raw_response: Dict[str, Any]) -> Dict[str, Any]:
        """Remove sensitive fields from a raw response.

        Args:
            raw_response: Raw response dictionary from the gateway.

        Returns:
            Sanitized response dictionary.
        """
        if not raw_response:
            return {}
        sanitized = {}
        for key, value in raw_response.items():
            if key in self.SENSITIVE_FIELDS:
                continue
            if isinstance(value, dict):
                sanitized[key] = self._sanitize_response(value)
            else:
                sanitized[key] = value
        return sanitized

    def _map_status(self, status: Optional[str]) -> str:
        if not status:
            return PaymentState.PENDING
        return self.STATUS_MAPPING.get(status.upper(), status.lower())

    def _convert_to_record(self, body: Any) -> GatewayPaymentRecord:
        """Convert a PortOne payment body to a GatewayPaymentRecord.

        Raises:
            ValueError: If the body is not a payment object.
        """
        if not isinstance(body, dict):
            raise ValueError("Payment body is not a JSON object")
        payment = body.get("payment", body)
        if not isinstance(payment, dict):
            raise ValueError("Payment body is not a JSON object")
        payment_id = payment.get("id") or payment.get("paymentId")
        if not payment_id:
            raise ValueError("Payment body has no id")

        amount = payment.get("amount")
        cancelled_amount = 0
        if isinstance(amount, dict):
            cancelled_amount = int(amount.get("cancelled") or 0)
            amount = amount.get("total")
        gateway_status = payment.get("status")

        return GatewayPaymentRecord(
            id=payment_id,
            status=self._map_status(gateway_status),
            gateway_status=gateway_status,
            amount=int(amount or 0),
            cancelled_amount=cancelled_amount,
            currency=payment.get("currency"),
            order_id=payment.get("orderId") or payment.get("order_id"),
            order_name=payment.get("orderName"),
            requested_at=payment.get("requestedAt"),
            paid_at=payment.get("paidAt"),
            cancelled_at=payment.get("cancelledAt"),
            updated_at=payment.get("updatedAt") or payment.get("statusChangedAt"),
            raw_data=self._sanitize_response(payment),
        )

    def _parse_record(self, body: Any, context: str) -> GatewayPaymentRecord:
        try:
            return self._convert_to_record(body)
        except (ValueError, TypeError) as e:
            logger.error(f"Unparseable payment body for {context}: {e}")
            raise GatewayUnreachable(
                f"Gateway returned an unparseable payment body for {context}",
                response_body=body,
            ) from e

    async def probe(self, candidate_id: str) -> ProbeResult:
        """Look up a payment by candidate id."""
        response = await self._request(
            "GET", self._payment_path(candidate_id), headers=self._headers()
        )
        if response.status_code >= 400:
            if response.status_code in (401, 403):
                logger.error(
                    f"PortOne rejected credentials ({response.status_code}) "
                    f"while probing {candidate_id}"
                )
            else:
                logger.debug(f"Candidate {candidate_id} not recognized ({response.status_code})")
            return ProbeResult(
                candidate_id=candidate_id, valid=False, status_code=response.status_code
            )

        record = self._parse_record(self._body(response), candidate_id)
        logger.info(f"Candidate {candidate_id} recognized with status {record.gateway_status}")
        return ProbeResult(
            candidate_id=candidate_id,
            valid=True,
            record=record,
            status_code=response.status_code,
        )

    async def find_by_order_id(self, order_id: str) -> Optional[GatewayPaymentRecord]:
        """Look up a payment by the merchant-side order reference."""
        params = {"order_id": order_id}
        if self.config.merchant_id:
            params["merchantId"] = self.config.merchant_id

        response = await self._request(
            "GET", "/payments", params=params, headers=self._headers()
        )
        if response.status_code >= 400:
            logger.info(f"No payment for order {order_id} ({response.status_code})")
            return None

        body = self._body(response)
        items: List[Any] = []
        if isinstance(body, dict):
            items = body.get("items") or body.get("payments") or []
        elif isinstance(body, list):
            items = body
        if not items:
            logger.info(f"No payment found for order {order_id}")
            return None

        records = [self._parse_record(item, f"order {order_id}") for item in items]
        for record in records:
            if record.order_id == order_id:
                return record
        # A record that names another order is never a match
        for record in records:
            if record.order_id is None:
                return record
        logger.warning(
            f"Lookup for order {order_id} returned only payments of other orders: "
            f"{[record.order_id for record in records]}"
        )
        return None

    async def cancel(
        self,
        payment_id: str,
        request: CancelRequest,
        idempotency_key: str,
    ) -> CancelResult:
        """Cancel a payment (fully, or partially when amount is set)."""
        payload: Dict[str, Any] = {"reason": request.reason}
        if request.amount is not None:
            payload["amount"] = request.amount
        if self.config.merchant_id:
            payload["mid"] = self.config.merchant_id

        logger.info(f"Cancelling payment {payment_id} (idempotency key {idempotency_key})")
        response = await self._request(
            "POST",
            f"{self._payment_path(payment_id)}/cancel",
            json=payload,
            headers=self._headers(idempotency_key),
        )
        body = self._body(response)

        if response.status_code >= 400:
            error_type = body.get("type") if isinstance(body, dict) else None
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(
                f"PortOne rejected cancel of {payment_id}: "
                f"{response.status_code} {error_type or ''}"
            )
            raise GatewayRejected(
                f"Gateway rejected cancel of {payment_id}: {message or response.status_code}",
                status_code=response.status_code,
                response_body=body,
                error_type=error_type,
                gateway_message=message,
            )

        raw = body if isinstance(body, dict) else {"body": body}
        record = None
        cancellation = raw.get("cancellation")
        if isinstance(cancellation, dict):
            status = cancellation.get("status", "SUCCEEDED")
            cancelled_amount = cancellation.get("totalAmount")
        elif "id" in raw and "status" in raw:
            record = self._parse_record(raw, payment_id)
            status = record.gateway_status or "SUCCEEDED"
            cancelled_amount = record.cancelled_amount
        else:
            status = "SUCCEEDED"
            cancelled_amount = request.amount

        logger.info(f"Payment {payment_id} cancel accepted with status {status}")
        return CancelResult(
            payment_id=payment_id,
            idempotency_key=idempotency_key,
            status=status,
            cancelled_amount=cancelled_amount,
            record=record,
            raw_response=raw,
        )

    async def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "provider": "portone", "base_url": self.config.base_url}
