"""Simulator gateway for exercising reconciliation flows without network calls."""

import asyncio
import logging
from typing import Dict, Any, Optional, List, Set, Tuple
from dataclasses import dataclass, field
from datetime import datetime

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


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0  # Simulated response delay in ms
    transient_failures: int = 0  # Number of upcoming calls that fail with GatewayUnreachable
    unreachable: bool = False  # Every call fails with GatewayUnreachable


@dataclass
class SimulatedCall:
    """One recorded gateway call."""
    operation: str  # probe|find_by_order_id|cancel
    target: str
    idempotency_key: Optional[str] = None
    at: datetime = field(default_factory=datetime.utcnow)


class SimulatorGateway(GatewayProbeBase):
    """
    In-memory gateway used by tests and local runs.

    Features:
    - Seeded payments, indexed by payment id and order id
    - Scripted transport failures (transient or permanent)
    - Gateway-side idempotency: a repeated key replays the first result
    - Already-cancelled and over-amount rejections
    - Call log for asserting probe order
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._payments: Dict[str, GatewayPaymentRecord] = {}
        self._cancel_results: Dict[str, CancelResult] = {}
        self._unreachable_ids: Set[str] = set()
        self.calls: List[SimulatedCall] = []
        logger.info("SimulatorGateway initialized")

    def add_payment(
        self,
        payment_id: str,
        amount: int = 10000,
        status: str = PaymentState.PAID,
        order_id: Optional[str] = None,
        currency: str = "KRW",
        cancelled_amount: int = 0,
    ) -> GatewayPaymentRecord:
        """Seed a payment the gateway will recognize."""
        now = datetime.utcnow()
        record = GatewayPaymentRecord(
            id=payment_id,
            status=status,
            gateway_status=status.upper(),
            amount=amount,
            cancelled_amount=cancelled_amount,
            currency=currency,
            order_id=order_id,
            requested_at=now,
            paid_at=now if status == PaymentState.PAID else None,
            updated_at=now,
            raw_data={"id": payment_id, "status": status.upper(), "simulator": True},
        )
        self._payments[payment_id] = record
        return record

    def mark_unreachable(self, payment_id: str) -> None:
        """Make every call touching payment_id fail at the transport level."""
        self._unreachable_ids.add(payment_id)

    def get_payment(self, payment_id: str) -> Optional[GatewayPaymentRecord]:
        return self._payments.get(payment_id)

    def calls_for(self, operation: str) -> List[SimulatedCall]:
        return [c for c in self.calls if c.operation == operation]

    @property
    def probed_ids(self) -> List[str]:
        return [c.target for c in self.calls_for("probe")]

    async def _simulate_transport(self, operation: str, target: str) -> None:
        if self.config.delay_ms > 0:
            await asyncio.sleep(self.config.delay_ms / 1000.0)
        if self.config.unreachable or target in self._unreachable_ids:
            raise GatewayUnreachable(f"Simulated outage during {operation} {target}")
        if self.config.transient_failures > 0:
            self.config.transient_failures -= 1
            raise GatewayUnreachable(f"Simulated transient failure during {operation} {target}")

    async def probe(self, candidate_id: str) -> ProbeResult:
        self.calls.append(SimulatedCall(operation="probe", target=candidate_id))
        await self._simulate_transport("probe", candidate_id)
        record = self._payments.get(candidate_id)
        if record is None:
            return ProbeResult(candidate_id=candidate_id, valid=False, status_code=404)
        return ProbeResult(
            candidate_id=candidate_id, valid=True, record=record.model_copy(), status_code=200
        )

    async def find_by_order_id(self, order_id: str) -> Optional[GatewayPaymentRecord]:
        self.calls.append(SimulatedCall(operation="find_by_order_id", target=order_id))
        await self._simulate_transport("find_by_order_id", order_id)
        for record in self._payments.values():
            if record.order_id == order_id:
                return record.model_copy()
        return None

    def _reject(self, payment_id: str, status_code: int, error_type: str, message: str):
        body = {"type": error_type, "message": message}
        return GatewayRejected(
            f"Gateway rejected cancel of {payment_id}: {message}",
            status_code=status_code,
            response_body=body,
            error_type=error_type,
            gateway_message=message,
        )

    async def cancel(
        self,
        payment_id: str,
        request: CancelRequest,
        idempotency_key: str,
    ) -> CancelResult:
        self.calls.append(SimulatedCall(
            operation="cancel", target=payment_id, idempotency_key=idempotency_key
        ))
        await self._simulate_transport("cancel", payment_id)

        if idempotency_key in self._cancel_results:
            logger.info(f"Replaying cancel result for idempotency key {idempotency_key}")
            return self._cancel_results[idempotency_key]

        record = self._payments.get(payment_id)
        if record is None:
            raise self._reject(payment_id, 404, "PAYMENT_NOT_FOUND", "Payment not found")
        if record.status == PaymentState.CANCELLED:
            raise self._reject(
                payment_id, 409, "PAYMENT_ALREADY_CANCELLED", "Payment is already cancelled"
            )
        if record.status not in (PaymentState.PAID, PaymentState.PARTIALLY_CANCELLED):
            raise self._reject(
                payment_id, 409, "PAYMENT_NOT_PAID", f"Payment is {record.status}"
            )

        amount = request.amount if request.amount is not None else record.cancellable_amount
        if amount > record.cancellable_amount:
            raise self._reject(
                payment_id,
                400,
                "CANCEL_AMOUNT_EXCEEDS_CANCELLABLE_AMOUNT",
                f"Cancel amount {amount} exceeds cancellable {record.cancellable_amount}",
            )

        record.cancelled_amount += amount
        record.status = (
            PaymentState.CANCELLED
            if record.cancellable_amount == 0
            else PaymentState.PARTIALLY_CANCELLED
        )
        record.gateway_status = (
            "CANCELLED" if record.status == PaymentState.CANCELLED else "PARTIAL_CANCELLED"
        )
        record.cancelled_at = datetime.utcnow()
        record.updated_at = record.cancelled_at

        result = CancelResult(
            payment_id=payment_id,
            idempotency_key=idempotency_key,
            status="SUCCEEDED",
            cancelled_amount=amount,
            record=record.model_copy(),
            raw_response={
                "cancellation": {
                    "status": "SUCCEEDED",
                    "totalAmount": amount,
                    "reason": request.reason,
                },
                "simulator": True,
            },
        )
        self._cancel_results[idempotency_key] = result
        return result

    def get_cancel_keys(self) -> List[Tuple[str, str]]:
        """Return (payment_id, idempotency_key) for every processed cancel."""
        return [(r.payment_id, key) for key, r in self._cancel_results.items()]

    def clear(self) -> None:
        """Clear all payments and recorded calls (for test cleanup)."""
        self._payments.clear()
        self._cancel_results.clear()
        self._unreachable_ids.clear()
        self.calls.clear()

    async def health_check(self) -> Dict[str, Any]:
        return {
            "ok": not self.config.unreachable,
            "provider": "simulator",
            "payment_count": len(self._payments),
        }
