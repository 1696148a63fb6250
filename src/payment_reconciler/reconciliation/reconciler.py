"""Comparison of locally stored payments with gateway records."""

import logging
from datetime import datetime
from typing import List, Dict, Optional, Set

from ..gateway.base import GatewayPaymentRecord, PaymentState
from .models import LocalPayment, Discrepancy, DiscrepancyType

logger = logging.getLogger(__name__)


class Reconciler:
    """Finds the fields where a local payment disagrees with the gateway."""

    # Canonical status -> spellings seen in local rows written by older checkout code
    STATUS_EQUIVALENTS: Dict[str, Set[str]] = {
        PaymentState.READY: {"ready"},
        PaymentState.PENDING: {"pending", "pay_pending", "virtual_account_issued", "waiting"},
        PaymentState.PAID: {"paid", "success", "succeeded", "completed", "done"},
        PaymentState.FAILED: {"failed", "fail", "error"},
        PaymentState.PARTIALLY_CANCELLED: {
            "partially_cancelled", "partial_cancelled", "partially_canceled", "partial_cancel",
        },
        PaymentState.CANCELLED: {"cancelled", "canceled", "cancel", "refunded", "voided"},
    }

    def __init__(self, amount_tolerance: int = 0):
        """Initialize the reconciler.

        Args:
            amount_tolerance: Tolerance for amount differences (in minor units).
                             Set to 0 for exact matching.
        """
        self.amount_tolerance = amount_tolerance

    def canonical_status(self, status: Optional[str]) -> str:
        """Map any local or gateway status spelling to its canonical form.

        Unknown values are returned lowercased.
        """
        status_lower = (status or "").strip().lower()
        for canonical, equivalents in self.STATUS_EQUIVALENTS.items():
            if status_lower == canonical or status_lower in equivalents:
                return canonical
        return status_lower

    def statuses_match(self, local_status: Optional[str], gateway_status: Optional[str]) -> bool:
        return self.canonical_status(local_status) == self.canonical_status(gateway_status)

    def _amounts_match(self, local_amount: int, gateway_amount: int) -> bool:
        return abs(local_amount - gateway_amount) <= self.amount_tolerance

    def compare(
        self,
        local: LocalPayment,
        record: GatewayPaymentRecord,
    ) -> List[Discrepancy]:
        """Compare a local payment with its gateway record.

        Args:
            local: Payment as stored locally.
            record: Authoritative gateway record for the resolved id.

        Returns:
            One Discrepancy per differing field; empty when they agree.
        """
        discrepancies: List[Discrepancy] = []
        now = datetime.utcnow()

        def add(kind: DiscrepancyType, field_name: str, local_value, gateway_value) -> None:
            discrepancies.append(Discrepancy(
                order_id=local.order_id,
                payment_id=record.id,
                discrepancy_type=kind,
                field_name=field_name,
                local_value=local_value,
                gateway_value=gateway_value,
                detected_at=now,
            ))

        if local.resolved_payment_id and local.resolved_payment_id != record.id:
            add(
                DiscrepancyType.PAYMENT_ID_MISMATCH,
                "resolved_payment_id",
                local.resolved_payment_id,
                record.id,
            )

        if not self.statuses_match(local.status, record.status):
            add(DiscrepancyType.STATUS_MISMATCH, "status", local.status, record.status)

        if not self._amounts_match(local.amount, record.amount):
            add(DiscrepancyType.AMOUNT_MISMATCH, "amount", local.amount, record.amount)

        if not self._amounts_match(local.cancelled_amount, record.cancelled_amount):
            add(
                DiscrepancyType.AMOUNT_MISMATCH,
                "cancelled_amount",
                local.cancelled_amount,
                record.cancelled_amount,
            )

        if record.currency and local.currency.upper() != record.currency.upper():
            add(DiscrepancyType.CURRENCY_MISMATCH, "currency", local.currency, record.currency)

        if discrepancies:
            logger.info(
                f"Order {local.order_id} differs from gateway payment {record.id} in "
                f"{', '.join(d.field_name for d in discrepancies)}"
            )
        return discrepancies
