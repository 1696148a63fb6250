"""Service layer tying the reconciliation engine to local payment storage."""

import uuid
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import GatewayConfig
from ..database import (
    Payment,
    PaymentRepository,
    TransactionHistoryRepository,
    TransactionAction,
)
from ..exceptions import (
    GatewayRejected,
    GatewayUnreachable,
    InvalidInput,
    PaymentNotFound,
    ResolutionFailed,
)
from ..gateway.base import GatewayPaymentRecord, GatewayProbeBase, PaymentState
from .cache import DatabaseIdentifierCache, IdentifierCache
from .engine import ReconciliationEngine
from .models import (
    CancelOutcome,
    LocalPayment,
    Resolution,
    ResolutionMethod,
    SyncReport,
    SyncResult,
    SyncStatus,
)
from .reconciler import Reconciler
from .report import ReportGenerator

logger = logging.getLogger(__name__)

# Cancellation statuses that confirm the gateway has applied the cancel
CONFIRMED_CANCEL_STATUSES = frozenset(["SUCCEEDED", "CANCELLED", "PARTIAL_CANCELLED"])


class ReconciliationService:
    """Cancels and syncs locally stored payments against the gateway.

    The gateway is authoritative: local rows only move to a cancelled state
    after the gateway confirms it, and every attempt leaves a history entry.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayProbeBase,
        config: Optional[GatewayConfig] = None,
        cache: Optional[IdentifierCache] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            gateway: Gateway client.
            config: Gateway settings. Defaults to GatewayConfig().
            cache: Identifier cache. Defaults to the identifier_mappings table.
        """
        self.session = session
        self.payment_repo = PaymentRepository(session)
        self.history_repo = TransactionHistoryRepository(session)
        self.config = config or GatewayConfig()
        self.engine = ReconciliationEngine(
            gateway,
            config=self.config,
            cache=cache if cache is not None else DatabaseIdentifierCache(session),
        )
        self.reconciler = Reconciler()

    async def _get_payment(self, order_id: str) -> Payment:
        if not order_id:
            raise InvalidInput("order_id is required")
        payment = await self.payment_repo.get_by_order_id(order_id)
        if payment is None:
            raise PaymentNotFound(f"No local payment for order {order_id}")
        return payment

    async def _resolve(self, payment: Payment) -> Resolution:
        """Resolve the gateway id for a stored payment.

        A previously confirmed id is verified first; otherwise resolution
        starts from the stored payment key, or the order id when no key was
        stored. A stored or cached id the gateway no longer recognizes is
        dropped and the candidate search runs again.
        """
        raw = payment.payment_key or payment.order_id

        if payment.resolved_payment_id:
            try:
                record = await self.engine.fetch_record(payment.resolved_payment_id)
                return Resolution(
                    raw_identifier=payment.resolved_payment_id,
                    payment_id=record.id,
                    method=ResolutionMethod.DIRECT,
                    attempts=[payment.resolved_payment_id],
                    record=record,
                )
            except PaymentNotFound:
                logger.warning(
                    f"Stored gateway id {payment.resolved_payment_id} for order "
                    f"{payment.order_id} is no longer recognized, resolving again"
                )
                await self.engine.forget(raw)
                return await self.engine.resolve_detailed(
                    raw, order_id=payment.order_id, use_cache=False
                )

        resolution = await self.engine.resolve_detailed(raw, order_id=payment.order_id)
        if resolution.method != ResolutionMethod.CACHE:
            return resolution

        try:
            resolution.record = await self.engine.fetch_record(resolution.payment_id)
        except PaymentNotFound:
            logger.warning(
                f"Cached gateway id {resolution.payment_id} for order "
                f"{payment.order_id} is no longer recognized, resolving again"
            )
            await self.engine.forget(raw)
            return await self.engine.resolve_detailed(
                raw, order_id=payment.order_id, use_cache=False
            )
        return resolution

    async def resolve_identifier(
        self,
        raw: Optional[str],
        order_id: Optional[str] = None,
    ) -> Resolution:
        """Resolve a raw identifier and record the result on the local payment.

        Raises:
            ResolutionFailed: If the gateway recognizes no candidate.
            GatewayUnreachable: If the gateway stays unreachable after retries.
        """
        resolution = await self.engine.resolve_detailed(raw, order_id=order_id)

        payment = await self.payment_repo.get_by_order_id(order_id) if order_id else None
        if payment is not None and payment.resolved_payment_id != resolution.payment_id:
            previous = payment.resolved_payment_id
            await self.payment_repo.set_resolved_payment_id(payment, resolution.payment_id)
            await self.history_repo.create(
                payment_id=payment.id,
                action=TransactionAction.RESOLVE.value,
                previous_status=payment.status,
                new_status=payment.status,
                gateway_payment_id=resolution.payment_id,
                action_metadata={
                    "raw_identifier": raw,
                    "previous_payment_id": previous,
                    "method": resolution.method.value,
                    "attempts": resolution.attempts,
                },
            )
        return resolution

    async def _record_failure(
        self,
        payment: Payment,
        error: Exception,
        error_body: dict,
        payment_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> None:
        await self.history_repo.create(
            payment_id=payment.id,
            action=TransactionAction.CANCEL_FAILED.value,
            previous_status=payment.status,
            new_status=payment.status,
            amount=amount,
            gateway_payment_id=payment_id,
            idempotency_key=idempotency_key,
            error_message=str(error),
            action_metadata=error_body,
        )

    async def cancel_order(
        self,
        order_id: str,
        reason: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> CancelOutcome:
        """Cancel the payment of a locally stored order.

        Args:
            order_id: Merchant order reference.
            reason: Cancel reason; empty values use the configured default.
            amount: Partial cancel amount, or None for the remaining balance.

        Returns:
            CancelOutcome. Gateway failures are reported in the outcome rather
            than raised so that the history entry is committed with the session.

        Raises:
            PaymentNotFound: If there is no local payment for order_id.
            InvalidInput: If amount is not positive.
        """
        payment = await self._get_payment(order_id)
        if amount is not None and amount <= 0:
            raise InvalidInput(f"Cancel amount must be positive, got {amount}")

        if self.reconciler.canonical_status(payment.status) == PaymentState.CANCELLED:
            logger.info(f"Order {order_id} is already cancelled locally, skipping gateway call")
            return CancelOutcome(
                order_id=order_id,
                success=True,
                status=payment.status,
                payment_id=payment.resolved_payment_id,
                cancelled_amount=payment.cancelled_amount,
                already_cancelled=True,
            )

        try:
            resolution = await self._resolve(payment)
        except ResolutionFailed as e:
            await self.payment_repo.flag_for_review(payment)
            error_body = {
                "type": type(e).__name__,
                "message": str(e),
                "attempted": e.attempted,
            }
            await self.history_repo.create(
                payment_id=payment.id,
                action=TransactionAction.REVIEW_FLAGGED.value,
                previous_status=payment.status,
                new_status=payment.status,
                amount=amount,
                error_message=str(e),
                action_metadata=error_body,
            )
            return CancelOutcome(
                order_id=order_id,
                success=False,
                status=payment.status,
                review_required=True,
                error=error_body,
            )
        except GatewayUnreachable as e:
            logger.error(f"Gateway unreachable while resolving order {order_id}: {e}")
            await self._record_failure(payment, e, e.to_dict(), amount=amount)
            return CancelOutcome(
                order_id=order_id,
                success=False,
                status=payment.status,
                error=e.to_dict(),
            )

        payment_id = resolution.payment_id
        await self.payment_repo.set_resolved_payment_id(payment, payment_id)
        reason_used = (reason or "").strip() or self.config.default_cancel_reason
        previous_status = payment.status

        try:
            result = await self.engine.cancel(payment_id, reason=reason_used, amount=amount)
        except GatewayRejected as e:
            if e.already_cancelled:
                logger.warning(
                    f"Gateway reports payment {payment_id} for order {order_id} "
                    f"already cancelled, converging local state"
                )
                await self.payment_repo.mark_cancelled(
                    payment,
                    status=PaymentState.CANCELLED,
                    cancelled_amount=payment.amount,
                    reason=payment.cancel_reason or reason_used,
                    raw_gateway_response=e.response_body if isinstance(e.response_body, dict) else None,
                )
                await self.history_repo.create(
                    payment_id=payment.id,
                    action=TransactionAction.CANCEL.value,
                    previous_status=previous_status,
                    new_status=payment.status,
                    gateway_payment_id=payment_id,
                    idempotency_key=e.idempotency_key,
                    action_metadata={"already_cancelled": True, "response_body": e.response_body},
                )
                return CancelOutcome(
                    order_id=order_id,
                    success=True,
                    status=payment.status,
                    payment_id=payment_id,
                    resolution_method=resolution.method,
                    idempotency_key=e.idempotency_key,
                    cancelled_amount=payment.cancelled_amount,
                    already_cancelled=True,
                )
            logger.error(f"Gateway rejected cancel for order {order_id}: {e}")
            await self._record_failure(
                payment, e, e.to_dict(), payment_id, e.idempotency_key, amount
            )
            return CancelOutcome(
                order_id=order_id,
                success=False,
                status=payment.status,
                payment_id=payment_id,
                resolution_method=resolution.method,
                idempotency_key=e.idempotency_key,
                error=e.to_dict(),
            )
        except GatewayUnreachable as e:
            logger.error(f"Gateway unreachable during cancel for order {order_id}: {e}")
            await self._record_failure(
                payment, e, e.to_dict(), payment_id, e.idempotency_key, amount
            )
            return CancelOutcome(
                order_id=order_id,
                success=False,
                status=payment.status,
                payment_id=payment_id,
                resolution_method=resolution.method,
                idempotency_key=e.idempotency_key,
                error=e.to_dict(),
            )

        if result.status.upper() not in CONFIRMED_CANCEL_STATUSES:
            # Accepted but not yet applied; a later sync converges the row
            logger.warning(
                f"Cancel of {payment_id} for order {order_id} returned {result.status}, "
                f"leaving local status {payment.status}"
            )
            await self.history_repo.create(
                payment_id=payment.id,
                action=TransactionAction.CANCEL.value,
                previous_status=previous_status,
                new_status=payment.status,
                amount=result.cancelled_amount,
                gateway_payment_id=payment_id,
                idempotency_key=result.idempotency_key,
                action_metadata={"cancellation_status": result.status},
            )
            return CancelOutcome(
                order_id=order_id,
                success=result.status.upper() != "FAILED",
                status=payment.status,
                payment_id=payment_id,
                resolution_method=resolution.method,
                idempotency_key=result.idempotency_key,
                cancelled_amount=result.cancelled_amount,
                error=result.raw_response if result.status.upper() == "FAILED" else None,
            )

        if result.record is not None:
            cancelled_total = result.record.cancelled_amount
            new_status = self.reconciler.canonical_status(result.record.status)
        else:
            cancelled_now = result.cancelled_amount
            if cancelled_now is None:
                cancelled_now = payment.amount - payment.cancelled_amount
            cancelled_total = payment.cancelled_amount + cancelled_now
            new_status = (
                PaymentState.CANCELLED
                if cancelled_total >= payment.amount
                else PaymentState.PARTIALLY_CANCELLED
            )

        await self.payment_repo.mark_cancelled(
            payment,
            status=new_status,
            cancelled_amount=cancelled_total,
            reason=reason_used,
            cancelled_at=result.record.cancelled_at if result.record else None,
            raw_gateway_response=result.raw_response,
        )
        await self.history_repo.create(
            payment_id=payment.id,
            action=TransactionAction.CANCEL.value,
            previous_status=previous_status,
            new_status=new_status,
            amount=result.cancelled_amount,
            gateway_payment_id=payment_id,
            idempotency_key=result.idempotency_key,
        )

        logger.info(f"Cancelled order {order_id} via gateway payment {payment_id}: {new_status}")
        return CancelOutcome(
            order_id=order_id,
            success=True,
            status=new_status,
            payment_id=payment_id,
            resolution_method=resolution.method,
            idempotency_key=result.idempotency_key,
            cancelled_amount=cancelled_total,
        )

    async def _converge(self, payment: Payment, record: GatewayPaymentRecord) -> None:
        """Overwrite local payment fields with the gateway's values."""
        payment.amount = record.amount
        if record.currency:
            payment.currency = record.currency.upper()
        if record.cancelled_at and payment.cancelled_at is None:
            payment.cancelled_at = record.cancelled_at
        payment.review_required = False
        await self.payment_repo.set_resolved_payment_id(payment, record.id)
        await self.payment_repo.update_status(
            payment,
            self.reconciler.canonical_status(record.status),
            cancelled_amount=record.cancelled_amount,
            raw_gateway_response=record.raw_data,
        )

    async def sync_payment(self, order_id: str) -> SyncResult:
        """Converge one local payment to the gateway record.

        Raises:
            PaymentNotFound: If there is no local payment for order_id.
        """
        payment = await self._get_payment(order_id)
        local = LocalPayment.model_validate(payment)

        try:
            resolution = await self._resolve(payment)
            record = resolution.record or await self.engine.fetch_record(resolution.payment_id)
        except PaymentNotFound as e:
            await self.payment_repo.flag_for_review(payment)
            return SyncResult(
                order_id=order_id,
                status=SyncStatus.UNRESOLVED,
                local_status=local.status,
                error_message=str(e),
            )
        except GatewayUnreachable as e:
            logger.error(f"Gateway unreachable while syncing order {order_id}: {e}")
            return SyncResult(
                order_id=order_id,
                status=SyncStatus.FAILED,
                local_status=local.status,
                error_message=str(e),
            )

        discrepancies = self.reconciler.compare(local, record)
        if not discrepancies and payment.resolved_payment_id == record.id:
            return SyncResult(
                order_id=order_id,
                status=SyncStatus.UNCHANGED,
                payment_id=record.id,
                local_status=local.status,
                gateway_status=record.status,
            )

        await self._converge(payment, record)
        await self.history_repo.create(
            payment_id=payment.id,
            action=TransactionAction.SYNC.value,
            previous_status=local.status,
            new_status=payment.status,
            gateway_payment_id=record.id,
            action_metadata={
                "discrepancies": [d.model_dump(mode="json") for d in discrepancies],
            },
        )
        return SyncResult(
            order_id=order_id,
            status=SyncStatus.UPDATED,
            payment_id=record.id,
            local_status=local.status,
            gateway_status=record.status,
            discrepancies=discrepancies,
        )

    async def sync_payments(
        self,
        status: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> SyncReport:
        """Sync every local payment matching the filters.

        Args:
            status: Optional local status filter.
            start_time: Only payments created at or after this time.
            end_time: Only payments created at or before this time.
            limit: Maximum number of payments to sync.

        Returns:
            SyncReport with one result per payment.
        """
        if start_time and end_time and start_time >= end_time:
            raise InvalidInput("start_time must be before end_time")

        report = SyncReport(
            id=str(uuid.uuid4()),
            status_filter=status,
            start_time=start_time,
            end_time=end_time,
        )
        payments = await self.payment_repo.list_for_sync(
            status=status, start_time=start_time, end_time=end_time, limit=limit
        )
        logger.info(f"Starting sync {report.id} for {len(payments)} payment(s)")

        for payment in payments:
            report.results.append(await self.sync_payment(payment.order_id))

        report.completed_at = datetime.utcnow()
        summary = report.to_summary_dict()["statistics"]
        logger.info(
            f"Sync {report.id} completed: {summary['updated']} updated, "
            f"{summary['unchanged']} unchanged, {summary['unresolved']} unresolved, "
            f"{summary['failed']} failed"
        )
        return report

    def generate_report(self, report: SyncReport, format: str = "json") -> str:
        """Format a sync report.

        Args:
            report: SyncReport to format.
            format: Output format ('json', 'csv', 'text').

        Returns:
            Formatted report string.
        """
        generator = ReportGenerator(report)

        if format == "json":
            return generator.to_json()
        elif format == "csv":
            return generator.to_csv()
        elif format == "text":
            return generator.to_summary_text()
        else:
            raise ValueError(f"Unsupported report format: {format}")
