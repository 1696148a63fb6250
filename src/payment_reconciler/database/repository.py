"""Repository layer for payment persistence operations."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Payment,
    IdentifierMapping,
    TransactionHistory,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


class PaymentRepository:
    """Repository for Payment CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        order_id: str,
        amount: int,
        payment_key: Optional[str] = None,
        currency: str = "KRW",
        status: str = PaymentStatus.PAID.value,
        order_name: Optional[str] = None,
    ) -> Payment:
        """Create a new payment record.

        Args:
            order_id: Merchant order reference, unique per payment.
            amount: Payment amount in minor units.
            payment_key: Identifier stored by checkout, in whatever format.
            currency: Three-letter currency code.
            status: Initial payment status.
            order_name: Optional human-readable order name.

        Returns:
            Created Payment instance.
        """
        payment = Payment(
            order_id=order_id,
            amount=amount,
            payment_key=payment_key,
            currency=currency.upper(),
            status=status,
            order_name=order_name,
        )
        self.session.add(payment)
        await self.session.flush()

        logger.info(f"Created payment {payment.id} for order {order_id} with status {status}")
        return payment

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.id == payment_id)
        )
        return result.scalar_one_or_none()

    async def get_by_order_id(self, order_id: str) -> Optional[Payment]:
        """Get a payment by its order reference.

        Args:
            order_id: Merchant order reference.

        Returns:
            Payment instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Payment).where(Payment.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def get_by_resolved_payment_id(self, resolved_payment_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.resolved_payment_id == resolved_payment_id)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        payment: Payment,
        new_status: str,
        cancelled_amount: Optional[int] = None,
        raw_gateway_response: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """Update payment status and optionally the cancelled amount.

        Args:
            payment: Payment instance to update.
            new_status: New payment status.
            cancelled_amount: Total cancelled amount reported by the gateway.
            raw_gateway_response: Optional sanitized gateway response.

        Returns:
            Updated Payment instance.
        """
        payment.status = new_status
        payment.updated_at = datetime.utcnow()

        if cancelled_amount is not None:
            payment.cancelled_amount = cancelled_amount

        if raw_gateway_response is not None:
            payment.raw_gateway_response = raw_gateway_response

        await self.session.flush()
        logger.info(f"Updated payment {payment.id} status to {new_status}")
        return payment

    async def set_resolved_payment_id(self, payment: Payment, resolved_payment_id: str) -> Payment:
        """Store the confirmed gateway payment id on the payment."""
        if payment.resolved_payment_id != resolved_payment_id:
            logger.info(
                f"Correcting gateway id for order {payment.order_id}: "
                f"{payment.resolved_payment_id} -> {resolved_payment_id}"
            )
            payment.resolved_payment_id = resolved_payment_id
            payment.updated_at = datetime.utcnow()
            await self.session.flush()
        return payment

    async def mark_cancelled(
        self,
        payment: Payment,
        status: str,
        cancelled_amount: int,
        reason: Optional[str] = None,
        cancelled_at: Optional[datetime] = None,
        raw_gateway_response: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """Record a gateway-confirmed full or partial cancellation.

        Args:
            payment: Payment instance to update.
            status: cancelled or partially_cancelled.
            cancelled_amount: Total cancelled amount after this cancel.
            reason: Cancel reason sent to the gateway.
            cancelled_at: Gateway cancel time; defaults to now.
            raw_gateway_response: Optional sanitized gateway response.

        Returns:
            Updated Payment instance.
        """
        payment.status = status
        payment.cancelled_amount = cancelled_amount
        payment.cancel_reason = reason
        payment.cancelled_at = cancelled_at or datetime.utcnow()
        payment.review_required = False
        payment.updated_at = datetime.utcnow()
        if raw_gateway_response is not None:
            payment.raw_gateway_response = raw_gateway_response

        await self.session.flush()
        logger.info(f"Payment {payment.id} for order {payment.order_id} marked {status}")
        return payment

    async def flag_for_review(self, payment: Payment) -> Payment:
        """Flag a payment whose gateway state could not be confirmed."""
        payment.review_required = True
        payment.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.warning(f"Payment {payment.id} for order {payment.order_id} flagged for review")
        return payment

    async def list_for_sync(
        self,
        status: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Payment]:
        """List payments to converge against the gateway.

        Args:
            status: Optional local status filter.
            start_time: Only payments created at or after this time.
            end_time: Only payments created at or before this time.
            limit: Maximum number of results.
            offset: Offset for pagination.

        Returns:
            List of Payment instances, oldest first.
        """
        conditions = []
        if status:
            conditions.append(Payment.status == status)
        if start_time:
            conditions.append(Payment.created_at >= start_time)
        if end_time:
            conditions.append(Payment.created_at <= end_time)

        query = select(Payment)
        if conditions:
            query = query.where(and_(*conditions))
        result = await self.session.execute(
            query.order_by(Payment.created_at.asc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def list_review_required(self, limit: int = 100) -> List[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.review_required.is_(True))
            .order_by(Payment.updated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class IdentifierMappingRepository:
    """Repository for confirmed identifier mappings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_raw_identifier(self, raw_identifier: str) -> Optional[IdentifierMapping]:
        result = await self.session.execute(
            select(IdentifierMapping).where(IdentifierMapping.raw_identifier == raw_identifier)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        raw_identifier: str,
        payment_id: str,
        resolution_method: str,
    ) -> IdentifierMapping:
        """Insert or overwrite the mapping for raw_identifier.

        Args:
            raw_identifier: Identifier as stored locally.
            payment_id: Confirmed gateway payment id.
            resolution_method: How the id was found.

        Returns:
            The stored IdentifierMapping.
        """
        mapping = await self.get_by_raw_identifier(raw_identifier)
        if mapping is None:
            mapping = IdentifierMapping(
                raw_identifier=raw_identifier,
                payment_id=payment_id,
                resolution_method=resolution_method,
            )
            self.session.add(mapping)
        else:
            mapping.payment_id = payment_id
            mapping.resolution_method = resolution_method
            mapping.updated_at = datetime.utcnow()

        await self.session.flush()
        logger.debug(f"Stored mapping {raw_identifier} -> {payment_id} ({resolution_method})")
        return mapping

    async def delete(self, raw_identifier: str) -> bool:
        """Drop the mapping for raw_identifier. Returns False if there was none."""
        mapping = await self.get_by_raw_identifier(raw_identifier)
        if mapping is None:
            return False
        await self.session.delete(mapping)
        await self.session.flush()
        logger.debug(f"Dropped mapping {raw_identifier} -> {mapping.payment_id}")
        return True


class TransactionHistoryRepository:
    """Repository for TransactionHistory CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        payment_id: str,
        action: str,
        new_status: str,
        previous_status: Optional[str] = None,
        amount: Optional[int] = None,
        gateway_payment_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        error_message: Optional[str] = None,
        action_metadata: Optional[Dict[str, Any]] = None,
    ) -> TransactionHistory:
        """Create a new transaction history record.

        Args:
            payment_id: Local payment ID.
            action: Action performed (resolve, cancel, cancel_failed, sync, review_flagged).
            new_status: Status after the action.
            previous_status: Status before the action.
            amount: Amount involved in this action.
            gateway_payment_id: Resolved gateway payment id, when known.
            idempotency_key: Idempotency key sent with a cancel.
            error_message: Error message if the action failed.
            action_metadata: Additional metadata, e.g. the raw gateway error body.

        Returns:
            Created TransactionHistory instance.
        """
        history = TransactionHistory(
            payment_id=payment_id,
            action=action,
            new_status=new_status,
            previous_status=previous_status,
            amount=amount,
            gateway_payment_id=gateway_payment_id,
            idempotency_key=idempotency_key,
            error_message=error_message,
        )
        if action_metadata:
            history.action_metadata = action_metadata

        self.session.add(history)
        await self.session.flush()

        logger.debug(
            f"Created transaction history for payment {payment_id}: "
            f"{action} -> {new_status}"
        )
        return history

    async def get_by_payment_id(
        self,
        payment_id: str,
        limit: int = 100,
    ) -> List[TransactionHistory]:
        """Get transaction history for a payment, newest first."""
        result = await self.session.execute(
            select(TransactionHistory)
            .where(TransactionHistory.payment_id == payment_id)
            .order_by(TransactionHistory.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_by_action(
        self,
        payment_id: str,
        action: str,
    ) -> List[TransactionHistory]:
        result = await self.session.execute(
            select(TransactionHistory)
            .where(
                and_(
                    TransactionHistory.payment_id == payment_id,
                    TransactionHistory.action == action
                )
            )
            .order_by(TransactionHistory.created_at.desc())
        )
        return list(result.scalars().all())
