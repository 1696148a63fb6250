"""Resolution of stored identifiers to gateway payment ids, and cancellation."""

import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import GatewayConfig
from ..exceptions import (
    GatewayError,
    GatewayUnreachable,
    InvalidInput,
    PaymentNotFound,
    ResolutionFailed,
)
from ..gateway.base import (
    CancelRequest,
    CancelResult,
    GatewayPaymentRecord,
    GatewayProbeBase,
    ProbeResult,
)
from ..identifiers import generate_candidates, normalize
from .cache import IdentifierCache
from .models import Resolution, ResolutionMethod

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconciliationEngine:
    """Finds the gateway payment id for a locally known order and acts on it.

    Resolution order: cached mapping, normalized id, generated candidates,
    then a lookup by order reference. Candidates are probed one at a time and
    the search stops at the first one the gateway recognizes. Reads are
    retried on GatewayUnreachable; cancels are never retried here.
    """

    def __init__(
        self,
        gateway: GatewayProbeBase,
        config: Optional[GatewayConfig] = None,
        cache: Optional[IdentifierCache] = None,
    ):
        """Initialize the engine.

        Args:
            gateway: Gateway client used for probes, lookups and cancels.
            config: Retry and default settings. Defaults to GatewayConfig().
            cache: Optional mapping cache consulted before any probing.
        """
        self.gateway = gateway
        self.config = config or GatewayConfig()
        self.cache = cache

    async def _read(self, func: Callable[..., Awaitable[T]], *args) -> T:
        """Run an idempotent gateway read with bounded retries."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_read_attempts),
            wait=wait_exponential(multiplier=self.config.retry_backoff_seconds, max=10),
            retry=retry_if_exception_type(GatewayUnreachable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                result = await func(*args)
        return result

    async def _probe(self, candidate_id: str) -> ProbeResult:
        return await self._read(self.gateway.probe, candidate_id)

    async def _remember(
        self,
        raw: Optional[str],
        payment_id: str,
        method: ResolutionMethod,
        attempts: List[str],
        record: Optional[GatewayPaymentRecord],
    ) -> Resolution:
        if raw and self.cache is not None:
            await self.cache.set(raw, payment_id, method)
        logger.info(
            f"Resolved {raw!r} to {payment_id} via {method.value} "
            f"after {len(attempts)} probe(s)"
        )
        return Resolution(
            raw_identifier=raw,
            payment_id=payment_id,
            method=method,
            attempts=attempts,
            record=record,
        )

    async def resolve_detailed(
        self,
        raw: Optional[str],
        order_id: Optional[str] = None,
        use_cache: bool = True,
    ) -> Resolution:
        """Resolve a raw identifier, reporting how the id was found.

        Args:
            raw: Stored identifier (order token, UUID or payment token).
            order_id: Caller-side order reference for the last-resort lookup.
                Defaults to raw.
            use_cache: Consult the cached mapping first. Results are cached
                either way.

        Returns:
            Resolution with the confirmed payment id.

        Raises:
            ResolutionFailed: If neither candidates nor the order lookup match.
            GatewayUnreachable: If the gateway stays unreachable after retries.
        """
        if use_cache and raw and self.cache is not None:
            cached = await self.cache.get(raw)
            if cached:
                logger.debug(f"Cache hit for {raw!r}: {cached}")
                return Resolution(raw_identifier=raw, payment_id=cached, method=ResolutionMethod.CACHE)

        if not raw:
            logger.warning("Empty raw identifier, falling back to a timestamp candidate")

        attempts: List[str] = []

        direct = normalize(raw)
        attempts.append(direct)
        result = await self._probe(direct)
        if result.valid:
            return await self._remember(raw, direct, ResolutionMethod.DIRECT, attempts, result.record)

        for candidate in generate_candidates(raw):
            if candidate in attempts:
                continue
            attempts.append(candidate)
            result = await self._probe(candidate)
            if result.valid:
                return await self._remember(
                    raw, candidate, ResolutionMethod.CANDIDATE, attempts, result.record
                )

        order_ref = order_id or raw
        if order_ref:
            record = await self._read(self.gateway.find_by_order_id, order_ref)
            if record is not None:
                return await self._remember(
                    raw, record.id, ResolutionMethod.ORDER_LOOKUP, attempts, record
                )

        logger.warning(f"Could not resolve {raw!r}; tried {attempts}")
        raise ResolutionFailed(raw, attempts)

    async def resolve(self, raw: Optional[str], order_id: Optional[str] = None) -> str:
        """Resolve a raw identifier to the gateway payment id."""
        resolution = await self.resolve_detailed(raw, order_id=order_id)
        return resolution.payment_id

    async def forget(self, raw: Optional[str]) -> None:
        """Drop the cached mapping for raw, if any."""
        if raw and self.cache is not None:
            await self.cache.invalidate(raw)
            logger.info(f"Dropped cached mapping for {raw!r}")

    async def fetch_record(self, payment_id: str) -> GatewayPaymentRecord:
        """Fetch the gateway's current record for a resolved payment id.

        Raises:
            PaymentNotFound: If the gateway does not recognize the id.
        """
        result = await self._probe(payment_id)
        if not result.valid or result.record is None:
            raise PaymentNotFound(f"Gateway has no payment {payment_id}")
        return result.record

    @staticmethod
    def new_idempotency_key() -> str:
        return str(uuid.uuid4())

    async def cancel(
        self,
        payment_id: str,
        reason: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> CancelResult:
        """Cancel a resolved payment.

        A new idempotency key is generated on every call. Failures are raised
        to the caller unchanged; the caller owns the retry decision.

        Args:
            payment_id: Resolved gateway payment id.
            reason: Cancel reason; empty values use the configured default.
            amount: Partial cancel amount, or None for the remaining balance.

        Returns:
            CancelResult from the gateway.

        Raises:
            InvalidInput: If payment_id is empty or amount is not positive.
            GatewayRejected: If the gateway refused the cancel.
            GatewayUnreachable: On transport failure.
        """
        if not payment_id:
            raise InvalidInput("payment_id is required to cancel")
        if amount is not None and amount <= 0:
            raise InvalidInput(f"Cancel amount must be positive, got {amount}")

        reason = (reason or "").strip() or self.config.default_cancel_reason
        idempotency_key = self.new_idempotency_key()
        request = CancelRequest(reason=reason, amount=amount)

        logger.info(
            f"Requesting cancel of {payment_id} "
            f"({'full' if amount is None else amount}) with key {idempotency_key}"
        )
        try:
            return await self.gateway.cancel(payment_id, request, idempotency_key)
        except GatewayError as e:
            e.idempotency_key = idempotency_key
            raise

    async def resolve_and_cancel(
        self,
        raw: Optional[str],
        reason: Optional[str] = None,
        amount: Optional[int] = None,
        order_id: Optional[str] = None,
    ) -> Tuple[Resolution, CancelResult]:
        """Resolve raw and cancel the resulting payment."""
        resolution = await self.resolve_detailed(raw, order_id=order_id)
        result = await self.cancel(resolution.payment_id, reason=reason, amount=amount)
        return resolution, result
