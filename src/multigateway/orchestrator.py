"""Payment orchestrator: drives transaction records through the status model.

Every public operation follows the same shape: load or create the record,
delegate to the resolved adapter, normalize the answer, persist, and return a
``PaymentResult``. Failures come back as results tagged with an ``ErrorCode``;
nothing raised by an adapter escapes to the caller.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .database import (
    LockedRecord,
    TransactionAction,
    TransactionRecord,
    TransactionStore,
    new_internal_id,
    utcnow,
)
from .errors import (
    ErrorCode,
    GatewayCommunicationError,
    GatewayError,
    GatewayMismatch,
    GatewayUnavailable,
    InternalError,
    NotFound,
    NotRefundable,
)
from .gateways import GatewayAdapter, GatewayRegistry
from .status import RETRYABLE_REFUND_STATUSES, PaymentStatus, can_transition, is_terminal

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT = 30.0
REFUND_STATES = frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED})


class InitiateIntent(BaseModel):
    """Request to start a payment."""
    amount: Decimal = Field(gt=0, decimal_places=2)
    currency_code: str = Field(min_length=3, max_length=3)
    payment_method: Optional[str] = None
    preferred_gateway: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency_code")
    @classmethod
    def _currency_letters(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("currency_code must be a 3-letter ISO 4217 code")
        return value.upper()


class QueryStatusIntent(BaseModel):
    internal_id: str = Field(min_length=1)
    gateway_name: Optional[str] = None


class RefundIntent(BaseModel):
    internal_id: str = Field(min_length=1)
    gateway_name: Optional[str] = None
    # None or zero refunds everything still refundable
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)


class PaymentResult(BaseModel):
    """
    Normalized outcome of an orchestrator operation.

    On failure ``error`` carries the tag and ``status`` is the record's stored
    status when a record exists, otherwise ERROR.
    """
    internal_id: Optional[str] = None
    provider_id: Optional[str] = None
    status: PaymentStatus
    message: str = ""
    gateway_name: Optional[str] = None
    amount: Optional[Decimal] = None
    currency_code: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    timestamp: datetime = Field(default_factory=utcnow)
    provider_payload: Optional[Dict[str, Any]] = None
    error: Optional[ErrorCode] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PaymentOrchestrator:
    """Facade over the registry, the adapters and the transaction store."""

    def __init__(
        self,
        registry: GatewayRegistry,
        store: TransactionStore,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
    ):
        self.registry = registry
        self.store = store
        self.timeout_seconds = timeout_seconds

    # Result helpers

    @staticmethod
    def _result(
        record: TransactionRecord,
        message: str,
        provider_payload: Optional[Dict[str, Any]] = None,
        error: Optional[ErrorCode] = None,
    ) -> PaymentResult:
        return PaymentResult(
            internal_id=record.internal_id,
            provider_id=record.provider_id,
            status=record.payment_status,
            message=message,
            gateway_name=record.provider_name,
            amount=record.amount,
            currency_code=record.currency_code,
            refunded_amount=record.refunded_amount,
            provider_payload=provider_payload,
            error=error,
        )

    def _failure(
        self,
        error: GatewayError,
        record: Optional[TransactionRecord] = None,
        internal_id: Optional[str] = None,
    ) -> PaymentResult:
        if record is not None:
            return self._result(record, error.message, error=error.code)
        return PaymentResult(
            internal_id=error.internal_id or internal_id,
            status=PaymentStatus.ERROR,
            message=error.message,
            gateway_name=error.gateway_name,
            error=error.code,
        )

    def _unexpected(self, operation: str, exc: Exception, internal_id: Optional[str]) -> InternalError:
        logger.exception(f"Unexpected error during {operation} for transaction {internal_id}: {exc}")
        return InternalError(
            f"Unexpected error during {operation}: {exc}", internal_id=internal_id
        )

    # Adapter plumbing

    async def _call_adapter(self, adapter: GatewayAdapter, method: str, *args: Any) -> Any:
        """Run a blocking adapter call in a worker thread, bounded by the provider timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(getattr(adapter, method), *args),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise GatewayCommunicationError(
                f"{adapter.name} {method} timed out; outcome unknown",
                cause=e,
                timed_out=True,
                gateway_name=adapter.name,
            ) from e

    def _adapter_for(self, record: TransactionRecord, gateway_name: Optional[str]) -> GatewayAdapter:
        """Resolve the adapter for an existing record; the requested name must match its owner."""
        adapter = self.registry.resolve(gateway_name or record.provider_name)
        if adapter.name.lower() != record.provider_name.lower():
            raise GatewayMismatch(
                f"Transaction {record.internal_id} belongs to {record.provider_name}, "
                f"not {adapter.name}",
                internal_id=record.internal_id,
                gateway_name=adapter.name,
            )
        if not adapter.available:
            raise GatewayUnavailable(
                f"{adapter.name} gateway is not available: {getattr(adapter, 'reason', 'unknown')}",
                internal_id=record.internal_id,
                gateway_name=adapter.name,
            )
        return adapter

    async def _load(self, internal_id: str) -> TransactionRecord:
        record = await self.store.find_by_internal_id(internal_id)
        if record is None:
            raise NotFound(f"No transaction found with id {internal_id}", internal_id=internal_id)
        return record

    # State transitions

    @staticmethod
    def _apply_status(
        record: TransactionRecord, reported: PaymentStatus, native: Optional[str]
    ) -> Optional[str]:
        """Move the record to ``reported`` if legal; otherwise return why it stayed put."""
        current = record.payment_status
        if can_transition(current, reported):
            record.status = PaymentStatus(reported).value
            return None
        if reported is PaymentStatus.UNKNOWN:
            note = f"provider reported unrecognized status {native!r}; kept {current.value}"
        else:
            note = f"ignored illegal transition {current.value} -> {PaymentStatus(reported).value}"
        logger.warning(f"Transaction {record.internal_id}: {note}")
        return note

    async def _upgrade_provider_id(self, unit: LockedRecord, new_provider_id: str) -> None:
        """Replace an intermediate provider id with the settlement id the provider resolved."""
        record = unit.record
        old_provider_id = record.provider_id
        record.provider_id = new_provider_id
        await unit.add_history(
            TransactionAction.PROVIDER_ID_UPGRADE.value,
            record.status,
            previous_status=record.status,
            provider_id=new_provider_id,
        )
        logger.info(
            f"Transaction {record.internal_id}: provider id upgraded "
            f"{old_provider_id} -> {new_provider_id}"
        )

    async def _refresh(self, unit: LockedRecord, adapter: GatewayAdapter) -> PaymentResult:
        """Query the provider and persist any status or provider id change. Caller holds the lock."""
        record = unit.record
        previous = record.status
        if not record.provider_id:
            return self._result(record, "No provider reference yet; returning stored status")

        try:
            outcome = await self._call_adapter(adapter, "query_status", record.provider_id)
        except GatewayError as e:
            logger.error(
                f"Status query failed for transaction {record.internal_id} "
                f"(provider id {record.provider_id}): {e.message}"
            )
            await unit.add_history(
                TransactionAction.STATUS_QUERY.value,
                previous,
                previous_status=previous,
                provider_id=record.provider_id,
                error_message=e.message,
            )
            e.internal_id = record.internal_id
            return self._failure(e, record)

        if (
            outcome.provider_id
            and outcome.provider_id != record.provider_id
            and adapter.is_intermediate_id(record.provider_id)
        ):
            await self._upgrade_provider_id(unit, outcome.provider_id)

        note = self._apply_status(record, outcome.status, outcome.native_status)
        if outcome.refunded_amount is not None and record.payment_status in REFUND_STATES:
            # The provider's total wins; a refund whose answer was lost still counts.
            record.refunded_amount = outcome.refunded_amount
        payload = dict(outcome.provider_payload)
        payload["provider_status"] = outcome.native_status
        record.last_provider_payload = payload
        await unit.save()
        await unit.add_history(
            TransactionAction.STATUS_QUERY.value,
            record.status,
            previous_status=previous,
            provider_id=record.provider_id,
            error_message=note,
        )
        message = outcome.message or f"Status: {record.status}"
        if note:
            message = f"{message} ({note})"
        return self._result(record, message, payload)

    # Public operations

    async def initiate_payment(self, intent: InitiateIntent) -> PaymentResult:
        """
        Create a PENDING record, then ask the resolved provider to start the payment.

        The PENDING record is committed before the provider is called so the
        client can always look up what happened. A declined request ends in
        FAILED, any other communication failure in ERROR, and a timeout leaves
        the record PENDING.
        """
        try:
            adapter = self.registry.resolve(intent.preferred_gateway)
            if not adapter.available:
                raise GatewayUnavailable(
                    f"{adapter.name} gateway is not available: {getattr(adapter, 'reason', 'unknown')}",
                    gateway_name=adapter.name,
                )
        except GatewayError as e:
            return self._failure(e)

        now = utcnow()
        record = TransactionRecord(
            internal_id=new_internal_id(),
            provider_name=adapter.name,
            amount=intent.amount,
            currency_code=intent.currency_code,
            status=PaymentStatus.PENDING.value,
            refunded_amount=Decimal("0.00"),
            payment_method=intent.payment_method,
            created_at=now,
            updated_at=now,
        )
        internal_id = record.internal_id
        try:
            await self.store.save(record)
            await self.store.add_history(
                internal_id,
                TransactionAction.INITIATE.value,
                PaymentStatus.PENDING.value,
                amount=intent.amount,
            )
            logger.info(
                f"Initiating payment {internal_id} via {adapter.name}: "
                f"{intent.amount} {intent.currency_code}"
            )
            async with self.store.locked(internal_id) as unit:
                return await self._initiate_locked(unit, adapter, intent)
        except GatewayError as e:
            return self._failure(e, internal_id=internal_id)
        except Exception as e:
            return self._failure(self._unexpected("initiate", e, internal_id), internal_id=internal_id)

    async def _initiate_locked(
        self, unit: LockedRecord, adapter: GatewayAdapter, intent: InitiateIntent
    ) -> PaymentResult:
        record = unit.record
        try:
            outcome = await self._call_adapter(
                adapter,
                "initiate",
                record.amount,
                record.currency_code,
                intent.payment_method,
                intent.details,
                record.internal_id,
            )
        except Exception as e:
            error = e if isinstance(e, GatewayError) else self._unexpected("initiate", e, record.internal_id)
            error.internal_id = record.internal_id
            if isinstance(error, GatewayCommunicationError) and error.timed_out:
                new_status = record.status
            elif isinstance(error, GatewayCommunicationError) and not error.declined:
                new_status = PaymentStatus.ERROR.value
            elif isinstance(error, InternalError):
                new_status = PaymentStatus.ERROR.value
            else:
                new_status = PaymentStatus.FAILED.value
            logger.error(f"Initiate failed for transaction {record.internal_id}: {error.message}")
            record.status = new_status
            await unit.save()
            await unit.add_history(
                TransactionAction.INITIATE.value,
                new_status,
                previous_status=PaymentStatus.PENDING.value,
                error_message=error.message,
            )
            return self._failure(error, record)

        record.provider_id = outcome.provider_id
        note = self._apply_status(record, outcome.status, outcome.native_status)
        payload = dict(outcome.provider_payload)
        payload["provider_status"] = outcome.native_status
        record.last_provider_payload = payload
        await unit.save()
        await unit.add_history(
            TransactionAction.INITIATE.value,
            record.status,
            previous_status=PaymentStatus.PENDING.value,
            provider_id=record.provider_id,
            amount=record.amount,
            error_message=note,
        )
        logger.info(
            f"Payment {record.internal_id} initiated via {adapter.name}: "
            f"provider id {record.provider_id}, status {record.status}"
        )
        message = outcome.message or "Payment initiated"
        if note:
            message = f"{message} ({note})"
        return self._result(record, message, payload)

    async def get_status(self, internal_id: str, gateway_name: Optional[str] = None) -> PaymentResult:
        """
        Refresh the record from its provider. An empty ``gateway_name`` means the
        record's own provider; a different provider is a GATEWAY_MISMATCH.
        """
        try:
            record = await self._load(internal_id)
            adapter = self._adapter_for(record, gateway_name)
            async with self.store.locked(internal_id) as unit:
                if unit.record is None:
                    raise NotFound(f"No transaction found with id {internal_id}", internal_id=internal_id)
                return await self._refresh(unit, adapter)
        except GatewayError as e:
            return self._failure(e, internal_id=internal_id)
        except Exception as e:
            return self._failure(self._unexpected("status query", e, internal_id), internal_id=internal_id)

    async def refund_payment(
        self,
        internal_id: str,
        gateway_name: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentResult:
        """
        Refund ``amount`` (None or zero: everything still refundable).

        A record still holding an intermediate provider id, or sitting in a
        non-terminal status that does not admit refunds, is refreshed first.
        Preconditions are checked against the locked record before the provider
        is called; violations leave it untouched.
        """
        try:
            record = await self._load(internal_id)
            adapter = self._adapter_for(record, gateway_name)
            async with self.store.locked(internal_id) as unit:
                if unit.record is None:
                    raise NotFound(f"No transaction found with id {internal_id}", internal_id=internal_id)
                return await self._refund_locked(unit, adapter, amount)
        except GatewayError as e:
            return self._failure(e, internal_id=internal_id)
        except Exception as e:
            return self._failure(self._unexpected("refund", e, internal_id), internal_id=internal_id)

    async def _refund_locked(
        self, unit: LockedRecord, adapter: GatewayAdapter, amount: Optional[Decimal]
    ) -> PaymentResult:
        record = unit.record
        stale = (
            record.payment_status not in RETRYABLE_REFUND_STATUSES
            and not is_terminal(record.payment_status)
        )
        if stale or adapter.is_intermediate_id(record.provider_id):
            refreshed = await self._refresh(unit, adapter)
            if not refreshed.ok:
                return refreshed

        if record.payment_status not in RETRYABLE_REFUND_STATUSES:
            return self._failure(
                NotRefundable(
                    f"Payment is not refundable in status {record.status}",
                    internal_id=record.internal_id,
                    gateway_name=adapter.name,
                ),
                record,
            )
        if adapter.is_intermediate_id(record.provider_id) or record.remaining_refundable <= 0:
            return self._failure(
                NotRefundable(
                    f"Nothing refundable for {record.provider_id}",
                    internal_id=record.internal_id,
                    gateway_name=adapter.name,
                ),
                record,
            )
        try:
            to_refund = adapter.check_refund_amount(amount, record.remaining_refundable)
        except GatewayError as e:
            e.internal_id = record.internal_id
            return self._failure(e, record)

        previous = record.status
        try:
            outcome = await self._call_adapter(adapter, "refund", record.provider_id, to_refund)
        except GatewayError as e:
            e.internal_id = record.internal_id
            logger.error(
                f"Refund failed for transaction {record.internal_id} "
                f"(provider id {record.provider_id}): {e.message}"
            )
            if isinstance(e, GatewayCommunicationError) and not e.timed_out:
                self._apply_status(record, PaymentStatus.REFUND_FAILED, None)
                await unit.save()
            await unit.add_history(
                TransactionAction.REFUND.value,
                record.status,
                previous_status=previous,
                provider_id=record.provider_id,
                amount=to_refund,
                error_message=e.message,
            )
            return self._failure(e, record)

        if outcome.status is PaymentStatus.REFUND_FAILED:
            reported = PaymentStatus.REFUND_FAILED
        else:
            record.refunded_amount = Decimal(record.refunded_amount or 0) + Decimal(outcome.amount)
            if record.refunded_amount >= Decimal(record.amount):
                reported = PaymentStatus.REFUNDED
            else:
                reported = PaymentStatus.PARTIALLY_REFUNDED
        note = self._apply_status(record, reported, outcome.native_status)
        payload = dict(outcome.provider_payload)
        payload["refund_id"] = outcome.refund_id
        payload["provider_status"] = outcome.native_status
        record.last_provider_payload = payload
        await unit.save()
        await unit.add_history(
            TransactionAction.REFUND.value,
            record.status,
            previous_status=previous,
            provider_id=record.provider_id,
            amount=Decimal(outcome.amount),
            error_message=note,
        )
        logger.info(
            f"Refund {outcome.refund_id} of {outcome.amount} for transaction "
            f"{record.internal_id}: {record.status}"
        )
        message = outcome.message or f"Refund {reported.value.lower()}"
        if note:
            message = f"{message} ({note})"
        return self._result(record, message, payload)

    async def find_by_provider_id(self, provider_id: str) -> PaymentResult:
        """Stored view of the record holding ``provider_id``; no provider call."""
        try:
            record = await self.store.find_by_provider_id(provider_id)
            if record is None:
                raise NotFound(f"No transaction found for provider id {provider_id}")
            return self._result(record, f"Status: {record.status}", record.last_provider_payload)
        except GatewayError as e:
            return self._failure(e)
        except Exception as e:
            return self._failure(self._unexpected("lookup", e, None))

    async def get_history(self, internal_id: str) -> Optional[List[Dict[str, Any]]]:
        """History entries for a transaction, oldest first; None if the transaction is unknown."""
        if await self.store.find_by_internal_id(internal_id) is None:
            return None
        entries = await self.store.get_history(internal_id)
        return [entry.to_dict() for entry in entries]
