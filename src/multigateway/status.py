"""Canonical payment status model and the legal transitions between states."""

import enum
import logging
from typing import Dict, FrozenSet, Mapping, NamedTuple, Optional

logger = logging.getLogger(__name__)


class PaymentStatus(str, enum.Enum):
    """Canonical payment statuses shared by every gateway."""
    PENDING = "PENDING"
    PENDING_USER_ACTION = "PENDING_USER_ACTION"
    AUTHORIZED = "AUTHORIZED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUND_FAILED = "REFUND_FAILED"
    ERROR = "ERROR"
    # Never persisted; tags a provider value outside the known vocabulary.
    UNKNOWN = "UNKNOWN"


TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PENDING_USER_ACTION,
        PaymentStatus.AUTHORIZED,
        PaymentStatus.SUCCESS,
        PaymentStatus.FAILED,
        PaymentStatus.ERROR,
    }),
    PaymentStatus.PENDING_USER_ACTION: frozenset({
        PaymentStatus.AUTHORIZED,
        PaymentStatus.SUCCESS,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    }),
    PaymentStatus.AUTHORIZED: frozenset({
        PaymentStatus.SUCCESS,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.SUCCESS: frozenset({
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUND_FAILED,
    }),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({
        PaymentStatus.REFUNDED,
        PaymentStatus.REFUND_FAILED,
    }),
    PaymentStatus.REFUND_FAILED: frozenset({
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.ERROR: frozenset(),
    PaymentStatus.UNKNOWN: frozenset(),
}

# Statuses a refund may be attempted from, as seen by the provider.
REFUNDABLE_STATUSES = frozenset({PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED})

# The record-level set additionally admits the retry edge out of REFUND_FAILED.
RETRYABLE_REFUND_STATUSES = REFUNDABLE_STATUSES | {PaymentStatus.REFUND_FAILED}


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Return True if ``current -> new`` is a legal move.

    Staying in the same state is always allowed: a poll that reports no
    progress, or a second partial refund.
    """
    current = PaymentStatus(current)
    new = PaymentStatus(new)
    if new is PaymentStatus.UNKNOWN:
        return False
    if current is new:
        return True
    return new in TRANSITIONS[current]


def is_terminal(status: PaymentStatus) -> bool:
    return not TRANSITIONS[PaymentStatus(status)]


class MappedStatus(NamedTuple):
    """A canonical status together with the provider's raw value."""
    status: PaymentStatus
    native: Optional[str] = None

    @property
    def is_unknown(self) -> bool:
        return self.status is PaymentStatus.UNKNOWN


def map_native_status(
    table: Mapping[str, PaymentStatus],
    native: Optional[str],
    provider: str = "",
) -> MappedStatus:
    """Translate a provider status through ``table``.

    Values missing from the table come back tagged UNKNOWN with the raw
    string preserved, never coerced into a meaningful state.
    """
    if native is None:
        return MappedStatus(PaymentStatus.UNKNOWN, None)
    status = table.get(native.lower())
    if status is None:
        logger.warning(f"Unmapped {provider or 'provider'} status: {native}")
        return MappedStatus(PaymentStatus.UNKNOWN, native)
    return MappedStatus(status, native)
