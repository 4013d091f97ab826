import re
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, Iterable, Mapping
from pydantic import BaseModel

from ..errors import GatewayUnavailable, InvalidAmount, InvalidRequest
from ..status import MappedStatus, PaymentStatus

CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")
MINOR_UNIT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the provider's integer minor units (cents, paise)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int) -> Decimal:
    return (Decimal(value) / 100).quantize(MINOR_UNIT)


# Canonical models
class InitiateResult(BaseModel):
    provider_id: str
    status: PaymentStatus
    native_status: Optional[str] = None
    message: str = ""
    provider_payload: Dict[str, Any] = {}


class StatusResult(BaseModel):
    # Settlement-level id when the query could resolve one, otherwise the id queried.
    provider_id: str
    status: PaymentStatus
    native_status: Optional[str] = None
    message: str = ""
    provider_payload: Dict[str, Any] = {}
    # Provider's running refunded total, when the queried object carries one.
    refunded_amount: Optional[Decimal] = None


class RefundResult(BaseModel):
    refund_id: Optional[str]
    provider_id: str
    status: PaymentStatus  # REFUNDED|PARTIALLY_REFUNDED|REFUND_FAILED
    amount: Decimal
    native_status: Optional[str] = None
    message: str = ""
    provider_payload: Dict[str, Any] = {}


def status_fields(mapped: MappedStatus) -> Dict[str, Any]:
    return {"status": mapped.status, "native_status": mapped.native}


class GatewayAdapter(ABC):
    """
    Provider adapter contract. Implementations translate a generic request into
    one provider call and the provider's answer back into canonical statuses.
    Calls are blocking; the orchestrator runs them off the event loop.
    """

    available = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable provider identifier, used as registry key and stored on records."""
        raise NotImplementedError

    @abstractmethod
    def initiate(
        self,
        amount: Decimal,
        currency_code: str,
        payment_method: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> InitiateResult:
        """
        Start a payment with the provider. ``reference`` is the internal id,
        passed along where the provider accepts a merchant reference.
        """
        raise NotImplementedError

    @abstractmethod
    def query_status(self, provider_id: str) -> StatusResult:
        """
        Fetch the current status. Must tolerate an intermediate id and fall back
        to the best-known intermediate status when no settlement exists yet.
        """
        raise NotImplementedError

    @abstractmethod
    def refund(self, provider_id: str, amount: Optional[Decimal] = None) -> RefundResult:
        """
        Refund ``amount`` (None or zero means everything still refundable).
        Raises NotRefundable or InvalidAmount on precondition violations.
        """
        raise NotImplementedError

    def is_intermediate_id(self, provider_id: Optional[str]) -> bool:
        """True if ``provider_id`` names an initiation object, not a settlement."""
        return False

    def health_check(self) -> Dict[str, Any]:
        return {"ok": self.available, "provider": self.name}

    @staticmethod
    def check_initiate_args(amount: Decimal, currency_code: str) -> None:
        if amount is None or Decimal(amount) <= 0:
            raise InvalidAmount(f"Amount must be greater than 0, got {amount}")
        if not currency_code or not CURRENCY_RE.match(currency_code):
            raise InvalidRequest(f"Currency must be a 3-letter ISO 4217 code, got {currency_code!r}")

    @staticmethod
    def check_refund_amount(amount: Optional[Decimal], remaining: Decimal) -> Decimal:
        """Resolve a requested refund against what is left; returns the amount to refund."""
        if amount is None or Decimal(amount) == 0:
            return remaining
        if Decimal(amount) < 0:
            raise InvalidAmount(f"Refund amount must not be negative, got {amount}")
        if Decimal(amount) > remaining:
            raise InvalidAmount(
                f"Refund amount {amount} exceeds remaining refundable amount {remaining}"
            )
        return Decimal(amount)


class UnavailableGateway(GatewayAdapter):
    """
    Marker variant for a provider whose client could not be configured
    (missing or placeholder credentials). Every capability raises GatewayUnavailable.
    """

    available = False

    def __init__(self, name: str, reason: str):
        self._name = name
        self.reason = reason

    @property
    def name(self) -> str:
        return self._name

    def _unavailable(self) -> GatewayUnavailable:
        return GatewayUnavailable(
            f"{self._name} gateway is not available: {self.reason}", gateway_name=self._name
        )

    def initiate(self, amount, currency_code, payment_method=None, details=None, reference=None):
        raise self._unavailable()

    def query_status(self, provider_id):
        raise self._unavailable()

    def refund(self, provider_id, amount=None):
        raise self._unavailable()

    def health_check(self) -> Dict[str, Any]:
        return {"ok": False, "provider": self._name, "reason": self.reason}


def select_attempt(
    attempts: Iterable[Dict[str, Any]],
    rank: Mapping[str, int],
) -> Optional[Dict[str, Any]]:
    """Pick the most advanced settlement attempt; ties go to the most recent one.

    ``rank`` orders provider statuses (higher is more advanced); attempts are
    dicts with ``status`` and ``created_at`` keys.
    """
    best = None
    best_key = None
    for attempt in attempts:
        key = (
            rank.get(str(attempt.get("status", "")).lower(), -1),
            attempt.get("created_at") or 0,
        )
        if best_key is None or key > best_key:
            best, best_key = attempt, key
    return best
