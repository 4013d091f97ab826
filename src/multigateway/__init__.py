# multigateway package
__version__ = "0.1.0"

from .status import PaymentStatus, can_transition, map_native_status
from .errors import ErrorCode, GatewayError
from .config import Settings
from .gateways import GatewayAdapter, GatewayRegistry
from .database import DatabaseManager, SqlAlchemyTransactionStore, TransactionRecord
from .orchestrator import (
    InitiateIntent,
    QueryStatusIntent,
    RefundIntent,
    PaymentResult,
    PaymentOrchestrator,
)
