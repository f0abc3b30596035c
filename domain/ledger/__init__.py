from .entity import LedgerEntry, TransactionType, TransactionSource, REFUND_TYPES
from .repository import LedgerRepository

__all__ = ["LedgerEntry", "TransactionType", "TransactionSource", "REFUND_TYPES", "LedgerRepository"]
