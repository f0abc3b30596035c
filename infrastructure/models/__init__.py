"""Infrastructure models package exports."""
from .base import Base, metadata
from .ledger import StripeTransactionModel
from .order import CartModel, OrderModel, OrderHistoryModel, CreditNoteModel
from .review import StripeReviewModel
from .attempt import PaymentAttemptModel

__all__ = [
    "Base",
    "metadata",
    "StripeTransactionModel",
    "CartModel",
    "OrderModel",
    "OrderHistoryModel",
    "CreditNoteModel",
    "StripeReviewModel",
    "PaymentAttemptModel",
]
