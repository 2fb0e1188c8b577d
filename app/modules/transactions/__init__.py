# Transaction (ledger) module
from app.modules.transactions.models import (
    Transaction, TransactionType, TRANSACTION_SIGNS, normalize_transaction_type
)

__all__ = [
    "Transaction", "TransactionType", "TRANSACTION_SIGNS", "normalize_transaction_type",
]
