from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TransactionStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUND = "refund"


@dataclass
class PaymentMethod:
    id: str
    type: str  # "credit_card", "bank_transfer", "ewallet"
    name: str
    provider: str
    is_active: bool = True


@dataclass
class Transaction:
    id: str
    order_id: str
    user_id: str
    amount: int  # minor units
    currency: str
    status: TransactionStatus
    payment_method: PaymentMethod
    created_at: datetime
    updated_at: datetime
    metadata: dict = field(default_factory=dict)
    version: int = 1  # bumped by the store on every update

    @property
    def refunded_amount(self) -> int:
        return int(self.metadata.get("refunded_amount", 0))

    @property
    def refundable_amount(self) -> int:
        return self.amount - self.refunded_amount
