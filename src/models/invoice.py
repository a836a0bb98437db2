from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class InvoiceStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass
class InvoiceItem:
    id: str
    description: str
    quantity: int
    unit_price: int

    @property
    def total(self) -> int:
        return self.quantity * self.unit_price


@dataclass
class Invoice:
    id: str
    invoice_number: str  # INV<year><month><seq4>
    user_id: str
    transaction_id: str
    amount: int
    tax: int
    due_date: datetime
    status: InvoiceStatus
    created_at: datetime
    updated_at: datetime
    items: list[InvoiceItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.amount + self.tax
