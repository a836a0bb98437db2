from dataclasses import asdict, dataclass, field


@dataclass
class Address:
    first_name: str
    last_name: str
    address: str
    city: str
    postal_code: str
    phone: str
    country_code: str = "IDN"


@dataclass
class CustomerDetails:
    first_name: str
    last_name: str
    email: str
    phone: str
    billing_address: Address | None = None
    shipping_address: Address | None = None


@dataclass
class ItemDetails:
    id: str
    name: str
    price: int
    quantity: int
    category: str | None = None
    merchant_name: str | None = None


@dataclass
class PaymentRequest:
    order_id: str
    amount: int
    customer: CustomerDetails
    items: list[ItemDetails] = field(default_factory=list)
    payment_method: str | None = None
    currency: str = "IDR"


@dataclass
class GatewayResponse:
    """Normalized gateway reply; the only gateway shape seen past the client."""

    transaction_id: str
    order_id: str
    status_code: str
    status_message: str
    transaction_status: str
    payment_type: str | None = None
    fraud_status: str | None = None
    redirect_url: str | None = None
    token: str | None = None
    approval_code: str | None = None
    gross_amount: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)
