import enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class OrderFilter(str, enum.Enum):
    ALL = "all"
    PENDING = "pending"
    COMPLETED = "completed"


# All timestamps below are epoch milliseconds (UTC).

class CafeSession(BaseModel):
    id: int
    user_id: int
    status: SessionStatus = SessionStatus.ACTIVE
    check_in_time: Optional[int] = None
    check_out_time: Optional[int] = None
    total_time: Optional[int] = None
    total_cost: Optional[int] = None
    table_number: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE and self.check_out_time is None


class MenuItem(BaseModel):
    id: int
    name: str
    category: str
    description: str = ""
    price: int
    available: bool = True


class OrderItem(BaseModel):
    menu_item_id: int
    quantity: int
    price: int


class OrderLine(BaseModel):
    """A requested line; the price is resolved from the menu when ordering."""

    menu_item_id: int
    quantity: int = 1


class Order(BaseModel):
    id: int
    session_id: int
    user_id: int
    status: OrderStatus = OrderStatus.PENDING
    total_cost: int
    order_time: int
    items: List[OrderItem] = Field(default_factory=list)


class Payment(BaseModel):
    id: int
    user_id: int
    session_id: int
    amount: int
    status: PaymentStatus = PaymentStatus.PENDING
    external_ref: Optional[str] = None
    payment_method: str = "card"
    payment_time: int


class Receipt(BaseModel):
    session_id: int
    time_cost: int
    order_subtotal: int
    total: int
    check_in_time: int
    check_out_time: Optional[int] = None
    duration_formatted: str
    estimated: bool = False
