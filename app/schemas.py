from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, List

from app import domain
from app.clock import from_epoch_ms


def _dt(ms: Optional[int]) -> Optional[datetime]:
    return from_epoch_ms(ms) if ms is not None else None


class CheckInRequest(BaseModel):
    table_number: Optional[str] = None


class SessionResponse(BaseModel):
    id: int
    user_id: int
    status: str
    table_number: Optional[str] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    total_time: Optional[int] = None
    total_cost: Optional[int] = None

    @classmethod
    def from_domain(cls, session: domain.CafeSession) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            status=session.status.value,
            table_number=session.table_number,
            check_in_time=_dt(session.check_in_time),
            check_out_time=_dt(session.check_out_time),
            total_time=session.total_time,
            total_cost=session.total_cost,
        )


class MenuItemResponse(BaseModel):
    id: int
    name: str
    category: str
    description: str
    price: int
    available: bool


class OrderLineRequest(BaseModel):
    menu_item_id: int
    quantity: int = Field(default=1, gt=0)


class OrderRequest(BaseModel):
    session_id: Optional[int] = None  # defaults to the caller's active session
    items: List[OrderLineRequest] = Field(min_length=1)


class OrderItemResponse(BaseModel):
    menu_item_id: int
    quantity: int
    price: int


class OrderResponse(BaseModel):
    id: int
    session_id: int
    user_id: int
    status: str
    total_cost: int
    order_time: datetime
    items: List[OrderItemResponse]

    @classmethod
    def from_domain(cls, order: domain.Order) -> "OrderResponse":
        return cls(
            id=order.id,
            session_id=order.session_id,
            user_id=order.user_id,
            status=order.status.value,
            total_cost=order.total_cost,
            order_time=from_epoch_ms(order.order_time),
            items=[OrderItemResponse(**item.model_dump()) for item in order.items],
        )


class SubtotalResponse(BaseModel):
    session_id: int
    status: str
    subtotal: int


class ReceiptResponse(BaseModel):
    session_id: int
    time_cost: int
    order_subtotal: int
    total: int
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    duration_formatted: str
    estimated: bool

    @classmethod
    def from_domain(cls, receipt: domain.Receipt) -> "ReceiptResponse":
        data = receipt.model_dump()
        data["check_in_time"] = _dt(receipt.check_in_time)
        data["check_out_time"] = _dt(receipt.check_out_time)
        return cls(**data)


class PaymentRequest(BaseModel):
    session_id: int


class PaymentConfirmRequest(BaseModel):
    external_ref: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    session_id: int
    amount: int
    status: str
    external_ref: Optional[str] = None
    payment_method: str
    payment_time: datetime
    client_secret: Optional[str] = None

    @classmethod
    def from_domain(cls, payment: domain.Payment, client_secret: Optional[str] = None) -> "PaymentResponse":
        return cls(
            id=payment.id,
            session_id=payment.session_id,
            amount=payment.amount,
            status=payment.status.value,
            external_ref=payment.external_ref,
            payment_method=payment.payment_method,
            payment_time=from_epoch_ms(payment.payment_time),
            client_secret=client_secret,
        )
