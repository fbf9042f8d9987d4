"""
Persistence interface used by the session manager.

`SqlStorage` in app.crud is the production implementation. `InMemoryStorage`
keeps everything in dicts and is meant for tests and local experiments; it is
never used as a fallback when the database is not configured.
"""
import itertools
from typing import Dict, List, Optional

from app.domain import (
    CafeSession, MenuItem, Order, OrderItem, OrderStatus, Payment, PaymentStatus, SessionStatus,
)
from app.errors import ConflictError, InvalidStateError, NotFoundError


class Storage:
    async def create_session(self, user_id: int, check_in_time: int,
                             table_number: Optional[str] = None) -> CafeSession:
        """Insert an active session. Raises ConflictError if the user already has one."""
        raise NotImplementedError

    async def get_session(self, session_id: int) -> Optional[CafeSession]:
        raise NotImplementedError

    async def get_active_session(self, user_id: int) -> Optional[CafeSession]:
        raise NotImplementedError

    async def list_sessions(self, user_id: int) -> List[CafeSession]:
        raise NotImplementedError

    async def complete_session(self, session_id: int, check_out_time: int, total_time: int,
                               total_cost: int) -> Optional[CafeSession]:
        """
        Flip an active session to completed and fill its terminal fields.
        Returns None, writing nothing, when the session is no longer active.
        """
        raise NotImplementedError

    async def list_menu_items(self, category: Optional[str] = None) -> List[MenuItem]:
        raise NotImplementedError

    async def get_menu_item(self, menu_item_id: int) -> Optional[MenuItem]:
        raise NotImplementedError

    async def add_menu_item(self, name: str, category: str, price: int, description: str = "",
                            available: bool = True) -> MenuItem:
        raise NotImplementedError

    async def create_order(self, session_id: int, user_id: int, order_time: int, total_cost: int,
                           items: List[OrderItem]) -> Order:
        """Insert an order. Raises InvalidStateError if the session is not active at write time."""
        raise NotImplementedError

    async def list_orders(self, session_id: int, status: Optional[OrderStatus] = None) -> List[Order]:
        raise NotImplementedError

    async def create_payment(self, user_id: int, session_id: int, amount: int,
                             payment_time: int) -> Payment:
        raise NotImplementedError

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        raise NotImplementedError

    async def list_payments(self, session_id: int) -> List[Payment]:
        raise NotImplementedError

    async def set_payment_reference(self, payment_id: int, external_ref: str) -> Payment:
        raise NotImplementedError

    async def complete_payment(self, payment_id: int, external_ref: Optional[str]) -> Payment:
        """Mark the payment completed and every order of its session completed, together."""
        raise NotImplementedError

    async def fail_payment(self, payment_id: int, external_ref: Optional[str]) -> Payment:
        raise NotImplementedError


class InMemoryStorage(Storage):
    def __init__(self):
        self.sessions: Dict[int, CafeSession] = {}
        self.menu: Dict[int, MenuItem] = {}
        self.orders: Dict[int, Order] = {}
        self.payments: Dict[int, Payment] = {}
        self._ids = {name: itertools.count(1) for name in ("session", "menu", "order", "payment")}

    async def create_session(self, user_id, check_in_time, table_number=None):
        if await self.get_active_session(user_id):
            raise ConflictError(f"User {user_id} already has an active session")
        session = CafeSession(
            id=next(self._ids["session"]),
            user_id=user_id,
            check_in_time=check_in_time,
            table_number=table_number,
        )
        self.sessions[session.id] = session
        return session.model_copy()

    async def get_session(self, session_id):
        session = self.sessions.get(session_id)
        return session.model_copy() if session else None

    async def get_active_session(self, user_id):
        for session in self.sessions.values():
            if session.user_id == user_id and session.status == SessionStatus.ACTIVE:
                return session.model_copy()
        return None

    async def list_sessions(self, user_id):
        found = [s.model_copy() for s in self.sessions.values() if s.user_id == user_id]
        return sorted(found, key=lambda s: (s.check_in_time or 0, s.id), reverse=True)

    async def complete_session(self, session_id, check_out_time, total_time, total_cost):
        session = self.sessions.get(session_id)
        if session is None or session.status != SessionStatus.ACTIVE:
            return None
        updated = session.model_copy(update={
            "status": SessionStatus.COMPLETED,
            "check_out_time": check_out_time,
            "total_time": total_time,
            "total_cost": total_cost,
        })
        self.sessions[session_id] = updated
        return updated.model_copy()

    async def list_menu_items(self, category=None):
        return [
            item.model_copy() for item in self.menu.values()
            if category is None or item.category == category
        ]

    async def get_menu_item(self, menu_item_id):
        item = self.menu.get(menu_item_id)
        return item.model_copy() if item else None

    async def add_menu_item(self, name, category, price, description="", available=True):
        item = MenuItem(
            id=next(self._ids["menu"]),
            name=name,
            category=category,
            description=description,
            price=price,
            available=available,
        )
        self.menu[item.id] = item
        return item.model_copy()

    async def create_order(self, session_id, user_id, order_time, total_cost, items):
        session = self.sessions.get(session_id)
        if session is None or not session.is_active:
            raise InvalidStateError(
                "Cannot place order on completed session. Your session has already ended.",
                reason="session_ended",
            )
        order = Order(
            id=next(self._ids["order"]),
            session_id=session_id,
            user_id=user_id,
            total_cost=total_cost,
            order_time=order_time,
            items=[item.model_copy() for item in items],
        )
        self.orders[order.id] = order
        return order.model_copy(deep=True)

    async def list_orders(self, session_id, status=None):
        return [
            order.model_copy(deep=True) for order in self.orders.values()
            if order.session_id == session_id and (status is None or order.status == status)
        ]

    async def create_payment(self, user_id, session_id, amount, payment_time):
        payment = Payment(
            id=next(self._ids["payment"]),
            user_id=user_id,
            session_id=session_id,
            amount=amount,
            payment_time=payment_time,
        )
        self.payments[payment.id] = payment
        return payment.model_copy()

    async def get_payment(self, payment_id):
        payment = self.payments.get(payment_id)
        return payment.model_copy() if payment else None

    async def list_payments(self, session_id):
        return [p.model_copy() for p in self.payments.values() if p.session_id == session_id]

    def _update_payment(self, payment_id, **changes) -> Payment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if changes.get("external_ref") is None:
            changes.pop("external_ref", None)
        self.payments[payment_id] = payment.model_copy(update=changes)
        return self.payments[payment_id].model_copy()

    async def set_payment_reference(self, payment_id, external_ref):
        return self._update_payment(payment_id, external_ref=external_ref)

    async def complete_payment(self, payment_id, external_ref):
        payment = self._update_payment(payment_id, status=PaymentStatus.COMPLETED, external_ref=external_ref)
        for order_id, order in self.orders.items():
            if order.session_id == payment.session_id:
                self.orders[order_id] = order.model_copy(update={"status": OrderStatus.COMPLETED})
        return payment

    async def fail_payment(self, payment_id, external_ref):
        return self._update_payment(payment_id, status=PaymentStatus.FAILED, external_ref=external_ref)
