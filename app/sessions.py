"""
Session lifecycle for the café: check-in, ordering, checkout and settlement.

A session is `active` from check-in until checkout, then `completed` for good.
Checkout and order placement for one session are serialized through a
per-session lock; the storage layer repeats the status check inside its own
write so that separate processes stay consistent as well.
"""
import asyncio
import logging
import weakref
from typing import Iterable, List, Optional, Tuple

from app.billing import build_receipt, sum_orders
from app.clock import Clock, SystemClock
from app.domain import (
    CafeSession, Order, OrderFilter, OrderItem, OrderLine, OrderStatus, Payment, PaymentStatus, Receipt,
)
from app.errors import (
    AuthorizationError, ChargeError, ConflictError, InvalidRequestError, InvalidStateError, NotFoundError,
)
from app.pricing import DEFAULT_RULES, PricingRules, billed_seconds, compute_time_cost, elapsed_seconds
from app.storage import Storage


class CafeSessionManager:
    def __init__(self, storage: Storage, clock: Clock = None, rules: PricingRules = DEFAULT_RULES,
                 charge_client=None):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.rules = rules
        self.charge_client = charge_client
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: int) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _owned_session(self, session_id: int, user_id: int) -> CafeSession:
        session = await self.storage.get_session(session_id)
        if session is None:
            logging.warning(f"Session {session_id} not found.")
            raise NotFoundError("Session not found")
        if session.user_id != user_id:
            logging.warning(f"User {user_id} tried to access session {session_id} of user {session.user_id}")
            raise AuthorizationError("Not authorized")
        return session

    async def check_in(self, user_id: int, table_number: Optional[str] = None) -> CafeSession:
        if await self.storage.get_active_session(user_id):
            logging.warning(f"User {user_id} already has an active session")
            raise ConflictError("User already has an active session")

        session = await self.storage.create_session(user_id, self.clock.now(), table_number)
        logging.info(f"User {user_id} checked in, session {session.id}")
        return session

    async def check_out(self, session_id: int, user_id: int) -> CafeSession:
        async with self._lock_for(session_id):
            session = await self._owned_session(session_id, user_id)
            if not session.is_active:
                logging.warning(f"Checkout rejected, session {session_id} is {session.status.value}")
                raise InvalidStateError("Session is not active", reason="session_not_active")

            now = self.clock.now()
            elapsed = elapsed_seconds(session.check_in_time, now)
            time_cost = compute_time_cost(billed_seconds(session.check_in_time, now, self.rules), self.rules)
            # every order of the session counts, whatever its status
            orders = await self.storage.list_orders(session_id)
            order_subtotal = sum_orders(orders)
            total_cost = time_cost + order_subtotal

            updated = await self.storage.complete_session(session_id, now, elapsed, total_cost)
            if updated is None:
                logging.warning(f"Session {session_id} was completed by a concurrent checkout")
                raise InvalidStateError("Session is not active", reason="session_not_active")

        logging.info(
            f"Session {session_id} checked out: {elapsed}s, time cost {time_cost}, "
            f"{len(orders)} orders for {order_subtotal}, total {total_cost}"
        )
        return updated

    async def get_active_session(self, user_id: int) -> Optional[CafeSession]:
        return await self.storage.get_active_session(user_id)

    async def session_history(self, user_id: int) -> List[CafeSession]:
        return await self.storage.list_sessions(user_id)

    async def place_order(self, session_id: Optional[int], user_id: int, items: Iterable[OrderLine]) -> Order:
        lines = [OrderLine.model_validate(item) for item in items]
        if not lines:
            raise InvalidRequestError("No items provided in order")
        for line in lines:
            if line.quantity <= 0:
                raise InvalidRequestError(f"Invalid quantity {line.quantity} for menu item {line.menu_item_id}")

        if session_id is None:
            session = await self.storage.get_active_session(user_id)
            if session is None:
                raise InvalidStateError("No active session. Please check in first.", reason="no_active_session")
        else:
            session = await self._owned_session(session_id, user_id)
        if not session.is_active:
            raise InvalidStateError(
                "Cannot place order on completed session. Your session has already ended.",
                reason="session_ended",
            )

        order_items = []
        for line in lines:
            menu_item = await self.storage.get_menu_item(line.menu_item_id)
            if menu_item is None or not menu_item.available:
                raise NotFoundError(f"Menu item with ID {line.menu_item_id} not found")
            order_items.append(OrderItem(menu_item_id=menu_item.id, quantity=line.quantity, price=menu_item.price))
        total_cost = sum(item.price * item.quantity for item in order_items)

        async with self._lock_for(session.id):
            order = await self.storage.create_order(session.id, user_id, self.clock.now(), total_cost, order_items)

        logging.info(f"Order {order.id} placed on session {session.id}: {len(order_items)} lines, {total_cost}")
        return order

    async def list_orders(self, session_id: int, user_id: int) -> List[Order]:
        await self._owned_session(session_id, user_id)
        return await self.storage.list_orders(session_id)

    async def get_order_subtotal(self, session_id: int, status_filter: OrderFilter = OrderFilter.ALL) -> int:
        status_filter = OrderFilter(status_filter)
        status = None if status_filter == OrderFilter.ALL else OrderStatus(status_filter.value)
        return sum_orders(await self.storage.list_orders(session_id, status))

    async def get_receipt(self, session_id: int, user_id: int) -> Receipt:
        session = await self._owned_session(session_id, user_id)
        orders = await self.storage.list_orders(session_id)
        return build_receipt(session, orders, now_ms=self.clock.now(), rules=self.rules)

    async def create_payment(self, session_id: int, user_id: int) -> Tuple[Payment, Optional[str]]:
        """
        Open a charge for a completed session. Returns the payment and the
        charge's client secret. A payment still pending for the session is
        returned as is, without a secret and without a new charge.
        """
        session = await self._owned_session(session_id, user_id)
        if session.is_active or session.total_cost is None:
            raise InvalidStateError("Session is not completed", reason="session_not_completed")

        async with self._lock_for(session_id):
            payments = await self.storage.list_payments(session_id)
            if any(p.status == PaymentStatus.COMPLETED for p in payments):
                raise InvalidStateError("Session has already been paid", reason="already_paid")
            pending = [p for p in payments if p.status == PaymentStatus.PENDING]
            if pending:
                logging.info(f"Payment {pending[0].id} already pending for session {session_id}")
                return pending[0], None

            if self.charge_client is None:
                raise ChargeError("Charge service is not configured")

            payment = await self.storage.create_payment(user_id, session_id, session.total_cost, self.clock.now())
            try:
                charge = await self.charge_client.create_charge(payment.amount, user_id, session_id)
            except ChargeError:
                await self.storage.fail_payment(payment.id, None)
                raise

            payment = await self.storage.set_payment_reference(payment.id, charge["reference"])
        logging.info(f"Payment {payment.id} created for session {session_id}: {payment.amount}")
        return payment, charge.get("client_secret")

    async def confirm_payment(self, payment_id: int, user_id: int, external_ref: Optional[str] = None) -> Payment:
        payment = await self.storage.get_payment(payment_id)
        if payment is None:
            logging.warning(f"Payment {payment_id} not found.")
            raise NotFoundError("Payment not found")
        if payment.user_id != user_id:
            raise AuthorizationError("Not authorized")

        async with self._lock_for(payment.session_id):
            # re-read under the lock; a retry of an already settled payment is a no-op
            payment = await self.storage.get_payment(payment_id)
            if payment.status == PaymentStatus.COMPLETED:
                logging.info(f"Payment {payment_id} already completed")
                return payment

            # a session is settled at most once
            settled = [
                p for p in await self.storage.list_payments(payment.session_id)
                if p.status == PaymentStatus.COMPLETED
            ]
            if settled:
                logging.warning(
                    f"Payment {payment_id} not confirmed, session {payment.session_id} "
                    f"already paid by payment {settled[0].id}"
                )
                return payment

            if self.charge_client is None:
                raise ChargeError("Charge service is not configured")
            reference = external_ref or payment.external_ref
            if not reference:
                raise InvalidRequestError("No charge reference to confirm")

            if await self.charge_client.confirm_charge(reference):
                payment = await self.storage.complete_payment(payment_id, reference)
                logging.info(f"Payment {payment_id} completed, orders of session {payment.session_id} completed")
            else:
                payment = await self.storage.fail_payment(payment_id, reference)
                logging.warning(f"Charge {reference} for payment {payment_id} was not confirmed")
        return payment
