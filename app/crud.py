from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from app import domain
from app.clock import from_epoch_ms, to_epoch_ms
from app.errors import ConflictError, InvalidStateError, NotFoundError
from app.models import CafeSession, MenuItem, Order, OrderItem, PaymentTransaction
from app.storage import Storage
import logging


def _ms(value):
    return to_epoch_ms(value) if value is not None else None


def _session_out(row: CafeSession) -> domain.CafeSession:
    return domain.CafeSession(
        id=row.id,
        user_id=row.user_id,
        status=row.status,
        check_in_time=_ms(row.check_in_time),
        check_out_time=_ms(row.check_out_time),
        total_time=row.total_time_seconds,
        total_cost=row.total_cost,
        table_number=row.table_number,
    )


def _menu_item_out(row: MenuItem) -> domain.MenuItem:
    return domain.MenuItem(
        id=row.id,
        name=row.name,
        category=row.category,
        description=row.description or "",
        price=row.price,
        available=bool(row.available),
    )


def _order_out(row: Order) -> domain.Order:
    return domain.Order(
        id=row.id,
        session_id=row.session_id,
        user_id=row.user_id,
        status=row.status,
        total_cost=row.total_cost,
        order_time=_ms(row.order_time),
        items=[
            domain.OrderItem(menu_item_id=i.menu_item_id, quantity=i.quantity, price=i.price)
            for i in row.items
        ],
    )


def _payment_out(row: PaymentTransaction) -> domain.Payment:
    return domain.Payment(
        id=row.id,
        user_id=row.user_id,
        session_id=row.session_id,
        amount=row.amount,
        status=row.status,
        external_ref=row.external_ref,
        payment_method=row.payment_method or "card",
        payment_time=_ms(row.payment_time),
    )


class SqlStorage(Storage):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_session(self, user_id, check_in_time, table_number=None):
        async with self.session_factory() as db:
            try:
                new_session = CafeSession(
                    user_id=user_id,
                    table_number=table_number,
                    check_in_time=from_epoch_ms(check_in_time),
                    status=domain.SessionStatus.ACTIVE.value,
                )
                db.add(new_session)
                await db.commit()
                await db.refresh(new_session)
                return _session_out(new_session)
            except IntegrityError:
                await db.rollback()
                logging.warning(f"Unique active session violated for user: {user_id}")
                raise ConflictError(f"User {user_id} already has an active session")
            except SQLAlchemyError as e:
                await db.rollback()
                raise e

    async def get_session(self, session_id):
        async with self.session_factory() as db:
            result = await db.execute(select(CafeSession).where(CafeSession.id == session_id))
            row = result.scalars().first()
            return _session_out(row) if row else None

    async def get_active_session(self, user_id):
        async with self.session_factory() as db:
            result = await db.execute(
                select(CafeSession)
                .where(CafeSession.user_id == user_id, CafeSession.status == domain.SessionStatus.ACTIVE.value)
                .order_by(CafeSession.check_in_time.desc())
            )
            row = result.scalars().first()
            return _session_out(row) if row else None

    async def list_sessions(self, user_id):
        async with self.session_factory() as db:
            result = await db.execute(
                select(CafeSession)
                .where(CafeSession.user_id == user_id)
                .order_by(CafeSession.check_in_time.desc(), CafeSession.id.desc())
            )
            return [_session_out(row) for row in result.scalars().all()]

    async def complete_session(self, session_id, check_out_time, total_time, total_cost):
        async with self.session_factory() as db:
            try:
                # conditional update: a second writer matches zero rows
                result = await db.execute(
                    update(CafeSession)
                    .where(CafeSession.id == session_id, CafeSession.status == domain.SessionStatus.ACTIVE.value)
                    .values(
                        status=domain.SessionStatus.COMPLETED.value,
                        check_out_time=from_epoch_ms(check_out_time),
                        total_time_seconds=total_time,
                        total_cost=total_cost,
                    )
                )
                if result.rowcount == 0:
                    await db.rollback()
                    return None
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise e

            row = (await db.execute(select(CafeSession).where(CafeSession.id == session_id))).scalars().first()
            return _session_out(row)

    async def list_menu_items(self, category=None):
        async with self.session_factory() as db:
            query = select(MenuItem).order_by(MenuItem.id)
            if category is not None:
                query = query.where(MenuItem.category == category)
            result = await db.execute(query)
            return [_menu_item_out(row) for row in result.scalars().all()]

    async def get_menu_item(self, menu_item_id):
        async with self.session_factory() as db:
            result = await db.execute(select(MenuItem).where(MenuItem.id == menu_item_id))
            row = result.scalars().first()
            return _menu_item_out(row) if row else None

    async def add_menu_item(self, name, category, price, description="", available=True):
        async with self.session_factory() as db:
            try:
                item = MenuItem(name=name, category=category, price=price,
                                description=description, available=available)
                db.add(item)
                await db.commit()
                await db.refresh(item)
                return _menu_item_out(item)
            except SQLAlchemyError as e:
                await db.rollback()
                raise e

    async def create_order(self, session_id, user_id, order_time, total_cost, items):
        async with self.session_factory() as db:
            try:
                # lock the session row so a concurrent checkout cannot slip between check and insert
                result = await db.execute(
                    select(CafeSession).where(CafeSession.id == session_id).with_for_update()
                )
                session = result.scalars().first()
                if (
                    session is None
                    or session.status != domain.SessionStatus.ACTIVE.value
                    or session.check_out_time is not None
                ):
                    await db.rollback()
                    raise InvalidStateError(
                        "Cannot place order on completed session. Your session has already ended.",
                        reason="session_ended",
                    )

                order = Order(
                    session_id=session_id,
                    user_id=user_id,
                    order_time=from_epoch_ms(order_time),
                    status=domain.OrderStatus.PENDING.value,
                    total_cost=total_cost,
                    items=[
                        OrderItem(menu_item_id=i.menu_item_id, quantity=i.quantity, price=i.price)
                        for i in items
                    ],
                )
                db.add(order)
                await db.commit()
                return _order_out(order)
            except SQLAlchemyError as e:
                await db.rollback()
                raise e

    async def list_orders(self, session_id, status=None):
        async with self.session_factory() as db:
            query = select(Order).where(Order.session_id == session_id).order_by(Order.id)
            if status is not None:
                query = query.where(Order.status == domain.OrderStatus(status).value)
            result = await db.execute(query)
            return [_order_out(row) for row in result.scalars().all()]

    async def create_payment(self, user_id, session_id, amount, payment_time):
        async with self.session_factory() as db:
            try:
                new_payment = PaymentTransaction(
                    user_id=user_id,
                    session_id=session_id,
                    amount=amount,
                    status=domain.PaymentStatus.PENDING.value,
                    payment_time=from_epoch_ms(payment_time),
                )
                db.add(new_payment)
                await db.commit()
                await db.refresh(new_payment)
                return _payment_out(new_payment)
            except SQLAlchemyError as e:
                await db.rollback()
                raise e

    async def get_payment(self, payment_id):
        async with self.session_factory() as db:
            result = await db.execute(select(PaymentTransaction).where(PaymentTransaction.id == payment_id))
            row = result.scalars().first()
            return _payment_out(row) if row else None

    async def list_payments(self, session_id):
        async with self.session_factory() as db:
            result = await db.execute(
                select(PaymentTransaction)
                .where(PaymentTransaction.session_id == session_id)
                .order_by(PaymentTransaction.payment_time.desc(), PaymentTransaction.id.desc())
            )
            return [_payment_out(row) for row in result.scalars().all()]

    async def _update_payment(self, payment_id, status=None, external_ref=None, cascade_orders=False):
        async with self.session_factory() as db:
            try:
                result = await db.execute(
                    select(PaymentTransaction).where(PaymentTransaction.id == payment_id).with_for_update()
                )
                payment = result.scalars().first()
                if payment is None:
                    raise NotFoundError(f"Payment {payment_id} not found")

                if status is not None:
                    payment.status = status.value
                if external_ref is not None:
                    payment.external_ref = external_ref
                if cascade_orders:
                    await db.execute(
                        update(Order)
                        .where(Order.session_id == payment.session_id)
                        .values(status=domain.OrderStatus.COMPLETED.value)
                    )
                await db.commit()
                await db.refresh(payment)
                return _payment_out(payment)
            except SQLAlchemyError as e:
                await db.rollback()
                raise e

    async def set_payment_reference(self, payment_id, external_ref):
        return await self._update_payment(payment_id, external_ref=external_ref)

    async def complete_payment(self, payment_id, external_ref):
        return await self._update_payment(
            payment_id, status=domain.PaymentStatus.COMPLETED, external_ref=external_ref, cascade_orders=True
        )

    async def fail_payment(self, payment_id, external_ref):
        return await self._update_payment(payment_id, status=domain.PaymentStatus.FAILED, external_ref=external_ref)
