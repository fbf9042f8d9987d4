from sqlalchemy import Column, Integer, Boolean, TIMESTAMP, String, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class CafeSession(Base):
    __tablename__ = "cafe_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    table_number = Column(String(20), nullable=True)
    check_in_time = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    check_out_time = Column(TIMESTAMP(timezone=True), nullable=True)
    total_time_seconds = Column(Integer, nullable=True)
    total_cost = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="active")

    orders = relationship("Order", back_populates="session")

    # one active session per user
    __table_args__ = (
        Index(
            "uq_cafe_sessions_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    price = Column(Integer, nullable=False)
    available = Column(Boolean, nullable=False, default=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("cafe_sessions.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)
    order_time = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    status = Column(String(20), nullable=False, default="pending")
    total_cost = Column(Integer, nullable=False)

    session = relationship("CafeSession", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", lazy="selectin", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")


class PaymentTransaction(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    session_id = Column(Integer, ForeignKey("cafe_sessions.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    external_ref = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(20), default="card")
    payment_time = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
