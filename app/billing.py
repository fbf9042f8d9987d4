from typing import Iterable, Optional

from app.domain import CafeSession, Order, OrderStatus, Receipt
from app.pricing import DEFAULT_RULES, PricingRules, billed_seconds, compute_time_cost, elapsed_seconds


def sum_orders(orders: Iterable[Order]) -> int:
    """Plain fold over order totals. Filtering by status is up to the caller."""
    return sum(order.total_cost for order in orders)


def format_duration(seconds: int) -> str:
    hours, rest = divmod(max(0, seconds), 3600)
    return f"{hours}h {rest // 60}m"


def build_receipt(session: CafeSession, orders: Iterable[Order], now_ms: Optional[int] = None,
                  rules: PricingRules = DEFAULT_RULES) -> Receipt:
    orders = list(orders)

    if session.total_cost is None:
        # still open: estimate against now, counting every order so far
        if now_ms is None:
            raise ValueError("now_ms is required to estimate an open session")
        elapsed = elapsed_seconds(session.check_in_time, now_ms)
        time_cost = compute_time_cost(billed_seconds(session.check_in_time, now_ms, rules), rules)
        subtotal = sum_orders(orders)
        return Receipt(
            session_id=session.id,
            time_cost=time_cost,
            order_subtotal=subtotal,
            total=time_cost + subtotal,
            check_in_time=session.check_in_time,
            check_out_time=None,
            duration_formatted=format_duration(elapsed),
            estimated=True,
        )

    # stored total is authoritative; only paid-for orders show as order lines
    subtotal = sum_orders(o for o in orders if o.status == OrderStatus.COMPLETED)
    return Receipt(
        session_id=session.id,
        time_cost=session.total_cost - subtotal,
        order_subtotal=subtotal,
        total=session.total_cost,
        check_in_time=session.check_in_time,
        check_out_time=session.check_out_time,
        duration_formatted=format_duration(session.total_time or 0),
        estimated=False,
    )
