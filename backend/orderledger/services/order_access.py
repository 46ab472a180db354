# Overview: Shared order lookups used by the order, fulfillment and payment services.

from __future__ import annotations

from ..errors import NotFoundError
from ..models import Order
from .concurrency import lock_for_update, set_lock_timeout


def get_order(session, order_id: int, *, include_deleted: bool = False, direction: str | None = None) -> Order:
    order = session.get(Order, order_id)
    if order is None or (order.is_deleted and not include_deleted):
        raise NotFoundError(f"Order {order_id} not found")
    if direction is not None and order.direction != direction:
        raise NotFoundError(f"{direction.capitalize()} order {order_id} not found")
    return order


def lock_order(session, order_id: int, *, lock_timeout: float, include_deleted: bool = False,
               direction: str | None = None) -> Order:
    """
    Load an order header with a row lock held until the transaction ends.

    Always the first lock taken by a mutating operation.
    """
    set_lock_timeout(session, lock_timeout)
    order = (
        lock_for_update(session.query(Order).filter(Order.id == order_id))
        .populate_existing()
        .first()
    )
    if order is None or (order.is_deleted and not include_deleted):
        raise NotFoundError(f"Order {order_id} not found")
    if direction is not None and order.direction != direction:
        raise NotFoundError(f"{direction.capitalize()} order {order_id} not found")
    return order
