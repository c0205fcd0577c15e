"""
Order persistence on top of a ``RecordStore``.

The repository owns the order lifecycle rules: ids and creation timestamps
are assigned here, new orders always start as ``pending`` and the only
mutation after creation is a status change.
"""

from __future__ import annotations

import itertools
import logging
import secrets
import time
from threading import Lock
from typing import List, Optional, Tuple

from .errors import OrderNotFoundError, StorageFailure
from .models import Order, OrderCreate, OrderStatus
from .record_store import RecordStore
from .utils import utcnow

logger = logging.getLogger(__name__)

# Attempts before giving up on finding an unused id
_MAX_ID_ATTEMPTS = 5


class OrderIdGenerator:
    """
    Produces ids like ``ORD-1760847600123-0007-9f2c1a``.

    The millisecond timestamp keeps ids roughly sortable, the process-wide
    counter separates calls landing in the same millisecond and the random
    suffix separates processes sharing one store.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = Lock()

    def __call__(self) -> str:
        with self._lock:
            sequence = next(self._counter) % 10000
        return f"ORD-{int(time.time() * 1000)}-{sequence:04d}-{secrets.token_hex(3)}"


class OrderRepository:
    def __init__(self, store: RecordStore[Order], id_generator: Optional[OrderIdGenerator] = None) -> None:
        self._store = store
        self._new_id = id_generator or OrderIdGenerator()

    def append(self, data: OrderCreate) -> Order:
        """
        Persist a new order built from client-supplied fields.

        Returns:
            The stored order including its generated id, date and status

        Raises:
            StorageFailure: If the order could not be persisted
        """

        def mutate(orders: List[Order]) -> Tuple[List[Order], Order]:
            taken = {existing.order_id for existing in orders}
            for _ in range(_MAX_ID_ATTEMPTS):
                order_id = self._new_id()
                if order_id not in taken:
                    break
            else:
                raise StorageFailure("Could not allocate a unique order id")

            order = Order(
                **data.model_dump(),
                order_id=order_id,
                order_date=utcnow(),
                status=OrderStatus.PENDING,
            )
            orders.append(order)
            return orders, order

        order = self._store.update(mutate)
        logger.info(f"Created order {order.order_id} for {len(order.files)} file(s)")
        return order

    def list(self) -> List[Order]:
        return list(self._store.read().records)

    def get_by_id(self, order_id: str) -> Optional[Order]:
        for order in self._store.read().records:
            if order.order_id == order_id:
                return order
        return None

    def update_status(self, order_id: str, status: OrderStatus) -> Order:
        """
        Change the status of an existing order.

        Raises:
            OrderNotFoundError: If no order has ``order_id``; nothing is written
            StorageFailure: If the change could not be persisted
        """

        def mutate(orders: List[Order]) -> Tuple[List[Order], Order]:
            for index, existing in enumerate(orders):
                if existing.order_id == order_id:
                    updated = existing.model_copy(update={"status": status})
                    orders[index] = updated
                    return orders, updated
            raise OrderNotFoundError(order_id)

        order = self._store.update(mutate)
        logger.info(f"Order {order_id} moved to {status.value}")
        return order

    def clear(self) -> None:
        """Drop every order. Irreversible."""
        self._store.clear()
        logger.warning("All orders cleared")
