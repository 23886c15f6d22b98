import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"


# failed ставится по Fail URL без подписи, подписанный Result URL важнее
PAYABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.FAILED)


@dataclass
class Order:
    order_id: str
    invoice_id: int
    status: OrderStatus
    created_at: float
    updated_at: float
    data: dict = field(default_factory=dict)
    customer_chat_id: Optional[str] = None

    @property
    def total(self) -> float:
        return float(self.data.get("total", 0))


class OrderStore:
    """Заказы в памяти процесса (до рестарта)"""

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._by_invoice: Dict[int, str] = {}

    def next_invoice_id(self) -> int:
        """InvId для Робокассы - время в мс, сдвигается вперёд при совпадении"""
        invoice_id = int(time.time() * 1000)
        while invoice_id in self._by_invoice:
            invoice_id += 1
        return invoice_id

    def create_order(self, data: dict, customer_chat_id: Optional[str] = None) -> Order:
        invoice_id = self.next_invoice_id()
        now = time.time()
        order = Order(
            order_id=f"ORD-{invoice_id}",
            invoice_id=invoice_id,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
            data=data,
            customer_chat_id=customer_chat_id,
        )
        self._orders[order.order_id] = order
        self._by_invoice[invoice_id] = order.order_id
        logger.info(f"Order {order.order_id} created, total {order.total}")
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def get_order_by_invoice(self, invoice_id: int) -> Optional[Order]:
        order_id = self._by_invoice.get(invoice_id)
        return self._orders.get(order_id) if order_id else None

    def update_order_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        order.status = status
        order.updated_at = time.time()
        return order

    def mark_paid(self, order_id: str) -> bool:
        """True только при первом переходе в paid (из pending или failed)"""
        order = self._orders.get(order_id)
        if order is None or order.status not in PAYABLE_STATUSES:
            return False
        self.update_order_status(order_id, OrderStatus.PAID)
        logger.info(f"Order {order_id} marked as paid")
        return True

    def list_orders(self) -> List[Order]:
        return sorted(self._orders.values(), key=lambda o: (o.created_at, o.invoice_id), reverse=True)


# Глобальное хранилище заказов витрины
order_store = OrderStore()
