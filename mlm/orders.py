# mlm/orders.py
# Order hook used by the storefront: status changes into a paid state trigger commissions.
import uuid
from typing import Dict, Any
import logging

from extensions import db
from models import Order, OrderStatus, Member, COMMISSIONABLE_ORDER_STATUSES
from mlm.audit import record_audit
from mlm.commission_engine import CommissionEngine
from mlm.exceptions import ValidationError, NotFoundError
from utils import to_decimal, quantize_money

logger = logging.getLogger(__name__)


def parse_order_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus[str(value).strip().upper()]
    except (KeyError, AttributeError):
        raise ValidationError(f"Invalid order status '{value}'")


class OrderHelper:

    @staticmethod
    def create_order(member_id: int, total_amount, status=OrderStatus.PENDING) -> Order:
        if db.session.get(Member, member_id) is None:
            raise NotFoundError("Member not found")
        amount = to_decimal(total_amount, "totalAmount")
        if amount <= 0:
            raise ValidationError("totalAmount must be greater than zero")

        order = Order(
            order_number=f"ORD-{uuid.uuid4().hex[:12].upper()}",
            member_id=member_id,
            total_amount=quantize_money(amount),
            status=parse_order_status(status),
        )
        db.session.add(order)
        db.session.commit()
        return order

    @staticmethod
    def update_order_status(order_id: int, status, actor_id: int = None) -> Dict[str, Any]:
        """
        Persist the new status, then run the commission engine when the order
        enters a commissionable status. Re-entering one is harmless.
        """
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        new_status = parse_order_status(status)
        previous = order.status
        order.status = new_status
        record_audit("order.status", "order", order.id, actor_id=actor_id, previous=previous, status=new_status)
        db.session.commit()
        logger.info(f"Order {order_id}: {previous.name} -> {new_status.name}")

        result = {"order": order.to_dict(), "commissions": None}
        if new_status in COMMISSIONABLE_ORDER_STATUSES:
            result["commissions"] = CommissionEngine.process_order_commissions(order.id)
        return result
