from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy import func, or_

from extensions import db
from models import Commission, CommissionStatus, Member
from mlm.commission_rules import parse_commission_type
from mlm.exceptions import ValidationError
from utils import paginate


def parse_commission_status(value) -> CommissionStatus:
    if isinstance(value, CommissionStatus):
        return value
    try:
        return CommissionStatus[str(value).strip().upper()]
    except (KeyError, AttributeError):
        raise ValidationError(
            f"Invalid commission status '{value}'",
            {"allowed": [s.name for s in CommissionStatus]},
        )


class CommissionStateHelper:
    """Commission history, summaries and admin listings"""

    @staticmethod
    def filtered_query(member_id: Optional[int] = None, commission_type=None, status=None,
                       date_from: Optional[datetime] = None, date_to: Optional[datetime] = None):
        query = Commission.query
        if member_id is not None:
            query = query.filter(Commission.member_id == member_id)
        if commission_type:
            query = query.filter(Commission.type == parse_commission_type(commission_type))
        if status:
            query = query.filter(Commission.status == parse_commission_status(status))
        if date_from is not None:
            query = query.filter(Commission.created_at >= date_from)
        if date_to is not None:
            query = query.filter(Commission.created_at < date_to)
        return query.order_by(Commission.created_at.desc(), Commission.id.desc())

    @staticmethod
    def status_totals(member_id: Optional[int] = None) -> Dict[str, Dict[str, Any]]:
        query = db.session.query(
            Commission.status,
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.amount), 0),
        )
        if member_id is not None:
            query = query.filter(Commission.member_id == member_id)
        rows = query.group_by(Commission.status).all()

        totals = {s.name: {"count": 0, "amount": Decimal("0")} for s in CommissionStatus}
        for status, count, amount in rows:
            totals[status.name] = {"count": count, "amount": Decimal(str(amount))}
        return totals

    @staticmethod
    def commission_summary(member_id: int) -> Dict[str, Any]:
        """totalEarned counts APPROVED and PAID commissions only"""
        totals = CommissionStateHelper.status_totals(member_id)
        earned = totals["APPROVED"]["amount"] + totals["PAID"]["amount"]
        return {
            "totalEarned": float(earned),
            "pending": float(totals["PENDING"]["amount"]),
            "approved": float(totals["APPROVED"]["amount"]),
            "paid": float(totals["PAID"]["amount"]),
            "cancelled": float(totals["CANCELLED"]["amount"]),
            "count": sum(t["count"] for t in totals.values()),
        }

    @staticmethod
    def commission_history(member_id: int, page: int = 1, page_size: int = 20, commission_type=None,
                           status=None, date_from=None, date_to=None) -> Dict[str, Any]:
        query = CommissionStateHelper.filtered_query(member_id, commission_type, status, date_from, date_to)
        result = paginate(query, page, page_size)
        result["summary"] = CommissionStateHelper.commission_summary(member_id)
        return result

    @staticmethod
    def admin_commission_list(page: int = 1, page_size: int = 20, commission_type=None, status=None,
                              member_id: Optional[int] = None, search: Optional[str] = None,
                              date_from=None, date_to=None) -> Dict[str, Any]:
        query = CommissionStateHelper.filtered_query(member_id, commission_type, status, date_from, date_to)
        if search:
            like = f"%{search.strip()}%"
            query = query.join(Member, Member.id == Commission.member_id).filter(
                or_(Member.name.ilike(like), Member.email.ilike(like))
            )

        def serialize(commission):
            data = commission.to_dict()
            data["user"] = {
                "id": commission.member.id,
                "name": commission.member.name,
                "email": commission.member.email,
            }
            return data

        result = paginate(query, page, page_size, serialize)
        totals = CommissionStateHelper.status_totals()
        result["stats"] = {
            name.lower(): {"count": t["count"], "amount": float(t["amount"])}
            for name, t in totals.items()
        }
        return result
