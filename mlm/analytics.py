from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy import func

from extensions import db
from models import Member, Commission, CommissionStatus, Wallet
from mlm.commission_state import CommissionStateHelper
from mlm.withdrawals import WithdrawalQueryHelper

MONTHS_OF_HISTORY = 6
TOP_EARNERS = 10


def _month_starts(now: datetime, count: int):
    """First day of the current month and the count-1 months before it, oldest first"""
    year, month = now.year, now.month
    starts = []
    for _ in range(count):
        starts.append(datetime(year, month, 1, tzinfo=timezone.utc))
        month -= 1
        if month == 0:
            month, year = 12, year - 1
    return list(reversed(starts))


def mlm_overview() -> Dict[str, Any]:
    """Admin dashboard aggregates"""
    now = datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_members = db.session.query(func.count(Member.id)).scalar() or 0
    mlm_members = db.session.query(func.count(Member.id)).filter(Member.is_mlm_enabled.is_(True)).scalar() or 0
    new_this_month = db.session.query(func.count(Member.id)).filter(Member.created_at >= month_start).scalar() or 0

    members_by_level = {
        int(level): count for level, count in
        db.session.query(Member.mlm_level, func.count(Member.id)).group_by(Member.mlm_level).all()
    }

    wallet_totals = db.session.query(
        func.coalesce(func.sum(Wallet.balance), 0),
        func.coalesce(func.sum(Wallet.pending), 0),
        func.coalesce(func.sum(Wallet.total_earned), 0),
        func.coalesce(func.sum(Wallet.total_withdrawn), 0),
    ).one()

    # bucket in python so the query stays portable between sqlite and postgres
    months = _month_starts(now, MONTHS_OF_HISTORY)
    by_month = OrderedDict((m.strftime("%Y-%m"), Decimal("0")) for m in months)
    rows = db.session.query(Commission.created_at, Commission.amount).filter(
        Commission.created_at >= months[0],
        Commission.status != CommissionStatus.CANCELLED,
    ).all()
    for created_at, amount in rows:
        key = created_at.strftime("%Y-%m")
        if key in by_month:
            by_month[key] += Decimal(str(amount))

    earned = func.sum(Commission.amount).label("earned")
    top = db.session.query(Member, earned).join(
        Commission, Commission.member_id == Member.id
    ).filter(
        Commission.status.in_((CommissionStatus.APPROVED, CommissionStatus.PAID))
    ).group_by(Member.id).order_by(earned.desc()).limit(TOP_EARNERS).all()

    commission_totals = CommissionStateHelper.status_totals()

    return {
        "members": {
            "total": total_members,
            "mlmEnabled": mlm_members,
            "newThisMonth": new_this_month,
            "byLevel": members_by_level,
        },
        "commissions": {
            name.lower(): {"count": t["count"], "amount": float(t["amount"])}
            for name, t in commission_totals.items()
        },
        "wallets": {
            "balance": float(Decimal(str(wallet_totals[0]))),
            "pending": float(Decimal(str(wallet_totals[1]))),
            "totalEarned": float(Decimal(str(wallet_totals[2]))),
            "totalWithdrawn": float(Decimal(str(wallet_totals[3]))),
        },
        "withdrawals": WithdrawalQueryHelper.status_stats(),
        "commissionsByMonth": [
            {"month": month, "amount": float(amount)} for month, amount in by_month.items()
        ],
        "topEarners": [
            {"id": member.id, "name": member.name, "email": member.email, "earned": float(Decimal(str(amount)))}
            for member, amount in top
        ],
    }
