from collections import namedtuple
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy import func

from extensions import db
from models import Member, Commission, CommissionStatus
from mlm.exceptions import NotFoundError
from mlm.referral_tree import ReferralTreeHelper


Rank = namedtuple("Rank", ["name", "level", "min_downline", "min_earnings"])

# Lowest first; both minimums must be met
RANK_LADDER = (
    Rank("Starter", 1, 0, Decimal("0")),
    Rank("Bronze", 2, 5, Decimal("5000")),
    Rank("Silver", 3, 15, Decimal("20000")),
    Rank("Gold", 4, 50, Decimal("100000")),
    Rank("Platinum", 5, 100, Decimal("500000")),
    Rank("Diamond", 6, 250, Decimal("1000000")),
    Rank("Crown", 7, 500, Decimal("5000000")),
)

# Lifetime earnings for ranking are the APPROVED + PAID commission total
EARNING_STATUSES = (CommissionStatus.APPROVED, CommissionStatus.PAID)


def requirement_text(rank: Rank) -> str:
    return f"{rank.min_downline} downlines and Rs. {int(rank.min_earnings):,} earnings"


def calculate_rank(total_downline: int, lifetime_earnings) -> Dict[str, Any]:
    """
    Highest tier whose downline and earnings minimums are both met, plus the next tier.
    Pure: no database access.
    """
    earnings = Decimal(str(lifetime_earnings))
    current_index = 0
    for index in range(len(RANK_LADDER) - 1, -1, -1):
        rank = RANK_LADDER[index]
        if total_downline >= rank.min_downline and earnings >= rank.min_earnings:
            current_index = index
            break

    current = RANK_LADDER[current_index]
    next_rank: Optional[Rank] = RANK_LADDER[current_index + 1] if current_index + 1 < len(RANK_LADDER) else None

    return {
        "name": current.name,
        "level": current.level,
        "next": {
            "name": next_rank.name,
            "level": next_rank.level,
            "requirement": requirement_text(next_rank),
            "downlineNeeded": max(next_rank.min_downline - total_downline, 0),
            "earningsNeeded": float(max(next_rank.min_earnings - earnings, Decimal("0"))),
        } if next_rank else None,
    }


def week_start(now: datetime) -> datetime:
    """Midnight of the most recent Sunday"""
    days_since_sunday = (now.weekday() + 1) % 7
    return (now - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _earned_since(member_id: int, since: Optional[datetime] = None) -> Decimal:
    query = db.session.query(func.coalesce(func.sum(Commission.amount), 0)).filter(
        Commission.member_id == member_id,
        Commission.status.in_(EARNING_STATUSES),
    )
    if since is not None:
        query = query.filter(Commission.created_at >= since)
    return Decimal(str(query.scalar() or 0))


def get_member_rank(member_id: int) -> Dict[str, Any]:
    member = db.session.get(Member, member_id)
    if member is None:
        raise NotFoundError("Member not found")

    total_downline = ReferralTreeHelper.count_total_downline(member_id)
    direct_downline = ReferralTreeHelper.count_direct_downline(member_id)
    lifetime = _earned_since(member_id)

    now = datetime.now(timezone.utc)

    commission_count = db.session.query(func.count(Commission.id)).filter(
        Commission.member_id == member_id,
        Commission.status.in_(EARNING_STATUSES),
    ).scalar() or 0

    return {
        "user": {
            "id": member.id,
            "name": member.name,
            "email": member.email,
            "mlmLevel": member.mlm_level,
            "sponsorCode": member.sponsor_code,
            "joinedAt": member.created_at.isoformat() if member.created_at else None,
        },
        "rank": calculate_rank(total_downline, lifetime),
        "stats": {
            "totalDownline": total_downline,
            "directDownline": direct_downline,
            "totalCommissions": float(lifetime),
            "commissionCount": commission_count,
            "monthlyEarnings": float(_earned_since(member_id, month_start(now))),
            "weeklyEarnings": float(_earned_since(member_id, week_start(now))),
        },
    }
