from collections import defaultdict, deque
from decimal import Decimal
from typing import List, Optional, Dict, Any, Tuple
import logging

from sqlalchemy import text, func

from extensions import db
from models import Member, ReferralNetwork, Order, SALES_ORDER_STATUSES
from mlm.exceptions import ValidationError, BusinessRuleViolation, NotFoundError


logger = logging.getLogger(__name__)

TREE_DEPTH_CAP = 5  # bounds the cost of a tree request on an unbounded fan-out


class ReferralTreeHelper:
    """
    Sponsor forest helper using a parent pointer (members.sponsor_id) plus the
    closure table referral_network(ancestor_id, descendant_id, depth).
    Every member has a depth-0 self row. Writes run inside the caller's transaction.
    """

    # ==========================================================
    #                  WRITES
    # ==========================================================

    @staticmethod
    def _ensure_self_row(member_id: int):
        db.session.execute(
            text(
                """
                INSERT INTO referral_network (ancestor_id, descendant_id, depth, created_at)
                VALUES (:uid, :uid, 0, CURRENT_TIMESTAMP)
                ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                """
            ),
            {"uid": member_id},
        )

    @staticmethod
    def is_descendant(ancestor_id: int, descendant_id: int) -> bool:
        """
        Return True if ancestor_id is an ancestor of descendant_id (depth >= 1)
        """
        db.session.flush()
        row = db.session.execute(
            text(
                """
                SELECT 1 FROM referral_network
                WHERE ancestor_id = :ancestor AND descendant_id = :descendant AND depth >= 1
                LIMIT 1
                """
            ),
            {"ancestor": ancestor_id, "descendant": descendant_id},
        ).scalar()
        return bool(row)

    @staticmethod
    def add_member(member_id: int, sponsor_id: Optional[int] = None):
        """
        Register a freshly created member in the closure table, under sponsor_id if given.
        Must be called inside an existing transaction (no commit here).
        """
        db.session.flush()
        ReferralTreeHelper._ensure_self_row(member_id)

        if sponsor_id is None:
            return

        if sponsor_id == member_id:
            raise ValidationError("A member cannot sponsor themselves")

        if ReferralTreeHelper.is_descendant(member_id, sponsor_id):
            logger.warning(f"Cycle detected: sponsor_id={sponsor_id} is a descendant of member_id={member_id}")
            raise BusinessRuleViolation("Sponsor assignment would create a cycle")

        ReferralTreeHelper._ensure_self_row(sponsor_id)

        # every ancestor of the sponsor (including the sponsor itself) gains the new member
        db.session.execute(
            text(
                """
                INSERT INTO referral_network (ancestor_id, descendant_id, depth, created_at)
                SELECT ancestor_id, :new_id, depth + 1, CURRENT_TIMESTAMP
                FROM referral_network
                WHERE descendant_id = :sponsor_id
                ON CONFLICT (ancestor_id, descendant_id) DO NOTHING
                """
            ),
            {"new_id": member_id, "sponsor_id": sponsor_id},
        )
        logger.info(f"Member {member_id} added to network under sponsor {sponsor_id}")

    @staticmethod
    def assign_sponsor(member_id: int, sponsor_id: Optional[int]) -> Member:
        """
        Re-parent member_id (and its whole subtree) under sponsor_id, or make it a root.
        Rejects self sponsorship and any assignment that would create a cycle.
        """
        member = db.session.get(Member, member_id)
        if member is None:
            raise NotFoundError("Member not found")

        if sponsor_id is not None:
            sponsor = db.session.get(Member, sponsor_id)
            if sponsor is None:
                raise NotFoundError("Sponsor not found")
            if sponsor_id == member_id:
                raise ValidationError("A member cannot sponsor themselves")
            if ReferralTreeHelper.is_descendant(member_id, sponsor_id):
                raise BusinessRuleViolation("Sponsor assignment would create a cycle")

        if member.sponsor_id == sponsor_id:
            return member

        db.session.flush()
        ReferralTreeHelper._ensure_self_row(member_id)

        # detach the subtree from its old ancestors
        db.session.execute(
            text(
                """
                DELETE FROM referral_network
                WHERE descendant_id IN (
                    SELECT descendant_id FROM referral_network WHERE ancestor_id = :mid
                )
                AND ancestor_id NOT IN (
                    SELECT descendant_id FROM referral_network WHERE ancestor_id = :mid
                )
                """
            ),
            {"mid": member_id},
        )

        if sponsor_id is not None:
            ReferralTreeHelper._ensure_self_row(sponsor_id)
            db.session.execute(
                text(
                    """
                    INSERT INTO referral_network (ancestor_id, descendant_id, depth, created_at)
                    SELECT sup.ancestor_id, sub.descendant_id, sup.depth + sub.depth + 1, CURRENT_TIMESTAMP
                    FROM referral_network sup, referral_network sub
                    WHERE sup.descendant_id = :sponsor_id AND sub.ancestor_id = :mid
                    """
                ),
                {"sponsor_id": sponsor_id, "mid": member_id},
            )

        old_sponsor_id = member.sponsor_id
        member.sponsor_id = sponsor_id
        logger.info(f"Member {member_id} moved from sponsor {old_sponsor_id} to {sponsor_id}")
        return member

    @staticmethod
    def rebuild_network() -> Dict[str, Any]:
        """
        Recompute referral_network from members.sponsor_id.
        Members whose sponsor chain loops back on itself are reported and left as roots.
        """
        rows = db.session.query(Member.id, Member.sponsor_id).all()
        children = defaultdict(list)
        all_ids = set()
        for member_id, sponsor_id in rows:
            all_ids.add(member_id)
            if sponsor_id is not None:
                children[sponsor_id].append(member_id)

        roots = [member_id for member_id, sponsor_id in rows if sponsor_id is None or sponsor_id not in all_ids]

        db.session.query(ReferralNetwork).delete(synchronize_session=False)

        mappings = []
        visited = set()
        queue = deque((root, [root]) for root in roots)
        while queue:
            member_id, path = queue.popleft()
            if member_id in visited:
                continue
            visited.add(member_id)
            # path runs root -> member
            for distance, ancestor_id in enumerate(reversed(path)):
                mappings.append({"ancestor_id": ancestor_id, "descendant_id": member_id, "depth": distance})
            for child_id in children.get(member_id, ()):
                queue.append((child_id, path + [child_id]))

        orphaned = sorted(all_ids - visited)
        for member_id in orphaned:
            mappings.append({"ancestor_id": member_id, "descendant_id": member_id, "depth": 0})
        if orphaned:
            logger.warning(f"Sponsor cycle detected for members {orphaned}; left detached")

        db.session.bulk_insert_mappings(ReferralNetwork, mappings)
        logger.info(f"Referral network rebuilt: {len(all_ids)} members, {len(mappings)} rows")
        return {"members": len(all_ids), "rows": len(mappings), "cycles": orphaned}

    # ==========================================================
    #                  READS
    # ==========================================================

    @staticmethod
    def direct_downline_query(member_id: int):
        return Member.query.filter(Member.sponsor_id == member_id).order_by(Member.id.asc())

    @staticmethod
    def get_direct_downline(member_id: int) -> List[Member]:
        return ReferralTreeHelper.direct_downline_query(member_id).all()

    @staticmethod
    def count_direct_downline(member_id: int) -> int:
        return db.session.query(func.count(Member.id)).filter(Member.sponsor_id == member_id).scalar() or 0

    @staticmethod
    def count_total_downline(member_id: int) -> int:
        """Full subtree size, excluding the member itself"""
        return db.session.query(func.count(ReferralNetwork.id)).filter(
            ReferralNetwork.ancestor_id == member_id,
            ReferralNetwork.depth >= 1,
        ).scalar() or 0

    @staticmethod
    def get_upline(member_id: int, levels: int) -> List[Tuple[int, Member]]:
        """Ancestors closest first as (level, member); level 1 is the direct sponsor"""
        if levels < 1:
            return []
        rows = db.session.query(ReferralNetwork.depth, Member).join(
            Member, Member.id == ReferralNetwork.ancestor_id
        ).filter(
            ReferralNetwork.descendant_id == member_id,
            ReferralNetwork.depth >= 1,
            ReferralNetwork.depth <= levels,
        ).order_by(ReferralNetwork.depth.asc()).all()
        return [(depth, member) for depth, member in rows]

    @staticmethod
    def get_descendant_ids(member_id: int, max_depth: Optional[int] = None) -> List[int]:
        query = db.session.query(ReferralNetwork.descendant_id).filter(
            ReferralNetwork.ancestor_id == member_id,
            ReferralNetwork.depth >= 1,
        )
        if max_depth is not None:
            query = query.filter(ReferralNetwork.depth <= max_depth)
        return [row[0] for row in query.all()]

    @staticmethod
    def get_downline_tree(member_id: int, max_depth: int = 3) -> Optional[Dict[str, Any]]:
        """
        Nested downline up to max_depth levels (capped at 5).
        Returns None when the member does not exist.
        """
        root = db.session.get(Member, member_id)
        if root is None:
            return None

        max_depth = max(0, min(int(max_depth), TREE_DEPTH_CAP))

        descendants = db.session.query(Member).join(
            ReferralNetwork, ReferralNetwork.descendant_id == Member.id
        ).filter(
            ReferralNetwork.ancestor_id == member_id,
            ReferralNetwork.depth >= 1,
            ReferralNetwork.depth <= max_depth,
        ).order_by(ReferralNetwork.depth.asc(), Member.id.asc()).all()

        members = [root] + descendants
        ids = [m.id for m in members]

        sales = dict(
            db.session.query(Order.member_id, func.coalesce(func.sum(Order.total_amount), 0)).filter(
                Order.member_id.in_(ids),
                Order.status.in_(SALES_ORDER_STATUSES),
            ).group_by(Order.member_id).all()
        )
        direct_counts = dict(
            db.session.query(Member.sponsor_id, func.count(Member.id)).filter(
                Member.sponsor_id.in_(ids)
            ).group_by(Member.sponsor_id).all()
        )

        nodes = {}
        for m in members:
            node = m.to_dict()
            node.update({
                "totalSales": float(Decimal(str(sales.get(m.id, 0)))),
                "directDownlineCount": direct_counts.get(m.id, 0),
                "children": [],
            })
            nodes[m.id] = node

        for m in descendants:
            parent = nodes.get(m.sponsor_id)
            if parent is not None:
                parent["children"].append(nodes[m.id])

        return nodes[root.id]

    @staticmethod
    def get_network_summary(member_id: int) -> Dict[str, Any]:
        """Totals plus a per-depth breakdown of the downline"""
        by_depth = db.session.query(ReferralNetwork.depth, func.count(ReferralNetwork.id)).filter(
            ReferralNetwork.ancestor_id == member_id,
            ReferralNetwork.depth >= 1,
        ).group_by(ReferralNetwork.depth).order_by(ReferralNetwork.depth.asc()).all()

        levels = {int(depth): count for depth, count in by_depth}
        return {
            "memberId": member_id,
            "directDownline": ReferralTreeHelper.count_direct_downline(member_id),
            "totalDownline": sum(levels.values()),
            "maxDepth": max(levels) if levels else 0,
            "levels": levels,
        }
