#======================================================================================================
#
#   COMMISSION ENGINE: per-level upline commissions for orders and signups
#
#======================================================================================================
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any, List, Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from logger import commissions_logger
from models import (Commission, CommissionStatus, CommissionType, Member, Order,
                    COMMISSIONABLE_ORDER_STATUSES)
from mlm.audit import record_audit
from mlm.commission_rules import CommissionRuleHelper, rule_amount, parse_commission_type
from mlm.exceptions import MLMError, NotFoundError, InvalidTransitionError, InternalError
from mlm.referral_tree import ReferralTreeHelper
from mlm.settings import MLMSettingsHelper
from mlm.wallet import WalletManager
from utils import quantize_money

logger = logging.getLogger(__name__)


def _result(processed: bool, reason: str, commissions: Optional[List[Commission]] = None) -> Dict[str, Any]:
    commissions = commissions or []
    return {
        "processed": processed,
        "reason": reason,
        "count": len(commissions),
        "total": float(sum((Decimal(c.amount) for c in commissions), Decimal("0"))),
        "commissions": [c.to_dict() for c in commissions],
    }


class CommissionEngine:

    # ==========================================================
    #                  FAN-OUT
    # ==========================================================
    @staticmethod
    def _eligible(member: Member) -> bool:
        return bool(member.is_active and member.is_mlm_enabled)

    @staticmethod
    def _record(plan: List[Dict[str, Any]], auto_approve: bool) -> List[Commission]:
        """
        Write one commission per planned level and credit the earners' wallets.
        Wallet rows are locked in member-id order; nothing is committed here.
        """
        wallets = {}
        for earner_id in sorted({item["earner"].id for item in plan}):
            wallets[earner_id] = WalletManager.lock_wallet(earner_id)

        status = CommissionStatus.APPROVED if auto_approve else CommissionStatus.PENDING
        now = datetime.now(timezone.utc)
        created = []
        for item in plan:
            commission = Commission(
                member_id=item["earner"].id,
                order_id=item.get("order_id"),
                source_member_id=item["source_id"],
                type=item["type"],
                level=item["level"],
                amount=item["amount"],
                percentage=item.get("percentage"),
                status=status,
                description=item["description"],
                approved_at=now if auto_approve else None,
            )
            db.session.add(commission)
            WalletManager.credit_commission(wallets[item["earner"].id], item["amount"], approved=auto_approve)
            created.append(commission)

        db.session.flush()
        for commission in created:
            record_audit("commission.create", "commission", commission.id,
                         member_id=commission.member_id, order_id=commission.order_id,
                         level=commission.level, amount=commission.amount, status=commission.status)
        return created

    @staticmethod
    def calculate_order_commissions(order: Order, commission_type: CommissionType, settings) -> List[Dict[str, Any]]:
        """
        Plan (without writing) the commissions an order pays to the buyer's upline.
        Levels are distances from the buyer; ineligible earners are skipped, not compressed.
        """
        upline = ReferralTreeHelper.get_upline(order.member_id, settings.max_levels)
        if not upline:
            return []

        rules = CommissionRuleHelper.active_rules_by_level(commission_type)
        total = Decimal(order.total_amount)
        plan = []
        for level, earner in upline:
            rule = rules.get(level)
            if rule is None:
                continue
            if not CommissionEngine._eligible(earner):
                continue

            amount = quantize_money(rule_amount(rule, total))
            if amount <= 0:
                continue

            uses_fixed = rule.fixed_amount is not None and Decimal(rule.fixed_amount) > 0
            description = (
                f"{commission_type.name} commission (Level {level}, fixed)"
                if uses_fixed
                else f"{commission_type.name} commission (Level {level}, {Decimal(rule.percentage).normalize():f}%)"
            )
            plan.append({
                "earner": earner,
                "order_id": order.id,
                "source_id": order.member_id,
                "type": commission_type,
                "level": level,
                "amount": amount,
                "percentage": None if uses_fixed else rule.percentage,
                "description": description,
            })
        return plan

    @staticmethod
    def process_order_commissions(order_id: int, commission_type=CommissionType.SALE) -> Dict[str, Any]:
        """
        Record upline commissions for a qualifying order. Safe to call repeatedly:
        an order that already has commissions is left untouched.
        The whole fan-out commits or rolls back as one transaction.
        """
        commission_type = parse_commission_type(commission_type)
        try:
            order = Order.query.filter_by(id=order_id).with_for_update().first()
            if order is None:
                raise NotFoundError("Order not found")

            if order.status not in COMMISSIONABLE_ORDER_STATUSES:
                db.session.commit()
                return _result(False, f"Order status {order.status.name} does not earn commissions")

            if Commission.query.filter_by(order_id=order.id).first() is not None:
                db.session.commit()
                commissions_logger.info(f"Order {order_id} already has commissions, skipping")
                return _result(False, "Commissions already processed for this order")

            settings = MLMSettingsHelper.load_settings()
            if not settings.is_mlm_enabled:
                db.session.commit()
                return _result(False, "MLM is disabled")

            buyer = order.member
            if buyer is None or not buyer.is_mlm_enabled:
                db.session.commit()
                return _result(False, "Buyer is not enrolled in MLM")

            plan = CommissionEngine.calculate_order_commissions(order, commission_type, settings)
            if not plan:
                db.session.commit()
                return _result(False, "No eligible upline commissions")

            created = CommissionEngine._record(plan, settings.auto_approve_commissions)
            db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except IntegrityError:
            # a concurrent run won the (order_id, level) constraint
            db.session.rollback()
            commissions_logger.warning(f"Duplicate commission insert for order {order_id}, treated as processed")
            return _result(False, "Commissions already processed for this order")
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Commission processing failed for order {order_id}: {e}")
            raise InternalError("Commission processing failed")

        commissions_logger.info(
            f"Order {order_id}: {len(created)} commissions recorded, total {sum(Decimal(c.amount) for c in created)}"
        )
        return _result(True, "Commissions recorded", created)

    @staticmethod
    def process_signup_bonus(new_member_id: int, commit: bool = True) -> Dict[str, Any]:
        """
        SIGNUP rules pay their fixed amount per upline level. With no SIGNUP rules
        the settings' default signup bonus goes to the direct sponsor.
        """
        try:
            member = db.session.get(Member, new_member_id)
            if member is None:
                raise NotFoundError("Member not found")
            if member.sponsor_id is None:
                return _result(False, "Member has no sponsor")

            already = Commission.query.filter_by(
                source_member_id=new_member_id, type=CommissionType.SIGNUP
            ).first()
            if already is not None:
                return _result(False, "Signup bonus already processed")

            settings = MLMSettingsHelper.load_settings()
            if not settings.is_mlm_enabled:
                return _result(False, "MLM is disabled")

            rules = CommissionRuleHelper.active_rules_by_level(CommissionType.SIGNUP)
            plan = []
            if rules:
                for level, earner in ReferralTreeHelper.get_upline(new_member_id, settings.max_levels):
                    rule = rules.get(level)
                    if rule is None or not CommissionEngine._eligible(earner):
                        continue
                    amount = Decimal(rule.fixed_amount or 0)
                    if rule.max_commission is not None:
                        amount = min(amount, Decimal(rule.max_commission))
                    amount = quantize_money(amount)
                    if amount <= 0:
                        continue
                    plan.append({
                        "earner": earner,
                        "source_id": new_member_id,
                        "type": CommissionType.SIGNUP,
                        "level": level,
                        "amount": amount,
                        "description": f"Signup bonus for {member.name} (Level {level})",
                    })
            elif Decimal(settings.default_signup_bonus) > 0:
                sponsor = member.sponsor
                if sponsor is not None and CommissionEngine._eligible(sponsor):
                    plan.append({
                        "earner": sponsor,
                        "source_id": new_member_id,
                        "type": CommissionType.SIGNUP,
                        "level": 1,
                        "amount": quantize_money(settings.default_signup_bonus),
                        "description": f"Signup bonus for {member.name}",
                    })

            if not plan:
                return _result(False, "No signup bonus applies")

            created = CommissionEngine._record(plan, settings.auto_approve_commissions)
            if commit:
                db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Signup bonus failed for member {new_member_id}: {e}")
            raise InternalError("Signup bonus processing failed")

        commissions_logger.info(f"Signup bonus for member {new_member_id}: {len(created)} commissions")
        return _result(True, "Signup bonus recorded", created)

    # ==========================================================
    #                  STATE TRANSITIONS
    # ==========================================================
    @staticmethod
    def _locked_commission(commission_id: int) -> Commission:
        commission = Commission.query.filter_by(id=commission_id).with_for_update().first()
        if commission is None:
            raise NotFoundError("Commission not found")
        return commission

    @staticmethod
    def _transition(commission_id: int, target: CommissionStatus, admin_id: Optional[int],
                    reason: Optional[str] = None) -> Commission:
        try:
            commission = CommissionEngine._locked_commission(commission_id)
            current = commission.status
            if not current.can_transition_to(target):
                raise InvalidTransitionError("commission", current, target)

            now = datetime.now(timezone.utc)
            amount = Decimal(commission.amount)

            if target is CommissionStatus.APPROVED:
                wallet = WalletManager.lock_wallet(commission.member_id)
                WalletManager.release_pending(wallet, amount)
                commission.approved_at = now
            elif target is CommissionStatus.CANCELLED:
                wallet = WalletManager.lock_wallet(commission.member_id)
                if current is CommissionStatus.PENDING:
                    WalletManager.reverse_pending(wallet, amount)
                else:
                    WalletManager.reverse_balance(wallet, amount)
                commission.cancelled_at = now
                if reason:
                    commission.notes = reason
            elif target is CommissionStatus.PAID:
                commission.paid_at = now

            commission.status = target
            commission.processed_by = admin_id
            record_audit(f"commission.{target.value}", "commission", commission.id, actor_id=admin_id,
                         previous=current, amount=amount, reason=reason)
            db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Commission {commission_id} transition to {target.name} failed: {e}")
            raise InternalError("Commission update failed")

        commissions_logger.info(f"Commission {commission_id}: {current.name} -> {target.name} by {admin_id}")
        return commission

    @staticmethod
    def approve_commission(commission_id: int, admin_id: Optional[int] = None) -> Commission:
        """PENDING -> APPROVED: the amount moves from pending to the withdrawable balance"""
        return CommissionEngine._transition(commission_id, CommissionStatus.APPROVED, admin_id)

    @staticmethod
    def cancel_commission(commission_id: int, admin_id: Optional[int] = None, reason: str = None) -> Commission:
        """PENDING/APPROVED -> CANCELLED, reversing whichever wallet credit was applied"""
        return CommissionEngine._transition(commission_id, CommissionStatus.CANCELLED, admin_id, reason)

    @staticmethod
    def mark_commission_paid(commission_id: int, admin_id: Optional[int] = None) -> Commission:
        return CommissionEngine._transition(commission_id, CommissionStatus.PAID, admin_id)
