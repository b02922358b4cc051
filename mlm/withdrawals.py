from decimal import Decimal, ROUND_DOWN
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from logger import withdrawals_logger
from models import Member, Withdrawal, WithdrawalStatus, WithdrawalMethod
from mlm.audit import record_audit
from mlm.exceptions import (MLMError, ValidationError, BelowMinimumError, NotFoundError,
                            InvalidTransitionError, InternalError)
from mlm.settings import MLMSettingsHelper
from mlm.wallet import WalletManager
from utils import to_decimal, quantize_money, paginate


logger = logging.getLogger(__name__)

# ==========================================================
#                  CONFIGURATION
# ==========================================================
class WithdrawalConfig:
    # payout details each method needs before a request is accepted
    REQUIRED_DETAILS = {
        WithdrawalMethod.BANK: ("accountNumber", "bankName", "accountTitle"),
        WithdrawalMethod.EASYPAISA: ("walletNumber",),
        WithdrawalMethod.JAZZCASH: ("walletNumber",),
        WithdrawalMethod.CRYPTO: ("cryptoAddress", "cryptoNetwork"),
    }
    OPTIONAL_DETAILS = {
        WithdrawalMethod.BANK: ("branchCode",),
    }

    @staticmethod
    def calculate_fee(amount: Decimal, fee_percent: Decimal) -> Tuple[Decimal, Decimal]:
        """Return (fee, net_amount); the fee rounds down to the cent"""
        fee = (amount * Decimal(fee_percent)) / Decimal("100")
        fee = fee.quantize(Decimal('0.01'), rounding=ROUND_DOWN)
        return fee, quantize_money(amount - fee)


def parse_withdrawal_status(value) -> WithdrawalStatus:
    if isinstance(value, WithdrawalStatus):
        return value
    try:
        return WithdrawalStatus[str(value).strip().upper()]
    except (KeyError, AttributeError):
        raise ValidationError(
            f"Invalid withdrawal status '{value}'",
            {"allowed": [s.name for s in WithdrawalStatus]},
        )


# ==========================================================
#                  WITHDRAWAL VALIDATOR
# ==========================================================
class WithdrawalValidator:

    @staticmethod
    def parse_method(method) -> WithdrawalMethod:
        if isinstance(method, WithdrawalMethod):
            return method
        try:
            return WithdrawalMethod[str(method).strip().upper()]
        except (KeyError, AttributeError):
            raise ValidationError(
                "Unsupported withdrawal method",
                {"allowed": [m.name for m in WithdrawalMethod]},
            )

    @staticmethod
    def clean_details(method: WithdrawalMethod, details) -> Dict[str, str]:
        if details is None:
            details = {}
        if not isinstance(details, dict):
            raise ValidationError("Payout details must be an object")

        required = WithdrawalConfig.REQUIRED_DETAILS[method]
        missing = [key for key in required if not str(details.get(key) or "").strip()]
        if missing:
            raise ValidationError(
                f"Missing {method.name} details: {', '.join(missing)}",
                {"missing": missing},
            )

        allowed = required + WithdrawalConfig.OPTIONAL_DETAILS.get(method, ())
        return {key: str(details[key]).strip() for key in allowed if details.get(key) not in (None, "")}

    @staticmethod
    def validate_amount(amount, min_withdrawal: Decimal) -> Decimal:
        amount = to_decimal(amount, "amount")
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if amount != amount.quantize(Decimal("0.01")):
            raise ValidationError("Amount cannot have more than two decimal places")
        if amount < Decimal(min_withdrawal):
            raise BelowMinimumError(
                f"Minimum withdrawal is {quantize_money(min_withdrawal)}",
                {"minWithdrawal": float(min_withdrawal)},
            )
        return amount


# ==========================================================
#                  WITHDRAWAL PROCESSOR
# ==========================================================
class WithdrawalProcessor:

    @staticmethod
    def request_withdrawal(member_id: int, amount, method, details=None) -> Withdrawal:
        """
        Validate, escrow the full amount out of the wallet balance and create a PENDING withdrawal.
        Balance check and debit happen under the wallet row lock.
        """
        try:
            member = db.session.get(Member, member_id)
            if member is None:
                raise NotFoundError("Member not found")

            settings = MLMSettingsHelper.load_settings()
            method = WithdrawalValidator.parse_method(method)
            clean_details = WithdrawalValidator.clean_details(method, details)
            amount = WithdrawalValidator.validate_amount(amount, settings.min_withdrawal)

            wallet = WalletManager.lock_wallet(member_id)
            WalletManager.escrow(wallet, amount)

            fee, net_amount = WithdrawalConfig.calculate_fee(amount, settings.withdrawal_fee_percent)
            withdrawal = Withdrawal(
                member_id=member_id,
                amount=quantize_money(amount),
                fee=fee,
                net_amount=net_amount,
                method=method,
                details=clean_details,
                status=WithdrawalStatus.PENDING,
            )
            db.session.add(withdrawal)
            db.session.flush()

            record_audit("withdrawal.request", "withdrawal", withdrawal.id, actor_id=member_id,
                         amount=amount, fee=fee, net_amount=net_amount, method=method)
            db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Withdrawal request failed for member {member_id}: {e}")
            raise InternalError("Withdrawal request failed")

        withdrawals_logger.info(
            f"Withdrawal {withdrawal.id} requested by member {member_id}: amount={amount} net={net_amount} via {method.name}"
        )
        return withdrawal

    @staticmethod
    def _transition(withdrawal_id: int, target: WithdrawalStatus, admin_id: Optional[int],
                    notes: Optional[str] = None) -> Withdrawal:
        try:
            withdrawal = Withdrawal.query.filter_by(id=withdrawal_id).with_for_update().first()
            if withdrawal is None:
                raise NotFoundError("Withdrawal not found")

            current = withdrawal.status
            if not current.can_transition_to(target):
                raise InvalidTransitionError("withdrawal", current, target)

            if target is WithdrawalStatus.PAID:
                wallet = WalletManager.lock_wallet(withdrawal.member_id)
                WalletManager.record_withdrawn(wallet, Decimal(withdrawal.net_amount))
            elif target is WithdrawalStatus.REJECTED:
                wallet = WalletManager.lock_wallet(withdrawal.member_id)
                WalletManager.refund(wallet, Decimal(withdrawal.amount))

            withdrawal.status = target
            withdrawal.processed_by = admin_id
            withdrawal.processed_at = datetime.now(timezone.utc)
            if notes:
                withdrawal.notes = notes

            record_audit(f"withdrawal.{target.value}", "withdrawal", withdrawal.id, actor_id=admin_id,
                         previous=current, amount=withdrawal.amount, notes=notes)
            db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Withdrawal {withdrawal_id} transition to {target.name} failed: {e}")
            raise InternalError("Withdrawal update failed")

        withdrawals_logger.info(f"Withdrawal {withdrawal_id}: {current.name} -> {target.name} by {admin_id}")
        return withdrawal

    @staticmethod
    def approve_withdrawal(withdrawal_id: int, admin_id: Optional[int] = None, notes: str = None) -> Withdrawal:
        """PENDING -> APPROVED; funds are already escrowed"""
        return WithdrawalProcessor._transition(withdrawal_id, WithdrawalStatus.APPROVED, admin_id, notes)

    @staticmethod
    def pay_withdrawal(withdrawal_id: int, admin_id: Optional[int] = None, notes: str = None) -> Withdrawal:
        """APPROVED -> PAID; the net amount is added to total withdrawn"""
        return WithdrawalProcessor._transition(withdrawal_id, WithdrawalStatus.PAID, admin_id, notes)

    @staticmethod
    def reject_withdrawal(withdrawal_id: int, admin_id: Optional[int] = None, reason: str = None) -> Withdrawal:
        """PENDING/APPROVED -> REJECTED; the full requested amount goes back to the balance"""
        return WithdrawalProcessor._transition(withdrawal_id, WithdrawalStatus.REJECTED, admin_id, reason)


# ==========================================================
#                  QUERY HELPERS
# ==========================================================
class WithdrawalQueryHelper:

    @staticmethod
    def withdrawal_history(member_id: int, page: int = 1, page_size: int = 20, status=None) -> Dict[str, Any]:
        query = Withdrawal.query.filter(Withdrawal.member_id == member_id)
        if status:
            query = query.filter(Withdrawal.status == parse_withdrawal_status(status))
        query = query.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
        return paginate(query, page, page_size)

    @staticmethod
    def status_stats() -> Dict[str, Dict[str, Any]]:
        rows = db.session.query(
            Withdrawal.status,
            func.count(Withdrawal.id),
            func.coalesce(func.sum(Withdrawal.amount), 0),
        ).group_by(Withdrawal.status).all()

        stats = {s.name.lower(): {"count": 0, "amount": 0.0} for s in WithdrawalStatus}
        for status, count, amount in rows:
            stats[status.name.lower()] = {"count": count, "amount": float(Decimal(str(amount)))}
        return stats

    @staticmethod
    def admin_withdrawal_list(page: int = 1, page_size: int = 20, status=None) -> Dict[str, Any]:
        query = Withdrawal.query
        if status:
            query = query.filter(Withdrawal.status == parse_withdrawal_status(status))
        query = query.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
        result = paginate(query, page, page_size, lambda w: w.to_dict(include_member=True))
        result["stats"] = WithdrawalQueryHelper.status_stats()
        return result
