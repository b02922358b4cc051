from decimal import Decimal
from typing import Dict, Any, List
import logging

from sqlalchemy import func

from extensions import db
from models import (Wallet, Member, Commission, CommissionStatus, Withdrawal,
                    WithdrawalStatus)
from mlm.exceptions import InsufficientBalanceError, InternalError, NotFoundError
from utils import quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ==========================================================
#                  WALLET MANAGER
# ==========================================================
class WalletManager:
    """
    All wallet mutations go through here. Callers lock the row first
    (lock_wallet) and commit or roll back the surrounding transaction.
    """

    @staticmethod
    def _create_wallet(member_id: int) -> Wallet:
        wallet = Wallet(
            member_id=member_id,
            balance=ZERO,
            pending=ZERO,
            total_earned=ZERO,
            total_withdrawn=ZERO,
        )
        db.session.add(wallet)
        db.session.flush()
        logger.info(f"Wallet created for member {member_id}")
        return wallet

    @staticmethod
    def get_or_create_wallet(member_id: int) -> Wallet:
        wallet = Wallet.query.filter_by(member_id=member_id).first()
        if wallet is None:
            wallet = WalletManager._create_wallet(member_id)
        return wallet

    @staticmethod
    def lock_wallet(member_id: int) -> Wallet:
        """SELECT ... FOR UPDATE on the member's wallet, creating it with zero balances if absent"""
        wallet = Wallet.query.filter_by(member_id=member_id).with_for_update().first()
        if wallet is None:
            WalletManager._create_wallet(member_id)
            wallet = Wallet.query.filter_by(member_id=member_id).with_for_update().first()
        if wallet is None:
            raise InternalError("Wallet could not be initialised")
        return wallet

    # ----------------------------------------------------------------
    # Commission side
    # ----------------------------------------------------------------
    @staticmethod
    def credit_commission(wallet: Wallet, amount: Decimal, approved: bool):
        """A newly recorded commission: pending or straight to balance; lifetime earned counts it once"""
        amount = quantize_money(amount)
        if approved:
            wallet.balance = Decimal(wallet.balance) + amount
        else:
            wallet.pending = Decimal(wallet.pending) + amount
        wallet.total_earned = Decimal(wallet.total_earned) + amount

    @staticmethod
    def release_pending(wallet: Wallet, amount: Decimal):
        """Approval: pending -> balance"""
        amount = quantize_money(amount)
        if Decimal(wallet.pending) < amount:
            raise InternalError("Pending balance is lower than the commission being approved")
        wallet.pending = Decimal(wallet.pending) - amount
        wallet.balance = Decimal(wallet.balance) + amount

    @staticmethod
    def reverse_pending(wallet: Wallet, amount: Decimal):
        """Cancelled before approval: the amount was never earned, so it leaves pending and total earned"""
        amount = quantize_money(amount)
        if Decimal(wallet.pending) < amount:
            raise InternalError("Pending balance is lower than the commission being cancelled")
        wallet.pending = Decimal(wallet.pending) - amount
        wallet.total_earned = Decimal(wallet.total_earned) - amount

    @staticmethod
    def reverse_balance(wallet: Wallet, amount: Decimal):
        amount = quantize_money(amount)
        if Decimal(wallet.balance) < amount:
            raise InsufficientBalanceError(
                "Commission amount is no longer available in the wallet balance",
                {"balance": float(wallet.balance), "required": float(amount)},
            )
        wallet.balance = Decimal(wallet.balance) - amount

    # ----------------------------------------------------------------
    # Withdrawal side
    # ----------------------------------------------------------------
    @staticmethod
    def escrow(wallet: Wallet, amount: Decimal):
        """Withdrawal request: take the full amount out of the withdrawable balance"""
        amount = quantize_money(amount)
        if Decimal(wallet.balance) < amount:
            raise InsufficientBalanceError(
                "Insufficient balance",
                {"balance": float(wallet.balance), "requested": float(amount)},
            )
        wallet.balance = Decimal(wallet.balance) - amount

    @staticmethod
    def refund(wallet: Wallet, amount: Decimal):
        """Rejected withdrawal: the escrowed amount goes back"""
        wallet.balance = Decimal(wallet.balance) + quantize_money(amount)

    @staticmethod
    def record_withdrawn(wallet: Wallet, net_amount: Decimal):
        wallet.total_withdrawn = Decimal(wallet.total_withdrawn) + quantize_money(net_amount)


# ==========================================================
#                  SUMMARY & RECONCILIATION
# ==========================================================
def _sum(query) -> Decimal:
    return Decimal(str(query.scalar() or 0))


def wallet_summary(member_id: int) -> Dict[str, Any]:
    """Balance figures plus the count and amount of withdrawals still in escrow"""
    if db.session.get(Member, member_id) is None:
        raise NotFoundError("Member not found")

    wallet = Wallet.query.filter_by(member_id=member_id).first()
    if wallet is None:
        wallet = WalletManager.get_or_create_wallet(member_id)
        db.session.commit()

    in_escrow = (WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED)
    pending_count = db.session.query(func.count(Withdrawal.id)).filter(
        Withdrawal.member_id == member_id,
        Withdrawal.status.in_(in_escrow),
    ).scalar() or 0
    pending_amount = _sum(db.session.query(func.sum(Withdrawal.amount)).filter(
        Withdrawal.member_id == member_id,
        Withdrawal.status.in_(in_escrow),
    ))

    summary = wallet.to_dict()
    summary.update({
        "pendingWithdrawals": pending_count,
        "pendingWithdrawalAmount": float(pending_amount),
    })
    return summary


def check_wallet_invariants(wallet: Wallet) -> List[str]:
    problems = []
    balance = Decimal(wallet.balance)
    pending = Decimal(wallet.pending)
    if balance < 0:
        problems.append("balance is negative")
    if pending < 0:
        problems.append("pending is negative")
    if balance + pending > Decimal(wallet.total_earned) - Decimal(wallet.total_withdrawn):
        problems.append("balance + pending exceeds total earned minus total withdrawn")
    return problems


def expected_wallet(member_id: int) -> Dict[str, Decimal]:
    """Wallet figures recomputed from commission and withdrawal history"""
    def commissions(*statuses):
        query = db.session.query(func.sum(Commission.amount)).filter(Commission.member_id == member_id)
        if statuses:
            query = query.filter(Commission.status.in_(statuses))
        return _sum(query)

    def withdrawals(column, *statuses):
        return _sum(db.session.query(func.sum(column)).filter(
            Withdrawal.member_id == member_id,
            Withdrawal.status.in_(statuses),
        ))

    credited = commissions(CommissionStatus.APPROVED, CommissionStatus.PAID)
    # approved then cancelled: the balance was reversed, total earned was not
    cancelled_after_approval = _sum(db.session.query(func.sum(Commission.amount)).filter(
        Commission.member_id == member_id,
        Commission.status == CommissionStatus.CANCELLED,
        Commission.approved_at.isnot(None),
    ))
    escrowed = withdrawals(Withdrawal.amount, WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED,
                           WithdrawalStatus.PAID)
    return {
        "balance": credited - escrowed,
        "pending": commissions(CommissionStatus.PENDING),
        "total_earned": commissions(CommissionStatus.PENDING, CommissionStatus.APPROVED,
                                    CommissionStatus.PAID) + cancelled_after_approval,
        "total_withdrawn": withdrawals(Withdrawal.net_amount, WithdrawalStatus.PAID),
    }


def reconcile_wallets() -> List[Dict[str, Any]]:
    """Report every wallet that breaks an invariant or drifts from its history"""
    report = []
    for wallet in Wallet.query.order_by(Wallet.member_id.asc()).all():
        problems = check_wallet_invariants(wallet)
        expected = expected_wallet(wallet.member_id)
        for field, value in expected.items():
            actual = Decimal(getattr(wallet, field))
            if quantize_money(actual) != quantize_money(value):
                problems.append(f"{field} is {actual}, history says {quantize_money(value)}")
        if problems:
            logger.warning(f"Wallet {wallet.id} (member {wallet.member_id}) failed reconciliation: {problems}")
            report.append({"walletId": wallet.id, "memberId": wallet.member_id, "problems": problems})
    return report
