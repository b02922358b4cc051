# tests/test_withdrawals.py
"""
Tests for the withdrawal workflow: request (escrow) -> approve -> pay, or -> reject (refund).

Run:
    pytest tests/test_withdrawals.py -v
"""
from decimal import Decimal

import pytest

from models import Wallet, WithdrawalStatus, WithdrawalMethod, AuditLog
from mlm.exceptions import (ValidationError, BelowMinimumError, InsufficientBalanceError,
                            InvalidTransitionError, NotFoundError)
from mlm.settings import MLMSettingsHelper
from mlm.withdrawals import (WithdrawalConfig, WithdrawalProcessor, WithdrawalQueryHelper,
                             WithdrawalValidator)

from conftest import BANK_DETAILS


def balance_of(member_id):
    return Wallet.query.filter_by(member_id=member_id).first().balance


# =============================================================================
# TEST CLASS: fee calculation and validation
# =============================================================================

class TestWithdrawalRules:

    def test_five_percent_fee(self):
        """
        TEST: 1,000 at 5% fee.

        Verify: fee 50, net 950.
        """
        assert WithdrawalConfig.calculate_fee(Decimal("1000"), Decimal("5")) == (Decimal("50.00"), Decimal("950.00"))

    def test_fee_rounds_down_to_the_cent(self):
        fee, net = WithdrawalConfig.calculate_fee(Decimal("999.99"), Decimal("2.5"))

        assert fee == Decimal("24.99")
        assert net == Decimal("975.00")

    def test_zero_fee(self):
        assert WithdrawalConfig.calculate_fee(Decimal("750"), Decimal("0")) == (Decimal("0.00"), Decimal("750.00"))

    @pytest.mark.parametrize("method, details", [
        ("BANK", {"accountNumber": "0123"}),
        ("EASYPAISA", {}),
        ("JAZZCASH", {"walletNumber": "   "}),
        ("CRYPTO", {"cryptoAddress": "TXabc"}),
    ])
    def test_missing_details(self, method, details):
        parsed = WithdrawalValidator.parse_method(method)

        with pytest.raises(ValidationError) as exc:
            WithdrawalValidator.clean_details(parsed, details)

        assert exc.value.details["missing"]

    def test_details_are_trimmed_to_known_fields(self):
        details = dict(BANK_DETAILS, branchCode=" 0042 ", swift="IGNORED")

        cleaned = WithdrawalValidator.clean_details(WithdrawalMethod.BANK, details)

        assert cleaned == dict(BANK_DETAILS, branchCode="0042")

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            WithdrawalValidator.parse_method("PAYPAL")

    @pytest.mark.parametrize("amount", ["0", "-100", "abc", None, "600.001"])
    def test_invalid_amounts(self, amount):
        with pytest.raises(ValidationError):
            WithdrawalValidator.validate_amount(amount, Decimal("500"))

    def test_below_minimum(self):
        with pytest.raises(BelowMinimumError):
            WithdrawalValidator.validate_amount("499.99", Decimal("500"))


# =============================================================================
# TEST CLASS: request
# =============================================================================

class TestWithdrawalRequest:

    def test_request_escrows_amount(self, funded_member):
        """
        TEST: 1,000 BANK withdrawal with a 5% fee from a 5,000 balance.

        Verify: PENDING, net 950, balance 4,000.
        """
        MLMSettingsHelper.update_settings({"withdrawalFeePercent": 5})

        withdrawal = WithdrawalProcessor.request_withdrawal(funded_member.id, "1000", "bank", BANK_DETAILS)

        assert withdrawal.status is WithdrawalStatus.PENDING
        assert withdrawal.method is WithdrawalMethod.BANK
        assert withdrawal.fee == Decimal("50")
        assert withdrawal.net_amount == Decimal("950")
        assert withdrawal.details == BANK_DETAILS
        assert balance_of(funded_member.id) == Decimal("4000")
        assert AuditLog.query.filter_by(action="withdrawal.request").count() == 1

    def test_insufficient_balance_leaves_wallet_untouched(self, funded_member):
        with pytest.raises(InsufficientBalanceError):
            WithdrawalProcessor.request_withdrawal(funded_member.id, "6000", "BANK", BANK_DETAILS)

        assert balance_of(funded_member.id) == Decimal("5000")

    def test_escrow_never_exceeds_balance(self, funded_member):
        """
        TEST: Two 3,000 requests against 5,000.

        Verify: the second is refused; total in escrow is 3,000.
        """
        WithdrawalProcessor.request_withdrawal(funded_member.id, "3000", "BANK", BANK_DETAILS)

        with pytest.raises(InsufficientBalanceError):
            WithdrawalProcessor.request_withdrawal(funded_member.id, "3000", "BANK", BANK_DETAILS)

        assert balance_of(funded_member.id) == Decimal("2000")

    def test_below_minimum_from_settings(self, funded_member):
        MLMSettingsHelper.update_settings({"minWithdrawal": 1500})

        with pytest.raises(BelowMinimumError):
            WithdrawalProcessor.request_withdrawal(funded_member.id, "1000", "BANK", BANK_DETAILS)

    def test_unknown_member(self, ctx):
        with pytest.raises(NotFoundError):
            WithdrawalProcessor.request_withdrawal(9999, "1000", "BANK", BANK_DETAILS)


# =============================================================================
# TEST CLASS: admin transitions
# =============================================================================

class TestWithdrawalTransitions:

    @pytest.fixture
    def pending(self, funded_member):
        MLMSettingsHelper.update_settings({"withdrawalFeePercent": 5})
        return WithdrawalProcessor.request_withdrawal(funded_member.id, "1000", "BANK", BANK_DETAILS)

    def test_reject_pending_restores_balance(self, funded_member, pending):
        """
        TEST: Rejecting a PENDING 1,000 withdrawal.

        Verify: the full 1,000 (not the net) goes back.
        """
        withdrawal = WithdrawalProcessor.reject_withdrawal(pending.id, reason="Account mismatch")

        assert withdrawal.status is WithdrawalStatus.REJECTED
        assert withdrawal.notes == "Account mismatch"
        assert withdrawal.processed_at is not None
        assert balance_of(funded_member.id) == Decimal("5000")

    def test_reject_approved_restores_balance(self, funded_member, pending):
        WithdrawalProcessor.approve_withdrawal(pending.id)
        WithdrawalProcessor.reject_withdrawal(pending.id)

        assert balance_of(funded_member.id) == Decimal("5000")

    def test_approve_then_pay(self, funded_member, pending):
        WithdrawalProcessor.approve_withdrawal(pending.id)

        withdrawal = WithdrawalProcessor.pay_withdrawal(pending.id, notes="Ref 8812")

        wallet = Wallet.query.filter_by(member_id=funded_member.id).first()
        assert withdrawal.status is WithdrawalStatus.PAID
        assert wallet.balance == Decimal("4000")
        assert wallet.total_withdrawn == Decimal("950")

    def test_pay_requires_approval(self, pending):
        with pytest.raises(InvalidTransitionError):
            WithdrawalProcessor.pay_withdrawal(pending.id)

    def test_terminal_states_are_final(self, pending):
        WithdrawalProcessor.reject_withdrawal(pending.id)

        with pytest.raises(InvalidTransitionError):
            WithdrawalProcessor.approve_withdrawal(pending.id)
        with pytest.raises(InvalidTransitionError):
            WithdrawalProcessor.reject_withdrawal(pending.id)

    def test_unknown_withdrawal(self, ctx):
        with pytest.raises(NotFoundError):
            WithdrawalProcessor.approve_withdrawal(9999)


# =============================================================================
# TEST CLASS: listings
# =============================================================================

class TestWithdrawalQueries:

    def test_history_filters_by_status(self, funded_member):
        first = WithdrawalProcessor.request_withdrawal(funded_member.id, "1000", "BANK", BANK_DETAILS)
        WithdrawalProcessor.request_withdrawal(funded_member.id, "500", "EASYPAISA", {"walletNumber": "03451234567"})
        WithdrawalProcessor.reject_withdrawal(first.id)

        pending = WithdrawalQueryHelper.withdrawal_history(funded_member.id, status="PENDING")
        everything = WithdrawalQueryHelper.withdrawal_history(funded_member.id)

        assert pending["total"] == 1
        assert pending["data"][0]["method"] == "EASYPAISA"
        assert everything["total"] == 2

    def test_admin_list_stats(self, funded_member):
        WithdrawalProcessor.request_withdrawal(funded_member.id, "1000", "BANK", BANK_DETAILS)

        result = WithdrawalQueryHelper.admin_withdrawal_list()

        assert result["stats"]["pending"] == {"count": 1, "amount": 1000.0}
        assert result["stats"]["paid"] == {"count": 0, "amount": 0.0}
        assert result["data"][0]["user"]["id"] == funded_member.id
