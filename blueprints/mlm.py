#======================================================================================================
#
#   MEMBER MLM API: network, wallet, commissions, rank, withdrawals
#
#======================================================================================================
from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user

from mlm.commission_state import CommissionStateHelper
from mlm.exceptions import NotFoundError, ValidationError
from mlm.members import MemberHelper
from mlm.ranks import get_member_rank
from mlm.referral_tree import ReferralTreeHelper
from mlm.wallet import wallet_summary
from mlm.withdrawals import WithdrawalProcessor, WithdrawalQueryHelper
from blueprints.api_helpers import member_required, json_body, page_args, parse_date_arg
from utils import paginate

bp = Blueprint("mlm", __name__, url_prefix="/api/mlm")


# ----------------------------------------------------------------
# Network
# ----------------------------------------------------------------
@bp.route("/tree", methods=["GET"])
@member_required
def get_tree():
    default_depth = current_app.config.get("MLM_TREE_DEFAULT_DEPTH", 3)
    max_depth = current_app.config.get("MLM_TREE_MAX_DEPTH", 5)
    try:
        depth = int(request.args.get("depth", default_depth))
    except (TypeError, ValueError):
        raise ValidationError("depth must be an integer")
    depth = max(1, min(depth, max_depth))

    tree = ReferralTreeHelper.get_downline_tree(current_user.id, depth)
    if tree is None:
        raise NotFoundError("Member not found")

    return jsonify({
        "success": True,
        "tree": tree,
        "depth": depth,
        "stats": ReferralTreeHelper.get_network_summary(current_user.id),
    }), 200


@bp.route("/downline", methods=["GET"])
@member_required
def get_direct_downline():
    page, page_size = page_args()
    result = paginate(ReferralTreeHelper.direct_downline_query(current_user.id), page, page_size)
    result["totalDownline"] = ReferralTreeHelper.count_total_downline(current_user.id)
    return jsonify(result), 200


@bp.route("/referral-link", methods=["GET"])
@member_required
def get_referral_link():
    return jsonify(MemberHelper.referral_link(current_user.id)), 200


# ----------------------------------------------------------------
# Wallet, commissions, rank
# ----------------------------------------------------------------
@bp.route("/wallet", methods=["GET"])
@member_required
def get_wallet():
    return jsonify({"success": True, "wallet": wallet_summary(current_user.id)}), 200


@bp.route("/commissions", methods=["GET"])
@member_required
def get_commissions():
    page, page_size = page_args()
    result = CommissionStateHelper.commission_history(
        current_user.id,
        page=page,
        page_size=page_size,
        commission_type=request.args.get("type"),
        status=request.args.get("status"),
        date_from=parse_date_arg("from"),
        date_to=parse_date_arg("to", end=True),
    )
    return jsonify(result), 200


@bp.route("/rank", methods=["GET"])
@member_required
def get_rank():
    return jsonify(get_member_rank(current_user.id)), 200


# ----------------------------------------------------------------
# Withdrawals
# ----------------------------------------------------------------
@bp.route("/withdrawals", methods=["POST"])
@member_required
def request_withdrawal():
    data = json_body()
    withdrawal = WithdrawalProcessor.request_withdrawal(
        current_user.id,
        data.get("amount"),
        data.get("method"),
        data.get("details") or data.get("accountDetails"),
    )
    return jsonify({
        "success": True,
        "message": "Withdrawal request submitted",
        "withdrawal": withdrawal.to_dict(),
    }), 201


@bp.route("/withdrawals", methods=["GET"])
@member_required
def get_withdrawals():
    page, page_size = page_args()
    result = WithdrawalQueryHelper.withdrawal_history(
        current_user.id, page=page, page_size=page_size, status=request.args.get("status")
    )
    return jsonify(result), 200
