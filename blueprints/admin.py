#======================================================================================
#
# ADMIN MLM API: commissions, withdrawals, rules, settings, members, analytics
#
#=======================================================================================
from flask import jsonify, request, Blueprint
from flask_login import current_user
import logging

from extensions import db
from mlm.analytics import mlm_overview
from mlm.commission_engine import CommissionEngine
from mlm.commission_rules import CommissionRuleHelper
from mlm.commission_state import CommissionStateHelper
from mlm.exceptions import ValidationError
from mlm.members import MemberHelper
from mlm.orders import OrderHelper
from mlm.settings import MLMSettingsHelper
from mlm.withdrawals import WithdrawalProcessor, WithdrawalQueryHelper
from blueprints.api_helpers import admin_required, json_body, page_args, parse_date_arg

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin/mlm')


def _action(data, allowed):
    action = str(data.get("action") or "").strip().lower()
    if action not in allowed:
        raise ValidationError(f"action must be one of: {', '.join(allowed)}")
    return action


# ===========================================================
# ANALYTICS
# ===========================================================
@admin_bp.route("/analytics", methods=["GET"])
@admin_required
def analytics():
    return jsonify({"success": True, "analytics": mlm_overview()}), 200


# ===========================================================
# MEMBERS
# ===========================================================
@admin_bp.route("/members", methods=["GET"])
@admin_required
def list_members():
    page, page_size = page_args()
    result = MemberHelper.list_members(
        search=request.args.get("search"),
        mlm_enabled=request.args.get("mlmEnabled"),
        level=request.args.get("level"),
        page=page,
        page_size=page_size,
    )
    return jsonify(result), 200


@admin_bp.route("/members/<int:member_id>", methods=["PUT"])
@admin_required
def update_member(member_id):
    member = MemberHelper.update_member(member_id, json_body(), admin_id=current_user.id)
    return jsonify({"success": True, "member": member.to_dict()}), 200


# ===========================================================
# COMMISSIONS
# ===========================================================
@admin_bp.route("/commissions", methods=["GET"])
@admin_required
def list_commissions():
    page, page_size = page_args()
    member_id = request.args.get("userId", type=int)
    result = CommissionStateHelper.admin_commission_list(
        page=page,
        page_size=page_size,
        commission_type=request.args.get("type"),
        status=request.args.get("status"),
        member_id=member_id,
        search=request.args.get("search"),
        date_from=parse_date_arg("from"),
        date_to=parse_date_arg("to", end=True),
    )
    return jsonify(result), 200


@admin_bp.route("/commissions/<int:commission_id>", methods=["PUT"])
@admin_required
def update_commission(commission_id):
    data = json_body()
    action = _action(data, ("approve", "cancel", "pay"))

    if action == "approve":
        commission = CommissionEngine.approve_commission(commission_id, admin_id=current_user.id)
    elif action == "cancel":
        commission = CommissionEngine.cancel_commission(
            commission_id, admin_id=current_user.id, reason=data.get("reason")
        )
    else:
        commission = CommissionEngine.mark_commission_paid(commission_id, admin_id=current_user.id)

    logger.info(f"Admin {current_user.id} {action} commission {commission_id}")
    return jsonify({"success": True, "commission": commission.to_dict()}), 200


# ===========================================================
# WITHDRAWALS
# ===========================================================
@admin_bp.route("/withdrawals", methods=["GET"])
@admin_required
def list_withdrawals():
    page, page_size = page_args()
    result = WithdrawalQueryHelper.admin_withdrawal_list(
        page=page, page_size=page_size, status=request.args.get("status")
    )
    return jsonify(result), 200


@admin_bp.route("/withdrawals/<int:withdrawal_id>", methods=["PUT"])
@admin_required
def update_withdrawal(withdrawal_id):
    data = json_body()
    action = _action(data, ("approve", "pay", "reject"))
    notes = data.get("notes") or data.get("reason")

    if action == "approve":
        withdrawal = WithdrawalProcessor.approve_withdrawal(withdrawal_id, admin_id=current_user.id, notes=notes)
    elif action == "pay":
        withdrawal = WithdrawalProcessor.pay_withdrawal(withdrawal_id, admin_id=current_user.id, notes=notes)
    else:
        withdrawal = WithdrawalProcessor.reject_withdrawal(withdrawal_id, admin_id=current_user.id, reason=notes)

    logger.info(f"Admin {current_user.id} {action} withdrawal {withdrawal_id}")
    return jsonify({"success": True, "withdrawal": withdrawal.to_dict(include_member=True)}), 200


# ===========================================================
# COMMISSION RULES
# ===========================================================
@admin_bp.route("/rules", methods=["GET"])
@admin_required
def list_rules():
    rules = CommissionRuleHelper.list_rules(request.args.get("type"))
    return jsonify({
        "success": True,
        "rules": [rule.to_dict() for rule in rules],
        "rulesByType": CommissionRuleHelper.rules_by_type(),
    }), 200


@admin_bp.route("/rules", methods=["POST"])
@admin_required
def create_rule():
    rule = CommissionRuleHelper.create_rule(json_body(), admin_id=current_user.id)
    return jsonify({"success": True, "rule": rule.to_dict()}), 201


@admin_bp.route("/rules/<int:rule_id>", methods=["PUT"])
@admin_required
def update_rule(rule_id):
    rule = CommissionRuleHelper.update_rule(rule_id, json_body(), admin_id=current_user.id)
    return jsonify({"success": True, "rule": rule.to_dict()}), 200


@admin_bp.route("/rules/<int:rule_id>", methods=["DELETE"])
@admin_required
def delete_rule(rule_id):
    CommissionRuleHelper.delete_rule(rule_id, admin_id=current_user.id)
    return jsonify({"success": True, "message": "Rule deleted"}), 200


# ===========================================================
# SETTINGS
# ===========================================================
@admin_bp.route("/settings", methods=["GET"])
@admin_required
def get_settings():
    settings = MLMSettingsHelper.load_settings()
    data = settings.to_dict()
    # first read may have created the row
    db.session.commit()
    return jsonify({"success": True, "settings": data}), 200


@admin_bp.route("/settings", methods=["PUT"])
@admin_required
def update_settings():
    settings = MLMSettingsHelper.update_settings(json_body(), admin_id=current_user.id)
    return jsonify({"success": True, "settings": settings.to_dict()}), 200


# ===========================================================
# ORDERS (storefront hook)
# ===========================================================
@admin_bp.route("/orders/<int:order_id>/status", methods=["PUT"])
@admin_required
def update_order_status(order_id):
    data = json_body()
    if not data.get("status"):
        raise ValidationError("status is required")
    result = OrderHelper.update_order_status(order_id, data["status"], actor_id=current_user.id)
    return jsonify({"success": True, **result}), 200


@admin_bp.route("/orders/<int:order_id>/commissions", methods=["POST"])
@admin_required
def process_order_commissions(order_id):
    data = request.get_json(silent=True) or {}
    result = CommissionEngine.process_order_commissions(order_id, data.get("type", "SALE"))
    return jsonify({"success": True, "result": result}), 200
