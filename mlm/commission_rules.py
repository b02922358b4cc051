# mlm/commission_rules.py
from decimal import Decimal
from typing import Dict, Any, List, Optional
import logging

from sqlalchemy.exc import IntegrityError

from extensions import db
from models import CommissionRule, CommissionType
from mlm.audit import record_audit
from mlm.config import MLMConfigHelper
from mlm.exceptions import ValidationError, DuplicateRuleError, NotFoundError
from utils import to_decimal, parse_bool

logger = logging.getLogger(__name__)


def parse_commission_type(value) -> CommissionType:
    if isinstance(value, CommissionType):
        return value
    try:
        return CommissionType[str(value).strip().upper()]
    except (KeyError, AttributeError):
        raise ValidationError(
            f"Invalid commission type '{value}'",
            {"allowed": [t.name for t in CommissionType]},
        )


class CommissionRuleHelper:
    """CRUD over the (type, level) commission rule table"""

    # ----------------------------------------------------------------
    # Payload validation
    # ----------------------------------------------------------------
    @staticmethod
    def _optional_amount(data, key):
        value = data.get(key)
        if value is None or value == "":
            return None
        amount = to_decimal(value, key)
        if amount < 0:
            raise ValidationError(f"{key} cannot be negative")
        return amount

    @staticmethod
    def _validated_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Rule payload must be an object")

        if not partial:
            missing = [k for k in ("name", "type", "level", "percentage") if data.get(k) in (None, "")]
            if missing:
                raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        fields = {}
        if "name" in data:
            name = str(data["name"] or "").strip()
            if not name:
                raise ValidationError("name cannot be empty")
            fields["name"] = name

        if "type" in data:
            fields["type"] = parse_commission_type(data["type"])

        if "level" in data:
            try:
                level = int(data["level"])
            except (TypeError, ValueError):
                raise ValidationError("level must be an integer")
            if level < 1:
                raise ValidationError("level must be at least 1")
            fields["level"] = level

        if "percentage" in data:
            percentage = to_decimal(data["percentage"], "percentage")
            if percentage < 0 or percentage > 100:
                raise ValidationError("percentage must be between 0 and 100")
            fields["percentage"] = percentage

        for key, column in (
            ("fixedAmount", "fixed_amount"),
            ("minOrderValue", "min_order_value"),
            ("maxCommission", "max_commission"),
        ):
            if key in data:
                fields[column] = CommissionRuleHelper._optional_amount(data, key)

        if "isActive" in data:
            fields["is_active"] = parse_bool(data["isActive"])

        if "priority" in data:
            try:
                fields["priority"] = int(data["priority"])
            except (TypeError, ValueError):
                raise ValidationError("priority must be an integer")

        return fields

    @staticmethod
    def _assert_unique(rule_type: CommissionType, level: int, exclude_id: Optional[int] = None):
        query = CommissionRule.query.filter_by(type=rule_type, level=level)
        if exclude_id is not None:
            query = query.filter(CommissionRule.id != exclude_id)
        if query.first() is not None:
            raise DuplicateRuleError(f"A {rule_type.name} rule for level {level} already exists")

    # ----------------------------------------------------------------
    # Queries
    # ----------------------------------------------------------------
    @staticmethod
    def list_rules(rule_type=None) -> List[CommissionRule]:
        query = CommissionRule.query
        if rule_type is not None:
            query = query.filter_by(type=parse_commission_type(rule_type))
        return query.order_by(CommissionRule.type.asc(), CommissionRule.level.asc()).all()

    @staticmethod
    def rules_by_type() -> Dict[str, List[Dict[str, Any]]]:
        grouped = {t.name: [] for t in CommissionType}
        for rule in CommissionRuleHelper.list_rules():
            grouped[rule.type.name].append(rule.to_dict())
        return grouped

    @staticmethod
    def get_rule(rule_id: int) -> CommissionRule:
        rule = db.session.get(CommissionRule, rule_id)
        if rule is None:
            raise NotFoundError("Commission rule not found")
        return rule

    @staticmethod
    def active_rules_by_level(rule_type: CommissionType) -> Dict[int, CommissionRule]:
        """Highest-priority active rule per level for one commission type"""
        rules = CommissionRule.query.filter_by(type=rule_type, is_active=True).order_by(
            CommissionRule.priority.desc(), CommissionRule.level.asc()
        ).all()
        by_level = {}
        for rule in rules:
            by_level.setdefault(rule.level, rule)
        return by_level

    # ----------------------------------------------------------------
    # Mutations
    # ----------------------------------------------------------------
    @staticmethod
    def create_rule(data: Dict[str, Any], admin_id: int = None) -> CommissionRule:
        fields = CommissionRuleHelper._validated_fields(data)
        CommissionRuleHelper._assert_unique(fields["type"], fields["level"])

        rule = CommissionRule(**fields)
        db.session.add(rule)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateRuleError(f"A {fields['type'].name} rule for level {fields['level']} already exists")

        record_audit("rule.create", "commission_rule", rule.id, actor_id=admin_id,
                     type=rule.type, level=rule.level, percentage=rule.percentage)
        db.session.commit()
        logger.info(f"Commission rule {rule.id} created: {rule.type.name} level {rule.level}")
        return rule

    @staticmethod
    def update_rule(rule_id: int, data: Dict[str, Any], admin_id: int = None) -> CommissionRule:
        rule = CommissionRuleHelper.get_rule(rule_id)
        fields = CommissionRuleHelper._validated_fields(data, partial=True)

        new_type = fields.get("type", rule.type)
        new_level = fields.get("level", rule.level)
        if (new_type, new_level) != (rule.type, rule.level):
            CommissionRuleHelper._assert_unique(new_type, new_level, exclude_id=rule.id)

        for column, value in fields.items():
            setattr(rule, column, value)

        record_audit("rule.update", "commission_rule", rule.id, actor_id=admin_id, **fields)
        db.session.commit()
        logger.info(f"Commission rule {rule.id} updated: {sorted(fields)}")
        return rule

    @staticmethod
    def delete_rule(rule_id: int, admin_id: int = None):
        rule = CommissionRuleHelper.get_rule(rule_id)
        record_audit("rule.delete", "commission_rule", rule.id, actor_id=admin_id,
                     type=rule.type, level=rule.level)
        db.session.delete(rule)
        db.session.commit()
        logger.info(f"Commission rule {rule_id} deleted")

    @staticmethod
    def seed_default_rules() -> int:
        """Insert the default ladder; existing (type, level) pairs are left alone"""
        created = 0
        for rule in MLMConfigHelper.default_rules():
            exists = CommissionRule.query.filter_by(type=rule["type"], level=rule["level"]).first()
            if exists:
                continue
            db.session.add(CommissionRule(is_active=True, **rule))
            created += 1
        db.session.commit()
        logger.info(f"Seeded {created} default commission rules")
        return created


def rule_amount(rule: CommissionRule, order_total: Decimal) -> Decimal:
    """
    Payout for one rule against an order total, before rounding.
    Zero when the order is below the rule's minimum.
    """
    if rule.min_order_value is not None and order_total < Decimal(rule.min_order_value):
        return Decimal("0")

    if rule.fixed_amount is not None and Decimal(rule.fixed_amount) > 0:
        amount = Decimal(rule.fixed_amount)
    else:
        amount = order_total * Decimal(rule.percentage or 0) / Decimal("100")

    if rule.max_commission is not None and amount > Decimal(rule.max_commission):
        amount = Decimal(rule.max_commission)

    return amount
