# mlm/settings.py
from typing import Dict, Any
import logging

from extensions import db
from models import MLMSettings
from mlm.audit import record_audit
from mlm.config import MLMConfigHelper
from mlm.exceptions import ValidationError
from utils import to_decimal, parse_bool

logger = logging.getLogger(__name__)


class MLMSettingsHelper:
    """Load / update the singleton settings row. Never cache the result across requests."""

    @staticmethod
    def load_settings() -> MLMSettings:
        """
        Return the settings row, creating it with defaults on first use.
        Runs inside the caller's transaction; the insert is flushed, not committed.
        """
        settings = MLMSettings.query.order_by(MLMSettings.id.asc()).first()
        if settings is None:
            settings = MLMSettings(**MLMConfigHelper.DEFAULT_SETTINGS)
            db.session.add(settings)
            db.session.flush()
            logger.info("Created default MLM settings row id=%s", settings.id)
        return settings

    @staticmethod
    def _validated_changes(data: Dict[str, Any]) -> Dict[str, Any]:
        changes = {}

        if "maxLevels" in data:
            try:
                max_levels = int(data["maxLevels"])
            except (TypeError, ValueError):
                raise ValidationError("maxLevels must be an integer")
            if not MLMConfigHelper.MIN_LEVELS <= max_levels <= MLMConfigHelper.MAX_LEVELS:
                raise ValidationError(
                    f"maxLevels must be between {MLMConfigHelper.MIN_LEVELS} and {MLMConfigHelper.MAX_LEVELS}"
                )
            changes["max_levels"] = max_levels

        if "minWithdrawal" in data:
            min_withdrawal = to_decimal(data["minWithdrawal"], "minWithdrawal")
            if min_withdrawal < 0:
                raise ValidationError("minWithdrawal cannot be negative")
            changes["min_withdrawal"] = min_withdrawal

        if "withdrawalFeePercent" in data:
            fee = to_decimal(data["withdrawalFeePercent"], "withdrawalFeePercent")
            if fee < 0 or fee > 100:
                raise ValidationError("withdrawalFeePercent must be between 0 and 100")
            changes["withdrawal_fee_percent"] = fee

        if "defaultSignupBonus" in data:
            bonus = to_decimal(data["defaultSignupBonus"], "defaultSignupBonus")
            if bonus < 0:
                raise ValidationError("defaultSignupBonus cannot be negative")
            changes["default_signup_bonus"] = bonus

        for key, column in (
            ("isMLMEnabled", "is_mlm_enabled"),
            ("autoApproveCommissions", "auto_approve_commissions"),
            ("autoEnableMLM", "auto_enable_mlm"),
        ):
            if key in data:
                changes[column] = parse_bool(data[key])

        return changes

    @staticmethod
    def update_settings(data: Dict[str, Any], admin_id: int = None) -> MLMSettings:
        """Validate and apply a partial update, then commit"""
        if not isinstance(data, dict):
            raise ValidationError("Settings payload must be an object")

        changes = MLMSettingsHelper._validated_changes(data)
        settings = MLMSettingsHelper.load_settings()

        for column, value in changes.items():
            setattr(settings, column, value)

        record_audit("settings.update", "mlm_settings", settings.id, actor_id=admin_id, **changes)
        db.session.commit()
        logger.info("MLM settings updated by %s: %s", admin_id, sorted(changes))
        return settings
