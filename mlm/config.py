# mlm/config.py
from decimal import Decimal
from typing import Dict, Any, List

from models import CommissionType


class MLMConfigHelper:
    """
    Defaults and bounds for the MLM settings row and the commission rule table.
    SALE ladder: Level 1: 10%, Level 2: 5%, Level 3: 3%, Level 4: 2%, Level 5: 1%
    """

    # Values used when the settings row is first created
    DEFAULT_SETTINGS: Dict[str, Any] = {
        "is_mlm_enabled": True,
        "max_levels": 5,
        "min_withdrawal": Decimal("500.00"),
        "withdrawal_fee_percent": Decimal("0.00"),
        "default_signup_bonus": Decimal("0.00"),
        "auto_approve_commissions": False,
        "auto_enable_mlm": True,
    }

    MIN_LEVELS = 1
    MAX_LEVELS = 10

    # Seeded SALE percentages by level
    DEFAULT_SALE_PERCENTAGES = {
        1: Decimal("10"),
        2: Decimal("5"),
        3: Decimal("3"),
        4: Decimal("2"),
        5: Decimal("1"),
    }
    DEFAULT_SIGNUP_BONUS_AMOUNT = Decimal("100.00")

    @staticmethod
    def default_rules() -> List[Dict[str, Any]]:
        """Rule rows inserted by `flask mlm seed-rules`"""
        rules = [
            {
                "name": f"Level {level} Sales Commission",
                "type": CommissionType.SALE,
                "level": level,
                "percentage": percentage,
                "priority": 0,
            }
            for level, percentage in MLMConfigHelper.DEFAULT_SALE_PERCENTAGES.items()
        ]
        rules.append({
            "name": "Direct Signup Bonus",
            "type": CommissionType.SIGNUP,
            "level": 1,
            "percentage": Decimal("0"),
            "fixed_amount": MLMConfigHelper.DEFAULT_SIGNUP_BONUS_AMOUNT,
            "priority": 0,
        })
        return rules
