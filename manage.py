# manage.py
# gunicorn -c gunicorn.config.py manage:app
# flask --app manage db upgrade
# flask --app manage mlm seed-rules
import os

from app import create_app
from extensions import db
from models import (Member, Wallet, Commission, CommissionRule, Withdrawal,
                    MLMSettings, Order, ReferralNetwork)

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "Member": Member,
        "Wallet": Wallet,
        "Commission": Commission,
        "CommissionRule": CommissionRule,
        "Withdrawal": Withdrawal,
        "MLMSettings": MLMSettings,
        "Order": Order,
        "ReferralNetwork": ReferralNetwork,
    }


# ----------------------
# Local development
# ----------------------
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug_mode = app.config.get("DEBUG", False)
    app.run(debug=debug_mode, host="0.0.0.0", port=port)
