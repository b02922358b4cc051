# tests/conftest.py
"""
Pytest configuration and shared fixtures for the MLM service tests.

Run:
    pytest -v
    pytest tests/test_commission_engine.py -v

Each test gets a fresh in-memory SQLite database. Service tests request `ctx`
(an active app context); API tests use `client` and build their data inside a
short-lived app context so every request resolves the logged-in member anew.
"""
import os
import tempfile
from decimal import Decimal

import pytest

os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "mlm-test-logs"))

from app import create_app
from config import Config
from extensions import db
from models import Wallet, OrderStatus
from mlm.commission_rules import CommissionRuleHelper
from mlm.members import MemberHelper
from mlm.orders import OrderHelper
from mlm.settings import MLMSettingsHelper

# =============================================================================
# CONSTANTS
# =============================================================================

CHAIN_NAMES = ["Alice", "Bilal", "Chen", "Dana", "Emeka", "Farah", "Gita"]

SALE_LADDER = {1: 10, 2: 5, 3: 3, 4: 2, 5: 1}

BANK_DETAILS = {
    "accountNumber": "0123456789",
    "bankName": "Meezan Bank",
    "accountTitle": "Test Member",
}


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    APP_BASE_URL = "http://localhost:3000"
    LOG_DIR = os.environ["LOG_DIR"]


# =============================================================================
# APP / DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def app():
    """Application with a fresh schema; tables dropped afterwards."""
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Active app context for service-level tests."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


# =============================================================================
# DATA HELPERS (need an active app context)
# =============================================================================

def email_for(name):
    return f"{name.lower()}@example.com"


def register(name, sponsor=None, **kwargs):
    """Register a member, optionally under another Member."""
    sponsor_code = sponsor.sponsor_code if sponsor is not None else None
    return MemberHelper.register_member(name, email_for(name), sponsor_code=sponsor_code, **kwargs)


def build_chain(names=CHAIN_NAMES):
    """Alice <- Bilal <- Chen <- ... : each member sponsors the next."""
    members = []
    sponsor = None
    for name in names:
        sponsor = register(name, sponsor)
        members.append(sponsor)
    return members


def create_sale_rules(ladder=None):
    rules = []
    for level, percentage in sorted((ladder or SALE_LADDER).items()):
        rules.append(CommissionRuleHelper.create_rule({
            "name": f"Level {level} Sales Commission",
            "type": "SALE",
            "level": level,
            "percentage": percentage,
        }))
    return rules


def fund_wallet(member_id, amount):
    """Give a member withdrawable balance as if approved commissions had landed."""
    wallet = Wallet.query.filter_by(member_id=member_id).first()
    wallet.balance = Decimal(wallet.balance) + Decimal(amount)
    wallet.total_earned = Decimal(wallet.total_earned) + Decimal(amount)
    db.session.commit()
    return wallet


def make_admin(name="Admin"):
    admin = MemberHelper.register_member(name, email_for(name), role="admin")
    return admin


# =============================================================================
# SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def chain(ctx):
    """Seven-member sponsor chain; chain[-1] is the deepest member."""
    return build_chain()


@pytest.fixture
def sale_rules(ctx):
    """SALE ladder 10 / 5 / 3 / 2 / 1 percent for levels 1-5."""
    return create_sale_rules()


@pytest.fixture
def settings(ctx):
    settings = MLMSettingsHelper.load_settings()
    db.session.commit()
    return settings


@pytest.fixture
def place_order(ctx):
    """Factory: create an order for a member at a given status."""

    def _place(member, total, status=OrderStatus.CONFIRMED):
        return OrderHelper.create_order(member.id, total, status)

    return _place


@pytest.fixture
def funded_member(ctx):
    """Root member holding 5,000 of withdrawable balance."""
    member = register("Waqar")
    fund_wallet(member.id, "5000")
    return member


# =============================================================================
# API FIXTURES
# =============================================================================

def login(client, member_id):
    """Put a member id into the Flask-Login session."""
    with client.session_transaction() as sess:
        sess["_user_id"] = str(member_id)
        sess["_fresh"] = True


def logout(client):
    with client.session_transaction() as sess:
        sess.clear()


@pytest.fixture
def api_data(app):
    """
    Chain, SALE rules, an admin and a funded root member, built and committed
    in a throwaway app context. Returns plain ids.
    """
    with app.app_context():
        members = build_chain()
        create_sale_rules()
        admin = make_admin()
        funded = register("Waqar")
        fund_wallet(funded.id, "5000")
        return {
            "chain": [m.id for m in members],
            "codes": {m.id: m.sponsor_code for m in members},
            "admin": admin.id,
            "funded": funded.id,
        }


@pytest.fixture
def member_client(client, api_data):
    """Client logged in as the funded member."""
    login(client, api_data["funded"])
    return client


@pytest.fixture
def admin_client(client, api_data):
    login(client, api_data["admin"])
    return client
