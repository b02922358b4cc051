# models.py: Flask-SQLAlchemy models for the MLM commission / wallet / withdrawal core
from decimal import Decimal
import enum
from flask_login import UserMixin
from sqlalchemy import UniqueConstraint, Index
from extensions import db


def _money(value):
    return float(value) if value is not None else 0.0


def _iso(value):
    return value.isoformat() if value else None


# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class CommissionType(enum.Enum):
    SALE = "sale"
    SIGNUP = "signup"
    LEVEL_UP = "level_up"
    BONUS = "bonus"


class CommissionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self):
        return self in (CommissionStatus.PAID, CommissionStatus.CANCELLED)

    def can_transition_to(self, target):
        return target in COMMISSION_TRANSITIONS[self]


class WithdrawalStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"

    @property
    def is_terminal(self):
        return self in (WithdrawalStatus.PAID, WithdrawalStatus.REJECTED)

    def can_transition_to(self, target):
        return target in WITHDRAWAL_TRANSITIONS[self]


class WithdrawalMethod(enum.Enum):
    BANK = "bank"
    EASYPAISA = "easypaisa"
    JAZZCASH = "jazzcash"
    CRYPTO = "crypto"


class OrderStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


COMMISSION_TRANSITIONS = {
    CommissionStatus.PENDING: {CommissionStatus.APPROVED, CommissionStatus.CANCELLED},
    CommissionStatus.APPROVED: {CommissionStatus.PAID, CommissionStatus.CANCELLED},
    CommissionStatus.PAID: set(),
    CommissionStatus.CANCELLED: set(),
}

WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.PENDING: {WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED},
    WithdrawalStatus.APPROVED: {WithdrawalStatus.PAID, WithdrawalStatus.REJECTED},
    WithdrawalStatus.PAID: set(),
    WithdrawalStatus.REJECTED: set(),
}

# Orders entering one of these statuses earn upline commissions
COMMISSIONABLE_ORDER_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
SALES_ORDER_STATUSES = (OrderStatus.SHIPPED, OrderStatus.DELIVERED)


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime(timezone=True), default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=db.func.now(),
                           onupdate=db.func.now())


# ===========================================================
# MEMBER MODELS
# ===========================================================

class Member(UserMixin, db.Model, BaseMixin):
    """Network member: one wallet, one sponsor, many recruits."""
    __tablename__ = 'members'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="member", index=True)

    sponsor_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True, index=True)  # direct upline
    sponsor_code = db.Column(db.String(20), unique=True, nullable=True)  # member's own referral code
    mlm_level = db.Column(db.Integer, nullable=False, default=1)
    is_mlm_enabled = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Relationships
    sponsor = db.relationship('Member', remote_side=[id], backref=db.backref('recruits', lazy='dynamic'))
    wallet = db.relationship('Wallet', uselist=False, back_populates='member', cascade="all,delete-orphan")
    commissions = db.relationship('Commission', back_populates='member', lazy='dynamic',
                                  foreign_keys='Commission.member_id')
    withdrawals = db.relationship('Withdrawal', back_populates='member', lazy='dynamic',
                                  foreign_keys='Withdrawal.member_id')
    orders = db.relationship('Order', back_populates='member', lazy='dynamic')

    __table_args__ = (
        Index('idx_member_sponsor_code', 'sponsor_code'),
    )

    @property
    def is_authenticated(self):
        # inactive members still resolve; member_required answers them with 403
        return True

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "sponsorId": self.sponsor_id,
            "sponsorCode": self.sponsor_code,
            "mlmLevel": self.mlm_level,
            "isMLMEnabled": self.is_mlm_enabled,
            "isActive": self.is_active,
            "joinedAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Member {self.id} {self.email}>"


class ReferralNetwork(db.Model):
    """Closure table over the sponsor edge: one row per (ancestor, descendant) pair"""
    __tablename__ = 'referral_network'

    id = db.Column(db.Integer, primary_key=True)
    ancestor_id = db.Column(db.Integer, db.ForeignKey('members.id', ondelete='CASCADE'), nullable=False, index=True)
    descendant_id = db.Column(db.Integer, db.ForeignKey('members.id', ondelete='CASCADE'), nullable=False, index=True)
    depth = db.Column(db.Integer, nullable=False)  # 0 = self row, 1 = direct recruit
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    __table_args__ = (
        Index('idx_network_ancestor_depth', 'ancestor_id', 'depth'),
        Index('idx_network_descendant_ancestor', 'descendant_id', 'ancestor_id'),
        UniqueConstraint('ancestor_id', 'descendant_id', name='uq_network_relationship'),
    )


# ===========================================================
# COMMISSION MODELS
# ===========================================================

class CommissionRule(db.Model, BaseMixin):
    """Configurable payout for one (commission type, level) pair"""
    __tablename__ = 'commission_rules'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.Enum(CommissionType), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)  # whole percent, 10 = 10%
    fixed_amount = db.Column(db.Numeric(18, 2), nullable=True)
    min_order_value = db.Column(db.Numeric(18, 2), nullable=True)
    max_commission = db.Column(db.Numeric(18, 2), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    priority = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('type', 'level', name='uq_commission_rule_type_level'),
        db.CheckConstraint('level >= 1', name='chk_rule_level'),
        db.CheckConstraint('percentage >= 0 AND percentage <= 100', name='chk_rule_percentage'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.name,
            "level": self.level,
            "percentage": _money(self.percentage),
            "fixedAmount": float(self.fixed_amount) if self.fixed_amount is not None else None,
            "minOrderValue": float(self.min_order_value) if self.min_order_value is not None else None,
            "maxCommission": float(self.max_commission) if self.max_commission is not None else None,
            "isActive": self.is_active,
            "priority": self.priority,
            "createdAt": _iso(self.created_at),
        }


class Commission(db.Model, BaseMixin):
    __tablename__ = 'commissions'

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)  # earner
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True, index=True)
    source_member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True, index=True)  # buyer / recruit
    type = db.Column(db.Enum(CommissionType), nullable=False, default=CommissionType.SALE)
    level = db.Column(db.Integer, nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=True)
    status = db.Column(db.Enum(CommissionStatus), nullable=False, default=CommissionStatus.PENDING, index=True)
    description = db.Column(db.String(255))

    approved_at = db.Column(db.DateTime(timezone=True))
    paid_at = db.Column(db.DateTime(timezone=True))
    cancelled_at = db.Column(db.DateTime(timezone=True))
    processed_by = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    notes = db.Column(db.Text)

    member = db.relationship('Member', back_populates='commissions', foreign_keys=[member_id])
    source_member = db.relationship('Member', foreign_keys=[source_member_id])
    order = db.relationship('Order', back_populates='commissions')

    __table_args__ = (
        UniqueConstraint('order_id', 'level', name='uq_commission_order_level'),
        Index('idx_commission_member_status', 'member_id', 'status'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.member_id,
            "orderId": self.order_id,
            "orderNumber": self.order.order_number if self.order else None,
            "sourceUserId": self.source_member_id,
            "sourceUserName": self.source_member.name if self.source_member else None,
            "type": self.type.name,
            "level": self.level,
            "amount": _money(self.amount),
            "percentage": float(self.percentage) if self.percentage is not None else None,
            "status": self.status.name,
            "description": self.description,
            "approvedAt": _iso(self.approved_at),
            "paidAt": _iso(self.paid_at),
            "cancelledAt": _iso(self.cancelled_at),
            "createdAt": _iso(self.created_at),
        }


# ===========================================================
# WALLET & WITHDRAWAL MODELS
# ===========================================================

class Wallet(db.Model, BaseMixin):
    __tablename__ = 'wallets'

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id', ondelete='CASCADE'), nullable=False, unique=True, index=True)
    balance = db.Column(db.Numeric(precision=18, scale=2), nullable=False, default=Decimal("0.00"))
    pending = db.Column(db.Numeric(precision=18, scale=2), nullable=False, default=Decimal("0.00"))
    total_earned = db.Column(db.Numeric(precision=18, scale=2), nullable=False, default=Decimal("0.00"))
    total_withdrawn = db.Column(db.Numeric(precision=18, scale=2), nullable=False, default=Decimal("0.00"))
    currency = db.Column(db.String(10), default='PKR')

    member = db.relationship('Member', back_populates='wallet')

    __table_args__ = (
        db.CheckConstraint('balance >= 0', name='chk_wallet_balance'),
        db.CheckConstraint('pending >= 0', name='chk_wallet_pending'),
    )

    def to_dict(self):
        return {
            "balance": _money(self.balance),
            "pending": _money(self.pending),
            "totalEarned": _money(self.total_earned),
            "totalWithdrawn": _money(self.total_withdrawn),
            "currency": self.currency,
        }


class Withdrawal(db.Model, BaseMixin):
    __tablename__ = 'withdrawals'

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    fee = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    net_amount = db.Column(db.Numeric(18, 2), nullable=False)
    method = db.Column(db.Enum(WithdrawalMethod), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.Enum(WithdrawalStatus), nullable=False, default=WithdrawalStatus.PENDING, index=True)
    notes = db.Column(db.Text)
    processed_by = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True))

    member = db.relationship('Member', back_populates='withdrawals', foreign_keys=[member_id])

    def to_dict(self, include_member=False):
        data = {
            "id": self.id,
            "userId": self.member_id,
            "amount": _money(self.amount),
            "fee": _money(self.fee),
            "netAmount": _money(self.net_amount),
            "method": self.method.name,
            "details": self.details or {},
            "status": self.status.name,
            "notes": self.notes,
            "processedBy": self.processed_by,
            "processedAt": _iso(self.processed_at),
            "createdAt": _iso(self.created_at),
        }
        if include_member and self.member:
            data["user"] = {"id": self.member.id, "name": self.member.name, "email": self.member.email}
        return data


# ===========================================================
# SETTINGS, ORDERS, AUDIT
# ===========================================================

class MLMSettings(db.Model, BaseMixin):
    """Process-wide MLM configuration; a single row, created on first read."""
    __tablename__ = 'mlm_settings'

    id = db.Column(db.Integer, primary_key=True)
    is_mlm_enabled = db.Column(db.Boolean, nullable=False, default=True)
    max_levels = db.Column(db.Integer, nullable=False, default=5)
    min_withdrawal = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("500.00"))
    withdrawal_fee_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    default_signup_bonus = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    auto_approve_commissions = db.Column(db.Boolean, nullable=False, default=False)
    auto_enable_mlm = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "isMLMEnabled": self.is_mlm_enabled,
            "maxLevels": self.max_levels,
            "minWithdrawal": _money(self.min_withdrawal),
            "withdrawalFeePercent": _money(self.withdrawal_fee_percent),
            "defaultSignupBonus": _money(self.default_signup_bonus),
            "autoApproveCommissions": self.auto_approve_commissions,
            "autoEnableMLM": self.auto_enable_mlm,
            "updatedAt": _iso(self.updated_at),
        }


class Order(db.Model, BaseMixin):
    """Minimal order record supplied by the storefront."""
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), unique=True, nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)
    total_amount = db.Column(db.Numeric(18, 2), nullable=False)
    status = db.Column(db.Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)

    member = db.relationship('Member', back_populates='orders')
    commissions = db.relationship('Commission', back_populates='order', lazy='dynamic')

    def to_dict(self):
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "userId": self.member_id,
            "totalAmount": _money(self.total_amount),
            "status": self.status.name,
            "createdAt": _iso(self.created_at),
        }


class AuditLog(db.Model, BaseMixin):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True, index=True)
    action = db.Column(db.String(255), nullable=False)
    entity = db.Column(db.String(50), index=True)
    entity_id = db.Column(db.Integer)
    details = db.Column(db.JSON)
    ip_address = db.Column(db.String(50))
