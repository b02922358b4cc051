# mlm/members.py
import random
import string
import time
from typing import Dict, Any, Optional
import logging

from flask import current_app
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Member, Order, ReferralNetwork, COMMISSIONABLE_ORDER_STATUSES
from mlm.audit import record_audit
from mlm.commission_engine import CommissionEngine
from mlm.exceptions import MLMError, ValidationError, NotFoundError, ForbiddenError, InternalError
from mlm.referral_tree import ReferralTreeHelper
from mlm.settings import MLMSettingsHelper
from mlm.wallet import WalletManager
from utils import validate_email, validate_phone, parse_bool, paginate

logger = logging.getLogger(__name__)

SPONSOR_CODE_ALPHABET = string.ascii_uppercase + string.digits
SPONSOR_CODE_ATTEMPTS = 10


def generate_sponsor_code(name: str) -> str:
    """
    Three letters from the name (padded with X) + five random characters.
    Falls back to a time-based suffix when ten attempts collide.
    """
    letters = "".join(ch for ch in (name or "") if ch.isalpha())[:3].upper()
    prefix = letters.ljust(3, "X")

    for _ in range(SPONSOR_CODE_ATTEMPTS):
        code = prefix + "".join(random.choices(SPONSOR_CODE_ALPHABET, k=5))
        if Member.query.filter_by(sponsor_code=code).first() is None:
            return code

    return prefix + format(int(time.time() * 1000), "X")[-8:]


def validate_sponsor_code(code: str) -> Member:
    """The sponsor behind a referral code; it must be active and enrolled in MLM"""
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("Sponsor code is required")

    sponsor = Member.query.filter(func.upper(Member.sponsor_code) == code).first()
    if sponsor is None:
        raise ValidationError("Invalid sponsor code")
    if not sponsor.is_active:
        raise ValidationError("Sponsor account is inactive")
    if not sponsor.is_mlm_enabled:
        raise ValidationError("Sponsor is not enrolled in MLM")
    return sponsor


class MemberHelper:

    @staticmethod
    def register_member(name: str, email: str, phone: Optional[str] = None,
                        sponsor_code: Optional[str] = None, role: str = "member") -> Member:
        """
        Create a member with wallet, sponsor code and closure rows, then pay any signup bonus.
        One transaction: a failure leaves nothing behind.
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name:
            raise ValidationError("Name is required")
        if not validate_email(email):
            raise ValidationError("Invalid email address")
        if phone and not validate_phone(phone):
            raise ValidationError("Invalid phone number")
        if Member.query.filter_by(email=email).first() is not None:
            raise ValidationError("Email already registered")

        try:
            sponsor = validate_sponsor_code(sponsor_code) if sponsor_code else None
            settings = MLMSettingsHelper.load_settings()

            member = Member(
                name=name,
                email=email,
                phone=phone,
                role=role,
                sponsor_id=sponsor.id if sponsor else None,
                sponsor_code=generate_sponsor_code(name),
                is_mlm_enabled=bool(settings.auto_enable_mlm),
                is_active=True,
            )
            db.session.add(member)
            db.session.flush()

            WalletManager.get_or_create_wallet(member.id)
            ReferralTreeHelper.add_member(member.id, sponsor.id if sponsor else None)
            record_audit("member.register", "member", member.id, actor_id=member.id,
                         sponsor_id=member.sponsor_id)

            if sponsor is not None:
                CommissionEngine.process_signup_bonus(member.id, commit=False)

            db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Member registration failed for {email}: {e}")
            raise InternalError("Member registration failed")

        logger.info(f"Member {member.id} registered (sponsor={member.sponsor_id}, code={member.sponsor_code})")
        return member

    @staticmethod
    def get_member(member_id: int) -> Member:
        member = db.session.get(Member, member_id)
        if member is None:
            raise NotFoundError("Member not found")
        return member

    @staticmethod
    def update_member(member_id: int, data: Dict[str, Any], admin_id: Optional[int] = None) -> Member:
        """Admin update: isMLMEnabled, mlmLevel, isActive, sponsorId (re-parent)"""
        if not isinstance(data, dict):
            raise ValidationError("Member payload must be an object")

        try:
            member = MemberHelper.get_member(member_id)
            changes = {}

            if "mlmLevel" in data:
                try:
                    level = int(data["mlmLevel"])
                except (TypeError, ValueError):
                    raise ValidationError("mlmLevel must be an integer")
                if level < 1:
                    raise ValidationError("mlmLevel must be at least 1")
                member.mlm_level = changes["mlm_level"] = level

            if "isMLMEnabled" in data:
                member.is_mlm_enabled = changes["is_mlm_enabled"] = parse_bool(data["isMLMEnabled"])

            if "isActive" in data:
                member.is_active = changes["is_active"] = parse_bool(data["isActive"])

            if "sponsorId" in data:
                sponsor_id = data["sponsorId"]
                if sponsor_id in (None, ""):
                    sponsor_id = None
                else:
                    try:
                        sponsor_id = int(sponsor_id)
                    except (TypeError, ValueError):
                        raise ValidationError("sponsorId must be an integer")
                ReferralTreeHelper.assign_sponsor(member.id, sponsor_id)
                changes["sponsor_id"] = sponsor_id

            if changes:
                record_audit("member.update", "member", member.id, actor_id=admin_id, **changes)
            db.session.commit()

        except MLMError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception(f"Member update failed for {member_id}: {e}")
            raise InternalError("Member update failed")

        return member

    @staticmethod
    def list_members(search: Optional[str] = None, mlm_enabled=None, level=None,
                     page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        query = Member.query
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(or_(
                Member.name.ilike(like),
                Member.email.ilike(like),
                Member.sponsor_code.ilike(like),
            ))
        if mlm_enabled not in (None, ""):
            query = query.filter(Member.is_mlm_enabled == parse_bool(mlm_enabled))
        if level not in (None, ""):
            try:
                query = query.filter(Member.mlm_level == int(level))
            except (TypeError, ValueError):
                raise ValidationError("level must be an integer")
        query = query.order_by(Member.created_at.desc(), Member.id.desc())

        def serialize(member):
            data = member.to_dict()
            data["directDownlineCount"] = ReferralTreeHelper.count_direct_downline(member.id)
            data["wallet"] = member.wallet.to_dict() if member.wallet else None
            return data

        return paginate(query, page, page_size, serialize)

    @staticmethod
    def referral_link(member_id: int) -> Dict[str, Any]:
        member = MemberHelper.get_member(member_id)
        if not member.is_mlm_enabled:
            raise ForbiddenError("MLM is not enabled for this account")

        if not member.sponsor_code:
            member.sponsor_code = generate_sponsor_code(member.name)
            db.session.commit()

        base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
        downline_ids = select(ReferralNetwork.descendant_id).where(
            ReferralNetwork.ancestor_id == member_id,
            ReferralNetwork.depth >= 1,
        )
        active = db.session.query(func.count(func.distinct(Order.member_id))).filter(
            Order.member_id.in_(downline_ids),
            Order.status.in_(COMMISSIONABLE_ORDER_STATUSES),
        ).scalar() or 0

        return {
            "sponsorCode": member.sponsor_code,
            "referralLink": f"{base_url}/auth/sign-up?ref={member.sponsor_code}",
            "totalReferrals": ReferralTreeHelper.count_total_downline(member_id),
            "directReferrals": ReferralTreeHelper.count_direct_downline(member_id),
            "activeReferrals": active,
        }
