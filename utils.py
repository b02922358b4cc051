import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from mlm.exceptions import ValidationError

CENTS = Decimal("0.01")


def validate_email(email):
    return re.match(r'^[\w\.\+-]+@[\w\.-]+\.\w+$', email or "")


def validate_phone(phone):
    return re.match(r'^\+?\d{9,15}$', phone or "")


def to_decimal(value, field="amount"):
    """Parse user input into a Decimal; raise ValidationError on junk"""
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field} format")
    if not amount.is_finite():
        raise ValidationError(f"Invalid {field} format")
    return amount


def quantize_money(value):
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "t", "yes")
    return bool(value)


def parse_page_args(args, default_size=20, max_size=100):
    """Read page/pageSize query args, clamped to sane bounds"""
    try:
        page = max(int(args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(args.get("pageSize", default_size))
    except (TypeError, ValueError):
        page_size = default_size
    page_size = min(max(page_size, 1), max_size)
    return page, page_size


def paginate(query, page, page_size, serializer=None):
    """Shape a query page as {data, total, page, pageSize, totalPages}"""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    serializer = serializer or (lambda item: item.to_dict())
    return {
        "data": [serializer(item) for item in items],
        "total": total,
        "page": page,
        "pageSize": page_size,
        "totalPages": (total + page_size - 1) // page_size,
    }
