#======================================================================================================
#   Shared helpers for the JSON blueprints: auth decorators, error responses, query parsing
#======================================================================================================
from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import jsonify, current_app, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from mlm.exceptions import MLMError, ValidationError
from utils import parse_page_args


def member_required(f):
    """Authenticated, active member or 401/403"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"success": False, "error": "Unauthorized"}), 401
        if not current_user.is_active:
            return jsonify({"success": False, "error": "Account is inactive"}), 403
        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - 401 when nobody is logged in.
    - 403 when the member's role is not admin.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"success": False, "error": "Unauthorized"}), 401
        if current_user.role != "admin":
            return jsonify({"success": False, "error": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated_function


def register_error_handlers(app):
    """Service exceptions become JSON failures; storage errors never leak details"""

    @app.errorhandler(MLMError)
    def handle_mlm_error(error):
        if error.status_code >= 500:
            current_app.logger.error(f"{request.method} {request.path} failed: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error):
        db.session.rollback()
        current_app.logger.exception(f"Database error on {request.method} {request.path}: {error}")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({"success": False, "error": "Method not allowed"}), 405


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def page_args():
    return parse_page_args(request.args, default_size=current_app.config.get("MLM_PAGE_SIZE", 20))


def parse_date_arg(name, end=False):
    """
    ISO date or datetime query arg. A bare date used as an upper bound
    covers the whole day.
    """
    value = request.args.get(name)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if end and len(value) == 10:
        parsed += timedelta(days=1)
    return parsed
