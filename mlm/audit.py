# mlm/audit.py
from decimal import Decimal
import enum
import logging

from flask import has_request_context, request

from extensions import db
from models import AuditLog

logger = logging.getLogger(__name__)


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.name
    return value


def record_audit(action, entity, entity_id, actor_id=None, **details):
    """
    Append a state-transition fact to audit_logs.
    Added to the current session; the caller's commit persists it with the change itself.
    """
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        details={key: _jsonable(value) for key, value in details.items()},
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    logger.info("AUDIT %s %s#%s actor=%s %s", action, entity, entity_id, actor_id, entry.details)
    return entry
