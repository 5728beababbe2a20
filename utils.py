import logging
from math import ceil

from flask_jwt_extended import get_jwt_identity
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound
from models import AuditLog, User

logger = logging.getLogger(__name__)


def log_activity(session, user_id, action, details):
    """ Audit trail for admins. Never breaks the request that triggered it. """
    try:
        session.add(AuditLog(user_id=user_id, action=action, details=details[:255]))
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning("⚠️ Audit logging failed (%s %s): %s", action, user_id, e)


def page_envelope(items, total, page, limit):
    return {
        'items': items,
        'total_count': total,
        'page': page,
        'total_pages': ceil(total / limit) if limit else 0,
    }


def get_current_user(session):
    """ The caller identified by the JWT subject (a user id). """
    identity = get_jwt_identity()
    try:
        user = session.get(User, int(identity))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise NotFound('User not found')
    return user
