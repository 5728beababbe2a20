from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from errors import Forbidden, NotFound, ValidationError
from extensions import db, notifier
from models import AuditLog, User, USER_ROLES, utcnow
from routes.donations import build_donation_service
from services.reminders import remind_upcoming_pickups
from services.validation import ListingFilter, parse_bool, parse_listing_filter
from utils import get_current_user, log_activity, page_envelope

admin_bp = Blueprint('admin', __name__)


def require_admin():
    admin = get_current_user(db.session)
    if not admin.is_admin or not admin.is_active:
        raise Forbidden('Unauthorized. Admin access required.')
    return admin


def _page_args(default_limit=20):
    try:
        page = max(int(request.args.get('page', 1)), 1)
        limit = min(max(int(request.args.get('limit', default_limit)), 1), 100)
    except ValueError:
        raise ValidationError("Validation failed", fields={'page': 'page and limit must be integers'})
    return page, limit


def _id_arg(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError("Validation failed", fields={name: f'{name} must be a user id'})


@admin_bp.route('/api/admin/users', methods=['GET'])
@jwt_required()
def list_users():
    """ All users, newest first, filterable by role and active flag. """
    require_admin()
    page, limit = _page_args()

    query = User.query
    role = request.args.get('role')
    if role:
        if role not in USER_ROLES:
            raise ValidationError("Validation failed", fields={'role': 'Invalid role'})
        query = query.filter(User.role == role)
    if request.args.get('is_active') not in (None, ''):
        try:
            query = query.filter(User.is_active.is_(parse_bool(request.args['is_active'])))
        except ValueError:
            raise ValidationError("Validation failed", fields={'is_active': 'must be true or false'})

    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()
    return jsonify(page_envelope([u.to_dict() for u in users], total, page, limit)), 200


@admin_bp.route('/api/admin/users/<int:user_id>/status', methods=['PATCH'])
@jwt_required()
def update_user_status(user_id):
    """ Activates or deactivates an account. Inactive users get no matches. """
    admin = require_admin()
    data = request.get_json(silent=True) or {}

    if not isinstance(data.get('is_active'), bool):
        raise ValidationError("is_active must be a boolean", fields={'is_active': 'must be a boolean'})

    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('User not found')

    user.is_active = data['is_active']
    db.session.commit()

    state = 'activated' if user.is_active else 'deactivated'
    log_activity(db.session, admin.id, "USER_STATUS", f"User {user.email} {state}")
    return jsonify({
        'message': f'User {state} successfully',
        'user': user.to_dict()
    }), 200


@admin_bp.route('/api/admin/logs', methods=['GET'])
@jwt_required()
def audit_logs():
    """ Recent audit trail: claims, cancellations, expiries. """
    require_admin()
    page, limit = _page_args(default_limit=50)

    query = AuditLog.query
    if request.args.get('action'):
        query = query.filter(AuditLog.action == request.args['action'])

    total = query.count()
    logs = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()
    return jsonify(page_envelope([log.to_dict() for log in logs], total, page, limit)), 200


@admin_bp.route('/api/admin/users/<int:user_id>', methods=['GET'])
@jwt_required()
def user_detail(user_id):
    """ One account with its latest donations and claims. """
    require_admin()
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('User not found')

    service = build_donation_service()
    now = utcnow()
    donated, _ = service.list_donations(ListingFilter(donor_id=user.id, limit=10))
    claimed, _ = service.list_donations(ListingFilter(recipient_id=user.id, sort_by='claimed_at', limit=10))
    return jsonify({
        'user': user.to_dict(),
        'donations': [d.to_dict(now) for d, _ in donated],
        'claimed_donations': [d.to_dict(now) for d, _ in claimed],
    }), 200


@admin_bp.route('/api/admin/donations', methods=['GET'])
@jwt_required()
def list_all_donations():
    """ Every donation, with donor and recipient contact details. """
    require_admin()
    listing = parse_listing_filter(request.args, max_limit=100,
                                   donor_id=_id_arg('donor'), recipient_id=_id_arg('recipient'))

    matches, total = build_donation_service().list_donations(listing)
    now = utcnow()
    items = [d.to_admin_dict(now) for d, _ in matches]
    return jsonify(page_envelope(items, total, listing.page, listing.limit)), 200


@admin_bp.route('/api/admin/donations/<int:donation_id>', methods=['GET'])
@jwt_required()
def donation_detail(donation_id):
    require_admin()
    donation = build_donation_service().get_donation(donation_id)
    return jsonify({'donation': donation.to_admin_dict(utcnow())}), 200


@admin_bp.route('/api/admin/reminders/pickup', methods=['POST'])
@jwt_required()
def send_pickup_reminders():
    """ Runs the daily pickup reminder now. """
    admin = require_admin()
    count = remind_upcoming_pickups(db.session, notifier, utcnow())
    log_activity(db.session, admin.id, "PICKUP_REMINDERS", f"Sent {count} pickup reminder(s)")
    return jsonify({'message': f'Sent {count} pickup reminder(s)', 'count': count}), 200
