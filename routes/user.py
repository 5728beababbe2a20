from flask import Blueprint, current_app, request, jsonify
from flask_jwt_extended import jwt_required

from errors import Forbidden, ValidationError
from extensions import db, geocoder
from routes.donations import build_donation_service, build_matcher, serialize_page
from services.geo import GeoPoint
from services.validation import DEFAULT_RADIUS_MILES, parse_bool, parse_listing_filter, parse_number
from utils import get_current_user

user_bp = Blueprint('user', __name__)


@user_bp.route('/api/users/location', methods=['PUT'])
@jwt_required()
def update_location():
    """
    Sets the caller's location, either from latitude/longitude or by
    geocoding a free-text address.
    """
    user = get_current_user(db.session)
    data = request.get_json(silent=True) or {}

    if data.get('latitude') is not None or data.get('longitude') is not None:
        try:
            point = GeoPoint(lon=parse_number(data.get('longitude')), lat=parse_number(data.get('latitude')))
        except (TypeError, ValueError) as e:
            raise ValidationError("Validation failed", fields={'location': str(e)})
    elif data.get('address'):
        point = geocoder(data['address'])
        if point is None:
            raise ValidationError("Validation failed", fields={'address': 'Address could not be geocoded'})
        user.address = data['address'] if isinstance(data['address'], str) else None
    else:
        raise ValidationError("Validation failed", fields={'location': 'latitude/longitude or address is required'})

    user.longitude, user.latitude = point.lon, point.lat
    db.session.commit()

    return jsonify({
        'message': 'Location updated successfully',
        'location': [user.longitude, user.latitude]
    }), 200


@user_bp.route('/api/users/preferences', methods=['PUT'])
@jwt_required()
def update_preferences():
    user = get_current_user(db.session)
    data = request.get_json(silent=True) or {}
    errors = {}

    if 'email_notifications' in data:
        try:
            user.email_notifications = parse_bool(data['email_notifications'])
        except ValueError:
            errors['email_notifications'] = 'Email notifications must be a boolean'

    if 'max_distance_miles' in data:
        try:
            distance = parse_number(data['max_distance_miles'])
            if not 1 <= distance <= 100:
                raise ValueError
            user.max_distance_miles = distance
        except (TypeError, ValueError):
            errors['max_distance_miles'] = 'Max distance must be between 1 and 100 miles'

    if errors:
        db.session.rollback()
        raise ValidationError("Validation failed", fields=errors)

    db.session.commit()
    return jsonify({'message': 'Preferences updated successfully', 'user': user.to_dict()}), 200


@user_bp.route('/api/users/donations', methods=['GET'])
@jwt_required()
def my_donations():
    """ The donor's own posts, newest first. """
    user = get_current_user(db.session)
    listing = parse_listing_filter(request.args, max_limit=current_app.config['LISTING_MAX_LIMIT'],
                                   donor_id=user.id)
    matches, total = build_donation_service().list_donations(listing)
    return jsonify(serialize_page(matches, total, listing)), 200


@user_bp.route('/api/users/claimed-donations', methods=['GET'])
@jwt_required()
def my_claimed_donations():
    """ Donations the recipient has claimed, most recent claim first. """
    user = get_current_user(db.session)
    args = request.args.to_dict()
    args.setdefault('sort_by', 'claimed_at')
    listing = parse_listing_filter(args, max_limit=current_app.config['LISTING_MAX_LIMIT'],
                                   recipient_id=user.id)
    matches, total = build_donation_service().list_donations(listing)
    return jsonify(serialize_page(matches, total, listing)), 200


@user_bp.route('/api/users/nearby-recipients', methods=['GET'])
@jwt_required()
def nearby_recipients():
    user = get_current_user(db.session)
    if user.role not in ('donor', 'admin'):
        raise Forbidden('Only donors can look up nearby recipients.')

    try:
        point = GeoPoint(lon=parse_number(request.args.get('longitude')),
                         lat=parse_number(request.args.get('latitude')))
    except (TypeError, ValueError):
        raise ValidationError("Latitude and longitude are required",
                              fields={'location': 'latitude and longitude are required'})
    try:
        radius = parse_number(request.args.get('max_distance', DEFAULT_RADIUS_MILES))
        if radius <= 0:
            raise ValueError
    except (TypeError, ValueError):
        raise ValidationError("Validation failed", fields={'max_distance': 'must be a positive number'})

    matches = build_matcher().nearby_recipients(point, radius)

    return jsonify({
        'recipients': [
            {**m.entity.public_profile(), 'distance_miles': round(m.distance_miles, 2)}
            for m in matches
        ]
    }), 200
