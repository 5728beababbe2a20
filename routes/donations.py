from flask import Blueprint, current_app, request, jsonify
from flask_jwt_extended import jwt_required

from extensions import db, notifier, geocoder
from models import utcnow
from services.claims import ClaimCoordinator
from services.donations import DonationService
from services.geo import GeoIndex
from services.matching import MatchingService
from services.validation import parse_listing_filter
from utils import get_current_user, page_envelope

donations_bp = Blueprint('donations', __name__)


def build_matcher():
    return MatchingService(
        GeoIndex(db.session),
        radius_miles=current_app.config['MATCH_RADIUS_MILES'],
        recipient_limit=current_app.config['MATCH_RECIPIENT_LIMIT'],
    )


def build_donation_service():
    return DonationService(db.session, notifier, build_matcher(), geocode=geocoder,
                           geo_cap=current_app.config['LISTING_GEO_CAP'])


def build_claim_coordinator():
    return ClaimCoordinator(db.session, notifier)


def serialize_page(matches, total, listing):
    now = utcnow()
    items = [donation.to_dict(now, distance_miles=distance) for donation, distance in matches]
    return page_envelope(items, total, listing.page, listing.limit)


# ==========================================
#  1. CREATE DONATION
# ==========================================
@donations_bp.route('/api/donations', methods=['POST'])
@jwt_required()
def create_donation():
    donor = get_current_user(db.session)
    data = request.get_json(silent=True)

    donation = build_donation_service().create_donation(donor, data)
    current_app.logger.info("Donation %s posted by user %s", donation.id, donor.id)

    return jsonify({
        'message': 'Donation created successfully',
        'donation': donation.to_dict()
    }), 201


# ==========================================
#  2. LIST DONATIONS (Feed)
# ==========================================
@donations_bp.route('/api/donations', methods=['GET'])
def list_donations():
    """
    Paginated feed. With latitude/longitude only donations inside
    max_distance (miles, default 50) come back, nearest first.
    """
    listing = parse_listing_filter(request.args, max_limit=current_app.config['LISTING_MAX_LIMIT'])
    matches, total = build_donation_service().list_donations(listing)
    return jsonify(serialize_page(matches, total, listing)), 200


# ==========================================
#  3. GET SINGLE DONATION
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>', methods=['GET'])
def get_donation(donation_id):
    donation = build_donation_service().get_donation(donation_id)
    return jsonify({'donation': donation.to_dict()}), 200


# ==========================================
#  4. UPDATE / DELETE DONATION
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>', methods=['PUT'])
@jwt_required()
def update_donation(donation_id):
    user = get_current_user(db.session)
    data = request.get_json(silent=True)

    donation = build_donation_service().update_donation(user, donation_id, data)
    return jsonify({
        'message': 'Donation updated successfully',
        'donation': donation.to_dict()
    }), 200


@donations_bp.route('/api/donations/<int:donation_id>', methods=['DELETE'])
@jwt_required()
def delete_donation(donation_id):
    user = get_current_user(db.session)
    build_donation_service().delete_donation(user, donation_id)
    return jsonify({'message': 'Donation deleted successfully'}), 200


# ==========================================
#  5. LIFECYCLE TRANSITIONS
# ==========================================
@donations_bp.route('/api/donations/<int:donation_id>/claim', methods=['POST'])
@jwt_required()
def claim_donation(donation_id):
    recipient = get_current_user(db.session)
    donation = build_claim_coordinator().claim(donation_id, recipient)
    current_app.logger.info("Donation %s claimed by user %s", donation.id, recipient.id)

    return jsonify({
        'message': 'Donation claimed successfully',
        'donation': donation.to_dict()
    }), 200


@donations_bp.route('/api/donations/<int:donation_id>/pickup', methods=['POST'])
@jwt_required()
def pickup_donation(donation_id):
    recipient = get_current_user(db.session)
    donation = build_claim_coordinator().mark_picked_up(donation_id, recipient)
    return jsonify({
        'message': 'Donation marked as picked up',
        'donation': donation.to_dict()
    }), 200


@donations_bp.route('/api/donations/<int:donation_id>/complete', methods=['POST'])
@jwt_required()
def complete_donation(donation_id):
    recipient = get_current_user(db.session)
    donation = build_claim_coordinator().mark_completed(donation_id, recipient)
    return jsonify({
        'message': 'Donation marked as completed',
        'donation': donation.to_dict()
    }), 200


@donations_bp.route('/api/donations/<int:donation_id>/cancel', methods=['POST'])
@jwt_required()
def cancel_donation(donation_id):
    user = get_current_user(db.session)
    build_claim_coordinator().cancel(donation_id, user)
    return jsonify({'message': 'Donation cancelled'}), 200
