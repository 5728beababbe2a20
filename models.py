from datetime import datetime, timezone
from extensions import db


def utcnow():
    """ Naive UTC 'now'. Every timestamp in the database is naive UTC. """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


# --- STATUSES ---
AVAILABLE = 'available'
CLAIMED = 'claimed'
PICKED_UP = 'picked-up'
COMPLETED = 'completed'
EXPIRED = 'expired'
CANCELLED = 'cancelled'

DONATION_STATUSES = (AVAILABLE, CLAIMED, PICKED_UP, COMPLETED, EXPIRED, CANCELLED)

# --- ENUMS ---
FOOD_TYPES = ('fresh', 'canned', 'frozen', 'baked', 'dairy', 'produce', 'meat', 'pantry', 'other')
QUANTITY_UNITS = ('pounds', 'kilograms', 'servings', 'items', 'boxes', 'containers')
ALLERGENS = ('nuts', 'dairy', 'gluten', 'soy', 'eggs', 'shellfish', 'wheat', 'fish', 'none')
USER_ROLES = ('donor', 'recipient', 'admin')


# ==========================================
#  1. USER MODEL
# ==========================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    first_name = db.Column(db.String(60), nullable=False)
    last_name = db.Column(db.String(60), nullable=False)
    organization = db.Column(db.String(150), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='donor')

    # --- LOCATION ---
    address = db.Column(db.String(255), nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    latitude = db.Column(db.Float, nullable=True)

    # --- PREFERENCES ---
    email_notifications = db.Column(db.Boolean, nullable=False, default=True)
    max_distance_miles = db.Column(db.Float, nullable=False, default=50.0)

    # --- STATUS ---
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    donations = db.relationship('Donation', backref='donor', lazy=True,
                                foreign_keys='Donation.donor_id')
    claims = db.relationship('Donation', backref='recipient', lazy=True,
                             foreign_keys='Donation.claimed_by_id')

    __table_args__ = (
        db.Index('idx_users_role_location', 'role', 'latitude', 'longitude'),
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self):
        return self.role == 'admin'

    def public_profile(self):
        """ What other users are allowed to see. No email, no preferences. """
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'organization': self.organization,
            'role': self.role,
        }

    def contact_card(self):
        """ Public profile plus the contact details admins need. """
        return {**self.public_profile(), 'email': self.email, 'phone': self.phone}

    def to_dict(self):
        return {
            **self.public_profile(),
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'location': [self.longitude, self.latitude] if self.latitude is not None else None,
            'email_notifications': self.email_notifications,
            'max_distance_miles': self.max_distance_miles,
            'is_active': self.is_active,
            'is_verified': self.is_verified,
            'created_at': _iso(self.created_at),
        }


# ==========================================
#  2. DONATION MODEL
# ==========================================
class Donation(db.Model):
    __tablename__ = 'donations'

    id = db.Column(db.Integer, primary_key=True)
    donor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    food_type = db.Column(db.String(20), nullable=False)

    # --- QUANTITY ---
    quantity_amount = db.Column(db.Float, nullable=False)
    quantity_unit = db.Column(db.String(20), nullable=False)

    allergens = db.Column(db.JSON, nullable=False, default=list)
    tags = db.Column(db.JSON, nullable=False, default=list)

    # --- DATES ---
    preparation_date = db.Column(db.DateTime, nullable=False)
    expiry_date = db.Column(db.DateTime, nullable=False)
    pickup_start = db.Column(db.DateTime, nullable=False)
    pickup_end = db.Column(db.DateTime, nullable=False)

    # --- LOCATION ---
    street = db.Column(db.String(150), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(100), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    country = db.Column(db.String(60), nullable=False, default='USA')
    pickup_instructions = db.Column(db.String(200), nullable=True)
    longitude = db.Column(db.Float, nullable=False)
    latitude = db.Column(db.Float, nullable=False)

    # --- LIFECYCLE ---
    status = db.Column(db.String(20), nullable=False, default=AVAILABLE)
    claimed_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    pickup_time = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    is_urgent = db.Column(db.Boolean, nullable=False, default=False)
    special_instructions = db.Column(db.String(300), nullable=True)
    image_url = db.Column(db.String(500), nullable=True)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.Index('idx_donations_status_expiry', 'status', 'expiry_date'),
        db.Index('idx_donations_status_pickup', 'status', 'pickup_start'),
        db.Index('idx_donations_donor_status', 'donor_id', 'status'),
        db.Index('idx_donations_recipient', 'claimed_by_id'),
        db.Index('idx_donations_location', 'latitude', 'longitude'),
    )

    @property
    def address_dict(self):
        return {
            'street': self.street,
            'city': self.city,
            'state': self.state,
            'zip_code': self.zip_code,
            'country': self.country,
        }

    def pickup_window_status(self, now):
        if now < self.pickup_start:
            return 'upcoming'
        if now <= self.pickup_end:
            return 'active'
        return 'closed'

    def to_dict(self, now=None, status=None, distance_miles=None):
        """
        Serializes the donation. `status` lets callers pass the effective
        (lazily expired) status instead of the stored one.
        """
        now = now or utcnow()
        claim = None
        if self.claimed_by_id is not None:
            claim = {
                'recipient_id': self.claimed_by_id,
                'claimed_at': _iso(self.claimed_at),
                'pickup_time': _iso(self.pickup_time),
                'completed_at': _iso(self.completed_at),
            }

        return {
            'id': self.id,
            'donor_id': self.donor_id,
            'donor': self.donor.public_profile() if self.donor else None,
            'title': self.title,
            'description': self.description,
            'food_type': self.food_type,
            'quantity': {'amount': self.quantity_amount, 'unit': self.quantity_unit},
            'allergens': list(self.allergens or []),
            'tags': list(self.tags or []),
            'preparation_date': _iso(self.preparation_date),
            'expiry_date': _iso(self.expiry_date),
            'pickup_window': {
                'start': _iso(self.pickup_start),
                'end': _iso(self.pickup_end),
                'status': self.pickup_window_status(now),
            },
            'location': {
                'address': self.address_dict,
                'coordinates': [self.longitude, self.latitude],
                'instructions': self.pickup_instructions,
            },
            'status': status or self.status,
            'claim': claim,
            'is_urgent': self.is_urgent,
            'special_instructions': self.special_instructions,
            'image_url': self.image_url,
            'distance_miles': round(distance_miles, 2) if distance_miles is not None else None,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def to_admin_dict(self, now=None, status=None):
        data = self.to_dict(now=now, status=status)
        data['donor_contact'] = self.donor.contact_card() if self.donor else None
        data['recipient_contact'] = self.recipient.contact_card() if self.recipient else None
        return data


# ==========================================
#  3. AUDIT LOG MODEL
# ==========================================
class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    details = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', backref='logs')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'action': self.action,
            'details': self.details,
            'timestamp': _iso(self.timestamp),
        }
