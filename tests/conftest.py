import sys
import os
import itertools
from datetime import timedelta

import pytest

# 1. Add the parent directory to Python's path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# 2. NOW import from app
from app import create_app
from extensions import db
from flask_jwt_extended import create_access_token
from models import Donation, User, utcnow

# Manhattan
NYC = (-74.0060, 40.7128)


class RecordingNotifier:
    """ Stands in for the dispatcher when a test only cares what was sent. """

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def notify(self, event, targets, payload):
        self.calls.append((event, list(targets), payload))
        if self.fail:
            raise RuntimeError("mail provider down")

    def events(self):
        return [event for event, _, _ in self.calls]


class Clock:
    """ Settable clock for driving the lifecycle through time. """

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "JWT_SECRET_KEY": "test-secret",
        "NOTIFICATIONS_ASYNC": False,
        "MAIL_SUPPRESS_SEND": True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock():
    return Clock(utcnow().replace(microsecond=0))


@pytest.fixture
def user_factory(app):
    counter = itertools.count(1)

    def _create(role='recipient', coords=NYC, **kwargs):
        n = next(counter)
        defaults = {
            "email": f"{role}{n}@test.com",
            "first_name": role.title(),
            "last_name": f"No{n}",
            "organization": f"{role.title()} Org {n}",
            "role": role,
            "longitude": coords[0] if coords else None,
            "latitude": coords[1] if coords else None,
            "is_verified": True,
        }
        defaults.update(kwargs)
        user = User(**defaults)
        db.session.add(user)
        db.session.commit()
        return user
    return _create


@pytest.fixture
def donor(user_factory):
    return user_factory('donor', organization="Pro Kitchen")


@pytest.fixture
def recipient(user_factory):
    return user_factory('recipient', organization="Save Lives Food Bank")


@pytest.fixture
def other_recipient(user_factory):
    return user_factory('recipient', organization="Second Shelter")


@pytest.fixture
def admin(user_factory):
    return user_factory('admin', coords=None)


@pytest.fixture
def headers_for(app):
    def _headers(user):
        token = create_access_token(identity=str(user.id))
        return {'Authorization': f'Bearer {token}'}
    return _headers


@pytest.fixture
def donation_factory(donor):
    """ Inserts a donation directly, bypassing validation. """
    def _create(**kwargs):
        now = utcnow()
        defaults = {
            "donor_id": donor.id,
            "title": "Jollof Rice",
            "description": "Hot and fresh",
            "food_type": "fresh",
            "quantity_amount": 10.0,
            "quantity_unit": "servings",
            "allergens": [],
            "tags": [],
            "preparation_date": now - timedelta(hours=2),
            "expiry_date": now + timedelta(days=1),
            "pickup_start": now - timedelta(hours=1),
            "pickup_end": now + timedelta(hours=6),
            "street": "1 Centre St",
            "city": "New York",
            "state": "NY",
            "zip_code": "10007",
            "longitude": NYC[0],
            "latitude": NYC[1],
            "status": "available",
        }
        defaults.update(kwargs)
        item = Donation(**defaults)
        db.session.add(item)
        db.session.commit()
        return item
    return _create


def make_payload(now=None, **overrides):
    """ A valid createDonation payload relative to `now`. """
    now = now or utcnow()
    payload = {
        "title": "Fresh Bread",
        "description": "50 loaves from this morning",
        "food_type": "baked",
        "quantity": {"amount": 20, "unit": "items"},
        "allergens": ["gluten", "wheat"],
        "preparation_date": (now - timedelta(hours=1)).isoformat(),
        "expiry_date": (now + timedelta(days=1)).isoformat(),
        "pickup_window": {
            "start": (now - timedelta(minutes=30)).isoformat(),
            "end": (now + timedelta(hours=6)).isoformat(),
        },
        "location": {
            "address": {"street": "1 Centre St", "city": "New York", "state": "NY", "zip_code": "10007"},
            "coordinates": list(NYC),
            "instructions": "Back door",
        },
        "is_urgent": False,
        "tags": ["bakery"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payload():
    return make_payload
