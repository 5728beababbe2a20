from types import SimpleNamespace

import pytest

from conftest import NYC
from extensions import db
from services.geo import EARTH_RADIUS_MILES, GeoIndex, GeoPoint
from services.matching import MatchingService

MILES_PER_DEGREE = EARTH_RADIUS_MILES * 3.141592653589793 / 180


def _at(miles_north):
    return (NYC[0], NYC[1] + miles_north / MILES_PER_DEGREE)


@pytest.fixture
def matcher(app):
    return MatchingService(GeoIndex(db.session), radius_miles=50, recipient_limit=50)


def _donation_at_nyc():
    return SimpleNamespace(longitude=NYC[0], latitude=NYC[1])


def test_fan_out_is_capped_to_the_nearest(app, matcher, user_factory):
    # 60 eligible recipients, 0.5 miles apart
    users = [user_factory('recipient', coords=_at(0.5 * (i + 1))) for i in range(60)]

    matches = matcher.recipients_for(_donation_at_nyc())

    assert len(matches) == 50
    assert [m.entity.id for m in matches] == [u.id for u in users[:50]]
    distances = [m.distance_miles for m in matches]
    assert distances == sorted(distances)


def test_only_eligible_recipients_match(app, matcher, user_factory):
    keep = user_factory('recipient', coords=_at(1))
    user_factory('recipient', coords=_at(1), is_active=False)
    user_factory('recipient', coords=_at(1), email_notifications=False)
    user_factory('donor', coords=_at(1))
    user_factory('admin', coords=_at(1))
    user_factory('recipient', coords=None)
    user_factory('recipient', coords=_at(51))

    matches = matcher.recipients_for(_donation_at_nyc())

    assert [m.entity.id for m in matches] == [keep.id]


def test_recipient_max_distance_is_honoured(app, matcher, user_factory):
    user_factory('recipient', coords=_at(12), max_distance_miles=10)
    willing = user_factory('recipient', coords=_at(12), max_distance_miles=25)

    matches = matcher.recipients_for(_donation_at_nyc())

    assert [m.entity.id for m in matches] == [willing.id]


def test_nearby_recipients_ignores_notification_opt_out(app, matcher, user_factory):
    quiet = user_factory('recipient', coords=_at(3), email_notifications=False)
    user_factory('recipient', coords=_at(3), is_active=False)

    matches = matcher.nearby_recipients(GeoPoint(lon=NYC[0], lat=NYC[1]), 5)

    assert [m.entity.id for m in matches] == [quiet.id]


def test_donations_near(app, matcher, donation_factory):
    lon, lat = _at(4)
    near = donation_factory(longitude=lon, latitude=lat)
    lon, lat = _at(40)
    donation_factory(longitude=lon, latitude=lat)

    matches = matcher.donations_near(GeoPoint(lon=NYC[0], lat=NYC[1]), 10)

    assert [m.entity.id for m in matches] == [near.id]
    assert matches[0].distance_miles == pytest.approx(4, rel=1e-6)


def test_donations_near_limit_keeps_the_nearest(app, matcher, donation_factory):
    ids = []
    for miles in (6, 2, 4):
        lon, lat = _at(miles)
        ids.append((miles, donation_factory(longitude=lon, latitude=lat).id))

    matches = matcher.donations_near(GeoPoint(lon=NYC[0], lat=NYC[1]), 10, limit=2)

    assert [m.entity.id for m in matches] == [i for _, i in sorted(ids)[:2]]
