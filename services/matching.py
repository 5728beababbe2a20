from models import Donation, User
from services.geo import GeoIndex, GeoPoint

DEFAULT_RADIUS_MILES = 50.0
DEFAULT_RECIPIENT_LIMIT = 50


class MatchingService:
    """
    Proximity matching between donations and recipients.

    New donations fan out to at most `recipient_limit` recipients: the
    nearest eligible ones, never an arbitrary subset.
    """

    def __init__(self, geo_index: GeoIndex, radius_miles=DEFAULT_RADIUS_MILES,
                 recipient_limit=DEFAULT_RECIPIENT_LIMIT):
        self.geo = geo_index
        self.radius_miles = radius_miles
        self.recipient_limit = recipient_limit

    @staticmethod
    def eligible_recipient_criteria():
        return (
            User.role == 'recipient',
            User.is_active.is_(True),
            User.email_notifications.is_(True),
        )

    def recipients_for(self, donation):
        """ Nearest opted-in recipients for a freshly posted donation, with distances. """
        point = GeoPoint(lon=donation.longitude, lat=donation.latitude)
        matches = self.geo.find_nearby(
            User, point, self.radius_miles,
            criteria=self.eligible_recipient_criteria(),
        )
        # Respect each recipient's own travel preference before capping
        matches = [m for m in matches
                   if m.entity.max_distance_miles is None or m.distance_miles <= m.entity.max_distance_miles]
        return matches[:self.recipient_limit]

    def nearby_recipients(self, point, radius_miles):
        """ Active recipients around a point, for donors scouting an area. """
        return self.geo.find_nearby(
            User, point, radius_miles,
            criteria=(User.role == 'recipient', User.is_active.is_(True)),
            limit=self.recipient_limit,
        )

    def donations_near(self, point, radius_miles, criteria=(), limit=None):
        """ Nearest-first; `limit` bounds how many rows a feed page can pull. """
        return self.geo.find_nearby(Donation, point, radius_miles, criteria=criteria, limit=limit)
