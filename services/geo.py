"""
Great-circle distance and the "within radius" index over lon/lat columns.

Queries first narrow candidates with a bounding box the database can use an
index for, then apply the exact haversine check in Python. The radius bound is
inclusive and results come back nearest-first.
"""
from dataclasses import dataclass
from math import asin, atan2, cos, degrees, radians, sin, sqrt
from typing import Any, NamedTuple

EARTH_RADIUS_MILES = 3959.0

# Slack added to the bounding box so rounding never drops a boundary point
_BOX_PAD_DEGREES = 1e-6


@dataclass(frozen=True)
class GeoPoint:
    lon: float
    lat: float

    def __post_init__(self):
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"longitude {self.lon} out of range [-180, 180]")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude {self.lat} out of range [-90, 90]")


class Match(NamedTuple):
    entity: Any
    distance_miles: float


def haversine_miles(lat1, lon1, lat2, lon2, radius=EARTH_RADIUS_MILES):
    d_lat = radians(lat2 - lat1)
    d_lon = radians(lon2 - lon1)
    a = (
        sin(d_lat / 2) ** 2
        + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lon / 2) ** 2
    )
    return 2 * radius * atan2(sqrt(a), sqrt(1 - a))


def distance_between(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_miles(a.lat, a.lon, b.lat, b.lon)


def bounding_box(point: GeoPoint, radius_miles: float):
    """
    (min_lat, max_lat, min_lon, max_lon) enclosing every point within
    radius_miles. min_lon/max_lon are None when the box wraps a pole or the
    antimeridian and longitude cannot be used to narrow the search.
    """
    angular = radius_miles / EARTH_RADIUS_MILES
    d_lat = degrees(angular) + _BOX_PAD_DEGREES
    min_lat, max_lat = point.lat - d_lat, point.lat + d_lat

    if min_lat <= -90.0 or max_lat >= 90.0:
        return max(min_lat, -90.0), min(max_lat, 90.0), None, None

    ratio = sin(angular) / cos(radians(point.lat))
    if ratio >= 1.0:
        return min_lat, max_lat, None, None

    d_lon = degrees(asin(ratio)) + _BOX_PAD_DEGREES
    min_lon, max_lon = point.lon - d_lon, point.lon + d_lon
    if min_lon < -180.0 or max_lon > 180.0:
        return min_lat, max_lat, None, None
    return min_lat, max_lat, min_lon, max_lon


class GeoIndex:
    """ Radius queries over any mapped model with `longitude`/`latitude` columns. """

    def __init__(self, session):
        self.session = session

    def find_nearby(self, model, point, radius_miles, criteria=(), predicate=None, limit=None):
        """
        Entities of `model` within `radius_miles` of `point`.

        `criteria` are SQL clauses ANDed into the query (role, status, ...);
        `predicate` is an optional Python filter applied to each candidate.
        Returns a list of Match(entity, distance_miles), nearest first, at most
        `limit` long.
        """
        if radius_miles < 0:
            raise ValueError("radius must be non-negative")

        min_lat, max_lat, min_lon, max_lon = bounding_box(point, radius_miles)
        query = self.session.query(model).filter(
            model.latitude.isnot(None),
            model.longitude.isnot(None),
            model.latitude >= min_lat,
            model.latitude <= max_lat,
            *criteria,
        )
        if min_lon is not None:
            query = query.filter(model.longitude >= min_lon, model.longitude <= max_lon)

        matches = []
        for entity in query:
            distance = haversine_miles(point.lat, point.lon, entity.latitude, entity.longitude)
            if distance > radius_miles:
                continue
            if predicate is not None and not predicate(entity):
                continue
            matches.append(Match(entity, distance))

        matches.sort(key=lambda m: m.distance_miles)
        if limit is not None:
            return matches[:limit]
        return matches
