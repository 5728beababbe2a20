from functools import lru_cache
import logging

import requests

from services.geo import GeoPoint

logger = logging.getLogger(__name__)

NOMINATIM_BASE = "https://nominatim.openstreetmap.org"
USER_AGENT = "food-distribution-platform/1.0"


def format_address(address):
    """ {'street': .., 'city': ..} -> 'street, city, state, zip' """
    if isinstance(address, str):
        return address.strip()
    parts = [address.get(key) for key in ('street', 'city', 'state', 'zip_code', 'country')]
    return ', '.join(str(p).strip() for p in parts if p)


@lru_cache(maxsize=256)
def _lookup(query, base_url, user_agent, timeout):
    """
    One Nominatim search. Transport and decoding errors propagate so that
    lru_cache only keeps answers the service actually gave.
    """
    response = requests.get(
        f"{base_url}/search",
        params={"q": query, "format": "json", "limit": 1},
        headers={"User-Agent": user_agent},
        timeout=timeout,
    )
    response.raise_for_status()
    items = response.json()

    if not isinstance(items, list) or not items:
        return None
    item = items[0]
    try:
        return GeoPoint(lon=float(item["lon"]), lat=float(item["lat"]))
    except (KeyError, TypeError, ValueError):
        return None


def resolve_address_to_coordinates(query, base_url=NOMINATIM_BASE, user_agent=USER_AGENT, timeout=12):
    query = (query or "").strip()
    if not query:
        return None

    try:
        return _lookup(query, base_url, user_agent, timeout)
    except (requests.RequestException, ValueError) as e:
        # requests' JSONDecodeError is a ValueError
        logger.warning("Geocoding failed for %r: %s", query, e)
        return None


class Geocoder:
    """ address -> GeoPoint, configured from app.config. """

    def __init__(self):
        self.base_url = NOMINATIM_BASE
        self.user_agent = USER_AGENT
        self.timeout = 12

    def init_app(self, app):
        self.base_url = app.config.get('GEOCODER_URL', NOMINATIM_BASE)
        self.user_agent = app.config.get('GEOCODER_USER_AGENT', USER_AGENT)
        self.timeout = app.config.get('GEOCODER_TIMEOUT', 12)
        app.extensions['geocoder'] = self

    def __call__(self, address):
        return resolve_address_to_coordinates(
            format_address(address), self.base_url, self.user_agent, self.timeout
        )
