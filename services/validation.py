"""
Payload and query-string validation.

Validation collects every problem it finds into a {field: message} map and
raises a single ValidationError, so nothing is written unless the whole payload
is acceptable.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from math import isfinite
from typing import Optional

from errors import ValidationError
from models import ALLERGENS, DONATION_STATUSES, FOOD_TYPES, QUANTITY_UNITS
from services.geo import GeoPoint

ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code')

# sort_by -> Donation attribute name
SORT_FIELDS = {
    'created_at': 'created_at',
    'expiry_date': 'expiry_date',
    'pickup_start': 'pickup_start',
    'claimed_at': 'claimed_at',
    'quantity': 'quantity_amount',
    'title': 'title',
    'distance': None,
}

DEFAULT_RADIUS_MILES = 50.0


def parse_datetime(value):
    """ ISO-8601 -> naive UTC datetime. Aware values are converted to UTC. """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    else:
        raise ValueError('expected an ISO-8601 timestamp')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_number(value):
    if isinstance(value, bool):
        raise ValueError('expected a number')
    number = float(value)
    if not isfinite(number):
        raise ValueError('expected a finite number')
    return number


def parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', '1', 'yes'):
        return True
    if isinstance(value, str) and value.lower() in ('false', '0', 'no'):
        return False
    raise ValueError('expected a boolean')


def parse_coordinates(value):
    """ [lon, lat] -> GeoPoint """
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError('Coordinates must be an array with 2 elements [longitude, latitude]')
    lon, lat = (parse_number(v) for v in value)
    return GeoPoint(lon=lon, lat=lat)


def _text(errors, cleaned, data, key, max_len, required, target=None, label=None):
    target = target or key
    label = label or key
    if key not in data or data[key] is None:
        if required:
            errors[label] = f"{label} is required"
        return
    value = data[key]
    if not isinstance(value, str):
        errors[label] = f"{label} must be a string"
        return
    value = value.strip()
    if required and not value:
        errors[label] = f"{label} cannot be empty"
    elif len(value) > max_len:
        errors[label] = f"{label} must be at most {max_len} characters"
    else:
        cleaned[target] = value


def _string_list(errors, cleaned, data, key, allowed=None):
    if key not in data:
        return
    values = data[key]
    if values is None:
        cleaned[key] = []
        return
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        errors[key] = f"{key} must be a list of strings"
        return
    values = [v.strip() for v in values if v.strip()]
    if allowed is not None:
        bad = sorted(set(v for v in values if v not in allowed))
        if bad:
            errors[key] = f"Invalid {key}: {', '.join(bad)}"
            return
    # set semantics, first occurrence wins
    cleaned[key] = list(dict.fromkeys(values))


def _datetime(errors, cleaned, data, key, target, label, required):
    if key not in data or data[key] is None:
        if required:
            errors[label] = f"{label} is required"
        return
    try:
        cleaned[target] = parse_datetime(data[key])
    except (TypeError, ValueError):
        errors[label] = f"Invalid {label.replace('_', ' ')}"


def _quantity(errors, cleaned, data, required):
    if 'quantity' not in data:
        if required:
            errors['quantity'] = "quantity is required"
        return
    quantity = data['quantity']
    if not isinstance(quantity, dict):
        errors['quantity'] = "quantity must be an object {amount, unit}"
        return
    try:
        amount = parse_number(quantity.get('amount'))
    except (TypeError, ValueError):
        errors['quantity.amount'] = "Quantity amount must be a number"
    else:
        if amount <= 0:
            errors['quantity.amount'] = "Quantity amount must be greater than 0"
        else:
            cleaned['quantity_amount'] = amount
    unit = quantity.get('unit')
    if unit not in QUANTITY_UNITS:
        errors['quantity.unit'] = "Invalid quantity unit"
    else:
        cleaned['quantity_unit'] = unit


def _pickup_window(errors, cleaned, data, required):
    if 'pickup_window' not in data:
        if required:
            errors['pickup_window'] = "pickup_window is required"
        return
    window = data['pickup_window']
    if not isinstance(window, dict):
        errors['pickup_window'] = "pickup_window must be an object {start, end}"
        return
    _datetime(errors, cleaned, window, 'start', 'pickup_start', 'pickup_window.start', True)
    _datetime(errors, cleaned, window, 'end', 'pickup_end', 'pickup_window.end', True)


def _location(errors, cleaned, data, required):
    if 'location' not in data:
        if required:
            errors['location'] = "location is required"
        return
    location = data['location']
    if not isinstance(location, dict):
        errors['location'] = "location must be an object {address, coordinates}"
        return

    address = location.get('address')
    if address is not None and not isinstance(address, dict):
        errors['location.address'] = "address must be an object"
    elif address is not None:
        for field in ADDRESS_FIELDS:
            _text(errors, cleaned, address, field, 150, True, label=f"location.address.{field}")
        _text(errors, cleaned, address, 'country', 60, False, label='location.address.country')
    elif location.get('coordinates') is None:
        errors['location.address'] = "An address or coordinates are required"

    _text(errors, cleaned, location, 'instructions', 200, False,
          target='pickup_instructions', label='location.instructions')

    if location.get('coordinates') is not None:
        try:
            point = parse_coordinates(location['coordinates'])
        except (TypeError, ValueError) as e:
            errors['location.coordinates'] = str(e)
        else:
            cleaned['longitude'] = point.lon
            cleaned['latitude'] = point.lat


def validate_donation_payload(data, partial=False, current=None):
    """
    Returns the cleaned column values for a donation payload.

    With partial=True (edits) missing fields are left alone, and the
    cross-field invariants are checked against `current` values.
    Raises ValidationError listing every problem.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    required = not partial
    errors = {}
    cleaned = {}

    _text(errors, cleaned, data, 'title', 100, required or 'title' in data)
    _text(errors, cleaned, data, 'description', 500, required or 'description' in data)

    if 'food_type' in data or required:
        if data.get('food_type') not in FOOD_TYPES:
            errors['food_type'] = "Invalid food type"
        else:
            cleaned['food_type'] = data['food_type']

    _quantity(errors, cleaned, data, required)
    _string_list(errors, cleaned, data, 'allergens', ALLERGENS)
    _string_list(errors, cleaned, data, 'tags')
    _datetime(errors, cleaned, data, 'preparation_date', 'preparation_date', 'preparation_date', required)
    _datetime(errors, cleaned, data, 'expiry_date', 'expiry_date', 'expiry_date', required)
    _pickup_window(errors, cleaned, data, required)
    _location(errors, cleaned, data, required)

    if 'is_urgent' in data:
        try:
            cleaned['is_urgent'] = parse_bool(data['is_urgent'])
        except ValueError as e:
            errors['is_urgent'] = str(e)

    _text(errors, cleaned, data, 'special_instructions', 300, False)
    _text(errors, cleaned, data, 'image_url', 500, False)

    # --- CROSS-FIELD INVARIANTS ---
    def merged(key):
        if key in cleaned:
            return cleaned[key]
        return getattr(current, key, None) if current is not None else None

    prepared, expires = merged('preparation_date'), merged('expiry_date')
    if prepared and expires and expires <= prepared and 'expiry_date' not in errors:
        errors['expiry_date'] = "Expiry date must be after the preparation date"

    start, end = merged('pickup_start'), merged('pickup_end')
    if start and end and start >= end and 'pickup_window.start' not in errors:
        errors['pickup_window'] = "Pickup window start must be before its end"

    if errors:
        raise ValidationError("Validation failed", fields=errors)
    return cleaned


# ==========================================
#  LISTING FILTER
# ==========================================
@dataclass
class ListingFilter:
    status: Optional[str] = None
    food_type: Optional[str] = None
    point: Optional[GeoPoint] = None
    radius_miles: Optional[float] = None
    is_urgent: Optional[bool] = None
    donor_id: Optional[int] = None
    recipient_id: Optional[int] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    page: int = 1
    limit: int = 10
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None


def parse_listing_filter(args, max_limit=100, **fixed):
    """ Query-string args -> ListingFilter. `fixed` pins fields such as donor_id. """
    errors = {}
    listing = ListingFilter(**fixed)

    status = args.get('status')
    if status:
        if status not in DONATION_STATUSES:
            errors['status'] = f"Invalid status. Must be one of: {', '.join(DONATION_STATUSES)}"
        listing.status = status

    food_type = args.get('food_type')
    if food_type:
        if food_type not in FOOD_TYPES:
            errors['food_type'] = "Invalid food type"
        listing.food_type = food_type

    if args.get('is_urgent') not in (None, ''):
        try:
            listing.is_urgent = parse_bool(args.get('is_urgent'))
        except ValueError:
            errors['is_urgent'] = "is_urgent must be true or false"

    lat, lon = args.get('latitude'), args.get('longitude')
    if lat not in (None, '') or lon not in (None, ''):
        try:
            listing.point = GeoPoint(lon=parse_number(lon), lat=parse_number(lat))
        except (TypeError, ValueError):
            errors['location'] = "latitude and longitude must both be valid coordinates"
        try:
            radius = parse_number(args.get('max_distance', DEFAULT_RADIUS_MILES))
            if radius <= 0:
                raise ValueError
            listing.radius_miles = radius
        except (TypeError, ValueError):
            errors['max_distance'] = "max_distance must be a positive number of miles"
    elif args.get('max_distance') not in (None, ''):
        errors['max_distance'] = "max_distance requires latitude and longitude"

    for key, attr in (('date_from', 'created_from'), ('date_to', 'created_to')):
        if args.get(key) not in (None, ''):
            try:
                setattr(listing, attr, parse_datetime(args[key]))
            except (TypeError, ValueError):
                errors[key] = f"Invalid {key.replace('_', ' ')}"
    if listing.created_from and listing.created_to and listing.created_from > listing.created_to:
        errors['date_to'] = "date_to must not be before date_from"

    try:
        listing.page = int(args.get('page', 1))
        if listing.page < 1:
            raise ValueError
    except (TypeError, ValueError):
        errors['page'] = "page must be a positive integer"

    try:
        listing.limit = int(args.get('limit', 10))
        if not 1 <= listing.limit <= max_limit:
            raise ValueError
    except (TypeError, ValueError):
        errors['limit'] = f"limit must be between 1 and {max_limit}"

    sort_by = args.get('sort_by')
    if sort_by:
        if sort_by not in SORT_FIELDS:
            errors['sort_by'] = f"sort_by must be one of: {', '.join(SORT_FIELDS)}"
        elif sort_by == 'distance' and listing.point is None and 'location' not in errors:
            errors['sort_by'] = "Sorting by distance requires latitude and longitude"
        listing.sort_by = sort_by

    sort_order = args.get('sort_order') or None
    if sort_order is not None and sort_order not in ('asc', 'desc'):
        errors['sort_order'] = "sort_order must be 'asc' or 'desc'"
    listing.sort_order = sort_order

    if errors:
        raise ValidationError("Invalid listing filter", fields=errors)
    return listing
