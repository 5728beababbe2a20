"""
Boundary operations on donations: create, edit, delete, read and list.

Claim-side transitions live in ClaimCoordinator; this service owns the donor's
side of the record and the read path (with lazy expiry).
"""
import logging

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError

from errors import Forbidden, InvalidTransition, ImmutableAfterClaim, NotFound, ValidationError
from models import AVAILABLE, Donation, utcnow
from services.expiry import expire_if_stale, sweep_expired
from services.transitions import DELETABLE_STATUSES, check_owner_or_admin, ensure_editable
from services.validation import SORT_FIELDS, validate_donation_payload
from utils import log_activity

logger = logging.getLogger(__name__)


class DonationService:

    def __init__(self, session, notifier, matcher, geocode=None, clock=utcnow, geo_cap=None):
        self.session = session
        self.notifier = notifier
        self.matcher = matcher
        self.geocode = geocode
        self.clock = clock
        self.geo_cap = geo_cap

    def _load(self, donation_id):
        donation = self.session.get(Donation, donation_id)
        if donation is None:
            raise NotFound('Donation not found')
        return donation

    def _resolve_coordinates(self, cleaned, payload):
        """ Fills longitude/latitude from the address when they were omitted. """
        if 'latitude' in cleaned:
            return
        location = payload.get('location') or {}
        address = location.get('address')
        if not address:
            return

        point = self.geocode(address) if self.geocode else None
        if point is None:
            raise ValidationError("Validation failed", fields={
                'location.coordinates': 'Coordinates are required and the address could not be geocoded',
            })
        cleaned['longitude'] = point.lon
        cleaned['latitude'] = point.lat

    # ==========================================
    #  CREATE
    # ==========================================
    def create_donation(self, donor, payload):
        if donor.role != 'donor':
            raise Forbidden('Only donors can post food.')
        if not donor.is_active:
            raise Forbidden('Your account has been deactivated.')

        cleaned = validate_donation_payload(payload)
        self._resolve_coordinates(cleaned, payload)

        now = self.clock()
        donation = Donation(donor_id=donor.id, status=AVAILABLE,
                            created_at=now, updated_at=now, **cleaned)
        self.session.add(donation)
        self.session.commit()

        log_activity(self.session, donor.id, "POST_DONATION",
                     f"Posted {donation.title} ({donation.quantity_amount} {donation.quantity_unit})")
        self._announce(donation, now)
        return donation

    def _announce(self, donation, now):
        """ Best-effort fan-out to the nearest opted-in recipients. """
        try:
            matches = self.matcher.recipients_for(donation)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Recipient matching failed for donation %s", donation.id)
            return

        data = donation.to_dict(now)
        payload = {
            'donation': data,
            'urgent': donation.is_urgent,
            'distances': {m.entity.id: m.distance_miles for m in matches},
            'broadcast': {'donation': data},
        }
        logger.info("Donation %s matched %d nearby recipient(s)", donation.id, len(matches))
        self.notifier.notify('new-donation', [m.entity for m in matches], payload)

    # ==========================================
    #  EDIT / DELETE (donor side, pre-claim)
    # ==========================================
    def update_donation(self, requester, donation_id, payload):
        donation = self._load(donation_id)
        if donation.donor_id != requester.id:
            raise Forbidden('Unauthorized. You did not post this.')

        now = self.clock()
        expire_if_stale(self.session, donation, now)
        ensure_editable(donation)

        cleaned = validate_donation_payload(payload, partial=True, current=donation)
        if 'location' in payload:
            self._resolve_coordinates(cleaned, payload)
        if not cleaned:
            return donation

        cleaned['updated_at'] = now
        result = self.session.execute(
            update(Donation)
            .where(Donation.id == donation.id, Donation.status == AVAILABLE)
            .values(**cleaned)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Claimed (or expired) between our read and this write
            self.session.rollback()
            raise ImmutableAfterClaim()
        self.session.commit()
        self.session.refresh(donation)

        log_activity(self.session, requester.id, "EDIT_DONATION", f"Edited {donation.title}")
        return donation

    def delete_donation(self, requester, donation_id):
        donation = self._load(donation_id)
        check_owner_or_admin(donation, requester, 'delete')
        expire_if_stale(self.session, donation, self.clock())

        if donation.status not in DELETABLE_STATUSES:
            raise InvalidTransition(donation.status, 'delete',
                                    f"Cannot delete a donation that is '{donation.status}'.")

        title, donor_id = donation.title, donation.donor_id
        result = self.session.execute(
            delete(Donation)
            .where(Donation.id == donation.id, Donation.status.in_(DELETABLE_STATUSES))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            self.session.refresh(donation)
            raise InvalidTransition(donation.status, 'delete')
        self.session.commit()
        self.session.expunge(donation)

        action = "ADMIN_DELETE" if requester.id != donor_id else "DELETE_DONATION"
        log_activity(self.session, requester.id, action, f"Deleted {title}")

    # ==========================================
    #  READ
    # ==========================================
    def get_donation(self, donation_id):
        """ Single donation with the lazy expiry already applied and persisted. """
        donation = self._load(donation_id)
        expire_if_stale(self.session, donation, self.clock())
        return donation

    def list_donations(self, listing):
        """
        Returns (matches, total) where matches is a list of
        (donation, distance_miles or None) for the requested page.
        """
        now = self.clock()
        sweep_expired(self.session, now)

        criteria = []
        if listing.status:
            criteria.append(Donation.status == listing.status)
        if listing.food_type:
            criteria.append(Donation.food_type == listing.food_type)
        if listing.is_urgent is not None:
            criteria.append(Donation.is_urgent.is_(listing.is_urgent))
        if listing.donor_id is not None:
            criteria.append(Donation.donor_id == listing.donor_id)
        if listing.recipient_id is not None:
            criteria.append(Donation.claimed_by_id == listing.recipient_id)
        if listing.created_from is not None:
            criteria.append(Donation.created_at >= listing.created_from)
        if listing.created_to is not None:
            criteria.append(Donation.created_at <= listing.created_to)

        offset = (listing.page - 1) * listing.limit
        descending = (listing.sort_order or 'desc') == 'desc'

        if listing.point is not None:
            matches = self.matcher.donations_near(listing.point, listing.radius_miles, criteria,
                                                  limit=self.geo_cap)
            if listing.sort_by and listing.sort_by != 'distance':
                attr = SORT_FIELDS[listing.sort_by]
                present = [m for m in matches if getattr(m.entity, attr) is not None]
                missing = [m for m in matches if getattr(m.entity, attr) is None]
                present.sort(key=lambda m: getattr(m.entity, attr), reverse=descending)
                matches = present + missing
            elif listing.sort_order == 'desc':
                matches = list(reversed(matches))
            # nearest-first unless asked otherwise
            page = matches[offset:offset + listing.limit]
            return [(m.entity, m.distance_miles) for m in page], len(matches)

        column = getattr(Donation, SORT_FIELDS[listing.sort_by or 'created_at'])
        order = column.desc() if descending else column.asc()
        query = self.session.query(Donation).filter(*criteria)
        total = query.count()
        rows = query.order_by(order, Donation.id.desc() if descending else Donation.id.asc()) \
            .offset(offset).limit(listing.limit).all()
        return [(d, None) for d in rows], total
