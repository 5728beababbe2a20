"""
Claim coordination.

Every transition is a read-check-write where the write is a conditional
UPDATE keyed on the status that was read:

    UPDATE donations SET status = 'claimed', ...
     WHERE id = :id AND status = 'available'

If another request (or the expiry sweep) changed the row in between, zero rows
match and the loser gets AlreadyClaimed / NoLongerAvailable instead of
overwriting the winner. No in-process lock is involved, so this holds across
several app processes sharing one database.
"""
import logging

from sqlalchemy import update

from errors import AlreadyClaimed, Forbidden, InvalidTransition, NoLongerAvailable, NotFound
from models import (AVAILABLE, CANCELLED, CLAIMED, COMPLETED, EXPIRED, PICKED_UP,
                    Donation, utcnow)
from services.expiry import expire_if_stale
from services.transitions import (CANCEL, CLAIM, COMPLETE, PICKUP, check_claim_window,
                                  check_claimant, check_owner_or_admin, next_status)
from utils import log_activity

logger = logging.getLogger(__name__)


def ensure_claimable(donation):
    if donation.status in (CLAIMED, PICKED_UP, COMPLETED):
        raise AlreadyClaimed(donation.status)
    if donation.status in (EXPIRED, CANCELLED):
        raise NoLongerAvailable(donation.status)


class ClaimCoordinator:

    def __init__(self, session, notifier, clock=utcnow):
        self.session = session
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------
    #  helpers
    # ------------------------------------------
    def _load(self, donation_id, now):
        donation = self.session.get(Donation, donation_id)
        if donation is None:
            raise NotFound('Donation not found')
        expire_if_stale(self.session, donation, now)
        return donation

    def _conditional_write(self, donation, expected_status, values):
        """ True if the row still had `expected_status` and was updated. """
        result = self.session.execute(
            update(Donation)
            .where(Donation.id == donation.id, Donation.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.rollback()
            self.session.refresh(donation)
            return False
        self.session.commit()
        self.session.refresh(donation)
        return True

    @staticmethod
    def _require_active(user):
        if not user.is_active:
            raise Forbidden('Your account has been deactivated.')

    def _notify(self, event, targets, donation, now, **extra):
        payload = {'donation': donation.to_dict(now), 'urgent': donation.is_urgent, **extra}
        self.notifier.notify(event, targets, payload)

    # ------------------------------------------
    #  transitions
    # ------------------------------------------
    def claim(self, donation_id, recipient):
        """ available -> claimed, at most once per donation. """
        if recipient.role != 'recipient':
            raise Forbidden('Only recipients can claim donations.')
        self._require_active(recipient)

        now = self.clock()
        donation = self._load(donation_id, now)
        ensure_claimable(donation)
        check_claim_window(donation, now)
        new_status = next_status(donation.status, CLAIM)

        won = self._conditional_write(donation, AVAILABLE, {
            'status': new_status,
            'claimed_by_id': recipient.id,
            'claimed_at': now,
            'pickup_time': None,
            'completed_at': None,
            'updated_at': now,
        })
        if not won:
            logger.info("Claim race lost on donation %s by user %s", donation.id, recipient.id)
            ensure_claimable(donation)
            raise AlreadyClaimed(donation.status)

        log_activity(self.session, recipient.id, "CLAIM_ITEM", f"Claimed {donation.title}")

        profile = recipient.public_profile()
        self._notify('donation-claimed', [donation.donor], donation, now,
                     recipient=profile,
                     broadcast={'donation_id': donation.id, 'recipient': profile})
        return donation

    def mark_picked_up(self, donation_id, recipient):
        """ claimed -> picked-up, by the claiming recipient only. """
        now = self.clock()
        donation = self._load(donation_id, now)
        new_status = next_status(donation.status, PICKUP)
        check_claimant(donation, recipient.id, PICKUP)

        if not self._conditional_write(donation, CLAIMED, {
            'status': new_status, 'pickup_time': now, 'updated_at': now,
        }):
            raise InvalidTransition(donation.status, PICKUP)

        log_activity(self.session, recipient.id, "PICKUP", f"Picked up {donation.title}")
        self._notify('donation-picked-up', [donation.donor], donation, now)
        return donation

    def mark_completed(self, donation_id, recipient):
        """ picked-up -> completed, by the claiming recipient only. """
        now = self.clock()
        donation = self._load(donation_id, now)
        new_status = next_status(donation.status, COMPLETE)
        check_claimant(donation, recipient.id, COMPLETE)

        if not self._conditional_write(donation, PICKED_UP, {
            'status': new_status, 'completed_at': now, 'updated_at': now,
        }):
            raise InvalidTransition(donation.status, COMPLETE)

        log_activity(self.session, recipient.id, "COMPLETE", f"Completed {donation.title}")
        self._notify('donation-completed', [donation.donor], donation, now)
        return donation

    def cancel(self, donation_id, requester):
        """ available/claimed -> cancelled, by the donor or an admin. """
        now = self.clock()
        donation = self._load(donation_id, now)
        check_owner_or_admin(donation, requester, CANCEL)

        prior = donation.status
        new_status = next_status(prior, CANCEL)
        if not self._conditional_write(donation, prior, {'status': new_status, 'updated_at': now}):
            raise InvalidTransition(donation.status, CANCEL)

        action = "ADMIN_CANCEL" if requester.id != donation.donor_id else "CANCEL"
        log_activity(self.session, requester.id, action, f"Cancelled {donation.title}")
        if prior == CLAIMED and donation.recipient is not None:
            self._notify('donation-cancelled', [donation.recipient], donation, now)
        return donation
