"""
The donation state machine.

    available --claim--> claimed --pickup--> picked-up --complete--> completed
    available --expire--> expired
    available/claimed --cancel--> cancelled

Everything here is pure: functions look at a Donation and a clock value and
either return the next status or raise. Persistence lives in claims.py and
expiry.py.
"""
from errors import Forbidden, ImmutableAfterClaim, InvalidTransition
from models import AVAILABLE, CANCELLED, CLAIMED, COMPLETED, EXPIRED, PICKED_UP

CLAIM = 'claim'
PICKUP = 'pickup'
COMPLETE = 'complete'
CANCEL = 'cancel'
EXPIRE = 'expire'

TRANSITIONS = {
    (AVAILABLE, CLAIM): CLAIMED,
    (CLAIMED, PICKUP): PICKED_UP,
    (PICKED_UP, COMPLETE): COMPLETED,
    (AVAILABLE, CANCEL): CANCELLED,
    (CLAIMED, CANCEL): CANCELLED,
    (AVAILABLE, EXPIRE): EXPIRED,
}

TERMINAL_STATUSES = (COMPLETED, EXPIRED, CANCELLED)
DELETABLE_STATUSES = (AVAILABLE, CANCELLED)


def next_status(current, event):
    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransition(current, event) from None


def is_stale(donation, now):
    """ Stored as available but already past its expiry date. """
    return donation.status == AVAILABLE and donation.expiry_date <= now


def effective_status(donation, now):
    return EXPIRED if is_stale(donation, now) else donation.status


def check_claim_window(donation, now):
    """ claim guard: now inside the pickup window and before expiry. """
    if now >= donation.expiry_date:
        raise InvalidTransition(donation.status, CLAIM, 'This donation has expired and cannot be claimed.')
    if not donation.pickup_start <= now <= donation.pickup_end:
        raise InvalidTransition(
            donation.status, CLAIM,
            f"Pickup window is not active ({donation.pickup_window_status(now)}).",
        )


def check_claimant(donation, requester_id, event):
    if donation.claimed_by_id != requester_id:
        raise Forbidden(f"Only the recipient who claimed this donation can {event} it.")


def check_owner_or_admin(donation, requester, event):
    if requester.is_admin:
        return
    if donation.donor_id != requester.id:
        raise Forbidden(f"Unauthorized. Only the donor or an admin can {event} this donation.")


def ensure_editable(donation):
    if donation.status != AVAILABLE:
        raise ImmutableAfterClaim()
