"""
Pickup reminders for claimed donations whose window opens soon.
"""
import logging
from datetime import timedelta

from models import CLAIMED, Donation

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(days=1)


def upcoming_pickups(session, now, within=REMINDER_LEAD):
    return (
        session.query(Donation)
        .filter(
            Donation.status == CLAIMED,
            Donation.claimed_by_id.isnot(None),
            Donation.pickup_start >= now,
            Donation.pickup_start < now + within,
        )
        .order_by(Donation.pickup_start, Donation.id)
        .all()
    )


def remind_upcoming_pickups(session, notifier, now, within=REMINDER_LEAD):
    """
    Sends a 'donation-pickup-reminder' to the recipient of every claimed
    donation whose pickup window starts within `within`. Returns the count.
    """
    donations = upcoming_pickups(session, now, within)
    for donation in donations:
        notifier.notify('donation-pickup-reminder', [donation.recipient], {
            'donation': donation.to_dict(now),
            'urgent': donation.is_urgent,
        })
    if donations:
        logger.info("📅 Sent %d pickup reminder(s)", len(donations))
    return len(donations)
