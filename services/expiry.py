"""
Moves stale donations from 'available' to 'expired'.

Two entry points share the same conditional update:
  * expire_if_stale(): lazy, on read / before a transition
  * sweep_expired(): bulk, from the background job and before listings

Both are idempotent. Re-applying expire to an expired record is a no-op.
"""
import logging

from sqlalchemy import update

from models import AVAILABLE, EXPIRED, AuditLog, Donation
from services.transitions import is_stale

logger = logging.getLogger(__name__)


def _expire_statement(donation_id, now):
    return (
        update(Donation)
        .where(
            Donation.id == donation_id,
            Donation.status == AVAILABLE,
            Donation.expiry_date <= now,
        )
        .values(status=EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )


def expire_if_stale(session, donation, now):
    """
    Persists the expiry of a single donation if it is due.
    Returns True only when this call performed the flip.
    """
    if not is_stale(donation, now):
        return False

    result = session.execute(_expire_statement(donation.id, now))
    flipped = result.rowcount == 1
    if flipped:
        session.add(AuditLog(user_id=donation.donor_id, action="EXPIRED",
                             details=f"Donation '{donation.title}' expired automatically."))
    session.commit()
    session.refresh(donation)
    return flipped


def sweep_expired(session, now, batch_size=500):
    """
    Expires every stale donation (up to batch_size per call).
    Returns how many records were flipped by this call.
    """
    stale = (
        session.query(Donation.id, Donation.donor_id, Donation.title)
        .filter(Donation.status == AVAILABLE, Donation.expiry_date <= now)
        .order_by(Donation.expiry_date)
        .limit(batch_size)
        .all()
    )
    if not stale:
        return 0

    count = 0
    for donation_id, donor_id, title in stale:
        result = session.execute(_expire_statement(donation_id, now))
        if result.rowcount == 1:
            count += 1
            session.add(AuditLog(user_id=donor_id, action="EXPIRED",
                                 details=f"Donation '{title}' expired automatically."))

    session.commit()
    if count:
        logger.info("Expiry sweep marked %d donation(s) as expired", count)
    return count
