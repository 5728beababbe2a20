import logging

from sqlalchemy.exc import SQLAlchemyError

from extensions import db, notifier, scheduler
from models import utcnow
from services.expiry import sweep_expired
from services.reminders import remind_upcoming_pickups

logger = logging.getLogger(__name__)


def expire_donations_job():
    """
    Marks 'available' donations past their expiry date as 'expired' so stale
    records don't linger between reads. A failed tick is logged and simply
    retried on the next one.
    """
    # We must use scheduler.app.app_context() because this runs in the background
    with scheduler.app.app_context():
        try:
            count = sweep_expired(db.session, utcnow())
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("❌ Expiry sweep failed, will retry next tick")
            return 0
        return count


def pickup_reminder_job():
    """ Daily: remind recipients of pickups starting within the next day. """
    with scheduler.app.app_context():
        try:
            return remind_upcoming_pickups(db.session, notifier, utcnow())
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("❌ Pickup reminder run failed")
            return 0


def start_scheduler(app):
    """ Registers the expiry sweep and the daily reminder, then starts the clock. """
    scheduler.add_job(
        id='expire_donations',
        func=expire_donations_job,
        trigger='interval',
        minutes=app.config['EXPIRY_SWEEP_MINUTES'],
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        id='pickup_reminders',
        func=pickup_reminder_job,
        trigger='cron',
        hour=app.config['PICKUP_REMINDER_HOUR'],
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("⏰ Scheduler started: sweeping expired donations every %s min, reminders at %02d:00",
                app.config['EXPIRY_SWEEP_MINUTES'], app.config['PICKUP_REMINDER_HOUR'])
