"""
Fire-and-forget delivery of lifecycle events.

The dispatcher never raises into the caller: a failed email or socket emit is
logged and dropped. Delivery runs in a SocketIO background task unless the app
is configured with NOTIFICATIONS_ASYNC = False (tests).
"""
import logging

from flask import current_app
from flask_mail import Message

logger = logging.getLogger(__name__)

BRAND = "Food Distribution Platform"

SUBJECTS = {
    'new-donation': 'New Food Donation Available in Your Area!',
    'donation-claimed': 'Someone claimed your donation!',
    'donation-picked-up': 'Your donation has been picked up',
    'donation-completed': 'Donation completed. Thank you!',
    'donation-cancelled': 'A donation you claimed was cancelled',
    'donation-pickup-reminder': 'Reminder: Food Donation Pickup Today',
}

# Events that are also broadcast to every connected client
BROADCAST_EVENTS = ('new-donation', 'donation-claimed')


def contact_of(user):
    """ Plain-data snapshot of a user, safe to hand to another thread. """
    return {
        'id': user.id,
        'email': user.email,
        'name': user.organization or f"{user.first_name} {user.last_name}",
        'email_notifications': user.email_notifications,
    }


def render_body(event, contact, payload):
    donation = payload.get('donation') or {}
    title = donation.get('title', 'your donation')
    quantity = donation.get('quantity') or {}
    amount = f"{quantity.get('amount')} {quantity.get('unit')}" if quantity else ''

    if event == 'new-donation':
        distance = payload.get('distances', {}).get(contact['id'])
        near = f" ({distance:.1f} miles away)" if distance is not None else ''
        return (f"Hello {contact['name']},\n\n"
                f"A new donation was just posted near you{near}.\n\n"
                f"Item: {title}\nQuantity: {amount}\n"
                f"Pickup window: {donation.get('pickup_window', {}).get('start')} - "
                f"{donation.get('pickup_window', {}).get('end')}\n\n"
                f"Login now to claim it before it's gone!\n")
    if event == 'donation-claimed':
        recipient = payload.get('recipient') or {}
        who = recipient.get('organization') or f"{recipient.get('first_name', '')} {recipient.get('last_name', '')}".strip()
        return (f"Hello {contact['name']},\n\n"
                f"{who or 'A recipient'} just claimed {amount} of {title}.\n")
    if event == 'donation-picked-up':
        return f"Hello {contact['name']},\n\n{title} has been picked up.\n"
    if event == 'donation-completed':
        return f"Hello {contact['name']},\n\nThe hand-off of {title} is complete. Thank you for sharing!\n"
    if event == 'donation-cancelled':
        return f"Hello {contact['name']},\n\n{title} was cancelled by the donor and is no longer reserved for you.\n"
    if event == 'donation-pickup-reminder':
        window = donation.get('pickup_window') or {}
        location = donation.get('location') or {}
        address = location.get('address') or {}
        where = ', '.join(v for v in (address.get('street'), address.get('city'), address.get('state')) if v)
        body = (f"Hello {contact['name']},\n\n"
                f"This is a reminder that you have a food pickup scheduled soon.\n\n"
                f"Item: {title}\nQuantity: {amount}\n"
                f"Pickup window: {window.get('start')} - {window.get('end')}\n")
        if where:
            body += f"Pickup location: {where}\n"
        if location.get('instructions'):
            body += f"Instructions: {location['instructions']}\n"
        return body + "\nPlease arrive within the pickup window.\n"
    return f"Hello {contact['name']},\n\nThere is an update on {title}.\n"


class NotificationDispatcher:
    """ notify(event, targets, payload) over email + socket events. """

    def __init__(self, mail, socketio):
        self.mail = mail
        self.socketio = socketio
        self.app = None
        self.run_async = True

    def init_app(self, app):
        self.app = app
        self.run_async = app.config.get('NOTIFICATIONS_ASYNC', True)
        app.extensions['notifier'] = self

    def notify(self, event, targets, payload):
        """
        Schedules delivery and returns immediately. `targets` are User rows;
        they are snapshotted here because the delivery may run on another
        thread after the request session is gone.
        """
        contacts = [contact_of(t) for t in targets if t is not None]
        app = self.app or current_app._get_current_object()
        try:
            if self.run_async:
                self.socketio.start_background_task(self._deliver, app, event, contacts, payload)
            else:
                self._deliver(app, event, contacts, payload)
        except Exception:
            logger.exception("Could not schedule '%s' notification", event)

    def _deliver(self, app, event, contacts, payload):
        with app.app_context():
            try:
                self._emit(event, contacts, payload)
            except Exception:
                logger.exception("Socket emit failed for '%s'", event)
            self._send_emails(event, contacts, payload)

    def _emit(self, event, contacts, payload):
        if event in BROADCAST_EVENTS:
            self.socketio.emit(event, payload.get('broadcast', payload))
        for contact in contacts:
            self.socketio.emit('notification', {
                'user_id': contact['id'],
                'event': event,
                'donation_id': (payload.get('donation') or {}).get('id'),
                'priority': 'high' if payload.get('urgent') else 'normal',
            })

    def _send_emails(self, event, contacts, payload):
        subject = SUBJECTS.get(event, f"{BRAND} update")
        if payload.get('urgent'):
            subject = f"URGENT: {subject}"

        opted_in = [c for c in contacts if c['email_notifications'] and c['email']]
        if not opted_in:
            return

        sent = 0
        try:
            with self.mail.connect() as conn:
                for contact in opted_in:
                    try:
                        msg = Message(subject, recipients=[contact['email']],
                                      body=render_body(event, contact, payload))
                        conn.send(msg)
                        sent += 1
                    except Exception:
                        # One bad address must not stop the rest of the fan-out
                        logger.exception("Failed to email %s", contact['email'])
        except Exception:
            logger.exception("Mail connection failed for '%s'", event)
            return

        logger.info("Sent '%s' to %d of %d recipients", event, sent, len(opted_in))
