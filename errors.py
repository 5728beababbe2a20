"""
Error taxonomy for the donation lifecycle.

Every error carries a machine-readable ``kind``, a human readable message and,
for validation problems, a ``fields`` map of field name -> problem. The Flask
error handler in app.py turns these into JSON responses.
"""


class PlatformError(Exception):
    kind = 'error'
    status_code = 400
    default_message = 'Request could not be completed.'

    def __init__(self, message=None, fields=None):
        self.message = message or self.default_message
        self.fields = fields or {}
        super().__init__(self.message)

    def to_dict(self):
        body = {'error': self.message, 'kind': self.kind}
        if self.fields:
            body['fields'] = self.fields
        return body


class ValidationError(PlatformError):
    kind = 'validation_error'
    status_code = 400
    default_message = 'Validation failed'


class Forbidden(PlatformError):
    kind = 'forbidden'
    status_code = 403
    default_message = 'You are not allowed to perform this action.'


class NotFound(PlatformError):
    kind = 'not_found'
    status_code = 404
    default_message = 'Resource not found'


class InvalidTransition(PlatformError):
    """ A state machine violation. Names the current state and the event. """
    kind = 'invalid_transition'
    status_code = 409

    def __init__(self, current, event, message=None):
        self.current = current
        self.event = event
        super().__init__(message or f"Cannot {event} a donation that is '{current}'.")

    def to_dict(self):
        body = super().to_dict()
        body['current_status'] = self.current
        body['event'] = self.event
        return body


class AlreadyClaimed(InvalidTransition):
    kind = 'already_claimed'

    def __init__(self, current='claimed', event='claim', message=None):
        super().__init__(current, event, message or 'This donation has already been claimed.')


class NoLongerAvailable(InvalidTransition):
    kind = 'no_longer_available'

    def __init__(self, current, event='claim', message=None):
        super().__init__(current, event, message or f"This donation is no longer available ({current}).")


class ImmutableAfterClaim(PlatformError):
    kind = 'immutable_after_claim'
    status_code = 409
    default_message = 'Cannot edit. This donation is already claimed or closed.'
