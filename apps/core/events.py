"""
Domain events.

Receivers (mail, notifications) subscribe with ``signal.connect``. Events
are only sent once the surrounding transaction commits, so a rolled back
mutation never announces itself.
"""
import logging
from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

# kwargs: tenant, user, membership, token, invited_by
invitation_created = Signal()

# kwargs: tenant, user, request, previous_status, status, actor
request_status_changed = Signal()


def emit_on_commit(signal, sender, **payload):
    """Send ``signal`` after the current transaction commits."""

    def _send():
        responses = signal.send_robust(sender=sender, **payload)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Event receiver failed",
                    extra={
                        'receiver': getattr(receiver, '__qualname__', repr(receiver)),
                        'error': str(response),
                    }
                )

    transaction.on_commit(_send)
