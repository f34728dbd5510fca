"""
Domain exceptions and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


def _client_ip(request):
    return request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown'


def _log_rate_limit(request, request_id=None):
    from apps.core.logging import SecurityLogger

    email = None
    if request is not None and hasattr(request, 'data') and isinstance(request.data, dict):
        email = request.data.get('email')

    SecurityLogger.log_rate_limit_exceeded(
        endpoint=request.path if request else 'unknown',
        ip_address=_client_ip(request),
        user_email=email,
    )
    logger.warning(
        "Rate limit exceeded",
        extra={
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
            'retry_after': RATE_LIMIT_RETRY_AFTER,
        }
    )


def ratelimit_view(request, exception):
    """
    View used by django-ratelimit so blocked requests get 429 instead of 403.
    """
    _log_rate_limit(request, getattr(request, 'request_id', None))

    response = JsonResponse(
        {
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'retry_after': RATE_LIMIT_RETRY_AFTER,
        },
        status=429
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def custom_exception_handler(exc, context):
    """
    Render every API error as ``{error, code, details, request_id}``.

    Domain errors keep their own status code; anything DRF does not know
    about becomes a generic 500.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        _log_rate_limit(request, request_id)
        response = Response(
            {
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': RATE_LIMIT_RETRY_AFTER,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, BackofficeError):
        logger.warning(
            f"Domain error: {exc.__class__.__name__}",
            extra={
                'code': exc.code,
                'error': exc.message,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        return Response(
            {
                'error': exc.message,
                'code': exc.code,
                'details': exc.details,
                'request_id': request_id,
            },
            status=exc.status_code
        )

    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=True
        )
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response


class BackofficeError(Exception):
    """Base exception for back office errors."""
    status_code = 400
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(BackofficeError):
    """Raised when a record does not exist or is not visible to the caller."""
    status_code = 404
    code = 'NOT_FOUND'


class AuthenticationError(BackofficeError):
    """Raised when authentication fails."""
    status_code = 401
    code = 'AUTHENTICATION_FAILED'


class PermissionDenied(BackofficeError):
    """Raised when the principal may not perform the requested action."""
    status_code = 403
    code = 'PERMISSION_DENIED'

    def __init__(self, message='You do not have permission to perform this action.',
                 action=None, details=None):
        self.action = action
        details = dict(details or {})
        if action:
            details.setdefault('action', action)
        super().__init__(message, details)


class ValidationError(BackofficeError):
    """
    Raised when input validation fails.

    ``errors`` maps field names to lists of messages so forms can show
    every problem at once.
    """
    status_code = 400
    code = 'VALIDATION_ERROR'

    def __init__(self, message='Invalid input.', errors=None, details=None):
        self.errors = {
            field: messages if isinstance(messages, list) else [messages]
            for field, messages in (errors or {}).items()
        }
        details = dict(details or {})
        if self.errors:
            details['errors'] = self.errors
        super().__init__(message, details)


class DuplicateMembership(BackofficeError):
    """Raised when a (tenant, principal) pair already has a membership."""
    status_code = 409
    code = 'DUPLICATE_MEMBERSHIP'


class InvalidTransition(BackofficeError):
    """Raised when a financial request cannot move from its current status."""
    status_code = 409
    code = 'INVALID_TRANSITION'

    def __init__(self, message, current_status, details=None):
        self.current_status = current_status
        details = dict(details or {})
        details['current_status'] = current_status
        super().__init__(message, details)


class OverSettlement(BackofficeError):
    """Raised when a settlement is non-positive or exceeds the remaining amount."""
    status_code = 409
    code = 'OVER_SETTLEMENT'

    def __init__(self, message, remaining, current_status, details=None):
        self.remaining = remaining
        self.current_status = current_status
        details = dict(details or {})
        details['remaining'] = str(remaining)
        details['current_status'] = current_status
        super().__init__(message, details)
