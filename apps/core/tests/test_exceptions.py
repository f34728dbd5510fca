"""
Tests for domain exceptions and the API exception handler.
"""
from decimal import Decimal

import pytest
from rest_framework import exceptions as drf_exceptions
from rest_framework.test import APIRequestFactory

from apps.core.exceptions import (
    custom_exception_handler,
    DuplicateMembership,
    InvalidTransition,
    NotFound,
    OverSettlement,
    PermissionDenied,
    ValidationError,
)


def _context(request_id='req-123'):
    request = APIRequestFactory().post('/v1/tenants/acme/advances')
    request.request_id = request_id
    return {'request': request, 'view': None}


class TestDomainExceptions:

    def test_validation_error_normalises_messages_to_lists(self):
        exc = ValidationError("Invalid request", errors={'amount': 'Must be greater than zero.', 'user': ['x', 'y']})

        assert exc.errors == {'amount': ['Must be greater than zero.'], 'user': ['x', 'y']}
        assert exc.details['errors'] == exc.errors

    def test_permission_denied_records_action(self):
        exc = PermissionDenied(action='manage-users')

        assert exc.action == 'manage-users'
        assert exc.details == {'action': 'manage-users'}
        assert exc.status_code == 403

    def test_over_settlement_carries_remaining_and_status(self):
        exc = OverSettlement("too much", remaining=Decimal('300.00'), current_status='paid')

        assert exc.remaining == Decimal('300.00')
        assert exc.details == {'remaining': '300.00', 'current_status': 'paid'}

    def test_invalid_transition_carries_status(self):
        exc = InvalidTransition("Cannot approve", current_status='rejected')

        assert exc.current_status == 'rejected'
        assert exc.status_code == 409


class TestCustomExceptionHandler:

    @pytest.mark.parametrize('exc, status_code, code', [
        (NotFound("Tenant 'x' not found"), 404, 'NOT_FOUND'),
        (PermissionDenied(action='edit-business'), 403, 'PERMISSION_DENIED'),
        (DuplicateMembership("already a member"), 409, 'DUPLICATE_MEMBERSHIP'),
        (InvalidTransition("Cannot pay", current_status='pending'), 409, 'INVALID_TRANSITION'),
        (ValidationError("Invalid", errors={'name': 'Required'}), 400, 'VALIDATION_ERROR'),
    ])
    def test_domain_errors_render_envelope(self, exc, status_code, code):
        response = custom_exception_handler(exc, _context())

        assert response.status_code == status_code
        assert response.data['code'] == code
        assert response.data['error'] == exc.message
        assert response.data['details'] == exc.details
        assert response.data['request_id'] == 'req-123'

    def test_drf_errors_get_request_id(self):
        response = custom_exception_handler(drf_exceptions.NotAuthenticated(), _context())

        assert response.status_code == 401
        assert response.data['request_id'] == 'req-123'

    def test_unknown_errors_become_500(self):
        response = custom_exception_handler(RuntimeError("boom"), _context())

        assert response.status_code == 500
        assert response.data['code'] == 'INTERNAL_ERROR'
        assert 'boom' not in response.data['error']
