"""
Tests for authentication API endpoints.
"""
import pytest
from rest_framework import status

from apps.rbac.services import AuthService, IdentityService


@pytest.mark.django_db
class TestLoginEndpoint:
    """Test POST /v1/auth/login endpoint."""

    def test_login_success(self, api_client, owner):
        response = api_client.post(
            '/v1/auth/login',
            {'email': 'owner@example.com', 'password': 'testpass123'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['user']['email'] == 'owner@example.com'
        assert AuthService.get_user_from_jwt(response.data['token']) == owner

    def test_login_email_is_case_insensitive(self, api_client, owner):
        response = api_client.post(
            '/v1/auth/login',
            {'email': 'OWNER@example.com', 'password': 'testpass123'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK

    def test_login_wrong_password(self, api_client, owner):
        response = api_client.post(
            '/v1/auth/login',
            {'email': 'owner@example.com', 'password': 'wrong'},
            format='json'
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['code'] == 'AUTHENTICATION_FAILED'
        assert 'token' not in response.data

    def test_login_inactive_user(self, api_client, make_user):
        make_user('gone@example.com', is_active=False)

        response = api_client.post(
            '/v1/auth/login',
            {'email': 'gone@example.com', 'password': 'testpass123'},
            format='json'
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_login_missing_fields(self, api_client):
        response = api_client.post('/v1/auth/login', {'email': 'not-an-email'}, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'VALIDATION_ERROR'
        assert set(response.data['details']['errors']) == {'email', 'password'}

    def test_login_rate_limited(self, api_client, owner, settings):
        settings.RATELIMIT_ENABLE = True

        for _ in range(5):
            api_client.post('/v1/auth/login', {'email': 'owner@example.com', 'password': 'wrong'}, format='json')
        response = api_client.post(
            '/v1/auth/login',
            {'email': 'owner@example.com', 'password': 'testpass123'},
            format='json'
        )

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.data['code'] == 'RATE_LIMIT_EXCEEDED'
        assert response['Retry-After'] == '60'


@pytest.mark.django_db
class TestCurrentUserEndpoint:
    """Test GET /v1/auth/me endpoint."""

    def test_requires_authentication(self, api_client):
        response = api_client.get('/v1/auth/me')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_invalid_token_is_rejected(self, api_client):
        api_client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')

        response = api_client.get('/v1/auth/me')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_returns_memberships(self, auth_client, owner, tenant):
        response = auth_client(owner).get('/v1/auth/me')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['email'] == 'owner@example.com'
        assert response.data['is_superadmin'] is False
        assert response.data['memberships'] == [{
            'tenant_id': str(tenant.id),
            'tenant_slug': 'test-tenant',
            'tenant_name': 'Test Tenant',
            'business_role': 'owner',
            'employment_status': 'active',
            'invitation_pending': False,
        }]

    def test_returns_global_roles_and_permissions(self, auth_client, outsider):
        IdentityService.create_role('support', permissions=['users.view'])
        IdentityService.assign_role(outsider, 'support')

        response = auth_client(outsider).get('/v1/auth/me')

        assert response.data['roles'] == ['support']
        assert response.data['permissions'] == ['users.view']
        assert response.data['memberships'] == []

    def test_superadmin_flag(self, auth_client, superadmin):
        response = auth_client(superadmin).get('/v1/auth/me')

        assert response.data['is_superadmin'] is True
