"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
from django.core.cache import cache


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'backoffice-tests',
        }
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.RATELIMIT_ENABLE = False


@pytest.fixture(autouse=True)
def clear_cache():
    """Permission sets are cached per user; start every test cold."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def make_user(db):
    """Factory for users with a usable password."""
    from apps.rbac.models import User

    def _make_user(email, password='testpass123', **extra):
        return User.objects.create_user(email=email, password=password, **extra)

    return _make_user


@pytest.fixture
def owner(make_user):
    return make_user('owner@example.com', first_name='Olive', last_name='Owner')


@pytest.fixture
def tenant(owner):
    """A tenant created through the service, so ``owner`` holds the owner role."""
    from apps.tenants.services import TenantService
    return TenantService.create_tenant(owner, name='Test Tenant')


@pytest.fixture
def other_tenant(make_user):
    """Another tenant for isolation tests."""
    from apps.tenants.services import TenantService
    return TenantService.create_tenant(make_user('other-owner@example.com'), name='Other Tenant')


@pytest.fixture
def member_factory(tenant):
    """Add a user to ``tenant`` with the given role and overrides."""
    from apps.tenants.services import MembershipService

    def _member(user, business_role='employee', permissions=None, on_tenant=None):
        MembershipService.add_member(
            on_tenant or tenant, user, business_role=business_role, permissions=permissions
        )
        return user

    return _member


@pytest.fixture
def manager(make_user, member_factory):
    return member_factory(make_user('manager@example.com'), 'manager')


@pytest.fixture
def employee(make_user, member_factory):
    return member_factory(make_user('employee@example.com'), 'employee')


@pytest.fixture
def outsider(make_user):
    return make_user('outsider@example.com')


@pytest.fixture
def superadmin(make_user):
    from apps.rbac.services import IdentityService
    user = make_user('root@example.com')
    IdentityService.create_role('superadmin')
    IdentityService.assign_role(user, 'superadmin')
    return user


@pytest.fixture
def auth_client(api_client):
    """Return a function that authenticates ``api_client`` with a JWT for a user."""
    from apps.rbac.services import AuthService

    def _auth(user):
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {AuthService.generate_jwt(user)}')
        return api_client

    return _auth
