"""
Tests for the rbac management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.rbac import registry
from apps.rbac.models import Permission, Role, User
from apps.rbac.services import IdentityService


@pytest.mark.django_db
class TestSeedPermissions:

    def test_seeds_registry_and_superadmin_role(self):
        out = StringIO()
        call_command('seed_permissions', stdout=out)

        assert set(Permission.objects.values_list('name', flat=True)) == set(registry.PLATFORM_PERMISSIONS)
        assert Role.objects.by_name('superadmin') is not None
        assert '7 created' in out.getvalue()

    def test_is_idempotent(self):
        call_command('seed_permissions', stdout=StringIO())
        out = StringIO()
        call_command('seed_permissions', stdout=out)

        assert Permission.objects.count() == len(registry.PLATFORM_PERMISSIONS)
        assert '0 created' in out.getvalue()


@pytest.mark.django_db
class TestCreateSuperadmin:

    def test_creates_account(self, settings):
        settings.SUPERADMIN_NAME = 'Ada Lovelace'
        settings.SUPERADMIN_EMAIL = 'ada@example.com'
        settings.SUPERADMIN_PASSWORD = 'analytical-engine'

        call_command('create_superadmin', stdout=StringIO())

        user = User.objects.by_email('ada@example.com')
        assert user.first_name == 'Ada'
        assert user.last_name == 'Lovelace'
        assert user.check_password('analytical-engine')
        assert user.profile.role == 'superadmin'
        assert user.profile.job_title == 'System Administrator'
        assert IdentityService.is_super_admin(user)

    def test_rerun_keeps_password(self, settings, make_user):
        make_user('ada@example.com', password='original-password')
        settings.SUPERADMIN_EMAIL = 'ada@example.com'
        settings.SUPERADMIN_PASSWORD = 'something-else'

        call_command('create_superadmin', stdout=StringIO())

        user = User.objects.by_email('ada@example.com')
        assert user.check_password('original-password')
        assert IdentityService.has_role(user, 'superadmin')

    def test_options_override_settings(self, settings):
        settings.SUPERADMIN_EMAIL = 'ignored@example.com'

        call_command('create_superadmin', email='cli@example.com', password='pw-123456', stdout=StringIO())

        assert User.objects.by_email('cli@example.com') is not None
        assert User.objects.by_email('ignored@example.com') is None

    def test_requires_password_for_new_account(self, settings):
        settings.SUPERADMIN_EMAIL = 'ada@example.com'
        settings.SUPERADMIN_PASSWORD = ''

        with pytest.raises(CommandError):
            call_command('create_superadmin', stdout=StringIO())
