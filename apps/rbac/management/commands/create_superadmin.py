"""
Management command to bootstrap the platform superadmin.

Reads SUPERADMIN_NAME, SUPERADMIN_EMAIL and SUPERADMIN_PASSWORD from
settings (command options override them). Re-running it leaves an
existing account's password alone and only makes sure the account holds
the superadmin role and profile role.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.core.logging import SecurityLogger
from apps.rbac import registry
from apps.rbac.models import User, UserProfile
from apps.rbac.services import IdentityService


class Command(BaseCommand):
    help = 'Create (or repair) the platform superadmin account'

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, help='Overrides SUPERADMIN_EMAIL')
        parser.add_argument('--password', type=str, help='Overrides SUPERADMIN_PASSWORD')
        parser.add_argument('--name', type=str, help='Overrides SUPERADMIN_NAME')

    @transaction.atomic
    def handle(self, *args, **options):
        email = options.get('email') or settings.SUPERADMIN_EMAIL
        password = options.get('password') or settings.SUPERADMIN_PASSWORD
        name = options.get('name') or settings.SUPERADMIN_NAME

        if not email:
            raise CommandError('SUPERADMIN_EMAIL is not configured (or pass --email)')

        user = User.objects.by_email(email)
        created = user is None
        if created:
            if not password:
                raise CommandError('SUPERADMIN_PASSWORD is required to create the account')
            first_name, _, last_name = (name or '').partition(' ')
            user = User.objects.create_user(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
            )

        UserProfile.objects.update_or_create(
            user=user,
            defaults={
                'role': registry.SUPERADMIN_ROLE,
                'status': 'active',
                'job_title': 'System Administrator',
            }
        )
        IdentityService.create_role(registry.SUPERADMIN_ROLE, description='Unrestricted platform access')
        IdentityService.assign_role(user, registry.SUPERADMIN_ROLE)

        SecurityLogger.log_superadmin_bootstrap(user.email, created)

        if created:
            self.stdout.write(self.style.SUCCESS(f'✓ Created superadmin {user.email}'))
        else:
            self.stdout.write(self.style.WARNING(f'↻ Superadmin {user.email} already exists; role ensured'))
