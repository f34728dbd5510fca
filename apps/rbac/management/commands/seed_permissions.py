"""
Management command to seed the platform permission registry.

Creates a Permission row for every registered platform permission and the
global ``superadmin`` role. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand

from apps.rbac import registry
from apps.rbac.models import Permission
from apps.rbac.services import IdentityService


class Command(BaseCommand):
    help = 'Seed platform permissions and the superadmin role (idempotent)'

    def handle(self, *args, **options):
        self.stdout.write('Seeding platform permissions...\n')

        created_count = IdentityService.sync_registry()
        IdentityService.create_role(
            registry.SUPERADMIN_ROLE,
            description='Unrestricted platform access',
        )

        total = len(registry.PLATFORM_PERMISSIONS)
        self.stdout.write(
            self.style.SUCCESS(
                f'✓ Seeding complete: {created_count} created, {total - created_count} unchanged'
            )
        )

        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Permissions Summary by Category:')
        self.stdout.write('=' * 70)

        by_category = {}
        for permission in Permission.objects.filter(name__in=registry.PLATFORM_PERMISSIONS).order_by('name'):
            by_category.setdefault(permission.category, []).append(permission)

        for category in sorted(by_category):
            self.stdout.write(f'\n{category.upper()}:')
            for permission in by_category[category]:
                self.stdout.write(f'  • {permission.name:<30} {permission.label}')
