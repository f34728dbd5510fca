"""
Management command to seed the feature catalog.

Creates the standard business features with their default settings.
Existing features are left untouched unless --update is given, in which
case name, description, category and default settings are refreshed.
"""
from django.core.management.base import BaseCommand

from apps.tenants.models import FeatureDefinition


class Command(BaseCommand):
    help = 'Seed the business feature catalog (idempotent)'

    FEATURES = [
        {
            'name': 'Attendance Management',
            'slug': 'attendance',
            'description': 'Track employee attendance, time in/out, and generate attendance reports.',
            'category': 'hr',
            'default_settings': {
                'allow_overtime': True,
                'require_approval': False,
                'auto_calculate_hours': True,
            },
        },
        {
            'name': 'Leave Management',
            'slug': 'leave',
            'description': 'Manage employee leave requests, approvals, and leave balances.',
            'category': 'hr',
            'default_settings': {
                'require_approval': True,
                'allow_negative_balance': False,
                'auto_approve_sick_leave': False,
            },
        },
        {
            'name': 'Payroll Management',
            'slug': 'payroll',
            'description': 'Calculate and process employee payroll, taxes, and deductions.',
            'category': 'finance',
            'default_settings': {
                'auto_calculate_tax': True,
                'include_overtime': True,
                'allow_manual_adjustments': True,
            },
        },
        {
            'name': 'Project Management',
            'slug': 'projects',
            'description': 'Manage projects, tasks, and team collaboration.',
            'category': 'general',
            'default_settings': {
                'allow_file_attachments': True,
                'enable_time_tracking': True,
                'require_task_assignments': True,
            },
        },
        {
            'name': 'Inventory Management',
            'slug': 'inventory',
            'description': 'Track inventory levels, stock movements, and generate reports.',
            'category': 'operations',
            'default_settings': {
                'low_stock_alerts': True,
                'auto_reorder': False,
                'track_expiry_dates': True,
            },
        },
        {
            'name': 'Customer Relationship Management',
            'slug': 'crm',
            'description': 'Manage customer relationships, leads, and sales pipeline.',
            'category': 'sales',
            'default_settings': {
                'lead_scoring': True,
                'email_integration': True,
                'sales_forecasting': True,
            },
        },
        {
            'name': 'Document Management',
            'slug': 'documents',
            'description': 'Store, organize, and manage business documents and files.',
            'category': 'general',
            'default_settings': {
                'version_control': True,
                'access_control': True,
                'search_functionality': True,
            },
        },
        {
            'name': 'Reporting & Analytics',
            'slug': 'analytics',
            'description': 'Generate business reports and analytics dashboards.',
            'category': 'general',
            'default_settings': {
                'real_time_data': True,
                'custom_reports': True,
                'data_export': True,
            },
        },
    ]

    def add_arguments(self, parser):
        parser.add_argument(
            '--update',
            action='store_true',
            help='Refresh existing features from the catalog definition',
        )

    def handle(self, *args, **options):
        created_count = 0
        updated_count = 0

        for data in self.FEATURES:
            defaults = {k: v for k, v in data.items() if k != 'slug'}
            feature = FeatureDefinition.objects.filter(slug=data['slug']).first()

            if feature is None:
                FeatureDefinition.objects.create(slug=data['slug'], **defaults)
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"✓ Created: {data['slug']}"))
            elif options['update']:
                for field, value in defaults.items():
                    setattr(feature, field, value)
                feature.save()
                updated_count += 1
                self.stdout.write(self.style.WARNING(f"↻ Updated: {data['slug']}"))
            else:
                self.stdout.write(self.style.HTTP_INFO(f"  Exists: {data['slug']}"))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{len(self.FEATURES) - created_count - updated_count} unchanged'
            )
        )
