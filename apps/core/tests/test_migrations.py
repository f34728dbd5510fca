"""
Tests that the shipped migrations match the models.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.db import connection
from django.db.migrations.loader import MigrationLoader


@pytest.mark.django_db
class TestMigrations:

    def test_models_have_no_pending_changes(self):
        out = StringIO()
        try:
            call_command('makemigrations', '--check', '--dry-run', stdout=out, verbosity=1)
        except SystemExit:
            pytest.fail(f"Models changed without a migration:\n{out.getvalue()}")

    def test_every_app_migration_is_applied(self):
        loader = MigrationLoader(connection)
        for app_label in ('rbac', 'tenants', 'finance'):
            leaves = loader.graph.leaf_nodes(app_label)
            assert leaves, app_label
            for leaf in leaves:
                assert leaf in loader.applied_migrations

    def test_audit_log_tenant_link_comes_after_tenants(self):
        loader = MigrationLoader(connection)
        plan = loader.graph.forwards_plan(('rbac', '0002_auditlog_tenant'))
        assert ('tenants', '0001_initial') in plan
        assert plan.index(('rbac', '0001_initial')) < plan.index(('tenants', '0001_initial'))
