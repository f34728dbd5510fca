"""
Tests for AuthorizationService.can_perform.

Checks run in a fixed order: superadmin, owner, global user-management
permissions, membership overrides union role defaults, deny.
"""
import pytest

from apps.core.exceptions import PermissionDenied, ValidationError
from apps.rbac import registry
from apps.rbac.services import AuthorizationService, IdentityService
from apps.tenants.models import Membership
from apps.tenants.services import MembershipService


@pytest.mark.django_db
class TestCanPerform:

    def test_anonymous_is_denied(self, tenant):
        assert not AuthorizationService.can_perform(None, 'view-business', tenant)

    def test_superadmin_can_do_anything_anywhere(self, superadmin, tenant):
        assert AuthorizationService.can_perform(superadmin, 'delete-business', tenant)
        assert AuthorizationService.can_perform(superadmin, 'manage-finance', tenant)
        assert AuthorizationService.can_perform(superadmin, 'manage-users')

    def test_superadmin_is_checked_before_action_names(self, superadmin, tenant):
        assert AuthorizationService.can_perform(superadmin, 'anything-at-all', tenant)

    def test_unknown_action_is_denied_for_others(self, owner, tenant):
        assert AuthorizationService.can_perform(owner, 'anything-at-all', tenant) is False

    def test_ensure_rejects_unknown_action(self, owner, tenant):
        with pytest.raises(ValidationError):
            AuthorizationService.ensure_can_perform(owner, 'anything-at-all', tenant)

    def test_ensure_lets_superadmin_through_unknown_action(self, superadmin, tenant):
        AuthorizationService.ensure_can_perform(superadmin, 'anything-at-all', tenant)

    def test_owner_can_do_anything_in_own_tenant(self, owner, tenant):
        for action in registry.ACTIONS:
            assert AuthorizationService.can_perform(owner, action, tenant)

    def test_owner_has_no_rights_in_other_tenant(self, owner, other_tenant):
        assert not AuthorizationService.can_perform(owner, 'view-business', other_tenant)

    def test_role_defaults_apply(self, manager, employee, tenant):
        assert AuthorizationService.can_perform(manager, 'manage-finance', tenant)
        assert AuthorizationService.can_perform(employee, 'view-business', tenant)
        assert not AuthorizationService.can_perform(employee, 'manage-finance', tenant)
        assert not AuthorizationService.can_perform(manager, 'delete-business', tenant)

    def test_overrides_extend_role_defaults(self, make_user, member_factory, tenant):
        analyst = member_factory(make_user('analyst@example.com'), 'employee', permissions=['reports.export'])

        assert AuthorizationService.can_perform(analyst, 'export-reports', tenant)
        assert AuthorizationService.can_perform(analyst, 'reports.export', tenant)
        assert AuthorizationService.can_perform(analyst, 'view-reports', tenant)

    def test_unknown_business_role_gets_only_overrides(self, make_user, member_factory, tenant):
        intern = member_factory(make_user('intern@example.com'), 'intern', permissions=['projects.view'])

        assert AuthorizationService.can_perform(intern, 'view-projects', tenant)
        assert not AuthorizationService.can_perform(intern, 'view-business', tenant)

    def test_terminated_member_is_denied(self, manager, tenant):
        MembershipService.remove(tenant, manager)

        assert not AuthorizationService.can_perform(manager, 'view-business', tenant)

    def test_inactive_member_is_denied(self, manager, tenant):
        MembershipService.change_status(tenant, manager, Membership.STATUS_INACTIVE)

        assert not AuthorizationService.can_perform(manager, 'view-business', tenant)

    def test_pending_invitation_grants_nothing(self, outsider, tenant):
        MembershipService.invite(tenant, outsider, 'manager')

        assert not AuthorizationService.can_perform(outsider, 'view-business', tenant)

    def test_accepted_invitation_grants_role(self, outsider, tenant):
        token = MembershipService.invite(tenant, outsider, 'manager')
        MembershipService.accept_invitation(token, outsider)

        assert AuthorizationService.can_perform(outsider, 'manage-finance', tenant)

    def test_pending_owner_invitation_is_not_owner(self, outsider, tenant):
        MembershipService.invite(tenant, outsider, 'owner')

        assert not AuthorizationService.can_perform(outsider, 'view-business', tenant)


@pytest.mark.django_db
class TestGlobalUserManagement:

    @pytest.mark.parametrize('permission', ['users.create', 'users.view', 'users.edit'])
    def test_global_permission_grants_manage_users_in_any_tenant(self, outsider, tenant, permission):
        IdentityService.grant_permission(outsider, permission)

        assert AuthorizationService.can_perform(outsider, 'manage-users', tenant)

    def test_global_permission_does_not_grant_other_actions(self, outsider, tenant):
        IdentityService.grant_permission(outsider, 'users.create')

        assert not AuthorizationService.can_perform(outsider, 'view-business', tenant)
        assert not AuthorizationService.can_perform(outsider, 'manage-finance', tenant)

    def test_global_permission_held_through_role(self, outsider, tenant):
        IdentityService.create_role('support', permissions=['users.view'])
        IdentityService.assign_role(outsider, 'support')

        assert AuthorizationService.can_perform(outsider, 'view-users', tenant)
        assert AuthorizationService.can_perform(outsider, 'manage-users', tenant)

    def test_non_member_without_global_permissions_cannot_manage_users(self, outsider, tenant):
        assert not AuthorizationService.can_perform(outsider, 'manage-users', tenant)

        with pytest.raises(PermissionDenied) as exc_info:
            AuthorizationService.ensure_can_perform(outsider, 'manage-users', tenant)
        assert exc_info.value.action == 'manage-users'


@pytest.mark.django_db
class TestEffectivePermissions:

    def test_owner_and_superadmin_hold_everything(self, owner, superadmin, tenant):
        assert AuthorizationService.effective_permissions(owner, tenant) == registry.ALL_BUSINESS_PERMISSIONS
        assert AuthorizationService.effective_permissions(superadmin, tenant) == registry.ALL_BUSINESS_PERMISSIONS

    def test_member_holds_defaults_and_overrides(self, make_user, member_factory, tenant):
        user = member_factory(make_user('c@example.com'), 'contractor', permissions=['reports.view'])

        assert AuthorizationService.effective_permissions(user, tenant) == frozenset(
            {'business.view', 'projects.view', 'reports.view'}
        )

    def test_non_member_holds_nothing(self, outsider, tenant):
        assert AuthorizationService.effective_permissions(outsider, tenant) == frozenset()

    def test_can_administer(self, outsider, superadmin):
        assert AuthorizationService.can_administer(superadmin, 'features.manage')
        assert not AuthorizationService.can_administer(outsider, 'features.manage')

        IdentityService.grant_permission(outsider, 'features.manage')
        assert AuthorizationService.can_administer(outsider, 'features.manage')
