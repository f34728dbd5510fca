"""
Tests for MembershipService: the membership ledger.
"""
import pytest

from apps.core.events import invitation_created
from apps.core.exceptions import (
    DuplicateMembership, NotFound, PermissionDenied, ValidationError,
)
from apps.rbac.models import AuditLog, User
from apps.rbac.services import IdentityService
from apps.tenants.models import Membership
from apps.tenants.services import MembershipService


@pytest.fixture
def received_invitations():
    """Collect invitation_created events."""
    received = []

    def receiver(sender, **kwargs):
        received.append(kwargs)

    invitation_created.connect(receiver, weak=False)
    yield received
    invitation_created.disconnect(receiver)


@pytest.mark.django_db
class TestAddMember:

    def test_add_member(self, tenant, owner, outsider):
        membership = MembershipService.add_member(
            tenant, outsider, business_role='manager', permissions=['reports.export'], invited_by=owner
        )

        assert membership.employment_status == 'active'
        assert membership.joined_date is not None
        assert membership.grants_access
        assert membership.permissions == ['reports.export']
        assert membership.invited_by == owner
        assert AuditLog.objects.filter(tenant=tenant, action='member_added', user=owner).exists()

    def test_second_membership_is_rejected(self, tenant, employee):
        with pytest.raises(DuplicateMembership) as exc_info:
            MembershipService.add_member(tenant, employee)

        assert exc_info.value.details['employment_status'] == 'active'
        assert Membership.objects.filter(tenant=tenant, user=employee).count() == 1

    def test_terminated_membership_still_blocks_a_new_one(self, tenant, employee):
        MembershipService.remove(tenant, employee)

        with pytest.raises(DuplicateMembership):
            MembershipService.add_member(tenant, employee)

    def test_invite_after_add_is_duplicate(self, tenant, employee):
        with pytest.raises(DuplicateMembership):
            MembershipService.invite(tenant, employee)

    def test_same_user_in_two_tenants(self, tenant, other_tenant, outsider):
        MembershipService.add_member(tenant, outsider)
        MembershipService.add_member(other_tenant, outsider)

        assert Membership.objects.for_user(outsider).count() == 2

    def test_unknown_override_is_rejected(self, tenant, outsider):
        with pytest.raises(ValidationError):
            MembershipService.add_member(tenant, outsider, permissions=['finance.embezzle'])

        assert not Membership.objects.filter(user=outsider).exists()

    def test_actor_needs_manage_users(self, tenant, employee, outsider):
        with pytest.raises(PermissionDenied):
            MembershipService.add_member(tenant, outsider, invited_by=employee)

    def test_only_owners_grant_owner_role(self, tenant, make_user, member_factory, outsider):
        admin = member_factory(make_user('admin@example.com'), 'admin')

        with pytest.raises(PermissionDenied):
            MembershipService.add_member(tenant, outsider, business_role='owner', invited_by=admin)

    def test_global_user_manager_can_add(self, tenant, make_user, outsider):
        support = make_user('support@example.com')
        IdentityService.grant_permission(support, 'users.create')

        membership = MembershipService.add_member(tenant, outsider, invited_by=support)

        assert membership.business_role == 'employee'


@pytest.mark.django_db(transaction=True)
class TestInvitations:

    def test_invite_returns_token_and_emits_event(self, tenant, owner, outsider, received_invitations):
        token = MembershipService.invite(tenant, outsider, 'manager', invited_by=owner)

        membership = Membership.objects.get(tenant=tenant, user=outsider)
        assert token and membership.invitation_token == token
        assert membership.is_invitation_pending
        assert membership.employment_status == 'active'
        assert not membership.grants_access
        assert len(received_invitations) == 1
        assert received_invitations[0]['token'] == token
        assert received_invitations[0]['invited_by'] == owner

    def test_failed_invite_emits_nothing(self, tenant, employee, received_invitations):
        with pytest.raises(DuplicateMembership):
            MembershipService.invite(tenant, employee)

        assert received_invitations == []

    def test_accept_invitation(self, tenant, outsider):
        token = MembershipService.invite(tenant, outsider)

        membership = MembershipService.accept_invitation(token, outsider)

        assert membership.invitation_token is None
        assert membership.invitation_accepted_at is not None
        assert membership.joined_date is not None
        assert membership.grants_access

    def test_token_is_single_use(self, tenant, outsider):
        token = MembershipService.invite(tenant, outsider)
        MembershipService.accept_invitation(token)

        with pytest.raises(NotFound):
            MembershipService.accept_invitation(token)

    def test_unknown_token(self):
        with pytest.raises(NotFound):
            MembershipService.accept_invitation('no-such-token')

    def test_accept_by_wrong_user(self, tenant, outsider, employee):
        token = MembershipService.invite(tenant, outsider)

        with pytest.raises(PermissionDenied):
            MembershipService.accept_invitation(token, employee)

    def test_decline_invitation(self, tenant, outsider):
        token = MembershipService.invite(tenant, outsider)

        membership = MembershipService.decline_invitation(token, outsider)

        assert membership.employment_status == 'terminated'
        assert membership.left_date is not None
        assert membership.invitation_token is None

    def test_invite_by_email_creates_user(self, tenant, owner):
        membership, token = MembershipService.invite_by_email(
            tenant, 'new.hire@example.com', 'employee', invited_by=owner, first_name='New'
        )

        user = User.objects.by_email('new.hire@example.com')
        assert membership.user == user
        assert user.first_name == 'New'
        assert not user.check_password('')
        assert membership.invitation_token == token

    def test_pending_invitations(self, tenant, outsider, make_user):
        MembershipService.invite(tenant, outsider)
        accepted = make_user('accepted@example.com')
        MembershipService.accept_invitation(MembershipService.invite(tenant, accepted))

        assert [m.user for m in MembershipService.pending_invitations(tenant)] == [outsider]

    def test_invited_then_removed_member_is_terminated_and_queryable(self, tenant, owner, outsider):
        token = MembershipService.invite(tenant, outsider, invited_by=owner)

        MembershipService.remove(tenant, outsider, actor=owner)

        membership = Membership.objects.get(tenant=tenant, user=outsider)
        assert membership.employment_status == 'terminated'
        assert membership.left_date is not None
        assert membership.invitation_token is None
        assert outsider in [m.user for m in MembershipService.list_members(tenant, include_terminated=True)]
        assert outsider not in [m.user for m in MembershipService.list_members(tenant)]
        with pytest.raises(NotFound):
            MembershipService.accept_invitation(token, outsider)

    def test_reactivating_unaccepted_invite_issues_new_token(self, tenant, outsider, received_invitations):
        old_token = MembershipService.invite(tenant, outsider)
        MembershipService.remove(tenant, outsider)

        membership = MembershipService.reactivate(tenant, outsider)

        assert membership.invitation_token not in (None, old_token)
        assert membership.is_invitation_pending
        assert len(received_invitations) == 2


@pytest.mark.django_db
class TestRemoveAndReactivate:

    def test_remove_is_logical(self, tenant, owner, employee):
        membership = MembershipService.remove(tenant, employee, actor=owner)

        assert membership.employment_status == 'terminated'
        assert membership.left_date is not None
        assert Membership.objects.filter(tenant=tenant, user=employee).exists()

    def test_remove_twice_is_a_no_op(self, tenant, employee):
        first = MembershipService.remove(tenant, employee)
        second = MembershipService.remove(tenant, employee)

        assert second.left_date == first.left_date
        assert AuditLog.objects.filter(action='member_removed').count() == 1

    def test_remove_non_member(self, tenant, outsider):
        with pytest.raises(NotFound):
            MembershipService.remove(tenant, outsider)

    def test_last_owner_cannot_be_removed(self, tenant, owner):
        with pytest.raises(ValidationError):
            MembershipService.remove(tenant, owner)

    def test_owner_can_be_removed_when_another_exists(self, tenant, owner, make_user):
        co_owner = make_user('co@example.com')
        MembershipService.add_member(tenant, co_owner, business_role='owner', invited_by=owner)

        MembershipService.remove(tenant, owner, actor=co_owner)

        assert Membership.objects.get(tenant=tenant, user=owner).is_terminated

    def test_reactivate(self, tenant, employee):
        MembershipService.remove(tenant, employee)

        membership = MembershipService.reactivate(tenant, employee)

        assert membership.employment_status == 'active'
        assert membership.left_date is None
        assert membership.grants_access

    def test_reactivate_active_member_fails(self, tenant, employee):
        with pytest.raises(ValidationError):
            MembershipService.reactivate(tenant, employee)


@pytest.mark.django_db
class TestRolesStatusAndOverrides:

    def test_change_role(self, tenant, owner, employee):
        membership = MembershipService.change_role(tenant, employee, 'manager', actor=owner)

        assert membership.business_role == 'manager'
        log = AuditLog.objects.get(action='member_role_changed')
        assert log.diff == {'business_role': {'old': 'employee', 'new': 'manager'}}

    def test_change_role_of_terminated_member_fails(self, tenant, employee):
        MembershipService.remove(tenant, employee)

        with pytest.raises(ValidationError):
            MembershipService.change_role(tenant, employee, 'manager')

    def test_last_owner_cannot_be_demoted(self, tenant, owner, superadmin):
        with pytest.raises(ValidationError):
            MembershipService.change_role(tenant, owner, 'admin', actor=superadmin)

    def test_owner_cannot_demote_self(self, tenant, owner, make_user):
        MembershipService.add_member(tenant, make_user('co@example.com'), business_role='owner')

        with pytest.raises(ValidationError):
            MembershipService.change_role(tenant, owner, 'admin', actor=owner)

    def test_change_status_to_inactive_and_back(self, tenant, employee):
        MembershipService.change_status(tenant, employee, 'inactive')
        assert not Membership.objects.get(tenant=tenant, user=employee).grants_access

        membership = MembershipService.change_status(tenant, employee, 'active')
        assert membership.grants_access

    def test_change_status_to_terminated_removes(self, tenant, employee):
        membership = MembershipService.change_status(tenant, employee, 'terminated')

        assert membership.is_terminated
        assert membership.left_date is not None

    def test_change_status_from_terminated_to_active_reactivates(self, tenant, employee):
        MembershipService.remove(tenant, employee)

        membership = MembershipService.change_status(tenant, employee, 'active')

        assert membership.employment_status == 'active'
        assert membership.left_date is None

    def test_terminated_to_inactive_fails(self, tenant, employee):
        MembershipService.remove(tenant, employee)

        with pytest.raises(ValidationError):
            MembershipService.change_status(tenant, employee, 'inactive')

    def test_invalid_status(self, tenant, employee):
        with pytest.raises(ValidationError):
            MembershipService.change_status(tenant, employee, 'retired')

    def test_update_permissions_replaces_overrides(self, tenant, make_user, member_factory):
        user = member_factory(make_user('p@example.com'), permissions=['reports.export'])

        membership = MembershipService.update_permissions(tenant, user, ['finance.view', 'finance.view'])

        assert membership.permissions == ['finance.view']
        assert 'reports.export' not in membership.effective_permissions()

    def test_update_permissions_validates(self, tenant, employee):
        with pytest.raises(ValidationError):
            MembershipService.update_permissions(tenant, employee, ['root.everything'])

    def test_role_in_business(self, tenant, manager, outsider):
        assert MembershipService.role_in_business(tenant, manager) == 'manager'
        assert MembershipService.role_in_business(tenant, outsider) is None
        assert MembershipService.has_role_in_business(tenant, manager, 'manager')
