"""
Tests for the financial request engine (advances and claims).
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from apps.core.events import request_status_changed
from apps.core.exceptions import (
    InvalidTransition, NotFound, OverSettlement, PermissionDenied, ValidationError,
)
from apps.finance.models import Advance, Claim
from apps.finance.services import AdvanceService, ClaimService
from apps.rbac.models import AuditLog
from apps.tenants.services import MembershipService


@pytest.fixture
def advance(tenant, employee):
    return AdvanceService.create(tenant, employee, '1000.00', purpose='Travel float')


@pytest.fixture
def paid_advance(advance, manager):
    AdvanceService.approve(advance, manager)
    return AdvanceService.mark_paid(advance, manager)


@pytest.fixture
def claim(tenant, employee):
    return ClaimService.create(tenant, employee, '250.00', vendor='Taxi Co', expense_type='reimbursement')


@pytest.mark.django_db
class TestCreate:

    def test_create_for_self(self, tenant, employee):
        advance = AdvanceService.create(tenant, employee, '500', purpose='Rent')

        assert advance.status == 'pending'
        assert advance.amount == Decimal('500.00')
        assert advance.user == employee
        assert advance.requested_by == employee
        assert advance.remaining_amount == Decimal('500.00')
        assert advance.settled_amount == Decimal('0.00')
        assert not advance.is_fully_settled
        assert AuditLog.objects.filter(action='advance_created', tenant=tenant).exists()

    def test_manager_creates_for_member(self, tenant, manager, employee):
        advance = AdvanceService.create(tenant, manager, '100', beneficiary=employee)

        assert advance.user == employee
        assert advance.requested_by == manager

    def test_employee_cannot_create_for_others(self, tenant, manager, employee):
        with pytest.raises(PermissionDenied):
            AdvanceService.create(tenant, employee, '100', beneficiary=manager)

    def test_non_member_cannot_create(self, tenant, outsider):
        with pytest.raises(PermissionDenied):
            AdvanceService.create(tenant, outsider, '100')

    def test_beneficiary_must_be_member(self, tenant, manager, outsider):
        with pytest.raises(ValidationError) as exc_info:
            AdvanceService.create(tenant, manager, '100', beneficiary=outsider)

        assert 'user' in exc_info.value.errors

    @pytest.mark.parametrize('amount, message', [
        ('0', 'Must be greater than zero.'),
        ('-5', 'Must be greater than zero.'),
        ('12.345', 'Ensure that there are no more than 2 decimal places.'),
        ('abc', 'A valid number is required.'),
        ('NaN', 'A valid number is required.'),
    ])
    def test_invalid_amounts(self, tenant, employee, amount, message):
        with pytest.raises(ValidationError) as exc_info:
            AdvanceService.create(tenant, employee, amount)

        assert exc_info.value.errors['amount'] == [message]

    def test_all_field_errors_reported_together(self, tenant, employee):
        with pytest.raises(ValidationError) as exc_info:
            AdvanceService.create(tenant, employee, '-1', advance_type='bitcoin', status='paid')

        assert set(exc_info.value.errors) == {'amount', 'advance_type', 'status'}

    def test_claim_fields(self, claim):
        assert claim.vendor == 'Taxi Co'
        assert claim.approved_amount is None
        assert claim.amount_basis == Decimal('250.00')


@pytest.mark.django_db
class TestStateMachine:

    def test_approve(self, advance, manager):
        advance = AdvanceService.approve(advance, manager, notes='OK')

        assert advance.status == 'approved'
        assert advance.approved_by == manager
        assert advance.approved_at is not None
        assert advance.approval_notes == 'OK'

    def test_employee_cannot_approve(self, advance, employee):
        with pytest.raises(PermissionDenied):
            AdvanceService.approve(advance, employee)

    def test_reject_requires_reason(self, advance, manager):
        with pytest.raises(ValidationError):
            AdvanceService.reject(advance, manager, '  ')

        advance = AdvanceService.reject(advance, manager, 'Budget exhausted')
        assert advance.status == 'rejected'
        assert advance.rejection_reason == 'Budget exhausted'

    def test_cannot_pay_pending(self, advance, manager):
        with pytest.raises(InvalidTransition) as exc_info:
            AdvanceService.mark_paid(advance, manager)

        assert exc_info.value.current_status == 'pending'

    def test_cannot_approve_rejected(self, advance, manager):
        AdvanceService.reject(advance, manager, 'No')

        with pytest.raises(InvalidTransition):
            AdvanceService.approve(advance, manager)

    def test_cannot_approve_twice(self, advance, manager):
        AdvanceService.approve(advance, manager)

        with pytest.raises(InvalidTransition):
            AdvanceService.approve(advance, manager)

    def test_mark_paid(self, paid_advance):
        assert paid_advance.status == 'paid'
        assert paid_advance.paid_at is not None

    def test_paid_request_cannot_be_cancelled(self, paid_advance, manager):
        with pytest.raises(InvalidTransition):
            AdvanceService.cancel(paid_advance, manager)

    @pytest.mark.parametrize('setup', ['pending', 'approved'])
    def test_cancel_from_open_states(self, advance, manager, setup):
        if setup == 'approved':
            AdvanceService.approve(advance, manager)

        advance = AdvanceService.cancel(advance, manager)

        assert advance.status == 'cancelled'

    def test_rejected_is_terminal(self, advance, manager):
        AdvanceService.reject(advance, manager, 'No')

        with pytest.raises(InvalidTransition) as exc_info:
            AdvanceService.cancel(advance, manager)

        assert exc_info.value.current_status == 'rejected'
        assert Advance.objects.get(pk=advance.pk).status == 'rejected'

    def test_cancelled_is_terminal(self, advance, manager):
        AdvanceService.cancel(advance, manager)

        for operation in (
            lambda: AdvanceService.approve(advance, manager),
            lambda: AdvanceService.reject(advance, manager, 'x'),
            lambda: AdvanceService.mark_paid(advance, manager),
            lambda: AdvanceService.cancel(advance, manager),
        ):
            with pytest.raises(InvalidTransition):
                operation()

    def test_requester_cancels_own_pending(self, advance, employee):
        assert AdvanceService.cancel(advance, employee).status == 'cancelled'

    def test_requester_cannot_cancel_approved(self, advance, manager, employee):
        AdvanceService.approve(advance, manager)

        with pytest.raises(PermissionDenied):
            AdvanceService.cancel(advance, employee)

    def test_stale_instance_sees_current_status(self, advance, manager):
        stale = Advance.objects.get(pk=advance.pk)
        AdvanceService.approve(advance, manager)

        with pytest.raises(InvalidTransition) as exc_info:
            AdvanceService.approve(stale, manager)

        assert exc_info.value.current_status == 'approved'

    def test_transitions_are_audited(self, paid_advance):
        actions = set(AuditLog.objects.filter(target_id=paid_advance.id).values_list('action', flat=True))

        assert {'advance_created', 'advance_approved', 'advance_paid'} <= actions


@pytest.mark.django_db
class TestLedger:

    def test_repayments_reduce_remaining(self, paid_advance, manager):
        AdvanceService.record_repayment(paid_advance, manager, '300')
        advance = AdvanceService.record_repayment(paid_advance, manager, Decimal('400'))

        assert advance.settled_amount == Decimal('700.00')
        assert advance.remaining_amount == Decimal('300.00')
        assert not advance.is_fully_settled
        assert advance.status == 'paid'

    def test_over_settlement_is_rejected_not_clamped(self, paid_advance, manager):
        AdvanceService.record_repayment(paid_advance, manager, '300')
        AdvanceService.record_repayment(paid_advance, manager, '400')

        with pytest.raises(OverSettlement) as exc_info:
            AdvanceService.record_repayment(paid_advance, manager, '301')

        assert exc_info.value.remaining == Decimal('300.00')
        assert exc_info.value.current_status == 'paid'
        advance = Advance.objects.get(pk=paid_advance.pk)
        assert advance.settled_amount == Decimal('700.00')
        assert advance.remaining_amount == Decimal('300.00')

    def test_full_repayment(self, paid_advance, manager):
        advance = AdvanceService.record_repayment(paid_advance, manager, '1000')

        assert advance.remaining_amount == Decimal('0.00')
        assert advance.is_fully_settled
        assert advance.is_fully_repaid

    def test_nothing_left_to_settle(self, paid_advance, manager):
        AdvanceService.record_repayment(paid_advance, manager, '1000')

        with pytest.raises(OverSettlement):
            AdvanceService.record_repayment(paid_advance, manager, '0.01')

    @pytest.mark.parametrize('amount', ['0', '-10'])
    def test_non_positive_settlement(self, paid_advance, manager, amount):
        with pytest.raises(OverSettlement):
            AdvanceService.record_repayment(paid_advance, manager, amount)

    def test_malformed_settlement_amount(self, paid_advance, manager):
        with pytest.raises(ValidationError):
            AdvanceService.record_repayment(paid_advance, manager, '1.001')
        with pytest.raises(ValidationError):
            AdvanceService.record_repayment(paid_advance, manager, 'ten')

    def test_settlement_requires_paid_status(self, advance, manager):
        with pytest.raises(InvalidTransition):
            AdvanceService.record_repayment(advance, manager, '10')

    def test_settlement_requires_manage_finance(self, paid_advance, employee):
        with pytest.raises(PermissionDenied):
            AdvanceService.record_repayment(paid_advance, employee, '10')

    def test_claim_approved_amount_is_the_basis(self, claim, manager):
        ClaimService.approve(claim, manager, approved_amount='200.00')
        claim = ClaimService.mark_paid(claim, manager)

        assert claim.approved_amount == Decimal('200.00')
        assert claim.remaining_amount == Decimal('200.00')

        with pytest.raises(OverSettlement):
            ClaimService.record_reimbursement(claim, manager, '250')

        claim = ClaimService.record_reimbursement(claim, manager, '200')
        assert claim.is_fully_reimbursed

    def test_approved_amount_cannot_exceed_request(self, claim, manager):
        with pytest.raises(ValidationError):
            ClaimService.approve(claim, manager, approved_amount='300')

        assert Claim.objects.get(pk=claim.pk).status == 'pending'

    def test_advance_has_no_approved_amount(self, advance, manager):
        with pytest.raises(ValidationError):
            AdvanceService.approve(advance, manager, approved_amount='10')


@pytest.mark.django_db
class TestPendingOnlyEdits:

    def test_update_pending(self, advance, employee):
        advance = AdvanceService.update(advance, employee, amount='800', purpose='Smaller float')

        assert advance.amount == Decimal('800.00')
        assert advance.remaining_amount == Decimal('800.00')
        log = AuditLog.objects.get(action='advance_updated')
        assert log.diff['amount'] == {'old': '1000.00', 'new': '800.00'}

    def test_update_after_approval_fails(self, advance, manager, employee):
        AdvanceService.approve(advance, manager)

        with pytest.raises(InvalidTransition):
            AdvanceService.update(advance, employee, purpose='Changed')

    def test_update_rejects_unknown_fields(self, advance, employee):
        with pytest.raises(ValidationError) as exc_info:
            AdvanceService.update(advance, employee, settled_amount='1000')

        assert 'settled_amount' in exc_info.value.errors

    def test_beneficiary_change_needs_manager(self, advance, employee, manager):
        with pytest.raises(PermissionDenied):
            AdvanceService.update(advance, employee, user=manager)

        advance = AdvanceService.update(advance, manager, user=manager)
        assert advance.user == manager

    def test_unrelated_member_cannot_edit(self, advance, make_user, member_factory):
        colleague = member_factory(make_user('colleague@example.com'))

        with pytest.raises(PermissionDenied):
            AdvanceService.update(advance, colleague, purpose='Mine now')

    def test_delete_pending(self, advance, employee, tenant):
        AdvanceService.delete(advance, employee)

        assert not Advance.objects.filter(pk=advance.pk).exists()
        assert Advance.objects_with_deleted.filter(pk=advance.pk).exists()
        with pytest.raises(NotFound):
            AdvanceService.get_request(tenant, advance.public_id, employee)

    def test_delete_after_payment_fails(self, paid_advance, manager):
        with pytest.raises(InvalidTransition):
            AdvanceService.delete(paid_advance, manager)


@pytest.mark.django_db
class TestVisibility:

    def test_member_sees_only_own_requests(self, tenant, employee, manager, make_user, member_factory):
        mine = AdvanceService.create(tenant, employee, '10')
        AdvanceService.create(tenant, manager, '20')

        assert list(AdvanceService.list_requests(tenant, employee)) == [mine]

    def test_finance_viewer_sees_everything(self, tenant, employee, manager):
        AdvanceService.create(tenant, employee, '10')
        AdvanceService.create(tenant, manager, '20')

        assert AdvanceService.list_requests(tenant, manager).count() == 2

    def test_finance_view_override(self, tenant, employee, make_user, member_factory):
        AdvanceService.create(tenant, employee, '10')
        auditor = member_factory(make_user('auditor@example.com'), 'viewer', permissions=['finance.view'])

        assert AdvanceService.list_requests(tenant, auditor).count() == 1

    def test_non_member_is_denied(self, tenant, employee, outsider):
        AdvanceService.create(tenant, employee, '10')

        with pytest.raises(PermissionDenied):
            AdvanceService.list_requests(tenant, outsider)

    def test_terminated_member_is_denied(self, tenant, employee):
        AdvanceService.create(tenant, employee, '10')
        MembershipService.remove(tenant, employee)

        with pytest.raises(PermissionDenied):
            AdvanceService.list_requests(tenant, employee)

    def test_other_tenant_requests_are_invisible(self, tenant, other_tenant, employee):
        advance = AdvanceService.create(tenant, employee, '10')
        other_owner = other_tenant.created_by

        with pytest.raises(NotFound):
            AdvanceService.get_request(other_tenant, advance.public_id, other_owner)

    def test_filters(self, tenant, employee, manager):
        first = AdvanceService.create(tenant, employee, '10')
        AdvanceService.create(tenant, manager, '20')
        AdvanceService.approve(first, manager)

        assert list(AdvanceService.list_requests(tenant, manager, status='approved')) == [first]
        assert list(AdvanceService.list_requests(tenant, manager, beneficiary=employee)) == [first]
        with pytest.raises(ValidationError):
            AdvanceService.list_requests(tenant, manager, status='lost')


@pytest.mark.django_db
class TestSummaryAndOverdue:

    def test_summary(self, tenant, employee, manager, paid_advance):
        AdvanceService.create(tenant, employee, '50')
        AdvanceService.record_repayment(paid_advance, manager, '300')

        summary = AdvanceService.summary(tenant, manager)

        assert summary['count'] == 2
        assert summary['by_status']['pending'] == 1
        assert summary['by_status']['paid'] == 1
        assert summary['total_amount'] == Decimal('1050.00')
        assert summary['total_settled'] == Decimal('300.00')
        assert summary['total_outstanding'] == Decimal('700.00')

    def test_empty_summary(self, tenant, manager):
        summary = ClaimService.summary(tenant, manager)

        assert summary['count'] == 0
        assert summary['total_amount'] == Decimal('0.00')

    def test_overdue(self, tenant, employee, manager):
        advance = AdvanceService.create(
            tenant, employee, '100', due_date=timezone.localdate() - timedelta(days=1)
        )
        AdvanceService.approve(advance, manager)
        advance = AdvanceService.mark_paid(advance, manager)

        assert advance.is_overdue
        assert list(AdvanceService.overdue(tenant)) == [advance]

        AdvanceService.record_repayment(advance, manager, '100')
        assert list(AdvanceService.overdue(tenant)) == []


@pytest.mark.django_db(transaction=True)
class TestStatusEvents:

    @pytest.fixture
    def received(self):
        received = []

        def receiver(sender, **kwargs):
            received.append((sender, kwargs['previous_status'], kwargs['status']))

        request_status_changed.connect(receiver, weak=False)
        yield received
        request_status_changed.disconnect(receiver)

    def test_each_transition_emits_once(self, advance, manager, received):
        AdvanceService.approve(advance, manager)
        AdvanceService.mark_paid(advance, manager)

        assert received == [(Advance, 'pending', 'approved'), (Advance, 'approved', 'paid')]

    def test_failed_transition_emits_nothing(self, advance, manager, received):
        with pytest.raises(InvalidTransition):
            AdvanceService.mark_paid(advance, manager)

        assert received == []

    def test_settlement_is_not_a_status_change(self, advance, manager, received):
        AdvanceService.approve(advance, manager)
        AdvanceService.mark_paid(advance, manager)
        AdvanceService.record_repayment(advance, manager, '10')

        assert len(received) == 2
