"""
API tests for advance and claim endpoints.
"""
import pytest

from apps.finance.models import Advance
from apps.finance.services import AdvanceService

BASE = '/v1/tenants/test-tenant'


@pytest.mark.django_db
class TestAdvanceEndpoints:

    def create(self, client, **data):
        data.setdefault('amount', '1000.00')
        return client.post(f'{BASE}/advances', data, format='json')

    def test_member_creates_own_advance(self, auth_client, employee):
        response = self.create(auth_client(employee), purpose='Travel')

        assert response.status_code == 201
        assert response.data['status'] == 'pending'
        assert response.data['user']['email'] == 'employee@example.com'
        assert response.data['remaining_amount'] == '1000.00'
        assert Advance.objects.filter(public_id=response.data['id']).exists()

    def test_invalid_amount(self, auth_client, employee):
        response = self.create(auth_client(employee), amount='0')

        assert response.status_code == 400
        assert response.data['code'] == 'VALIDATION_ERROR'
        assert 'amount' in response.data['details']['errors']

    def test_outsider_cannot_create(self, auth_client, outsider):
        assert self.create(auth_client(outsider)).status_code == 403

    def test_requires_authentication(self, api_client, tenant):
        assert api_client.get(f'{BASE}/advances').status_code == 401

    def test_list_is_scoped_to_viewer(self, auth_client, tenant, employee, manager):
        AdvanceService.create(tenant, employee, '10')
        AdvanceService.create(tenant, manager, '20')

        assert len(auth_client(employee).get(f'{BASE}/advances').data) == 1
        assert len(auth_client(manager).get(f'{BASE}/advances').data) == 2

    def test_full_lifecycle(self, auth_client, tenant, employee, manager):
        advance = AdvanceService.create(tenant, employee, '1000')
        client = auth_client(manager)
        url = f'{BASE}/advances/{advance.public_id}'

        assert client.post(f'{url}/approve', {'notes': 'ok'}, format='json').status_code == 200
        assert client.post(f'{url}/mark-paid', {}, format='json').data['status'] == 'paid'
        client.post(f'{url}/repayments', {'amount': '300'}, format='json')
        response = client.post(f'{url}/repayments', {'amount': '400'}, format='json')

        assert response.status_code == 200
        assert response.data['repaid_amount'] == '700.00'
        assert response.data['remaining_amount'] == '300.00'

        response = client.post(f'{url}/repayments', {'amount': '301'}, format='json')

        assert response.status_code == 409
        assert response.data['code'] == 'OVER_SETTLEMENT'
        assert response.data['details']['remaining'] == '300.00'

    def test_invalid_transition_is_conflict(self, auth_client, tenant, employee, manager):
        advance = AdvanceService.create(tenant, employee, '10')

        response = auth_client(manager).post(f'{BASE}/advances/{advance.public_id}/mark-paid', {}, format='json')

        assert response.status_code == 409
        assert response.data['code'] == 'INVALID_TRANSITION'
        assert response.data['details']['current_status'] == 'pending'

    def test_employee_cannot_approve(self, auth_client, tenant, employee):
        advance = AdvanceService.create(tenant, employee, '10')

        response = auth_client(employee).post(f'{BASE}/advances/{advance.public_id}/approve', {}, format='json')

        assert response.status_code == 403

    def test_reject_requires_reason(self, auth_client, tenant, employee, manager):
        advance = AdvanceService.create(tenant, employee, '10')
        url = f'{BASE}/advances/{advance.public_id}/reject'

        assert auth_client(manager).post(url, {}, format='json').status_code == 400
        response = auth_client(manager).post(url, {'reason': 'Over budget'}, format='json')
        assert response.data['rejection_reason'] == 'Over budget'

    def test_requester_edits_and_deletes_pending(self, auth_client, tenant, employee):
        advance = AdvanceService.create(tenant, employee, '10')
        client = auth_client(employee)
        url = f'{BASE}/advances/{advance.public_id}'

        response = client.patch(url, {'amount': '15.50'}, format='json')
        assert response.status_code == 200
        assert response.data['amount'] == '15.50'

        assert client.delete(url).status_code == 204
        assert client.get(url).status_code == 404

    def test_edit_after_approval_is_conflict(self, auth_client, tenant, employee, manager):
        advance = AdvanceService.create(tenant, employee, '10')
        AdvanceService.approve(advance, manager)

        response = auth_client(employee).patch(
            f'{BASE}/advances/{advance.public_id}', {'purpose': 'x'}, format='json'
        )

        assert response.status_code == 409

    def test_requester_cancels_pending(self, auth_client, tenant, employee):
        advance = AdvanceService.create(tenant, employee, '10')

        response = auth_client(employee).post(f'{BASE}/advances/{advance.public_id}/cancel')

        assert response.status_code == 200
        assert response.data['status'] == 'cancelled'

    def test_unknown_request(self, auth_client, manager):
        url = f'{BASE}/advances/00000000-0000-0000-0000-000000000000'

        assert auth_client(manager).get(url).status_code == 404

    def test_summary(self, auth_client, tenant, employee, manager):
        AdvanceService.create(tenant, employee, '10')

        response = auth_client(manager).get(f'{BASE}/advances/summary')

        assert response.status_code == 200
        assert response.data['count'] == 1
        assert response.data['by_status']['pending'] == 1
        assert response.data['total_amount'] == '10.00'

    def test_overdue_requires_finance_view(self, auth_client, tenant, employee, manager):
        assert auth_client(employee).get(f'{BASE}/advances/overdue').status_code == 403
        assert auth_client(manager).get(f'{BASE}/advances/overdue').data == []


@pytest.mark.django_db
class TestClaimEndpoints:

    def test_partial_approval(self, auth_client, employee, manager):
        response = auth_client(employee).post(
            f'{BASE}/claims', {'amount': '250.00', 'vendor': 'Taxi Co'}, format='json'
        )
        assert response.status_code == 201
        url = f"{BASE}/claims/{response.data['id']}"

        client = auth_client(manager)
        response = client.post(f'{url}/approve', {'approved_amount': '200.00'}, format='json')
        assert response.data['approved_amount'] == '200.00'
        assert response.data['remaining_amount'] == '200.00'

        client.post(f'{url}/mark-paid', {}, format='json')
        response = client.post(f'{url}/reimbursements', {'amount': '200'}, format='json')

        assert response.status_code == 200
        assert response.data['is_fully_settled'] is True
        assert response.data['reimbursed_amount'] == '200.00'

    def test_unknown_expense_type(self, auth_client, employee):
        response = auth_client(employee).post(
            f'{BASE}/claims', {'amount': '5', 'expense_type': 'gift'}, format='json'
        )

        assert response.status_code == 400
