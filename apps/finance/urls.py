"""
Advance and claim API URLs.

Both request kinds share the views in ``apps.finance.views``; each route
binds the service and serializers for its kind.
"""
from django.urls import path

from apps.finance.serializers import (
    AdvanceSerializer, AdvanceWriteSerializer, ClaimSerializer, ClaimWriteSerializer,
)
from apps.finance.services import AdvanceService, ClaimService
from apps.finance.views import (
    FinancialRequestListView,
    FinancialRequestDetailView,
    ApproveView,
    RejectView,
    MarkPaidView,
    CancelView,
    SettlementView,
    SummaryView,
    OverdueAdvanceListView,
)

app_name = 'finance'

KINDS = [
    # (url segment, route name prefix, settlement segment, view kwargs)
    ('advances', 'advance', 'repayments', {
        'service': AdvanceService,
        'serializer_class': AdvanceSerializer,
        'write_serializer_class': AdvanceWriteSerializer,
    }),
    ('claims', 'claim', 'reimbursements', {
        'service': ClaimService,
        'serializer_class': ClaimSerializer,
        'write_serializer_class': ClaimWriteSerializer,
    }),
]

urlpatterns = [
    path(
        'tenants/<slug:slug>/advances/overdue',
        OverdueAdvanceListView.as_view(**KINDS[0][3]),
        name='advance-overdue'
    ),
]

for segment, name, settlement, kwargs in KINDS:
    base = f'tenants/<slug:slug>/{segment}'
    item = f'{base}/<uuid:request_id>'
    urlpatterns += [
        path(base, FinancialRequestListView.as_view(**kwargs), name=f'{name}-list'),
        path(f'{base}/summary', SummaryView.as_view(**kwargs), name=f'{name}-summary'),
        path(item, FinancialRequestDetailView.as_view(**kwargs), name=f'{name}-detail'),
        path(f'{item}/approve', ApproveView.as_view(**kwargs), name=f'{name}-approve'),
        path(f'{item}/reject', RejectView.as_view(**kwargs), name=f'{name}-reject'),
        path(f'{item}/mark-paid', MarkPaidView.as_view(**kwargs), name=f'{name}-mark-paid'),
        path(f'{item}/cancel', CancelView.as_view(**kwargs), name=f'{name}-cancel'),
        path(f'{item}/{settlement}', SettlementView.as_view(**kwargs), name=f'{name}-settle'),
    ]
