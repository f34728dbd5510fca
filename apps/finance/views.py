"""
Advance and claim API views.

One set of views serves both request kinds; ``urls.py`` binds each route
to ``AdvanceService``/``ClaimService`` and the matching serializers
through ``as_view`` keyword arguments.
"""
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.permissions import requires_action
from apps.finance.serializers import (
    ApproveSerializer, RejectSerializer, MarkPaidSerializer,
    SettlementSerializer, SummarySerializer,
)
from apps.tenants.mixins import TenantScopedMixin, get_user_or_404, validate_input


class FinancialRequestViewMixin(TenantScopedMixin):
    """
    Binds a view to one request kind.

    ``service`` is an ``AdvanceService``/``ClaimService`` class,
    ``serializer_class`` renders it and ``write_serializer_class`` checks
    create/edit input.
    """
    service = None
    serializer_class = None
    write_serializer_class = None

    def get_object(self):
        return self.service.get_request(self.get_tenant(), self.kwargs['request_id'], self.request.user)

    def render(self, obj, status_code=status.HTTP_200_OK):
        return Response(self.serializer_class(obj).data, status=status_code)


class FinancialRequestListView(FinancialRequestViewMixin, APIView):
    """
    GET  /v1/tenants/{slug}/{advances|claims}
    POST /v1/tenants/{slug}/{advances|claims}

    Finance viewers see every request in the tenant, other members only
    the ones they requested or benefit from.
    """

    @extend_schema(
        tags=['Finance'],
        summary='List requests',
        parameters=[
            OpenApiParameter('status', OpenApiTypes.STR, OpenApiParameter.QUERY),
            OpenApiParameter('user_id', OpenApiTypes.UUID, OpenApiParameter.QUERY, description='Beneficiary'),
        ],
        responses={200: OpenApiTypes.OBJECT},
    )
    def get(self, request, slug):
        beneficiary = request.query_params.get('user_id')
        qs = self.service.list_requests(
            self.get_tenant(),
            request.user,
            status=request.query_params.get('status'),
            beneficiary=get_user_or_404(beneficiary) if beneficiary else None,
        )
        return Response(self.serializer_class(qs, many=True).data)

    @extend_schema(tags=['Finance'], summary='Create request', request=OpenApiTypes.OBJECT,
                   responses={201: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT})
    def post(self, request, slug):
        data = dict(validate_input(self.write_serializer_class, request.data))
        beneficiary_id = data.pop('user_id', None)
        amount = data.pop('amount')
        obj = self.service.create(
            self.get_tenant(),
            request.user,
            amount,
            beneficiary=get_user_or_404(beneficiary_id) if beneficiary_id else None,
            **data
        )
        return self.render(obj, status.HTTP_201_CREATED)


class FinancialRequestDetailView(FinancialRequestViewMixin, APIView):
    """
    GET    /v1/tenants/{slug}/{kind}/{id}
    PATCH  /v1/tenants/{slug}/{kind}/{id} - pending only
    DELETE /v1/tenants/{slug}/{kind}/{id} - pending only
    """

    @extend_schema(tags=['Finance'], summary='Get request', responses={200: OpenApiTypes.OBJECT})
    def get(self, request, slug, request_id):
        return self.render(self.get_object())

    @extend_schema(tags=['Finance'], summary='Edit pending request', request=OpenApiTypes.OBJECT,
                   responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT})
    def patch(self, request, slug, request_id):
        data = dict(validate_input(self.write_serializer_class, request.data, partial=True))
        if 'user_id' in data:
            data['user'] = get_user_or_404(data.pop('user_id'))
        obj = self.service.update(self.get_object(), request.user, **data)
        return self.render(obj)

    @extend_schema(tags=['Finance'], summary='Delete pending request', responses={204: None})
    def delete(self, request, slug, request_id):
        self.service.delete(self.get_object(), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@requires_action('manage-finance')
class ApproveView(FinancialRequestViewMixin, APIView):
    """POST .../{id}/approve"""

    @extend_schema(tags=['Finance'], summary='Approve', request=ApproveSerializer,
                   responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT})
    def post(self, request, slug, request_id):
        data = validate_input(ApproveSerializer, request.data)
        obj = self.service.approve(
            self.get_object(),
            request.user,
            notes=data['notes'],
            approved_amount=data.get('approved_amount'),
        )
        return self.render(obj)


@requires_action('manage-finance')
class RejectView(FinancialRequestViewMixin, APIView):
    """POST .../{id}/reject"""

    @extend_schema(tags=['Finance'], summary='Reject', request=RejectSerializer,
                   responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT})
    def post(self, request, slug, request_id):
        data = validate_input(RejectSerializer, request.data)
        return self.render(self.service.reject(self.get_object(), request.user, data['reason']))


@requires_action('manage-finance')
class MarkPaidView(FinancialRequestViewMixin, APIView):
    """POST .../{id}/mark-paid"""

    @extend_schema(tags=['Finance'], summary='Mark paid', request=MarkPaidSerializer,
                   responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT})
    def post(self, request, slug, request_id):
        data = validate_input(MarkPaidSerializer, request.data)
        return self.render(self.service.mark_paid(self.get_object(), request.user, paid_at=data.get('paid_at')))


class CancelView(FinancialRequestViewMixin, APIView):
    """POST .../{id}/cancel - managers, or the requester while pending"""

    @extend_schema(tags=['Finance'], summary='Cancel', request=None,
                   responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT})
    def post(self, request, slug, request_id):
        return self.render(self.service.cancel(self.get_object(), request.user))


@requires_action('manage-finance')
class SettlementView(FinancialRequestViewMixin, APIView):
    """POST .../{id}/repayments or .../{id}/reimbursements"""

    @extend_schema(tags=['Finance'], summary='Record settlement', request=SettlementSerializer,
                   responses={200: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT})
    def post(self, request, slug, request_id):
        data = validate_input(SettlementSerializer, request.data)
        return self.render(self.service.record_settlement(self.get_object(), request.user, data['amount']))


class SummaryView(FinancialRequestViewMixin, APIView):
    """GET /v1/tenants/{slug}/{kind}/summary - over the requests visible to the caller"""

    @extend_schema(tags=['Finance'], summary='Summary', responses={200: SummarySerializer})
    def get(self, request, slug):
        summary = self.service.summary(self.get_tenant(), request.user)
        return Response(SummarySerializer(summary).data)


@requires_action('view-finance')
class OverdueAdvanceListView(FinancialRequestViewMixin, APIView):
    """GET /v1/tenants/{slug}/advances/overdue"""

    @extend_schema(tags=['Finance'], summary='Overdue advances', responses={200: OpenApiTypes.OBJECT})
    def get(self, request, slug):
        return Response(self.serializer_class(self.service.overdue(self.get_tenant()), many=True).data)
