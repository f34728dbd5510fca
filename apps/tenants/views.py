"""
Tenant, membership and feature API views.

Tenant-scoped views resolve the tenant from the ``{slug}`` path segment
and declare the action they require; ``CanPerformAction`` asks the
authorization resolver before the handler runs and the services check
again with the caller as actor.
"""
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from drf_spectacular.utils import extend_schema, OpenApiExample, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import NotFound
from apps.core.permissions import requires_action
from apps.rbac.models import User, AuditLog
from apps.rbac.serializers import AuditLogSerializer
from apps.tenants.mixins import TenantScopedMixin, get_user_or_404, validate_input
from apps.tenants.serializers import (
    TenantSerializer, TenantCreateSerializer, TenantUpdateSerializer,
    MembershipSerializer, MemberAddSerializer, MemberInviteSerializer,
    InvitationTokenSerializer, MemberRoleSerializer, MemberStatusSerializer,
    MemberPermissionsSerializer, FeatureStateSerializer, FeatureSettingsSerializer,
)
from apps.tenants.services import TenantService, MembershipService, FeatureService


# ===== TENANTS =====

class TenantListView(APIView):
    """
    GET  /v1/tenants - tenants the caller belongs to (all of them for superadmins)
    POST /v1/tenants - create a tenant; the caller becomes its owner
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['Tenants'],
        summary="List user's tenants",
        responses={200: TenantSerializer(many=True)},
    )
    def get(self, request):
        tenants = TenantService.get_user_tenants(request.user)
        serializer = TenantSerializer(tenants, many=True, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=['Tenants'],
        summary='Create tenant',
        description='''
Create a tenant with the authenticated user as owner.

The slug is derived from the name. When it is taken, `-1`, `-2`, ... is
appended until it is unique (`Acme Inc` becomes `acme-inc-1` if
`acme-inc` exists).
        ''',
        request=TenantCreateSerializer,
        responses={201: TenantSerializer, 400: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Create Tenant Request',
                value={'name': 'Acme Inc', 'email': 'hello@acme.test'},
                request_only=True
            ),
        ]
    )
    def post(self, request):
        data = validate_input(TenantCreateSerializer, request.data)
        tenant = TenantService.create_tenant(request.user, **data)
        return Response(
            TenantSerializer(tenant, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )


@requires_action(GET='view-business', PATCH='edit-business', DELETE='delete-business')
class TenantDetailView(TenantScopedMixin, APIView):
    """
    GET    /v1/tenants/{slug}
    PATCH  /v1/tenants/{slug}
    DELETE /v1/tenants/{slug}
    """

    @extend_schema(tags=['Tenants'], summary='Get tenant', responses={200: TenantSerializer})
    def get(self, request, slug):
        return Response(TenantSerializer(self.get_tenant(), context={'request': request}).data)

    @extend_schema(
        tags=['Tenants'],
        summary='Update tenant',
        request=TenantUpdateSerializer,
        responses={200: TenantSerializer},
    )
    def patch(self, request, slug):
        data = validate_input(TenantUpdateSerializer, request.data, partial=True)
        tenant = TenantService.update_tenant(self.get_tenant(), request.user, **data)
        return Response(TenantSerializer(tenant, context={'request': request}).data)

    @extend_schema(tags=['Tenants'], summary='Delete tenant (soft delete)', responses={204: None})
    def delete(self, request, slug):
        TenantService.soft_delete_tenant(self.get_tenant(), request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ===== MEMBERS =====

@requires_action(GET='view-users', POST='manage-users')
class MemberListView(TenantScopedMixin, APIView):
    """
    GET  /v1/tenants/{slug}/members
    POST /v1/tenants/{slug}/members - add an existing user with immediate access
    """

    @extend_schema(
        tags=['Members'],
        summary='List members',
        parameters=[
            OpenApiParameter(
                'include_terminated', OpenApiTypes.BOOL, OpenApiParameter.QUERY,
                description='Include terminated memberships'
            ),
        ],
        responses={200: MembershipSerializer(many=True)},
    )
    def get(self, request, slug):
        include_terminated = request.query_params.get('include_terminated', '').lower() in ('1', 'true', 'yes')
        members = MembershipService.list_members(self.get_tenant(), include_terminated=include_terminated)
        return Response(MembershipSerializer(members, many=True).data)

    @extend_schema(
        tags=['Members'],
        summary='Add member',
        request=MemberAddSerializer,
        responses={201: MembershipSerializer, 409: OpenApiTypes.OBJECT},
    )
    def post(self, request, slug):
        data = validate_input(MemberAddSerializer, request.data)
        if data.get('user_id'):
            user = get_user_or_404(data['user_id'])
        else:
            user = User.objects.by_email(data['email'])
            if user is None:
                raise NotFound('User not found')

        membership = MembershipService.add_member(
            self.get_tenant(),
            user,
            business_role=data['business_role'],
            permissions=data['permissions'],
            invited_by=request.user,
            notes=data['notes'],
        )
        return Response(MembershipSerializer(membership).data, status=status.HTTP_201_CREATED)


@requires_action('invite-users')
class MemberInviteView(TenantScopedMixin, APIView):
    """
    POST /v1/tenants/{slug}/members/invite

    Returns the membership and the invitation token. Delivering the token
    is up to ``invitation_created`` receivers or the caller.
    """

    @extend_schema(
        tags=['Members'],
        summary='Invite member',
        request=MemberInviteSerializer,
        responses={201: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
    def post(self, request, slug):
        data = validate_input(MemberInviteSerializer, request.data)
        membership, token = MembershipService.invite_by_email(
            self.get_tenant(),
            data['email'],
            business_role=data['business_role'],
            permissions=data['permissions'],
            invited_by=request.user,
            first_name=data['first_name'],
            last_name=data['last_name'],
        )
        return Response(
            {'membership': MembershipSerializer(membership).data, 'invitation_token': token},
            status=status.HTTP_201_CREATED
        )


@requires_action('invite-users')
class PendingInvitationListView(TenantScopedMixin, APIView):
    """GET /v1/tenants/{slug}/invitations"""

    @extend_schema(tags=['Members'], summary='Pending invitations', responses={200: MembershipSerializer(many=True)})
    def get(self, request, slug):
        pending = MembershipService.pending_invitations(self.get_tenant())
        return Response(MembershipSerializer(pending, many=True).data)


class InvitationAcceptView(APIView):
    """POST /v1/invitations/accept - the invited user accepts with the token."""
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['Members'],
        summary='Accept invitation',
        request=InvitationTokenSerializer,
        responses={200: MembershipSerializer, 404: OpenApiTypes.OBJECT},
    )
    def post(self, request):
        data = validate_input(InvitationTokenSerializer, request.data)
        membership = MembershipService.accept_invitation(data['token'], user=request.user)
        return Response(MembershipSerializer(membership).data)


class InvitationDeclineView(APIView):
    """POST /v1/invitations/decline"""
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=['Members'],
        summary='Decline invitation',
        request=InvitationTokenSerializer,
        responses={200: MembershipSerializer, 404: OpenApiTypes.OBJECT},
    )
    def post(self, request):
        data = validate_input(InvitationTokenSerializer, request.data)
        membership = MembershipService.decline_invitation(data['token'], user=request.user)
        return Response(MembershipSerializer(membership).data)


@requires_action(GET='view-users', DELETE='manage-users')
class MemberDetailView(TenantScopedMixin, APIView):
    """
    GET    /v1/tenants/{slug}/members/{user_id}
    DELETE /v1/tenants/{slug}/members/{user_id} - terminate (the row is kept)
    """

    @extend_schema(tags=['Members'], summary='Get member', responses={200: MembershipSerializer})
    def get(self, request, slug, user_id):
        membership = MembershipService.get_membership(self.get_tenant(), get_user_or_404(user_id))
        return Response(MembershipSerializer(membership).data)

    @extend_schema(tags=['Members'], summary='Remove member', responses={200: MembershipSerializer})
    def delete(self, request, slug, user_id):
        membership = MembershipService.remove(self.get_tenant(), get_user_or_404(user_id), actor=request.user)
        return Response(MembershipSerializer(membership).data)


@requires_action('manage-users')
class MemberReactivateView(TenantScopedMixin, APIView):
    """POST /v1/tenants/{slug}/members/{user_id}/reactivate"""

    @extend_schema(tags=['Members'], summary='Reactivate member', request=None, responses={200: MembershipSerializer})
    def post(self, request, slug, user_id):
        membership = MembershipService.reactivate(self.get_tenant(), get_user_or_404(user_id), actor=request.user)
        return Response(MembershipSerializer(membership).data)


@requires_action('manage-users')
class MemberRoleView(TenantScopedMixin, APIView):
    """PATCH /v1/tenants/{slug}/members/{user_id}/role"""

    @extend_schema(tags=['Members'], summary='Change role', request=MemberRoleSerializer,
                   responses={200: MembershipSerializer})
    def patch(self, request, slug, user_id):
        data = validate_input(MemberRoleSerializer, request.data)
        membership = MembershipService.change_role(
            self.get_tenant(), get_user_or_404(user_id), data['business_role'], actor=request.user
        )
        return Response(MembershipSerializer(membership).data)


@requires_action('manage-users')
class MemberStatusView(TenantScopedMixin, APIView):
    """PATCH /v1/tenants/{slug}/members/{user_id}/status"""

    @extend_schema(tags=['Members'], summary='Change employment status', request=MemberStatusSerializer,
                   responses={200: MembershipSerializer})
    def patch(self, request, slug, user_id):
        data = validate_input(MemberStatusSerializer, request.data)
        membership = MembershipService.change_status(
            self.get_tenant(), get_user_or_404(user_id), data['employment_status'], actor=request.user
        )
        return Response(MembershipSerializer(membership).data)


@requires_action('manage-users')
class MemberPermissionsView(TenantScopedMixin, APIView):
    """PUT /v1/tenants/{slug}/members/{user_id}/permissions - replace overrides"""

    @extend_schema(tags=['Members'], summary='Replace permission overrides',
                   request=MemberPermissionsSerializer, responses={200: MembershipSerializer})
    def put(self, request, slug, user_id):
        data = validate_input(MemberPermissionsSerializer, request.data)
        membership = MembershipService.update_permissions(
            self.get_tenant(), get_user_or_404(user_id), data['permissions'], actor=request.user
        )
        return Response(MembershipSerializer(membership).data)


# ===== FEATURES =====

@requires_action('view-business')
class FeatureListView(TenantScopedMixin, APIView):
    """GET /v1/tenants/{slug}/features - active catalog with this tenant's state"""

    @extend_schema(tags=['Features'], summary='List features', responses={200: FeatureStateSerializer(many=True)})
    def get(self, request, slug):
        catalog = FeatureService.catalog_for_tenant(self.get_tenant())
        return Response(FeatureStateSerializer(catalog, many=True).data)


@requires_action(POST='edit-business', DELETE='edit-business')
class FeatureToggleView(TenantScopedMixin, APIView):
    """
    POST   /v1/tenants/{slug}/features/{feature}/enable
    DELETE /v1/tenants/{slug}/features/{feature}/enable
    """

    def _state(self, tenant, feature_slug):
        return FeatureStateSerializer(FeatureService.feature_state(tenant, feature_slug)).data

    @extend_schema(tags=['Features'], summary='Enable feature', request=None, responses={200: FeatureStateSerializer})
    def post(self, request, slug, feature):
        tenant = self.get_tenant()
        FeatureService.enable(tenant, feature, by_user=request.user)
        return Response(self._state(tenant, feature))

    @extend_schema(tags=['Features'], summary='Disable feature', responses={200: FeatureStateSerializer})
    def delete(self, request, slug, feature):
        tenant = self.get_tenant()
        FeatureService.disable(tenant, feature, by_user=request.user)
        return Response(self._state(tenant, feature))


@requires_action(GET='view-business', PATCH='edit-business')
class FeatureSettingsView(TenantScopedMixin, APIView):
    """
    GET   /v1/tenants/{slug}/features/{feature}/settings - effective settings
    PATCH /v1/tenants/{slug}/features/{feature}/settings - merge (or replace) the override
    """

    @extend_schema(tags=['Features'], summary='Effective settings', responses={200: OpenApiTypes.OBJECT})
    def get(self, request, slug, feature):
        tenant = self.get_tenant()
        return Response({
            'feature': feature,
            'is_enabled': FeatureService.is_enabled(tenant, feature),
            'settings': FeatureService.effective_settings(tenant, feature),
        })

    @extend_schema(tags=['Features'], summary='Update settings override', request=FeatureSettingsSerializer,
                   responses={200: OpenApiTypes.OBJECT})
    def patch(self, request, slug, feature):
        tenant = self.get_tenant()
        data = validate_input(FeatureSettingsSerializer, request.data)
        assignment = FeatureService.update_settings(
            tenant, feature, data['settings'], by_user=request.user, replace=data['replace']
        )
        return Response({
            'feature': feature,
            'is_enabled': FeatureService.is_enabled(tenant, feature),
            'settings': assignment.settings,
            'effective_settings': assignment.effective_settings(),
        })


# ===== AUDIT =====

@requires_action('view-reports')
class AuditLogListView(TenantScopedMixin, APIView):
    """
    GET /v1/tenants/{slug}/audit-logs

    Audit trail of the tenant, newest first. Supports filtering by action,
    target_type, user and date range.
    """
    pagination_class = PageNumberPagination

    @extend_schema(
        tags=['Audit'],
        summary='List audit logs',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR, description='Filter by action type'),
            OpenApiParameter('target_type', OpenApiTypes.STR, description='Filter by target type'),
            OpenApiParameter('user_id', OpenApiTypes.UUID, description='Filter by actor'),
            OpenApiParameter('from_date', OpenApiTypes.DATETIME, description='Filter from date'),
            OpenApiParameter('to_date', OpenApiTypes.DATETIME, description='Filter to date'),
        ],
        responses={200: AuditLogSerializer(many=True)},
    )
    def get(self, request, slug):
        logs = AuditLog.objects.for_tenant(self.get_tenant()).select_related('user')

        filters = {
            'action': 'action',
            'target_type': 'target_type',
            'user_id': 'user_id',
            'from_date': 'created_at__gte',
            'to_date': 'created_at__lte',
        }
        for param, lookup in filters.items():
            value = request.query_params.get(param)
            if value:
                logs = logs.filter(**{lookup: value})

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs.order_by('-created_at'), request, view=self)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)
