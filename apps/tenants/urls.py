"""
Tenant, membership and feature API URLs.
"""
from django.urls import path
from apps.tenants.views import (
    TenantListView,
    TenantDetailView,
    MemberListView,
    MemberInviteView,
    PendingInvitationListView,
    InvitationAcceptView,
    InvitationDeclineView,
    MemberDetailView,
    MemberReactivateView,
    MemberRoleView,
    MemberStatusView,
    MemberPermissionsView,
    FeatureListView,
    FeatureToggleView,
    FeatureSettingsView,
    AuditLogListView,
)

app_name = 'tenants'

urlpatterns = [
    # Tenants
    path('tenants', TenantListView.as_view(), name='tenant-list'),
    path('tenants/<slug:slug>', TenantDetailView.as_view(), name='tenant-detail'),

    # Members
    path('tenants/<slug:slug>/members', MemberListView.as_view(), name='member-list'),
    path('tenants/<slug:slug>/members/invite', MemberInviteView.as_view(), name='member-invite'),
    path('tenants/<slug:slug>/members/<uuid:user_id>', MemberDetailView.as_view(), name='member-detail'),
    path('tenants/<slug:slug>/members/<uuid:user_id>/reactivate', MemberReactivateView.as_view(), name='member-reactivate'),
    path('tenants/<slug:slug>/members/<uuid:user_id>/role', MemberRoleView.as_view(), name='member-role'),
    path('tenants/<slug:slug>/members/<uuid:user_id>/status', MemberStatusView.as_view(), name='member-status'),
    path('tenants/<slug:slug>/members/<uuid:user_id>/permissions', MemberPermissionsView.as_view(), name='member-permissions'),
    path('tenants/<slug:slug>/invitations', PendingInvitationListView.as_view(), name='invitation-list'),

    # Invitations (the invited user acts, no tenant in the path)
    path('invitations/accept', InvitationAcceptView.as_view(), name='invitation-accept'),
    path('invitations/decline', InvitationDeclineView.as_view(), name='invitation-decline'),

    # Features
    path('tenants/<slug:slug>/features', FeatureListView.as_view(), name='feature-list'),
    path('tenants/<slug:slug>/features/<slug:feature>/enable', FeatureToggleView.as_view(), name='feature-toggle'),
    path('tenants/<slug:slug>/features/<slug:feature>/settings', FeatureSettingsView.as_view(), name='feature-settings'),

    # Audit
    path('tenants/<slug:slug>/audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
