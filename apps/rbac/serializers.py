"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Authentication (login)
- Users and the current principal
- Audit logs
"""
from rest_framework import serializers

from apps.rbac.models import User, AuditLog


class LoginSerializer(serializers.Serializer):
    """Serializer for user login."""

    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )

    def validate_email(self, value):
        """Normalize email to lowercase."""
        return value.lower()


class UserSerializer(serializers.ModelSerializer):
    """Public view of a principal."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)
    job_title = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name', 'job_title', 'is_active']
        read_only_fields = fields

    def get_job_title(self, obj):
        profile = getattr(obj, 'profile', None)
        return profile.job_title if profile else ''


class CurrentUserSerializer(UserSerializer):
    """
    The authenticated principal with global roles, global permissions and
    the tenants they belong to.
    """

    roles = serializers.SerializerMethodField()
    permissions = serializers.SerializerMethodField()
    is_superadmin = serializers.SerializerMethodField()
    memberships = serializers.SerializerMethodField()

    class Meta(UserSerializer.Meta):
        fields = UserSerializer.Meta.fields + ['roles', 'permissions', 'is_superadmin', 'memberships']
        read_only_fields = fields

    def get_roles(self, obj):
        from apps.rbac.services import IdentityService
        return sorted(IdentityService.get_roles(obj))

    def get_permissions(self, obj):
        from apps.rbac.services import IdentityService
        return sorted(IdentityService.get_permissions(obj))

    def get_is_superadmin(self, obj):
        from apps.rbac.services import IdentityService
        return IdentityService.is_super_admin(obj)

    def get_memberships(self, obj):
        from apps.tenants.models import Membership
        memberships = (
            Membership.objects.for_user(obj)
            .exclude(employment_status=Membership.STATUS_TERMINATED)
            .select_related('tenant')
        )
        return [
            {
                'tenant_id': str(m.tenant_id),
                'tenant_slug': m.tenant.slug,
                'tenant_name': m.tenant.name,
                'business_role': m.business_role,
                'employment_status': m.employment_status,
                'invitation_pending': m.is_invitation_pending,
            }
            for m in memberships
        ]


class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for audit log entries."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'action', 'user_email', 'target_type', 'target_id',
            'diff', 'metadata', 'ip_address', 'request_id', 'created_at',
        ]
        read_only_fields = fields
