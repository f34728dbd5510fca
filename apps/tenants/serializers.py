"""
Serializers for tenant, membership and feature API endpoints.
"""
from rest_framework import serializers

from apps.rbac.registry import ALL_BUSINESS_PERMISSIONS
from apps.rbac.serializers import UserSerializer
from apps.tenants.models import Tenant, Membership


class TenantSerializer(serializers.ModelSerializer):
    """Tenant with the caller's business role in it."""

    role = serializers.SerializerMethodField()

    class Meta:
        model = Tenant
        fields = [
            'id', 'name', 'slug', 'description', 'email', 'phone',
            'is_active', 'settings', 'role', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_role(self, obj):
        request = self.context.get('request')
        if request is None:
            return None
        membership = Membership.objects.get_membership(obj, request.user)
        return membership.business_role if membership else None


class TenantCreateSerializer(serializers.Serializer):
    """Input for creating a tenant. The slug is always derived from the name."""

    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    email = serializers.EmailField(required=False, allow_blank=True, default='')
    phone = serializers.CharField(required=False, allow_blank=True, max_length=30, default='')
    settings = serializers.DictField(required=False, default=dict)

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Business name cannot be empty.")
        return value.strip()


class TenantUpdateSerializer(serializers.Serializer):
    """Partial update of tenant fields."""

    name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=30)
    settings = serializers.DictField(required=False)


class MembershipSerializer(serializers.ModelSerializer):
    """A membership row, including terminated ones."""

    user = UserSerializer(read_only=True)
    effective_permissions = serializers.SerializerMethodField()
    invitation_pending = serializers.BooleanField(source='is_invitation_pending', read_only=True)

    class Meta:
        model = Membership
        fields = [
            'id', 'user', 'business_role', 'permissions', 'effective_permissions',
            'employment_status', 'joined_date', 'left_date', 'notes',
            'invitation_pending', 'invitation_sent_at', 'invitation_accepted_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_effective_permissions(self, obj):
        return sorted(obj.effective_permissions())


class PermissionListField(serializers.ListField):
    child = serializers.ChoiceField(choices=sorted(ALL_BUSINESS_PERMISSIONS))


class MemberAddSerializer(serializers.Serializer):
    """Add an existing user, identified by id or email."""

    user_id = serializers.UUIDField(required=False)
    email = serializers.EmailField(required=False)
    business_role = serializers.CharField(max_length=50, default='employee')
    permissions = PermissionListField(required=False, default=list)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if not attrs.get('user_id') and not attrs.get('email'):
            raise serializers.ValidationError({'user_id': 'Provide user_id or email.'})
        return attrs


class MemberInviteSerializer(serializers.Serializer):
    """Invite by email; unknown addresses get an account without a password."""

    email = serializers.EmailField()
    business_role = serializers.CharField(max_length=50, default='employee')
    permissions = PermissionListField(required=False, default=list)
    first_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100, default='')

    def validate_email(self, value):
        return value.lower()


class InvitationTokenSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=100)


class MemberRoleSerializer(serializers.Serializer):
    business_role = serializers.CharField(max_length=50)


class MemberStatusSerializer(serializers.Serializer):
    employment_status = serializers.ChoiceField(choices=Membership.STATUS_CHOICES)


class MemberPermissionsSerializer(serializers.Serializer):
    permissions = PermissionListField(allow_empty=True)


class FeatureStateSerializer(serializers.Serializer):
    """
    A catalog feature paired with the tenant's assignment.

    Serializes ``(feature, assignment)`` tuples; ``assignment`` may be None.
    """

    slug = serializers.SerializerMethodField()
    name = serializers.SerializerMethodField()
    description = serializers.SerializerMethodField()
    category = serializers.SerializerMethodField()
    icon = serializers.SerializerMethodField()
    default_settings = serializers.SerializerMethodField()
    is_enabled = serializers.SerializerMethodField()
    settings = serializers.SerializerMethodField()
    effective_settings = serializers.SerializerMethodField()
    enabled_at = serializers.SerializerMethodField()

    def get_slug(self, obj):
        return obj[0].slug

    def get_name(self, obj):
        return obj[0].name

    def get_description(self, obj):
        return obj[0].description

    def get_category(self, obj):
        return obj[0].category

    def get_icon(self, obj):
        return obj[0].icon

    def get_default_settings(self, obj):
        return obj[0].default_settings

    def get_is_enabled(self, obj):
        feature, assignment = obj
        return bool(assignment and assignment.is_enabled and feature.is_active)

    def get_settings(self, obj):
        assignment = obj[1]
        return assignment.settings if assignment else {}

    def get_effective_settings(self, obj):
        feature, assignment = obj
        return assignment.effective_settings() if assignment else dict(feature.default_settings or {})

    def get_enabled_at(self, obj):
        assignment = obj[1]
        if assignment is None or assignment.enabled_at is None:
            return None
        return assignment.enabled_at.isoformat()


class FeatureSettingsSerializer(serializers.Serializer):
    settings = serializers.DictField()
    replace = serializers.BooleanField(required=False, default=False)
