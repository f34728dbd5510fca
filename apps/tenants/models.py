"""
Tenant models.

Implements:
- Tenant (business) with unique slug
- Membership: one row per (tenant, user) with business role, overrides,
  employment status and invitation tracking
- FeatureDefinition: platform feature catalog
- FeatureAssignment: per-tenant enable flag and settings override
"""
from django.db import models
from django.db.models import Q
from apps.core.models import BaseModel
from apps.rbac.registry import OWNER_ROLE, DEFAULT_BUSINESS_ROLE, default_permissions
from apps.tenants.utils import merge_settings


class TenantManager(models.Manager):
    """Manager for tenant queries."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def active(self):
        return self.filter(is_active=True)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()

    def for_user(self, user):
        """Tenants in which ``user`` holds a non-terminated membership."""
        memberships = Membership.objects.filter(user=user).exclude(
            employment_status=Membership.STATUS_TERMINATED
        )
        return self.filter(id__in=memberships.values('tenant_id'))


class Tenant(BaseModel):
    """
    An isolated business account.

    Tenants own their memberships, feature assignments and financial
    requests.
    """

    name = models.CharField(max_length=255, help_text="Business name")
    slug = models.SlugField(
        unique=True,
        max_length=100,
        help_text="URL-friendly identifier"
    )
    description = models.TextField(blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Business level settings"
    )
    created_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='tenants_created'
    )

    objects = TenantManager()

    class Meta:
        db_table = 'tenants'
        ordering = ['name']

    def __str__(self):
        return self.name


class MembershipManager(models.Manager):
    """Manager for membership queries. Excludes soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def for_user(self, user):
        return self.filter(user=user)

    def get_membership(self, tenant, user):
        return self.filter(tenant=tenant, user=user).first()

    def active(self):
        return self.filter(employment_status=Membership.STATUS_ACTIVE)

    def pending_invitations(self):
        return self.filter(
            invitation_token__isnull=False,
            invitation_accepted_at__isnull=True,
        ).exclude(employment_status=Membership.STATUS_TERMINATED)

    def owners(self, tenant):
        """Owners that currently hold access to ``tenant``."""
        return self.for_tenant(tenant).active().filter(
            business_role=OWNER_ROLE,
            invitation_token__isnull=True,
        )


class Membership(BaseModel):
    """
    A user's membership in a tenant.

    ``business_role`` is a free-form string looked up in the role default
    table; ``permissions`` holds extra business permissions granted on top
    of the role defaults. Removal is logical: the row is kept with
    ``employment_status='terminated'`` and ``left_date`` set.
    """

    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_TERMINATED = 'terminated'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
        (STATUS_TERMINATED, 'Terminated'),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    user = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='memberships'
    )
    business_role = models.CharField(
        max_length=50,
        default=DEFAULT_BUSINESS_ROLE,
        db_index=True
    )
    permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Business permissions granted on top of the role defaults"
    )
    employment_status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True
    )
    joined_date = models.DateTimeField(null=True, blank=True)
    left_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    invitation_token = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        unique=True
    )
    invitation_sent_at = models.DateTimeField(null=True, blank=True)
    invitation_accepted_at = models.DateTimeField(null=True, blank=True)
    invited_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invitations_sent'
    )

    objects = MembershipManager()

    class Meta:
        db_table = 'memberships'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'user'],
                condition=Q(deleted_at__isnull=True),
                name='unique_membership_per_tenant_user',
            ),
        ]
        indexes = [
            models.Index(fields=['tenant', 'employment_status'], name='membership_tenant_status_idx'),
            models.Index(fields=['user', 'employment_status'], name='membership_user_status_idx'),
        ]

    def __str__(self):
        return f"{self.user.email} @ {self.tenant.name} ({self.business_role})"

    @property
    def is_terminated(self):
        return self.employment_status == self.STATUS_TERMINATED

    @property
    def is_invitation_pending(self):
        return self.invitation_token is not None and self.invitation_accepted_at is None

    @property
    def grants_access(self):
        """Active and not waiting on an invitation to be accepted."""
        return self.employment_status == self.STATUS_ACTIVE and not self.is_invitation_pending

    @property
    def is_owner(self):
        return self.business_role == OWNER_ROLE

    def effective_permissions(self):
        """Overrides union role defaults."""
        return frozenset(self.permissions or []) | default_permissions(self.business_role)


class FeatureDefinitionManager(models.Manager):

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def active(self):
        return self.filter(is_active=True)

    def by_slug(self, slug):
        return self.filter(slug=slug).first()


class FeatureDefinition(BaseModel):
    """A platform-catalogued capability tenants may enable."""

    name = models.CharField(max_length=150, unique=True)
    slug = models.SlugField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=50, default='general', db_index=True)
    icon = models.CharField(max_length=50, blank=True)
    is_active = models.BooleanField(default=True, db_index=True)
    default_settings = models.JSONField(default=dict, blank=True)

    objects = FeatureDefinitionManager()

    class Meta:
        db_table = 'feature_definitions'
        ordering = ['category', 'name']

    def __str__(self):
        return self.name


class FeatureAssignmentManager(models.Manager):

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def enabled(self):
        return self.filter(is_enabled=True, feature__is_active=True)


class FeatureAssignment(BaseModel):
    """A tenant's enable flag and settings override for one feature."""

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name='feature_assignments'
    )
    feature = models.ForeignKey(
        FeatureDefinition,
        on_delete=models.CASCADE,
        related_name='assignments'
    )
    is_enabled = models.BooleanField(default=False)
    settings = models.JSONField(default=dict, blank=True)
    enabled_at = models.DateTimeField(null=True, blank=True)
    enabled_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='features_enabled'
    )

    objects = FeatureAssignmentManager()

    class Meta:
        db_table = 'feature_assignments'
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'feature'],
                condition=Q(deleted_at__isnull=True),
                name='unique_feature_assignment_per_tenant',
            ),
        ]

    def __str__(self):
        state = 'on' if self.is_enabled else 'off'
        return f"{self.tenant.slug}:{self.feature.slug} ({state})"

    def effective_settings(self):
        return merge_settings(self.feature.default_settings, self.settings)
