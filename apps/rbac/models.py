"""
Identity store models.

Implements:
- Global User identity (can belong to many tenants)
- UserProfile carrying the legacy single-role field
- Permission (registry-backed global permissions, unique per guard)
- Role (global roles, unique per guard)
- RolePermission / UserRole / UserPermission link tables
- AuditLog (audit trail for every back office mutation)
"""
import logging
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from apps.core.models import BaseModel
from apps.rbac.registry import DEFAULT_GUARD

logger = logging.getLogger(__name__)


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    Soft-deleted users are excluded.
    """

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def active(self):
        return self.filter(is_active=True)

    def by_email(self, email):
        return self.filter(email__iexact=self.normalize_email(email)).first()

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.

        The profile is created by the ``post_save`` receiver in
        ``apps.rbac.signals``.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.password_hash = make_password(None)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a Django admin superuser.

        ``is_superuser`` only opens the Django admin; back office superadmin
        rights come from the ``superadmin`` role or profile role.
        """
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True')

        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """Lowercase the domain part of the email address."""
        email = (email or '').strip()
        try:
            email_name, domain_part = email.rsplit('@', 1)
        except ValueError:
            return email
        return email_name + '@' + domain_part.lower()

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    Global principal identity - can belong to multiple tenants.

    Authentication happens at the User level, tenant authorization at the
    Membership level. This is the AUTH_USER_MODEL, including Django admin.
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access"
    )
    last_login_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at'], name='users_active_created_idx'),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash so Django admin forms work."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        """Return full name or email if name not set."""
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def get_short_name(self):
        return self.first_name or self.email

    def update_last_login(self):
        from django.utils import timezone
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at'])

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    # Django admin hooks; back office permissions live in RBAC.
    def has_perm(self, perm, obj=None):
        return self.is_active and self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_active and self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_active and self.is_superuser

    def natural_key(self):
        return (self.email,)


class UserProfile(BaseModel):
    """
    Per-user profile holding the legacy single global role.

    ``role == 'superadmin'`` is still honoured by the superadmin check
    alongside the ``superadmin`` Role.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('inactive', 'Inactive'),
        ('suspended', 'Suspended'),
    ]

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='profile'
    )
    role = models.CharField(
        max_length=50,
        default='user',
        db_index=True,
        help_text="Legacy global role"
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    job_title = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=30, blank=True)

    class Meta:
        db_table = 'user_profiles'

    def __str__(self):
        return f"{self.user.email} ({self.role})"


class PermissionManager(models.Manager):
    """Manager for Permission queries."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def by_name(self, name, guard_name=DEFAULT_GUARD):
        return self.filter(name=name, guard_name=guard_name).first()

    def by_category(self, category):
        return self.filter(name__startswith=f"{category}.")


class Permission(BaseModel):
    """
    Global permission.

    ``name`` is an immutable lookup key drawn from
    ``apps.rbac.registry.PLATFORM_PERMISSIONS``.
    """

    name = models.CharField(max_length=100, db_index=True)
    guard_name = models.CharField(max_length=50, default=DEFAULT_GUARD)
    label = models.CharField(max_length=150, blank=True)
    description = models.TextField(blank=True)

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['name', 'guard_name'],
                condition=Q(deleted_at__isnull=True),
                name='unique_permission_name_per_guard',
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def category(self):
        return self.name.split('.', 1)[0]


class RoleManager(models.Manager):
    """Manager for Role queries."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def by_name(self, name, guard_name=DEFAULT_GUARD):
        return self.filter(name=name, guard_name=guard_name).first()


class Role(BaseModel):
    """Global role. Grants its permissions to every user holding it."""

    name = models.CharField(max_length=100, db_index=True)
    guard_name = models.CharField(max_length=50, default=DEFAULT_GUARD)
    description = models.TextField(blank=True)

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['name', 'guard_name'],
                condition=Q(deleted_at__isnull=True),
                name='unique_role_name_per_guard',
            ),
        ]

    def __str__(self):
        return self.name

    def get_permissions(self):
        return Permission.objects.filter(role_permissions__role=self)


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        return self.get_or_create(role=role, permission=permission)

    def revoke_permission(self, role, permission):
        return self.filter(role=role, permission=permission).delete()


class RolePermission(models.Model):
    """Maps permissions to roles."""

    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name='role_permissions')
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='role_permissions')
    created_at = models.DateTimeField(auto_now_add=True)

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]

    def __str__(self):
        return f"{self.role.name} -> {self.permission.name}"


class UserRoleManager(models.Manager):

    def assign(self, user, role, assigned_by=None):
        return self.get_or_create(user=user, role=role, defaults={'assigned_by': assigned_by})

    def revoke(self, user, role):
        return self.filter(user=user, role=role).delete()


class UserRole(models.Model):
    """Maps global roles to users."""

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='user_roles')
    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name='user_roles')
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='roles_assigned'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    objects = UserRoleManager()

    class Meta:
        db_table = 'user_roles'
        unique_together = [('user', 'role')]

    def __str__(self):
        return f"{self.user.email} -> {self.role.name}"


class UserPermissionManager(models.Manager):

    def grant(self, user, permission, granted_by=None):
        return self.get_or_create(user=user, permission=permission, defaults={'granted_by': granted_by})

    def revoke(self, user, permission):
        return self.filter(user=user, permission=permission).delete()


class UserPermission(models.Model):
    """Direct global permission grant to a user."""

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='user_permissions')
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='user_permissions')
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permissions_granted'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    objects = UserPermissionManager()

    class Meta:
        db_table = 'user_permissions'
        unique_together = [('user', 'permission')]

    def __str__(self):
        return f"{self.user.email} -> {self.permission.name}"


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries with tenant scoping."""

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def for_user(self, user):
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for identity, membership, feature and financial mutations.
    """

    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Tenant this action belongs to (null for platform-level)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'member_removed', 'advance_approved')"
    )
    target_type = models.CharField(max_length=50, db_index=True)
    target_id = models.UUIDField(null=True, blank=True, db_index=True)
    diff = models.JSONField(
        default=dict,
        blank=True,
        help_text="Before/after changes in JSON format"
    )
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    request_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    metadata = models.JSONField(default=dict, blank=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['tenant', 'created_at'], name='audit_tenant_created_idx'),
            models.Index(fields=['target_type', 'target_id'], name='audit_target_idx'),
            models.Index(fields=['tenant', 'action', 'created_at'], name='audit_tenant_action_idx'),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        tenant_str = self.tenant.name if self.tenant else 'Platform'
        return f"{tenant_str} - {user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, tenant=None, target_type=None,
                   target_id=None, diff=None, metadata=None, request=None):
        """
        Create an audit log entry.

        Args:
            action: Action being performed
            user: User performing the action
            tenant: Tenant context
            target_type: Type of target entity
            target_id: ID of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP and request ID)
        """
        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'tenant': tenant,
            'target_type': target_type or '',
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['request_id'] = getattr(request, 'request_id', None)

        return cls.objects.create(**log_data)

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
