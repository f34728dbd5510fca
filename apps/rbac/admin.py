"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin
from .models import (
    User,
    UserProfile,
    Permission,
    Role,
    RolePermission,
    UserRole,
    UserPermission,
    AuditLog,
)

admin.site.site_header = "Back Office Administration"
admin.site.site_title = "Back Office Admin"


class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    fields = ['role', 'status', 'job_title', 'phone']


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """
    Admin for our User model.

    Works with email-based authentication (no username field).
    """
    list_display = ['email', 'first_name', 'last_name', 'is_active', 'is_superuser', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'created_at']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    inlines = [UserProfileInline]

    fieldsets = (
        (None, {
            'fields': ('email', 'password_hash')
        }),
        ('Personal Info', {
            'fields': ('first_name', 'last_name')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_superuser')
        }),
        ('Activity', {
            'fields': ('last_login_at', 'created_at', 'updated_at')
        }),
    )
    readonly_fields = ['password_hash', 'created_at', 'updated_at', 'last_login_at']


class RolePermissionInline(admin.TabularInline):
    model = RolePermission
    extra = 0


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'guard_name', 'created_at']
    search_fields = ['name']
    inlines = [RolePermissionInline]


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ['name', 'label', 'guard_name']
    search_fields = ['name', 'label']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Audit entries are append-only."""
    list_display = ['action', 'user', 'tenant', 'target_type', 'target_id', 'created_at']
    list_filter = ['action', 'target_type', 'created_at']
    search_fields = ['action', 'user__email', 'tenant__slug']
    readonly_fields = [
        'action', 'user', 'tenant', 'target_type', 'target_id',
        'diff', 'metadata', 'ip_address', 'request_id', 'created_at',
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


# Register link tables with default admin
admin.site.register(UserRole)
admin.site.register(UserPermission)
