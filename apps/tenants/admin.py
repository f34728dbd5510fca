"""
Django admin configuration for tenants app.
"""
from django.contrib import admin
from .models import Tenant, Membership, FeatureDefinition, FeatureAssignment


class MembershipInline(admin.TabularInline):
    model = Membership
    fk_name = 'tenant'
    extra = 0
    fields = ['user', 'business_role', 'employment_status', 'joined_date', 'left_date']
    readonly_fields = ['joined_date', 'left_date']


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name', 'slug', 'email']
    readonly_fields = ['slug', 'created_at', 'updated_at']
    inlines = [MembershipInline]


@admin.register(Membership)
class MembershipAdmin(admin.ModelAdmin):
    list_display = ['user', 'tenant', 'business_role', 'employment_status', 'joined_date', 'left_date']
    list_filter = ['business_role', 'employment_status']
    search_fields = ['user__email', 'tenant__slug']
    exclude = ['invitation_token']


@admin.register(FeatureDefinition)
class FeatureDefinitionAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'category', 'is_active']
    list_filter = ['category', 'is_active']
    search_fields = ['name', 'slug']


@admin.register(FeatureAssignment)
class FeatureAssignmentAdmin(admin.ModelAdmin):
    list_display = ['tenant', 'feature', 'is_enabled', 'enabled_at', 'enabled_by']
    list_filter = ['is_enabled', 'feature']
    search_fields = ['tenant__slug', 'feature__slug']
