"""
Django admin configuration for finance app.
"""
from django.contrib import admin
from .models import Advance, Claim

LEDGER_FIELDS = ['settled_amount', 'remaining_amount', 'is_fully_settled']


@admin.register(Advance)
class AdvanceAdmin(admin.ModelAdmin):
    list_display = ['public_id', 'tenant', 'user', 'amount', 'status', 'remaining_amount', 'due_date']
    list_filter = ['status', 'advance_type']
    search_fields = ['user__email', 'tenant__slug', 'purpose']
    readonly_fields = ['public_id'] + LEDGER_FIELDS


@admin.register(Claim)
class ClaimAdmin(admin.ModelAdmin):
    list_display = ['public_id', 'tenant', 'user', 'amount', 'approved_amount', 'status', 'remaining_amount']
    list_filter = ['status', 'expense_type', 'category']
    search_fields = ['user__email', 'tenant__slug', 'vendor', 'invoice_number']
    readonly_fields = ['public_id'] + LEDGER_FIELDS
