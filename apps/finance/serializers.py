"""
Serializers for advance and claim API endpoints.

Read serializers expose ``public_id`` as ``id``. Write serializers only do
shape checks; amounts, beneficiaries and status rules are enforced by the
services.
"""
from rest_framework import serializers

from apps.finance.models import Advance, Claim
from apps.rbac.serializers import UserSerializer

AMOUNT_FIELD_KWARGS = {'max_digits': 12, 'decimal_places': 2}


class FinancialRequestSerializer(serializers.ModelSerializer):
    """Fields shared by advances and claims."""

    id = serializers.UUIDField(source='public_id', read_only=True)
    user = UserSerializer(read_only=True)
    requested_by_email = serializers.EmailField(source='requested_by.email', read_only=True, default=None)
    approved_by_email = serializers.EmailField(source='approved_by.email', read_only=True, default=None)

    COMMON_FIELDS = [
        'id', 'user', 'requested_by_email', 'approved_by_email',
        'amount', 'purpose', 'description', 'status',
        'requested_at', 'approved_at', 'paid_at', 'approval_notes', 'rejection_reason',
        'settled_amount', 'remaining_amount', 'is_fully_settled',
        'attachments', 'notes', 'created_at', 'updated_at',
    ]


class AdvanceSerializer(FinancialRequestSerializer):
    repaid_amount = serializers.DecimalField(read_only=True, **AMOUNT_FIELD_KWARGS)
    is_overdue = serializers.BooleanField(read_only=True)

    class Meta:
        model = Advance
        fields = FinancialRequestSerializer.COMMON_FIELDS + [
            'advance_type', 'advance_date', 'due_date', 'repaid_amount', 'is_overdue',
        ]
        read_only_fields = fields


class ClaimSerializer(FinancialRequestSerializer):
    reimbursed_amount = serializers.DecimalField(read_only=True, **AMOUNT_FIELD_KWARGS)

    class Meta:
        model = Claim
        fields = FinancialRequestSerializer.COMMON_FIELDS + [
            'category', 'expense_type', 'expense_date', 'vendor', 'invoice_number',
            'payment_method', 'approved_amount', 'reimbursed_amount',
        ]
        read_only_fields = fields


class FinancialRequestWriteSerializer(serializers.Serializer):
    """Create/edit input. ``user_id`` names the beneficiary (defaults to the caller)."""

    amount = serializers.DecimalField(**AMOUNT_FIELD_KWARGS)
    user_id = serializers.UUIDField(required=False)
    purpose = serializers.CharField(required=False, allow_blank=True, max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    attachments = serializers.ListField(child=serializers.CharField(), required=False)


class AdvanceWriteSerializer(FinancialRequestWriteSerializer):
    advance_type = serializers.ChoiceField(choices=Advance.TYPE_CHOICES, required=False)
    advance_date = serializers.DateField(required=False)
    due_date = serializers.DateField(required=False, allow_null=True)


class ClaimWriteSerializer(FinancialRequestWriteSerializer):
    category = serializers.CharField(required=False, max_length=50)
    expense_type = serializers.ChoiceField(choices=Claim.EXPENSE_TYPE_CHOICES, required=False)
    expense_date = serializers.DateField(required=False)
    vendor = serializers.CharField(required=False, allow_blank=True, max_length=255)
    invoice_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    payment_method = serializers.CharField(required=False, allow_blank=True, max_length=50)


class ApproveSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    approved_amount = serializers.DecimalField(required=False, allow_null=True, **AMOUNT_FIELD_KWARGS)


class RejectSerializer(serializers.Serializer):
    reason = serializers.CharField()


class MarkPaidSerializer(serializers.Serializer):
    paid_at = serializers.DateTimeField(required=False, allow_null=True)


class SettlementSerializer(serializers.Serializer):
    amount = serializers.DecimalField(**AMOUNT_FIELD_KWARGS)


class SummarySerializer(serializers.Serializer):
    count = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    total_amount = serializers.DecimalField(**AMOUNT_FIELD_KWARGS)
    total_settled = serializers.DecimalField(**AMOUNT_FIELD_KWARGS)
    total_outstanding = serializers.DecimalField(**AMOUNT_FIELD_KWARGS)
