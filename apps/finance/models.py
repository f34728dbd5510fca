"""
Financial request models.

Advances and claims share one lifecycle (see ``FinancialRequest``):

    pending  -> approved | rejected | cancelled
    approved -> paid | cancelled
    paid     -> paid (settlements only)

and one ledger: ``remaining_amount = max(basis - settled_amount, 0)`` where
the basis is ``approved_amount`` when set, otherwise ``amount``.
"""
import uuid
from decimal import Decimal

from django.db import models
from django.utils import timezone

from apps.core.models import BaseModel

ZERO = Decimal('0.00')


class FinancialRequestManager(models.Manager):
    """Excludes soft-deleted requests."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def for_beneficiary(self, user):
        return self.filter(user=user)

    def by_status(self, status):
        return self.filter(status=status)

    def outstanding(self):
        return self.filter(status=FinancialRequest.STATUS_PAID, is_fully_settled=False)


class FinancialRequest(BaseModel):
    """
    Fields and ledger arithmetic shared by advances and claims.

    ``user`` is the beneficiary. ``public_id`` is the identifier exposed
    to API clients.
    """

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_PAID = 'paid'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_PAID, 'Paid'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    TRANSITIONS = {
        STATUS_PENDING: (STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED),
        STATUS_APPROVED: (STATUS_PAID, STATUS_CANCELLED),
        STATUS_REJECTED: (),
        STATUS_PAID: (),
        STATUS_CANCELLED: (),
    }

    # Word used in messages for a settlement ("repayment", "reimbursement")
    SETTLEMENT_NOUN = 'settlement'

    public_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    tenant = models.ForeignKey(
        'tenants.Tenant',
        on_delete=models.CASCADE,
        related_name='%(class)ss'
    )
    user = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='%(class)ss',
        help_text="Beneficiary"
    )
    requested_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(class)ss_requested'
    )
    approved_by = models.ForeignKey(
        'rbac.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(class)ss_approved'
    )

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    purpose = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True
    )

    requested_at = models.DateTimeField(default=timezone.now)
    approved_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    approval_notes = models.TextField(null=True, blank=True)
    rejection_reason = models.TextField(null=True, blank=True)

    settled_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    remaining_amount = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    is_fully_settled = models.BooleanField(default=False)

    attachments = models.JSONField(
        default=list,
        blank=True,
        help_text="Opaque references to stored files"
    )
    notes = models.TextField(blank=True)

    objects = FinancialRequestManager()

    class Meta:
        abstract = True
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['tenant', 'status'], name='%(class)s_tenant_status_idx'),
            models.Index(fields=['user', 'status'], name='%(class)s_user_status_idx'),
        ]

    def __str__(self):
        return f"{self.__class__.__name__} {self.public_id} ({self.status})"

    @property
    def amount_basis(self) -> Decimal:
        approved = getattr(self, 'approved_amount', None)
        return approved if approved is not None else self.amount

    def recompute_ledger(self):
        """Derive ``remaining_amount`` and ``is_fully_settled`` from the basis."""
        remaining = max(Decimal(self.amount_basis) - Decimal(self.settled_amount), ZERO)
        self.remaining_amount = remaining.quantize(Decimal('0.01'))
        self.is_fully_settled = self.remaining_amount == ZERO

    def can_transition_to(self, status) -> bool:
        return status in self.TRANSITIONS.get(self.status, ())

    @property
    def is_pending(self):
        return self.status == self.STATUS_PENDING

    def save(self, *args, **kwargs):
        self.recompute_ledger()
        update_fields = kwargs.get('update_fields')
        if update_fields is not None:
            kwargs['update_fields'] = set(update_fields) | {'remaining_amount', 'is_fully_settled'}
        super().save(*args, **kwargs)


class Advance(FinancialRequest):
    """Cash advance paid to a member and repaid over time."""

    TYPE_CHOICES = [
        ('cash', 'Cash'),
        ('bank_transfer', 'Bank Transfer'),
        ('check', 'Check'),
    ]

    SETTLEMENT_NOUN = 'repayment'

    advance_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='cash')
    advance_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField(null=True, blank=True)

    class Meta(FinancialRequest.Meta):
        db_table = 'advances'

    @property
    def repaid_amount(self):
        return self.settled_amount

    @property
    def is_fully_repaid(self):
        return self.is_fully_settled

    @property
    def is_overdue(self) -> bool:
        """Paid out, not fully repaid, and past its due date."""
        return (
            self.due_date is not None
            and self.status == self.STATUS_PAID
            and not self.is_fully_settled
            and self.due_date < timezone.localdate()
        )


class Claim(FinancialRequest):
    """Expense claim reimbursed to a member."""

    EXPENSE_TYPE_CHOICES = [
        ('reimbursement', 'Reimbursement'),
        ('petty_cash', 'Petty Cash'),
        ('direct_payment', 'Direct Payment'),
        ('other', 'Other'),
    ]

    SETTLEMENT_NOUN = 'reimbursement'

    category = models.CharField(max_length=50, default='general')
    expense_type = models.CharField(max_length=20, choices=EXPENSE_TYPE_CHOICES, default='reimbursement')
    expense_date = models.DateField(default=timezone.localdate)
    vendor = models.CharField(max_length=255, blank=True)
    invoice_number = models.CharField(max_length=100, blank=True)
    payment_method = models.CharField(max_length=50, blank=True)
    approved_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    class Meta(FinancialRequest.Meta):
        db_table = 'claims'

    @property
    def reimbursed_amount(self):
        return self.settled_amount

    @property
    def is_fully_reimbursed(self):
        return self.is_fully_settled
