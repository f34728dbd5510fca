"""
Financial request engine.

Implements the advance/claim lifecycle:
- Creation and pending-only edits with per-field validation
- Approve, reject, mark paid and cancel under a row lock
- Settlement bookkeeping (repayments, reimbursements)
- Viewer-scoped listing and summary statistics

Every transition re-reads the row with ``select_for_update`` inside the
transaction, so two racing approvers serialize and the loser sees the
winner's status.
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from apps.core.events import emit_on_commit, request_status_changed
from apps.core.exceptions import (
    InvalidTransition, NotFound, OverSettlement, PermissionDenied, ValidationError,
)
from apps.rbac.models import User, AuditLog
from apps.rbac.services import AuthorizationService, IdentityService
from apps.tenants.models import Tenant, Membership
from apps.finance.models import Advance, Claim, FinancialRequest, ZERO

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def _jsonable(value):
    if isinstance(value, User):
        return str(value.id)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def parse_amount(value, field='amount', errors=None) -> Optional[Decimal]:
    """
    Parse a positive amount with at most two decimal places.

    When ``errors`` is given the problem is recorded there and None is
    returned; otherwise ValidationError is raised.
    """
    message = None
    amount = None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        message = 'A valid number is required.'
    else:
        if not amount.is_finite():
            message = 'A valid number is required.'
        elif amount <= 0:
            message = 'Must be greater than zero.'
        elif amount.as_tuple().exponent < -2:
            message = 'Ensure that there are no more than 2 decimal places.'
        elif amount >= Decimal('10000000000'):
            message = 'Ensure that there are no more than 12 digits in total.'

    if message is None:
        return amount.quantize(CENT)
    if errors is not None:
        errors.setdefault(field, []).append(message)
        return None
    raise ValidationError(f"Invalid {field}", errors={field: message})


class FinancialRequestService:
    """
    Shared lifecycle for advances and claims.

    Subclasses set ``model``, the type-specific editable fields and the
    audit action prefix.
    """

    model = FinancialRequest
    audit_prefix = 'request'
    COMMON_FIELDS = ('purpose', 'description', 'notes', 'attachments')
    EXTRA_FIELDS = ()
    CHOICE_FIELDS: Dict[str, tuple] = {}

    # -- access -----------------------------------------------------------

    @classmethod
    def can_manage(cls, user: User, tenant: Tenant) -> bool:
        return AuthorizationService.can_perform(user, 'manage-finance', tenant)

    @classmethod
    def can_view_all(cls, user: User, tenant: Tenant) -> bool:
        return AuthorizationService.can_perform(user, 'view-finance', tenant)

    @staticmethod
    def _is_party(request: FinancialRequest, user: User) -> bool:
        return user.id in (request.user_id, request.requested_by_id)

    @classmethod
    def _ensure_member_access(cls, user: User, tenant: Tenant):
        if IdentityService.is_super_admin(user):
            return
        membership = Membership.objects.get_membership(tenant, user)
        if membership is None or not membership.grants_access:
            raise PermissionDenied("You are not an active member of this business", action='create-request')

    @classmethod
    def _ensure_can_modify(cls, request: FinancialRequest, actor: User):
        """Managers, or the requester/beneficiary themselves."""
        if cls.can_manage(actor, request.tenant):
            return
        if not cls._is_party(request, actor):
            raise PermissionDenied(action='manage-finance')
        cls._ensure_member_access(actor, request.tenant)

    # -- lookups ----------------------------------------------------------

    @classmethod
    def visible_to(cls, tenant: Tenant, viewer: User):
        """
        Requests ``viewer`` may see in ``tenant``: all of them with
        finance view rights, otherwise only their own.

        Raises:
            PermissionDenied: If ``viewer`` has no access to the tenant
        """
        qs = cls.model.objects.for_tenant(tenant).select_related('user', 'requested_by', 'approved_by')
        if cls.can_view_all(viewer, tenant):
            return qs
        cls._ensure_member_access(viewer, tenant)
        return qs.filter(Q(user=viewer) | Q(requested_by=viewer))

    @classmethod
    def list_requests(cls, tenant: Tenant, viewer: User, status: Optional[str] = None,
                      beneficiary: Optional[User] = None):
        qs = cls.visible_to(tenant, viewer)
        if status:
            valid = {choice for choice, _ in cls.model.STATUS_CHOICES}
            if status not in valid:
                raise ValidationError(f"Invalid status '{status}'", errors={'status': 'Unknown status.'})
            qs = qs.filter(status=status)
        if beneficiary is not None:
            qs = qs.filter(user=beneficiary)
        return qs

    @classmethod
    def get_request(cls, tenant: Tenant, public_id, viewer: User) -> FinancialRequest:
        request = cls.visible_to(tenant, viewer).filter(public_id=public_id).first()
        if request is None:
            raise NotFound(f"{cls.model.__name__} not found")
        return request

    @classmethod
    def _lock(cls, request: FinancialRequest) -> FinancialRequest:
        locked = cls.model.objects.select_for_update().filter(pk=request.pk).first()
        if locked is None:
            raise NotFound(f"{cls.model.__name__} not found")
        return locked

    # -- validation -------------------------------------------------------

    @classmethod
    def _clean_fields(cls, data: dict, errors: dict) -> dict:
        allowed = set(cls.COMMON_FIELDS) | set(cls.EXTRA_FIELDS)
        cleaned = {}
        for field, value in data.items():
            if field not in allowed:
                errors.setdefault(field, []).append('This field cannot be set.')
                continue
            if field in cls.CHOICE_FIELDS and value not in cls.CHOICE_FIELDS[field]:
                errors.setdefault(field, []).append(
                    f"Must be one of: {', '.join(cls.CHOICE_FIELDS[field])}."
                )
                continue
            if field == 'attachments' and (
                not isinstance(value, list) or any(not isinstance(a, str) for a in value)
            ):
                errors.setdefault(field, []).append('Must be a list of references.')
                continue
            cleaned[field] = value
        return cleaned

    @classmethod
    def _validate_beneficiary(cls, tenant: Tenant, beneficiary: User, errors: dict):
        membership = Membership.objects.get_membership(tenant, beneficiary)
        if membership is None or membership.is_terminated:
            errors.setdefault('user', []).append('Beneficiary must be a member of this business.')

    # -- audit/events -----------------------------------------------------

    @classmethod
    def _audit(cls, verb: str, request: FinancialRequest, actor: Optional[User], **kwargs):
        AuditLog.log_action(
            action=f"{cls.audit_prefix}_{verb}",
            user=actor,
            tenant=request.tenant,
            target_type=cls.model.__name__,
            target_id=request.id,
            **kwargs
        )

    @classmethod
    def _status_changed(cls, request: FinancialRequest, previous_status: str, actor: Optional[User]):
        cls._audit(
            request.status,
            request,
            actor,
            diff={'status': {'old': previous_status, 'new': request.status}},
        )
        logger.info(
            f"{cls.model.__name__} status changed",
            extra={
                'tenant_id': str(request.tenant_id),
                'request_id_public': str(request.public_id),
                'previous_status': previous_status,
                'status': request.status,
                'actor_id': str(actor.id) if actor else None,
            }
        )
        emit_on_commit(
            request_status_changed,
            sender=cls.model,
            tenant=request.tenant,
            user=request.user,
            request=request,
            previous_status=previous_status,
            status=request.status,
            actor=actor,
        )

    @classmethod
    def _transition(cls, request: FinancialRequest, target: str, action: str):
        if not request.can_transition_to(target):
            raise InvalidTransition(
                f"Cannot {action} a {request.status} {cls.model.__name__.lower()}",
                current_status=request.status,
            )

    # -- operations -------------------------------------------------------

    @classmethod
    @transaction.atomic
    def create(cls, tenant: Tenant, actor: User, amount, beneficiary: Optional[User] = None,
               **fields) -> FinancialRequest:
        """
        Create a pending request.

        Members create requests for themselves; creating one for someone
        else needs finance management rights.

        Raises:
            PermissionDenied: If the actor may not create this request
            ValidationError: With every field problem found
        """
        beneficiary = beneficiary or actor
        if beneficiary.id != actor.id:
            AuthorizationService.ensure_can_perform(actor, 'manage-finance', tenant)
        else:
            cls._ensure_member_access(actor, tenant)

        errors: dict = {}
        amount = parse_amount(amount, errors=errors)
        cleaned = cls._clean_fields(fields, errors)
        cls._validate_beneficiary(tenant, beneficiary, errors)
        if errors:
            raise ValidationError("Invalid request", errors=errors)

        request = cls.model.objects.create(
            tenant=tenant,
            user=beneficiary,
            requested_by=actor,
            amount=amount,
            status=cls.model.STATUS_PENDING,
            requested_at=timezone.now(),
            **cleaned
        )

        cls._audit('created', request, actor, diff={'amount': str(amount)})
        logger.info(
            f"{cls.model.__name__} created",
            extra={
                'tenant_id': str(tenant.id),
                'request_id_public': str(request.public_id),
                'beneficiary_id': str(beneficiary.id),
                'amount': str(amount),
            }
        )
        return request

    @classmethod
    @transaction.atomic
    def update(cls, request: FinancialRequest, actor: User, **fields) -> FinancialRequest:
        """
        Edit a pending request.

        Changing the beneficiary (``user``) needs finance management
        rights; a changed ``amount`` resets the remaining balance.

        Raises:
            InvalidTransition: If the request is no longer pending
        """
        cls._ensure_can_modify(request, actor)
        request = cls._lock(request)
        if not request.is_pending:
            raise InvalidTransition(
                "Only pending requests can be edited",
                current_status=request.status,
            )

        errors: dict = {}
        changes = {}

        if 'user' in fields:
            beneficiary = fields.pop('user')
            if beneficiary.id != request.user_id:
                if not cls.can_manage(actor, request.tenant):
                    raise PermissionDenied(
                        "Changing the beneficiary requires finance management rights",
                        action='manage-finance',
                    )
                cls._validate_beneficiary(request.tenant, beneficiary, errors)
                changes['user'] = beneficiary

        if 'amount' in fields:
            amount = parse_amount(fields.pop('amount'), errors=errors)
            if amount is not None and amount != request.amount:
                changes['amount'] = amount

        changes.update(cls._clean_fields(fields, errors))
        if errors:
            raise ValidationError("Invalid request", errors=errors)

        diff = {}
        for field, value in changes.items():
            old = getattr(request, field)
            if old != value:
                diff[field] = {'old': _jsonable(old), 'new': _jsonable(value)}
                setattr(request, field, value)

        if diff:
            request.save(update_fields=list(diff) + ['updated_at'])
            cls._audit('updated', request, actor, diff=diff)
        return request

    @classmethod
    @transaction.atomic
    def delete(cls, request: FinancialRequest, actor: User):
        """Soft delete a pending request."""
        cls._ensure_can_modify(request, actor)
        request = cls._lock(request)
        if not request.is_pending:
            raise InvalidTransition(
                "Only pending requests can be deleted",
                current_status=request.status,
            )
        request.delete()
        cls._audit('deleted', request, actor)

    @classmethod
    @transaction.atomic
    def approve(cls, request: FinancialRequest, approver: User, notes: str = '',
                approved_amount=None) -> FinancialRequest:
        AuthorizationService.ensure_can_perform(approver, 'manage-finance', request.tenant)
        request = cls._lock(request)
        cls._transition(request, cls.model.STATUS_APPROVED, 'approve')

        if approved_amount is not None:
            if not hasattr(request, 'approved_amount'):
                raise ValidationError(
                    "Approved amount is not supported",
                    errors={'approved_amount': 'Not supported for this request type.'}
                )
            approved_amount = parse_amount(approved_amount, field='approved_amount')
            if approved_amount > request.amount:
                raise ValidationError(
                    "Approved amount exceeds the requested amount",
                    errors={'approved_amount': 'Cannot exceed the requested amount.'}
                )
            request.approved_amount = approved_amount

        previous = request.status
        request.status = cls.model.STATUS_APPROVED
        request.approved_by = approver
        request.approved_at = timezone.now()
        request.approval_notes = notes or None

        update_fields = ['status', 'approved_by', 'approved_at', 'approval_notes', 'updated_at']
        if approved_amount is not None:
            update_fields.append('approved_amount')
        request.save(update_fields=update_fields)

        cls._status_changed(request, previous, approver)
        return request

    @classmethod
    @transaction.atomic
    def reject(cls, request: FinancialRequest, approver: User, reason: str) -> FinancialRequest:
        AuthorizationService.ensure_can_perform(approver, 'manage-finance', request.tenant)
        if not (reason or '').strip():
            raise ValidationError(
                "A rejection reason is required",
                errors={'rejection_reason': 'This field is required.'}
            )
        request = cls._lock(request)
        cls._transition(request, cls.model.STATUS_REJECTED, 'reject')

        previous = request.status
        request.status = cls.model.STATUS_REJECTED
        request.approved_by = approver
        request.rejection_reason = reason.strip()
        request.save(update_fields=['status', 'approved_by', 'rejection_reason', 'updated_at'])

        cls._status_changed(request, previous, approver)
        return request

    @classmethod
    @transaction.atomic
    def mark_paid(cls, request: FinancialRequest, actor: User, paid_at=None) -> FinancialRequest:
        AuthorizationService.ensure_can_perform(actor, 'manage-finance', request.tenant)
        request = cls._lock(request)
        cls._transition(request, cls.model.STATUS_PAID, 'pay')

        previous = request.status
        request.status = cls.model.STATUS_PAID
        request.paid_at = paid_at or timezone.now()
        request.save(update_fields=['status', 'paid_at', 'updated_at'])

        cls._status_changed(request, previous, actor)
        return request

    @classmethod
    @transaction.atomic
    def cancel(cls, request: FinancialRequest, actor: User) -> FinancialRequest:
        """
        Cancel a pending or approved request. Requesters may cancel their
        own pending requests.
        """
        request = cls._lock(request)
        if not cls.can_manage(actor, request.tenant):
            if not (cls._is_party(request, actor) and request.is_pending):
                raise PermissionDenied(action='manage-finance')
            cls._ensure_member_access(actor, request.tenant)
        cls._transition(request, cls.model.STATUS_CANCELLED, 'cancel')

        previous = request.status
        request.status = cls.model.STATUS_CANCELLED
        request.save(update_fields=['status', 'updated_at'])

        cls._status_changed(request, previous, actor)
        return request

    @classmethod
    @transaction.atomic
    def record_settlement(cls, request: FinancialRequest, actor: User, amount) -> FinancialRequest:
        """
        Apply a repayment/reimbursement to a paid request.

        Raises:
            InvalidTransition: If the request is not paid
            OverSettlement: If ``amount`` is not positive or exceeds the
                remaining balance; nothing is clamped
        """
        AuthorizationService.ensure_can_perform(actor, 'manage-finance', request.tenant)
        request = cls._lock(request)
        if request.status != cls.model.STATUS_PAID:
            raise InvalidTransition(
                f"Only paid requests accept a {cls.model.SETTLEMENT_NOUN}",
                current_status=request.status,
            )

        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Invalid amount", errors={'amount': 'A valid number is required.'})

        if not amount.is_finite():
            raise ValidationError("Invalid amount", errors={'amount': 'A valid number is required.'})
        if amount.as_tuple().exponent < -2:
            raise ValidationError(
                "Invalid amount",
                errors={'amount': 'Ensure that there are no more than 2 decimal places.'}
            )

        if amount <= 0 or amount > request.remaining_amount:
            raise OverSettlement(
                f"{cls.model.SETTLEMENT_NOUN.capitalize()} of {amount} is not allowed; "
                f"remaining balance is {request.remaining_amount}",
                remaining=request.remaining_amount,
                current_status=request.status,
            )

        old_settled = request.settled_amount
        request.settled_amount = old_settled + amount
        request.save(update_fields=['settled_amount', 'updated_at'])

        cls._audit(
            'settled',
            request,
            actor,
            diff={
                'settled_amount': {'old': str(old_settled), 'new': str(request.settled_amount)},
                'remaining_amount': str(request.remaining_amount),
            },
        )
        logger.info(
            f"{cls.model.__name__} {cls.model.SETTLEMENT_NOUN} recorded",
            extra={
                'tenant_id': str(request.tenant_id),
                'request_id_public': str(request.public_id),
                'amount': str(amount),
                'remaining': str(request.remaining_amount),
                'fully_settled': request.is_fully_settled,
            }
        )
        return request

    @classmethod
    def summary(cls, tenant: Tenant, viewer: User) -> dict:
        """Counts per status and money totals over the visible requests."""
        qs = cls.visible_to(tenant, viewer)
        counts = {status: 0 for status, _ in cls.model.STATUS_CHOICES}
        for row in qs.values('status').annotate(n=Count('id')):
            counts[row['status']] = row['n']

        totals = qs.aggregate(
            total_amount=Sum('amount'),
            total_settled=Sum('settled_amount'),
            total_outstanding=Sum('remaining_amount', filter=Q(status=cls.model.STATUS_PAID)),
        )
        return {
            'count': sum(counts.values()),
            'by_status': counts,
            'total_amount': totals['total_amount'] or ZERO,
            'total_settled': totals['total_settled'] or ZERO,
            'total_outstanding': totals['total_outstanding'] or ZERO,
        }


class AdvanceService(FinancialRequestService):
    """Cash advances and their repayments."""

    model = Advance
    audit_prefix = 'advance'
    EXTRA_FIELDS = ('advance_type', 'advance_date', 'due_date')
    CHOICE_FIELDS = {'advance_type': tuple(choice for choice, _ in Advance.TYPE_CHOICES)}

    @classmethod
    def record_repayment(cls, advance: Advance, actor: User, amount) -> Advance:
        return cls.record_settlement(advance, actor, amount)

    @classmethod
    def overdue(cls, tenant: Tenant):
        return Advance.objects.for_tenant(tenant).outstanding().filter(
            due_date__lt=timezone.localdate()
        )


class ClaimService(FinancialRequestService):
    """Expense claims and their reimbursements."""

    model = Claim
    audit_prefix = 'claim'
    EXTRA_FIELDS = (
        'category', 'expense_type', 'expense_date', 'vendor', 'invoice_number', 'payment_method',
    )
    CHOICE_FIELDS = {'expense_type': tuple(choice for choice, _ in Claim.EXPENSE_TYPE_CHOICES)}

    @classmethod
    def record_reimbursement(cls, claim: Claim, actor: User, amount) -> Claim:
        return cls.record_settlement(claim, actor, amount)
