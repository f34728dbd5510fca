"""
Membership ledger.

One membership row exists per (tenant, user). Rows are never physically
deleted: removal flips ``employment_status`` to ``terminated`` and stamps
``left_date`` so history stays queryable and the member can be
reactivated later.

Every mutation that names an ``actor`` is checked through
``AuthorizationService`` before anything is written. Calls without an
actor are system operations (tenant bootstrap, seed commands).
"""
import logging
from typing import Iterable, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.events import emit_on_commit, invitation_created
from apps.core.exceptions import (
    DuplicateMembership, NotFound, PermissionDenied, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.rbac import registry
from apps.rbac.models import User, AuditLog
from apps.rbac.services import AuthorizationService, IdentityService
from apps.tenants.models import Tenant, Membership
from apps.tenants.utils import generate_invitation_token

logger = logging.getLogger(__name__)


class MembershipService:
    """Service for the tenant membership lifecycle."""

    @staticmethod
    def _authorize(actor: Optional[User], action: str, tenant: Tenant):
        if actor is not None:
            AuthorizationService.ensure_can_perform(actor, action, tenant)

    @staticmethod
    def _ensure_can_grant_role(actor: Optional[User], tenant: Tenant, business_role: str):
        """Only owners and superadmins hand out the owner role."""
        if actor is None or business_role != registry.OWNER_ROLE:
            return
        if IdentityService.is_super_admin(actor):
            return
        membership = Membership.objects.get_membership(tenant, actor)
        if membership is None or not (membership.grants_access and membership.is_owner):
            raise PermissionDenied("Only owners can grant the owner role", action='grant-owner')

    @classmethod
    def get_membership(cls, tenant: Tenant, user: User, for_update: bool = False) -> Membership:
        qs = Membership.objects.select_related('tenant', 'user')
        if for_update:
            qs = qs.select_for_update()
        membership = qs.filter(tenant=tenant, user=user).first()
        if membership is None:
            raise NotFound(f"{user.email} is not a member of {tenant.name}")
        return membership

    @classmethod
    def _create(cls, tenant: Tenant, user: User, **fields) -> Membership:
        existing = Membership.objects.get_membership(tenant, user)
        if existing is not None:
            raise DuplicateMembership(
                f"{user.email} already has a membership in {tenant.name}",
                details={
                    'membership_id': str(existing.id),
                    'employment_status': existing.employment_status,
                }
            )
        try:
            with transaction.atomic():
                return Membership.objects.create(tenant=tenant, user=user, **fields)
        except IntegrityError:
            # A concurrent add/invite for the same pair won the race
            raise DuplicateMembership(f"{user.email} already has a membership in {tenant.name}")

    @classmethod
    def _ensure_not_last_owner(cls, membership: Membership, message: str):
        if not (membership.is_owner and membership.grants_access):
            return
        other_owners = Membership.objects.owners(membership.tenant).exclude(id=membership.id)
        if not other_owners.exists():
            raise ValidationError(message, errors={'business_role': message})

    @staticmethod
    def _ensure_not_terminated(membership: Membership):
        if membership.is_terminated:
            raise ValidationError(
                "Membership is terminated; reactivate it first",
                errors={'employment_status': 'Membership is terminated.'},
                details={'employment_status': membership.employment_status},
            )

    @classmethod
    @transaction.atomic
    def add_member(cls, tenant: Tenant, user: User, business_role: str = registry.DEFAULT_BUSINESS_ROLE,
                   permissions: Optional[Iterable[str]] = None, invited_by: Optional[User] = None,
                   notes: str = '') -> Membership:
        """
        Add ``user`` to ``tenant`` directly, with immediate access.

        Raises:
            PermissionDenied: If ``invited_by`` may not manage users
            DuplicateMembership: If the pair already has a membership
            ValidationError: If the role is blank or an override is unknown
        """
        cls._authorize(invited_by, 'manage-users', tenant)
        business_role = registry.validate_business_role(business_role)
        permissions = registry.validate_business_permissions(permissions)
        cls._ensure_can_grant_role(invited_by, tenant, business_role)

        membership = cls._create(
            tenant,
            user,
            business_role=business_role,
            permissions=permissions,
            employment_status=Membership.STATUS_ACTIVE,
            joined_date=timezone.now(),
            invited_by=invited_by,
            notes=notes,
        )

        AuditLog.log_action(
            action='member_added',
            user=invited_by,
            tenant=tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'business_role': business_role, 'permissions': permissions},
        )
        logger.info(
            "Member added",
            extra={
                'tenant_id': str(tenant.id),
                'user_id': str(user.id),
                'business_role': business_role,
            }
        )
        return membership

    @classmethod
    @transaction.atomic
    def invite(cls, tenant: Tenant, user: User, business_role: str = registry.DEFAULT_BUSINESS_ROLE,
               permissions: Optional[Iterable[str]] = None, invited_by: Optional[User] = None) -> str:
        """
        Invite ``user`` to ``tenant`` and return the invitation token.

        The membership starts ``active`` but grants no access until the
        invitation is accepted. An ``invitation_created`` event is sent once
        the transaction commits.
        """
        cls._authorize(invited_by, 'invite-users', tenant)
        business_role = registry.validate_business_role(business_role)
        permissions = registry.validate_business_permissions(permissions)
        cls._ensure_can_grant_role(invited_by, tenant, business_role)

        token = generate_invitation_token()
        membership = cls._create(
            tenant,
            user,
            business_role=business_role,
            permissions=permissions,
            employment_status=Membership.STATUS_ACTIVE,
            invitation_token=token,
            invitation_sent_at=timezone.now(),
            invited_by=invited_by,
        )
        cls._announce_invitation(membership, invited_by)
        return token

    @classmethod
    @transaction.atomic
    def invite_by_email(cls, tenant: Tenant, email: str, business_role: str = registry.DEFAULT_BUSINESS_ROLE,
                        permissions: Optional[Iterable[str]] = None, invited_by: Optional[User] = None,
                        first_name: str = '', last_name: str = ''):
        """
        Invite by email address, creating the user (without a usable
        password) when no account exists yet.

        Returns:
            tuple of (membership, token)
        """
        cls._authorize(invited_by, 'invite-users', tenant)
        if not email:
            raise ValidationError("Email is required", errors={'email': 'This field is required.'})

        user = User.objects.by_email(email)
        if user is None:
            user = User.objects.create_user(email=email, first_name=first_name, last_name=last_name)

        token = cls.invite(tenant, user, business_role, permissions, invited_by=invited_by)
        return Membership.objects.get(invitation_token=token), token

    @classmethod
    def _announce_invitation(cls, membership: Membership, invited_by: Optional[User]):
        AuditLog.log_action(
            action='member_invited',
            user=invited_by,
            tenant=membership.tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'business_role': membership.business_role, 'permissions': membership.permissions},
        )
        SecurityLogger.log_invitation_event('created', membership.tenant, membership.user, actor=invited_by)
        emit_on_commit(
            invitation_created,
            sender=Membership,
            tenant=membership.tenant,
            user=membership.user,
            membership=membership,
            token=membership.invitation_token,
            invited_by=invited_by,
        )

    @classmethod
    def _pending_by_token(cls, token: str) -> Membership:
        membership = (
            Membership.objects.select_for_update()
            .select_related('tenant', 'user')
            .filter(invitation_token=token, invitation_accepted_at__isnull=True)
            .exclude(employment_status=Membership.STATUS_TERMINATED)
            .first()
        ) if token else None
        if membership is None:
            raise NotFound("Invitation not found or already used")
        return membership

    @classmethod
    @transaction.atomic
    def accept_invitation(cls, token: str, user: Optional[User] = None) -> Membership:
        """
        Accept a pending invitation.

        Raises:
            NotFound: If the token is unknown, used, or its membership was removed
            PermissionDenied: If ``user`` is not the invited user
        """
        membership = cls._pending_by_token(token)
        if user is not None and membership.user_id != user.id:
            raise PermissionDenied("This invitation belongs to another user")

        now = timezone.now()
        membership.invitation_accepted_at = now
        membership.invitation_token = None
        if membership.joined_date is None:
            membership.joined_date = now
        membership.save(update_fields=[
            'invitation_accepted_at', 'invitation_token', 'joined_date', 'updated_at',
        ])

        AuditLog.log_action(
            action='invitation_accepted',
            user=membership.user,
            tenant=membership.tenant,
            target_type='Membership',
            target_id=membership.id,
        )
        SecurityLogger.log_invitation_event('accepted', membership.tenant, membership.user)
        logger.info(
            "Invitation accepted",
            extra={'tenant_id': str(membership.tenant_id), 'user_id': str(membership.user_id)}
        )
        return membership

    @classmethod
    @transaction.atomic
    def decline_invitation(cls, token: str, user: Optional[User] = None) -> Membership:
        """Decline a pending invitation; the row is kept as terminated."""
        membership = cls._pending_by_token(token)
        if user is not None and membership.user_id != user.id:
            raise PermissionDenied("This invitation belongs to another user")

        membership.employment_status = Membership.STATUS_TERMINATED
        membership.left_date = timezone.now()
        membership.invitation_token = None
        membership.save(update_fields=['employment_status', 'left_date', 'invitation_token', 'updated_at'])

        AuditLog.log_action(
            action='invitation_declined',
            user=membership.user,
            tenant=membership.tenant,
            target_type='Membership',
            target_id=membership.id,
        )
        SecurityLogger.log_invitation_event('declined', membership.tenant, membership.user)
        return membership

    @classmethod
    @transaction.atomic
    def remove(cls, tenant: Tenant, user: User, actor: Optional[User] = None) -> Membership:
        """
        Terminate a membership. The row stays for history.

        Removing an already terminated membership is a no-op.

        Raises:
            ValidationError: If this would leave the tenant without an owner
        """
        cls._authorize(actor, 'manage-users', tenant)
        membership = cls.get_membership(tenant, user, for_update=True)
        if membership.is_terminated:
            return membership

        cls._ensure_not_last_owner(membership, "Cannot remove the last owner of the business")

        previous_status = membership.employment_status
        membership.employment_status = Membership.STATUS_TERMINATED
        membership.left_date = timezone.now()
        membership.invitation_token = None
        membership.save(update_fields=['employment_status', 'left_date', 'invitation_token', 'updated_at'])

        AuditLog.log_action(
            action='member_removed',
            user=actor,
            tenant=tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'employment_status': {'old': previous_status, 'new': Membership.STATUS_TERMINATED}},
        )
        logger.info(
            "Member removed",
            extra={'tenant_id': str(tenant.id), 'user_id': str(user.id)}
        )
        return membership

    @classmethod
    @transaction.atomic
    def reactivate(cls, tenant: Tenant, user: User, actor: Optional[User] = None) -> Membership:
        """
        Bring a terminated membership back to ``active``.

        A member whose invitation was never accepted gets a fresh
        invitation token, announced like a new invitation.
        """
        cls._authorize(actor, 'manage-users', tenant)
        membership = cls.get_membership(tenant, user, for_update=True)
        if not membership.is_terminated:
            raise ValidationError(
                "Only terminated memberships can be reactivated",
                errors={'employment_status': 'Membership is not terminated.'},
                details={'employment_status': membership.employment_status},
            )

        membership.employment_status = Membership.STATUS_ACTIVE
        membership.left_date = None
        update_fields = ['employment_status', 'left_date', 'updated_at']

        reinvite = membership.invitation_sent_at is not None and membership.invitation_accepted_at is None
        if reinvite:
            membership.invitation_token = generate_invitation_token()
            membership.invitation_sent_at = timezone.now()
            update_fields += ['invitation_token', 'invitation_sent_at']

        membership.save(update_fields=update_fields)

        AuditLog.log_action(
            action='member_reactivated',
            user=actor,
            tenant=tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'employment_status': {'old': Membership.STATUS_TERMINATED, 'new': Membership.STATUS_ACTIVE}},
        )
        if reinvite:
            cls._announce_invitation(membership, actor)
        return membership

    @classmethod
    @transaction.atomic
    def change_role(cls, tenant: Tenant, user: User, new_role: str,
                    actor: Optional[User] = None) -> Membership:
        """
        Change the business role of a membership.

        Raises:
            ValidationError: If the membership is terminated, the actor is
                demoting themselves from owner, or the last owner would go
        """
        cls._authorize(actor, 'manage-users', tenant)
        new_role = registry.validate_business_role(new_role)
        cls._ensure_can_grant_role(actor, tenant, new_role)

        membership = cls.get_membership(tenant, user, for_update=True)
        cls._ensure_not_terminated(membership)

        old_role = membership.business_role
        if old_role == new_role:
            return membership

        if old_role == registry.OWNER_ROLE:
            if actor is not None and actor.id == user.id:
                raise ValidationError(
                    "You cannot change your own owner role",
                    errors={'business_role': 'You cannot change your own owner role.'}
                )
            cls._ensure_not_last_owner(membership, "Cannot demote the last owner of the business")

        membership.business_role = new_role
        membership.save(update_fields=['business_role', 'updated_at'])

        AuditLog.log_action(
            action='member_role_changed',
            user=actor,
            tenant=tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'business_role': {'old': old_role, 'new': new_role}},
        )
        logger.info(
            "Member role changed",
            extra={
                'tenant_id': str(tenant.id),
                'user_id': str(user.id),
                'old_role': old_role,
                'new_role': new_role,
            }
        )
        return membership

    @classmethod
    @transaction.atomic
    def update_permissions(cls, tenant: Tenant, user: User, permissions: Iterable[str],
                           actor: Optional[User] = None) -> Membership:
        """Replace the permission overrides of a membership."""
        cls._authorize(actor, 'manage-users', tenant)
        permissions = registry.validate_business_permissions(permissions)

        membership = cls.get_membership(tenant, user, for_update=True)
        cls._ensure_not_terminated(membership)

        old = list(membership.permissions or [])
        membership.permissions = permissions
        membership.save(update_fields=['permissions', 'updated_at'])

        AuditLog.log_action(
            action='member_permissions_changed',
            user=actor,
            tenant=tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'permissions': {'old': old, 'new': permissions}},
        )
        return membership

    @classmethod
    @transaction.atomic
    def change_status(cls, tenant: Tenant, user: User, new_status: str,
                      actor: Optional[User] = None) -> Membership:
        """
        Move a membership between active, inactive and terminated.

        ``terminated`` goes through ``remove`` and leaving ``terminated``
        goes through ``reactivate``.
        """
        valid = {choice for choice, _ in Membership.STATUS_CHOICES}
        if new_status not in valid:
            raise ValidationError(
                f"Invalid status '{new_status}'",
                errors={'employment_status': f"Must be one of: {', '.join(sorted(valid))}."}
            )

        if new_status == Membership.STATUS_TERMINATED:
            return cls.remove(tenant, user, actor=actor)

        cls._authorize(actor, 'manage-users', tenant)
        membership = cls.get_membership(tenant, user, for_update=True)

        if membership.is_terminated:
            if new_status == Membership.STATUS_ACTIVE:
                return cls.reactivate(tenant, user, actor=actor)
            cls._ensure_not_terminated(membership)

        old_status = membership.employment_status
        if old_status == new_status:
            return membership

        if new_status == Membership.STATUS_INACTIVE:
            cls._ensure_not_last_owner(membership, "Cannot deactivate the last owner of the business")

        membership.employment_status = new_status
        membership.save(update_fields=['employment_status', 'updated_at'])

        AuditLog.log_action(
            action='member_status_changed',
            user=actor,
            tenant=tenant,
            target_type='Membership',
            target_id=membership.id,
            diff={'employment_status': {'old': old_status, 'new': new_status}},
        )
        return membership

    @classmethod
    def role_in_business(cls, tenant: Tenant, user: User) -> Optional[str]:
        """
        The business role ``user`` holds in ``tenant``, if any.

        This is a lookup only; access decisions go through
        ``AuthorizationService.can_perform``.
        """
        membership = Membership.objects.get_membership(tenant, user)
        return membership.business_role if membership else None

    @classmethod
    def has_role_in_business(cls, tenant: Tenant, user: User, business_role: str) -> bool:
        return cls.role_in_business(tenant, user) == business_role

    @classmethod
    def list_members(cls, tenant: Tenant, include_terminated: bool = False):
        qs = Membership.objects.for_tenant(tenant).select_related('user', 'user__profile')
        if not include_terminated:
            qs = qs.exclude(employment_status=Membership.STATUS_TERMINATED)
        return qs.order_by('created_at')

    @classmethod
    def pending_invitations(cls, tenant: Tenant):
        return Membership.objects.for_tenant(tenant).pending_invitations().select_related('user')
