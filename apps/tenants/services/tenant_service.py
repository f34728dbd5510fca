"""
Tenant management service.

Handles tenant lifecycle operations including:
- Tenant creation with the creator as owner
- Listing a user's tenants
- Updating and soft deleting tenants
"""
import logging
from typing import Optional

from django.db import transaction

from apps.core.exceptions import NotFound, ValidationError
from apps.rbac.models import User, AuditLog
from apps.rbac.registry import OWNER_ROLE
from apps.rbac.services import AuthorizationService, IdentityService
from apps.tenants.models import Tenant, Membership
from apps.tenants.services.membership_service import MembershipService
from apps.tenants.utils import generate_unique_slug

logger = logging.getLogger(__name__)


class TenantService:
    """Service for tenant lifecycle management."""

    EDITABLE_FIELDS = ('name', 'description', 'email', 'phone', 'settings')

    @classmethod
    @transaction.atomic
    def create_tenant(cls, user: User, name: str, description: str = '',
                      email: str = '', phone: str = '', settings: Optional[dict] = None) -> Tenant:
        """
        Create a tenant with ``user`` as its owner.

        The slug is derived from the name; on collision ``-1``, ``-2``, ...
        is appended until it is unique.

        Raises:
            ValidationError: If the name is blank or settings is not a mapping
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError("Tenant name is required", errors={'name': 'This field is required.'})
        if settings is not None and not isinstance(settings, dict):
            raise ValidationError("Settings must be an object", errors={'settings': 'Must be an object.'})

        tenant = Tenant.objects.create(
            name=name,
            slug=generate_unique_slug(Tenant, name),
            description=description,
            email=email,
            phone=phone,
            settings=settings or {},
            created_by=user,
        )

        MembershipService.add_member(tenant, user, business_role=OWNER_ROLE)

        AuditLog.log_action(
            action='tenant_created',
            user=user,
            tenant=tenant,
            target_type='Tenant',
            target_id=tenant.id,
            metadata={'slug': tenant.slug},
        )
        logger.info(
            "Tenant created",
            extra={'tenant_id': str(tenant.id), 'slug': tenant.slug, 'user_id': str(user.id)}
        )
        return tenant

    @classmethod
    def get_tenant(cls, slug: str) -> Tenant:
        tenant = Tenant.objects.by_slug(slug)
        if tenant is None:
            raise NotFound(f"Tenant '{slug}' not found")
        return tenant

    @classmethod
    def get_user_tenants(cls, user: User):
        """
        Tenants visible to ``user``: every tenant for superadmins,
        otherwise tenants with a non-terminated membership.
        """
        if IdentityService.is_super_admin(user):
            return Tenant.objects.all()
        return Tenant.objects.for_user(user)

    @classmethod
    @transaction.atomic
    def update_tenant(cls, tenant: Tenant, actor: User, **fields) -> Tenant:
        AuthorizationService.ensure_can_perform(actor, 'edit-business', tenant)

        unknown = set(fields) - set(cls.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown fields",
                errors={field: 'This field cannot be changed.' for field in sorted(unknown)}
            )
        if 'name' in fields and not (fields['name'] or '').strip():
            raise ValidationError("Tenant name is required", errors={'name': 'This field may not be blank.'})

        diff = {}
        for field, value in fields.items():
            old = getattr(tenant, field)
            if old != value:
                diff[field] = {'old': old, 'new': value}
                setattr(tenant, field, value)

        if diff:
            tenant.save(update_fields=list(diff) + ['updated_at'])
            AuditLog.log_action(
                action='tenant_updated',
                user=actor,
                tenant=tenant,
                target_type='Tenant',
                target_id=tenant.id,
                diff=diff,
            )
        return tenant

    @classmethod
    @transaction.atomic
    def soft_delete_tenant(cls, tenant: Tenant, actor: User):
        """
        Soft delete a tenant. Memberships are kept for history but the
        tenant no longer resolves by slug.
        """
        AuthorizationService.ensure_can_perform(actor, 'delete-business', tenant)

        tenant.is_active = False
        tenant.save(update_fields=['is_active', 'updated_at'])
        tenant.delete()

        AuditLog.log_action(
            action='tenant_deleted',
            user=actor,
            tenant=tenant,
            target_type='Tenant',
            target_id=tenant.id,
        )
        logger.info("Tenant soft deleted", extra={'tenant_id': str(tenant.id), 'user_id': str(actor.id)})

    @classmethod
    def member_count(cls, tenant: Tenant) -> int:
        return Membership.objects.for_tenant(tenant).active().count()
