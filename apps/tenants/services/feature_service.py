"""
Feature gate.

Answers whether a feature is on for a tenant and what its effective
settings are, and manages the per-tenant assignment rows. Effective
settings are the feature's defaults overlaid by the tenant override
(shallow merge, tenant keys win).
"""
import logging
from typing import Optional, Union

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import NotFound, ValidationError
from apps.rbac.models import User, AuditLog
from apps.rbac.services import AuthorizationService
from apps.tenants.models import Tenant, FeatureDefinition, FeatureAssignment
from apps.tenants.utils import generate_unique_slug, merge_settings

logger = logging.getLogger(__name__)

FeatureRef = Union[FeatureDefinition, str]


def _validate_settings(settings, field='settings') -> dict:
    if not isinstance(settings, dict) or any(not isinstance(k, str) for k in settings):
        raise ValidationError(
            "Settings must be an object with string keys",
            errors={field: 'Must be an object with string keys.'}
        )
    return settings


class FeatureService:
    """Service for the feature catalog and per-tenant feature assignments."""

    @classmethod
    def get_feature(cls, feature: FeatureRef) -> FeatureDefinition:
        if isinstance(feature, FeatureDefinition):
            return feature
        found = FeatureDefinition.objects.by_slug(feature)
        if found is None:
            raise NotFound(f"Feature '{feature}' not found")
        return found

    @classmethod
    def _assignment(cls, tenant: Tenant, feature: FeatureDefinition) -> Optional[FeatureAssignment]:
        return FeatureAssignment.objects.select_related('feature').filter(
            tenant=tenant, feature=feature
        ).first()

    @classmethod
    def _lock_assignment(cls, tenant: Tenant, feature: FeatureDefinition) -> FeatureAssignment:
        """Return the assignment row locked for update, creating it if needed."""
        try:
            with transaction.atomic():
                FeatureAssignment.objects.get_or_create(tenant=tenant, feature=feature)
        except IntegrityError:
            # Created concurrently; the locked read below picks it up
            pass
        return FeatureAssignment.objects.select_for_update().select_related('feature').get(
            tenant=tenant, feature=feature
        )

    @classmethod
    def feature_state(cls, tenant: Tenant, feature: FeatureRef):
        """Return ``(feature, assignment)``; the assignment may be None."""
        feature = cls.get_feature(feature)
        return feature, cls._assignment(tenant, feature)

    @classmethod
    def is_enabled(cls, tenant: Tenant, feature_slug: str) -> bool:
        """
        True when the tenant has switched the feature on and the feature
        is still active in the catalog. Unknown slugs are simply off.
        """
        return FeatureAssignment.objects.enabled().filter(
            tenant=tenant, feature__slug=feature_slug
        ).exists()

    @classmethod
    def effective_settings(cls, tenant: Tenant, feature_slug: str) -> dict:
        """
        Feature defaults overlaid by the tenant's override.

        Raises:
            NotFound: If no feature has this slug
        """
        feature = cls.get_feature(feature_slug)
        assignment = cls._assignment(tenant, feature)
        return merge_settings(feature.default_settings, assignment.settings if assignment else None)

    @classmethod
    def enabled_features(cls, tenant: Tenant):
        return FeatureDefinition.objects.filter(
            assignments__tenant=tenant,
            assignments__is_enabled=True,
            assignments__deleted_at__isnull=True,
            is_active=True,
        )

    @classmethod
    def catalog_for_tenant(cls, tenant: Tenant):
        """Every active feature paired with the tenant's assignment (or None)."""
        assignments = {
            a.feature_id: a for a in FeatureAssignment.objects.for_tenant(tenant)
        }
        return [
            (feature, assignments.get(feature.id))
            for feature in FeatureDefinition.objects.active()
        ]

    @classmethod
    @transaction.atomic
    def enable(cls, tenant: Tenant, feature: FeatureRef, by_user: Optional[User] = None) -> FeatureAssignment:
        """
        Switch a feature on. Enabling an enabled feature changes nothing.

        Raises:
            PermissionDenied: If ``by_user`` may not edit the business
            ValidationError: If the feature is inactive in the catalog
        """
        if by_user is not None:
            AuthorizationService.ensure_can_perform(by_user, 'edit-business', tenant)
        feature = cls.get_feature(feature)
        if not feature.is_active:
            raise ValidationError(
                f"Feature '{feature.slug}' is not available",
                errors={'feature': 'This feature is inactive.'}
            )

        assignment = cls._lock_assignment(tenant, feature)
        if assignment.is_enabled:
            return assignment

        assignment.is_enabled = True
        assignment.enabled_at = timezone.now()
        assignment.enabled_by = by_user
        assignment.save(update_fields=['is_enabled', 'enabled_at', 'enabled_by', 'updated_at'])

        AuditLog.log_action(
            action='feature_enabled',
            user=by_user,
            tenant=tenant,
            target_type='FeatureAssignment',
            target_id=assignment.id,
            metadata={'feature': feature.slug},
        )
        logger.info(
            "Feature enabled",
            extra={'tenant_id': str(tenant.id), 'feature': feature.slug}
        )
        return assignment

    @classmethod
    @transaction.atomic
    def disable(cls, tenant: Tenant, feature: FeatureRef, by_user: Optional[User] = None) -> Optional[FeatureAssignment]:
        """
        Switch a feature off, clearing ``enabled_at``/``enabled_by``.

        The settings override is kept so re-enabling restores it. Disabling
        twice leaves the same state as disabling once.
        """
        if by_user is not None:
            AuthorizationService.ensure_can_perform(by_user, 'edit-business', tenant)
        feature = cls.get_feature(feature)

        if cls._assignment(tenant, feature) is None:
            return None

        assignment = cls._lock_assignment(tenant, feature)
        if not assignment.is_enabled and assignment.enabled_at is None and assignment.enabled_by_id is None:
            return assignment

        assignment.is_enabled = False
        assignment.enabled_at = None
        assignment.enabled_by = None
        assignment.save(update_fields=['is_enabled', 'enabled_at', 'enabled_by', 'updated_at'])

        AuditLog.log_action(
            action='feature_disabled',
            user=by_user,
            tenant=tenant,
            target_type='FeatureAssignment',
            target_id=assignment.id,
            metadata={'feature': feature.slug},
        )
        logger.info(
            "Feature disabled",
            extra={'tenant_id': str(tenant.id), 'feature': feature.slug}
        )
        return assignment

    @classmethod
    @transaction.atomic
    def update_settings(cls, tenant: Tenant, feature: FeatureRef, settings: dict,
                        by_user: Optional[User] = None, replace: bool = False) -> FeatureAssignment:
        """
        Change the tenant's settings override under a row lock.

        By default ``settings`` is merged into the existing override;
        ``replace=True`` swaps the whole override.
        """
        if by_user is not None:
            AuthorizationService.ensure_can_perform(by_user, 'edit-business', tenant)
        settings = _validate_settings(settings)
        feature = cls.get_feature(feature)

        assignment = cls._lock_assignment(tenant, feature)
        old = dict(assignment.settings or {})
        assignment.settings = dict(settings) if replace else merge_settings(old, settings)
        assignment.save(update_fields=['settings', 'updated_at'])

        AuditLog.log_action(
            action='feature_settings_updated',
            user=by_user,
            tenant=tenant,
            target_type='FeatureAssignment',
            target_id=assignment.id,
            diff={'old': old, 'new': assignment.settings},
            metadata={'feature': feature.slug},
        )
        return assignment

    @classmethod
    @transaction.atomic
    def create_feature(cls, name: str, category: str = 'general', description: str = '',
                       default_settings: Optional[dict] = None, icon: str = '',
                       actor: Optional[User] = None) -> FeatureDefinition:
        """Add a feature to the platform catalog."""
        if actor is not None:
            AuthorizationService.ensure_can_administer(actor, 'features.manage')
        name = (name or '').strip()
        if not name:
            raise ValidationError("Feature name is required", errors={'name': 'This field is required.'})
        if FeatureDefinition.objects_with_deleted.filter(name=name).exists():
            raise ValidationError("Feature name already exists", errors={'name': 'Already exists.'})

        feature = FeatureDefinition.objects.create(
            name=name,
            slug=generate_unique_slug(FeatureDefinition, name),
            category=category or 'general',
            description=description,
            icon=icon,
            default_settings=_validate_settings(default_settings or {}, 'default_settings'),
        )
        AuditLog.log_action(
            action='feature_created',
            user=actor,
            target_type='FeatureDefinition',
            target_id=feature.id,
            metadata={'slug': feature.slug},
        )
        return feature

    @classmethod
    @transaction.atomic
    def set_feature_active(cls, feature: FeatureRef, is_active: bool,
                           actor: Optional[User] = None) -> FeatureDefinition:
        """Withdraw a feature from (or return it to) the catalog."""
        if actor is not None:
            AuthorizationService.ensure_can_administer(actor, 'features.manage')
        feature = cls.get_feature(feature)
        if feature.is_active != is_active:
            feature.is_active = is_active
            feature.save(update_fields=['is_active', 'updated_at'])
            AuditLog.log_action(
                action='feature_activated' if is_active else 'feature_deactivated',
                user=actor,
                target_type='FeatureDefinition',
                target_id=feature.id,
            )
        return feature
