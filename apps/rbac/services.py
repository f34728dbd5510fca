"""
Identity, authorization and authentication services.

Implements:
- IdentityService: global roles, direct grants, cached permission sets,
  superadmin detection
- AuthorizationService: the ``can_perform`` decision function
- AuthService: JWT login and token validation
"""
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Dict, FrozenSet, Optional, Any, Union

import jwt
from django.conf import settings
from django.core.cache import cache
from django.db import transaction

from apps.core.exceptions import (
    AuthenticationError, NotFound, PermissionDenied, ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.rbac import registry
from apps.rbac.models import (
    User, Permission, Role, RolePermission, UserRole, UserPermission, AuditLog,
)
from apps.tenants.models import Membership

logger = logging.getLogger(__name__)


class IdentityService:
    """
    Global role and permission management.

    A user's permissions are the union of direct grants and the
    permissions of every role they hold. The resolved set is cached per
    user and invalidated on every change.
    """

    @staticmethod
    def _cache_key(user_id) -> str:
        return f"identity:user:{user_id}"

    @classmethod
    def invalidate_cache(cls, user: User):
        cache.delete(cls._cache_key(user.id))

    @classmethod
    def invalidate_role_holders(cls, role: Role):
        cache.delete_many([
            cls._cache_key(user_id)
            for user_id in UserRole.objects.filter(role=role).values_list('user_id', flat=True)
        ])

    @classmethod
    def _resolve(cls, user: User) -> Dict[str, Any]:
        cache_key = cls._cache_key(user.id)
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        roles = sorted(
            Role.objects.filter(user_roles__user=user).values_list('name', flat=True)
        )
        direct = Permission.objects.filter(user_permissions__user=user)
        via_roles = Permission.objects.filter(role_permissions__role__user_roles__user=user)
        permissions = sorted(
            set(direct.values_list('name', flat=True)) | set(via_roles.values_list('name', flat=True))
        )

        resolved = {'roles': roles, 'permissions': permissions}
        cache.set(cache_key, resolved, getattr(settings, 'PERMISSION_CACHE_TTL', 300))
        return resolved

    @classmethod
    def get_roles(cls, user: User) -> FrozenSet[str]:
        return frozenset(cls._resolve(user)['roles'])

    @classmethod
    def get_permissions(cls, user: User) -> FrozenSet[str]:
        """Direct grants union permissions of all assigned roles."""
        return frozenset(cls._resolve(user)['permissions'])

    @classmethod
    def has_permission(cls, user: User, permission: str) -> bool:
        return permission in cls.get_permissions(user)

    @classmethod
    def has_role(cls, user: User, role_name: str) -> bool:
        return role_name in cls.get_roles(user)

    @classmethod
    def is_super_admin(cls, user: User) -> bool:
        """
        True if the user holds the ``superadmin`` role or the legacy
        profile role is ``superadmin``.

        Both sources are consulted; profiles created before global roles
        existed only carry the legacy field.
        """
        if cls.has_role(user, registry.SUPERADMIN_ROLE):
            return True
        profile = getattr(user, 'profile', None)
        return profile is not None and profile.role == registry.SUPERADMIN_ROLE

    @classmethod
    def get_or_create_permission(cls, name: str) -> Permission:
        """Return the Permission row for a registered platform permission."""
        definition = registry.validate_platform_permission(name)
        permission, _ = Permission.objects.get_or_create(
            name=definition.name,
            guard_name=registry.DEFAULT_GUARD,
            defaults={'label': definition.label, 'description': definition.description},
        )
        return permission

    @classmethod
    def _get_role(cls, role: Union[Role, str]) -> Role:
        if isinstance(role, Role):
            return role
        found = Role.objects.by_name(role)
        if found is None:
            raise NotFound(f"Role '{role}' does not exist")
        return found

    @classmethod
    @transaction.atomic
    def create_role(cls, name: str, permissions=(), description: str = '') -> Role:
        """Create a global role (idempotent) and grant it ``permissions``."""
        if not name:
            raise ValidationError("Role name is required", errors={'name': 'This field is required.'})
        role, created = Role.objects.get_or_create(
            name=name,
            guard_name=registry.DEFAULT_GUARD,
            defaults={'description': description},
        )
        for permission in permissions:
            cls.grant_permission(role, permission)
        if created:
            logger.info("Role created", extra={'role': name})
        return role

    @classmethod
    @transaction.atomic
    def assign_role(cls, user: User, role: Union[Role, str],
                    assigned_by: Optional[User] = None) -> UserRole:
        role = cls._get_role(role)
        user_role, created = UserRole.objects.assign(user, role, assigned_by=assigned_by)
        cls.invalidate_cache(user)

        if created:
            AuditLog.log_action(
                action='role_assigned',
                user=assigned_by,
                target_type='User',
                target_id=user.id,
                diff={'role': role.name},
            )
            logger.info(
                "Role assigned",
                extra={'user_id': str(user.id), 'role': role.name}
            )
        return user_role

    @classmethod
    @transaction.atomic
    def revoke_role(cls, user: User, role: Union[Role, str],
                    revoked_by: Optional[User] = None) -> bool:
        role = cls._get_role(role)
        deleted, _ = UserRole.objects.revoke(user, role)
        cls.invalidate_cache(user)

        if deleted:
            AuditLog.log_action(
                action='role_revoked',
                user=revoked_by,
                target_type='User',
                target_id=user.id,
                diff={'role': role.name},
            )
        return bool(deleted)

    @classmethod
    @transaction.atomic
    def grant_permission(cls, target: Union[User, Role], permission: str,
                         granted_by: Optional[User] = None):
        """
        Grant a registered platform permission to a user or a role.

        Raises:
            ValidationError: If ``permission`` is not in the registry
        """
        permission_obj = cls.get_or_create_permission(permission)

        if isinstance(target, Role):
            link, created = RolePermission.objects.grant_permission(target, permission_obj)
            cls.invalidate_role_holders(target)
            target_type = 'Role'
        else:
            link, created = UserPermission.objects.grant(target, permission_obj, granted_by=granted_by)
            cls.invalidate_cache(target)
            target_type = 'User'

        if created:
            AuditLog.log_action(
                action='permission_granted',
                user=granted_by,
                target_type=target_type,
                target_id=target.id,
                diff={'permission': permission},
            )
        return link

    @classmethod
    @transaction.atomic
    def revoke_permission(cls, target: Union[User, Role], permission: str,
                          revoked_by: Optional[User] = None) -> bool:
        permission_obj = Permission.objects.by_name(registry.validate_platform_permission(permission).name)
        if permission_obj is None:
            return False

        if isinstance(target, Role):
            deleted, _ = RolePermission.objects.revoke_permission(target, permission_obj)
            cls.invalidate_role_holders(target)
            target_type = 'Role'
        else:
            deleted, _ = UserPermission.objects.revoke(target, permission_obj)
            cls.invalidate_cache(target)
            target_type = 'User'

        if deleted:
            AuditLog.log_action(
                action='permission_revoked',
                user=revoked_by,
                target_type=target_type,
                target_id=target.id,
                diff={'permission': permission},
            )
        return bool(deleted)

    @classmethod
    def sync_registry(cls) -> int:
        """Create missing Permission rows for the platform registry."""
        created = 0
        for name, definition in registry.PLATFORM_PERMISSIONS.items():
            _, was_created = Permission.objects.update_or_create(
                name=name,
                guard_name=registry.DEFAULT_GUARD,
                defaults={'label': definition.label, 'description': definition.description},
            )
            created += int(was_created)
        return created


class AuthorizationService:
    """
    Answers "can this user perform this action (in this tenant)".

    Checks run in a fixed order and the first match wins:

    1. superadmin
    2. owner of the tenant
    3. global user-management permission for user-management actions
    4. membership overrides union role defaults
    5. deny
    """

    @classmethod
    def can_perform(cls, user: Optional[User], action: str, tenant=None) -> bool:
        if user is None or not user.is_authenticated:
            return False

        if IdentityService.is_super_admin(user):
            return True

        action_def = registry.find_action(action)
        if action_def is None:
            logger.warning("Unknown action denied", extra={'action': action, 'user_id': str(user.id)})
            return False

        membership = None
        if tenant is not None:
            membership = Membership.objects.get_membership(tenant, user)
            if membership is not None and membership.grants_access and membership.is_owner:
                return True

        if action_def.is_user_management and any(
            IdentityService.has_permission(user, p) for p in action_def.global_permissions
        ):
            return True

        if membership is not None and membership.grants_access:
            return action_def.permission in membership.effective_permissions()

        return False

    @classmethod
    def ensure_can_perform(cls, user: Optional[User], action: str, tenant=None):
        """
        Raise PermissionDenied unless ``can_perform`` allows the action.

        Unknown action names raise ValidationError instead.
        """
        if not cls.can_perform(user, action, tenant):
            registry.get_action(action)
            SecurityLogger.log_permission_denied(user, action, tenant=tenant)
            raise PermissionDenied(action=action)

    @classmethod
    def can_administer(cls, user: Optional[User], permission: str) -> bool:
        """Platform-level check: superadmin or holder of ``permission``."""
        if user is None or not user.is_authenticated:
            return False
        return IdentityService.is_super_admin(user) or IdentityService.has_permission(user, permission)

    @classmethod
    def ensure_can_administer(cls, user: Optional[User], permission: str):
        if not cls.can_administer(user, permission):
            SecurityLogger.log_permission_denied(user, permission)
            raise PermissionDenied(action=permission)

    @classmethod
    def effective_permissions(cls, user: User, tenant) -> FrozenSet[str]:
        """
        Business permissions ``user`` holds in ``tenant``.

        Superadmins and owners hold every business permission.
        """
        if IdentityService.is_super_admin(user):
            return registry.ALL_BUSINESS_PERMISSIONS
        membership = Membership.objects.get_membership(tenant, user)
        if membership is None or not membership.grants_access:
            return frozenset()
        if membership.is_owner:
            return registry.ALL_BUSINESS_PERMISSIONS
        return membership.effective_permissions()


class AuthService:
    """
    Service for authentication operations: login and JWT tokens.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        now = datetime.now(dt_timezone.utc)
        payload = {
            'user_id': str(user.id),
            'email': user.email,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }
        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """Return the decoded payload, or None if the token is invalid or expired."""
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            logger.info("Expired JWT presented")
            return None
        except jwt.InvalidTokenError:
            logger.warning("Invalid JWT presented")
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        payload = cls.validate_jwt(token)
        if not payload:
            return None
        return User.objects.filter(id=payload.get('user_id'), is_active=True).first()

    @classmethod
    def login(cls, email: str, password: str, ip_address: str = None) -> Dict[str, Any]:
        """
        Authenticate by email and password.

        Returns:
            dict with ``user`` and ``token``

        Raises:
            AuthenticationError: If the credentials are invalid
        """
        user = User.objects.by_email(email)

        if user is None or not user.check_password(password):
            SecurityLogger.log_failed_login(email, ip_address, reason='invalid_credentials')
            raise AuthenticationError("Invalid email or password")

        if not user.is_active:
            SecurityLogger.log_failed_login(email, ip_address, reason='inactive_account')
            raise AuthenticationError("Account is disabled")

        user.update_last_login()
        logger.info("User logged in", extra={'user_id': str(user.id)})

        return {'user': user, 'token': cls.generate_jwt(user)}
