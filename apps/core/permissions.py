"""
DRF permission classes and decorators for action-based authorization.

This module provides:
- CanPerformAction: DRF permission class that asks the authorization
  resolver whether ``request.user`` may perform the view's action
- @requires_action: Decorator to declare the action on views
"""
import logging
from rest_framework.permissions import BasePermission

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


def _view_action(view, method):
    """Return the action declared for ``method`` on ``view`` (or None)."""
    actions = getattr(view, 'required_actions', None)
    if actions and method in actions:
        return actions[method]
    return getattr(view, 'required_action', None)


class CanPerformAction(BasePermission):
    """
    Enforce the view's declared action through the authorization resolver.

    Views declare either ``required_action`` or a per-method
    ``required_actions`` mapping. Tenant-scoped views expose
    ``get_tenant()``; the returned tenant is passed to the resolver.

    Usage in views:
        class MemberListView(TenantScopedMixin, APIView):
            permission_classes = [CanPerformAction]
            required_actions = {'GET': 'view-users', 'POST': 'manage-users'}
    """

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return False

        action = _view_action(view, request.method)
        if not action:
            return True

        from apps.rbac.services import AuthorizationService

        tenant = view.get_tenant() if hasattr(view, 'get_tenant') else None
        if AuthorizationService.can_perform(user, action, tenant):
            return True

        SecurityLogger.log_permission_denied(
            user,
            action,
            tenant=tenant,
            ip_address=request.META.get('REMOTE_ADDR'),
        )
        logger.warning(
            "Permission denied",
            extra={
                'user_id': str(user.id),
                'action': action,
                'tenant_id': str(tenant.id) if tenant else None,
                'view': view.__class__.__name__,
                'method': request.method,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return False

    def has_object_permission(self, request, view, obj):
        """Objects must belong to the tenant resolved from the URL."""
        tenant = view.get_tenant() if hasattr(view, 'get_tenant') else None
        if tenant is None or not hasattr(obj, 'tenant_id'):
            return True

        if obj.tenant_id != tenant.id:
            logger.warning(
                "Object permission denied: object belongs to different tenant",
                extra={
                    'tenant_id': str(tenant.id),
                    'object_tenant_id': str(obj.tenant_id),
                    'object_type': obj.__class__.__name__,
                    'view': view.__class__.__name__,
                }
            )
            return False
        return True


def requires_action(action=None, **per_method):
    """
    Declare the action a view requires.

    Usage:
        @requires_action('view-finance')
        class AdvanceListView(APIView): ...

        @requires_action(GET='view-users', POST='manage-users')
        class MemberListView(APIView): ...
    """
    def decorator(view_class):
        if action:
            view_class.required_action = action
        if per_method:
            view_class.required_actions = {m.upper(): a for m, a in per_method.items()}
        return view_class

    return decorator
