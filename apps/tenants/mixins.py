"""
View helpers for tenant-scoped endpoints.
"""
from apps.core.exceptions import NotFound, ValidationError
from apps.core.permissions import CanPerformAction
from apps.rbac.models import User
from apps.tenants.services import TenantService


def validate_input(serializer_class, data, **kwargs):
    """Run a DRF serializer and raise the domain ValidationError on failure."""
    serializer = serializer_class(data=data, **kwargs)
    if not serializer.is_valid():
        raise ValidationError('Validation error', errors=serializer.errors)
    return serializer.validated_data


def get_user_or_404(user_id):
    user = User.objects.filter(id=user_id).first()
    if user is None:
        raise NotFound('User not found')
    return user


class TenantScopedMixin:
    """
    Resolve the tenant from the ``slug`` URL kwarg.

    ``CanPerformAction`` calls ``get_tenant()`` before the handler runs, so
    an unknown slug answers 404 ahead of any permission decision.
    """
    permission_classes = [CanPerformAction]
    tenant_url_kwarg = 'slug'

    def get_tenant(self):
        if not hasattr(self, '_tenant'):
            self._tenant = TenantService.get_tenant(self.kwargs[self.tenant_url_kwarg])
        return self._tenant
