"""
Identity signals.

Creates a profile for every new user and keeps cached permission sets in
step with role and permission links, including edits made through the
Django admin.
"""
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from apps.rbac.models import User, UserProfile, UserRole, UserPermission, RolePermission


@receiver(post_save, sender=User)
def create_profile_for_new_user(sender, instance, created, **kwargs):
    if created:
        UserProfile.objects.get_or_create(user=instance)


@receiver([post_save, post_delete], sender=UserRole)
@receiver([post_save, post_delete], sender=UserPermission)
def invalidate_user_permission_cache(sender, instance, **kwargs):
    from apps.rbac.services import IdentityService
    IdentityService.invalidate_cache(instance.user)


@receiver([post_save, post_delete], sender=RolePermission)
def invalidate_role_permission_cache(sender, instance, **kwargs):
    from apps.rbac.services import IdentityService
    IdentityService.invalidate_role_holders(instance.role)
