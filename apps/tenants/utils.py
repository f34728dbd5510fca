"""
Utility functions for tenant management.
"""
import secrets

from django.conf import settings
from django.utils.text import slugify


def generate_unique_slug(model, value, slug_field='slug', max_length=100):
    """
    Slugify ``value`` and append ``-1``, ``-2``, ... until no row of
    ``model`` (soft-deleted rows included) uses it.
    """
    base_slug = slugify(value)[:max_length] or 'item'
    manager = getattr(model, 'objects_with_deleted', model._default_manager)

    slug = base_slug
    counter = 1
    while manager.filter(**{slug_field: slug}).exists():
        suffix = f"-{counter}"
        slug = f"{base_slug[:max_length - len(suffix)]}{suffix}"
        counter += 1
    return slug


def generate_invitation_token():
    """URL-safe random token used to accept a membership invitation."""
    return secrets.token_urlsafe(getattr(settings, 'INVITATION_TOKEN_BYTES', 32))


def merge_settings(defaults, overrides):
    """
    Shallow merge: keys of ``overrides`` replace keys of ``defaults``.

    Neither argument is mutated.
    """
    merged = dict(defaults or {})
    merged.update(overrides or {})
    return merged
