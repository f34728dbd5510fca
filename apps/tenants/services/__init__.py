"""
Services for tenants, memberships and feature assignments.
"""
from .membership_service import MembershipService
from .tenant_service import TenantService
from .feature_service import FeatureService

__all__ = [
    'MembershipService',
    'TenantService',
    'FeatureService',
]
