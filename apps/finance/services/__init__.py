"""
Services for advances and claims.
"""
from .request_service import AdvanceService, ClaimService, FinancialRequestService

__all__ = [
    'AdvanceService',
    'ClaimService',
    'FinancialRequestService',
]
