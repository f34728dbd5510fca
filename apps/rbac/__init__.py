"""
Identity store and authorization.

Provides:
- Global user identity with a legacy profile role
- Global roles and permissions backed by a closed registry
- The authorization resolver combining global and tenant permissions
- Audit logging
"""
