"""
Closed permission registry.

Permission names are immutable identifiers. Every write path (granting a
permission to a user or role, storing membership overrides) validates
names against this module, so an unknown string can never become an
effective permission.

Two families exist:

* platform permissions, held through global roles or direct grants
  (``users.create``, ``features.manage`` ...)
* business permissions, held through a membership's role defaults or its
  per-membership overrides (``finance.manage``, ``users.invite`` ...)

``users.view`` appears in both: globally it lets support staff browse any
tenant's users, inside a tenant it is an ordinary membership permission.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from apps.core.exceptions import ValidationError

DEFAULT_GUARD = 'web'

SUPERADMIN_ROLE = 'superadmin'
OWNER_ROLE = 'owner'


@dataclass(frozen=True)
class PermissionDef:
    name: str
    label: str
    description: str = ''

    @property
    def category(self) -> str:
        """Display-only grouping parsed from the name."""
        return self.name.split('.', 1)[0]

    @property
    def action(self) -> str:
        """Display-only verb parsed from the name."""
        return self.name.split('.', 1)[-1]


PLATFORM_PERMISSIONS: Dict[str, PermissionDef] = {
    p.name: p for p in [
        PermissionDef('users.create', 'Create Users', 'Create principals on the platform'),
        PermissionDef('users.view', 'View Users', 'View principals across tenants'),
        PermissionDef('users.edit', 'Edit Users', 'Edit principals across tenants'),
        PermissionDef('users.delete', 'Delete Users', 'Delete principals'),
        PermissionDef('roles.manage', 'Manage Roles', 'Assign global roles and permissions'),
        PermissionDef('features.manage', 'Manage Features', 'Maintain the feature catalog'),
        PermissionDef('tenants.manage', 'Manage Tenants', 'Create and suspend tenants'),
    ]
}

BUSINESS_PERMISSIONS: Dict[str, PermissionDef] = {
    p.name: p for p in [
        PermissionDef('users.view', 'View Members', 'View users in the business'),
        PermissionDef('users.invite', 'Invite Members', 'Invite new users to the business'),
        PermissionDef('users.manage', 'Manage Members', 'Edit and remove users in the business'),
        PermissionDef('business.view', 'View Business', 'View business information'),
        PermissionDef('business.edit', 'Edit Business', 'Edit business settings and features'),
        PermissionDef('business.delete', 'Delete Business', 'Delete the business'),
        PermissionDef('finance.view', 'View Finance', 'View advances and claims'),
        PermissionDef('finance.manage', 'Manage Finance', 'Approve, pay and edit advances and claims'),
        PermissionDef('projects.view', 'View Projects', 'View projects'),
        PermissionDef('projects.manage', 'Manage Projects', 'Create and edit projects'),
        PermissionDef('reports.view', 'View Reports', 'View reports'),
        PermissionDef('reports.export', 'Export Reports', 'Export reports'),
    ]
}

ALL_BUSINESS_PERMISSIONS: FrozenSet[str] = frozenset(BUSINESS_PERMISSIONS)

ROLE_DEFAULT_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    OWNER_ROLE: ALL_BUSINESS_PERMISSIONS,
    'admin': ALL_BUSINESS_PERMISSIONS - {'business.delete'},
    'manager': frozenset({
        'users.view', 'users.invite',
        'business.view',
        'finance.view', 'finance.manage',
        'projects.view', 'projects.manage',
        'reports.view',
    }),
    'employee': frozenset({'users.view', 'business.view', 'projects.view', 'reports.view'}),
    'contractor': frozenset({'business.view', 'projects.view'}),
    'viewer': frozenset({'business.view', 'projects.view', 'reports.view'}),
}

BUSINESS_ROLES: Tuple[str, ...] = tuple(ROLE_DEFAULT_PERMISSIONS)
DEFAULT_BUSINESS_ROLE = 'employee'


def default_permissions(business_role: Optional[str]) -> FrozenSet[str]:
    """Role defaults for ``business_role``; unrecognised roles get nothing."""
    return ROLE_DEFAULT_PERMISSIONS.get(business_role or '', frozenset())


@dataclass(frozen=True)
class Action:
    """
    A named operation checked by the authorization resolver.

    ``permission`` is the business permission that grants it inside a
    tenant. ``global_permissions`` lists platform permissions that grant
    it across tenants; only user-management actions carry any.
    """
    name: str
    permission: str
    global_permissions: Tuple[str, ...] = field(default=())

    @property
    def is_user_management(self) -> bool:
        return bool(self.global_permissions)


ACTIONS: Dict[str, Action] = {
    a.name: a for a in [
        Action('view-business', 'business.view'),
        Action('edit-business', 'business.edit'),
        Action('delete-business', 'business.delete'),
        Action('view-users', 'users.view', ('users.view',)),
        Action('invite-users', 'users.invite', ('users.create',)),
        Action('manage-users', 'users.manage', ('users.create', 'users.view', 'users.edit')),
        Action('view-finance', 'finance.view'),
        Action('manage-finance', 'finance.manage'),
        Action('view-projects', 'projects.view'),
        Action('manage-projects', 'projects.manage'),
        Action('view-reports', 'reports.view'),
        Action('export-reports', 'reports.export'),
    ]
}


def find_action(name: str) -> Optional[Action]:
    """
    Look up an action name, or return None when it is unknown.

    A bare business permission name is accepted as an action that requires
    exactly that permission.
    """
    if name in ACTIONS:
        return ACTIONS[name]
    if name in BUSINESS_PERMISSIONS:
        return Action(name, name)
    return None


def get_action(name: str) -> Action:
    """Like ``find_action`` but raises ValidationError for unknown names."""
    action = find_action(name)
    if action is None:
        raise ValidationError(f"Unknown action '{name}'", errors={'action': f"Unknown action '{name}'"})
    return action


def validate_platform_permission(name: str) -> PermissionDef:
    try:
        return PLATFORM_PERMISSIONS[name]
    except KeyError:
        raise ValidationError(
            f"Unknown permission '{name}'",
            errors={'permission': f"Unknown permission '{name}'"}
        )


def validate_business_permissions(names: Optional[Iterable[str]]) -> list:
    """Return ``names`` as a sorted, de-duplicated list or raise ValidationError."""
    names = list(names or [])
    if any(not isinstance(n, str) for n in names):
        raise ValidationError(
            "Permission overrides must be strings",
            errors={'permissions': 'Permission overrides must be strings'}
        )
    unknown = sorted(set(names) - ALL_BUSINESS_PERMISSIONS)
    if unknown:
        raise ValidationError(
            f"Unknown permissions: {', '.join(unknown)}",
            errors={'permissions': [f"Unknown permission '{n}'" for n in unknown]}
        )
    return sorted(set(names))


def validate_business_role(role: str) -> str:
    if not role or not isinstance(role, str):
        raise ValidationError("Role is required", errors={'business_role': 'This field is required.'})
    return role.strip()
