"""
Role -> permission table.

Permissions are `resource:action` codes. Admin roles hold everything; staff
roles get a fixed subset. `system:admin` implies every other permission.
"""
from typing import Dict, FrozenSet, Iterable, Optional


MEMBERS_READ = "members:read"
MEMBERS_WRITE = "members:write"
MEMBERS_DELETE = "members:delete"
MEMBERS_SEARCH = "members:search"

STAFF_READ = "staff:read"
STAFF_WRITE = "staff:write"
STAFF_DELETE = "staff:delete"
STAFF_MANAGE_PINS = "staff:manage_pins"

PACKAGES_READ = "packages:read"
PACKAGES_WRITE = "packages:write"
PACKAGES_DELETE = "packages:delete"
PACKAGES_PRICING = "packages:pricing"

BRANCHES_READ = "branches:read"
BRANCHES_WRITE = "branches:write"
BRANCHES_DELETE = "branches:delete"
BRANCHES_MANAGE_ALL = "branches:manage_all"

ANALYTICS_READ = "analytics:read"
ANALYTICS_FINANCIAL = "analytics:financial"
ANALYTICS_EXPORT = "analytics:export"

SYSTEM_ADMIN = "system:admin"
SYSTEM_AUDIT_LOGS = "system:audit_logs"
SYSTEM_BACKUP = "system:backup"

RENEWALS_PROCESS = "renewals:process"
RENEWALS_READ = "renewals:read"

PAYMENTS_READ = "payments:read"
PAYMENTS_PROCESS = "payments:process"


ALL_PERMISSIONS: FrozenSet[str] = frozenset({
    MEMBERS_READ, MEMBERS_WRITE, MEMBERS_DELETE, MEMBERS_SEARCH,
    STAFF_READ, STAFF_WRITE, STAFF_DELETE, STAFF_MANAGE_PINS,
    PACKAGES_READ, PACKAGES_WRITE, PACKAGES_DELETE, PACKAGES_PRICING,
    BRANCHES_READ, BRANCHES_WRITE, BRANCHES_DELETE, BRANCHES_MANAGE_ALL,
    ANALYTICS_READ, ANALYTICS_FINANCIAL, ANALYTICS_EXPORT,
    SYSTEM_ADMIN, SYSTEM_AUDIT_LOGS, SYSTEM_BACKUP,
    RENEWALS_PROCESS, RENEWALS_READ,
    PAYMENTS_READ, PAYMENTS_PROCESS,
})

ADMIN_ROLES = frozenset({"admin", "super_admin"})
STAFF_ROLES = ("manager", "senior_staff", "associate")

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "super_admin": ALL_PERMISSIONS,
    "admin": ALL_PERMISSIONS,
    "manager": frozenset({
        MEMBERS_READ, MEMBERS_WRITE, MEMBERS_DELETE, MEMBERS_SEARCH,
        STAFF_READ, STAFF_WRITE, STAFF_MANAGE_PINS, STAFF_DELETE,
        PACKAGES_READ, PACKAGES_WRITE, PACKAGES_PRICING, PACKAGES_DELETE,
        BRANCHES_READ,
        ANALYTICS_READ, ANALYTICS_FINANCIAL,
        RENEWALS_PROCESS, RENEWALS_READ,
        PAYMENTS_READ, PAYMENTS_PROCESS,
    }),
    "senior_staff": frozenset({
        MEMBERS_READ, MEMBERS_WRITE, MEMBERS_SEARCH,
        STAFF_READ,
        PACKAGES_READ, PACKAGES_WRITE, PACKAGES_PRICING, PACKAGES_DELETE,
        BRANCHES_READ,
        ANALYTICS_READ,
        RENEWALS_PROCESS, RENEWALS_READ,
        PAYMENTS_READ,
    }),
    "associate": frozenset({
        MEMBERS_READ, MEMBERS_SEARCH,
        STAFF_READ,
        PACKAGES_READ, PACKAGES_WRITE, PACKAGES_PRICING, PACKAGES_DELETE,
        BRANCHES_READ,
        RENEWALS_READ,
    }),
    "member": frozenset({BRANCHES_READ, PACKAGES_READ}),
}


def permissions_for(role: Optional[str]) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get((role or "").lower(), frozenset())


def has_permission(permissions: Iterable[str], code: str) -> bool:
    perms = permissions if isinstance(permissions, (set, frozenset)) else set(permissions)
    return code in perms or SYSTEM_ADMIN in perms


def has_any_permission(permissions: Iterable[str], codes: Iterable[str]) -> bool:
    perms = frozenset(permissions)
    return any(has_permission(perms, c) for c in codes)
