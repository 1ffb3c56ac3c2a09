import pytest

from backend.app import rbac
from backend.app.deps import Principal


@pytest.mark.parametrize("role", ["admin", "super_admin", "ADMIN"])
def test_admin_roles_hold_everything(role):
    assert rbac.permissions_for(role) == rbac.ALL_PERMISSIONS


def test_unknown_role_has_nothing():
    assert rbac.permissions_for("janitor") == frozenset()
    assert rbac.permissions_for(None) == frozenset()


def test_staff_role_boundaries():
    manager = rbac.permissions_for("manager")
    senior = rbac.permissions_for("senior_staff")
    associate = rbac.permissions_for("associate")

    assert rbac.STAFF_MANAGE_PINS in manager
    assert rbac.STAFF_MANAGE_PINS not in senior
    assert rbac.RENEWALS_PROCESS in senior
    assert rbac.RENEWALS_PROCESS not in associate
    assert rbac.MEMBERS_WRITE not in associate
    assert rbac.BRANCHES_MANAGE_ALL not in manager
    assert rbac.SYSTEM_ADMIN not in manager


def test_system_admin_implies_everything():
    assert rbac.has_permission({rbac.SYSTEM_ADMIN}, rbac.MEMBERS_DELETE) is True
    assert rbac.has_permission([rbac.MEMBERS_READ], rbac.MEMBERS_DELETE) is False
    assert rbac.has_any_permission([rbac.MEMBERS_READ], [rbac.MEMBERS_DELETE, rbac.MEMBERS_READ]) is True
    assert rbac.has_any_permission([], [rbac.MEMBERS_READ]) is False


def test_principal_helpers():
    staff = Principal(
        id="s-1",
        email="sam@fitgym.test",
        role="associate",
        session_type="staff",
        branch_id="b-1",
        permissions=rbac.permissions_for("associate"),
    )
    assert staff.is_admin is False
    assert staff.can(rbac.PACKAGES_READ) is True
    assert staff.can(rbac.RENEWALS_PROCESS) is False
