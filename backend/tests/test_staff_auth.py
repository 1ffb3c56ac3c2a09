import pytest
from fastapi import HTTPException

from backend.app.security import hash_pin
from backend.app.staff_auth import authorize_staff_pin, check_staff_pin


def _staff(store, **extra):
    row = dict(first_name="Sam", last_name="Lee", email="sam@fitgym.test", role="manager",
               branch_id="b-1", is_active=True)
    row.update(extra)
    return store.seed("branch_staff", **row)


def test_rpc_result_decides_when_registered(store):
    staff = _staff(store)
    store.rpc_handlers["verify_staff_pin"] = lambda p_staff_id, p_pin: [{"is_valid": p_pin == "2580"}]

    assert check_staff_pin(store, staff, "2580") is True
    assert check_staff_pin(store, staff, "1357") is False


def test_rpc_receives_staff_id_and_pin(store):
    staff = _staff(store)
    seen = []

    def handler(p_staff_id, p_pin):
        seen.append((p_staff_id, p_pin))
        return [{"verify_staff_pin": True}]

    store.rpc_handlers["verify_staff_pin"] = handler
    assert check_staff_pin(store, staff, "2580") is True
    assert seen == [(str(staff["id"]), "2580")]


def test_rpc_rejection_overrides_stored_hash(store):
    staff = _staff(store, pin_hash=hash_pin("2580"))
    store.rpc_handlers["verify_staff_pin"] = lambda p_staff_id, p_pin: [{"is_valid": False}]

    assert check_staff_pin(store, staff, "2580") is False


def test_falls_back_to_hash_without_rpc(store):
    staff = _staff(store, pin_hash=hash_pin("2580"))

    assert check_staff_pin(store, staff, "2580") is True
    assert check_staff_pin(store, staff, "2581") is False


def test_authorize_uses_rpc_for_staff_without_hash(store):
    staff = _staff(store)
    store.rpc_handlers["verify_staff_pin"] = lambda p_staff_id, p_pin: [{"is_valid": p_pin == "2580"}]

    assert authorize_staff_pin(store, staff["id"], "2580")["id"] == staff["id"]
    with pytest.raises(HTTPException) as exc:
        authorize_staff_pin(store, staff["id"], "1357")
    assert exc.value.status_code == 401
