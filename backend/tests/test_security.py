import pytest

from backend.app.security import (
    WEAK_PINS,
    compare_legacy_pin,
    hash_password,
    hash_pin,
    hash_session_token,
    verify_password,
    verify_pin,
    validate_pin,
)


MALFORMED_PINS = ["", "123", "12345", "abcd", "12a4", " 1234", "1234 ", "١٢٣٤"]


def test_session_token_is_hashed_with_prefix():
    h = hash_session_token("abc")
    assert h.startswith("sha256:")
    assert h == hash_session_token("abc")
    assert h != hash_session_token("abd")


@pytest.mark.parametrize("pin", MALFORMED_PINS)
def test_hash_pin_rejects_malformed(pin):
    with pytest.raises(ValueError):
        hash_pin(pin)


def test_pin_hash_roundtrip():
    h = hash_pin("2580")
    assert h != "2580"
    assert verify_pin("2580", h) is True
    assert verify_pin("2581", h) is False


@pytest.mark.parametrize("pin", MALFORMED_PINS)
def test_verify_pin_false_for_malformed_input(pin):
    h = hash_pin("2580")
    assert verify_pin(pin, h) is False


def test_verify_pin_never_raises_on_broken_hash():
    assert verify_pin("2580", "not-a-bcrypt-hash") is False
    assert verify_pin("2580", None) is False
    assert verify_pin(None, "whatever") is False


@pytest.mark.parametrize("pin", sorted(WEAK_PINS))
def test_validate_pin_rejects_weak_patterns(pin):
    result = validate_pin(pin)
    assert result["is_valid"] is False
    assert "weak" in result["error"]


def test_validate_pin_accepts_ordinary_pin():
    assert validate_pin("2580") == {"is_valid": True, "error": None}


def test_validate_pin_format_errors():
    assert validate_pin(None)["error"] == "PIN is required"
    assert validate_pin("12")["error"] == "PIN must be exactly 4 digits"


def test_legacy_pin_compare():
    assert compare_legacy_pin("4821", "4821") is True
    assert compare_legacy_pin("4821", "4822") is False
    assert compare_legacy_pin("4821", None) is False


def test_password_hash_roundtrip():
    h = hash_password("correct horse")
    assert verify_password("correct horse", h) is True
    assert verify_password("wrong", h) is False
    assert verify_password("anything", None) is False
