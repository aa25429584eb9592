import re

import pyotp

from tillsync.app import mfa
from tillsync.app.security import (
    generate_invite_code,
    generate_recovery_code,
    generate_salt,
    hash_password,
    hash_security_answer,
    validate_password_policy,
    verify_password,
    verify_security_answer,
)


def test_password_hash_depends_on_salt():
    salt = generate_salt()
    h = hash_password("Str0ng!Passw0rd", salt)
    assert len(h) == 64
    assert h == hash_password("Str0ng!Passw0rd", salt)
    assert h != hash_password("Str0ng!Passw0rd", generate_salt())
    assert verify_password("Str0ng!Passw0rd", salt, h) is True
    assert verify_password("wrong", salt, h) is False
    assert verify_password("Str0ng!Passw0rd", salt, None) is False


def test_security_answer_is_normalized():
    salt = generate_salt()
    h = hash_security_answer("  Blue Whale ", salt)
    assert verify_security_answer("blue whale", salt, h) is True
    assert verify_security_answer("red", salt, h) is False
    assert verify_security_answer("   ", salt, h) is False


def test_password_policy_lists_every_gap():
    assert validate_password_policy("Admin@123456") == []
    problems = validate_password_policy("short")
    assert any("12 characters" in p for p in problems)
    assert any("uppercase" in p for p in problems)
    assert any("digit" in p for p in problems)
    assert any("symbol" in p for p in problems)
    assert validate_password_policy("alllowercase1!") == ["must contain an uppercase letter"]


def test_code_formats():
    assert re.fullmatch(r"[A-Z0-9]{4}(-[A-Z0-9]{4}){3}", generate_recovery_code())
    assert re.fullmatch(r"[A-Z0-9]{5}-[A-Z0-9]{5}", generate_invite_code())
    assert generate_invite_code() != generate_invite_code()


def test_totp_verification_tolerates_formatting():
    secret = mfa.new_totp_secret()
    code = pyotp.TOTP(secret).now()
    assert mfa.verify_totp_code(secret, code) is True
    assert mfa.verify_totp_code(secret, f"{code[:3]} {code[3:]}") is True
    assert mfa.verify_totp_code(secret, f"{code[:3]}-{code[3:]}") is True
    assert mfa.verify_totp_code(secret, "abcdef") is False
    assert mfa.verify_totp_code(secret, "") is False
    assert mfa.verify_totp_code("", code) is False


def test_provisioning_uri_names_user_and_issuer():
    uri = mfa.provisioning_uri(mfa.new_totp_secret(), "ana")
    assert uri.startswith("otpauth://totp/")
    assert "ana" in uri and "issuer=Tillsync" in uri
