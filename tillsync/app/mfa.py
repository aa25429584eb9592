import pyotp


def new_totp_secret() -> str:
    # 32 chars base32 ~= 160-bit secret (standard).
    return pyotp.random_base32(length=32)


def provisioning_uri(secret: str, username: str, issuer: str = "Tillsync") -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=username, issuer_name=issuer)


def current_code(secret: str, for_time=None) -> str:
    totp = pyotp.TOTP(secret)
    return totp.at(for_time) if for_time is not None else totp.now()


def verify_totp_code(secret: str, code: str, for_time=None) -> bool:
    if not secret:
        return False
    c = (code or "").strip().replace(" ", "").replace("-", "")
    if not c.isdigit() or len(c) != 6:
        return False
    totp = pyotp.TOTP(secret)
    # Allow +/- 1 step drift.
    return bool(totp.verify(c, for_time=for_time, valid_window=1))
