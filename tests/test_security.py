import pytest

from config import Settings, parse_duration
from security import (
    Capability,
    Role,
    TokenError,
    TokenExpired,
    create_access_token,
    has_capability,
    hash_password,
    jwt_decode,
    jwt_encode,
    verify_password,
)

SECRET = "unit-test-secret"


class TestPasswordHashing:
    def test_hash_is_not_the_password(self):
        hashed = hash_password("Secret#123")
        assert hashed != "Secret#123"
        assert verify_password("Secret#123", hashed)

    def test_wrong_password_fails(self):
        assert not verify_password("Wrong#123", hash_password("Secret#123"))

    def test_empty_hash_fails(self):
        assert not verify_password("Secret#123", "")


class TestTokens:
    def test_token_carries_subject_and_expiry(self):
        token = create_access_token("abc", SECRET, 60, now=1000)
        payload = jwt_decode(token, SECRET, now=1030)
        assert payload == {"sub": "abc", "iat": 1000, "exp": 1060}

    def test_expired_token(self):
        token = create_access_token("abc", SECRET, 60, now=1000)
        with pytest.raises(TokenExpired):
            jwt_decode(token, SECRET, now=1060)

    def test_wrong_secret(self):
        token = create_access_token("abc", SECRET, 60)
        with pytest.raises(TokenError):
            jwt_decode(token, "other-secret")

    def test_tampered_payload(self):
        token = create_access_token("abc", SECRET, 60)
        forged = jwt_encode({"sub": "admin", "exp": 9999999999}, "other-secret")
        header, _, signature = token.split(".")
        with pytest.raises(TokenError):
            jwt_decode(f"{header}.{forged.split('.')[1]}.{signature}", SECRET)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "!!.??.**"])
    def test_malformed_tokens(self, token):
        with pytest.raises(TokenError):
            jwt_decode(token, SECRET)


class TestCapabilities:
    def test_user_can_only_shop(self):
        assert has_capability(Role.USER.value, Capability.SHOP)
        assert not has_capability(Role.USER.value, Capability.MANAGE_CATALOG)
        assert not has_capability(Role.USER.value, Capability.MANAGE_ORDERS)

    def test_admin_has_every_capability(self):
        assert all(has_capability("admin", c) for c in Capability)

    def test_unknown_role_has_nothing(self):
        assert not has_capability("superuser", Capability.SHOP)


class TestSettings:
    @pytest.mark.parametrize("value,seconds", [("7d", 604800), ("12h", 43200), ("30m", 1800), ("45s", 45), ("3600", 3600)])
    def test_parse_duration(self, value, seconds):
        assert parse_duration(value) == seconds

    def test_bad_duration_rejected(self):
        with pytest.raises(ValueError):
            Settings(jwt_expires_in="soon")

    def test_bad_environment_rejected(self):
        with pytest.raises(ValueError):
            Settings(environment="staging")

    def test_services_configured_only_with_credentials(self):
        settings = Settings(cloudinary_cloud_name="demo", cloudinary_api_key="key")
        assert not settings.media_configured
        assert not settings.payments_configured
        assert Settings(stripe_secret_key="sk_test").payments_configured
