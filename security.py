import base64
import hashlib
import hmac
import json
import time
from enum import Enum
from typing import Optional

from passlib.context import CryptContext

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# Roles
class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Capability(str, Enum):
    SHOP = "shop"
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_ORDERS = "manage_orders"
    MANAGE_MEDIA = "manage_media"
    MANAGE_USERS = "manage_users"


CAPABILITIES = {
    Role.USER: frozenset({Capability.SHOP}),
    Role.ADMIN: frozenset(Capability),
}


def has_capability(role: str, capability: Capability) -> bool:
    try:
        return capability in CAPABILITIES[Role(role)]
    except ValueError:
        return False


# Simple JWT (HS256)
class TokenError(ValueError):
    pass


class TokenExpired(TokenError):
    pass


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def _sign(signing_input: bytes, secret: str) -> str:
    return _b64url_encode(hmac.new(secret.encode(), signing_input, hashlib.sha256).digest())


def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":")).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(",", ":")).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    return f"{header_b64}.{payload_b64}.{_sign(signing_input, secret)}"


def jwt_decode(token: str, secret: str, now: Optional[float] = None) -> dict:
    try:
        header_b64, payload_b64, sig_b64 = token.split(".")
        header = json.loads(_b64url_decode(header_b64))
        signing_input = f"{header_b64}.{payload_b64}".encode()
        valid = hmac.compare_digest(_sign(signing_input, secret), sig_b64)
        payload = json.loads(_b64url_decode(payload_b64))
    except (ValueError, TypeError) as e:
        raise TokenError("Malformed token") from e
    if not isinstance(header, dict) or header.get("alg") != "HS256" or not valid:
        raise TokenError("Invalid signature")
    if not isinstance(payload, dict) or not isinstance(payload.get("exp", 0), (int, float)):
        raise TokenError("Malformed token")
    exp = payload.get("exp")
    if exp is not None and (now if now is not None else time.time()) >= exp:
        raise TokenExpired("Token expired")
    return payload


def create_access_token(user_id: str, secret: str, ttl_seconds: int, now: Optional[float] = None) -> str:
    issued = int(now if now is not None else time.time())
    return jwt_encode({"sub": user_id, "iat": issued, "exp": issued + ttl_seconds}, secret)
