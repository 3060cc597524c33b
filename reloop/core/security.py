import hashlib
import hmac
import secrets
from dataclasses import dataclass

from reloop.core.config import settings

KEY_SCHEME = "rl"


@dataclass(frozen=True)
class ApiKeyParts:
    prefix: str
    plain: str
    hashed: str


def generate_api_key(prefix_len: int = 8) -> ApiKeyParts:
    # rl_<prefix>_<secret>; the prefix is stored in clear for lookup
    prefix = secrets.token_hex(prefix_len // 2)
    plain = f"{KEY_SCHEME}_{prefix}_{secrets.token_urlsafe(32)}"
    return ApiKeyParts(prefix=prefix, plain=plain, hashed=hash_api_key(plain))


def key_prefix(plain: str) -> str | None:
    parts = plain.split("_", 2)
    if len(parts) != 3 or parts[0] != KEY_SCHEME or not parts[1]:
        return None
    return parts[1]


def hash_api_key(plain: str) -> str:
    pepper = settings.api_key_pepper.get_secret_value().encode("utf-8")
    return hmac.new(pepper, plain.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_api_key(plain: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_api_key(plain), hashed)
