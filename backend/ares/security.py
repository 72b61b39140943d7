from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from .config import settings


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _fernet() -> Fernet:
    return Fernet(_derive_key(settings.secret_key))


def encrypt_text(plain: str) -> str:
    token = _fernet().encrypt(plain.encode("utf-8"))
    return token.decode("utf-8")


def decrypt_text(token: str) -> Optional[str]:
    try:
        return _fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        return None


def encrypt_json(value: Any) -> str:
    return encrypt_text(json.dumps(value))


def decrypt_json(token: Optional[str]) -> Optional[Any]:
    """Inverse of encrypt_json; None when the token is missing or was sealed with another key."""
    if not token:
        return None
    plain = decrypt_text(token)
    if plain is None:
        return None
    return json.loads(plain)


def fingerprint(value: str, size: int = 12) -> str:
    """Short stable digest used for cache keys that must not carry secrets."""
    return hashlib.sha256((value or "").encode("utf-8")).hexdigest()[:size]
